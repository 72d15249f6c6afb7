"""Agent 服务集成层。

该包下的模块负责：
- 定义 Agent 客户端抽象接口 (base)。
- 提供基于 httpx 的流式实现 (agent_client)。
"""

from typing import Optional

from jarvis_core.config.settings import settings
from jarvis_core.providers.agent_client import AgentServerClient


def create_agent_client(base_url: Optional[str] = None) -> AgentServerClient:
    """创建 Agent 客户端，默认使用配置中的服务地址。"""

    if base_url:
        return AgentServerClient(settings.model_copy(update={"agent_server_url": base_url.rstrip("/")}))
    return AgentServerClient(settings)
