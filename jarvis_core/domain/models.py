"""与 Agent 服务交互的请求 / 状态模型。

- TurnRequest: 一个回合发给 Agent 服务的请求体。
- AgentServerStatus: /api/status 返回的运行模式信息。

Provider 层负责把这些结构转换为线上的 camelCase JSON。
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class TurnRequest:
    """一次用户回合的请求。

    - thread_id: 会话 ID。
    - message: 用户输入文本。
    - session_id: 会话此前绑定的 Agent session，用于续接上下文。
    - model_override: 仅对本回合生效的显式模型选择。
    - connectors: 本回合允许 Agent 使用的外部连接器。
    """

    thread_id: str
    message: str
    session_id: Optional[str] = None
    model_override: Optional[str] = None
    connectors: List[str] = field(default_factory=list)

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"threadId": self.thread_id, "message": self.message}
        if self.session_id:
            payload["sessionId"] = self.session_id
        if self.model_override:
            payload["modelOverride"] = self.model_override
        if self.connectors:
            payload["connectors"] = list(self.connectors)
        return payload


@dataclass
class AgentServerStatus:
    mode: str
    model: Optional[str]
    description: str
    raw: Optional[dict] = None

    @property
    def configured(self) -> bool:
        return self.mode != "unconfigured"
