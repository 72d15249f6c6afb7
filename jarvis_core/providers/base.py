"""Agent 客户端抽象接口。

控制器不直接依赖 HTTP 细节，而是依赖此协议：

- 生产环境使用 AgentServerClient（httpx 流式请求）。
- 测试中可以用任意产出事件序列的假实现替换。
"""

from typing import Iterable, Optional, Protocol

from jarvis_core.domain.events import AgentEvent
from jarvis_core.domain.models import TurnRequest
from jarvis_core.streaming.cancellation import CancelToken


class AgentClient(Protocol):
    """Agent 服务客户端协议。

    实现者需要提供：
    - name: 客户端名称，用于日志。
    - stream_turn(req, cancel_token): 发起一次回合，逐条产出解码后的事件。
      取消令牌被触发时应尽快停止读取。
    """

    name: str

    def stream_turn(self, req: TurnRequest, cancel_token: Optional[CancelToken] = None) -> Iterable[AgentEvent]:
        ...
