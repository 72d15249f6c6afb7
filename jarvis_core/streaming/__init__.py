"""流式回合处理：字节流解码、事件折叠、工具台账与取消。"""

from jarvis_core.streaming.cancellation import CancelToken
from jarvis_core.streaming.decoder import SSEDecoder, iter_events
from jarvis_core.streaming.ledger import ToolCall, ToolCallLedger, ToolMatchStrategy
from jarvis_core.streaming.reducer import TurnPhase, TurnReducer, TurnState
from jarvis_core.streaming.tool_status import friendly_tool_status

__all__ = [
    "CancelToken",
    "SSEDecoder",
    "iter_events",
    "ToolCall",
    "ToolCallLedger",
    "ToolMatchStrategy",
    "TurnPhase",
    "TurnReducer",
    "TurnState",
    "friendly_tool_status",
]
