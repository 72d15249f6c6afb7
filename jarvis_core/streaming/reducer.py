"""回合状态机。

把解码后的事件序列折叠为 UI 可观察的 TurnState：

    idle -> connecting -> thinking -> responding -> done | errored | aborted

另有一个正交的 activity_expanded 标志：工具开始时展开活动面板，
正文开始输出时收起。

reducer 本身不做任何 I/O；持久化、通知等副作用由控制器在
终止事件之后根据 TurnState 执行。
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from jarvis_core.domain.events import (
    AgentEvent,
    Done,
    ErrorEvent,
    MemorySaved,
    SessionInit,
    TextDelta,
    ToolDone,
    ToolError,
    ToolStart,
    event_type,
)
from jarvis_core.domain.exceptions import AgentStreamError, StreamTruncatedError
from jarvis_core.infrastructure.logging.logger import logger
from jarvis_core.streaming.ledger import ToolCallLedger, ToolMatchStrategy
from jarvis_core.streaming.tool_status import THINKING, friendly_tool_status

CONNECTING = "Connecting…"


class TurnPhase(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    THINKING = "thinking"
    RESPONDING = "responding"
    DONE = "done"
    ERRORED = "errored"
    ABORTED = "aborted"

    @property
    def is_terminal(self) -> bool:
        return self in (TurnPhase.DONE, TurnPhase.ERRORED, TurnPhase.ABORTED)


@dataclass
class TurnState:
    """单个回合的内存状态，回合结束后整体丢弃。"""

    phase: TurnPhase = TurnPhase.IDLE
    status: str = ""
    text: str = ""
    tools: ToolCallLedger = field(default_factory=ToolCallLedger)
    activity_expanded: bool = False
    session_id: Optional[str] = None
    model: Optional[str] = None
    final_text: Optional[str] = None
    error: Optional[str] = None
    saved_memories: List[MemorySaved] = field(default_factory=list)

    @property
    def is_streaming(self) -> bool:
        return self.phase is not TurnPhase.IDLE and not self.phase.is_terminal


class TurnReducer:
    """按事件逐条更新 TurnState。

    Args:
        session_id: 回合开始前会话已绑定的 Agent session，作为初始值。
        model: 回合开始前会话记录的模型。
        strategy: 同名工具且无 messageId 时的台账匹配策略。
    """

    def __init__(
        self,
        session_id: Optional[str] = None,
        model: Optional[str] = None,
        strategy: ToolMatchStrategy = ToolMatchStrategy.FIRST_RUNNING,
    ):
        self.state = TurnState(
            phase=TurnPhase.CONNECTING,
            status=CONNECTING,
            tools=ToolCallLedger(strategy),
            session_id=session_id,
            model=model,
        )

    @property
    def finished(self) -> bool:
        return self.state.phase.is_terminal

    def apply(self, event: AgentEvent) -> TurnState:
        """应用一条事件。error 事件会在更新状态后抛出 AgentStreamError。"""

        state = self.state
        if state.phase.is_terminal:
            logger.info("turn.event_after_terminal", extra={"extra": {"event": event_type(event)}})
            return state

        if isinstance(event, SessionInit):
            if event.session_id:
                state.session_id = event.session_id
            if event.model:
                state.model = event.model
            if state.phase is TurnPhase.CONNECTING:
                state.phase = TurnPhase.THINKING
                state.status = THINKING
        elif isinstance(event, TextDelta):
            state.text += event.content
            state.phase = TurnPhase.RESPONDING
            state.activity_expanded = False
            state.status = ""
        elif isinstance(event, ToolStart):
            state.tools.start(event.tool_name, event.tool_input, event.message_id)
            state.activity_expanded = True
            state.status = friendly_tool_status(event.tool_name)
            if state.phase is TurnPhase.CONNECTING:
                state.phase = TurnPhase.THINKING
        elif isinstance(event, ToolDone):
            state.tools.resolve(event.tool_name, event.tool_output, message_id=event.message_id)
            state.status = THINKING
        elif isinstance(event, ToolError):
            state.tools.resolve(
                event.tool_name,
                event.tool_output,
                failed=True,
                message_id=event.message_id,
                error=event.error,
            )
            state.status = THINKING
        elif isinstance(event, MemorySaved):
            state.saved_memories.append(event)
            logger.info("turn.memory_saved", extra={"extra": {"title": event.title, "tier": event.tier}})
        elif isinstance(event, Done):
            # 终止事件里的全文优先于本地累积的增量
            state.final_text = event.content or state.text
            state.phase = TurnPhase.DONE
            state.status = ""
        elif isinstance(event, ErrorEvent):
            state.phase = TurnPhase.ERRORED
            state.error = event.error
            state.status = ""
            raise AgentStreamError(event.error)
        else:
            raise TypeError(f"Unhandled agent event: {event!r}")
        return state

    def close(self, cancelled: bool = False) -> TurnState:
        """流结束时调用。没有终止事件且不是用户取消时抛出 StreamTruncatedError。"""

        state = self.state
        if cancelled:
            state.phase = TurnPhase.ABORTED
            state.status = ""
            return state
        if not state.phase.is_terminal:
            state.phase = TurnPhase.ERRORED
            state.error = StreamTruncatedError.DEFAULT_MESSAGE
            raise StreamTruncatedError(running_tools=state.tools.running_count)
        return state
