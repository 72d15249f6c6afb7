"""流式对话会话控制器。

一个用户回合的完整流程：

1. 持久化用户消息（首条消息时顺带生成会话标题）。
2. 读取会话绑定的 Agent session / model，发起流式请求。
3. 逐条把事件交给 TurnReducer，并通知 UI 监听者。
4. 成功结束后持久化助手消息，必要时更新 session 绑定，并视情况发出紧急通知。
5. 无论成功、失败还是取消，都在 finally 中清空回合状态。

失败时（传输错误、协议 error 事件、流被截断）会写入一条
``Error: <message>`` 的助手消息；用户取消则什么都不写。
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Literal, Optional
from uuid import uuid4
import logging
import time

from jarvis_core.config.settings import settings
from jarvis_core.domain.exceptions import BusinessError, TurnCancelled
from jarvis_core.domain.models import TurnRequest
from jarvis_core.domain.thread import MessageRecord, Thread, ThreadStore
from jarvis_core.infrastructure.logging.logger import logger
from jarvis_core.notifications.notifier import UrgentNotifier
from jarvis_core.providers.base import AgentClient
from jarvis_core.streaming.cancellation import CancelToken
from jarvis_core.streaming.ledger import ToolCall, ToolMatchStrategy
from jarvis_core.streaming.reducer import TurnPhase, TurnReducer, TurnState

StateListener = Callable[[TurnState], None]


@dataclass
class ControllerConfig:
    default_thread_title: str = "New conversation"
    auto_title_length: int = 50
    persist_tool_messages: bool = False
    tool_match_strategy: ToolMatchStrategy = ToolMatchStrategy.FIRST_RUNNING

    @classmethod
    def from_settings(cls, s=settings) -> "ControllerConfig":
        return cls(
            default_thread_title=s.default_thread_title,
            auto_title_length=s.auto_title_length,
            persist_tool_messages=s.persist_tool_messages,
            tool_match_strategy=ToolMatchStrategy(s.tool_match_strategy),
        )


@dataclass
class TurnResult:
    """一个回合结束后的摘要（回合内存状态此时已被清空）。"""

    status: Literal["done", "errored", "aborted"]
    thread_id: str
    content: str = ""
    assistant_message: Optional[MessageRecord] = None
    session_id: Optional[str] = None
    model: Optional[str] = None
    tool_calls: List[ToolCall] = field(default_factory=list)
    error: Optional[str] = None
    notified: bool = False


class ChatSessionController:
    def __init__(
        self,
        store: ThreadStore,
        client: AgentClient,
        notifier: Optional[UrgentNotifier] = None,
        config: Optional[ControllerConfig] = None,
        on_state: Optional[StateListener] = None,
    ):
        self._store = store
        self._client = client
        self._notifier = notifier
        self._config = config or ControllerConfig.from_settings()
        self._listeners: List[StateListener] = [on_state] if on_state else []
        self._active_thread_id: Optional[str] = None
        self._state = TurnState()
        self._cancel: Optional[CancelToken] = None
        self._streaming = False

    # ------------------------------------------------------------------
    # Observable state
    # ------------------------------------------------------------------

    @property
    def active_thread_id(self) -> Optional[str]:
        return self._active_thread_id

    @property
    def state(self) -> TurnState:
        return self._state

    @property
    def is_streaming(self) -> bool:
        return self._streaming

    def subscribe(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Threads
    # ------------------------------------------------------------------

    def list_threads(self) -> List[Thread]:
        return self._store.list_threads()

    def list_messages(self, thread_id: Optional[str] = None) -> List[MessageRecord]:
        tid = thread_id or self._active_thread_id
        if not tid:
            return []
        return self._store.list_messages(tid)

    def ensure_active_thread(self) -> Thread:
        """选中最近活动的会话；一个都没有时新建。"""

        if self._active_thread_id:
            return self._store.get_thread(self._active_thread_id)
        threads = self._store.list_threads()
        if threads:
            self._active_thread_id = threads[0].id
            return threads[0]
        return self.new_thread()

    def new_thread(self, title: Optional[str] = None) -> Thread:
        thread = self._store.create_thread(title or self._config.default_thread_title)
        self._active_thread_id = thread.id
        self._log(logging.INFO, "Created new thread", {"thread_id": thread.id})
        return thread

    def select_thread(self, thread_id: str) -> Thread:
        thread = self._store.get_thread(thread_id)
        self._active_thread_id = thread.id
        return thread

    def delete_thread(self, thread_id: str) -> Optional[str]:
        """删除会话。删除的是当前会话时，回退到最近的其他会话或新建一个。

        Returns:
            删除后的当前会话 ID。
        """

        if thread_id == self._active_thread_id and self._streaming:
            self.abort()
        self._store.delete_thread(thread_id)
        self._log(logging.INFO, "Deleted thread", {"thread_id": thread_id})
        if thread_id == self._active_thread_id:
            self._active_thread_id = None
            remaining = self._store.list_threads()
            if remaining:
                self._active_thread_id = remaining[0].id
            else:
                self.new_thread()
        return self._active_thread_id

    # ------------------------------------------------------------------
    # Turns
    # ------------------------------------------------------------------

    def send(self, text: str, model_override: Optional[str] = None) -> Optional[TurnResult]:
        """发送一条用户消息并完整跑完一个回合。

        正在流式输出或输入为空时直接返回 None。除用户取消外的所有失败
        都会被转换为一条 ``Error: ...`` 助手消息，结果状态为 errored。
        """

        text = (text or "").strip()
        if not text or self._streaming:
            return None
        thread = self.ensure_active_thread()
        thread_id = thread.id

        self._store.add_user_message(thread_id, text)
        if thread.title == self._config.default_thread_title:
            title = text[: self._config.auto_title_length].strip()
            if title:
                self._store.rename_thread(thread_id, title)

        try:
            return self.run_turn(thread_id, text, model_override=model_override)
        except TurnCancelled:
            self._log(logging.INFO, "Turn aborted by user", {"thread_id": thread_id})
            return TurnResult(status="aborted", thread_id=thread_id)
        except BusinessError as e:
            self._log(logging.ERROR, "Turn failed", {"thread_id": thread_id}, code=e.code, error=e.message)
            error_message = self._store.add_assistant_message(thread_id, f"Error: {e.message}")
            return TurnResult(
                status="errored",
                thread_id=thread_id,
                content=error_message.content,
                assistant_message=error_message,
                error=e.message,
            )

    def run_turn(self, thread_id: str, text: str, model_override: Optional[str] = None) -> TurnResult:
        """执行一个流式回合（不写用户消息），失败时直接抛出业务异常。

        Raises:
            TurnCancelled: 用户在回合结束前调用了 abort()。
            AgentStreamError: 流中出现 error 事件。
            StreamTruncatedError: 流结束但没有任何终止事件。
            NetworkError / ApiError / RateLimitError: 传输层失败。
        """

        if self._streaming:
            raise BusinessError(code="TURN_IN_PROGRESS", message="A turn is already streaming", http_status=409)
        start_time = time.time()
        log_ctx: Dict[str, Any] = {"trace_id": f"tr-{uuid4().hex}", "thread_id": thread_id}
        token = CancelToken()
        self._cancel = token
        self._streaming = True
        try:
            thread = self._store.get_thread(thread_id)
            reducer = TurnReducer(
                session_id=thread.agent_session_id,
                model=thread.model,
                strategy=self._config.tool_match_strategy,
            )
            self._state = reducer.state
            self._emit()

            req = TurnRequest(
                thread_id=thread_id,
                message=text,
                session_id=thread.agent_session_id,
                model_override=model_override,
            )
            self._log(
                logging.INFO,
                "Opening agent stream",
                log_ctx,
                resumed=bool(thread.agent_session_id),
                model_override=model_override,
            )
            try:
                self._consume(self._client.stream_turn(req, token), reducer, token)
                state = reducer.close(cancelled=token.is_cancelled)
            except TurnCancelled:
                raise
            except BusinessError as e:
                # 取消后传输层抛出的任何失败都按取消处理
                if token.is_cancelled:
                    raise TurnCancelled() from e
                raise
            if state.phase is TurnPhase.ABORTED:
                raise TurnCancelled()

            result = self._finish_turn(thread, state, log_ctx)
            self._log(
                logging.INFO,
                "Completed turn",
                log_ctx,
                elapsed_seconds=round(time.time() - start_time, 2),
                tool_calls=len(result.tool_calls),
                chars=len(result.content),
            )
            return result
        finally:
            self._state = TurnState()
            self._cancel = None
            self._streaming = False
            self._emit()

    def abort(self) -> bool:
        """中止当前回合。没有进行中的回合时返回 False。"""

        token = self._cancel
        if token is None or token.is_cancelled:
            return False
        token.cancel()
        return True

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _consume(self, events, reducer: TurnReducer, token: CancelToken) -> None:
        try:
            for event in events:
                # 取消之后已读到的事件一律丢弃
                if token.is_cancelled:
                    break
                try:
                    reducer.apply(event)
                finally:
                    self._emit()
        finally:
            close = getattr(events, "close", None)
            if close is not None:
                close()

    def _finish_turn(self, thread: Thread, state: TurnState, log_ctx: Dict[str, Any]) -> TurnResult:
        final_text = state.final_text or ""
        tool_calls = state.tools.snapshot()

        if self._config.persist_tool_messages:
            for call in tool_calls:
                self._store.add_tool_message(thread.id, call.name, call.input, call.output, call.status)

        assistant_rec: Optional[MessageRecord] = None
        if final_text:
            assistant_rec = self._store.add_assistant_message(thread.id, final_text)
            self._log(logging.INFO, "Stored assistant message", log_ctx, message_id=assistant_rec.id)

        self._persist_binding(thread, state, log_ctx)

        notified = False
        if self._notifier is not None and final_text:
            notified = self._notifier.maybe_notify(final_text)

        return TurnResult(
            status="done",
            thread_id=thread.id,
            content=final_text,
            assistant_message=assistant_rec,
            session_id=state.session_id,
            model=state.model,
            tool_calls=tool_calls,
            notified=notified,
        )

    def _persist_binding(self, thread: Thread, state: TurnState, log_ctx: Dict[str, Any]) -> None:
        if state.session_id and state.session_id != thread.agent_session_id:
            self._store.update_thread_binding(thread.id, session_id=state.session_id, model=state.model)
            self._log(logging.INFO, "Rebound agent session", log_ctx, session_id=state.session_id, model=state.model)
        elif state.model and state.model != thread.model:
            self._store.update_thread_binding(thread.id, model=state.model)
            self._log(logging.INFO, "Updated thread model", log_ctx, model=state.model)

    def _emit(self) -> None:
        for listener in self._listeners:
            listener(self._state)

    @staticmethod
    def _log(level: int, message: str, log_ctx: Dict[str, Any], **fields: Any) -> None:
        payload = dict(log_ctx)
        payload.update(fields)
        logger.log(level, message, extra={"extra": payload})
