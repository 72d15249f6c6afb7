"""工具调用台账。

一个回合内 Agent 可能并行调用多个工具，台账按开始顺序保存每次调用，
并把 tool_done / tool_error 事件对应到正确的条目：

- 事件带 messageId 时，优先按 messageId 匹配仍在运行的条目；该 id
  只对应已结束的条目时忽略事件；完全未知的 id 退回到按工具名匹配
  开始时没有 messageId 的运行中条目；
- 事件不带 messageId 时，按工具名匹配任一运行中的条目。

同名工具并发且都没有 messageId 时，无法区分哪个先结束。默认策略
FIRST_RUNNING 把结束事件归给最早开始的那个，与服务端的历史行为一致；
LAST_RUNNING 作为可选策略保留。
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Iterator, List, Optional

from jarvis_core.domain.thread import ToolStatus
from jarvis_core.infrastructure.logging.logger import logger


class ToolMatchStrategy(str, Enum):
    FIRST_RUNNING = "first_running"
    LAST_RUNNING = "last_running"


@dataclass
class ToolCall:
    """一次工具调用在 UI 上的状态。"""

    name: str
    input: str
    status: ToolStatus = "running"
    output: Optional[str] = None
    message_id: Optional[str] = None
    error: Optional[str] = None

    @property
    def is_running(self) -> bool:
        return self.status == "running"


class ToolCallLedger:
    def __init__(self, strategy: ToolMatchStrategy = ToolMatchStrategy.FIRST_RUNNING):
        self._strategy = ToolMatchStrategy(strategy)
        self._calls: List[ToolCall] = []

    def start(self, name: str, tool_input: str, message_id: Optional[str] = None) -> ToolCall:
        call = ToolCall(name=name, input=tool_input, message_id=message_id)
        self._calls.append(call)
        return call

    def resolve(
        self,
        name: str,
        output: Optional[str],
        *,
        failed: bool = False,
        message_id: Optional[str] = None,
        error: Optional[str] = None,
    ) -> Optional[ToolCall]:
        """把匹配到的运行中条目转为 done / error。

        找不到运行中的条目时返回 None；已结束的条目永远不会被再次修改。
        """

        call = self._find_running(name, message_id)
        if call is None:
            logger.warning(
                "ledger.unmatched_tool_result",
                extra={"extra": {"tool_name": name, "message_id": message_id}},
            )
            return None
        call.status = "error" if failed else "done"
        call.output = output
        if failed:
            call.error = error
        return call

    def _find_running(self, name: str, message_id: Optional[str]) -> Optional[ToolCall]:
        if message_id:
            same_id = [c for c in self._calls if c.message_id == message_id]
            for call in same_id:
                if call.is_running:
                    return call
            if same_id:
                return None
            # 未知的 messageId 只能对应开始时没有 id 的条目
            candidates = [c for c in self._calls if c.is_running and c.name == name and not c.message_id]
        else:
            candidates = [c for c in self._calls if c.is_running and c.name == name]
        if not candidates:
            return None
        if self._strategy is ToolMatchStrategy.LAST_RUNNING:
            return candidates[-1]
        return candidates[0]

    def snapshot(self) -> List[ToolCall]:
        """返回条目副本，调用方修改不会影响台账。"""

        return [replace(c) for c in self._calls]

    @property
    def running_count(self) -> int:
        return sum(1 for c in self._calls if c.is_running)

    def __len__(self) -> int:
        return len(self._calls)

    def __iter__(self) -> Iterator[ToolCall]:
        return iter(self.snapshot())
