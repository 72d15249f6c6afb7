"""Agent 服务推送的流式事件模型。

服务端每行输出 ``data: {json}``，JSON 对象用 ``type`` 字段区分事件种类。
本模块把这些字典转换成不可变的 dataclass，上层 reducer 通过 isinstance
分发，不再直接接触原始 JSON。

字段命名沿用 Python 风格（tool_name / message_id），与线上的
camelCase 字段（toolName / messageId）在 parse_event 中一一对应。
"""

import json
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Union


@dataclass(frozen=True)
class SessionInit:
    session_id: str
    model: str


@dataclass(frozen=True)
class TextDelta:
    content: str


@dataclass(frozen=True)
class ToolStart:
    tool_name: str
    tool_input: str
    message_id: Optional[str] = None


@dataclass(frozen=True)
class ToolDone:
    tool_name: str
    tool_output: str
    message_id: Optional[str] = None


@dataclass(frozen=True)
class ToolError:
    tool_name: str
    tool_output: str
    error: Optional[str] = None
    message_id: Optional[str] = None


@dataclass(frozen=True)
class MemorySaved:
    title: str
    tier: str


@dataclass(frozen=True)
class Done:
    content: str


@dataclass(frozen=True)
class ErrorEvent:
    error: str


AgentEvent = Union[SessionInit, TextDelta, ToolStart, ToolDone, ToolError, MemorySaved, Done, ErrorEvent]


def _text(value: Any) -> str:
    """把任意 JSON 值规整为字符串；工具入参/出参可能是对象。"""

    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False)


def _optional_text(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return _text(value)


_PARSERS: Dict[str, Callable[[Dict[str, Any]], AgentEvent]] = {
    "session_init": lambda d: SessionInit(session_id=_text(d.get("sessionId")), model=_text(d.get("model"))),
    "text": lambda d: TextDelta(content=_text(d.get("content"))),
    "tool_start": lambda d: ToolStart(
        tool_name=_text(d.get("toolName")),
        tool_input=_text(d.get("toolInput")),
        message_id=_optional_text(d.get("messageId")),
    ),
    "tool_done": lambda d: ToolDone(
        tool_name=_text(d.get("toolName")),
        tool_output=_text(d.get("toolOutput")),
        message_id=_optional_text(d.get("messageId")),
    ),
    "tool_error": lambda d: ToolError(
        tool_name=_text(d.get("toolName")),
        tool_output=_text(d.get("toolOutput")),
        error=_optional_text(d.get("error")),
        message_id=_optional_text(d.get("messageId")),
    ),
    "memory_saved": lambda d: MemorySaved(title=_text(d.get("title")), tier=_text(d.get("tier"))),
    "done": lambda d: Done(content=_text(d.get("content"))),
    "error": lambda d: ErrorEvent(error=_text(d.get("error")) or "Unknown agent error"),
}


def parse_event(payload: Any) -> Optional[AgentEvent]:
    """将一条已解析的 JSON 转换为事件对象。

    非对象、缺少 type 或 type 未知时返回 None，由调用方丢弃。
    """

    if not isinstance(payload, dict):
        return None
    kind = payload.get("type")
    if not isinstance(kind, str):
        return None
    parser = _PARSERS.get(kind)
    if parser is None:
        return None
    return parser(payload)


def event_type(event: AgentEvent) -> str:
    """返回事件在线协议中的 type 名称，主要用于日志。"""

    for name, cls in EVENT_TYPES.items():
        if isinstance(event, cls):
            return name
    raise TypeError(f"Unknown agent event: {event!r}")


EVENT_TYPES: Dict[str, type] = {
    "session_init": SessionInit,
    "text": TextDelta,
    "tool_start": ToolStart,
    "tool_done": ToolDone,
    "tool_error": ToolError,
    "memory_saved": MemorySaved,
    "done": Done,
    "error": ErrorEvent,
}
