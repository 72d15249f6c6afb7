"""SSE 字节流解码器。

Agent 服务的响应体是按任意大小分块到达的字节流，每个逻辑行形如::

    data: {"type": "text", "content": "Hello"}

解码器负责：
1. 跨块拼接被截断的行（包括被截断的 UTF-8 多字节字符）。
2. 识别 ``data: `` 前缀并把剩余部分按 JSON 解析。
3. 丢弃无前缀、非 JSON、未知类型的行，单行损坏不会中断整个流。
"""

import codecs
import json
from typing import Iterable, Iterator, List, Optional

from jarvis_core.domain.events import AgentEvent, parse_event
from jarvis_core.infrastructure.logging.logger import logger

DATA_PREFIX = "data: "


class SSEDecoder:
    """增量解码器，feed() 每次返回本块内完整行对应的事件。"""

    def __init__(self, prefix: str = DATA_PREFIX):
        self._prefix = prefix
        self._text_decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self.skipped_lines = 0

    def feed(self, chunk: bytes) -> List[AgentEvent]:
        self._buffer += self._text_decoder.decode(chunk)
        lines = self._buffer.split("\n")
        self._buffer = lines.pop()
        return self._decode_lines(lines)

    def flush(self) -> List[AgentEvent]:
        """流结束时解码尚未以换行结尾的最后一行。"""

        tail = self._buffer + self._text_decoder.decode(b"", final=True)
        self._buffer = ""
        return self._decode_lines([tail]) if tail else []

    def _decode_lines(self, lines: List[str]) -> List[AgentEvent]:
        events: List[AgentEvent] = []
        for raw in lines:
            event = self.decode_line(raw)
            if event is not None:
                events.append(event)
        return events

    def decode_line(self, raw: str) -> Optional[AgentEvent]:
        line = raw.rstrip("\r")
        if not line.startswith(self._prefix):
            if line:
                self.skipped_lines += 1
            return None
        try:
            payload = json.loads(line[len(self._prefix):])
        except json.JSONDecodeError:
            self.skipped_lines += 1
            logger.debug("sse.malformed_line", extra={"extra": {"line": line[:200]}})
            return None
        event = parse_event(payload)
        if event is None:
            self.skipped_lines += 1
            logger.debug("sse.unknown_event", extra={"extra": {"line": line[:200]}})
        return event


def iter_events(chunks: Iterable[bytes], decoder: Optional[SSEDecoder] = None) -> Iterator[AgentEvent]:
    """把字节块序列转换为事件序列（惰性、一次性）。"""

    decoder = decoder or SSEDecoder()
    for chunk in chunks:
        if not chunk:
            continue
        yield from decoder.feed(chunk)
    yield from decoder.flush()
