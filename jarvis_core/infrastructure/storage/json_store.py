import json
import os
import shutil
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional
from uuid import uuid4

from jarvis_core.config.settings import settings
from jarvis_core.domain.exceptions import BusinessError
from jarvis_core.domain.thread import MessageRecord, Thread, ThreadStore, ToolStatus


def _iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _parse_dt(value: Any) -> datetime:
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


class JsonThreadStore(ThreadStore):
    """基于目录的会话存储：每个会话一个目录，meta.json + messages.jsonl。"""

    def __init__(self, root: str | Path | None = None, title_limit: Optional[int] = None):
        self._root = Path(root or settings.storage_root).resolve()
        self._thread_root = self._root / "threads"
        self._thread_root.mkdir(parents=True, exist_ok=True)
        self._title_limit = title_limit or settings.thread_title_limit

    # ------------------------------------------------------------------
    # Threads
    # ------------------------------------------------------------------

    def create_thread(self, title: str, model: Optional[str] = None) -> Thread:
        tid = f"t-{uuid4().hex}"
        tdir = self._thread_root / tid
        tdir.mkdir(parents=True, exist_ok=True)
        now = datetime.now(timezone.utc)
        thread = Thread(
            id=tid,
            title=title[: self._title_limit],
            created_at=now,
            last_message_at=now,
            model=model,
        )
        self._write_meta(tdir, thread)
        return thread

    def get_thread(self, thread_id: str) -> Thread:
        meta_path = self._thread_root / thread_id / "meta.json"
        if not meta_path.exists():
            raise BusinessError(code="THREAD_NOT_FOUND", message=thread_id, http_status=404)
        try:
            data = json.loads(meta_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise BusinessError(code="STORE_READ_ERROR", message=str(e))
        return self._to_thread(data)

    def list_threads(self, limit: Optional[int] = None) -> List[Thread]:
        """按最近活动时间倒序返回会话。"""

        items: List[Thread] = []
        for tdir in self._thread_root.glob("*/"):
            meta_path = tdir / "meta.json"
            if not meta_path.exists():
                continue
            try:
                items.append(self._to_thread(json.loads(meta_path.read_text(encoding="utf-8"))))
            except (OSError, ValueError, KeyError):
                continue
        items.sort(key=lambda t: t.last_message_at, reverse=True)
        return items[: limit or settings.list_threads_limit]

    def rename_thread(self, thread_id: str, title: str) -> Thread:
        thread = self.get_thread(thread_id)
        thread.title = title[: self._title_limit]
        self._write_meta(self._thread_root / thread_id, thread)
        return thread

    def delete_thread(self, thread_id: str) -> None:
        tdir = self._thread_root / thread_id
        if not tdir.exists():
            raise BusinessError(code="THREAD_NOT_FOUND", message=thread_id, http_status=404)
        try:
            shutil.rmtree(tdir)
        except OSError as e:
            raise BusinessError(code="STORE_DELETE_ERROR", message=str(e))

    def update_thread_binding(
        self,
        thread_id: str,
        session_id: Optional[str] = None,
        model: Optional[str] = None,
    ) -> Thread:
        """只覆盖显式给出的字段，None 表示保持原值。"""

        thread = self.get_thread(thread_id)
        if session_id:
            thread.agent_session_id = session_id
        if model:
            thread.model = model
        self._write_meta(self._thread_root / thread_id, thread)
        return thread

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def add_user_message(self, thread_id: str, content: str) -> MessageRecord:
        return self._append(thread_id, role="user", content=content)

    def add_assistant_message(self, thread_id: str, content: str) -> MessageRecord:
        return self._append(thread_id, role="assistant", content=content)

    def add_tool_message(
        self,
        thread_id: str,
        tool_name: str,
        tool_input: Optional[str],
        tool_output: Optional[str],
        tool_status: ToolStatus,
    ) -> MessageRecord:
        # 工具消息不刷新会话的活动时间
        return self._append(
            thread_id,
            role="tool",
            content=tool_output or "",
            touch=False,
            tool_name=tool_name,
            tool_input=tool_input,
            tool_output=tool_output,
            tool_status=tool_status,
        )

    def list_messages(self, thread_id: str, limit: Optional[int] = None) -> List[MessageRecord]:
        msgs_path = self._thread_root / thread_id / "messages.jsonl"
        items: List[MessageRecord] = []
        if not msgs_path.exists():
            return items
        for line in msgs_path.read_text(encoding="utf-8").splitlines():
            try:
                items.append(self._to_message(json.loads(line)))
            except (ValueError, KeyError):
                continue
        items.sort(key=lambda m: m.created_at)
        return items[: limit or settings.list_messages_limit]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _append(self, thread_id: str, role: str, content: str, touch: bool = True, **tool_fields: Any) -> MessageRecord:
        thread = self.get_thread(thread_id)
        tdir = self._thread_root / thread_id
        now = datetime.now(timezone.utc)
        message = MessageRecord(
            id=f"m-{uuid4().hex}",
            thread_id=thread_id,
            role=role,  # type: ignore[arg-type]
            content=content,
            created_at=now,
            **tool_fields,
        )
        try:
            payload = asdict(message)
            payload["created_at"] = _iso(message.created_at)
            with (tdir / "messages.jsonl").open("a", encoding="utf-8") as f:
                f.write(json.dumps(payload, ensure_ascii=False) + "\n")
        except OSError as e:
            raise BusinessError(code="STORE_WRITE_ERROR", message=str(e))
        if touch:
            thread.last_message_at = now
            self._write_meta(tdir, thread)
        return message

    def _write_meta(self, tdir: Path, thread: Thread) -> None:
        meta_path = tdir / "meta.json"
        tmp_path = tdir / f"meta.{uuid4().hex}.json.tmp"
        obj = {
            "id": thread.id,
            "title": thread.title,
            "agent_session_id": thread.agent_session_id,
            "model": thread.model,
            "created_at": _iso(thread.created_at),
            "last_message_at": _iso(thread.last_message_at),
        }
        try:
            tmp_path.write_text(json.dumps(obj, ensure_ascii=False), encoding="utf-8")
            os.replace(tmp_path, meta_path)
        except OSError as e:
            raise BusinessError(code="STORE_WRITE_ERROR", message=str(e))

    @staticmethod
    def _to_thread(data: Dict[str, Any]) -> Thread:
        return Thread(
            id=data["id"],
            title=data.get("title") or "",
            created_at=_parse_dt(data["created_at"]),
            last_message_at=_parse_dt(data.get("last_message_at") or data["created_at"]),
            agent_session_id=data.get("agent_session_id"),
            model=data.get("model"),
        )

    @staticmethod
    def _to_message(data: Dict[str, Any]) -> MessageRecord:
        return MessageRecord(
            id=data["id"],
            thread_id=data["thread_id"],
            role=data["role"],
            content=data.get("content") or "",
            created_at=_parse_dt(data["created_at"]),
            tool_name=data.get("tool_name"),
            tool_input=data.get("tool_input"),
            tool_output=data.get("tool_output"),
            tool_status=data.get("tool_status"),
        )
