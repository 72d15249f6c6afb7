from dataclasses import dataclass
from datetime import datetime
from typing import List, Literal, Optional, Protocol


Role = Literal["user", "assistant", "tool"]
ToolStatus = Literal["running", "done", "error"]


@dataclass
class Thread:
    id: str
    title: str
    created_at: datetime
    last_message_at: datetime
    agent_session_id: Optional[str] = None
    model: Optional[str] = None


@dataclass
class MessageRecord:
    id: str
    thread_id: str
    role: Role
    content: str
    created_at: datetime
    tool_name: Optional[str] = None
    tool_input: Optional[str] = None
    tool_output: Optional[str] = None
    tool_status: Optional[ToolStatus] = None


class ThreadStore(Protocol):
    """会话存储协议。

    所有方法要么成功，要么抛出 BusinessError；控制器只通过这些调用
    读写会话与消息，不关心底层是文件、数据库还是远端服务。
    """

    def create_thread(self, title: str, model: Optional[str] = None) -> Thread:
        ...

    def get_thread(self, thread_id: str) -> Thread:
        ...

    def list_threads(self, limit: Optional[int] = None) -> List[Thread]:
        ...

    def rename_thread(self, thread_id: str, title: str) -> Thread:
        ...

    def delete_thread(self, thread_id: str) -> None:
        ...

    def update_thread_binding(
        self,
        thread_id: str,
        session_id: Optional[str] = None,
        model: Optional[str] = None,
    ) -> Thread:
        ...

    def add_user_message(self, thread_id: str, content: str) -> MessageRecord:
        ...

    def add_assistant_message(self, thread_id: str, content: str) -> MessageRecord:
        ...

    def add_tool_message(
        self,
        thread_id: str,
        tool_name: str,
        tool_input: Optional[str],
        tool_output: Optional[str],
        tool_status: ToolStatus,
    ) -> MessageRecord:
        ...

    def list_messages(self, thread_id: str, limit: Optional[int] = None) -> List[MessageRecord]:
        ...
