"""对外 API 服务模块。

提供简化的函数接口供上层应用（Web 后端、脚本）调用，
内部复用一个默认的 ChatSessionController 单例。
"""

from typing import Any, Dict, Optional

from jarvis_core.chat.controller import ChatSessionController, TurnResult
from jarvis_core.config.settings import settings
from jarvis_core.domain.thread import MessageRecord, Thread, ThreadStore
from jarvis_core.infrastructure.logging.logger import logger
from jarvis_core.infrastructure.storage.json_store import JsonThreadStore
from jarvis_core.notifications.notifier import UrgentNotifier
from jarvis_core.providers import create_agent_client


_store: Optional[ThreadStore] = None
_controller: Optional[ChatSessionController] = None


def get_default_controller() -> ChatSessionController:
    """获取默认的会话控制器实例（单例）。"""
    global _store, _controller
    if _controller is None:
        if _store is None:
            _store = JsonThreadStore(root=settings.storage_root)
        _controller = ChatSessionController(
            store=_store,
            client=create_agent_client(),
            notifier=UrgentNotifier(
                enabled=settings.notifications_enabled,
                body_limit=settings.notification_body_limit,
            ),
        )
    return _controller


def run_chat(
    user_input: str,
    thread_id: Optional[str] = None,
    model_override: Optional[str] = None,
) -> Dict[str, Any]:
    """发送一条消息并等待回合结束。

    Args:
        user_input: 用户输入内容
        thread_id: 会话ID（可选，不提供则使用当前会话或新建）
        model_override: 仅本回合生效的模型（可选）

    Returns:
        包含会话ID、回合状态、助手消息与工具调用摘要的字典
    """
    controller = get_default_controller()
    try:
        if thread_id:
            controller.select_thread(thread_id)
        result = controller.send(user_input, model_override=model_override)
    except Exception as e:
        logger.error(f"Chat failed: {e}", extra={"extra": {
            "thread_id": thread_id,
            "error": str(e),
        }})
        raise
    if result is None:
        return {"thread_id": controller.active_thread_id, "status": "skipped"}
    return _result_to_dict(result)


def abort_chat() -> bool:
    """中止默认控制器上正在进行的回合。"""
    return get_default_controller().abort()


def list_threads() -> list[Dict[str, Any]]:
    """列出最近的会话。"""
    return [_thread_to_dict(t) for t in get_default_controller().list_threads()]


def get_thread_messages(thread_id: str) -> list[Dict[str, Any]]:
    """获取会话的所有消息。"""
    return [_message_to_dict(m) for m in get_default_controller().list_messages(thread_id)]


def delete_thread(thread_id: str) -> Optional[str]:
    """删除会话，返回删除后的当前会话ID。"""
    return get_default_controller().delete_thread(thread_id)


def agent_status() -> Dict[str, Any]:
    """查询 Agent 服务的运行模式。"""
    status = create_agent_client().status()
    return {
        "mode": status.mode,
        "model": status.model,
        "description": status.description,
        "configured": status.configured,
    }


def _result_to_dict(result: TurnResult) -> Dict[str, Any]:
    return {
        "thread_id": result.thread_id,
        "status": result.status,
        "content": result.content,
        "assistant_message": _message_to_dict(result.assistant_message) if result.assistant_message else None,
        "session_id": result.session_id,
        "model": result.model,
        "tool_calls": [
            {"name": c.name, "status": c.status, "output": c.output, "message_id": c.message_id}
            for c in result.tool_calls
        ],
        "error": result.error,
    }


def _thread_to_dict(t: Thread) -> Dict[str, Any]:
    return {
        "id": t.id,
        "title": t.title,
        "agent_session_id": t.agent_session_id,
        "model": t.model,
        "created_at": t.created_at.isoformat(),
        "last_message_at": t.last_message_at.isoformat(),
    }


def _message_to_dict(m: MessageRecord) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "id": m.id,
        "thread_id": m.thread_id,
        "role": m.role,
        "content": m.content,
        "created_at": m.created_at.isoformat(),
    }
    if m.role == "tool":
        payload.update(
            tool_name=m.tool_name,
            tool_input=m.tool_input,
            tool_output=m.tool_output,
            tool_status=m.tool_status,
        )
    return payload
