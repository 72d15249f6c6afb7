"""Jarvis Core 顶层包。

该包提供个人看板助手 "Jarvis" 聊天面板的核心实现，
包括配置加载、领域模型、Agent 服务流式协议解析、
回合状态机、会话存储与紧急通知等能力。
"""

from jarvis_core.chat import ChatSessionController, TurnResult

__all__ = ["ChatSessionController", "TurnResult"]
