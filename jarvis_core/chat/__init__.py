from jarvis_core.chat.controller import ChatSessionController, ControllerConfig, TurnResult

__all__ = ["ChatSessionController", "ControllerConfig", "TurnResult"]
