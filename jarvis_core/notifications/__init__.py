from jarvis_core.notifications.notifier import NotificationBackend, UrgentNotifier, is_urgent

__all__ = ["NotificationBackend", "UrgentNotifier", "is_urgent"]
