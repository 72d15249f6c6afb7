"""紧急回复的桌面通知。

回合成功结束后，如果回复文本看起来很紧急，而用户此刻没有在看聊天界面，
就弹一条系统通知。是否触发由四个条件共同决定：

1. 视图不在前台（由宿主 UI 提供探测函数）；
2. 用户开启了通知（持久化的偏好）；
3. 平台通知后端可用；
4. 后端已获得通知权限。

紧急程度的判断是可替换的谓词，默认实现只是一个粗糙的关键字匹配。
"""

import re
from typing import Callable, Optional, Protocol

from jarvis_core.infrastructure.logging.logger import logger

URGENT_PATTERN = re.compile(r"(urgent|asap|action required|immediately|critical)", re.IGNORECASE)
NOTIFICATION_TITLE = "Jarvis: Urgent update"


def is_urgent(text: str) -> bool:
    if not text:
        return False
    return bool(URGENT_PATTERN.search(text))


class NotificationBackend(Protocol):
    """平台通知 API 的最小抽象。"""

    def permission_granted(self) -> bool:
        ...

    def show(self, title: str, body: str) -> None:
        ...


class UrgentNotifier:
    def __init__(
        self,
        backend: Optional[NotificationBackend] = None,
        *,
        enabled: bool = False,
        is_foreground: Optional[Callable[[], bool]] = None,
        predicate: Callable[[str], bool] = is_urgent,
        body_limit: int = 180,
    ):
        self.backend = backend
        self.enabled = enabled
        self._is_foreground = is_foreground or (lambda: True)
        self._predicate = predicate
        self._body_limit = body_limit

    def maybe_notify(self, text: str) -> bool:
        """满足全部条件时发出一条通知，返回是否真的发出。"""

        if self.backend is None or not self.enabled:
            return False
        if self._is_foreground():
            return False
        if not self.backend.permission_granted():
            return False
        if not self._predicate(text):
            return False
        self.backend.show(NOTIFICATION_TITLE, text[: self._body_limit])
        logger.info("notifier.sent", extra={"extra": {"chars": min(len(text), self._body_limit)}})
        return True
