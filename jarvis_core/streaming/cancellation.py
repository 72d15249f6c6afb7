"""回合级取消令牌。

UI 线程调用 cancel()，读流的线程在每个事件之前检查 is_cancelled。
注册的回调（通常是关闭 HTTP 响应）会在取消时执行，使阻塞中的读取尽快返回。
"""

import threading
from typing import Callable, List, Optional

from jarvis_core.domain.exceptions import TurnCancelled
from jarvis_core.infrastructure.logging.logger import logger


class CancelToken:
    """单个流式回合的线程安全取消令牌。

    cancel() 可重复调用；回调只执行一次，且在锁外执行。
    """

    def __init__(self):
        self._cancelled = False
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: List[Callable[[], None]] = []

    def cancel(self) -> None:
        with self._lock:
            if self._cancelled:
                return
            self._cancelled = True
            callbacks = list(self._callbacks)
            self._callbacks.clear()

        self._event.set()

        for callback in callbacks:
            try:
                callback()
            except Exception as exc:
                # 回调失败不影响取消本身
                logger.warning("cancel.callback_failed", extra={"extra": {"error": str(exc)}})

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._event.wait(timeout=timeout)

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise TurnCancelled()

    def on_cancel(self, callback: Callable[[], None]) -> None:
        """注册取消回调；若已取消则立即执行。"""

        with self._lock:
            if not self._cancelled:
                self._callbacks.append(callback)
                return
        callback()
