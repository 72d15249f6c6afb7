"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于在控制器或 UI 层做统一捕获与用户提示。
"""


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "STORE_READ_ERROR"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 thread_id、status 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class NetworkError(BusinessError):
    """网络层错误，例如连接失败、超时等。"""


class ApiError(BusinessError):
    """Agent 服务返回非 2xx 状态或缺少响应体时抛出。"""


class RateLimitError(BusinessError):
    """Agent 服务限流（HTTP 429）。"""


class AgentStreamError(BusinessError):
    """流中出现 error 事件，message 即服务端给出的可读描述。"""

    def __init__(self, message: str, **extra):
        super().__init__(code="AGENT_ERROR", message=message, http_status=502, **extra)


class StreamTruncatedError(BusinessError):
    """流在没有 done / error 终止事件的情况下结束。"""

    DEFAULT_MESSAGE = "Agent stream ended unexpectedly. Check that the agent server is running."

    def __init__(self, message: str = DEFAULT_MESSAGE, **extra):
        super().__init__(code="STREAM_TRUNCATED", message=message, http_status=502, **extra)


class TurnCancelled(BusinessError):
    """用户主动中止当前回合。

    这不是失败：控制器据此跳过错误消息与一切持久化。
    """

    def __init__(self, message: str = "Turn cancelled by user", **extra):
        super().__init__(code="TURN_CANCELLED", message=message, http_status=499, **extra)
