"""Agent 服务 HTTP 客户端。

本模块负责：

1. 接收统一的 TurnRequest，转换为 Agent 服务的 JSON 请求体。
2. 以流式方式 POST 到 {agent_server_url}{agent_chat_path}。
3. 处理网络 / HTTP 异常，映射到 domain.exceptions 中的业务异常。
4. 把响应字节流交给 SSEDecoder，逐条产出强类型事件。

另外提供 health() / status() 两个探测接口，供 UI 判断 Agent 服务是否可用。
"""

from typing import Any, Dict, Iterator, Optional

import httpx

from jarvis_core.domain.events import AgentEvent
from jarvis_core.domain.exceptions import ApiError, NetworkError, RateLimitError, TurnCancelled
from jarvis_core.domain.models import AgentServerStatus, TurnRequest
from jarvis_core.infrastructure.logging.logger import logger
from jarvis_core.streaming.cancellation import CancelToken
from jarvis_core.streaming.decoder import SSEDecoder


class AgentServerClient:
    """外部 Agent 服务客户端实现。

    - name: 客户端名称（供日志使用）。
    - stream_turn: 对外统一的流式调用入口。
    """

    name = "agent-server"

    def __init__(self, settings):
        # Settings 里包含 agent_server_url、超时、连接器等配置
        self._settings = settings

    def stream_turn(self, req: TurnRequest, cancel_token: Optional[CancelToken] = None) -> Iterator[AgentEvent]:
        """执行一次流式回合，逐步 yield 事件。

        非 2xx 状态在读取任何事件之前就抛出；取消令牌触发后会关闭响应，
        此后由读取中断引起的异常统一转换为 TurnCancelled。
        """

        payload = self._build_payload(req)
        url = f"{self._base_url}{getattr(self._settings, 'agent_chat_path', '/api/chat')}"
        try:
            with httpx.Client(timeout=self._stream_timeout(), trust_env=False) as client:
                with client.stream(
                    "POST",
                    url,
                    json=payload,
                    headers={"Content-Type": "application/json", "Accept": "text/event-stream"},
                ) as resp:
                    if cancel_token is not None:
                        cancel_token.on_cancel(resp.close)
                    self._raise_for_status(resp)
                    decoder = SSEDecoder()
                    for chunk in resp.iter_bytes():
                        if cancel_token is not None and cancel_token.is_cancelled:
                            raise TurnCancelled()
                        yield from decoder.feed(chunk)
                    yield from decoder.flush()
                    if decoder.skipped_lines:
                        logger.info(
                            "agent_client.skipped_lines",
                            extra={"extra": {"thread_id": req.thread_id, "skipped": decoder.skipped_lines}},
                        )
        except (httpx.RequestError, httpx.StreamError) as e:
            if cancel_token is not None and cancel_token.is_cancelled:
                raise TurnCancelled()
            raise NetworkError(code="NETWORK_ERROR", message=str(e) or type(e).__name__)

    def health(self) -> Dict[str, Any]:
        """GET /api/health，返回服务端的 {ok, timestamp}。"""

        resp = self._get("/api/health")
        self._raise_for_status(resp)
        return resp.json()

    def status(self) -> AgentServerStatus:
        """GET /api/status。服务未配置时返回 503，但响应体仍是合法的状态 JSON。"""

        resp = self._get("/api/status")
        if resp.status_code not in (200, 503):
            self._raise_for_status(resp)
        data = resp.json()
        return AgentServerStatus(
            mode=data.get("mode") or "unknown",
            model=data.get("model"),
            description=data.get("description") or "",
            raw=data,
        )

    @property
    def _base_url(self) -> str:
        return str(getattr(self._settings, "agent_server_url", "http://localhost:3001")).rstrip("/")

    def _stream_timeout(self) -> httpx.Timeout:
        # 连接用普通超时，读取超时单独放宽，长时间的工具调用期间服务端可能很久不发数据
        return httpx.Timeout(
            self._settings.http_timeout,
            read=getattr(self._settings, "stream_read_timeout", None),
        )

    def _build_payload(self, req: TurnRequest) -> dict:
        if not req.connectors:
            connectors = getattr(self._settings, "agent_connectors", None) or []
            if connectors:
                req = TurnRequest(
                    thread_id=req.thread_id,
                    message=req.message,
                    session_id=req.session_id,
                    model_override=req.model_override,
                    connectors=list(connectors),
                )
        return req.to_payload()

    def _get(self, path: str) -> httpx.Response:
        try:
            with httpx.Client(timeout=self._settings.http_timeout, trust_env=False) as client:
                return client.get(f"{self._base_url}{path}")
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e) or type(e).__name__)

    @staticmethod
    def _raise_for_status(resp) -> None:
        if resp.status_code == 429:
            # 限流交给上层决定是否重试
            raise RateLimitError(code="RATE_LIMIT", message="Agent server rate limit", http_status=429)
        if resp.status_code >= 400:
            raise ApiError(
                code="API_ERROR",
                message=f"Agent server error: {resp.status_code}",
                http_status=resp.status_code,
            )
