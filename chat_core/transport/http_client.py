"""基于 httpx 的 Transport 实现。

本模块负责：

1. 把 GenerationRequest 转换为生成服务的 HTTP 请求（POST JSON，Accept: text/event-stream）。
2. 以流式模式发送请求，并把响应包装成 StreamResponse 逐块读取。
3. 把 httpx 的网络/读取异常转换为统一的业务异常。
4. 拉取服务端 /metrics 指标。
"""

from typing import Any, AsyncIterator, Optional

import httpx

from chat_core.domain.exceptions import (
    NetworkError,
    StreamReadError,
    TransportError,
)
from chat_core.domain.models import GenerationRequest, ServerMetrics
from chat_core.session.cancellation import CancellationHandle


STREAM_HEADERS = {
    "Content-Type": "application/json",
    "Accept": "text/event-stream",
}


class HttpxStreamResponse:
    """httpx.Response 的流式读取包装。

    若 client 由本对象持有，aclose() 时一并关闭。
    """

    def __init__(self, response: httpx.Response, client: Optional[httpx.AsyncClient] = None):
        self._response = response
        self._client = client
        self._chunks: Optional[AsyncIterator[str]] = None
        self._closed = False

    @property
    def status_code(self) -> int:
        return self._response.status_code

    @property
    def ok(self) -> bool:
        return self._response.is_success

    async def read(self) -> Optional[str]:
        if self._chunks is None:
            self._chunks = self._response.aiter_text()
        try:
            return await self._chunks.__anext__()
        except StopAsyncIteration:
            return None
        except (httpx.HTTPError, httpx.StreamError) as e:
            raise StreamReadError(code="STREAM_READ_ERROR", message=str(e) or type(e).__name__)

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._response.aclose()
        finally:
            if self._client is not None:
                await self._client.aclose()


class HttpxTransport:
    """生成服务客户端。

    - client: 可注入共享的 httpx.AsyncClient；为空时每次请求新建并在响应释放时关闭。
    """

    def __init__(self, settings, client: Optional[httpx.AsyncClient] = None):
        # Settings 里包含 api_url、metrics_url、超时等配置
        self._settings = settings
        self._client = client

    def _new_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._settings.http_timeout, trust_env=False)

    async def send(
        self,
        endpoint: str,
        request: GenerationRequest,
        cancellation: CancellationHandle,
    ) -> HttpxStreamResponse:
        """发送流式请求；取消句柄在等待响应头期间同样生效。"""

        owned = self._client is None
        client = self._new_client() if owned else self._client
        # 响应交给 HttpxStreamResponse 之前，任何退出路径（含取消）都要关闭自建的 client
        handed_off = False
        try:
            http_request = client.build_request(
                "POST",
                endpoint,
                json=request.to_payload(),
                headers=STREAM_HEADERS,
            )
            response = await cancellation.guard(client.send(http_request, stream=True))
            handed_off = True
        except httpx.RequestError as e:
            # 网络错误：DNS 失败、连接超时等
            raise NetworkError(code="NETWORK_ERROR", message=str(e) or type(e).__name__, endpoint=endpoint)
        finally:
            if owned and not handed_off:
                await client.aclose()
        return HttpxStreamResponse(response, client if owned else None)

    async def fetch_metrics(self) -> ServerMetrics:
        """拉取生成服务的运行指标。"""

        url = self._settings.metrics_url
        try:
            if self._client is not None:
                resp = await self._client.get(url)
            else:
                async with self._new_client() as client:
                    resp = await client.get(url)
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e) or type(e).__name__, endpoint=url)
        if resp.status_code >= 400:
            raise TransportError(resp.status_code, endpoint=url)
        data: Any = resp.json()
        if not isinstance(data, dict):
            raise TransportError(resp.status_code, message="Metrics payload is not an object", endpoint=url)
        return ServerMetrics.from_payload(data)
