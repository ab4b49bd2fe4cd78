"""Transport 抽象接口。

会话层不直接依赖具体的 HTTP 库，而是依赖此协议：

- Transport.send(): 发起一次流式生成请求，返回 StreamResponse。
- StreamResponse: 暴露状态检查与逐块读取，读到 None 表示流结束。

实现者需要区分三类失败：连接失败 (NetworkError)、读取中途失败
(StreamReadError) 与用户取消 (GenerationCancelled)。
非 2xx 状态不在这里抛出，由会话层根据 ok/status_code 判断。
"""

from typing import Optional, Protocol, Union

from chat_core.domain.models import GenerationRequest
from chat_core.session.cancellation import CancellationHandle


class StreamResponse(Protocol):
    """流式响应读取器。"""

    status_code: int

    @property
    def ok(self) -> bool:
        ...

    async def read(self) -> Optional[Union[str, bytes]]:
        """读取下一个块；流结束时返回 None。"""

        ...

    async def aclose(self) -> None:
        """释放底层连接，可重复调用。"""

        ...


class Transport(Protocol):
    """生成服务的请求/响应通道。"""

    async def send(
        self,
        endpoint: str,
        request: GenerationRequest,
        cancellation: CancellationHandle,
    ) -> StreamResponse:
        ...
