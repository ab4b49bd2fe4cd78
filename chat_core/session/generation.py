"""生成会话核心模块。

一次 GenerationSession 对应一次流式请求/响应：追加用户消息与助手占位消息、
调用 Transport、逐块解码并把片段交给 store 写入占位消息，最后无论成功、失败
还是取消，都重置 store 的瞬时状态并释放响应读取器。

所有异常都在本模块边界被捕获并转换为 GenerationState.error，调用方不会收到异常
（外层任务被 cancel 时除外，CancelledError 会在收尾后继续向上抛出）。
"""

import asyncio
import logging
import time
from typing import Any, Callable, Dict, Optional
from uuid import uuid4

from chat_core.domain.conversation import Conversation
from chat_core.domain.exceptions import (
    BusinessError,
    GenerationCancelled,
    ReleaseError,
    StreamReadError,
    TransportError,
)
from chat_core.domain.models import GenerationRequest, GenerationState, Message
from chat_core.infrastructure.logging.logger import logger
from chat_core.session.cancellation import CancellationHandle
from chat_core.streaming.decoder import StreamDecoder, Terminal
from chat_core.transport.base import StreamResponse, Transport


FragmentSink = Callable[[Message, str], None]
StateListener = Callable[[], None]

DEFAULT_ERROR_PREFIX = "发送消息失败："


def stop_generation(state: GenerationState) -> bool:
    """取消当前生成。

    存在取消句柄时触发它、清空句柄并把 is_generating 置为 False；
    否则什么也不做。返回是否真的执行了取消，重复调用结果一致。
    """

    handle = state.cancellation
    if handle is None:
        return False
    handle.abort()
    state.cancellation = None
    state.is_generating = False
    return True


class GenerationSession:
    """一次流式生成的生命周期。

    - state: store 持有的 GenerationState，会话只在自己仍是“当前会话”时改写它。
    - on_fragment: 片段回调，由 store 负责把文本追加到目标消息。
    - on_state: 状态变化回调（可选），用于通知展示层。
    """

    def __init__(
        self,
        state: GenerationState,
        transport: Transport,
        endpoint: str,
        on_fragment: FragmentSink,
        on_state: Optional[StateListener] = None,
        error_prefix: str = DEFAULT_ERROR_PREFIX,
    ):
        self._state = state
        self._transport = transport
        self._endpoint = endpoint
        self._on_fragment = on_fragment
        self._on_state = on_state
        self._error_prefix = error_prefix
        self.handle: Optional[CancellationHandle] = None
        self.conversation_id: Optional[str] = None
        self.target: Optional[Message] = None

    async def start(self, conversation: Optional[Conversation], content: str) -> None:
        """执行一次生成。

        Args:
            conversation: 目标会话；为 None 时直接返回。
            content: 用户输入，同时作为请求的 prompt。
        """

        trace_id = f"tr-{uuid4().hex}"
        log_ctx: Dict[str, Any] = {"trace_id": trace_id}
        if conversation is None:
            self._log(logging.WARNING, "No active conversation, message dropped", log_ctx)
            return

        # 1. 初始化瞬时状态与取消句柄
        handle = CancellationHandle()
        self.handle = handle
        self.conversation_id = conversation.id
        log_ctx.update(conversation_id=conversation.id, generation_id=handle.id)
        state = self._state
        state.is_loading = True
        state.is_generating = True
        state.cancellation = handle
        state.error = None

        # 2-3. 用户消息 + 助手占位消息
        conversation.append(Message(role="user", content=content))
        self.target = conversation.append(Message(role="assistant", content=""))
        self._notify_state()

        start_time = time.time()
        response: Optional[StreamResponse] = None
        outcome = "completed"
        try:
            # 4. 发起请求
            self._log(logging.INFO, "Sending message", log_ctx, endpoint=self._endpoint)
            response = await self._transport.send(
                self._endpoint,
                GenerationRequest(prompt=content, stream=True),
                handle,
            )
            # 响应与取消同时到达时以取消为准
            handle.raise_if_aborted()
            # 5. 非 2xx 直接失败，跳过读循环
            if not response.ok:
                raise TransportError(response.status_code, endpoint=self._endpoint)
            # 6. 读循环
            await self._read_loop(response, handle, self.target, log_ctx)
        except GenerationCancelled:
            outcome = "aborted"
            self._log(logging.INFO, "Generation aborted", log_ctx)
        except asyncio.CancelledError:
            outcome = "aborted"
            handle.abort()
            self._log(logging.INFO, "Generation task cancelled", log_ctx)
            raise
        except BusinessError as e:
            outcome = "failed"
            self._record_error(handle, e.message, log_ctx, code=e.code, http_status=e.http_status)
        except Exception as e:
            outcome = "failed"
            self._record_error(handle, str(e) or type(e).__name__, log_ctx, code="UNEXPECTED_ERROR")
        finally:
            await self._finalize(handle, response, log_ctx)
            self._log(
                logging.INFO,
                "Generation finished",
                log_ctx,
                outcome=outcome,
                elapsed_seconds=round(time.time() - start_time, 2),
                content_length=len(self.target.content),
            )

    async def _read_loop(
        self,
        response: StreamResponse,
        handle: CancellationHandle,
        target: Message,
        log_ctx: Dict[str, Any],
    ) -> None:
        """逐块读取并应用片段，收到 Terminal 或流结束时返回。"""

        decoder = StreamDecoder()
        chunk_count = 0
        while True:
            handle.raise_if_aborted()
            try:
                chunk = await handle.guard(response.read())
            except (BusinessError, GenerationCancelled):
                raise
            except Exception as e:
                raise StreamReadError(code="STREAM_READ_ERROR", message=str(e) or type(e).__name__)
            # 读取期间被取消：丢弃已读到的块
            handle.raise_if_aborted()

            if chunk is None:
                events = decoder.flush()
            else:
                chunk_count += 1
                events = decoder.feed(chunk)
            for event in events:
                handle.raise_if_aborted()
                if isinstance(event, Terminal):
                    self._log(logging.INFO, "Received [DONE] signal", log_ctx, chunks=chunk_count)
                    return
                self._on_fragment(target, event.text)
            if chunk is None:
                self._log(logging.INFO, "Stream complete", log_ctx, chunks=chunk_count)
                return

    def _record_error(
        self,
        handle: CancellationHandle,
        cause: str,
        log_ctx: Dict[str, Any],
        **fields: Any,
    ) -> None:
        self._log(logging.ERROR, "Generation failed", log_ctx, error=cause, **fields)
        if self._owns_state(handle):
            self._state.error = f"{self._error_prefix}{cause}"

    async def _finalize(
        self,
        handle: CancellationHandle,
        response: Optional[StreamResponse],
        log_ctx: Dict[str, Any],
    ) -> None:
        # 先重置状态，释放失败不能影响状态收尾
        if self._owns_state(handle):
            self._state.is_loading = False
            self._state.is_generating = False
            self._state.cancellation = None
            self._notify_state()
        if response is None:
            return
        try:
            await response.aclose()
        except Exception as e:
            err = ReleaseError(code="RELEASE_ERROR", message=str(e) or type(e).__name__)
            self._log(logging.ERROR, "Error closing reader", log_ctx, error=err.message, code=err.code)

    def _owns_state(self, handle: CancellationHandle) -> bool:
        # stop() 之后句柄被清空；被新的会话接管时句柄已换成别的
        current = self._state.cancellation
        return current is None or current is handle

    def _notify_state(self) -> None:
        if self._on_state is not None:
            self._on_state()

    @staticmethod
    def _log(level: int, message: str, log_ctx: Dict[str, Any], **fields: Any) -> None:
        payload = dict(log_ctx)
        payload.update(fields)
        logger.log(level, message, extra={"extra": payload})
