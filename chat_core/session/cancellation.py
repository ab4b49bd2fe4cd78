"""协作式取消句柄。"""

import asyncio
from typing import Awaitable, Optional, TypeVar
from uuid import uuid4

from chat_core.domain.exceptions import GenerationCancelled


T = TypeVar("T")


class CancellationHandle:
    """一次生成会话的取消令牌。

    - abort(): 标记取消并唤醒所有通过 guard() 等待中的调用。
    - aborted: 读循环在每次读取之后、每个片段之前检查该标记。
    - guard(aw): 等待 aw，期间若被取消则放弃 aw 并抛出 GenerationCancelled。
    """

    def __init__(self, name: Optional[str] = None):
        self.id = name or f"gen-{uuid4().hex[:12]}"
        self._event = asyncio.Event()

    @property
    def aborted(self) -> bool:
        return self._event.is_set()

    def abort(self) -> None:
        self._event.set()

    def raise_if_aborted(self) -> None:
        if self.aborted:
            raise GenerationCancelled()

    async def guard(self, aw: Awaitable[T]) -> T:
        task = asyncio.ensure_future(aw)
        if self.aborted:
            task.cancel()
            raise GenerationCancelled()
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not task.done():
                task.cancel()
        if task in done:
            return task.result()
        raise GenerationCancelled()

    def __repr__(self) -> str:
        return f"CancellationHandle(id={self.id!r}, aborted={self.aborted})"
