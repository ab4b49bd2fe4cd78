import asyncio

import pytest

from chat_core.domain.exceptions import GenerationCancelled
from chat_core.domain.models import GenerationState
from chat_core.session.cancellation import CancellationHandle
from chat_core.session.generation import stop_generation


async def test_guard_returns_result():
    handle = CancellationHandle()

    async def work():
        await asyncio.sleep(0)
        return 42

    assert await handle.guard(work()) == 42
    assert not handle.aborted


async def test_guard_raises_when_aborted_while_waiting():
    handle = CancellationHandle()
    blocker = asyncio.Event()
    waiting = asyncio.ensure_future(handle.guard(blocker.wait()))
    await asyncio.sleep(0)
    handle.abort()
    with pytest.raises(GenerationCancelled):
        await waiting


async def test_guard_on_aborted_handle_does_not_run():
    handle = CancellationHandle()
    handle.abort()
    ran = []

    async def work():
        ran.append(True)

    with pytest.raises(GenerationCancelled):
        await handle.guard(work())
    await asyncio.sleep(0)
    assert ran == []


async def test_guard_propagates_inner_errors():
    handle = CancellationHandle()

    async def boom():
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        await handle.guard(boom())


def test_stop_generation_is_idempotent():
    handle = CancellationHandle()
    state = GenerationState(is_loading=True, is_generating=True, cancellation=handle)
    assert stop_generation(state) is True
    first = (state.is_loading, state.is_generating, state.error, state.cancellation)
    assert stop_generation(state) is False
    assert (state.is_loading, state.is_generating, state.error, state.cancellation) == first
    assert handle.aborted
    assert state.cancellation is None
    assert state.is_generating is False


def test_stop_generation_without_handle_is_noop():
    state = GenerationState()
    assert stop_generation(state) is False
    assert state == GenerationState()
