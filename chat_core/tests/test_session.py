import asyncio

from chat_core.domain.exceptions import NetworkError
from chat_core.tests.fakes import ENDPOINT, FakeTransport, QueueResponse, wait_until


async def test_fragments_applied_in_order(make_store):
    response = QueueResponse().push("data: A\n", "data: B\n", "data: [DONE]\n")
    transport = FakeTransport(response)
    store = make_store(transport)

    await store.send_message("hi")

    msgs = store.current_messages
    assert [(m.role, m.content) for m in msgs] == [("user", "hi"), ("assistant", "AB")]
    assert store.state.is_generating is False
    assert store.state.is_loading is False
    assert store.state.error is None
    assert store.state.cancellation is None
    assert response.closed


async def test_request_carries_prompt_and_stream_flag(make_store):
    transport = FakeTransport(QueueResponse().push("data: [DONE]\n"))
    store = make_store(transport)
    await store.send_message("hello")
    endpoint, request = transport.requests[0]
    assert endpoint == ENDPOINT
    assert request.to_payload() == {"prompt": "hello", "stream": True}


async def test_placeholder_visible_before_first_chunk(make_store):
    gate = asyncio.Event()
    response = QueueResponse()
    transport = FakeTransport(response, gate=gate)
    store = make_store(transport)

    task = asyncio.create_task(store.send_message("hi"))
    await wait_until(lambda: transport.requests)

    assert [(m.role, m.content) for m in store.current_messages] == [("user", "hi"), ("assistant", "")]
    assert store.state.is_loading is True
    assert store.state.is_generating is True
    assert store.state.cancellation is not None

    gate.set()
    response.push("data: [DONE]\n")
    await task
    assert store.state.is_loading is False


async def test_malformed_lines_ignored(make_store):
    store = make_store(FakeTransport(QueueResponse().push("foo\ndata: X\n", None)))
    await store.send_message("hi")
    assert store.current_messages[1].content == "X"
    assert store.state.error is None


async def test_end_of_stream_without_done_is_completion(make_store):
    store = make_store(FakeTransport(QueueResponse().push("data: A\n", "data: B", None)))
    await store.send_message("hi")
    assert store.current_messages[1].content == "AB"
    assert store.state.error is None
    assert store.state.is_generating is False


async def test_fragment_split_across_chunks(make_store):
    store = make_store(FakeTransport(QueueResponse().push("data: Hel", "lo\n", "data: [DONE]\n")))
    await store.send_message("hi")
    assert store.current_messages[1].content == "Hello"


async def test_stop_mid_stream_drops_later_chunks(make_store):
    response = QueueResponse()
    store = make_store(FakeTransport(response))

    task = asyncio.create_task(store.send_message("hi"))
    response.push("data: A\n")
    await wait_until(lambda: len(store.current_messages) == 2 and store.current_messages[1].content == "A")

    store.stop_generating()
    assert store.state.is_generating is False
    assert store.state.error is None

    response.push("data: B\n", "data: [DONE]\n")
    await task

    assert store.current_messages[1].content == "A"
    assert store.state.error is None
    assert store.state.is_loading is False
    assert store.state.cancellation is None
    assert response.closed


async def test_stop_twice_equals_once(make_store):
    response = QueueResponse()
    store = make_store(FakeTransport(response))
    task = asyncio.create_task(store.send_message("hi"))
    await wait_until(lambda: store.state.cancellation is not None)

    store.stop_generating()
    once = (store.state.is_loading, store.state.is_generating, store.state.error, store.state.cancellation)
    store.stop_generating()
    twice = (store.state.is_loading, store.state.is_generating, store.state.error, store.state.cancellation)
    assert once == twice
    await task


async def test_http_error_status_sets_error(make_store):
    response = QueueResponse(status_code=500).push("data: never\n")
    store = make_store(FakeTransport(response))
    await store.send_message("hi")

    assert store.state.error == "发送消息失败：HTTP error! status: 500"
    assert store.current_messages[1].content == ""
    assert store.state.is_loading is False
    assert store.state.is_generating is False
    assert response.closed


async def test_network_error_sets_error(make_store):
    error = NetworkError(code="NETWORK_ERROR", message="connection refused")
    store = make_store(FakeTransport(error=error))
    await store.send_message("hi")
    assert store.state.error == "发送消息失败：connection refused"
    assert store.state.cancellation is None


async def test_mid_stream_read_failure_keeps_partial_content(make_store):
    response = QueueResponse().push("data: A\n", RuntimeError("boom"))
    store = make_store(FakeTransport(response))
    await store.send_message("hi")
    assert store.current_messages[1].content == "A"
    assert store.state.error == "发送消息失败：boom"
    assert store.state.is_generating is False


async def test_release_failure_is_not_surfaced(make_store):
    response = QueueResponse(close_error=RuntimeError("close failed")).push("data: A\n", "data: [DONE]\n")
    store = make_store(FakeTransport(response))
    await store.send_message("hi")
    assert store.current_messages[1].content == "A"
    assert store.state.error is None
    assert store.state.is_loading is False
    assert store.state.cancellation is None


async def test_second_send_supersedes_first(make_store):
    first = QueueResponse()
    second = QueueResponse()
    store = make_store(FakeTransport(first, second))

    task1 = asyncio.create_task(store.send_message("one"))
    first.push("data: A\n")
    await wait_until(lambda: len(store.current_messages) == 2 and store.current_messages[1].content == "A")

    task2 = asyncio.create_task(store.send_message("two"))
    await wait_until(lambda: len(store.current_messages) == 4)
    await task1
    # 旧会话收尾不能清掉新会话的状态
    assert store.state.is_generating is True
    assert store.state.cancellation is not None

    first.push("data: late\n")
    second.push("data: B\n", "data: [DONE]\n")
    await task2

    contents = [m.content for m in store.current_messages]
    assert contents == ["one", "A", "two", "B"]
    assert store.state.is_generating is False
    assert store.state.cancellation is None
    assert store.state.error is None


async def test_switch_does_not_redirect_fragments(make_store):
    response = QueueResponse()
    store = make_store(FakeTransport(response))
    original = store.current_conversation

    task = asyncio.create_task(store.send_message("hi"))
    await wait_until(lambda: store.state.cancellation is not None)
    other = store.create_new_conversation()

    response.push("data: A\n", "data: [DONE]\n")
    await task

    assert original.messages[1].content == "A"
    assert other.messages == []
    assert store.current_conversation_id == other.id


async def test_deleting_generating_conversation_stops_it(make_store):
    response = QueueResponse()
    store = make_store(FakeTransport(response))
    store.create_new_conversation()
    target = store.current_conversation

    task = asyncio.create_task(store.send_message("hi"))
    await wait_until(lambda: store.state.cancellation is not None)
    store.delete_conversation(target.id)
    await task

    assert store.state.is_generating is False
    assert store.state.error is None
    assert store.get_conversation(target.id) is None


async def test_task_cancellation_settles_state_and_propagates(make_store):
    response = QueueResponse()
    store = make_store(FakeTransport(response))
    task = asyncio.create_task(store.send_message("hi"))
    await wait_until(lambda: store.state.cancellation is not None)

    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
    assert task.cancelled()
    assert store.state.is_generating is False
    assert store.state.is_loading is False
    assert store.state.error is None
    assert response.closed


async def test_stop_while_transport_call_pending(make_store):
    gate = asyncio.Event()
    response = QueueResponse().push("data: A\n", "data: [DONE]\n")
    transport = FakeTransport(response, gate=gate)
    store = make_store(transport)

    task = asyncio.create_task(store.send_message("hi"))
    await wait_until(lambda: transport.requests)
    store.stop_generating()
    gate.set()
    await task

    assert store.current_messages[1].content == ""
    assert store.state.error is None
    assert store.state.is_loading is False
    assert store.state.is_generating is False
    assert store.state.cancellation is None


async def test_error_status_after_stop_is_not_reported(make_store):
    class StopThenFail:
        def __init__(self):
            self.response = QueueResponse(status_code=500)

        async def send(self, endpoint, request, cancellation):
            # 用户在响应到达的同一轮里点了停止
            store.stop_generating()
            return self.response

    transport = StopThenFail()
    store = make_store(transport)
    await store.send_message("hi")

    assert store.state.error is None
    assert store.state.is_loading is False
    assert transport.response.closed
