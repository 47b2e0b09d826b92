import asyncio
import gc
import json
import random

import pytest

from conftest import FakeTransport, wait_for_condition
from mcpcli.mcp.errors import (
    ConnectionClosedError,
    HandshakeError,
    ProtocolError,
    RequestTimeoutError,
    SessionNotReadyError,
    TransportError,
)
from mcpcli.mcp.session import ClientSession, SessionState
from mcpcli.mcp.types import LATEST_PROTOCOL_VERSION, Implementation

CLIENT_INFO = Implementation(name="test-client", version="0.0.1")

def respond(transport: FakeTransport, request, result=None) -> None:
    transport.feed({"jsonrpc": "2.0", "id": request["id"], "result": result if result is not None else {}})

@pytest.mark.anyio
async def test_connect_performs_handshake(session: ClientSession, transport: FakeTransport):
    assert session.state == SessionState.READY
    assert session.server_info.name == "fake-server"
    assert session.server_info.version == "1.2.3"
    assert "tools" in session.capabilities

    initialize, initialized = transport.sent[:2]
    assert initialize["method"] == "initialize"
    assert initialize["params"]["protocolVersion"] == LATEST_PROTOCOL_VERSION
    assert initialize["params"]["clientInfo"] == {"name": "test-client", "version": "0.0.1"}
    assert initialized == {"jsonrpc": "2.0", "method": "notifications/initialized"}

@pytest.mark.anyio
async def test_request_before_connect_is_rejected():
    session = ClientSession(CLIENT_INFO)
    with pytest.raises(SessionNotReadyError):
        await session.request("tools/list")

@pytest.mark.anyio
async def test_request_during_handshake_is_rejected(peer, transport):
    peer.hold_methods.add("initialize")
    session = ClientSession(CLIENT_INFO)
    connect = asyncio.create_task(session.connect(transport))
    await wait_for_condition(lambda: peer.held)

    assert session.state == SessionState.HANDSHAKING
    with pytest.raises(SessionNotReadyError):
        await session.request("tools/list")

    transport.feed(peer.handle(peer.held.pop()))
    await connect
    assert session.is_ready
    await session.close()

@pytest.mark.anyio
async def test_connect_twice_is_rejected(session: ClientSession):
    with pytest.raises(HandshakeError):
        await session.connect(FakeTransport())

@pytest.mark.anyio
async def test_handshake_error_response_closes_session(peer, transport):
    peer.initialize_error = {"code": -32602, "message": "Unsupported protocol version"}
    session = ClientSession(CLIENT_INFO)

    with pytest.raises(HandshakeError) as exc_info:
        await session.connect(transport)

    assert isinstance(exc_info.value.__cause__, ProtocolError)
    assert session.state == SessionState.CLOSED
    assert transport.closed

@pytest.mark.anyio
async def test_handshake_fails_when_transport_closes(peer, transport):
    peer.hold_methods.add("initialize")
    session = ClientSession(CLIENT_INFO)
    connect = asyncio.create_task(session.connect(transport))
    await wait_for_condition(lambda: peer.held)

    transport.disconnect()

    with pytest.raises(HandshakeError):
        await connect
    assert session.state == SessionState.CLOSED

@pytest.mark.anyio
async def test_handshake_rejects_malformed_initialize_result(peer, transport):
    peer.overrides["initialize"] = {"protocolVersion": LATEST_PROTOCOL_VERSION}
    session = ClientSession(CLIENT_INFO)

    with pytest.raises(HandshakeError):
        await session.connect(transport)
    assert session.state == SessionState.CLOSED

@pytest.mark.anyio
@pytest.mark.parametrize("seed", range(5))
async def test_responses_reach_their_callers_in_any_order(session, peer, transport, seed):
    peer.hold_methods.add("tools/call")
    count = 20

    tasks = [
        asyncio.create_task(session.request("tools/call", {"name": "echo", "arguments": {"text": str(i)}}))
        for i in range(count)
    ]
    await wait_for_condition(lambda: len(peer.held) == count)

    held = list(peer.held)
    random.Random(seed).shuffle(held)
    for request in held:
        transport.feed(peer.handle(request))

    results = await asyncio.gather(*tasks)
    assert [result["content"][0]["text"] for result in results] == [str(i) for i in range(count)]
    assert session.pending_count == 0

@pytest.mark.anyio
async def test_request_ids_are_unique(session, transport):
    await asyncio.gather(*(session.request("ping") for _ in range(10)))
    ids = [message["id"] for message in transport.sent if "id" in message]
    assert len(ids) == len(set(ids))

@pytest.mark.anyio
async def test_error_response_raises_protocol_error_and_keeps_session(session, peer):
    with pytest.raises(ProtocolError) as exc_info:
        await session.request("unknown/method")

    assert exc_info.value.code == -32601
    assert session.is_ready
    assert await session.request("ping") == {}

@pytest.mark.anyio
async def test_transport_close_fails_all_pending_requests(session, peer, transport):
    peer.hold_methods.update({"tools/list", "resources/read"})
    first = asyncio.create_task(session.request("tools/list"))
    second = asyncio.create_task(session.request("resources/read", {"uri": "test://hello"}))
    await wait_for_condition(lambda: len(peer.held) == 2)

    transport.disconnect()

    for task in (first, second):
        with pytest.raises(ConnectionClosedError):
            await asyncio.wait_for(task, 1)
    assert session.state == SessionState.CLOSED
    assert session.pending_count == 0

@pytest.mark.anyio
async def test_requests_after_close_fail_fast(session, transport):
    transport.disconnect()
    await wait_for_condition(lambda: session.state == SessionState.CLOSED)

    sent_before = len(transport.sent)
    with pytest.raises(ConnectionClosedError):
        await session.request("tools/list")
    assert len(transport.sent) == sent_before

@pytest.mark.anyio
async def test_transport_error_closes_session(session, peer, transport):
    peer.hold_methods.add("tools/list")
    task = asyncio.create_task(session.request("tools/list"))
    await wait_for_condition(lambda: peer.held)

    transport.fail(TransportError("읽기 실패"))

    with pytest.raises(ConnectionClosedError):
        await asyncio.wait_for(task, 1)
    assert session.state == SessionState.CLOSED
    assert transport.closed

@pytest.mark.anyio
async def test_send_failure_closes_session(session, transport):
    transport.closed = True

    with pytest.raises(ConnectionClosedError):
        await session.request("tools/list")
    assert session.state == SessionState.CLOSED

@pytest.mark.anyio
async def test_notifications_reach_handler_without_unblocking_requests(peer):
    received = []

    async def handler(notification):
        received.append(notification)

    transport = FakeTransport(peer)
    session = ClientSession(CLIENT_INFO, notification_handler=handler)
    await session.connect(transport)

    peer.hold_methods.add("tools/list")
    task = asyncio.create_task(session.request("tools/list"))
    await wait_for_condition(lambda: peer.held)

    transport.feed({"jsonrpc": "2.0", "method": "notifications/message", "params": {"level": "info", "data": "x"}})
    await wait_for_condition(lambda: received)

    assert received[0].method == "notifications/message"
    assert received[0].params["data"] == "x"
    assert not task.done()

    transport.feed(peer.handle(peer.held.pop()))
    assert (await task)["tools"][0]["name"] == "echo"
    await session.close()

@pytest.mark.anyio
async def test_failing_notification_handler_does_not_stop_session(peer):
    async def handler(notification):
        raise RuntimeError("처리기 오류")

    transport = FakeTransport(peer)
    session = ClientSession(CLIENT_INFO, notification_handler=handler)
    await session.connect(transport)

    transport.feed({"jsonrpc": "2.0", "method": "notifications/progress"})
    assert await session.request("ping") == {}
    await session.close()

@pytest.mark.anyio
async def test_notification_without_handler_is_dropped(session, transport):
    transport.feed({"jsonrpc": "2.0", "method": "notifications/tools/list_changed"})
    assert await session.request("ping") == {}
    assert session.is_ready

@pytest.mark.anyio
async def test_response_with_unknown_id_is_discarded(session, transport):
    transport.feed({"jsonrpc": "2.0", "id": 9999, "result": {"unexpected": True}})
    assert await session.request("ping") == {}
    assert session.is_ready

@pytest.mark.anyio
async def test_malformed_frames_are_skipped(session, transport):
    transport.feed(b"not json at all")
    transport.feed(b'{"jsonrpc":"2.0","result":{}}')
    transport.feed(b"[]")

    assert await session.request("ping") == {}
    assert session.is_ready

@pytest.mark.anyio
async def test_repeated_decode_failures_close_session(peer):
    transport = FakeTransport(peer)
    session = ClientSession(CLIENT_INFO, max_decode_failures=2)
    await session.connect(transport)

    for _ in range(3):
        transport.feed(b"{broken")

    await wait_for_condition(lambda: session.state == SessionState.CLOSED)
    with pytest.raises(ConnectionClosedError):
        await session.request("ping")

@pytest.mark.anyio
async def test_request_timeout_removes_pending_request(peer):
    transport = FakeTransport(peer)
    session = ClientSession(CLIENT_INFO, request_timeout=0.05)
    await session.connect(transport)

    peer.hold_methods.add("tools/list")
    with pytest.raises(RequestTimeoutError):
        await session.request("tools/list")
    assert session.pending_count == 0

    # 늦게 도착한 응답은 버려지고 세션은 계속 사용 가능
    transport.feed(peer.handle(peer.held.pop()))
    assert await session.request("ping", timeout=1) == {}
    assert session.is_ready
    await session.close()

@pytest.mark.anyio
async def test_cancelled_caller_leaves_request_pending(session, peer, transport):
    peer.hold_methods.add("tools/list")
    task = asyncio.create_task(session.request("tools/list"))
    await wait_for_condition(lambda: peer.held)

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert session.pending_count == 1

    transport.feed(peer.handle(peer.held.pop()))
    await wait_for_condition(lambda: session.pending_count == 0)
    assert session.is_ready

@pytest.mark.anyio
async def test_peer_ping_is_answered(session, transport):
    transport.feed({"jsonrpc": "2.0", "id": "srv-1", "method": "ping"})
    transport.feed({"jsonrpc": "2.0", "id": "srv-2", "method": "sampling/createMessage"})

    await wait_for_condition(lambda: len([m for m in transport.sent if m.get("id") in ("srv-1", "srv-2")]) == 2)
    replies = {m["id"]: m for m in transport.sent if m.get("id") in ("srv-1", "srv-2")}
    assert replies["srv-1"]["result"] == {}
    assert replies["srv-2"]["error"]["code"] == -32601

class InterleavingTransport(FakeTransport):
    """프레임을 두 번에 나눠 쓰며 중간에 제어를 양보하는 전송 계층"""

    def __init__(self, peer):
        super().__init__(peer)
        self.stream = b""

    async def send(self, frame: bytes) -> None:
        half = len(frame) // 2
        self.stream += frame[:half]
        await asyncio.sleep(0)
        self.stream += frame[half:]
        await super().send(frame)

@pytest.mark.anyio
async def test_concurrent_writers_do_not_interleave_frames(peer):
    transport = InterleavingTransport(peer)
    session = ClientSession(CLIENT_INFO)
    await session.connect(transport)

    await asyncio.gather(*(
        session.request("tools/call", {"name": "echo", "arguments": {"text": "x" * i}})
        for i in range(10)
    ))

    lines = transport.stream.splitlines()
    assert len(lines) == len(transport.sent)
    for line in lines:
        assert json.loads(line)["jsonrpc"] == "2.0"
    await session.close()

@pytest.mark.anyio
async def test_close_is_idempotent(session, transport):
    await session.close()
    await session.close()
    assert session.state == SessionState.CLOSED
    assert transport.closed

@pytest.mark.anyio
async def test_close_after_cancelled_caller_leaves_no_unretrieved_exception(session, peer):
    loop = asyncio.get_running_loop()
    errors = []
    previous_handler = loop.get_exception_handler()
    loop.set_exception_handler(lambda _, context: errors.append(context))

    try:
        peer.hold_methods.add("tools/list")
        task = asyncio.create_task(session.request("tools/list"))
        await wait_for_condition(lambda: peer.held)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        await session.close()
        del task
        gc.collect()
        await asyncio.sleep(0)
    finally:
        loop.set_exception_handler(previous_handler)

    assert not [context for context in errors if "never retrieved" in context.get("message", "")]
