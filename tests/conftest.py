import asyncio
import json
import os
import shlex
import sys
from typing import Any, Dict, List, Union

import pytest

from fake_server import FakePeer, PeerExit
from mcpcli.mcp.client import MCPClient
from mcpcli.mcp.errors import TransportError
from mcpcli.mcp.session import ClientSession
from mcpcli.mcp.transport import Transport
from mcpcli.mcp.types import Implementation

FAKE_SERVER = os.path.join(os.path.dirname(__file__), "fake_server.py")
FAKE_SERVER_COMMAND = f"{shlex.quote(sys.executable)} {shlex.quote(FAKE_SERVER)}"

@pytest.fixture
def anyio_backend():
    return "asyncio"

class FakeTransport(Transport):
    """메모리 전송 계층: 보낸 프레임을 기록하고 피어의 응답을 수신 큐에 넣음"""

    def __init__(self, peer=None):
        self.peer = peer
        self.sent: List[Dict[str, Any]] = []
        self.raw_sent: List[bytes] = []
        self.started = False
        self.closed = False
        self._inbox: asyncio.Queue = asyncio.Queue()

    async def start(self) -> None:
        self.started = True

    async def send(self, frame: bytes) -> None:
        if self.closed:
            raise TransportError("전송 계층이 닫혔습니다")
        self.raw_sent.append(frame)
        message = json.loads(frame)
        self.sent.append(message)

        if self.peer is None:
            return
        try:
            replies = self.peer(message)
        except PeerExit:
            self.disconnect()
            return
        for reply in replies:
            self.feed(reply)

    def feed(self, payload: Union[Dict[str, Any], bytes, str]) -> None:
        """피어가 보낸 프레임 주입"""
        if isinstance(payload, dict):
            payload = json.dumps(payload)
        if isinstance(payload, str):
            payload = payload.encode("utf-8")
        self._inbox.put_nowait(payload)

    def disconnect(self) -> None:
        self._inbox.put_nowait(None)

    def fail(self, error: Exception) -> None:
        self._inbox.put_nowait(error)

    async def receive(self):
        while True:
            item = await self._inbox.get()
            if item is None:
                return
            if isinstance(item, Exception):
                raise item
            yield item

    async def close(self) -> None:
        self.closed = True
        self.disconnect()

    def sent_requests(self, method: str) -> List[Dict[str, Any]]:
        return [message for message in self.sent if message.get("method") == method]

async def wait_for_condition(predicate, timeout: float = 2.0) -> None:
    """조건이 참이 될 때까지 이벤트 루프 양보"""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("조건 대기 시간 초과")
        await asyncio.sleep(0.001)

@pytest.fixture
def peer() -> FakePeer:
    return FakePeer()

@pytest.fixture
def transport(peer: FakePeer) -> FakeTransport:
    return FakeTransport(peer)

@pytest.fixture
async def session(transport: FakeTransport):
    session = ClientSession(Implementation(name="test-client", version="0.0.1"))
    await session.connect(transport)
    yield session
    await session.close()

@pytest.fixture
async def client(transport: FakeTransport):
    client = MCPClient(name="test-client", command="unused")
    await client.initialize(transport)
    yield client
    await client.close()
