"""
MCP 클라이언트 세션

하나의 전송 계층을 소유하고 백그라운드 수신 루프에서 응답을 요청 ID별로
대기 중인 호출자에게 전달합니다. 전송은 쓰기 잠금으로 직렬화됩니다.
"""

import asyncio
import itertools
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from pydantic import ValidationError

from mcpcli.mcp.codec import decode_message, encode_message
from mcpcli.mcp.errors import (
    CodecError,
    ConnectionClosedError,
    HandshakeError,
    ProtocolError,
    RequestTimeoutError,
    SessionNotReadyError,
    TransportError,
)
from mcpcli.mcp.transport import Transport
from mcpcli.mcp.types import (
    LATEST_PROTOCOL_VERSION,
    METHOD_NOT_FOUND,
    ErrorData,
    Implementation,
    InitializeResult,
    JSONRPCNotification,
    JSONRPCRequest,
    JSONRPCResponse,
    Message,
    RequestId,
)

logger = logging.getLogger("mcpcli.session")

DEFAULT_MAX_DECODE_FAILURES = 10

NotificationHandler = Callable[[JSONRPCNotification], Awaitable[None]]

def _retrieve_exception(future: "asyncio.Future[Any]") -> None:
    if not future.cancelled():
        future.exception()

class SessionState(str, Enum):
    """세션 상태"""
    CREATED = "created"
    HANDSHAKING = "handshaking"
    READY = "ready"
    CLOSED = "closed"

@dataclass
class PendingRequest:
    """응답을 기다리는 요청"""
    request_id: RequestId
    method: str
    future: "asyncio.Future[Any]"
    created_at: float = field(default_factory=time.monotonic)

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self.created_at

class ClientSession:
    """MCP 클라이언트 세션

    상태 전이: CREATED -> HANDSHAKING -> READY -> CLOSED.
    알림 처리기는 수신 루프 안에서 실행되므로 처리기 안에서 요청 응답을 기다리면 안 됩니다.
    """

    def __init__(
        self,
        client_info: Implementation,
        notification_handler: Optional[NotificationHandler] = None,
        request_timeout: Optional[float] = None,
        max_decode_failures: Optional[int] = DEFAULT_MAX_DECODE_FAILURES,
    ):
        self.client_info = client_info
        self.notification_handler = notification_handler
        self.request_timeout = request_timeout
        self.max_decode_failures = max_decode_failures
        self.state = SessionState.CREATED
        self.initialize_result: Optional[InitializeResult] = None
        self.close_reason: Optional[str] = None

        self._transport: Optional[Transport] = None
        self._transport_closed = False
        self._pending: Dict[RequestId, PendingRequest] = {}
        self._ids = itertools.count(1)
        self._write_lock = asyncio.Lock()
        self._receive_task: Optional[asyncio.Task] = None
        self._reply_tasks: Set[asyncio.Task] = set()
        self._decode_failures = 0
        self._receiving = False

    async def __aenter__(self) -> "ClientSession":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    @property
    def is_ready(self) -> bool:
        return self.state == SessionState.READY

    @property
    def server_info(self) -> Optional[Implementation]:
        if self.initialize_result is None:
            return None
        return self.initialize_result.serverInfo

    @property
    def capabilities(self) -> Dict[str, Any]:
        if self.initialize_result is None:
            return {}
        return self.initialize_result.capabilities

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def connect(self, transport: Transport) -> InitializeResult:
        """전송 계층을 넘겨받고 초기화 핸드셰이크 수행"""
        if self.state != SessionState.CREATED:
            raise HandshakeError(f"연결할 수 없는 세션 상태입니다: {self.state.value}")

        self.state = SessionState.HANDSHAKING
        self._transport = transport

        try:
            await transport.start()
        except TransportError as e:
            await self._shutdown(f"전송 계층 시작 실패: {str(e)}")
            raise HandshakeError(f"핸드셰이크 실패: {str(e)}") from e

        self._receive_task = asyncio.create_task(self._receive_loop())

        params = {
            "protocolVersion": LATEST_PROTOCOL_VERSION,
            "capabilities": {},
            "clientInfo": self.client_info.model_dump(),
        }
        try:
            result = await self._send_request("initialize", params)
            initialize_result = InitializeResult.model_validate(result)
            await self.send_notification("notifications/initialized")
        except (ProtocolError, TransportError, RequestTimeoutError) as e:
            await self._shutdown(f"핸드셰이크 실패: {str(e)}")
            raise HandshakeError(f"핸드셰이크 실패: {str(e)}") from e
        except ValidationError as e:
            await self._shutdown("잘못된 initialize 응답")
            raise HandshakeError(f"핸드셰이크 실패: 잘못된 initialize 응답\n{str(e)}") from e

        if initialize_result.protocolVersion != LATEST_PROTOCOL_VERSION:
            logger.warning(
                f"서버 프로토콜 버전이 다릅니다: 서버={initialize_result.protocolVersion}, "
                f"클라이언트={LATEST_PROTOCOL_VERSION}"
            )

        self.initialize_result = initialize_result
        self.state = SessionState.READY
        logger.debug(
            f"세션 준비 완료: {initialize_result.serverInfo.name} v{initialize_result.serverInfo.version}"
        )
        return initialize_result

    async def request(self, method: str, params: Optional[Dict[str, Any]] = None,
                      timeout: Optional[float] = None) -> Any:
        """요청을 보내고 응답 결과를 반환"""
        if self.state == SessionState.CLOSED:
            raise ConnectionClosedError(self.close_reason or "세션이 종료되었습니다")
        if self.state != SessionState.READY:
            raise SessionNotReadyError(f"핸드셰이크가 완료되지 않았습니다 (상태: {self.state.value})")

        return await self._send_request(method, params, timeout)

    async def send_notification(self, method: str, params: Optional[Dict[str, Any]] = None) -> None:
        """알림 전송 (응답 없음)"""
        if self.state == SessionState.CLOSED:
            raise ConnectionClosedError(self.close_reason or "세션이 종료되었습니다")
        if self.state == SessionState.CREATED:
            raise SessionNotReadyError("세션이 연결되지 않았습니다")

        frame = encode_message(JSONRPCNotification(method=method, params=params))
        try:
            await self._write(frame)
        except TransportError as e:
            await self._shutdown(f"서버로 전송 실패: {str(e)}")
            raise ConnectionClosedError(f"서버로 전송 실패: {str(e)}") from e

    async def ping(self) -> None:
        await self.request("ping")

    async def close(self) -> None:
        """세션 종료 및 전송 계층 정리"""
        await self._shutdown("세션이 종료되었습니다")

    async def _send_request(self, method: str, params: Optional[Dict[str, Any]],
                            timeout: Optional[float] = None) -> Any:
        request_id = next(self._ids)
        frame = encode_message(JSONRPCRequest(id=request_id, method=method, params=params))

        pending = PendingRequest(request_id, method, asyncio.get_running_loop().create_future())
        # 취소된 호출자의 future도 예외를 회수한 것으로 표시
        pending.future.add_done_callback(_retrieve_exception)
        self._pending[request_id] = pending
        logger.debug(f"요청 전송: id={request_id}, method={method}")

        try:
            await self._write(frame)
        except TransportError as e:
            # 종료 처리에서 대기 항목이 ConnectionClosedError로 완료됨
            await self._shutdown(f"서버로 전송 실패: {str(e)}")

        if timeout is None:
            timeout = self.request_timeout

        # 호출자가 취소되어도 대기 항목은 응답 또는 세션 종료까지 유지
        try:
            if timeout is None:
                return await asyncio.shield(pending.future)
            return await asyncio.wait_for(asyncio.shield(pending.future), timeout)
        except asyncio.TimeoutError:
            self._pending.pop(request_id, None)
            raise RequestTimeoutError(f"'{method}' 응답 대기 시간 초과 ({timeout}초)") from None

    async def _write(self, frame: bytes) -> None:
        async with self._write_lock:
            if self.state == SessionState.CLOSED or self._transport is None:
                raise ConnectionClosedError(self.close_reason or "세션이 종료되었습니다")
            await self._transport.send(frame)

    async def _receive_loop(self) -> None:
        reason = "서버 연결이 종료되었습니다"
        self._receiving = True
        try:
            async for frame in self._transport.receive():
                try:
                    message = decode_message(frame)
                except CodecError as e:
                    self._decode_failures += 1
                    logger.warning(f"잘못된 프레임 무시 ({self._decode_failures}회 연속): {str(e)}")
                    logger.debug(f"원본 프레임: {frame!r}")
                    if self.max_decode_failures is not None and self._decode_failures > self.max_decode_failures:
                        reason = f"연속된 디코딩 실패 {self._decode_failures}회로 연결을 종료합니다"
                        logger.error(reason)
                        break
                    continue

                self._decode_failures = 0
                await self._dispatch(message)
        except TransportError as e:
            reason = f"전송 계층 오류: {str(e)}"
            logger.error(reason)
        finally:
            self._receiving = False
            self._fail_pending(reason)

        await self._close_transport()

    async def _dispatch(self, message: Message) -> None:
        if isinstance(message, JSONRPCResponse):
            self._handle_response(message)
        elif isinstance(message, JSONRPCNotification):
            await self._handle_notification(message)
        else:
            self._handle_request(message)

    def _handle_response(self, message: JSONRPCResponse) -> None:
        pending = self._pending.pop(message.id, None)
        if pending is None:
            logger.warning(f"알 수 없는 요청 ID의 응답 무시: id={message.id!r}")
            return

        logger.debug(f"응답 수신: id={message.id}, method={pending.method}, {pending.elapsed:.3f}초")
        if pending.future.done():
            return
        if message.error is not None:
            pending.future.set_exception(ProtocolError(message.error))
        else:
            pending.future.set_result(message.result)

    async def _handle_notification(self, message: JSONRPCNotification) -> None:
        if self.notification_handler is None:
            logger.debug(f"처리기가 없어 알림 무시: {message.method}")
            return

        try:
            await self.notification_handler(message)
        except Exception:
            logger.exception(f"알림 처리 중 오류: {message.method}")

    def _handle_request(self, message: JSONRPCRequest) -> None:
        if message.method == "ping":
            response = JSONRPCResponse(id=message.id, result={})
        else:
            logger.debug(f"지원하지 않는 서버 요청: {message.method}")
            response = JSONRPCResponse(
                id=message.id,
                error=ErrorData(code=METHOD_NOT_FOUND, message=f"Method not found: {message.method}"),
            )

        # 수신 루프가 쓰기 잠금을 기다리지 않도록 별도 태스크에서 응답
        task = asyncio.create_task(self._reply(response))
        self._reply_tasks.add(task)
        task.add_done_callback(self._reply_tasks.discard)

    async def _reply(self, response: JSONRPCResponse) -> None:
        try:
            await self._write(encode_message(response))
        except TransportError as e:
            logger.warning(f"서버 요청에 응답하지 못했습니다: id={response.id!r}, {str(e)}")

    def _fail_pending(self, reason: str) -> None:
        if self.state != SessionState.CLOSED:
            logger.debug(f"세션 종료: {reason}")
            self.close_reason = reason
        self.state = SessionState.CLOSED

        pending, self._pending = self._pending, {}
        for item in pending.values():
            if not item.future.done():
                item.future.set_exception(ConnectionClosedError(reason))

    async def _shutdown(self, reason: str) -> None:
        self._fail_pending(reason)

        task = self._receive_task
        if task is not None and task is not asyncio.current_task() and not task.done():
            # 수신을 마치고 전송 계층을 정리 중이면 취소하지 않고 기다림
            if self._receiving:
                task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        await self._close_transport()

    async def _close_transport(self) -> None:
        if self._transport is None or self._transport_closed:
            return
        self._transport_closed = True
        await self._transport.close()
