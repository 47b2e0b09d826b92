"""
MCP 클라이언트 예외 계층

사용법 오류, 프레임 디코딩 오류, 서버 오류 응답, 전송 계층 오류를 구분합니다.
전송 계층 오류(TransportError)만 세션을 종료시키며 나머지는 해당 작업에 국한됩니다.
"""

from typing import Any, Optional

from mcpcli.mcp.types import ErrorData, METHOD_NOT_FOUND, RESOURCE_NOT_FOUND

class MCPClientError(Exception):
    """모든 클라이언트 오류의 기본 클래스"""

class UsageError(MCPClientError):
    """잘못된 사용자 입력 (요청 전송 전에 발생)"""

class CodecError(MCPClientError):
    """잘못된 프레임"""

    def __init__(self, message: str, frame: Optional[bytes] = None):
        super().__init__(message)
        self.frame = frame

class ProtocolError(MCPClientError):
    """서버가 반환한 오류 응답"""

    def __init__(self, error: ErrorData):
        super().__init__(f"[{error.code}] {error.message}")
        self.error = error

    @property
    def code(self) -> int:
        return self.error.code

    @property
    def message(self) -> str:
        return self.error.message

    @property
    def data(self) -> Any:
        return self.error.data

    @property
    def is_not_found(self) -> bool:
        return self.code in (METHOD_NOT_FOUND, RESOURCE_NOT_FOUND) or "not found" in self.message.lower()

class ResultValidationError(MCPClientError):
    """응답 결과가 예상 구조와 다름"""

class TransportError(MCPClientError):
    """전송 계층 I/O 오류"""

class ConnectionClosedError(TransportError):
    """연결이 종료됨"""

class RequestTimeoutError(MCPClientError):
    """응답 대기 시간 초과"""

class SessionNotReadyError(MCPClientError):
    """핸드셰이크 완료 전 요청"""

class HandshakeError(MCPClientError):
    """초기화 핸드셰이크 실패"""
