"""
MCP 클라이언트 모듈

Model Context Protocol 서버와의 세션, 메시지 인코딩, 전송 계층 및
도구/리소스/프롬프트 호출을 담당하는 클라이언트 구현을 제공합니다.
"""

from mcpcli.mcp.client import MCPClient, parse_json_arguments
from mcpcli.mcp.errors import (
    MCPClientError, UsageError, CodecError, ProtocolError, ResultValidationError,
    TransportError, ConnectionClosedError, RequestTimeoutError,
    SessionNotReadyError, HandshakeError
)
from mcpcli.mcp.session import ClientSession, SessionState
from mcpcli.mcp.transport import Transport, StdioTransport
