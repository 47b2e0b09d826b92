import json
import logging
from typing import Any, Dict, List, Mapping, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from mcpcli.mcp.errors import ResultValidationError, UsageError
from mcpcli.mcp.session import ClientSession, NotificationHandler, DEFAULT_MAX_DECODE_FAILURES
from mcpcli.mcp.transport import StdioTransport, Transport
from mcpcli.mcp.types import (
    CallToolResult,
    GetPromptResult,
    Implementation,
    InitializeResult,
    ListPromptsResult,
    ListResourcesResult,
    ListToolsResult,
    ReadResourceResult,
)

ResultT = TypeVar("ResultT", bound=BaseModel)

def parse_json_arguments(text: Optional[str]) -> Optional[Dict[str, Any]]:
    """JSON 문자열 인자 파싱 (빈 문자열과 {}는 인자 없음)"""
    if text is None or not text.strip():
        return None

    try:
        arguments = json.loads(text)
    except json.JSONDecodeError as e:
        raise UsageError(f"잘못된 JSON 인자: {str(e)}") from e

    if not isinstance(arguments, dict):
        raise UsageError(f"인자는 JSON 객체여야 합니다: {text}")

    return arguments or None

def normalize_arguments(arguments: Optional[Mapping[str, Any]]) -> Optional[Dict[str, Any]]:
    """인자 유효성 검사 및 정규화 (비어 있으면 None)"""
    if arguments is None:
        return None

    if not isinstance(arguments, Mapping):
        raise UsageError(f"인자는 매핑이어야 합니다: {type(arguments).__name__}")

    for key in arguments:
        if not isinstance(key, str):
            raise UsageError(f"인자 이름은 문자열이어야 합니다: {key!r}")

    # JSON으로 표현할 수 없는 값은 전송 전에 거부
    try:
        json.dumps(dict(arguments))
    except (TypeError, ValueError) as e:
        raise UsageError(f"JSON으로 직렬화할 수 없는 인자: {str(e)}") from e

    return dict(arguments) or None

def _require_name(value: str, kind: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise UsageError(f"{kind} 이름이 비어 있습니다")
    return value

class MCPClient:
    """MCP 클라이언트"""

    def __init__(
        self,
        name: str,
        command: str,
        args: Optional[List[str]] = None,
        env: Optional[Dict[str, str]] = None,
        version: str = "0.1.0",
        request_timeout: Optional[float] = None,
        max_decode_failures: Optional[int] = DEFAULT_MAX_DECODE_FAILURES,
        notification_handler: Optional[NotificationHandler] = None,
    ):
        self.name = name
        self.command = command
        self.args = args or []
        self.env = env or {}
        self.session = ClientSession(
            Implementation(name=name, version=version),
            notification_handler=notification_handler,
            request_timeout=request_timeout,
            max_decode_failures=max_decode_failures,
        )
        self.logger = logging.getLogger("mcpcli.client")

    async def __aenter__(self) -> "MCPClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def initialize(self, transport: Optional[Transport] = None) -> InitializeResult:
        """서버 프로세스 실행 및 핸드셰이크"""
        if transport is None:
            transport = StdioTransport(self.command, self.args, self.env)

        result = await self.session.connect(transport)
        self.logger.debug(f"서버 기능: {', '.join(sorted(result.capabilities)) or '없음'}")
        return result

    async def list_tools(self, cursor: Optional[str] = None) -> ListToolsResult:
        """서버에서 사용 가능한 도구 목록 요청"""
        return await self._request("tools/list", self._cursor_params(cursor), ListToolsResult)

    async def list_resources(self, cursor: Optional[str] = None) -> ListResourcesResult:
        """서버에서 사용 가능한 리소스 목록 요청"""
        return await self._request("resources/list", self._cursor_params(cursor), ListResourcesResult)

    async def list_prompts(self, cursor: Optional[str] = None) -> ListPromptsResult:
        """서버에서 사용 가능한 프롬프트 목록 요청"""
        return await self._request("prompts/list", self._cursor_params(cursor), ListPromptsResult)

    async def call_tool(self, name: str, arguments: Optional[Mapping[str, Any]] = None) -> CallToolResult:
        """도구 호출"""
        params: Dict[str, Any] = {"name": _require_name(name, "도구")}
        normalized = normalize_arguments(arguments)
        if normalized is not None:
            params["arguments"] = normalized

        result = await self._request("tools/call", params, CallToolResult)
        if result.isError:
            self.logger.warning(f"도구 '{name}'이(가) 오류 결과를 반환했습니다")
        return result

    async def read_resource(self, uri: str) -> ReadResourceResult:
        """리소스 읽기"""
        return await self._request("resources/read", {"uri": _require_name(uri, "리소스 URI")}, ReadResourceResult)

    async def get_prompt(self, name: str, arguments: Optional[Mapping[str, Any]] = None) -> GetPromptResult:
        """프롬프트 조회"""
        params: Dict[str, Any] = {"name": _require_name(name, "프롬프트")}
        normalized = normalize_arguments(arguments)
        if normalized is not None:
            params["arguments"] = normalized

        return await self._request("prompts/get", params, GetPromptResult)

    async def ping(self) -> None:
        await self.session.ping()

    async def close(self) -> None:
        """클라이언트 리소스 정리"""
        await self.session.close()
        self.logger.debug(f"MCP 서버 '{self.command}' 연결 종료")

    @staticmethod
    def _cursor_params(cursor: Optional[str]) -> Optional[Dict[str, Any]]:
        if cursor is None:
            return None
        return {"cursor": cursor}

    async def _request(self, method: str, params: Optional[Dict[str, Any]], result_type: Type[ResultT]) -> ResultT:
        result = await self.session.request(method, params)
        try:
            return result_type.model_validate(result)
        except ValidationError as e:
            raise ResultValidationError(f"'{method}' 응답 형식이 잘못되었습니다:\n{str(e)}") from e
