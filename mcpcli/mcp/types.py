import base64
import binascii
from typing import Annotated, Dict, List, Any, Optional, Union, Literal

from pydantic import BaseModel, Field, StrictInt, StrictStr, field_validator, model_validator

LATEST_PROTOCOL_VERSION = "2024-11-05"
JSONRPC_VERSION = "2.0"

# JSON-RPC 오류 코드
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603
# MCP 확장 오류 코드
RESOURCE_NOT_FOUND = -32002

RequestId = Union[StrictInt, StrictStr]

class ErrorData(BaseModel):
    """JSON-RPC 오류 객체"""
    code: StrictInt
    message: StrictStr
    data: Any = None

class JSONRPCRequest(BaseModel):
    """응답을 기다리는 요청"""
    jsonrpc: Literal["2.0"] = JSONRPC_VERSION
    id: RequestId
    method: StrictStr
    params: Optional[Dict[str, Any]] = None

class JSONRPCNotification(BaseModel):
    """응답이 없는 알림"""
    jsonrpc: Literal["2.0"] = JSONRPC_VERSION
    method: StrictStr
    params: Optional[Dict[str, Any]] = None

class JSONRPCResponse(BaseModel):
    """요청에 대한 응답 (result 또는 error 중 하나만 포함)"""
    jsonrpc: Literal["2.0"] = JSONRPC_VERSION
    id: RequestId
    result: Any = None
    error: Optional[ErrorData] = None

    @model_validator(mode="after")
    def check_result_or_error(self) -> "JSONRPCResponse":
        has_result = "result" in self.model_fields_set
        has_error = self.error is not None
        if has_result and has_error:
            raise ValueError("응답에 result와 error가 모두 있습니다")
        if not has_result and not has_error:
            raise ValueError("응답에 result 또는 error가 필요합니다")
        return self

    @property
    def is_error(self) -> bool:
        return self.error is not None

Message = Union[JSONRPCRequest, JSONRPCNotification, JSONRPCResponse]

FROZEN = {"extra": "allow", "frozen": True}

class Implementation(BaseModel):
    """클라이언트/서버 구현 정보"""
    name: str
    version: str

    model_config = FROZEN

class InitializeResult(BaseModel):
    """initialize 응답"""
    protocolVersion: str
    capabilities: Dict[str, Any] = Field(default_factory=dict)
    serverInfo: Implementation
    instructions: Optional[str] = None

    model_config = {"extra": "allow"}

class Tool(BaseModel):
    """MCP 도구 정의"""
    name: str
    description: Optional[str] = None
    inputSchema: Dict[str, Any] = Field(default_factory=lambda: {"type": "object"})

    model_config = FROZEN

class Resource(BaseModel):
    """MCP 리소스 정의"""
    uri: str
    name: Optional[str] = None
    description: Optional[str] = None
    mimeType: Optional[str] = None

    model_config = FROZEN

class PromptArgument(BaseModel):
    """프롬프트 인자 정의"""
    name: str
    description: Optional[str] = None
    required: bool = False

    model_config = FROZEN

class Prompt(BaseModel):
    """MCP 프롬프트 정의"""
    name: str
    description: Optional[str] = None
    arguments: List[PromptArgument] = Field(default_factory=list)

    model_config = FROZEN

class ResourceContents(BaseModel):
    """리소스 내용 (text 또는 base64 blob)"""
    uri: str
    mimeType: Optional[str] = None
    text: Optional[str] = None
    blob: Optional[str] = None

    model_config = FROZEN

    @field_validator("blob")
    @classmethod
    def check_blob(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        try:
            base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValueError(f"잘못된 base64 리소스 데이터: {e}")
        return value

    @property
    def blob_bytes(self) -> Optional[bytes]:
        if self.blob is None:
            return None
        return base64.b64decode(self.blob)

class TextContent(BaseModel):
    """텍스트 콘텐츠"""
    type: Literal["text"] = "text"
    text: str

    model_config = FROZEN

class ImageContent(BaseModel):
    """이미지 콘텐츠 (base64 데이터)"""
    type: Literal["image"] = "image"
    data: str
    mimeType: str

    model_config = FROZEN

    @field_validator("data")
    @classmethod
    def check_base64(cls, value: str) -> str:
        try:
            base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValueError(f"잘못된 base64 이미지 데이터: {e}")
        return value

    @property
    def raw(self) -> bytes:
        return base64.b64decode(self.data)

class EmbeddedResource(BaseModel):
    """리소스 참조 콘텐츠"""
    type: Literal["resource"] = "resource"
    resource: ResourceContents

    model_config = FROZEN

Content = Annotated[Union[TextContent, ImageContent, EmbeddedResource], Field(discriminator="type")]

class ListToolsResult(BaseModel):
    """도구 목록 응답"""
    tools: List[Tool] = Field(default_factory=list)
    nextCursor: Optional[str] = None

class ListResourcesResult(BaseModel):
    """리소스 목록 응답"""
    resources: List[Resource] = Field(default_factory=list)
    nextCursor: Optional[str] = None

class ListPromptsResult(BaseModel):
    """프롬프트 목록 응답"""
    prompts: List[Prompt] = Field(default_factory=list)
    nextCursor: Optional[str] = None

class CallToolResult(BaseModel):
    """도구 호출 결과"""
    content: List[Content] = Field(default_factory=list)
    isError: bool = False

    model_config = {"extra": "allow"}

class ReadResourceResult(BaseModel):
    """리소스 읽기 결과"""
    contents: List[ResourceContents] = Field(default_factory=list)

class PromptMessage(BaseModel):
    """프롬프트 메시지"""
    role: Literal["user", "assistant"]
    content: Content

class GetPromptResult(BaseModel):
    """프롬프트 조회 결과"""
    description: Optional[str] = None
    messages: List[PromptMessage] = Field(default_factory=list)
