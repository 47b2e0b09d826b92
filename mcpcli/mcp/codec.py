"""
JSON-RPC 메시지 인코딩/디코딩

한 프레임은 줄바꿈으로 끝나는 JSON 객체 하나입니다.
"""

import json
from typing import Dict, Any

from pydantic import ValidationError

from mcpcli.mcp.errors import CodecError
from mcpcli.mcp.types import (
    JSONRPC_VERSION,
    JSONRPCNotification,
    JSONRPCRequest,
    JSONRPCResponse,
    Message,
)

def message_to_dict(message: Message) -> Dict[str, Any]:
    """메시지를 와이어 형식의 딕셔너리로 변환"""
    payload: Dict[str, Any] = {"jsonrpc": message.jsonrpc}

    if isinstance(message, JSONRPCResponse):
        payload["id"] = message.id
        if message.error is not None:
            payload["error"] = message.error.model_dump(exclude_none=True)
        else:
            payload["result"] = message.result
        return payload

    if isinstance(message, JSONRPCRequest):
        payload["id"] = message.id
    payload["method"] = message.method
    # params가 없으면 키 자체를 생략
    if message.params is not None:
        payload["params"] = message.params
    return payload

def encode_message(message: Message) -> bytes:
    """메시지를 프레임으로 인코딩"""
    try:
        data = json.dumps(message_to_dict(message), ensure_ascii=False, separators=(",", ":"))
    except (TypeError, ValueError) as e:
        raise CodecError(f"메시지 직렬화 실패: {str(e)}") from e
    return (data + "\n").encode("utf-8")

def decode_message(frame: bytes) -> Message:
    """프레임을 메시지로 디코딩"""
    try:
        payload = json.loads(frame)
    except ValueError as e:
        raise CodecError(f"JSON 파싱 실패: {str(e)}", frame) from e

    if not isinstance(payload, dict):
        raise CodecError(f"JSON 객체가 아닙니다: {type(payload).__name__}", frame)

    if payload.get("jsonrpc") != JSONRPC_VERSION:
        raise CodecError(f"지원하지 않는 jsonrpc 버전: {payload.get('jsonrpc')!r}", frame)

    try:
        if "method" in payload:
            if "id" in payload:
                return JSONRPCRequest.model_validate(payload)
            return JSONRPCNotification.model_validate(payload)

        if "result" in payload or "error" in payload:
            if payload.get("id") is None:
                raise CodecError("응답에 id가 없습니다", frame)
            return JSONRPCResponse.model_validate(payload)
    except ValidationError as e:
        raise CodecError(f"잘못된 메시지 구조: {e.error_count()}개 오류\n{str(e)}", frame) from e

    raise CodecError("알 수 없는 메시지 형식", frame)
