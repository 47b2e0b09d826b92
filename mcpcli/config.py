from pathlib import Path
from typing import Dict, List, Optional
import json
import os
import shlex

from pydantic import BaseModel, Field, ValidationError
from dotenv import load_dotenv

from mcpcli import __version__
from mcpcli.mcp.errors import UsageError
from mcpcli.mcp.session import DEFAULT_MAX_DECODE_FAILURES

# .env 파일 로드
load_dotenv()

DEFAULT_SERVER = "./server"
DEFAULT_CONFIG_PATH = "~/.mcp.json"

class ServerConfig(BaseModel):
    """MCP 서버 실행 설정"""
    command: str
    args: List[str] = Field(default_factory=list)
    env: Optional[Dict[str, str]] = None

class MCPConfig(BaseModel):
    """MCP 전체 설정"""
    mcpServers: Dict[str, ServerConfig] = Field(default_factory=dict)

class ClientSettings(BaseModel):
    """클라이언트 세션 설정"""
    name: str = "mcpcli"
    version: str = __version__
    request_timeout: Optional[float] = Field(default=None, gt=0)
    max_decode_failures: Optional[int] = Field(default=DEFAULT_MAX_DECODE_FAILURES, ge=0)

class Config:
    """애플리케이션 설정 관리"""
    def __init__(self, config_path: Optional[str] = None):
        self.config_path = os.path.expanduser(config_path or DEFAULT_CONFIG_PATH)
        self.config = self._load_config()

    def _load_config(self) -> MCPConfig:
        """설정 파일 로드 (파일이 없으면 빈 설정)"""
        config_path = Path(self.config_path)

        if not config_path.exists():
            return MCPConfig()

        try:
            with open(config_path, "r", encoding="utf-8") as f:
                config_data = json.load(f)
            return MCPConfig.model_validate(config_data)
        except (OSError, UnicodeDecodeError, json.JSONDecodeError, ValidationError) as e:
            raise UsageError(f"설정 파일 오류 '{self.config_path}': {str(e)}") from e

    def resolve_server(self, server: str) -> ServerConfig:
        """서버 이름 또는 명령줄을 실행 설정으로 변환"""
        if server in self.config.mcpServers:
            return self.config.mcpServers[server]

        try:
            parts = shlex.split(server)
        except ValueError as e:
            raise UsageError(f"잘못된 서버 명령어 '{server}': {str(e)}") from e

        if not parts:
            raise UsageError("서버 명령어가 비어 있습니다")

        return ServerConfig(command=parts[0], args=parts[1:])
