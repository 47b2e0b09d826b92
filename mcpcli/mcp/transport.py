"""
MCP 전송 계층

프레임(줄 단위 바이트)을 순서대로 송수신하며 내용은 해석하지 않습니다.
"""

import asyncio
import logging
import os
from abc import ABC, abstractmethod
from typing import AsyncIterator, Dict, List, Optional

from mcpcli.mcp.errors import TransportError

logger = logging.getLogger("mcpcli.transport")

# 한 프레임의 최대 크기
STREAM_LIMIT = 16 * 1024 * 1024
# 종료 요청 후 프로세스 대기 시간(초)
TERMINATE_TIMEOUT = 2.0

class Transport(ABC):
    """양방향 바이트 스트림 인터페이스"""

    async def start(self) -> None:
        """전송 계층 시작 (필요한 경우)"""

    @abstractmethod
    async def send(self, frame: bytes) -> None:
        """프레임 하나 전송"""

    @abstractmethod
    def receive(self) -> AsyncIterator[bytes]:
        """수신 프레임 스트림 (스트림이 닫히면 종료)"""

    @abstractmethod
    async def close(self) -> None:
        """전송 계층 종료"""

class StdioTransport(Transport):
    """자식 프로세스의 stdin/stdout을 사용하는 전송 계층"""

    def __init__(self, command: str, args: Optional[List[str]] = None, env: Optional[Dict[str, str]] = None,
                 cwd: Optional[str] = None):
        self.command = command
        self.args = args or []
        self.env = env or {}
        self.cwd = cwd
        self.process: Optional[asyncio.subprocess.Process] = None

    async def start(self) -> None:
        if self.process is not None:
            raise TransportError("이미 시작된 전송 계층입니다")

        # 환경 변수 구성
        env_dict = os.environ.copy()
        env_dict.update(self.env)

        try:
            self.process = await asyncio.create_subprocess_exec(
                self.command,
                *self.args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                env=env_dict,
                cwd=self.cwd,
                limit=STREAM_LIMIT,
            )
        except OSError as e:
            raise TransportError(f"서버 프로세스 실행 실패 '{self.command}': {str(e)}") from e

        logger.debug(f"서버 프로세스 시작: pid={self.process.pid}, 명령어={self.command} {' '.join(self.args)}")

    async def send(self, frame: bytes) -> None:
        if self.process is None or self.process.stdin is None:
            raise TransportError("전송 계층이 시작되지 않았습니다")

        stdin = self.process.stdin
        if stdin.is_closing():
            raise TransportError("서버 입력 스트림이 닫혔습니다")

        try:
            stdin.write(frame)
            await stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            raise TransportError(f"서버로 전송 실패: {str(e)}") from e

    async def receive(self) -> AsyncIterator[bytes]:
        if self.process is None or self.process.stdout is None:
            raise TransportError("전송 계층이 시작되지 않았습니다")

        stdout = self.process.stdout
        while True:
            try:
                line = await stdout.readline()
            except (asyncio.LimitOverrunError, ValueError) as e:
                raise TransportError(f"프레임이 너무 큽니다: {str(e)}") from e
            except (BrokenPipeError, ConnectionResetError) as e:
                raise TransportError(f"서버로부터 수신 실패: {str(e)}") from e

            if not line:
                logger.debug("서버 출력 스트림 종료")
                return

            line = line.strip()
            if line:
                yield line

    async def close(self) -> None:
        process = self.process
        if process is None:
            return

        if process.stdin is not None and not process.stdin.is_closing():
            process.stdin.close()

        if process.returncode is None:
            try:
                await asyncio.wait_for(process.wait(), TERMINATE_TIMEOUT)
            except asyncio.TimeoutError:
                logger.debug(f"서버 프로세스 종료 요청: pid={process.pid}")
                try:
                    process.terminate()
                    await asyncio.wait_for(process.wait(), TERMINATE_TIMEOUT)
                except asyncio.TimeoutError:
                    process.kill()
                    await process.wait()
                except ProcessLookupError:
                    # 이미 종료됨
                    await process.wait()

        logger.debug(f"서버 프로세스 종료: 코드={process.returncode}")
