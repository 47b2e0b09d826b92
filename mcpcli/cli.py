import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

import typer
from pydantic import ValidationError
from rich.logging import RichHandler

from mcpcli.config import Config, ClientSettings, ServerConfig, DEFAULT_SERVER
from mcpcli.mcp.client import MCPClient, parse_json_arguments
from mcpcli.mcp.errors import MCPClientError, TransportError, UsageError
from mcpcli.mcp.types import JSONRPCNotification
from mcpcli.utils.rendering import (
    render_error,
    render_help,
    render_prompt_result,
    render_prompts_list,
    render_resource_contents,
    render_resources_list,
    render_tool_result,
    render_tools_list,
)
from mcpcli.utils.terminal import async_input, console, err_console, print_info, print_warning, run_with_spinner

# CLI 앱 생성
app = typer.Typer(
    help="mcpcli - MCP 서버의 도구, 리소스, 프롬프트를 다루는 CLI 클라이언트",
    no_args_is_help=True
)

# 로깅 설정
logging.basicConfig(
    level=logging.INFO,
    format="%(message)s",
    datefmt="[%X]",
    handlers=[RichHandler(console=err_console, rich_tracebacks=True)]
)
logger = logging.getLogger("mcpcli")

# MCP 서버 로그 수준 매핑
SERVER_LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "notice": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
    "alert": logging.CRITICAL,
    "emergency": logging.CRITICAL,
}

# 종료 코드
EXIT_ERROR = 1
EXIT_USAGE = 2

@dataclass
class AppContext:
    """명령 간에 공유하는 실행 설정"""
    server: ServerConfig
    settings: ClientSettings

async def log_notification(notification: JSONRPCNotification) -> None:
    """서버 알림을 로컬 로거로 전달"""
    params = notification.params or {}

    if notification.method == "notifications/message":
        level = SERVER_LOG_LEVELS.get(str(params.get("level")), logging.INFO)
        source = params.get("logger") or "server"
        logging.getLogger("mcpcli.server").log(level, f"{source}: {params.get('data')}")
    else:
        logger.debug(f"서버 알림: {notification.method} {params}")

async def collect_pages(fetch: Callable[[Optional[str]], Awaitable[Any]], field: str) -> List[Any]:
    """nextCursor를 따라 모든 페이지의 항목 수집"""
    items: List[Any] = []
    cursor: Optional[str] = None
    seen = set()

    while True:
        page = await fetch(cursor)
        items.extend(getattr(page, field))
        cursor = page.nextCursor
        if not cursor:
            return items
        if cursor in seen:
            print_warning(f"서버가 같은 커서를 반복해서 반환했습니다: {cursor}")
            return items
        seen.add(cursor)

async def list_tools(client: MCPClient) -> None:
    logger.info("도구 목록 요청 중...")
    render_tools_list(await collect_pages(client.list_tools, "tools"))

async def list_resources(client: MCPClient) -> None:
    logger.info("리소스 목록 요청 중...")
    render_resources_list(await collect_pages(client.list_resources, "resources"))

async def list_prompts(client: MCPClient) -> None:
    logger.info("프롬프트 목록 요청 중...")
    render_prompts_list(await collect_pages(client.list_prompts, "prompts"))

async def call_tool(client: MCPClient, tool: str, arguments: Optional[Dict[str, Any]]) -> None:
    logger.info(f"도구 호출: {tool}, 인자: {arguments or {}}")
    result = await client.call_tool(tool, arguments)
    render_tool_result(result)
    if result.isError:
        logger.error(f"도구 '{tool}'이(가) 오류를 반환했습니다")

async def read_resource(client: MCPClient, uri: str) -> None:
    logger.info(f"리소스 읽기: {uri}")
    render_resource_contents(await client.read_resource(uri))

async def get_prompt(client: MCPClient, name: str, arguments: Optional[Dict[str, Any]]) -> None:
    logger.info(f"프롬프트 조회: {name}, 인자: {arguments or {}}")
    render_prompt_result(await client.get_prompt(name, arguments))

async def handle_interactive_command(client: MCPClient, line: str) -> bool:
    """대화형 명령 한 줄 처리 (종료 명령이면 False)"""
    line = line.strip()
    if not line:
        return True

    # 명령, 첫 번째 인자, 나머지(JSON 인자)
    parts = line.split(maxsplit=2)
    command = parts[0]
    rest = parts[2] if len(parts) > 2 else None

    if command in ("exit", "quit"):
        return False

    try:
        if command == "help":
            render_help()
        elif command == "tools":
            await list_tools(client)
        elif command == "resources":
            await list_resources(client)
        elif command == "prompts":
            await list_prompts(client)
        elif command == "call":
            if len(parts) < 2:
                console.print("사용법: call <도구> [인자]")
            else:
                await call_tool(client, parts[1], parse_json_arguments(rest))
        elif command == "read":
            if len(parts) < 2:
                console.print("사용법: read <uri>")
            else:
                await read_resource(client, parts[1])
        elif command == "prompt":
            if len(parts) < 2:
                console.print("사용법: prompt <이름> [인자]")
            else:
                await get_prompt(client, parts[1], parse_json_arguments(rest))
        else:
            console.print(f"알 수 없는 명령: {command}. 명령 목록을 보려면 'help'를 입력하세요.")
    except TransportError:
        # 연결이 끊기면 더 진행할 수 없음
        raise
    except MCPClientError as e:
        render_error(f"'{command}' 실패: {str(e)}")

    return True

async def interactive_loop(client: MCPClient, read_line: Optional[Callable[[], Awaitable[Optional[str]]]] = None) -> None:
    """대화형 모드"""
    if read_line is None:
        read_line = lambda: async_input("[green]>[/green]")

    print_info("대화형 모드를 시작합니다. 명령 목록은 'help', 종료는 'exit'를 입력하세요.")

    while True:
        line = await read_line()
        if line is None:
            break
        if not await handle_interactive_command(client, line):
            break

    print_info("대화형 모드를 종료합니다")

async def run_with_client(options: AppContext, command: Callable[[MCPClient], Awaitable[None]]) -> None:
    """서버에 연결하고 명령 실행 후 연결 종료"""
    server = options.server
    settings = options.settings

    client = MCPClient(
        name=settings.name,
        command=server.command,
        args=server.args,
        env=server.env,
        version=settings.version,
        request_timeout=settings.request_timeout,
        max_decode_failures=settings.max_decode_failures,
        notification_handler=log_notification,
    )

    try:
        logger.info(f"서버 연결 중: {' '.join([server.command] + server.args)}")
        result = await run_with_spinner("서버 연결 중...", client.initialize)
        logger.info(f"서버 연결됨: {result.serverInfo.name} v{result.serverInfo.version}")

        await command(client)
    finally:
        await client.close()

def run_command(ctx: typer.Context, command: Callable[[MCPClient], Awaitable[None]]) -> None:
    """비동기 명령 실행 및 오류를 종료 코드로 변환"""
    try:
        asyncio.run(run_with_client(ctx.obj, command))
    except UsageError as e:
        render_error(str(e))
        raise typer.Exit(code=EXIT_USAGE)
    except MCPClientError as e:
        render_error(str(e))
        raise typer.Exit(code=EXIT_ERROR)

def parse_arguments_option(args: str) -> Optional[Dict[str, Any]]:
    """--args 옵션 파싱 (실패 시 연결 전에 종료)"""
    try:
        return parse_json_arguments(args)
    except UsageError as e:
        render_error(str(e))
        raise typer.Exit(code=EXIT_USAGE)

@app.callback()
def main(
    ctx: typer.Context,
    server: str = typer.Option(DEFAULT_SERVER, "--server", "-s", envvar="MCPCLI_SERVER",
                               help="실행할 서버 명령어 또는 설정 파일에 등록된 서버 이름"),
    config_path: Optional[str] = typer.Option(None, "--config", envvar="MCPCLI_CONFIG",
                                              help="설정 파일 경로 (기본값: ~/.mcp.json)"),
    timeout: Optional[float] = typer.Option(None, "--timeout", envvar="MCPCLI_TIMEOUT",
                                            help="요청 응답 대기 시간(초)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="상세 로깅 활성화")
):
    """mcpcli - MCP 서버의 도구, 리소스, 프롬프트를 다루는 CLI 클라이언트"""
    logging.getLogger().setLevel(logging.DEBUG if verbose else logging.INFO)
    if verbose:
        logger.debug("상세 로깅 활성화")

    try:
        config = Config(config_path=config_path)
        server_config = config.resolve_server(server)
        settings = ClientSettings(request_timeout=timeout)
    except UsageError as e:
        render_error(str(e))
        raise typer.Exit(code=EXIT_USAGE)
    except ValidationError as e:
        render_error(f"잘못된 설정: {str(e)}")
        raise typer.Exit(code=EXIT_USAGE)

    ctx.obj = AppContext(server=server_config, settings=settings)

@app.command("list-tools")
def list_tools_command(ctx: typer.Context):
    """서버에서 사용 가능한 도구 목록 표시"""
    run_command(ctx, list_tools)

@app.command("list-resources")
def list_resources_command(ctx: typer.Context):
    """서버에서 사용 가능한 리소스 목록 표시"""
    run_command(ctx, list_resources)

@app.command("list-prompts")
def list_prompts_command(ctx: typer.Context):
    """서버에서 사용 가능한 프롬프트 목록 표시"""
    run_command(ctx, list_prompts)

@app.command("call-tool")
def call_tool_command(
    ctx: typer.Context,
    tool: str = typer.Argument(..., help="호출할 도구 이름"),
    args: str = typer.Option("{}", "--args", "-a", help="도구 인자 (JSON 객체)")
):
    """도구 호출"""
    arguments = parse_arguments_option(args)
    run_command(ctx, lambda client: call_tool(client, tool, arguments))

@app.command("read-resource")
def read_resource_command(
    ctx: typer.Context,
    uri: str = typer.Argument(..., help="읽을 리소스 URI")
):
    """리소스 읽기"""
    run_command(ctx, lambda client: read_resource(client, uri))

@app.command("get-prompt")
def get_prompt_command(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="조회할 프롬프트 이름"),
    args: str = typer.Option("{}", "--args", "-a", help="프롬프트 인자 (JSON 객체)")
):
    """프롬프트 조회"""
    arguments = parse_arguments_option(args)
    run_command(ctx, lambda client: get_prompt(client, name, arguments))

@app.command()
def interactive(ctx: typer.Context):
    """대화형 모드"""
    run_command(ctx, interactive_loop)

if __name__ == "__main__":
    app()
