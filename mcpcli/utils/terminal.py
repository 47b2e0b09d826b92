import asyncio
from typing import Any, Callable, Optional

from rich.console import Console
from rich.markup import escape
from rich.prompt import Prompt
from rich.progress import Progress, SpinnerColumn, TextColumn

console = Console()
err_console = Console(stderr=True)

async def async_input(prompt: str = "") -> Optional[str]:
    """비동기 입력 받기 (입력 종료 시 None)"""
    loop = asyncio.get_running_loop()
    try:
        return await loop.run_in_executor(None, lambda: Prompt.ask(prompt, console=console))
    except EOFError:
        return None

async def run_with_spinner(message: str, func: Callable) -> Any:
    """스피너와 함께 함수 실행"""
    with Progress(
        SpinnerColumn(),
        TextColumn("[bold green]{task.description}"),
        console=err_console,
        transient=True
    ) as progress:
        task = progress.add_task(message, total=None)
        try:
            return await func()
        finally:
            progress.update(task, completed=True, visible=False)

def print_warning(message: str) -> None:
    """경고 메시지 출력"""
    err_console.print(f"[bold yellow]경고:[/bold yellow] {escape(message)}")

def print_info(message: str) -> None:
    """정보 메시지 출력"""
    console.print(f"[bold blue]정보:[/bold blue] {escape(message)}")
