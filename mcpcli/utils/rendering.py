from typing import List

from rich.markdown import Markdown
from rich.markup import escape
from rich.panel import Panel
from rich.text import Text
from rich.table import Table

from mcpcli.mcp.types import (
    CallToolResult,
    Content,
    EmbeddedResource,
    GetPromptResult,
    ImageContent,
    Prompt,
    ReadResourceResult,
    Resource,
    TextContent,
    Tool,
)
from mcpcli.utils.terminal import console, err_console

def render_markdown(text: str) -> None:
    """마크다운 렌더링"""
    md = Markdown(text, code_theme="monokai")
    console.print(md)

def render_error(message: str) -> None:
    """오류 메시지 렌더링 (표준 오류)"""
    error_panel = Panel(
        Text(message, style="bold red"),
        border_style="red",
        title="오류",
        expand=False
    )
    err_console.print(error_panel)

def describe_content(content: Content) -> str:
    """콘텐츠 블록 한 줄 요약"""
    if isinstance(content, TextContent):
        return f"텍스트: {content.text}"
    if isinstance(content, ImageContent):
        return f"이미지: {len(content.raw)} 바이트, 형식: {content.mimeType}"
    if isinstance(content, EmbeddedResource):
        return f"리소스: {content.resource.uri}"
    return f"알 수 없는 콘텐츠: {content!r}"

def render_tools_list(tools: List[Tool]) -> None:
    """도구 목록 렌더링"""
    if not tools:
        console.print("사용 가능한 도구 없음")
        return

    table = Table(show_header=True, header_style="bold", title="사용 가능한 도구")
    table.add_column("도구", style="cyan")
    table.add_column("설명")

    for tool in tools:
        table.add_row(escape(tool.name), escape(tool.description or ""))

    console.print(table)

def render_resources_list(resources: List[Resource]) -> None:
    """리소스 목록 렌더링"""
    if not resources:
        console.print("사용 가능한 리소스 없음")
        return

    table = Table(show_header=True, header_style="bold", title="사용 가능한 리소스")
    table.add_column("URI", style="cyan")
    table.add_column("이름")
    table.add_column("설명")
    table.add_column("MIME")

    for resource in resources:
        table.add_row(
            escape(resource.uri),
            escape(resource.name or ""),
            escape(resource.description or ""),
            escape(resource.mimeType or ""),
        )

    console.print(table)

def render_prompts_list(prompts: List[Prompt]) -> None:
    """프롬프트 목록 렌더링"""
    if not prompts:
        console.print("사용 가능한 프롬프트 없음")
        return

    table = Table(show_header=True, header_style="bold", title="사용 가능한 프롬프트")
    table.add_column("프롬프트", style="cyan")
    table.add_column("설명")
    table.add_column("인자")

    for prompt in prompts:
        arguments = ", ".join(
            f"{arg.name}{'*' if arg.required else ''}" for arg in prompt.arguments
        )
        table.add_row(escape(prompt.name), escape(prompt.description or ""), escape(arguments))

    console.print(table)

def render_tool_result(result: CallToolResult) -> None:
    """도구 호출 결과 렌더링"""
    title = "[bold red]도구 결과 (오류):[/bold red]" if result.isError else "[bold]도구 결과:[/bold]"
    console.print(title)

    if not result.content:
        console.print("  (내용 없음)")

    for content in result.content:
        console.print(f"  {escape(describe_content(content))}")

def render_resource_contents(result: ReadResourceResult) -> None:
    """리소스 내용 렌더링"""
    console.print("[bold]리소스 내용:[/bold]")

    for contents in result.contents:
        console.print(f"  URI: {escape(contents.uri)}")
        if contents.mimeType:
            console.print(f"  MIME 형식: {escape(contents.mimeType)}")
        if contents.text is not None:
            console.print(f"  텍스트: {escape(contents.text)}")
        if contents.blob is not None:
            console.print(f"  바이너리: {len(contents.blob_bytes)} 바이트")

def render_prompt_result(result: GetPromptResult) -> None:
    """프롬프트 조회 결과 렌더링"""
    console.print("[bold]프롬프트 결과:[/bold]")

    if result.description:
        console.print(f"  설명: {escape(result.description)}")

    for message in result.messages:
        if isinstance(message.content, TextContent):
            body = message.content.text
        elif isinstance(message.content, ImageContent):
            body = "[이미지]"
        else:
            body = "[리소스]"
        console.print(f"  [cyan]{message.role}[/cyan]: {escape(body)}")

def render_help() -> None:
    """대화형 모드 도움말 렌더링"""
    help_text = """
# 사용 가능한 명령

- **tools**: 사용 가능한 도구 목록
- **resources**: 사용 가능한 리소스 목록
- **prompts**: 사용 가능한 프롬프트 목록
- **call <도구> [JSON 인자]**: 도구 호출
- **read <URI>**: 리소스 읽기
- **prompt <이름> [JSON 인자]**: 프롬프트 조회
- **help**: 이 도움말 표시
- **exit** / **quit**: 대화형 모드 종료

예시:
```
call echo {"text": "hi"}
read file:///tmp/notes.txt
```
"""
    render_markdown(help_text)
