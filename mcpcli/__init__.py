"""
mcpcli - MCP 서버의 도구, 리소스, 프롬프트를 다루는 명령줄 클라이언트

이 패키지는 stdio로 실행한 MCP(Model Context Protocol) 서버와 세션을 맺고
도구 호출, 리소스 읽기, 프롬프트 조회 등의 기능을 제공합니다.
"""

__version__ = "0.1.0"
