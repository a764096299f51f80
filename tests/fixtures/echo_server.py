"""Smoke test 用的 MCP Server，以 stdio 提供 echo 與 fail 兩個工具。"""

from mcp.server.fastmcp import FastMCP

server = FastMCP('echo')


@server.tool()
def echo(text: str) -> str:
    """原樣回傳輸入的文字。"""
    return text


@server.tool()
def fail(reason: str) -> str:
    """一律失敗的工具。"""
    raise ValueError(reason)


if __name__ == '__main__':
    server.run()
