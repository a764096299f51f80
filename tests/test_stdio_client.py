"""Stdio Client 測試模組。

以假的 stdio_client 與 ClientSession 取代真實子程序，驗證 runner 的生命週期。
涵蓋：
- Rule: 建構時應檢查指令與工作目錄
- Rule: 連線、查詢與關閉
- Rule: Worker 輸出結束時應通知連線中斷
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Iterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, patch

import allure
import anyio
import pytest
from mcp.types import CallToolResult, ListToolsResult, TextContent, Tool

from mcp_manager.transport.base import LaunchSpec
from mcp_manager.transport.stdio import StdioClient, create_stdio_client

SPEC = LaunchSpec(command='echo', args=['ok'])


class _FakeSession:
    """取代 mcp.ClientSession 的假 session。"""

    instances: list[_FakeSession] = []
    initialize_error: BaseException | None = None

    def __init__(self, read_stream: Any, write_stream: Any, client_info: Any = None) -> None:
        self.read_stream = read_stream
        self.client_info = client_info
        self.initialize = AsyncMock(side_effect=self.initialize_error)
        self.list_tools = AsyncMock(
            return_value=ListToolsResult(
                tools=[Tool(name='t1', description='測試工具', inputSchema={'type': 'object'})]
            )
        )
        self.call_tool = AsyncMock(
            return_value=CallToolResult(content=[TextContent(type='text', text='done')])
        )
        _FakeSession.instances.append(self)

    async def __aenter__(self) -> _FakeSession:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        return None


class _FakeTransport:
    """取代 stdio_client，記錄啟動參數並提供可關閉的輸出串流。"""

    def __init__(self) -> None:
        self.params: Any = None
        self.exited = False
        self.read_send, self.read_recv = anyio.create_memory_object_stream(0)

    @asynccontextmanager
    async def __call__(self, params: Any) -> AsyncIterator[tuple[Any, Any]]:
        self.params = params
        try:
            yield self.read_recv, object()
        finally:
            self.exited = True


@pytest.fixture
def transport() -> Iterator[_FakeTransport]:
    fake = _FakeTransport()
    _FakeSession.instances = []
    _FakeSession.initialize_error = None
    with (
        patch('mcp_manager.transport.stdio.stdio_client', fake),
        patch('mcp_manager.transport.stdio.ClientSession', _FakeSession),
    ):
        yield fake


# =============================================================================
# Rule: 建構時應檢查指令與工作目錄
# =============================================================================


@allure.feature('Stdio Client')
@allure.story('建構時應檢查指令與工作目錄')
class TestStdioClientValidation:
    """建構檢查測試。"""

    @allure.title('找不到指令時拋出 FileNotFoundError')
    def test_missing_command(self) -> None:
        with pytest.raises(FileNotFoundError):
            StdioClient('S', LaunchSpec(command='definitely-not-a-real-command-42'))

    @allure.title('工作目錄不存在時拋出 NotADirectoryError')
    def test_missing_working_dir(self, tmp_path: Path) -> None:
        with pytest.raises(NotADirectoryError):
            StdioClient('S', LaunchSpec(command='echo', cwd=str(tmp_path / 'missing')))

    @allure.title('預設工廠建立 StdioClient')
    def test_factory(self) -> None:
        client = create_stdio_client('S', SPEC)

        assert isinstance(client, StdioClient)
        assert client.server_name == 'S'
        assert client.is_connected is False


# =============================================================================
# Rule: 連線、查詢與關閉
# =============================================================================


@allure.feature('Stdio Client')
@allure.story('連線、查詢與關閉')
class TestStdioClientLifecycle:
    """生命週期測試。"""

    @allure.title('連線時帶入啟動參數與 client 資訊')
    async def test_connect(self, transport: _FakeTransport) -> None:
        client = StdioClient('S', LaunchSpec(command='echo', args=['ok'], client_name='host'))

        await client.connect()

        assert client.is_connected is True
        assert transport.params.command == 'echo'
        assert transport.params.args == ['ok']
        session = _FakeSession.instances[-1]
        session.initialize.assert_awaited_once()
        assert session.client_info.name == 'host'
        await client.close()

    @allure.title('工具清單與呼叫結果轉為 camelCase 的 dict')
    async def test_list_and_call(self, transport: _FakeTransport) -> None:
        client = StdioClient('S', SPEC)
        await client.connect()

        tools = await client.list_tools()
        result = await client.call_tool('t1', {'x': 1})

        assert tools[0]['name'] == 't1'
        assert tools[0]['inputSchema'] == {'type': 'object'}
        assert result['isError'] is False
        assert result['content'][0]['text'] == 'done'
        _FakeSession.instances[-1].call_tool.assert_awaited_once_with('t1', {'x': 1})
        await client.close()

    @allure.title('關閉後離開 SDK context 且不通知中斷')
    async def test_close(self, transport: _FakeTransport) -> None:
        lost: list[BaseException | None] = []
        client = StdioClient('S', SPEC, on_lost=lost.append)
        await client.connect()

        await client.close()

        assert transport.exited is True
        assert client.is_connected is False
        assert lost == []

    @allure.title('未連線時查詢拋出 ConnectionError')
    async def test_list_before_connect(self) -> None:
        client = StdioClient('S', SPEC)

        with pytest.raises(ConnectionError):
            await client.list_tools()

    @allure.title('重複連線拋出 RuntimeError')
    async def test_connect_twice(self, transport: _FakeTransport) -> None:
        client = StdioClient('S', SPEC)
        await client.connect()

        with pytest.raises(RuntimeError):
            await client.connect()
        await client.close()

    @allure.title('握手失敗時 connect 拋出原始錯誤')
    async def test_handshake_failure(self, transport: _FakeTransport) -> None:
        _FakeSession.initialize_error = RuntimeError('unsupported protocol version')
        client = StdioClient('S', SPEC)

        with pytest.raises(RuntimeError, match='unsupported protocol version'):
            await client.connect()

        assert transport.exited is True
        await client.close()

    @allure.title('未連線時關閉不做任何事')
    async def test_close_without_connect(self) -> None:
        await StdioClient('S', SPEC).close()


# =============================================================================
# Rule: Worker 輸出結束時應通知連線中斷
# =============================================================================


@allure.feature('Stdio Client')
@allure.story('Worker 輸出結束時應通知連線中斷')
class TestStdioClientLost:
    """連線中斷測試。"""

    @allure.title('stdout 關閉時呼叫 on_lost')
    async def test_eof_triggers_on_lost(self, transport: _FakeTransport) -> None:
        lost = anyio.Event()
        errors: list[BaseException | None] = []

        def on_lost(error: BaseException | None) -> None:
            errors.append(error)
            lost.set()

        client = StdioClient('S', SPEC, on_lost=on_lost)
        await client.connect()

        await transport.read_send.aclose()
        with anyio.fail_after(1):
            await lost.wait()

        assert len(errors) == 1
        assert isinstance(errors[0], ConnectionError)
        assert client.is_connected is False
        assert transport.exited is True
        await client.close()
