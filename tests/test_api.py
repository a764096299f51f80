"""MCP Manager API 單元測試。

使用 httpx AsyncClient 搭配假的 client 工廠，隔離真實的 Worker 程序。
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator
from typing import Any
from unittest.mock import patch

import allure
import pytest
from httpx import ASGITransport, AsyncClient

from mcp_manager.manager import McpManager
from mcp_manager_app.main import app
from tests.fakes import FakeClientFactory


# --- 輔助函數 ---
def parse_sse(text: str) -> list[dict[str, Any]]:
    """解析 SSE 回應文本為事件列表。

    Args:
        text: 原始 SSE 文本

    Returns:
        事件字典列表，每個包含 type (str) 和 data (Any, 已 JSON 解析)
    """
    events: list[dict[str, Any]] = []
    current: dict[str, Any] = {}

    for line in text.split('\n'):
        if line.startswith('event:'):
            value = line.split(':', 1)[1]
            current['type'] = value[1:] if value.startswith(' ') else value
        elif line.startswith('data:'):
            value = line.split(':', 1)[1]
            raw_data = value[1:] if value.startswith(' ') else value
            try:
                current['data'] = json.loads(raw_data)
            except json.JSONDecodeError:
                current['data'] = raw_data
        elif line == '' and current:
            events.append(current)
            current = {}

    if current:
        events.append(current)

    return events


@pytest.fixture
async def api(manager: McpManager) -> AsyncIterator[AsyncClient]:
    """以測試用 Manager 取代全局單例的 API client。"""
    with patch('mcp_manager_app.main.manager', manager):
        async with AsyncClient(transport=ASGITransport(app=app), base_url='http://test') as client:
            yield client


# =============================================================================
# Server 管理
# =============================================================================


@allure.feature('HTTP API')
@allure.story('Server 管理')
class TestServerEndpoints:
    """Server 管理端點測試。"""

    @allure.title('列出所有 Server 與狀態')
    async def test_list_servers(self, api: AsyncClient) -> None:
        response = await api.get('/api/servers')

        assert response.status_code == 200
        servers = {s['name']: s for s in response.json()['servers']}
        assert set(servers) == {'S', 'T'}
        assert servers['S']['status'] == 'disconnected'
        assert servers['S']['config']['command'] == 'echo'
        assert servers['S']['last_error'] is None

    @allure.title('註冊新的 Server 並自動連線')
    async def test_put_new_server(self, api: AsyncClient, manager: McpManager) -> None:
        response = await api.put(
            '/api/servers/N',
            json={'command': 'echo', 'args': ['hi'], 'display_name': 'New'},
        )

        assert response.status_code == 201
        body = response.json()
        assert body['status'] == 'connected'
        assert body['config']['displayName'] == 'New'
        assert manager.get_connection_status('N') == 'connected'

    @allure.title('更新既有的 Server')
    async def test_put_existing_server(self, api: AsyncClient, manager: McpManager) -> None:
        response = await api.put('/api/servers/T', json={'command': 'cat', 'auto_connect': False})

        assert response.status_code == 200
        assert manager.get_server_config('T').command == 'cat'  # type: ignore[union-attr]

    @allure.title('缺少 command 時回傳 422')
    async def test_put_invalid_body(self, api: AsyncClient) -> None:
        response = await api.put('/api/servers/N', json={'args': ['x']})

        assert response.status_code == 422

    @allure.title('移除 Server')
    async def test_delete_server(self, api: AsyncClient, manager: McpManager) -> None:
        response = await api.delete('/api/servers/T')

        assert response.status_code == 200
        assert manager.get_server_config('T') is None

    @allure.title('移除不存在的 Server 回傳 404')
    async def test_delete_unknown(self, api: AsyncClient) -> None:
        response = await api.delete('/api/servers/ghost')

        assert response.status_code == 404
        assert response.json()['type'] == 'ServerNotFoundError'


# =============================================================================
# 連線控制
# =============================================================================


@allure.feature('HTTP API')
@allure.story('連線控制')
class TestConnectionEndpoints:
    """連線端點測試。"""

    @allure.title('連線與中斷')
    async def test_connect_and_disconnect(self, api: AsyncClient) -> None:
        connected = await api.post('/api/servers/S/connect')
        disconnected = await api.post('/api/servers/S/disconnect')

        assert connected.json() == {'name': 'S', 'status': 'connected'}
        assert disconnected.json() == {'name': 'S', 'status': 'disconnected'}

    @allure.title('連線未註冊的 Server 回傳 404')
    async def test_connect_unknown(self, api: AsyncClient) -> None:
        response = await api.post('/api/servers/ghost/connect')

        assert response.status_code == 404

    @allure.title('握手失敗回傳 502')
    async def test_connect_handshake_failure(
        self, api: AsyncClient, factory: FakeClientFactory
    ) -> None:
        factory.connect_error = RuntimeError('bad handshake')

        response = await api.post('/api/servers/S/connect')

        assert response.status_code == 502
        assert response.json()['type'] == 'HandshakeError'


# =============================================================================
# 工具查詢與呼叫
# =============================================================================


@allure.feature('HTTP API')
@allure.story('工具查詢與呼叫')
class TestToolEndpoints:
    """工具端點測試。"""

    @allure.title('列出工具')
    async def test_list_tools(self, api: AsyncClient, manager: McpManager) -> None:
        await manager.connect_server('S')

        response = await api.get('/api/servers/S/tools')

        assert response.status_code == 200
        tools = response.json()['tools']
        assert [t['name'] for t in tools] == ['t1']
        assert tools[0]['input_schema'] == {'type': 'object'}

    @allure.title('未連線時列出工具回傳 404')
    async def test_list_tools_disconnected(self, api: AsyncClient) -> None:
        response = await api.get('/api/servers/S/tools')

        assert response.status_code == 404

    @allure.title('工具呼叫以 SSE 串流更新')
    async def test_call_tool_stream(self, api: AsyncClient, manager: McpManager) -> None:
        await manager.connect_server('S')

        response = await api.post('/api/servers/S/tools/t1/call', json={'args': {'x': 1}})

        assert response.status_code == 200
        assert 'text/event-stream' in response.headers['content-type']
        events = parse_sse(response.text)
        assert [e['type'] for e in events] == ['tool_start', 'tool_end', 'done']
        assert events[0]['data']['content'] == {'tool_name': 't1', 'args': {'x': 1}}
        assert events[1]['data']['is_final'] is True
        assert events[1]['data']['content']['success'] is True

    @allure.title('工具呼叫失敗以 error 事件結束')
    async def test_call_tool_failure_stream(
        self, api: AsyncClient, manager: McpManager, factory: FakeClientFactory
    ) -> None:
        await manager.connect_server('S')
        factory.last.call_error = RuntimeError('worker crashed')

        response = await api.post('/api/servers/S/tools/t1/call', json={})

        events = parse_sse(response.text)
        assert [e['type'] for e in events] == ['tool_start', 'error', 'done']
        assert events[1]['data']['is_final'] is True
        assert 'worker crashed' in events[1]['data']['content']

    @allure.title('未連線時呼叫工具回傳 404')
    async def test_call_tool_disconnected(self, api: AsyncClient) -> None:
        response = await api.post('/api/servers/S/tools/t1/call', json={})

        assert response.status_code == 404
        assert response.json()['type'] == 'ServerNotFoundError'

    @allure.title('連線中呼叫工具回傳 409')
    async def test_call_tool_connecting(
        self, api: AsyncClient, manager: McpManager, factory: FakeClientFactory
    ) -> None:
        factory.connect_gate = asyncio.Event()
        await manager.initialize(auto_connect=False)
        pending = asyncio.create_task(manager.connect_server('S'))
        await asyncio.sleep(0)

        response = await api.post('/api/servers/S/tools/t1/call', json={})

        assert response.status_code == 409
        assert response.json()['type'] == 'NotConnectedError'
        factory.connect_gate.set()
        await pending
