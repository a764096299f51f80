"""全域測試設定。"""

from __future__ import annotations

import pytest
from dotenv import load_dotenv

from mcp_manager.config import ServerConfig
from mcp_manager.manager import McpManager
from mcp_manager.registry.memory_backend import MemoryServerRegistry
from tests.fakes import FakeClientFactory

# 載入 .env，確保測試時也能讀取 MCP_MANAGER_STORAGE_DIR 等環境變數
load_dotenv()


def pytest_addoption(parser: pytest.Parser) -> None:
    """新增自訂命令列參數。"""
    parser.addoption(
        '--run-smoke',
        action='store_true',
        default=False,
        help='執行 smoke test（會啟動真實的 Worker 程序）',
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """根據命令列參數決定是否跳過 smoke test。"""
    if config.getoption('--run-smoke'):
        return

    skip_smoke = pytest.mark.skip(reason='需要加 --run-smoke 才會執行')
    for item in items:
        if 'smoke' in item.keywords:
            item.add_marker(skip_smoke)


# --- 共用 fixture ---


@pytest.fixture
def factory() -> FakeClientFactory:
    """預設握手成功、提供一個工具 t1 的假 client 工廠。"""
    return FakeClientFactory(tools=[{'name': 't1', 'inputSchema': {'type': 'object'}}])


@pytest.fixture
def registry() -> MemoryServerRegistry:
    """已註冊 S 與 T 兩個 Server 的記憶體 registry。"""
    return MemoryServerRegistry(
        _servers={
            'S': ServerConfig(command='echo', args=['ok']),
            'T': ServerConfig(command='echo', args=['other'], auto_connect=False),
        }
    )


@pytest.fixture
def manager(registry: MemoryServerRegistry, factory: FakeClientFactory) -> McpManager:
    """使用記憶體 registry 與假 client 的 Manager。"""
    return McpManager(registry, client_factory=factory)
