"""MCP Manager 門面。

組合 Registry、ConnectionManager、SchemaCache 與 ToolInvoker，
對外提供單一 API 與事件通道。
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from mcp_manager.config import ManagerConfig, ServerConfig
from mcp_manager.connection import ConnectionManager
from mcp_manager.events import ManagerEvents
from mcp_manager.exceptions import ServerNotFoundError
from mcp_manager.invoker import ToolInvoker, UpdateCallback
from mcp_manager.registry.base import ServerRegistry
from mcp_manager.registry.json_backend import JsonServerRegistry
from mcp_manager.schema import SchemaCache
from mcp_manager.transport.base import ClientFactory
from mcp_manager.types import ConnectionStatus, StreamUpdate, ToolCallResult, ToolDefinition

logger = logging.getLogger(__name__)


class McpManager:
    """MCP Server 管理器。

    使用方式：
        manager = McpManager(JsonServerRegistry('.mcp-manager'))
        await manager.initialize()
        result = await manager.call_tool('echo', 'echo', {'text': 'hi'})
        await manager.shutdown()

    Attributes:
        events: 所有對外事件通道
        config: Manager 配置
    """

    def __init__(
        self,
        registry: ServerRegistry | None = None,
        config: ManagerConfig | None = None,
        client_factory: ClientFactory | None = None,
    ) -> None:
        """初始化 Manager。

        Args:
            registry: Server 配置儲存（可選，預設為儲存目錄下的 servers.json）
            config: Manager 配置（可選）
            client_factory: Client 工廠（可選，預設為 stdio client）
        """
        self.config = config or ManagerConfig()
        self.events = ManagerEvents()
        self._registry: ServerRegistry = registry or JsonServerRegistry(
            self.config.get_storage_dir()
        )
        self._connections = ConnectionManager(
            self._registry,
            events=self.events,
            config=self.config,
            client_factory=client_factory,
        )
        self._schemas = SchemaCache(self._connections)
        self._invoker = ToolInvoker(self._connections, call_timeout=self.config.call_timeout)
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(self, auto_connect: bool = True) -> None:
        """載入 Registry，並自動連線 auto_connect 為 True 的 Server。

        單一 Server 連線失敗只記錄日誌，不影響初始化。

        Args:
            auto_connect: 是否自動連線
        """
        if self._initialized:
            logger.warning('McpManager 已初始化')
            return

        logger.info('初始化 McpManager')
        await self._registry.initialize()
        self._initialized = True

        if not auto_connect:
            return

        names = [name for name, cfg in self._registry.list_all().items() if cfg.auto_connect]
        logger.info('自動連線 Server', extra={'count': len(names)})
        await self._connect_many(names)
        logger.info('自動連線完成', extra={'connected': len(self._connections.list_connected())})

    # =========================================================================
    # Server 管理
    # =========================================================================

    async def register_server(self, name: str, config: ServerConfig) -> None:
        """註冊 Server，已初始化且 auto_connect 為 True 時自動連線。

        Raises:
            StorageError: 寫入失敗
        """
        await self._registry.register(name, config)
        self.events.server_registered.emit(name, config)

        if config.auto_connect and self._initialized:
            logger.info('自動連線新註冊的 Server', extra={'server': name})
            try:
                await self._connections.connect(name)
            except Exception as e:
                logger.error('新註冊 Server 自動連線失敗', extra={'server': name, 'error': str(e)})

    async def unregister_server(self, name: str) -> None:
        """中斷連線並移除 Server。

        Raises:
            ServerNotFoundError: Server 不存在
        """
        try:
            await self._connections.disconnect(name)
        except Exception as e:
            logger.warning('移除前中斷連線失敗，繼續移除', extra={'server': name, 'error': str(e)})
        await self._registry.unregister(name)
        self.events.server_unregistered.emit(name)

    async def update_server_config(self, name: str, config: ServerConfig) -> None:
        """更新 Server 配置。

        啟動相關欄位（command、args、env、working_dir）改變且 Server 並非 disconnected 時，
        會中斷連線，並在 auto_connect 為 True 時重新連線。

        Raises:
            ServerNotFoundError: Server 不存在
            StorageError: 寫入失敗
        """
        old_config = self._registry.get_config(name)
        if old_config is None:
            raise ServerNotFoundError(name)

        await self._registry.register(name, config)
        self.events.server_config_updated.emit(name, config)

        if not old_config.launch_differs(config):
            return
        if self._connections.get_status(name) == 'disconnected':
            return

        logger.info('Server 啟動配置已變更，重新連線', extra={'server': name})
        await self._connections.disconnect(name)
        if config.auto_connect:
            try:
                await self._connections.connect(name)
            except Exception as e:
                logger.error('配置更新後重新連線失敗', extra={'server': name, 'error': str(e)})

    def get_server_config(self, name: str) -> ServerConfig | None:
        return self._registry.get_config(name)

    async def get_all_servers(self) -> dict[str, ServerConfig]:
        """取得所有 Server 配置，尚未初始化時先載入 Registry（不自動連線）。"""
        if not self._initialized:
            await self.initialize(auto_connect=False)
        return self._registry.list_all()

    # =========================================================================
    # 連線管理
    # =========================================================================

    async def connect_server(self, name: str) -> None:
        """連線 Server，尚未初始化時先載入 Registry（不自動連線其他 Server）。

        Raises:
            ServerNotFoundError: Server 未註冊
            ProcessLaunchError: 程序無法啟動
            HandshakeError: 協定握手失敗
        """
        if not self._initialized:
            logger.warning('McpManager 尚未初始化，先行初始化', extra={'server': name})
            await self.initialize(auto_connect=False)
        await self._connections.connect(name)

    async def disconnect_server(self, name: str) -> None:
        await self._connections.disconnect(name)

    async def connect_all_servers(self) -> None:
        """並行連線所有已註冊的 Server，個別失敗只記錄日誌。"""
        if not self._initialized:
            await self.initialize(auto_connect=False)
        await self._connect_many(list(self._registry.list_all()))

    async def disconnect_all_servers(self) -> None:
        await self._connections.disconnect_all()

    def get_connection_status(self, name: str) -> ConnectionStatus:
        return self._connections.get_status(name)

    def get_last_error(self, name: str) -> Exception | None:
        """取得 Server 最近一次的連線錯誤（僅限仍有連線記錄時）。"""
        return self._connections.get_last_error(name)

    def list_connected_servers(self) -> list[str]:
        return self._connections.list_connected()

    async def _connect_many(self, names: list[str]) -> None:
        results = await asyncio.gather(
            *[self._connections.connect(name) for name in names],
            return_exceptions=True,
        )
        for name, result in zip(names, results):
            if isinstance(result, Exception):
                logger.error('Server 連線失敗', extra={'server': name, 'error': str(result)})

    # =========================================================================
    # 工具
    # =========================================================================

    async def list_tools(self, server_name: str) -> list[ToolDefinition]:
        """列出 Server 的工具定義（依遠端回傳順序）。"""
        tools = await self._schemas.list_tools(server_name)
        return list(tools.values())

    async def get_tool_schema(self, server_name: str, tool_name: str) -> ToolDefinition | None:
        return await self._schemas.get_tool_schema(server_name, tool_name)

    def invalidate_schema(self, server_name: str) -> None:
        """使 Server 的工具清單快取失效，下次查詢會重新向遠端取得。"""
        self._schemas.invalidate_cache(server_name)

    async def call_tool(
        self,
        server_name: str,
        tool_name: str,
        args: dict[str, Any] | None = None,
        on_update: UpdateCallback | None = None,
    ) -> ToolCallResult:
        """呼叫工具並發送 tool_call_start / tool_call_update / tool_call_end 事件。

        失敗時 tool_call_end 收到 {success: False, is_error: True, error} 後再拋出原例外。

        Raises:
            ServerNotFoundError: Server 未連線
            NotConnectedError: Server 已知但目前無法使用
            ToolCallError: 遠端回報錯誤或呼叫失敗
        """
        arguments = args or {}

        def _forward(update: StreamUpdate) -> None:
            self.events.tool_call_update.emit(server_name, tool_name, update)
            if on_update is not None:
                on_update(update)

        self.events.tool_call_start.emit(server_name, tool_name, arguments)
        try:
            result = await self._invoker.call_tool(server_name, tool_name, arguments, _forward)
        except asyncio.CancelledError:
            self._emit_call_failure(server_name, tool_name, '工具呼叫已取消')
            raise
        except Exception as e:
            self._emit_call_failure(server_name, tool_name, str(e))
            raise
        self.events.tool_call_end.emit(server_name, tool_name, result)
        return result

    def _emit_call_failure(self, server_name: str, tool_name: str, message: str) -> None:
        error_result: ToolCallResult = {'success': False, 'is_error': True, 'error': message}
        self.events.tool_call_end.emit(server_name, tool_name, error_result)

    # =========================================================================
    # 生命週期
    # =========================================================================

    async def shutdown(self) -> None:
        """中斷所有連線。"""
        logger.info('關閉 McpManager')
        await self._connections.disconnect_all()
        logger.info('McpManager 已關閉')
