"""工具 Schema 快取模組。

每個 Server 的工具清單在第一次查詢時向遠端取得並快取，
連線轉為 disconnected 或 error 時自動失效。
"""

from __future__ import annotations

import logging

from mcp_manager.connection import ConnectionManager
from mcp_manager.envelope import to_tool_definition
from mcp_manager.exceptions import DiscoveryError, NotConnectedError, ServerNotFoundError
from mcp_manager.types import ConnectionStatus, ToolDefinition

logger = logging.getLogger(__name__)


class SchemaCache:
    """Server 工具定義快取。

    對外一律回傳複本。每個 Server 有一個世代計數（clear_cache 則遞增全域計數），
    失效時遞增，查詢進行中發生失效的話，查詢結果不會寫回快取。
    """

    def __init__(self, connections: ConnectionManager) -> None:
        """初始化快取並訂閱連線狀態事件。

        Args:
            connections: 連線管理器
        """
        self._connections = connections
        self._cache: dict[str, dict[str, ToolDefinition]] = {}
        self._generations: dict[str, int] = {}
        self._epoch = 0
        self._unsubscribe = connections.events.connection_status_changed.subscribe(
            self._on_status_changed
        )

    def _on_status_changed(
        self,
        server_name: str,
        status: ConnectionStatus,
        error: Exception | None,
    ) -> None:
        if status in ('disconnected', 'error'):
            self.invalidate_cache(server_name)

    def _generation(self, server_name: str) -> tuple[int, int]:
        return (self._epoch, self._generations.get(server_name, 0))

    async def list_tools(self, server_name: str) -> dict[str, ToolDefinition]:
        """取得 Server 的工具定義。

        Args:
            server_name: Server 名稱

        Returns:
            工具名稱到 ToolDefinition 的對應（複本）

        Raises:
            ServerNotFoundError: Server 未連線
            NotConnectedError: Server 已知但目前無法使用
            DiscoveryError: 遠端查詢失敗
        """
        cached = self._cache.get(server_name)
        if cached is not None:
            logger.debug('工具清單快取命中', extra={'server': server_name})
            return dict(cached)

        client = self._connections.get_client(server_name)
        if client is None:
            status = self._connections.get_status(server_name)
            if status == 'disconnected':
                raise ServerNotFoundError(server_name)
            raise NotConnectedError(
                f"Server '{server_name}' 目前無法使用（狀態: {status}）",
                server_name=server_name,
            )

        generation = self._generation(server_name)
        logger.info('查詢遠端工具清單', extra={'server': server_name})
        try:
            raw_tools = await client.list_tools()
        except Exception as e:
            self._cache.pop(server_name, None)
            logger.error('查詢工具清單失敗', extra={'server': server_name, 'error': str(e)})
            raise DiscoveryError(
                f"Server '{server_name}' 查詢工具清單失敗: {e}",
                server_name=server_name,
                cause=e,
            ) from e

        tools: dict[str, ToolDefinition] = {}
        for raw in raw_tools or []:
            tool = to_tool_definition(raw)
            if tool is None:
                logger.warning('略過沒有名稱的工具', extra={'server': server_name})
                continue
            # 重複名稱以後者為準
            tools[tool.name] = tool

        if self._generation(server_name) == generation:
            self._cache[server_name] = tools
        else:
            logger.debug('查詢期間快取已失效，不寫回', extra={'server': server_name})

        logger.info('工具清單已取得', extra={'server': server_name, 'count': len(tools)})
        return dict(tools)

    async def get_tool_schema(self, server_name: str, tool_name: str) -> ToolDefinition | None:
        """取得單一工具定義，不存在時回傳 None。"""
        tools = await self.list_tools(server_name)
        return tools.get(tool_name)

    def invalidate_cache(self, server_name: str) -> None:
        """移除 Server 的快取，不影響連線狀態。"""
        self._generations[server_name] = self._generations.get(server_name, 0) + 1
        if self._cache.pop(server_name, None) is not None:
            logger.debug('工具清單快取已失效', extra={'server': server_name})

    def clear_cache(self) -> None:
        """清除所有快取。"""
        self._epoch += 1
        self._cache.clear()
        logger.debug('所有工具清單快取已清除')

    def close(self) -> None:
        """取消訂閱連線狀態事件。"""
        self._unsubscribe()
