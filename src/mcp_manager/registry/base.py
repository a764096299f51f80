"""Server Registry 介面定義。"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from mcp_manager.config import ServerConfig


@runtime_checkable
class ConfigLookup(Protocol):
    """連線管理所需的唯讀查詢介面。"""

    def get_config(self, name: str) -> ServerConfig | None:
        """依名稱取得 Server 配置，不存在時回傳 None。"""
        ...

    def list_all(self) -> dict[str, ServerConfig]:
        """取得所有 Server 配置的複本。"""
        ...


@runtime_checkable
class ServerRegistry(ConfigLookup, Protocol):
    """Server 配置儲存 Protocol。

    查詢為同步的記憶體操作；寫入操作為非同步，實作者負責持久化。
    """

    async def initialize(self) -> None:
        """載入已儲存的配置。重複呼叫應無作用。"""
        ...

    async def register(self, name: str, config: ServerConfig) -> None:
        """新增或覆蓋 Server 配置。

        Args:
            name: Server 名稱
            config: Server 配置
        """
        ...

    async def unregister(self, name: str) -> None:
        """移除 Server 配置。

        Args:
            name: Server 名稱

        Raises:
            ServerNotFoundError: Server 不存在
        """
        ...
