"""記憶體 Server Registry。

用於測試與嵌入式場景，配置存在記憶體中，程序結束即消失。
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field

from mcp_manager.config import ServerConfig
from mcp_manager.exceptions import ServerNotFoundError

logger = logging.getLogger(__name__)


@dataclass
class MemoryServerRegistry:
    """記憶體 Server Registry。

    存入與取出都做深複製，避免呼叫端修改已儲存的配置。
    """

    _servers: dict[str, ServerConfig] = field(default_factory=lambda: {})

    async def initialize(self) -> None:
        """記憶體後端無需載入。"""

    async def register(self, name: str, config: ServerConfig) -> None:
        """新增或覆蓋 Server 配置。"""
        self._servers[name] = copy.deepcopy(config)
        logger.debug('Server 配置已儲存（記憶體）', extra={'server': name})

    async def unregister(self, name: str) -> None:
        """移除 Server 配置。

        Raises:
            ServerNotFoundError: Server 不存在
        """
        if name not in self._servers:
            raise ServerNotFoundError(name)
        del self._servers[name]
        logger.debug('Server 配置已移除（記憶體）', extra={'server': name})

    def get_config(self, name: str) -> ServerConfig | None:
        """依名稱取得 Server 配置。"""
        config = self._servers.get(name)
        return copy.deepcopy(config) if config is not None else None

    def list_all(self) -> dict[str, ServerConfig]:
        """取得所有 Server 配置的複本。"""
        return copy.deepcopy(self._servers)
