"""JSON 檔案 Server Registry。

將 Server 配置以 servers.json 存放在儲存目錄，程序重啟後配置自動恢復。
檔案格式為 {name: config}，config 使用 camelCase 欄位。
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from mcp_manager.config import ServerConfig
from mcp_manager.exceptions import ServerNotFoundError, StorageError

logger = logging.getLogger(__name__)

REGISTRY_FILENAME = 'servers.json'


class JsonServerRegistry:
    """JSON 檔案 Server Registry。

    建構時不讀寫磁碟，必須先呼叫 initialize() 載入檔案。
    初始化前的寫入只保留在記憶體，避免覆蓋尚未載入的檔案。
    """

    def __init__(self, storage_dir: str | Path) -> None:
        """初始化 JSON 後端。

        Args:
            storage_dir: 儲存目錄，servers.json 會放在此目錄下
        """
        self._path = Path(storage_dir) / REGISTRY_FILENAME
        self._servers: dict[str, ServerConfig] = {}
        self._initialized = False

    @property
    def path(self) -> Path:
        """servers.json 的完整路徑。"""
        return self._path

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        """從 servers.json 載入配置。

        檔案不存在時以空的 registry 開始；格式錯誤時記錄警告並以空的 registry 開始。
        """
        if self._initialized:
            logger.warning('Server registry 已初始化', extra={'path': str(self._path)})
            return

        self._servers = self._load()
        self._initialized = True
        logger.info(
            'Server registry 已初始化',
            extra={'path': str(self._path), 'servers': len(self._servers)},
        )

    def _load(self) -> dict[str, ServerConfig]:
        """讀取並解析 servers.json。"""
        try:
            raw = self._path.read_text(encoding='utf-8')
        except FileNotFoundError:
            logger.info('找不到 servers.json，使用空的 registry', extra={'path': str(self._path)})
            return {}
        except OSError as e:
            raise StorageError('load', str(e), e) from e

        try:
            data: Any = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning(
                'servers.json 格式錯誤，使用空的 registry',
                extra={'path': str(self._path), 'error': str(e)},
            )
            return {}

        if not isinstance(data, dict):
            logger.warning('servers.json 不是物件，使用空的 registry', extra={'path': str(self._path)})
            return {}

        servers: dict[str, ServerConfig] = {}
        for name, entry in data.items():
            if not isinstance(entry, dict):
                logger.warning('略過無效的 Server 配置', extra={'server': name})
                continue
            try:
                servers[str(name)] = ServerConfig.from_dict(entry)
            except ValueError as e:
                logger.warning('略過無效的 Server 配置', extra={'server': name, 'error': str(e)})
        return servers

    def _persist(self) -> None:
        """將目前的配置寫回 servers.json。

        Raises:
            StorageError: 寫入失敗
        """
        if not self._initialized:
            logger.warning('Registry 尚未初始化，略過寫入', extra={'path': str(self._path)})
            return

        payload = {name: config.to_dict() for name, config in self._servers.items()}
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(
                json.dumps(payload, ensure_ascii=False, indent=2),
                encoding='utf-8',
            )
        except OSError as e:
            logger.error('寫入 servers.json 失敗', extra={'path': str(self._path), 'error': str(e)})
            raise StorageError('persist', str(e), e) from e
        logger.debug('servers.json 已寫入', extra={'servers': len(self._servers)})

    async def register(self, name: str, config: ServerConfig) -> None:
        """新增或覆蓋 Server 配置並寫入檔案。

        Raises:
            StorageError: 寫入失敗
        """
        self._servers[name] = config
        logger.info('Server 已註冊', extra={'server': name})
        self._persist()

    async def unregister(self, name: str) -> None:
        """移除 Server 配置並寫入檔案。

        Raises:
            ServerNotFoundError: Server 不存在
            StorageError: 寫入失敗
        """
        if name not in self._servers:
            raise ServerNotFoundError(name)
        del self._servers[name]
        logger.info('Server 已移除', extra={'server': name})
        self._persist()

    def get_config(self, name: str) -> ServerConfig | None:
        """依名稱取得 Server 配置。"""
        return self._servers.get(name)

    def list_all(self) -> dict[str, ServerConfig]:
        """取得所有 Server 配置（淺複製）。"""
        return dict(self._servers)
