"""連線生命週期管理模組。

維護每個 Server 的連線狀態機，是唯一可以變更連線狀態的元件：

    (absent) → connecting → connected → disconnected
                   │             │
                   └──→ error ←──┘

失敗的連線嘗試與已斷線的記錄都會從連線表移除，
因此「不存在」與 disconnected 對呼叫端而言是等價的。
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass

from mcp_manager.config import ManagerConfig, ServerConfig
from mcp_manager.events import ManagerEvents
from mcp_manager.exceptions import (
    DisconnectError,
    HandshakeError,
    McpManagerError,
    NotConnectedError,
    ProcessLaunchError,
    ServerNotFoundError,
)
from mcp_manager.registry.base import ConfigLookup
from mcp_manager.transport.base import ClientFactory, LaunchSpec, ProtocolClient
from mcp_manager.transport.stdio import create_stdio_client
from mcp_manager.types import ConnectionStatus

logger = logging.getLogger(__name__)


@dataclass
class Connection:
    """單一 Server 的連線記錄。

    Attributes:
        server_name: Server 名稱
        status: 目前狀態
        config: 建立連線時使用的配置
        client: Protocol Client（建立前為 None）
        last_error: 最近一次的錯誤
        closing: disconnect 已開始關閉 client
    """

    server_name: str
    status: ConnectionStatus
    config: ServerConfig | None = None
    client: ProtocolClient | None = None
    last_error: Exception | None = None
    closing: bool = False


class ConnectionManager:
    """連線生命週期管理器。

    同一個 Server 的 connect 從狀態檢查到寫入 connecting 記錄之間沒有 await，
    因此在 asyncio 的協作式排程下，並行的第二次 connect 必定會看到 connecting 並直接返回。
    """

    def __init__(
        self,
        registry: ConfigLookup,
        events: ManagerEvents | None = None,
        config: ManagerConfig | None = None,
        client_factory: ClientFactory | None = None,
    ) -> None:
        """初始化連線管理器。

        Args:
            registry: Server 配置查詢介面
            events: 事件通道（可選，未指定時自行建立）
            config: Manager 配置（可選）
            client_factory: Client 工廠（可選，預設為 stdio client）
        """
        self._registry = registry
        self.events = events or ManagerEvents()
        self._config = config or ManagerConfig()
        self._client_factory: ClientFactory = client_factory or create_stdio_client
        self._connections: dict[str, Connection] = {}

    # =========================================================================
    # 狀態轉換
    # =========================================================================

    async def connect(self, server_name: str) -> None:
        """連線到已註冊的 Server。

        已在 connecting 或 connected 狀態時只記錄警告並返回。

        Args:
            server_name: Server 名稱

        Raises:
            ServerNotFoundError: Server 未註冊
            ProcessLaunchError: 程序無法啟動
            HandshakeError: 協定握手失敗
        """
        existing = self._connections.get(server_name)
        if existing is not None and existing.status in ('connecting', 'connected'):
            logger.warning(
                'Server 已在連線中或已連線',
                extra={'server': server_name, 'status': existing.status},
            )
            return

        if existing is not None:
            await self.disconnect(server_name)
            # disconnect 期間可能有其他 task 搶先開始連線
            if self._connections.get(server_name) is not None:
                logger.warning('Server 已被其他呼叫重新連線', extra={'server': server_name})
                return

        logger.info('開始連線 Server', extra={'server': server_name})
        connection = Connection(server_name=server_name, status='connecting')
        self._connections[server_name] = connection
        self.events.connection_status_changed.emit(server_name, 'connecting', None)

        config = self._registry.get_config(server_name)
        if config is None:
            not_found = ServerNotFoundError(server_name)
            self._fail(connection, not_found)
            raise not_found
        connection.config = config

        spec = self._build_launch_spec(config)
        try:
            client = self._client_factory(
                server_name,
                spec,
                lambda error: self._handle_connection_lost(server_name, client, error),
            )
        except Exception as e:
            logger.error('無法建立 Worker client', extra={'server': server_name, 'error': str(e)})
            launch_error = ProcessLaunchError(
                f"Server '{server_name}' 程序無法啟動: {e}",
                server_name=server_name,
                cause=e,
            )
            self._fail(connection, launch_error)
            raise launch_error from e
        connection.client = client

        try:
            await asyncio.wait_for(client.connect(), timeout=self._config.connect_timeout)
        except Exception as e:
            await self._close_quietly(client)
            if self._is_abandoned(connection):
                raise self._aborted(server_name) from e

            logger.error('MCP 握手失敗', extra={'server': server_name, 'error': str(e)})
            # TimeoutError 是 OSError 的子類別，必須先判斷
            timed_out = isinstance(e, TimeoutError)
            if timed_out and self._config.connect_timeout is not None:
                error: McpManagerError = HandshakeError(
                    f"Server '{server_name}' 握手超時（{self._config.connect_timeout} 秒）",
                    server_name=server_name,
                    cause=e,
                )
            elif isinstance(e, OSError) and not timed_out:
                error = ProcessLaunchError(
                    f"Server '{server_name}' 程序無法啟動: {e}",
                    server_name=server_name,
                    cause=e,
                )
            else:
                error = HandshakeError(
                    f"Server '{server_name}' MCP 握手失敗: {e}",
                    server_name=server_name,
                    cause=e,
                )
            self._fail(connection, error)
            raise error from e

        if self._is_abandoned(connection):
            # 握手期間已被 disconnect，這次連線作廢
            await self._close_quietly(client)
            raise self._aborted(server_name)

        self._update_status(server_name, 'connected')
        logger.info('Server 已連線', extra={'server': server_name})

    async def disconnect(self, server_name: str) -> None:
        """中斷 Server 連線並結束程序。

        關閉失敗時狀態轉為 error，但記錄一樣會移除；錯誤只透過狀態事件回報。

        Args:
            server_name: Server 名稱
        """
        connection = self._connections.get(server_name)
        if connection is None:
            logger.warning('Server 未連線，略過中斷', extra={'server': server_name})
            return

        logger.info('中斷 Server 連線', extra={'server': server_name})
        if connection.status in ('connecting', 'connected') and connection.client is not None:
            # 關閉 client 會讓進行中的握手失敗，connect 需先知道這是中斷而非啟動失敗
            connection.closing = True
            try:
                await connection.client.close()
            except Exception as e:
                logger.error('關閉連線失敗', extra={'server': server_name, 'error': str(e)})
                close_error = DisconnectError(
                    f"Server '{server_name}' 關閉連線失敗: {e}",
                    server_name=server_name,
                    cause=e,
                )
                self._remove(connection, 'error', close_error)
                return

        self._remove(connection, 'disconnected')
        logger.info('Server 已中斷連線', extra={'server': server_name})

    async def disconnect_all(self) -> None:
        """中斷所有連線。單一 Server 失敗不影響其他 Server。"""
        names = list(self._connections)
        logger.info('中斷所有 Server 連線', extra={'count': len(names)})
        results = await asyncio.gather(
            *[self.disconnect(name) for name in names],
            return_exceptions=True,
        )
        for name, result in zip(names, results):
            if isinstance(result, Exception):
                logger.error('中斷連線時發生錯誤', extra={'server': name, 'error': str(result)})

    # =========================================================================
    # 查詢
    # =========================================================================

    def get_status(self, server_name: str) -> ConnectionStatus:
        """取得連線狀態，未追蹤的 Server 回傳 disconnected。"""
        connection = self._connections.get(server_name)
        return connection.status if connection is not None else 'disconnected'

    def get_last_error(self, server_name: str) -> Exception | None:
        connection = self._connections.get(server_name)
        return connection.last_error if connection is not None else None

    def get_client(self, server_name: str) -> ProtocolClient | None:
        """取得已連線 Server 的 client，未連線時回傳 None。"""
        connection = self._connections.get(server_name)
        if connection is None or connection.status != 'connected':
            return None
        return connection.client

    def list_connected(self) -> list[str]:
        """列出所有已連線的 Server 名稱。"""
        return [c.server_name for c in self._connections.values() if c.status == 'connected']

    def list_tracked(self) -> list[str]:
        """列出所有仍有連線記錄的 Server 名稱（含 connecting）。"""
        return list(self._connections)

    # =========================================================================
    # 內部輔助
    # =========================================================================

    def _build_launch_spec(self, config: ServerConfig) -> LaunchSpec:
        if self._config.inherit_env:
            env: dict[str, str] | None = config.launch_env(os.environ)
        else:
            env = dict(config.env) or None
        return LaunchSpec(
            command=config.command,
            args=list(config.args),
            env=env,
            cwd=config.working_dir,
            client_name=self._config.client_name,
            client_version=self._config.client_version,
        )

    def _update_status(
        self,
        server_name: str,
        status: ConnectionStatus,
        error: Exception | None = None,
    ) -> None:
        """更新連線狀態並發送事件。狀態與錯誤物件都相同時不重複發送。"""
        connection = self._connections.get(server_name)
        if connection is None:
            logger.debug(
                '忽略未追蹤 Server 的狀態更新',
                extra={'server': server_name, 'status': status},
            )
            return
        if connection.status == status and connection.last_error is error:
            return

        connection.status = status
        connection.last_error = error
        logger.debug(
            'Server 狀態已更新',
            extra={'server': server_name, 'status': status, 'error': str(error) if error else None},
        )
        self.events.connection_status_changed.emit(server_name, status, error)

    def _remove(
        self,
        connection: Connection,
        status: ConnectionStatus,
        error: Exception | None = None,
    ) -> None:
        """轉換到終止狀態並移除記錄。"""
        if self._connections.get(connection.server_name) is not connection:
            return
        self._update_status(connection.server_name, status, error)
        del self._connections[connection.server_name]

    def _fail(self, connection: Connection, error: Exception) -> None:
        self._remove(connection, 'error', error)

    def _is_abandoned(self, connection: Connection) -> bool:
        """連線記錄已被 disconnect 關閉或取代。"""
        return connection.closing or self._connections.get(connection.server_name) is not connection

    @staticmethod
    def _aborted(server_name: str) -> HandshakeError:
        logger.warning('握手期間連線已被中斷', extra={'server': server_name})
        return HandshakeError(
            f"Server '{server_name}' 在握手期間已被中斷連線",
            server_name=server_name,
        )

    async def _close_quietly(self, client: ProtocolClient) -> None:
        try:
            await client.close()
        except Exception as e:
            logger.warning(
                '連線失敗後關閉 client 時發生錯誤',
                extra={'server': client.server_name, 'error': str(e)},
            )

    def _handle_connection_lost(
        self,
        server_name: str,
        client: ProtocolClient,
        error: BaseException | None,
    ) -> None:
        """Worker 意外結束時，將已連線的記錄轉為 error 並移除。"""
        connection = self._connections.get(server_name)
        if connection is None or connection.client is not client:
            return

        logger.warning('Server 連線中斷', extra={'server': server_name, 'error': str(error)})
        lost = NotConnectedError(
            f"Server '{server_name}' 連線中斷: {error or 'Worker 已結束'}",
            server_name=server_name,
            cause=error,
        )
        self._fail(connection, lost)
