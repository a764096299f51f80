"""工具呼叫模組。

對已連線的 Server 發出工具呼叫，透過回調回報串流更新，並正規化結果。
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from mcp_manager.connection import ConnectionManager
from mcp_manager.envelope import normalize_result
from mcp_manager.exceptions import NotConnectedError, ServerNotFoundError, ToolCallError
from mcp_manager.types import StreamUpdate, StreamUpdateType, ToolCallResult

logger = logging.getLogger(__name__)

UpdateCallback = Callable[[StreamUpdate], None]


class ToolInvoker:
    """工具呼叫器。

    同一個 Server 的多個呼叫不互相排隊，由 ClientSession 以 request id 區分。
    每次呼叫的更新順序固定為 tool_start，接著 tool_end 或 error 其中之一（is_final）。
    """

    def __init__(self, connections: ConnectionManager, call_timeout: float | None = None) -> None:
        """初始化工具呼叫器。

        Args:
            connections: 連線管理器
            call_timeout: 單次呼叫超時秒數（None 表示不限）
        """
        self._connections = connections
        self._call_timeout = call_timeout

    async def call_tool(
        self,
        server_name: str,
        tool_name: str,
        args: dict[str, Any] | None = None,
        on_update: UpdateCallback | None = None,
    ) -> ToolCallResult:
        """呼叫 Server 的工具。

        Args:
            server_name: Server 名稱
            tool_name: 工具名稱
            args: 工具參數（可選，預設為空 dict）
            on_update: 串流更新回調（可選）

        Returns:
            正規化後的結果

        Raises:
            ServerNotFoundError: Server 未連線
            NotConnectedError: Server 已知但目前無法使用
            ToolCallError: 遠端回報錯誤或呼叫失敗
        """
        client = self._connections.get_client(server_name)
        if client is None:
            status = self._connections.get_status(server_name)
            if status == 'disconnected':
                raise ServerNotFoundError(server_name)
            raise NotConnectedError(
                f"Server '{server_name}' 目前無法使用（狀態: {status}），無法呼叫工具",
                server_name=server_name,
                tool_name=tool_name,
            )

        arguments = args or {}
        logger.info('呼叫工具', extra={'server': server_name, 'tool': tool_name})
        self._notify(on_update, 'tool_start', {'tool_name': tool_name, 'args': arguments})

        try:
            envelope = await asyncio.wait_for(
                client.call_tool(tool_name, arguments),
                timeout=self._call_timeout,
            )
        except ToolCallError as e:
            self._notify(on_update, 'error', str(e), is_final=True)
            raise
        except Exception as e:
            # 只有設定了呼叫上限時，TimeoutError 才代表本地超時
            if isinstance(e, TimeoutError) and self._call_timeout is not None:
                message = f"工具 '{tool_name}' 呼叫超時（{self._call_timeout} 秒）"
                logger.error('工具呼叫超時', extra={'server': server_name, 'tool': tool_name})
            else:
                message = f"工具 '{tool_name}' 呼叫失敗: {e}"
                logger.error(
                    '工具呼叫失敗',
                    extra={'server': server_name, 'tool': tool_name, 'error': str(e)},
                )
            error = ToolCallError(
                message,
                server_name=server_name,
                tool_name=tool_name,
                cause=e,
            )
            self._notify(on_update, 'error', str(error), is_final=True)
            raise error from e

        result = normalize_result(envelope)
        if result['is_error']:
            message = result.get('error') or '工具回報了未說明的錯誤'
            logger.error(
                '工具回報錯誤',
                extra={'server': server_name, 'tool': tool_name, 'error': message},
            )
            self._notify(on_update, 'error', message, is_final=True)
            raise ToolCallError(
                f"工具 '{tool_name}' 回報錯誤: {message}",
                server_name=server_name,
                tool_name=tool_name,
                cause=message,
                result=dict(result),
            )

        self._notify(on_update, 'tool_end', result, is_final=True)
        logger.info('工具呼叫完成', extra={'server': server_name, 'tool': tool_name})
        return result

    def _notify(
        self,
        on_update: UpdateCallback | None,
        update_type: StreamUpdateType,
        content: Any,
        is_final: bool = False,
    ) -> None:
        """呼叫更新回調。回調拋出的例外只記錄日誌，不影響呼叫結果。"""
        if on_update is None:
            return
        update: StreamUpdate = {'type': update_type, 'content': content, 'is_final': is_final}
        try:
            on_update(update)
        except Exception:
            logger.exception('更新回調執行失敗', extra={'update_type': update_type})
