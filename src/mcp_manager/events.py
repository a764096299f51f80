"""事件通道模組。

以具型別的 Channel 取代字串事件名稱，每個 Channel 維護一組訂閱者。
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Generic, ParamSpec

from mcp_manager.config import ServerConfig
from mcp_manager.types import ConnectionStatus, StreamUpdate, ToolCallResult

logger = logging.getLogger(__name__)

P = ParamSpec('P')


class Channel(Generic[P]):
    """單一事件的訂閱通道。

    訂閱者依訂閱順序同步呼叫。單一訂閱者拋出例外時只記錄日誌，
    不影響其他訂閱者，也不影響發送端的狀態。
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._listeners: list[Callable[P, None]] = []

    def subscribe(self, listener: Callable[P, None]) -> Callable[[], None]:
        """新增訂閱者。

        Args:
            listener: 事件回調

        Returns:
            取消訂閱的函數
        """
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            self.unsubscribe(listener)

        return _unsubscribe

    def unsubscribe(self, listener: Callable[P, None]) -> None:
        """移除訂閱者，不存在時忽略。"""
        if listener in self._listeners:
            self._listeners.remove(listener)

    def emit(self, *args: P.args, **kwargs: P.kwargs) -> None:
        """通知所有訂閱者。"""
        # 複製一份，允許訂閱者在回調中取消訂閱
        for listener in list(self._listeners):
            try:
                listener(*args, **kwargs)
            except Exception:
                logger.exception('事件訂閱者執行失敗', extra={'channel': self.name})

    def __len__(self) -> int:
        return len(self._listeners)


@dataclass
class ManagerEvents:
    """Manager 對外公開的所有事件通道。"""

    connection_status_changed: Channel[[str, ConnectionStatus, Exception | None]] = field(
        default_factory=lambda: Channel('connection_status_changed')
    )
    tool_call_start: Channel[[str, str, dict[str, Any]]] = field(
        default_factory=lambda: Channel('tool_call_start')
    )
    tool_call_update: Channel[[str, str, StreamUpdate]] = field(
        default_factory=lambda: Channel('tool_call_update')
    )
    tool_call_end: Channel[[str, str, ToolCallResult]] = field(
        default_factory=lambda: Channel('tool_call_end')
    )
    server_registered: Channel[[str, ServerConfig]] = field(
        default_factory=lambda: Channel('server_registered')
    )
    server_unregistered: Channel[[str]] = field(
        default_factory=lambda: Channel('server_unregistered')
    )
    server_config_updated: Channel[[str, ServerConfig]] = field(
        default_factory=lambda: Channel('server_config_updated')
    )
