"""MCP Manager 配置模組。

提供 Server 啟動配置與 Manager 本身的配置資料結構。
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

# 預設值
DEFAULT_STORAGE_DIR = '.mcp-manager'
DEFAULT_CLIENT_NAME = 'mcp-manager'
DEFAULT_CLIENT_VERSION = '0.1.0'
STORAGE_DIR_ENV = 'MCP_MANAGER_STORAGE_DIR'


@dataclass
class ServerConfig:
    """MCP Server 啟動配置。

    Attributes:
        command: 啟動指令（例如 "python"、"npx"）
        args: 指令參數
        env: 額外的環境變數（覆蓋繼承的環境變數）
        working_dir: 工作目錄（可選）
        display_name: 顯示名稱（可選，僅供 UI 使用）
        description: 描述（可選，僅供 UI 使用）
        auto_connect: 初始化時是否自動連線
    """

    command: str
    args: list[str] = field(default_factory=lambda: [])
    env: dict[str, str] = field(default_factory=lambda: {})
    working_dir: str | None = None
    display_name: str | None = None
    description: str | None = None
    auto_connect: bool = True

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ServerConfig:
        """從 servers.json 格式（camelCase）建立配置。

        Args:
            data: 配置字典

        Returns:
            ServerConfig 實例

        Raises:
            ValueError: 缺少 command
        """
        command = data.get('command')
        if not isinstance(command, str) or not command:
            raise ValueError('Server 配置缺少 command')

        auto_connect = data.get('autoConnect', True)
        return cls(
            command=command,
            args=[str(a) for a in data.get('args') or []],
            env={str(k): str(v) for k, v in (data.get('env') or {}).items()},
            working_dir=data.get('workingDir'),
            display_name=data.get('displayName'),
            description=data.get('description'),
            # 只有明確設為 False 才停用自動連線
            auto_connect=auto_connect is not False,
        )

    def to_dict(self) -> dict[str, Any]:
        """轉換為 servers.json 格式，省略未設定的選填欄位。"""
        data: dict[str, Any] = {
            'command': self.command,
            'args': list(self.args),
            'env': dict(self.env),
            'autoConnect': self.auto_connect,
        }
        if self.working_dir is not None:
            data['workingDir'] = self.working_dir
        if self.display_name is not None:
            data['displayName'] = self.display_name
        if self.description is not None:
            data['description'] = self.description
        return data

    def launch_env(self, base: Mapping[str, str] | None = None) -> dict[str, str]:
        """合併基礎環境變數與 Server 專屬環境變數。

        Args:
            base: 基礎環境變數（通常為 os.environ），None 表示不繼承

        Returns:
            合併後的環境變數
        """
        merged = dict(base or {})
        merged.update(self.env)
        return merged

    def launch_differs(self, other: ServerConfig) -> bool:
        """判斷兩份配置的啟動相關欄位是否不同（需要重新連線）。"""
        return (
            self.command != other.command
            or self.args != other.args
            or self.env != other.env
            or self.working_dir != other.working_dir
        )


@dataclass
class ManagerConfig:
    """MCP Manager 配置。

    Attributes:
        storage_dir: servers.json 存放目錄（可選，未指定時從環境變數讀取）
        client_name: 握手時回報的 client 名稱
        client_version: 握手時回報的 client 版本
        inherit_env: Worker 是否繼承目前程序的環境變數
        connect_timeout: 握手超時秒數（None 表示不限）
        call_timeout: 單次工具呼叫超時秒數（None 表示不限）
    """

    storage_dir: str | None = None
    client_name: str = DEFAULT_CLIENT_NAME
    client_version: str = DEFAULT_CLIENT_VERSION
    inherit_env: bool = True
    connect_timeout: float | None = None
    call_timeout: float | None = None

    def get_storage_dir(self) -> str:
        """取得儲存目錄，優先使用明確指定的值，其次為環境變數，最後為預設值。"""
        if self.storage_dir is not None:
            return self.storage_dir
        return os.environ.get(STORAGE_DIR_ENV, DEFAULT_STORAGE_DIR)
