"""Protocol Client 介面定義。

連線管理只依賴這裡的 Protocol，不直接依賴 mcp SDK，
測試可以用假的 client factory 取代真實程序。
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol


@dataclass(frozen=True)
class LaunchSpec:
    """Worker 程序啟動規格。

    Attributes:
        command: 啟動指令
        args: 指令參數
        env: 完整的環境變數（None 表示使用 SDK 預設的安全環境）
        cwd: 工作目錄（可選）
        client_name: 握手時回報的 client 名稱
        client_version: 握手時回報的 client 版本
    """

    command: str
    args: list[str] = field(default_factory=lambda: [])
    env: dict[str, str] | None = None
    cwd: str | None = None
    client_name: str = 'mcp-manager'
    client_version: str = '0.1.0'


LostCallback = Callable[[BaseException | None], None]
"""連線在未要求關閉的情況下中斷時呼叫，參數為中斷原因（可能為 None）。"""


class ProtocolClient(Protocol):
    """與單一 Worker 互動的 Client Protocol。

    list_tools 與 call_tool 回傳遠端的原始資料（dict 或物件），
    由上層負責容錯地正規化。
    """

    server_name: str

    async def connect(self) -> None:
        """啟動程序並完成協定握手。

        Raises:
            OSError: 程序無法啟動
            Exception: 握手失敗
        """
        ...

    async def list_tools(self) -> list[Any]:
        """列出 Server 提供的工具描述。"""
        ...

    async def call_tool(self, tool_name: str, arguments: dict[str, Any]) -> Any:
        """呼叫 Server 的工具。

        Args:
            tool_name: 工具名稱
            arguments: 工具參數

        Returns:
            遠端回傳的結果信封（含 content 與 isError）
        """
        ...

    async def close(self) -> None:
        """關閉連線並結束程序。"""
        ...


class ClientFactory(Protocol):
    """依啟動規格建立 Client。建立失敗代表程序無法啟動。"""

    def __call__(
        self,
        server_name: str,
        spec: LaunchSpec,
        on_lost: LostCallback | None = None,
    ) -> ProtocolClient: ...
