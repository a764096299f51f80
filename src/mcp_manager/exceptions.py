"""MCP Manager 例外模組。

定義與傳輸層無關的例外類別，每個例外都帶有 server 名稱與原始錯誤，
讓呼叫端不需要回頭翻日誌就能判斷失敗原因。
"""

from __future__ import annotations


class McpManagerError(Exception):
    """MCP Manager 基礎例外。

    Attributes:
        server_name: 相關的 server 名稱
        tool_name: 相關的工具名稱（若有）
        cause: 原始錯誤（若有）
    """

    def __init__(
        self,
        message: str,
        server_name: str = '',
        tool_name: str | None = None,
        cause: BaseException | str | None = None,
    ) -> None:
        super().__init__(message)
        self.server_name = server_name
        self.tool_name = tool_name
        self.cause = cause


class ServerNotFoundError(McpManagerError):
    """Server 未註冊，或目前沒有任何連線記錄。"""

    def __init__(self, server_name: str) -> None:
        super().__init__(f"Server '{server_name}' 不存在或尚未註冊", server_name=server_name)


class NotConnectedError(McpManagerError):
    """Server 已知但目前沒有可用連線。"""


class DiscoveryError(NotConnectedError):
    """遠端工具清單查詢失敗。"""


class ProcessLaunchError(McpManagerError):
    """Worker 程序無法啟動。"""


class HandshakeError(McpManagerError):
    """程序已啟動，但協定握手失敗。"""


class DisconnectError(McpManagerError):
    """關閉連線時發生錯誤（只透過狀態事件回報）。"""


class ToolCallError(McpManagerError):
    """工具呼叫失敗。

    可能是遠端回報 is_error，也可能是呼叫本身出錯。
    遠端回報錯誤時，正規化後的結果會放在 result。
    """

    def __init__(
        self,
        message: str,
        server_name: str,
        tool_name: str,
        cause: BaseException | str | None = None,
        result: dict[str, object] | None = None,
    ) -> None:
        super().__init__(message, server_name=server_name, tool_name=tool_name, cause=cause)
        self.result = result


class StorageError(McpManagerError):
    """Registry 持久化失敗。

    Attributes:
        operation: 失敗的操作名稱（例如 "persist"）
    """

    def __init__(self, operation: str, message: str, cause: BaseException | None = None) -> None:
        super().__init__(f"儲存操作 '{operation}' 失敗: {message}", cause=cause)
        self.operation = operation
