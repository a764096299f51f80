"""型別定義模組。

定義連線狀態、工具定義、工具呼叫結果與串流更新等資料結構。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Required, TypedDict

# --- Connection Status ---

ConnectionStatus = Literal['connecting', 'connected', 'disconnected', 'error']
"""連線狀態。未追蹤的 server 一律視為 disconnected。"""


# --- Tool Definition ---


@dataclass(frozen=True)
class ToolDefinition:
    """MCP Server 提供的工具定義。

    Attributes:
        name: 工具名稱（Server 端原始名稱）
        description: 工具描述
        input_schema: JSON Schema 格式的參數定義（不做驗證）
        memoizable: 結果是否可快取（Server 有提供時才設定）
    """

    name: str
    description: str | None = None
    input_schema: dict[str, Any] = field(default_factory=lambda: {})
    memoizable: bool | None = None


# --- Tool Call Result ---


class ContentItem(TypedDict, total=False):
    """工具回傳的單一內容區塊。

    只有 type 必定存在，其他欄位在遠端未提供時省略。
    """

    type: Required[str | None]
    text: str
    mime_type: str


class ToolCallResult(TypedDict, total=False):
    """工具呼叫結果。

    Attributes:
        success: 是否成功（恆等於 not is_error）
        content: 內容區塊列表（遠端未提供時省略）
        error: 錯誤訊息（僅在 is_error 為 True 時設定）
        is_error: 遠端是否回報錯誤
    """

    success: Required[bool]
    content: list[ContentItem]
    error: str
    is_error: Required[bool]


# --- Stream Update ---

StreamUpdateType = Literal['tool_start', 'tool_end', 'text', 'error', 'usage', 'metadata']


class StreamUpdate(TypedDict):
    """工具呼叫過程中的串流更新。

    每次呼叫最多只有一個 is_final 為 True 的更新，且必定是最後一個。
    """

    type: StreamUpdateType
    content: Any
    is_final: bool
