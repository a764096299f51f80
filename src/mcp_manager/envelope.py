"""遠端回應的容錯轉換。

Worker 回傳的資料不一定符合協定格式，這裡的轉換一律不拋例外：
欄位缺少或型別不符時視為未提供。
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

from mcp_manager.types import ContentItem, ToolCallResult, ToolDefinition


def read_field(source: Any, key: str) -> Any:
    """從 dict 或物件讀取欄位，不存在時回傳 None。"""
    if source is None:
        return None
    if isinstance(source, Mapping):
        return source.get(key)
    return getattr(source, key, None)


def to_tool_definition(raw: Any) -> ToolDefinition | None:
    """將遠端工具描述轉為 ToolDefinition。

    Args:
        raw: 遠端工具描述（dict 或物件）

    Returns:
        ToolDefinition，沒有合法名稱時回傳 None
    """
    name = read_field(raw, 'name')
    if not isinstance(name, str) or not name:
        return None

    description = read_field(raw, 'description')
    input_schema = read_field(raw, 'inputSchema')
    if input_schema is None:
        input_schema = read_field(raw, 'input_schema')
    memoizable = read_field(raw, 'memoizable')

    return ToolDefinition(
        name=name,
        description=description if isinstance(description, str) else None,
        input_schema=dict(input_schema) if isinstance(input_schema, Mapping) else {},
        memoizable=memoizable if isinstance(memoizable, bool) else None,
    )


def _to_content_item(raw: Any) -> ContentItem:
    content_type = read_field(raw, 'type')
    item: ContentItem = {'type': content_type if isinstance(content_type, str) else None}

    text = read_field(raw, 'text')
    if content_type == 'text' and isinstance(text, str):
        item['text'] = text

    mime_type = read_field(raw, 'mimeType')
    if mime_type is None:
        mime_type = read_field(raw, 'mime_type')
    if isinstance(mime_type, str):
        item['mime_type'] = mime_type
    return item


def normalize_result(envelope: Any) -> ToolCallResult:
    """將遠端的工具呼叫結果信封轉為 ToolCallResult。

    success 恆等於 not is_error；is_error 時 error 為 content 的 JSON 字串。

    Args:
        envelope: 遠端結果（dict 或物件，可能為 None）

    Returns:
        正規化後的結果
    """
    is_error = read_field(envelope, 'isError')
    if is_error is None:
        is_error = read_field(envelope, 'is_error')
    is_error = bool(is_error)

    result: ToolCallResult = {'success': not is_error, 'is_error': is_error}

    raw_content = read_field(envelope, 'content')
    if isinstance(raw_content, list | tuple):
        result['content'] = [_to_content_item(c) for c in raw_content]

    if is_error:
        result['error'] = json.dumps(result.get('content', []), ensure_ascii=False)
    return result
