"""Server Registry 抽象層。

提供可抽換的 Server 配置儲存，支援記憶體與 JSON 檔案兩種實作。
"""

from mcp_manager.registry.base import ConfigLookup, ServerRegistry
from mcp_manager.registry.json_backend import JsonServerRegistry
from mcp_manager.registry.memory_backend import MemoryServerRegistry

__all__ = ['ConfigLookup', 'JsonServerRegistry', 'MemoryServerRegistry', 'ServerRegistry']
