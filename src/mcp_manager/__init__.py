"""MCP Manager - 管理 stdio MCP Server 群組的連線、工具查詢與呼叫。"""

__version__ = '0.1.0'

from mcp_manager.config import ManagerConfig, ServerConfig
from mcp_manager.connection import ConnectionManager
from mcp_manager.events import Channel, ManagerEvents
from mcp_manager.exceptions import (
    DiscoveryError,
    DisconnectError,
    HandshakeError,
    McpManagerError,
    NotConnectedError,
    ProcessLaunchError,
    ServerNotFoundError,
    StorageError,
    ToolCallError,
)
from mcp_manager.invoker import ToolInvoker
from mcp_manager.manager import McpManager
from mcp_manager.registry import JsonServerRegistry, MemoryServerRegistry, ServerRegistry
from mcp_manager.schema import SchemaCache
from mcp_manager.types import (
    ConnectionStatus,
    ContentItem,
    StreamUpdate,
    ToolCallResult,
    ToolDefinition,
)

__all__ = [
    'Channel',
    'ConnectionManager',
    'ConnectionStatus',
    'ContentItem',
    'DiscoveryError',
    'DisconnectError',
    'HandshakeError',
    'JsonServerRegistry',
    'ManagerConfig',
    'ManagerEvents',
    'McpManager',
    'McpManagerError',
    'MemoryServerRegistry',
    'NotConnectedError',
    'ProcessLaunchError',
    'SchemaCache',
    'ServerConfig',
    'ServerNotFoundError',
    'ServerRegistry',
    'StorageError',
    'StreamUpdate',
    'ToolCallError',
    'ToolCallResult',
    'ToolDefinition',
    'ToolInvoker',
]
