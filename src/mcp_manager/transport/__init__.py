"""傳輸層模組。

定義 Protocol Client 介面，並提供基於 mcp SDK 的 stdio 實作。
"""

from mcp_manager.transport.base import ClientFactory, LaunchSpec, LostCallback, ProtocolClient
from mcp_manager.transport.stdio import StdioClient, create_stdio_client

__all__ = [
    'ClientFactory',
    'LaunchSpec',
    'LostCallback',
    'ProtocolClient',
    'StdioClient',
    'create_stdio_client',
]
