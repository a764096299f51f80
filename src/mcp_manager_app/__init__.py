"""MCP Manager HTTP 服務。"""
