"""FastAPI 應用程序入口。

提供 Server 管理、連線控制、工具查詢的 API 端點，工具呼叫以 SSE 串流回傳更新。
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Any

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field

from mcp_manager.config import ManagerConfig, ServerConfig
from mcp_manager.exceptions import McpManagerError, NotConnectedError, ServerNotFoundError
from mcp_manager.manager import McpManager
from mcp_manager.types import StreamUpdate

# 在建立 Manager 之前加載 .env（MCP_MANAGER_STORAGE_DIR 等）
load_dotenv()

logger = logging.getLogger(__name__)

# --- 全局單例 ---
manager = McpManager(config=ManagerConfig())


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """應用程序生命週期管理。"""
    logger.info('應用程序啟動')
    await manager.initialize()

    yield

    await manager.shutdown()
    logger.info('應用程序關閉')


app = FastAPI(title='MCP Manager API', lifespan=lifespan)


# --- 請求模型 ---
class ServerConfigRequest(BaseModel):
    """Server 註冊/更新請求本體。"""

    command: str = Field(min_length=1)
    args: list[str] = []
    env: dict[str, str] = {}
    working_dir: str | None = None
    display_name: str | None = None
    description: str | None = None
    auto_connect: bool = True

    def to_config(self) -> ServerConfig:
        return ServerConfig(
            command=self.command,
            args=list(self.args),
            env=dict(self.env),
            working_dir=self.working_dir,
            display_name=self.display_name,
            description=self.description,
            auto_connect=self.auto_connect,
        )


class ToolCallRequest(BaseModel):
    """工具呼叫請求本體。"""

    args: dict[str, Any] = {}


# --- 錯誤處理 ---
def _error_status(error: McpManagerError) -> int:
    """依例外類型決定 HTTP 狀態碼。"""
    if isinstance(error, ServerNotFoundError):
        return 404
    if isinstance(error, NotConnectedError):
        return 409
    return 502


@app.exception_handler(McpManagerError)
async def manager_error_handler(request: Request, exc: McpManagerError) -> JSONResponse:
    """將 Manager 例外轉為 JSON 錯誤回應。"""
    status_code = _error_status(exc)
    logger.warning(
        'API 請求失敗',
        extra={'path': request.url.path, 'status': status_code, 'error': str(exc)},
    )
    return JSONResponse(
        {'type': type(exc).__name__, 'message': str(exc)},
        status_code=status_code,
    )


# --- SSE 事件格式化 ---
def _sse_event(event: str, data: Any) -> str:
    """格式化 SSE 事件。

    Args:
        event: 事件類型
        data: 事件數據（會自動 JSON 序列化）

    Returns:
        SSE 格式的字串
    """
    encoded_data = json.dumps(data, ensure_ascii=False)
    return f'event: {event}\ndata: {encoded_data}\n\n'


def _server_summary(name: str, config: ServerConfig) -> dict[str, Any]:
    last_error = manager.get_last_error(name)
    return {
        'name': name,
        'config': config.to_dict(),
        'status': manager.get_connection_status(name),
        'last_error': str(last_error) if last_error else None,
    }


# --- 串流生成器 ---
async def _stream_tool_call(
    server_name: str,
    tool_name: str,
    args: dict[str, Any],
) -> AsyncIterator[str]:
    """執行工具呼叫並將更新格式化為 SSE 事件。

    Yields:
        tool_start、tool_end / error 更新，最後是 done 事件
    """
    queue: asyncio.Queue[StreamUpdate] = asyncio.Queue()
    task = asyncio.create_task(manager.call_tool(server_name, tool_name, args, queue.put_nowait))
    final_sent = False

    try:
        while True:
            getter = asyncio.ensure_future(queue.get())
            done, _ = await asyncio.wait({getter, task}, return_when=asyncio.FIRST_COMPLETED)
            if getter not in done:
                getter.cancel()
                break
            update = getter.result()
            final_sent = final_sent or update['is_final']
            yield _sse_event(update['type'], update)

        # 呼叫結束前最後放入的更新
        while not queue.empty():
            update = queue.get_nowait()
            final_sent = final_sent or update['is_final']
            yield _sse_event(update['type'], update)

        error = task.exception()
        if error is not None and not final_sent:
            yield _sse_event('error', {'type': type(error).__name__, 'message': str(error)})
        yield _sse_event('done', '')
    finally:
        if not task.done():
            task.cancel()


# --- API 路由 ---
@app.get('/api/servers')
async def list_servers() -> JSONResponse:
    """列出所有 Server 配置與連線狀態。"""
    servers = await manager.get_all_servers()
    return JSONResponse({'servers': [_server_summary(n, c) for n, c in servers.items()]})


@app.put('/api/servers/{name}')
async def put_server(name: str, body: ServerConfigRequest) -> JSONResponse:
    """註冊或更新 Server 配置。"""
    if not manager.initialized:
        await manager.initialize(auto_connect=False)

    config = body.to_config()
    if manager.get_server_config(name) is None:
        await manager.register_server(name, config)
        created = True
    else:
        await manager.update_server_config(name, config)
        created = False

    logger.debug('Server 配置已儲存', extra={'server': name, 'created': created})
    summary = _server_summary(name, config)
    return JSONResponse(summary, status_code=201 if created else 200)


@app.delete('/api/servers/{name}')
async def delete_server(name: str) -> JSONResponse:
    """中斷連線並移除 Server。"""
    if not manager.initialized:
        await manager.initialize(auto_connect=False)
    await manager.unregister_server(name)
    return JSONResponse({'status': 'ok'})


@app.post('/api/servers/{name}/connect')
async def connect_server(name: str) -> JSONResponse:
    """連線 Server。"""
    await manager.connect_server(name)
    return JSONResponse({'name': name, 'status': manager.get_connection_status(name)})


@app.post('/api/servers/{name}/disconnect')
async def disconnect_server(name: str) -> JSONResponse:
    """中斷 Server 連線。"""
    await manager.disconnect_server(name)
    return JSONResponse({'name': name, 'status': manager.get_connection_status(name)})


@app.get('/api/servers/{name}/tools')
async def list_tools(name: str) -> JSONResponse:
    """列出 Server 的工具定義。"""
    tools = await manager.list_tools(name)
    return JSONResponse({'tools': [asdict(t) for t in tools]})


@app.post('/api/servers/{name}/tools/{tool}/call')
async def call_tool(name: str, tool: str, body: ToolCallRequest) -> StreamingResponse:
    """SSE 串流工具呼叫端點。

    Server 未連線時直接回傳 404 / 409，不建立串流。
    """
    status = manager.get_connection_status(name)
    if status == 'disconnected':
        raise ServerNotFoundError(name)
    if status != 'connected':
        raise NotConnectedError(
            f"Server '{name}' 目前無法使用（狀態: {status}），無法呼叫工具",
            server_name=name,
            tool_name=tool,
        )

    return StreamingResponse(
        _stream_tool_call(name, tool, body.args),
        media_type='text/event-stream',
    )
