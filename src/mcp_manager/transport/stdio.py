"""Stdio Protocol Client。

透過 mcp SDK 的 stdio_client 啟動 Worker 子程序，
以 stdin/stdout 管道交換 JSON-RPC 訊息。
"""

from __future__ import annotations

import asyncio
import logging
import shutil
from pathlib import Path
from typing import Any

import anyio
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream
from mcp import ClientSession, StdioServerParameters
from mcp.client.stdio import stdio_client
from mcp.types import Implementation

from mcp_manager.transport.base import LaunchSpec, LostCallback

logger = logging.getLogger(__name__)


class StdioClient:
    """以子程序為對象的 MCP Client。

    SDK 的 context manager 必須在同一個 task 中進入與離開，
    因此整個 session 由專屬的 runner task 持有：
    connect() 啟動 runner 並等待握手完成，close() 通知 runner 結束並等待子程序回收。
    Worker 的輸出會經過一個轉送 task，讀到 EOF 時 runner 隨之結束；
    runner 在未要求關閉的情況下結束時，呼叫 on_lost 通知連線中斷。
    """

    def __init__(
        self,
        server_name: str,
        spec: LaunchSpec,
        on_lost: LostCallback | None = None,
    ) -> None:
        """初始化 Client 並檢查啟動規格。

        Args:
            server_name: Server 名稱
            spec: 啟動規格
            on_lost: 連線中斷回調（可選）

        Raises:
            FileNotFoundError: 找不到指令
            NotADirectoryError: 工作目錄不存在
        """
        search_path = spec.env.get('PATH') if spec.env else None
        if shutil.which(spec.command, path=search_path) is None:
            raise FileNotFoundError(f'找不到指令: {spec.command}')
        if spec.cwd is not None and not Path(spec.cwd).is_dir():
            raise NotADirectoryError(f'工作目錄不存在: {spec.cwd}')

        self.server_name = server_name
        self._spec = spec
        self._on_lost = on_lost
        self._session: ClientSession | None = None
        self._runner: asyncio.Task[None] | None = None
        self._ready: asyncio.Future[None] | None = None
        self._stop = asyncio.Event()
        self._close_error: BaseException | None = None

    @property
    def is_connected(self) -> bool:
        return self._session is not None

    async def connect(self) -> None:
        """啟動子程序並完成 MCP 握手。"""
        if self._runner is not None:
            raise RuntimeError(f"Client '{self.server_name}' 已啟動")

        self._ready = asyncio.get_running_loop().create_future()
        self._runner = asyncio.create_task(self._run(), name=f'mcp-stdio-{self.server_name}')
        # shield 讓外層超時不會取消 ready future 本身
        await asyncio.shield(self._ready)
        logger.debug('Stdio client 已連線', extra={'server': self.server_name})

    async def _run(self) -> None:
        """持有 SDK context 的 runner，直到收到關閉通知。"""
        assert self._ready is not None
        params = StdioServerParameters(
            command=self._spec.command,
            args=list(self._spec.args),
            env=self._spec.env,
            cwd=self._spec.cwd,
        )
        client_info = Implementation(
            name=self._spec.client_name,
            version=self._spec.client_version,
        )
        error: BaseException | None = None
        try:
            async with stdio_client(params) as (read_stream, write_stream):
                relay_send, relay_recv = anyio.create_memory_object_stream(0)
                relay = asyncio.create_task(self._relay(read_stream, relay_send))
                try:
                    async with ClientSession(
                        relay_recv,
                        write_stream,
                        client_info=client_info,
                    ) as session:
                        await session.initialize()
                        self._session = session
                        self._ready.set_result(None)
                        await self._wait_until_stopped(relay)
                finally:
                    relay.cancel()
                    await asyncio.gather(relay, return_exceptions=True)
        except asyncio.CancelledError:
            # 只有 close() 會在握手期間取消 runner
            error = RuntimeError('握手期間連線已被關閉')
        except Exception as e:
            error = e
        finally:
            self._session = None

        if not self._ready.done():
            self._ready.set_exception(error or ConnectionError('Worker 在握手完成前結束'))
            return

        if self._stop.is_set():
            self._close_error = error
            return

        logger.warning(
            'Worker 連線意外中斷',
            extra={'server': self.server_name, 'error': str(error) if error else None},
        )
        if self._on_lost is not None:
            self._on_lost(error)

    @staticmethod
    async def _relay(
        source: MemoryObjectReceiveStream[Any],
        target: MemoryObjectSendStream[Any],
    ) -> None:
        """把 SDK 讀到的訊息轉給 ClientSession，來源結束代表 Worker 的 stdout 已關閉。"""
        async with target:
            async for message in source:
                await target.send(message)

    async def _wait_until_stopped(self, relay: asyncio.Task[None]) -> None:
        """等待 close() 通知或 Worker 輸出結束。

        Raises:
            ConnectionError: Worker 在未要求關閉的情況下結束輸出
        """
        stop_waiter = asyncio.create_task(self._stop.wait())
        try:
            await asyncio.wait({stop_waiter, relay}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stop_waiter.cancel()
        if not self._stop.is_set():
            raise ConnectionError(f"Worker '{self.server_name}' 已結束輸出")

    def _require_session(self) -> ClientSession:
        if self._session is None:
            raise ConnectionError(f"Client '{self.server_name}' 尚未連線")
        return self._session

    async def list_tools(self) -> list[Any]:
        """列出 Server 提供的工具，轉為 camelCase 的 dict。"""
        session = self._require_session()
        result = await session.list_tools()
        return [tool.model_dump(mode='json', by_alias=True, exclude_none=True) for tool in result.tools]

    async def call_tool(self, tool_name: str, arguments: dict[str, Any]) -> Any:
        """呼叫工具，回傳 camelCase 的結果信封。"""
        session = self._require_session()
        result = await session.call_tool(tool_name, arguments)
        return result.model_dump(mode='json', by_alias=True, exclude_none=True)

    async def close(self) -> None:
        """通知 runner 結束並等待子程序回收。

        Raises:
            Exception: 關閉 SDK context 時發生的錯誤
        """
        runner = self._runner
        if runner is None:
            return

        self._runner = None
        self._stop.set()
        if self._ready is not None and not self._ready.done():
            # 握手尚未完成，直接取消 runner
            runner.cancel()

        await asyncio.gather(runner, return_exceptions=True)
        logger.debug('Stdio client 已關閉', extra={'server': self.server_name})

        if self._close_error is not None:
            error, self._close_error = self._close_error, None
            raise error


def create_stdio_client(
    server_name: str,
    spec: LaunchSpec,
    on_lost: LostCallback | None = None,
) -> StdioClient:
    """預設的 ClientFactory。"""
    return StdioClient(server_name, spec, on_lost)
