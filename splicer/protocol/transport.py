from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Iterable
from typing import Optional

import structlog

from ..errors import ProtocolError
from .framing import TranscriptReader

logger = structlog.get_logger()


class LineWriter:
    """Async line writer with backpressure handling and optional pacing."""

    def __init__(self, writer: asyncio.StreamWriter, encoding: str = "utf-8") -> None:
        self._writer = writer
        self._encoding = encoding
        self._write_lock = asyncio.Lock()
        self._closed = False

    async def write_lines(self, lines: Iterable[str], delay: float = 0.0) -> None:
        """Write lines, each terminated by a newline.

        Args:
            lines: Lines to write, without trailing newlines
            delay: Seconds awaited after each line so a line-oriented REPL
                can consume it before the next one arrives

        Raises:
            ProtocolError: If the writer is closed or the pipe is broken
        """
        if self._closed:
            raise ProtocolError("Connection closed")

        async with self._write_lock:
            try:
                for line in lines:
                    self._writer.write(line.encode(self._encoding) + b"\n")
                    await self._writer.drain()
                    if delay > 0:
                        await asyncio.sleep(delay)
            except (BrokenPipeError, ConnectionResetError) as e:
                self._closed = True
                raise ProtocolError(f"Write failed: {e}") from e

    async def close(self) -> None:
        """Close the writer."""
        if not self._closed:
            self._closed = True
            self._writer.close()
            try:
                await self._writer.wait_closed()
            except (BrokenPipeError, ConnectionResetError):
                pass


class PipeTransport:
    """Duplex text transport over a subprocess's stdin and stdout pipes."""

    def __init__(self, process: asyncio.subprocess.Process, encoding: str = "utf-8") -> None:
        if not process.stdout or not process.stdin:
            raise ValueError("Process must have stdout and stdin pipes")

        self._process = process
        self._reader = TranscriptReader(process.stdout, encoding=encoding)
        self._writer = LineWriter(process.stdin, encoding=encoding)
        self._closed = False

    @property
    def cursor(self) -> int:
        return self._reader.cursor

    async def start(self) -> None:
        """Start the transport."""
        await self._reader.start()

    async def send_lines(self, lines: Iterable[str], delay: float = 0.0) -> None:
        """Send source lines to the subprocess."""
        if self._closed:
            raise ProtocolError("Transport closed")
        await self._writer.write_lines(lines, delay=delay)

    async def read_until(self, delimiter: str, timeout: Optional[float] = None) -> str:
        """Read transcript text up to the next delimiter line."""
        if self._closed:
            raise ProtocolError("Transport closed")
        return await self._reader.read_until(delimiter, timeout=timeout)

    async def close(self, grace: float = 0.0) -> None:
        """Close the transport and terminate the process.

        Args:
            grace: Seconds to let the process exit on its own after stdin
                is closed before it is terminated
        """
        if self._closed:
            return
        self._closed = True
        await self._writer.close()

        if grace > 0 and self._process.returncode is None:
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._process.wait(), timeout=grace)
        await self._reader.stop()

        if self._process.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                self._process.terminate()
            try:
                await asyncio.wait_for(self._process.wait(), timeout=5.0)
            except asyncio.TimeoutError:
                self._process.kill()
                await self._process.wait()

    def is_alive(self) -> bool:
        """Check if the subprocess is still alive."""
        return self._process.returncode is None
