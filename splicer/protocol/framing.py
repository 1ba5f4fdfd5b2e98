from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass
from typing import Optional

import structlog

from ..errors import ProtocolError

logger = structlog.get_logger()

SENTINEL_PREFIX = "splicer_eoe"


@dataclass(frozen=True)
class SentinelToken:
    """Marker printed by the interpreter once a fragment has finished.

    Tokens embed a random uuid so ordinary program output never contains
    one; they are not checked for collisions.
    """

    value: str

    @classmethod
    def new(cls, prefix: str = SENTINEL_PREFIX) -> SentinelToken:
        return cls(f"{prefix}_{uuid.uuid4().hex}")

    def command(self) -> str:
        """Source line that makes a Python interpreter print the token."""
        return f"print({self.value!r})"

    def __str__(self) -> str:
        return self.value


class TranscriptReader:
    """Async reader that frames a line-buffered transcript by delimiter lines.

    A background task moves bytes from the stream into a buffer; callers
    wait on an asyncio.Condition until their delimiter shows up. Consumed
    bytes are dropped from the buffer, so the cursor only ever advances.
    """

    def __init__(self, reader: asyncio.StreamReader, encoding: str = "utf-8") -> None:
        self._reader = reader
        self._encoding = encoding
        self._buffer = bytearray()
        self._condition = asyncio.Condition()
        self._closed = False
        self._cursor = 0
        self._read_task: Optional[asyncio.Task[None]] = None

    @property
    def cursor(self) -> int:
        """Total number of bytes consumed so far."""
        return self._cursor

    @property
    def closed(self) -> bool:
        return self._closed

    async def start(self) -> None:
        """Start the background reader task."""
        if not self._read_task:
            self._read_task = asyncio.create_task(self._read_loop())

    async def stop(self) -> None:
        """Stop the background reader task."""
        self._closed = True
        if self._read_task:
            self._read_task.cancel()
            try:
                await self._read_task
            except asyncio.CancelledError:
                pass

    async def _read_loop(self) -> None:
        """Background task that continuously reads from the stream into buffer."""
        try:
            while not self._closed:
                try:
                    data = await asyncio.wait_for(self._reader.read(8192), timeout=1.0)
                    if not data:
                        logger.debug("TranscriptReader: EOF received, closing")
                        self._closed = True
                        break

                    async with self._condition:
                        self._buffer.extend(data)
                        self._condition.notify_all()

                except asyncio.TimeoutError:
                    continue
                except Exception as e:
                    logger.error("Read loop error", error=str(e))
                    self._closed = True
                    break

        finally:
            async with self._condition:
                self._closed = True
                self._condition.notify_all()

    async def read_until(self, delimiter: str, timeout: Optional[float] = None) -> str:
        """Return everything before the next line ending in ``delimiter``.

        The delimiter line itself is consumed and dropped.

        Raises:
            ProtocolError: If the stream closes before the delimiter appears
            asyncio.TimeoutError: If timeout is exceeded
        """
        marker = delimiter.encode(self._encoding) + b"\n"
        async with self._condition:
            await asyncio.wait_for(
                self._condition.wait_for(lambda: marker in self._buffer or self._closed),
                timeout=timeout,
            )

            index = self._buffer.find(marker)
            if index < 0:
                raise ProtocolError("Transcript closed before delimiter was seen")

            consumed = index + len(marker)
            data = bytes(self._buffer[:index])
            del self._buffer[:consumed]
            self._cursor += consumed

        logger.debug("Delimiter found", delimiter=delimiter, captured=len(data), cursor=self._cursor)
        return data.decode(self._encoding, errors="replace")

    async def read_available(self) -> str:
        """Consume and return whatever is buffered right now."""
        async with self._condition:
            data = bytes(self._buffer)
            self._buffer.clear()
            self._cursor += len(data)
        return data.decode(self._encoding, errors="replace")


def clean_transcript(text: str) -> str:
    """Normalize line endings and drop the newlines trailing a capture.

    Everything else is program output and is returned untouched, matching
    what a one-shot run of the same source prints.
    """
    return text.replace("\r\n", "\n").rstrip("\n")
