from __future__ import annotations

import asyncio
import contextlib
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

import psutil
import structlog

from ..errors import FragmentError, ProtocolError, SessionUnresponsive
from ..protocol.framing import SentinelToken, clean_transcript
from ..protocol.transport import PipeTransport
from ..subprocess.harness import bootstrap_line, run_call, value_call
from ..subprocess.launcher import kill_process_tree, spawn_interactive, temp_artifact_path
from .config import InterpreterConfig, SessionConfig

logger = structlog.get_logger()


class SessionState(str, Enum):
    """Session lifecycle states."""

    CREATING = "creating"
    WARMING = "warming"
    READY = "ready"
    BUSY = "busy"
    ERROR = "error"
    SHUTTING_DOWN = "shutting_down"
    TERMINATED = "terminated"


_DEAD_STATES = (
    SessionState.TERMINATED,
    SessionState.SHUTTING_DOWN,
    SessionState.ERROR,
    SessionState.CREATING,
)


@dataclass
class SessionInfo:
    """Information about a session."""

    session_id: str
    state: SessionState
    created_at: float
    last_used_at: float
    pid: Optional[int] = None
    execution_count: int = 0
    error_count: int = 0
    memory_usage: int = 0
    cpu_percent: float = 0.0
    metadata: dict[str, Any] = field(default_factory=dict)


class Session:
    """A persistent interactive interpreter process.

    Fragments are written to the interpreter's stdin followed by a sentinel
    command; the fragment is finished once the sentinel comes back on
    stdout. Only one fragment is in flight at a time.
    """

    def __init__(
        self,
        session_id: str | None = None,
        interpreter: InterpreterConfig | None = None,
        config: SessionConfig | None = None,
    ) -> None:
        self.session_id = session_id or str(uuid.uuid4())
        self._interpreter = interpreter or InterpreterConfig()
        self._config = config or SessionConfig()
        self._process: asyncio.subprocess.Process | None = None
        self._transport: PipeTransport | None = None
        self._state = SessionState.CREATING
        self._info = SessionInfo(
            session_id=self.session_id,
            state=self._state,
            created_at=time.time(),
            last_used_at=time.time(),
        )
        self._lock = asyncio.Lock()

        # Metrics collection
        self._metrics = {
            "evaluations_timed_out": 0,
            "evaluations_cancelled": 0,
        }

    @property
    def info(self) -> SessionInfo:
        """Get session information, sampling process resources when alive."""
        self._info.state = self._state
        if self.is_alive and self._process is not None:
            try:
                proc = psutil.Process(self._process.pid)
                self._info.memory_usage = proc.memory_info().rss
                self._info.cpu_percent = proc.cpu_percent(interval=None)
            except psutil.Error:
                pass
        return self._info

    @property
    def state(self) -> SessionState:
        """Get current session state."""
        return self._state

    @property
    def metrics(self) -> dict[str, int]:
        return dict(self._metrics)

    @property
    def cursor(self) -> int:
        """Bytes of transcript consumed so far."""
        return self._transport.cursor if self._transport else 0

    @property
    def is_alive(self) -> bool:
        """Check if session process is alive."""
        if not self._process:
            return False
        return self._process.returncode is None and self._state not in _DEAD_STATES

    async def start(self) -> None:
        """Start the interpreter and wait until it answers a first sentinel."""
        async with self._lock:
            if self._state != SessionState.CREATING:
                raise RuntimeError(f"Cannot start session in state {self._state}")

            try:
                self._process = await spawn_interactive(self._interpreter)
                self._info.pid = self._process.pid

                self._transport = PipeTransport(self._process)
                await self._transport.start()

                # The handshake swallows the first prompt, defines the harness
                # functions and blanks the prompts for every later capture
                self._state = SessionState.WARMING
                await self._synchronize([bootstrap_line()], timeout=self._config.ready_timeout)

                self._state = SessionState.READY
                logger.info("Session started", session_id=self.session_id, pid=self._process.pid)

            except Exception as e:
                if self._state != SessionState.TERMINATED:
                    self._state = SessionState.ERROR
                logger.error("Failed to start session", session_id=self.session_id, error=str(e))
                raise

    async def _synchronize(self, lines: list[str], timeout: Optional[float]) -> str:
        """Send single-line statements plus a sentinel and return the output before it."""
        if not self._transport:
            raise RuntimeError("Transport not initialized")

        token = SentinelToken.new()
        try:
            await self._transport.send_lines(
                [*lines, token.command()], delay=self._config.line_delay
            )
            raw = await self._transport.read_until(token.value, timeout=timeout)

        except asyncio.TimeoutError as err:
            self._metrics["evaluations_timed_out"] += 1
            await self._fail("timeout")
            raise SessionUnresponsive(
                self.session_id, f"sentinel not seen within {timeout}s"
            ) from err

        except ProtocolError as err:
            await self._fail("stream closed")
            raise SessionUnresponsive(self.session_id, str(err)) from err

        except asyncio.CancelledError:
            self._metrics["evaluations_cancelled"] += 1
            await self._fail("cancelled")
            raise

        return clean_transcript(raw)

    async def _fail(self, reason: str) -> None:
        self._info.error_count += 1
        logger.warning("Session failed, terminating", session_id=self.session_id, reason=reason)
        await self.terminate()
        self._state = SessionState.ERROR

    def _begin(self) -> None:
        if self._state in _DEAD_STATES:
            raise RuntimeError(f"Cannot execute in state {self._state}")
        self._state = SessionState.BUSY
        self._info.last_used_at = time.time()
        self._info.execution_count += 1

    def _end(self) -> None:
        if self._state == SessionState.BUSY:
            self._state = SessionState.READY

    async def run_in_session(self, source_text: str, timeout: float | None = None) -> str:
        """Run source as one interactive block and return its printed output.

        Expression statements echo their repr the way the prompt does.

        Args:
            source_text: Source to run
            timeout: Seconds to wait for the sentinel, defaults to the
                configured execute timeout

        Raises:
            SessionUnresponsive: If the sentinel does not appear in time
        """
        timeout = self._config.default_execute_timeout if timeout is None else timeout
        async with self._lock:
            self._begin()
            try:
                return await self._synchronize([run_call(source_text)], timeout)
            finally:
                self._end()

    async def evaluate_value(
        self,
        source_text: str,
        pretty: bool = False,
        timeout: float | None = None,
    ) -> str:
        """Run source through the value harness and return the artifact text.

        Raises:
            FragmentError: If the fragment raised and wrote no artifact
            SessionUnresponsive: If the sentinel does not appear in time
        """
        timeout = self._config.default_execute_timeout if timeout is None else timeout
        artifact = temp_artifact_path()
        async with self._lock:
            self._begin()
            try:
                transcript = await self._synchronize(
                    [value_call(source_text, str(artifact), pretty)], timeout
                )
                if not artifact.exists():
                    self._info.error_count += 1
                    raise FragmentError(transcript)
                return artifact.read_text(encoding="utf-8")
            finally:
                artifact.unlink(missing_ok=True)
                self._end()

    async def shutdown(self) -> None:
        """Close stdin so the interpreter exits, then clean up."""
        if self._state == SessionState.TERMINATED:
            return

        self._state = SessionState.SHUTTING_DOWN
        try:
            if self._transport:
                await self._transport.close(grace=self._config.shutdown_timeout)
        except Exception as e:
            logger.error("Error during shutdown", session_id=self.session_id, error=str(e))
        finally:
            await self.terminate()

    async def terminate(self) -> None:
        """Forcefully terminate the session."""
        self._state = SessionState.TERMINATED

        try:
            if self._process and self._process.returncode is None:
                kill_process_tree(self._process.pid)
        finally:
            if self._transport:
                try:
                    await self._transport.close()
                except Exception as e:
                    logger.debug(f"Error closing transport (non-critical): {e}")
                self._transport = None

            if self._process and self._process.returncode is None:
                with contextlib.suppress(ProcessLookupError):
                    self._process.kill()
                await self._process.wait()

        logger.info("Session terminated", session_id=self.session_id)
