from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from types import TracebackType
from typing import AsyncIterator, Dict, Optional

import structlog

from ..protocol.messages import NO_SESSION
from .config import InterpreterConfig, SessionConfig
from .manager import Session

logger = structlog.get_logger()


class SessionRegistry:
    """Maps session identifiers to live interactive sessions.

    Sessions are created on first use and reused afterwards. A dead session
    is replaced transparently on the next resolve, losing its bindings.
    Callers serialize work on one identifier through ``hold``, which drops
    the identifier's lock again once nothing uses it and no session is left.
    """

    def __init__(
        self,
        interpreter: Optional[InterpreterConfig] = None,
        config: Optional[SessionConfig] = None,
    ) -> None:
        self._interpreter = interpreter or InterpreterConfig()
        self._config = config or SessionConfig()
        self._sessions: Dict[str, Session] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}
        self._shutdown = False
        self._metrics = {
            "sessions_created": 0,
            "sessions_replaced": 0,
            "sessions_removed": 0,
        }

    async def __aenter__(self) -> SessionRegistry:
        return self

    async def __aexit__(
        self,
        exc_type: Optional[type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        await self.close_all()

    @property
    def metrics(self) -> dict[str, int]:
        return dict(self._metrics)

    def lock_for(self, identifier: str) -> asyncio.Lock:
        """Lock serializing evaluations against one identifier."""
        lock = self._locks.get(identifier)
        if lock is None:
            lock = self._locks[identifier] = asyncio.Lock()
        return lock

    @asynccontextmanager
    async def hold(self, identifier: str) -> AsyncIterator[None]:
        """Hold the identifier's lock, forgetting it once unused and sessionless."""
        self._lock_users[identifier] = self._lock_users.get(identifier, 0) + 1
        try:
            async with self.lock_for(identifier):
                yield
        finally:
            self._lock_users[identifier] -= 1
            if not self._lock_users[identifier]:
                del self._lock_users[identifier]
                self._forget_lock(identifier)

    def _forget_lock(self, identifier: str) -> None:
        if identifier in self._sessions or identifier in self._lock_users:
            return
        lock = self._locks.get(identifier)
        if lock is not None and not lock.locked():
            del self._locks[identifier]

    def get(self, identifier: str) -> Optional[Session]:
        return self._sessions.get(identifier)

    def sessions(self) -> list[str]:
        """Identifiers with a live session."""
        return [sid for sid, session in self._sessions.items() if session.is_alive]

    async def resolve(self, identifier: str) -> Optional[Session]:
        """Return the live session for ``identifier``, starting one if needed.

        Args:
            identifier: Session identifier, ``"none"`` for one-shot evaluation

        Returns:
            The live session, or None when the identifier asks for no
            persistence
        """
        if identifier == NO_SESSION:
            return None
        if self._shutdown:
            raise RuntimeError("Registry is shutting down")

        session = self._sessions.get(identifier)
        if session is not None:
            if session.is_alive:
                return session

            logger.info(
                "Replacing dead session",
                session_id=identifier,
                state=session.state,
            )
            await self.discard(session)
            self._metrics["sessions_replaced"] += 1

        return await self._create_session(identifier)

    async def _create_session(self, identifier: str) -> Session:
        session = Session(
            session_id=identifier,
            interpreter=self._interpreter,
            config=self._config,
        )
        await session.start()

        self._sessions[identifier] = session
        self._metrics["sessions_created"] += 1
        logger.info("Created session", session_id=identifier, total_sessions=len(self._sessions))
        return session

    async def discard(self, session: Session) -> None:
        """Drop a session from the registry and make sure its process is gone."""
        if self._sessions.get(session.session_id) is session:
            del self._sessions[session.session_id]
            self._metrics["sessions_removed"] += 1
            self._forget_lock(session.session_id)

        await session.terminate()
        logger.info("Removed session", session_id=session.session_id)

    async def close(self, identifier: str) -> bool:
        """Shut down the session registered under ``identifier``.

        Returns:
            True if a session was registered
        """
        session = self._sessions.pop(identifier, None)
        if session is None:
            return False
        self._metrics["sessions_removed"] += 1
        try:
            await session.shutdown()
        finally:
            self._forget_lock(identifier)
        return True

    async def close_all(self) -> None:
        """Shut down every session."""
        self._shutdown = True
        sessions = list(self._sessions.values())
        self._sessions.clear()

        if sessions:
            await asyncio.gather(
                *(session.shutdown() for session in sessions), return_exceptions=True
            )
        logger.info("Session registry closed", closed=len(sessions))
