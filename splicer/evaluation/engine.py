from __future__ import annotations

import asyncio
import time
from types import TracebackType
from typing import Optional

import structlog

from ..errors import FragmentError, SessionUnresponsive
from ..protocol.codec import preamble
from ..protocol.messages import EvaluationResult, Fragment, ResultParam, ResultType
from ..session.config import EngineConfig
from ..session.registry import SessionRegistry
from ..subprocess.harness import join_source, value_script
from ..subprocess.launcher import spawn_external, temp_artifact_path
from .extractor import classify_and_decode

logger = structlog.get_logger()


class Engine:
    """Evaluates fragments in one-shot processes or persistent sessions."""

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        registry: Optional[SessionRegistry] = None,
    ) -> None:
        self._config = config or EngineConfig()
        self._registry = registry or SessionRegistry(
            interpreter=self._config.interpreter,
            config=self._config.session,
        )

    @property
    def registry(self) -> SessionRegistry:
        return self._registry

    async def __aenter__(self) -> Engine:
        return self

    async def __aexit__(
        self,
        exc_type: Optional[type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        await self.close()

    @staticmethod
    def build_source(fragment: Fragment) -> str:
        """Variable assignments, prologue, body and epilogue as one program."""
        return join_source(
            preamble(fragment.params),
            fragment.prologue,
            fragment.source,
            fragment.epilogue,
        )

    async def evaluate(self, fragment: Fragment, timeout: Optional[float] = None) -> EvaluationResult:
        """Evaluate a fragment and return its decoded or raw result.

        Args:
            fragment: Fragment to evaluate
            timeout: Seconds to wait for the interpreter, defaults to the
                configured execute timeout
        """
        timeout = self._config.session.default_execute_timeout if timeout is None else timeout
        source = self.build_source(fragment)
        log = logger.bind(session_id=fragment.session, result_type=fragment.result_type.value)
        log.debug("Evaluating fragment", params=sorted(fragment.params))

        start = time.perf_counter()
        if fragment.uses_session:
            raw = await self._evaluate_in_session(fragment, source, timeout)
        else:
            raw = await self._evaluate_one_shot(fragment, source, timeout)
        elapsed = time.perf_counter() - start

        log.debug("Fragment evaluated", execution_time=elapsed, captured=len(raw))
        return classify_and_decode(
            raw,
            fragment.result_params,
            fragment.result_type,
            self._config.tables,
            session_id=fragment.session,
            execution_time=elapsed,
            colnames=fragment.colnames,
            rownames=fragment.rownames,
        )

    async def _evaluate_one_shot(self, fragment: Fragment, source: str, timeout: float) -> str:
        interpreter = self._config.interpreter
        if fragment.result_type == ResultType.OUTPUT:
            out = await spawn_external(source, interpreter, timeout=timeout)
            return out.rstrip("\r\n")

        artifact = temp_artifact_path()
        try:
            pretty = fragment.has_param(ResultParam.PP)
            out = await spawn_external(
                value_script(source, str(artifact), pretty), interpreter, timeout=timeout
            )
            if not artifact.exists():
                raise FragmentError(out)
            return artifact.read_text(encoding="utf-8")
        finally:
            artifact.unlink(missing_ok=True)

    async def _evaluate_in_session(self, fragment: Fragment, source: str, timeout: float) -> str:
        async with self._registry.hold(fragment.session):
            session = await self._registry.resolve(fragment.session)
            if session is None:
                raise RuntimeError(f"No session for identifier {fragment.session!r}")

            try:
                if fragment.result_type == ResultType.VALUE:
                    return await session.evaluate_value(
                        source, pretty=fragment.has_param(ResultParam.PP), timeout=timeout
                    )
                return await session.run_in_session(source, timeout=timeout)

            except (SessionUnresponsive, asyncio.CancelledError):
                await self._registry.discard(session)
                raise

    async def close_session(self, identifier: str) -> bool:
        """Shut down one session; returns False if none was registered."""
        async with self._registry.hold(identifier):
            return await self._registry.close(identifier)

    async def close(self) -> None:
        await self._registry.close_all()


async def evaluate(fragment: Fragment, config: Optional[EngineConfig] = None) -> EvaluationResult:
    """Evaluate one fragment with a throwaway engine.

    Sessions opened for the fragment are shut down before returning, so
    this only makes sense for one-shot fragments.
    """
    async with Engine(config) as engine:
        return await engine.evaluate(fragment)
