from __future__ import annotations

import asyncio
import contextlib
import os
import tempfile
from pathlib import Path
from typing import Optional

import psutil
import structlog

from ..errors import EvaluationTimeout, NonZeroExit, ProcessSpawnFailure
from ..session.config import InterpreterConfig

logger = structlog.get_logger()


def _environment(config: InterpreterConfig) -> dict[str, str]:
    env = dict(os.environ)
    env.setdefault("PYTHONIOENCODING", "utf-8")
    # Plain prompt loop even on interpreters that ship a fancier REPL
    env.setdefault("PYTHON_BASIC_REPL", "1")
    env.update(config.env)
    return env


def kill_process_tree(pid: int) -> None:
    """Kill a process and every descendant it spawned."""
    try:
        parent = psutil.Process(pid)
        children = parent.children(recursive=True)
    except psutil.NoSuchProcess:
        return

    for child in children:
        with contextlib.suppress(psutil.NoSuchProcess):
            child.kill()
    with contextlib.suppress(psutil.NoSuchProcess):
        parent.kill()


async def reap(process: asyncio.subprocess.Process) -> None:
    """Kill a running process tree and wait for it to exit."""
    if process.returncode is None:
        kill_process_tree(process.pid)
        await process.wait()


async def _exec(command: str, *args: str, config: InterpreterConfig, merge_stderr: bool):
    try:
        return await asyncio.create_subprocess_exec(
            command,
            *args,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT if merge_stderr else asyncio.subprocess.PIPE,
            env=_environment(config),
        )
    except OSError as e:
        logger.error("Failed to start interpreter", command=command, error=str(e))
        raise ProcessSpawnFailure(command, str(e)) from e


def write_temp_source(source: str, suffix: str = ".py") -> Path:
    """Write source to a fresh temporary file; the caller removes it."""
    fd, name = tempfile.mkstemp(prefix="splicer-", suffix=suffix)
    with os.fdopen(fd, "w", encoding="utf-8") as fh:
        fh.write(source)
    return Path(name)


def temp_artifact_path(suffix: str = ".out") -> Path:
    """Reserve a uniquely named artifact path without creating the file."""
    fd, name = tempfile.mkstemp(prefix="splicer-value-", suffix=suffix)
    os.close(fd)
    path = Path(name)
    path.unlink()
    return path


async def spawn_external(
    source_text: str,
    config: Optional[InterpreterConfig] = None,
    timeout: Optional[float] = None,
) -> str:
    """Run source in a fresh interpreter process and return its stdout.

    Args:
        source_text: Program passed to the interpreter as a file argument
        config: Interpreter command and arguments
        timeout: Maximum seconds to wait for the process to exit

    Returns:
        Everything the process wrote to standard output

    Raises:
        ProcessSpawnFailure: If the interpreter cannot be started
        NonZeroExit: If the process exits with a failure status
        EvaluationTimeout: If the process does not exit in time
    """
    config = config or InterpreterConfig()
    script = write_temp_source(source_text)
    process: Optional[asyncio.subprocess.Process] = None

    try:
        process = await _exec(
            config.command,
            *config.one_shot_args,
            str(script),
            config=config,
            merge_stderr=False,
        )
        logger.debug("One-shot process started", pid=process.pid, script=str(script))

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError as err:
            await reap(process)
            logger.warning("One-shot process timed out", pid=process.pid, timeout=timeout)
            raise EvaluationTimeout(f"Interpreter did not exit within {timeout}s") from err

        out = stdout.decode("utf-8", errors="replace")
        err_text = stderr.decode("utf-8", errors="replace")
        if process.returncode != 0:
            logger.info("One-shot process failed", pid=process.pid, returncode=process.returncode)
            raise NonZeroExit(process.returncode, err_text, out)

        return out

    except asyncio.CancelledError:
        if process is not None:
            await reap(process)
        raise

    finally:
        script.unlink(missing_ok=True)


async def spawn_interactive(config: Optional[InterpreterConfig] = None) -> asyncio.subprocess.Process:
    """Start a persistent interactive interpreter with stderr merged into stdout."""
    config = config or InterpreterConfig()
    process = await _exec(config.command, *config.session_args, config=config, merge_stderr=True)
    logger.debug("Interactive process started", pid=process.pid, command=config.command)
    return process
