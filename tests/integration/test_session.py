"""Integration tests for interactive sessions."""

import asyncio
import sys
from unittest.mock import patch

import psutil
import pytest

from splicer.errors import FragmentError, SessionUnresponsive
from splicer.session.config import InterpreterConfig, SessionConfig
from splicer.session.manager import Session, SessionState
from tests.fixtures.sessions import create_session


@pytest.mark.integration
class TestSessionLifecycle:
    """Test session lifecycle management."""

    @pytest.mark.asyncio
    async def test_session_startup_and_shutdown(self):
        async with create_session() as session:
            assert session.state == SessionState.READY
            assert session.is_alive
            assert session.info.pid is not None
        assert session.state == SessionState.TERMINATED
        assert not session.is_alive

    @pytest.mark.asyncio
    async def test_cannot_start_twice(self):
        async with create_session() as session:
            with pytest.raises(RuntimeError, match="Cannot start"):
                await session.start()

    @pytest.mark.asyncio
    async def test_info_samples_process(self):
        async with create_session() as session:
            info = session.info
            assert info.session_id == "test"
            assert info.memory_usage > 0

    @pytest.mark.asyncio
    async def test_unresponsive_startup(self):
        # Reads stdin forever and never answers the handshake sentinel
        interpreter = InterpreterConfig(
            command=sys.executable,
            session_args=["-c", "import sys\nfor _ in sys.stdin: pass"],
        )
        session = Session("mute", interpreter=interpreter, config=SessionConfig(ready_timeout=0.5))
        with pytest.raises(SessionUnresponsive):
            await session.start()
        assert not session.is_alive


@pytest.mark.integration
class TestRunInSession:
    """Test output capture through the transcript."""

    @pytest.mark.asyncio
    async def test_print_output_is_exact(self):
        async with create_session() as session:
            assert await session.run_in_session("print('hello')") == "hello"

    @pytest.mark.asyncio
    async def test_multiline_block(self, test_code):
        async with create_session() as session:
            out = await session.run_in_session(test_code["multiline"])
            assert out == "0\n1\n2\ntotal=3"

    @pytest.mark.asyncio
    async def test_repl_echoes_expression_values(self):
        async with create_session() as session:
            assert await session.run_in_session("x = 5\nx + 1") == "6"

    @pytest.mark.asyncio
    async def test_bindings_persist(self):
        async with create_session() as session:
            assert await session.run_in_session("counter = 1") == ""
            assert await session.run_in_session("counter += 1\nprint(counter)") == "2"

    @pytest.mark.asyncio
    async def test_traceback_is_captured(self):
        async with create_session() as session:
            out = await session.run_in_session("1/0")
            assert "ZeroDivisionError" in out
            # The session survives the exception
            assert await session.run_in_session("print('still here')") == "still here"

    @pytest.mark.asyncio
    async def test_cursor_advances(self):
        async with create_session() as session:
            start = session.cursor
            await session.run_in_session("print('a')")
            middle = session.cursor
            await session.run_in_session("print('b')")
            assert start < middle < session.cursor

    @pytest.mark.asyncio
    async def test_no_sentinel_in_output(self):
        async with create_session() as session:
            out = await session.run_in_session("print('x')\nprint('y')")
            assert "splicer_eoe" not in out
            assert out == "x\ny"

    @pytest.mark.asyncio
    async def test_line_pacing(self):
        session = Session(
            "paced",
            interpreter=InterpreterConfig(command=sys.executable),
            config=SessionConfig(line_delay=0.01),
        )
        await session.start()
        try:
            assert await session.run_in_session("a = 2\nprint(a * 3)") == "6"
        finally:
            await session.shutdown()


@pytest.mark.integration
class TestEvaluateValue:
    """Test value capture through the artifact side channel."""

    @pytest.mark.asyncio
    async def test_final_expression_value(self):
        async with create_session() as session:
            assert await session.evaluate_value("21") == "21"

    @pytest.mark.asyncio
    async def test_printing_does_not_leak(self):
        async with create_session() as session:
            assert await session.evaluate_value("print('noise')\n'quiet'") == "quiet"
            assert await session.run_in_session("print('next')") == "next"

    @pytest.mark.asyncio
    async def test_value_bindings_persist(self):
        async with create_session() as session:
            await session.evaluate_value("x = 5")
            assert await session.evaluate_value("x + 1") == "6"

    @pytest.mark.asyncio
    async def test_table_value(self):
        async with create_session() as session:
            assert await session.evaluate_value("[[1, 2], [3, 4]]") == "1\t2\n3\t4"

    @pytest.mark.asyncio
    async def test_multiline_with_blank_lines(self):
        code = "def f(n):\n    total = 0\n\n    for i in range(n):\n        total += i\n    return total\n\nf(4)"
        async with create_session() as session:
            assert await session.evaluate_value(code) == "6"

    @pytest.mark.asyncio
    async def test_error_raises_fragment_error(self):
        async with create_session() as session:
            with pytest.raises(FragmentError) as exc_info:
                await session.evaluate_value("undefined_name")
            assert "NameError" in exc_info.value.transcript
            assert session.is_alive
            assert session.info.error_count == 1


@pytest.mark.integration
@pytest.mark.slow
class TestUnresponsive:
    """Test hung fragments."""

    @pytest.mark.asyncio
    async def test_hang_times_out(self, test_code):
        async with create_session() as session:
            loop = asyncio.get_running_loop()
            started = loop.time()
            with pytest.raises(SessionUnresponsive):
                await session.run_in_session(test_code["hang"], timeout=0.5)
            assert loop.time() - started < 5.0
            assert not session.is_alive
            assert session.metrics["evaluations_timed_out"] == 1

    @pytest.mark.asyncio
    async def test_dead_session_refuses_work(self, test_code):
        async with create_session() as session:
            with pytest.raises(SessionUnresponsive):
                await session.evaluate_value(test_code["hang"], timeout=0.5)
            with pytest.raises(RuntimeError, match="Cannot execute"):
                await session.run_in_session("print(1)")

    @pytest.mark.asyncio
    async def test_process_exit_is_unresponsive(self):
        async with create_session() as session:
            with pytest.raises(SessionUnresponsive):
                await session.run_in_session("import os\nos._exit(3)")
            assert not session.is_alive

    @pytest.mark.asyncio
    async def test_terminate_releases_transport_when_kill_fails(self):
        async with create_session() as session:
            process = session._process
            with patch(
                "splicer.session.manager.kill_process_tree",
                side_effect=psutil.NoSuchProcess(process.pid),
            ):
                with pytest.raises(psutil.NoSuchProcess):
                    await session.terminate()

            assert session._transport is None
            assert process.returncode is not None
            assert session.state == SessionState.TERMINATED

    @pytest.mark.asyncio
    async def test_process_killed_outside_session(self):
        async with create_session() as session:
            process = session._process
            process.kill()
            await process.wait()

            with pytest.raises(SessionUnresponsive):
                await session.run_in_session("print(1)")
            assert not session.is_alive
