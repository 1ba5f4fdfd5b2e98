#!/usr/bin/env python3
"""Splicer - evaluate document fragments in external interpreters."""

from __future__ import annotations

import asyncio
import logging
import sys

import structlog

from splicer.evaluation.engine import Engine
from splicer.protocol.messages import Fragment, ResultType
from splicer.session.config import EngineConfig, InterpreterConfig

# Configure structured logging
structlog.configure(
    processors=[
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(logging.INFO),
    context_class=dict,
    logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
    cache_logger_on_first_use=True,
)


async def demo_one_shot(engine: Engine) -> None:
    """Fragments evaluated in fresh processes."""
    print("=== One-shot Demo ===\n")

    result = await engine.evaluate(
        Fragment(source='print("Hello from a fresh interpreter!")', result_type=ResultType.OUTPUT)
    )
    print(f"output: {result.value!r}")

    result = await engine.evaluate(
        Fragment(
            source="[[name, len(name)] for name in names]",
            params={"names": ["ada", "grace", "linus"]},
            colnames=["name", "length"],
        )
    )
    print(f"table:  {result.value!r} (columns {result.colnames})")


async def demo_session(engine: Engine) -> None:
    """Fragments sharing one interactive interpreter."""
    print("\n=== Session Demo ===\n")

    code = """
def factorial(n):
    if n <= 1:
        return 1
    return n * factorial(n - 1)

result = factorial(5)
print(f"5! = {result}")
"""
    result = await engine.evaluate(
        Fragment(source=code, result_type=ResultType.OUTPUT, session="demo")
    )
    print(f"output: {result.value!r}")

    result = await engine.evaluate(Fragment(source="result * 2", session="demo"))
    print(f"value:  {result.value!r} in {result.execution_time:.3f}s")


async def main() -> None:
    config = EngineConfig(interpreter=InterpreterConfig(command=sys.executable))
    async with Engine(config) as engine:
        await demo_one_shot(engine)
        await demo_session(engine)


if __name__ == "__main__":
    asyncio.run(main())
