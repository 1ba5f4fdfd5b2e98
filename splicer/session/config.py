"""Configuration for interpreters, sessions and the engine."""

from dataclasses import dataclass, field

from ..protocol.codec import TableHeuristic


@dataclass
class InterpreterConfig:
    """How to launch the external interpreter.

    The session arguments must put the interpreter into interactive mode
    reading from a pipe with unbuffered output.
    """

    command: str = "python3"
    one_shot_args: list[str] = field(default_factory=list)
    session_args: list[str] = field(default_factory=lambda: ["-i", "-q", "-u"])
    env: dict[str, str] = field(default_factory=dict)


@dataclass
class SessionConfig:
    """Configuration for session behavior."""

    # Monitoring and metrics
    enable_metrics: bool = False

    # Timeout settings
    default_execute_timeout: float = 30.0
    ready_timeout: float = 10.0
    shutdown_timeout: float = 5.0

    # Delay awaited after each line written to a session, 0 disables pacing
    line_delay: float = 0.0


@dataclass
class EngineConfig:
    interpreter: InterpreterConfig = field(default_factory=InterpreterConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    tables: TableHeuristic = field(default_factory=TableHeuristic)
