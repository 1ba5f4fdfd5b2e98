"""Error types raised by the evaluation engine."""

from __future__ import annotations


class SplicerError(Exception):
    """Base class for engine errors."""

    pass


class ProcessSpawnFailure(SplicerError):
    """Raised when the interpreter executable cannot be started."""

    def __init__(self, command: str, reason: str) -> None:
        super().__init__(f"Failed to start interpreter {command!r}: {reason}")
        self.command = command
        self.reason = reason


class NonZeroExit(SplicerError):
    """Raised when a one-shot interpreter process exits with failure status."""

    def __init__(self, returncode: int, stderr: str, stdout: str = "") -> None:
        super().__init__(stderr.strip() or f"Interpreter exited with status {returncode}")
        self.returncode = returncode
        self.stderr = stderr
        self.stdout = stdout


class EvaluationTimeout(SplicerError, TimeoutError):
    """Raised when an interpreter does not finish within the allowed time."""

    pass


class SessionUnresponsive(EvaluationTimeout):
    """Raised when a session never emits its sentinel.

    The session is torn down before this is raised, so the next evaluation
    against the same identifier gets a fresh process.
    """

    def __init__(self, session_id: str, reason: str) -> None:
        super().__init__(f"Session {session_id!r} unresponsive: {reason}")
        self.session_id = session_id
        self.reason = reason


class FragmentError(SplicerError):
    """Raised when a value-mode fragment fails inside a live session."""

    def __init__(self, transcript: str) -> None:
        super().__init__(transcript.strip() or "Fragment produced no value")
        self.transcript = transcript


class DecodeAmbiguity(SplicerError):
    """Raw text does not cleanly parse as a table.

    Never surfaced to callers; the decoder catches it and falls back to
    returning the text as a scalar.
    """

    pass


class ProtocolError(SplicerError):
    """Transcript stream closed or produced unusable data."""

    pass
