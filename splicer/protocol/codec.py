"""Conversion between host values and interpreter text.

Encoding turns host values into Python literal source so they can be bound
as variables ahead of a fragment. Decoding turns the text captured from the
interpreter back into a scalar or a table of rows.
"""

from __future__ import annotations

import math
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import structlog

from ..errors import DecodeAmbiguity
from .messages import Scalar, Table

logger = structlog.get_logger()

# Horizontal rule marker used by tables handed in from documents
HLINE = "hline"

_INT_RE = re.compile(r"^[-+]?\d+$")
_FLOAT_RE = re.compile(r"^[-+]?(?:\d+\.\d*|\.\d+|\d+)(?:[eE][-+]?\d+)?$")


@dataclass
class TableHeuristic:
    """Rules deciding when captured text is a table rather than a scalar.

    Text is a table when at least one line contains one of ``separators``
    and every line splits into the same number of columns. Separators are
    tried in order; the first that yields a consistent grid wins.
    """

    separators: tuple[str, ...] = ("\t",)
    # Pad short rows with empty cells instead of rejecting the grid
    pad_ragged_rows: bool = False
    # Multi-line text without separators becomes a one-column table
    single_column: bool = False
    coerce_scalars: bool = True
    constants: dict[str, Any] = field(
        default_factory=lambda: {"None": None, "True": True, "False": False}
    )


def to_literal(value: Any) -> str:
    """Render a host value as Python literal source."""
    if value is None or value == HLINE:
        return "None"
    if isinstance(value, bool):
        return "True" if value else "False"
    if isinstance(value, int):
        return repr(value)
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            return f"float({str(value)!r})"
        return repr(value)
    if isinstance(value, str):
        return repr(value)
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(to_literal(item) for item in value) + "]"
    if isinstance(value, Mapping):
        items = ", ".join(f"{to_literal(k)}: {to_literal(v)}" for k, v in value.items())
        return "{" + items + "}"
    raise TypeError(f"Cannot encode value of type {type(value).__name__} as a literal")


def encode(name: str, value: Any) -> str:
    """Encode one variable assignment, ``name = <literal>``."""
    if not name.isidentifier():
        raise ValueError(f"Invalid variable name: {name!r}")
    return f"{name} = {to_literal(value)}"


def preamble(params: Mapping[str, Any]) -> str:
    """Assignment lines binding every parameter, in a stable order."""
    return "\n".join(encode(name, params[name]) for name in sorted(params))


def coerce_scalar(text: str, heuristic: TableHeuristic | None = None) -> Scalar:
    """Convert one trimmed cell or scalar into int, float, constant or str."""
    heuristic = heuristic or TableHeuristic()
    text = text.strip()
    if not heuristic.coerce_scalars:
        return text
    if text in heuristic.constants:
        return heuristic.constants[text]
    if _INT_RE.match(text):
        return int(text)
    if _FLOAT_RE.match(text):
        return float(text)
    return text


def _split_grid(lines: list[str], separator: str, heuristic: TableHeuristic) -> Table:
    rows = [line.split(separator) for line in lines]
    width = max(len(row) for row in rows)
    if any(len(row) != width for row in rows):
        if not heuristic.pad_ragged_rows:
            raise DecodeAmbiguity(f"Rows have differing column counts for separator {separator!r}")
        rows = [row + [""] * (width - len(row)) for row in rows]
    return [[coerce_scalar(cell, heuristic) for cell in row] for row in rows]


def decode(raw_text: str, heuristic: TableHeuristic | None = None) -> Scalar | Table:
    """Decode captured text into a table or a scalar.

    Anything that is not an unambiguous grid comes back as the trimmed text,
    coerced to a number or constant where it looks like one.
    """
    heuristic = heuristic or TableHeuristic()
    text = raw_text.strip("\r\n")
    lines = [line for line in text.splitlines() if line.strip()]

    if not lines:
        return coerce_scalar(text, heuristic)

    for separator in heuristic.separators:
        if not any(separator in line for line in lines):
            continue
        try:
            return _split_grid(lines, separator, heuristic)
        except DecodeAmbiguity as e:
            logger.debug("Decode ambiguity, trying next separator", reason=str(e))

    if heuristic.single_column and len(lines) > 1:
        return [[coerce_scalar(line, heuristic)] for line in lines]

    return coerce_scalar(text, heuristic)
