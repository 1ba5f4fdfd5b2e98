"""Classification of captured interpreter text into evaluation results."""

from __future__ import annotations

from collections.abc import Collection
from typing import Any, Optional

from ..protocol.codec import TableHeuristic, decode
from ..protocol.messages import EvaluationResult, ResultParam, ResultType


def wants_raw(result_params: Collection[str], result_type: ResultType) -> bool:
    """Whether captured text is returned verbatim instead of decoded.

    ``code`` always keeps the text. Output mode keeps it unless ``table``
    asks for a structured value. A pretty-printed value is display text.
    """
    if ResultParam.CODE.value in result_params:
        return True
    if result_type == ResultType.OUTPUT:
        return ResultParam.TABLE.value not in result_params
    return ResultParam.PP.value in result_params


def classify_and_decode(
    raw: str,
    result_params: Collection[str],
    result_type: ResultType = ResultType.VALUE,
    heuristic: Optional[TableHeuristic] = None,
    **metadata: Any,
) -> EvaluationResult:
    """Turn captured text into an EvaluationResult.

    Extra keyword arguments (session id, timing, name hints) are copied onto
    the result unchanged.
    """
    if wants_raw(result_params, result_type):
        return EvaluationResult(value=raw, raw=True, result_type=result_type, **metadata)

    return EvaluationResult(
        value=decode(raw, heuristic),
        raw=False,
        result_type=result_type,
        **metadata,
    )
