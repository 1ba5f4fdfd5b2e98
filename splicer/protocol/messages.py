from __future__ import annotations

from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

NO_SESSION = "none"

Scalar = Union[None, bool, int, float, str]
Table = list[list[Any]]


class ResultType(str, Enum):
    OUTPUT = "output"
    VALUE = "value"


class ResultParam(str, Enum):
    CODE = "code"
    PP = "pp"
    TABLE = "table"


class Fragment(BaseModel):
    model_config = ConfigDict(frozen=True)

    source: str = Field(description="Source text to evaluate")
    params: dict[str, Any] = Field(
        default_factory=dict, description="Host values injected as variables before the body"
    )
    result_type: ResultType = Field(
        default=ResultType.VALUE, description="Capture printed output or the final value"
    )
    result_params: frozenset[str] = Field(
        default_factory=frozenset, description="Result shape hints such as code, pp, table"
    )
    session: str = Field(
        default=NO_SESSION, description="Session identifier, or 'none' for one-shot evaluation"
    )
    prologue: Optional[str] = Field(default=None, description="Source run before the body")
    epilogue: Optional[str] = Field(default=None, description="Source run after the body")
    colnames: Optional[list[str]] = Field(
        default=None, description="Column name hints passed through to the result"
    )
    rownames: Optional[list[str]] = Field(
        default=None, description="Row name hints passed through to the result"
    )

    @property
    def uses_session(self) -> bool:
        return self.session != NO_SESSION

    def has_param(self, param: ResultParam | str) -> bool:
        key = param.value if isinstance(param, ResultParam) else param
        return key in self.result_params


class EvaluationResult(BaseModel):
    value: Any = Field(description="Raw text, decoded scalar, or table of rows")
    raw: bool = Field(description="Whether value is the undecoded interpreter text")
    result_type: ResultType = Field(description="Result type the fragment was evaluated with")
    session_id: str = Field(default=NO_SESSION, description="Session used for evaluation")
    execution_time: float = Field(default=0.0, description="Evaluation time in seconds")
    colnames: Optional[list[str]] = Field(default=None, description="Column name hints")
    rownames: Optional[list[str]] = Field(default=None, description="Row name hints")

    @property
    def is_table(self) -> bool:
        return not self.raw and isinstance(self.value, list)
