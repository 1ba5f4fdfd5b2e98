"""Unit tests for result classification."""

import pytest

from splicer.evaluation.extractor import classify_and_decode, wants_raw
from splicer.protocol.codec import TableHeuristic
from splicer.protocol.messages import ResultType


@pytest.mark.unit
class TestDecisionTable:
    """Test which results are returned verbatim."""

    @pytest.mark.parametrize(
        "params, result_type, raw",
        [
            ({"code"}, ResultType.VALUE, True),
            ({"code"}, ResultType.OUTPUT, True),
            ({"code", "table"}, ResultType.OUTPUT, True),
            (set(), ResultType.OUTPUT, True),
            ({"table"}, ResultType.OUTPUT, False),
            (set(), ResultType.VALUE, False),
            ({"table"}, ResultType.VALUE, False),
            ({"pp"}, ResultType.VALUE, True),
            ({"unknown"}, ResultType.VALUE, False),
        ],
    )
    def test_wants_raw(self, params, result_type, raw):
        assert wants_raw(params, result_type) is raw


@pytest.mark.unit
class TestClassifyAndDecode:
    """Test building evaluation results."""

    def test_code_returns_text_verbatim(self):
        result = classify_and_decode("1\t2\n3\t4", {"code"}, ResultType.VALUE)
        assert result.raw is True
        assert result.value == "1\t2\n3\t4"

    def test_output_returns_text_verbatim(self):
        result = classify_and_decode("21", set(), ResultType.OUTPUT)
        assert result.raw is True
        assert result.value == "21"

    def test_output_table_is_decoded(self):
        result = classify_and_decode("1\t2\n3\t4", {"table"}, ResultType.OUTPUT)
        assert result.is_table
        assert result.value == [[1, 2], [3, 4]]

    def test_value_is_decoded(self):
        result = classify_and_decode("21", set(), ResultType.VALUE)
        assert result.raw is False
        assert result.value == 21

    def test_custom_heuristic(self):
        heuristic = TableHeuristic(separators=(",",))
        result = classify_and_decode("1,2", set(), ResultType.VALUE, heuristic)
        assert result.value == [[1, 2]]

    def test_metadata_passed_through(self):
        result = classify_and_decode(
            "1\t2",
            set(),
            ResultType.VALUE,
            session_id="s1",
            execution_time=0.25,
            colnames=["a", "b"],
            rownames=None,
        )
        assert result.session_id == "s1"
        assert result.execution_time == 0.25
        assert result.colnames == ["a", "b"]
        assert result.rownames is None
