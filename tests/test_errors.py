"""Tests for solved_problems/errors.py."""

import pytest

from solved_problems.errors import CONFLICT, error_result, is_error


class TestErrorResult:
    def test_shape(self) -> None:
        result = error_result(CONFLICT, "Already there")
        assert result == {"error": "conflict", "message": "Already there"}
        assert is_error(result)

    def test_unknown_kind_rejected(self) -> None:
        with pytest.raises(ValueError, match="teapot"):
            error_result("teapot", "Short and stout")

    def test_success_is_not_error(self) -> None:
        assert not is_error({"success": True})
        assert not is_error(["error"])
