"""Tests for core types."""

import core
from core.types import ErrorCategory


class TestErrorCategory:
    def test_values(self):
        assert {c.value for c in ErrorCategory} == {"transient", "auth", "permanent", "unknown"}

    def test_package_exports(self):
        assert core.__all__ == ["ErrorCategory"]
        assert core.ErrorCategory is ErrorCategory
