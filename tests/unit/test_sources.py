"""Tests that every notestream source file compiles cleanly."""

from __future__ import annotations

import warnings
from pathlib import Path

import pytest

import notestream


PACKAGE_ROOT = Path(notestream.__file__).parent
SOURCES = sorted(PACKAGE_ROOT.rglob("*.py"))


class TestSources:
    def test_sources_found(self) -> None:
        assert PACKAGE_ROOT / "services" / "__init__.py" in SOURCES

    @pytest.mark.parametrize("path", SOURCES, ids=lambda p: str(p.relative_to(PACKAGE_ROOT)))
    def test_compiles_without_warnings(self, path: Path) -> None:
        """Invalid escape sequences in docstrings surface as SyntaxWarning."""
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            compile(path.read_text(encoding="utf-8"), str(path), "exec")
