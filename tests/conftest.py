"""
Shared helpers for tests that drive real processes.
"""

import sys
import textwrap
from pathlib import Path
from typing import Callable, List

import pytest


ROOT = Path(__file__).resolve().parent.parent


def reducer_command(name: str) -> List[str]:
    """Command running one of the bundled reference reducers."""
    return [sys.executable, "-m", f"parashrink.reducers.{name}"]


@pytest.fixture
def script(tmp_path) -> Callable[[str, str], List[str]]:
    """Write a Python helper script and return the command that runs it."""
    def _write(name: str, body: str) -> List[str]:
        path = tmp_path / f"{name}.py"
        path.write_text(textwrap.dedent(body))
        return [sys.executable, str(path)]
    return _write


@pytest.fixture(autouse=True)
def _run_from_root(monkeypatch):
    """Reference reducers are run with -m, so the package must be importable."""
    monkeypatch.chdir(ROOT)


@pytest.fixture
def reducer() -> Callable[[str], List[str]]:
    """Factory for reference reducer commands."""
    return reducer_command
