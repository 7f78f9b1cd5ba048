"""Pytest configuration and fixtures for autoremedy tests"""

import json
import sys
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import pytest

# Ensure src directory is in Python path before any imports
project_root = Path(__file__).resolve().parent.parent
src_path = project_root / "src"

if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

from autoremedy.config import Settings  # noqa: E402
from autoremedy.orchestrator import BuildResult  # noqa: E402
from autoremedy.repair_memory import InMemoryRepairMemory  # noqa: E402
from autoremedy.subprocess_streaming import CommandResult  # noqa: E402


class FakeBuildTool:
    """Build tool that replays a scripted sequence of results."""

    def __init__(self, results: Sequence[BuildResult]):
        self.results = list(results)
        self.labels: List[str] = []

    def run(self, label: str) -> BuildResult:
        self.labels.append(label)
        if not self.results:
            raise AssertionError(f"Unexpected build run: {label}")
        return self.results.pop(0)

    @property
    def calls(self) -> int:
        return len(self.labels)


class RecordingRunner:
    """Command runner that records argv and returns canned results.

    ``responses`` maps the first word(s) of a command to a CommandResult;
    the longest matching prefix wins. Unmatched commands succeed.
    """

    def __init__(self, responses: Optional[Dict[Tuple[str, ...], CommandResult]] = None):
        self.responses = responses or {}
        self.calls: List[Tuple[List[str], Path]] = []

    def __call__(self, argv, cwd, timeout):
        self.calls.append((list(argv), Path(cwd)))
        best = None
        for prefix, result in self.responses.items():
            if tuple(argv[: len(prefix)]) == prefix:
                if best is None or len(prefix) > len(best[0]):
                    best = (prefix, result)
        if best is not None:
            return best[1]
        return CommandResult(returncode=0, output="", command=list(argv))

    def commands(self) -> List[List[str]]:
        return [argv for argv, _ in self.calls]


def failed(output: str) -> BuildResult:
    return BuildResult(ok=False, output=output, returncode=1)


def succeeded(output: str = "Successfully built") -> BuildResult:
    return BuildResult(ok=True, output=output, returncode=0)


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch):
    """Keep AUTOREMEDY_* variables from the developer's shell out of tests."""
    import os

    for key in list(os.environ):
        if key.startswith("AUTOREMEDY_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def project_dir(tmp_path):
    """A minimal Node project with a package.json."""
    root = tmp_path / "project"
    root.mkdir()
    (root / "package.json").write_text(json.dumps({"name": "demo", "version": "1.0.0"}))
    (root / "src").mkdir()
    (root / "src" / "index.js").write_text("console.log('hi');\n")
    return root


@pytest.fixture
def memory():
    return InMemoryRepairMemory()


@pytest.fixture
def runner():
    return RecordingRunner()


@pytest.fixture
def settings():
    """Settings for pipeline tests: no settle delay, no probes, no PreFlight."""
    return Settings(
        _env_file=None,
        settle_delay_seconds=0,
        health_probes=[],
        skip_preflight=True,
    )
