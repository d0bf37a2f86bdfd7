"""Pytest configuration shared by all sandctl tests."""

import os
import sys
from pathlib import Path

import pytest

# Ensure the project root is in sys.path for proper imports
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from sandctl import telemetry  # noqa: E402
from sandctl.config import reset_settings  # noqa: E402


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    """Keep tests away from the real ~/.sandctl and any ambient config."""
    for key in list(os.environ):
        if key.startswith("SANDCTL_") or key == "HCLOUD_TOKEN":
            monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("SANDCTL_SESSIONS_PATH", str(tmp_path / "sessions.json"))
    monkeypatch.setenv("SANDCTL_LOGFIRE", "0")
    reset_settings()
    telemetry.reset()
    yield
    reset_settings()
    telemetry.reset()
