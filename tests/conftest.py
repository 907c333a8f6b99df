"""Pytest configuration and fixtures."""

# pylint: disable=redefined-outer-name

from __future__ import annotations

import os
import sys

from collections.abc import Callable
from pathlib import Path

import pytest


# Add the repository root to the path so ``tests.*`` helper imports resolve
repo_root = Path(__file__).parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from authflow.config import AuthFlowSettings  # noqa: E402
from tests.payloads import BASE_URL, NOW  # noqa: E402
from tests.stubs import ProviderStub  # noqa: E402


# ── Isolation ───────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Keep config files and AUTHFLOW_* variables of the host out of tests."""
    for key in list(os.environ):
        if key.startswith("AUTHFLOW_"):
            monkeypatch.delenv(key)
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("APPDATA", str(home))
    work = tmp_path / "work"
    work.mkdir()
    monkeypatch.chdir(work)
    return work


# ── Fixtures ────────────────────────────────────────────────────────


@pytest.fixture()
def settings() -> AuthFlowSettings:
    """Settings pointing at the stub provider."""
    return AuthFlowSettings(
        oauth={
            "base_url": BASE_URL,
            "client_id": "client-1",
            "redirect_uri": "https://app.test/callback",
            "scope": "openid profile",
        },
        token={"default_lifetime_seconds": 1800},
    )


@pytest.fixture()
def provider() -> ProviderStub:
    """A fresh scripted provider."""
    return ProviderStub()


@pytest.fixture()
def clock() -> Callable[[], float]:
    """Fixed clock."""
    return lambda: float(NOW)
