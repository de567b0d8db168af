"""Shared pytest fixtures."""

from __future__ import annotations

import os

import pytest

os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

from wisp.suggest.options import SuggestionOptions

from tests.helpers import FAST_OPTIONS, FakeSuggestionClient


@pytest.fixture
def fake_client() -> FakeSuggestionClient:
    return FakeSuggestionClient()


@pytest.fixture
def fast_options() -> SuggestionOptions:
    return FAST_OPTIONS


@pytest.fixture(autouse=True)
def _isolated_wisp_env(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    """Keep developer ``WISP_*`` variables and log files out of the tests."""

    for name in list(os.environ):
        if name.startswith("WISP_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("WISP_LOG_DIR", str(tmp_path / "logs"))
