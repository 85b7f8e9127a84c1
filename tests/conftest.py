"""Shared test fixtures and configuration."""

from __future__ import annotations

import contextlib
import io

import pytest
from rich.console import Console

from conversation_state import tokens
from tests.mocks.clock import FakeClock


def pytest_collection_modifyitems(items: list[pytest.Item]) -> None:
    """Set default timeout for all tests."""
    for item in items:
        with contextlib.suppress(AttributeError):
            item.add_marker(pytest.mark.timeout(5))


@pytest.fixture(autouse=True)
def _offline_tokenizer(monkeypatch: pytest.MonkeyPatch) -> None:
    """Count tokens with the character heuristic instead of downloading encodings."""
    monkeypatch.setattr(tokens, "_get_encoding", lambda model="gpt-4o": None)  # noqa: ARG005


@pytest.fixture
def mock_console() -> Console:
    """Provide a console that writes to a StringIO for testing."""
    return Console(file=io.StringIO(), width=80, force_terminal=True)


@pytest.fixture
def clock() -> FakeClock:
    """Provide a controllable clock for stores."""
    return FakeClock()
