from __future__ import annotations

from pathlib import Path
from typing import Iterable, List

import pytest

from dispatcher import Dispatcher
from loggers import DEBUG_LOGGER
from stores import OutputStore
from tests._fixtures.fakes import FakeBrowser, FakeContext, FakePage

FIXED_EPOCH = 1_700_000_000.0


@pytest.fixture
def log_messages() -> Iterable[List[str]]:
    """Capture everything sent through DEBUG_LOGGER during a test."""
    messages: List[str] = []

    def _slot(msg: str) -> None:
        messages.append(msg)

    DEBUG_LOGGER.message_signal.connect(_slot)
    try:
        yield messages
    finally:
        DEBUG_LOGGER.message_signal.disconnect(_slot)

@pytest.fixture
def out_dir(tmp_path: Path) -> Path:
    return tmp_path / "exported"

@pytest.fixture
def store(out_dir: Path) -> OutputStore:
    return OutputStore(out_dir, clock=lambda: FIXED_EPOCH)

@pytest.fixture
def dispatcher(store: OutputStore) -> Dispatcher:
    return Dispatcher(store)


@pytest.fixture
def page() -> FakePage:
    return FakePage()


@pytest.fixture
def context() -> FakeContext:
    return FakeContext()


@pytest.fixture
def browser() -> FakeBrowser:
    return FakeBrowser()
