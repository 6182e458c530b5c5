from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from src.fragments.document import HostDocument


@pytest.fixture
def loader() -> AsyncMock:
    """Module loader that returns an empty module for every ``src``."""
    return AsyncMock(side_effect=lambda src: SimpleNamespace(__name__=src))


@pytest.fixture
def document(loader: AsyncMock) -> HostDocument:
    return HostDocument(loader)
