from __future__ import annotations

import pytest

from .fakes import FakeClock, FakeMonotonic


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def monotonic() -> FakeMonotonic:
    return FakeMonotonic()
