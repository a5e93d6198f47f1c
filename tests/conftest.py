from __future__ import annotations

import pytest
from _fakes import FakeClock

from pyxposed.session import Session


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def session() -> Session:
    return Session(auth_token="auth-1", csrf_token="csrf-1", is_authenticated=True)
