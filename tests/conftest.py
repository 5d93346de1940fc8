from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from chat_accounts.security.hasher import CredentialHasher


class FakeClock:
    """Manually advanced clock for expiry and cooldown tests."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def hasher() -> CredentialHasher:
    # Low iteration count keeps the suite fast; production uses >= 100k.
    return CredentialHasher(iterations=1_000)
