"""Pytest configuration and shared fixtures."""

import sys
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path

import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from backoffice.engine import BackOfficeEngine  # noqa: E402
from backoffice.reconciliation import InMemoryFeedSource, PositionRecord  # noqa: E402
from backoffice.settings import Settings  # noqa: E402

# Monday morning, well before the 16:00 cutoff.
T0 = datetime(2025, 3, 10, 9, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable clock injected into the engine."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def make_position(
    source: str = "CSCS",
    owner: str = "ACC-001",
    instrument: str = "NG000001",
    quantity="500000",
    value=None,
) -> PositionRecord:
    quantity = Decimal(str(quantity))
    if value is None:
        value = quantity * Decimal("10")
    return PositionRecord(
        source_system=source,
        instrument_id=instrument,
        owner_id=owner,
        quantity=quantity,
        notional_value=Decimal(str(value)),
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def feeds(clock):
    return InMemoryFeedSource(clock=clock)


@pytest.fixture
def engine(clock, feeds):
    eng = BackOfficeEngine(settings=Settings(), feed_source=feeds, clock=clock)
    yield eng
    eng.close()
