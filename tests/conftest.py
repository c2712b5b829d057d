import os
import sys
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

# make 'signaldesk' importable when pytest runs from the repo root without an install
ROOT_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)

from signaldesk.schemas import Signal, SignalSource, SignalType

T0 = datetime(2024, 1, 2, 9, 30, tzinfo=timezone.utc)


def _make_signal(
    signal_type="BUY",
    price="100",
    at=0,
    strategy_id="strat-1",
    symbol="BTCUSDT",
    received_offset=0,
    **kw,
) -> Signal:
    signal_time = T0 + timedelta(seconds=at)
    return Signal(
        id=kw.pop("id", None) or str(uuid4()),
        credential_id=kw.pop("credential_id", "cred-1"),
        strategy_id=strategy_id,
        symbol=symbol,
        signal_type=SignalType(signal_type),
        price=Decimal(price),
        signal_time=signal_time,
        received_at=signal_time + timedelta(seconds=received_offset),
        source=SignalSource.API_KEY,
        **kw,
    )


@pytest.fixture
def make_signal():
    return _make_signal
