from __future__ import annotations

from datetime import datetime
from uuid import uuid4

from ..errors import RejectReason, Rejection
from ..schemas import RawCandidate, Signal, SignalSource, SignalType
from ..utils.num import parse_decimal
from ..utils.time import ensure_utc, parse_timestamp

SIGNAL_VOCABULARY: dict[str, SignalType] = {
    "BUY": SignalType.BUY,
    "LONG": SignalType.LONG,
    "SELL": SignalType.SELL,
    "SHORT": SignalType.SHORT,
    "CLOSE": SignalType.CLOSE,
    "EXIT": SignalType.CLOSE,
}


def normalize_signal_type(raw) -> SignalType:
    if raw is None or isinstance(raw, bool):
        return SignalType.UNKNOWN
    return SIGNAL_VOCABULARY.get(str(raw).strip().upper(), SignalType.UNKNOWN)


def _text(raw) -> str | None:
    if raw is None or isinstance(raw, bool):
        return None
    s = str(raw).strip()
    return s or None


def normalize(
    candidate: RawCandidate,
    credential_id: str,
    strategy_id: str,
    *,
    received_at: datetime,
    source: SignalSource = SignalSource.API_KEY,
    signal_id: str | None = None,
) -> Signal:
    """Canonicalize a mapped candidate or raise ``Rejection``.

    A missing or unparseable time falls back to ``received_at``; it never rejects.
    """
    symbol = _text(candidate.symbol_raw)
    if symbol is None:
        raise Rejection(RejectReason.MISSING_SYMBOL)

    if candidate.price_raw is None:
        raise Rejection(RejectReason.MISSING_PRICE)
    price = parse_decimal(candidate.price_raw)
    if price is None or not price.is_finite() or price <= 0:
        raise Rejection(RejectReason.INVALID_PRICE, f"InvalidPrice: {candidate.price_raw!r}")

    received_at = ensure_utc(received_at)
    signal_time = parse_timestamp(candidate.time_raw) or received_at

    return Signal(
        id=signal_id or str(uuid4()),
        credential_id=credential_id,
        strategy_id=strategy_id,
        symbol=symbol.upper(),
        signal_type=normalize_signal_type(candidate.signal_raw),
        price=price,
        signal_time=signal_time,
        received_at=received_at,
        source=source,
        interval=_text(candidate.interval_raw),
        dedup_key=_text(candidate.alert_id_raw),
    )
