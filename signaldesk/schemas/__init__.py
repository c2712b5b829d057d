from .signal_v1 import (
    AppendResult,
    Direction,
    MappingConfig,
    PriceQuote,
    RawCandidate,
    Signal,
    SignalSource,
    SignalType,
    Trade,
    TradeStatus,
)

__all__ = [
    "AppendResult",
    "Direction",
    "MappingConfig",
    "PriceQuote",
    "RawCandidate",
    "Signal",
    "SignalSource",
    "SignalType",
    "Trade",
    "TradeStatus",
]
