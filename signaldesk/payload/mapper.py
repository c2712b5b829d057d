from __future__ import annotations

from typing import Any

from ..schemas import MappingConfig, RawCandidate
from .extract import resolve

# candidate attribute -> (config path attribute, defaults key)
FIELDS: dict[str, tuple[str, str]] = {
    "signal_raw": ("signal_path", "signal"),
    "symbol_raw": ("symbol_path", "symbol"),
    "price_raw": ("price_path", "price"),
    "time_raw": ("time_path", "time"),
    "interval_raw": ("interval_path", "interval"),
    "alert_id_raw": ("alert_id_path", "alertId"),
}


def map_payload(doc: Any, cfg: MappingConfig) -> RawCandidate:
    """Apply a credential's mapping to an inbound body. Pure; never raises for absence."""
    out: dict[str, Any] = {}
    for attr, (path_attr, default_key) in FIELDS.items():
        value = resolve(doc, getattr(cfg, path_attr))
        if value is None or (isinstance(value, str) and not value.strip()):
            value = cfg.defaults.get(default_key)
        out[attr] = value
    return RawCandidate(**out)
