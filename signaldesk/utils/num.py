from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Optional, Union


def parse_decimal(value: Union[str, int, float, bool, None]) -> Optional[Decimal]:
    """Decimal from a JSON scalar, or None when it is not a number."""
    if value is None or isinstance(value, bool):
        return None
    try:
        if isinstance(value, float):
            return Decimal(repr(value))
        return Decimal(str(value).strip().replace(",", ""))
    except (InvalidOperation, ValueError):
        return None
