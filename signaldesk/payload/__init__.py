from .extract import resolve
from .mapper import map_payload

__all__ = ["resolve", "map_payload"]
