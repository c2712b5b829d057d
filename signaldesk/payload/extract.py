from __future__ import annotations

from typing import Any, Optional, Union

JsonScalar = Union[str, int, float, bool]


def _scalar(value: Any) -> Optional[JsonScalar]:
    if isinstance(value, (str, int, float, bool)):
        return value
    # null, lists and objects are not field values
    return None


def resolve(doc: Any, path: str | None) -> Optional[JsonScalar]:
    """Resolve a dot-path such as ``data.ticker`` against a decoded JSON document.

    Absence at any segment yields None rather than an error. Lists are never
    indexed: a segment that lands on a list yields None. A top-level key that
    literally equals the whole path is preferred over splitting on dots.
    """
    if not path or not isinstance(doc, dict):
        return None
    if path in doc:
        return _scalar(doc[path])
    node: Any = doc
    for part in path.split("."):
        if not isinstance(node, dict) or part not in node:
            return None
        node = node[part]
    return _scalar(node)
