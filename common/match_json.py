"""Deep structural equality for JSON values."""

from typing import Any


def match_json(a: Any, b: Any) -> bool:
    """
    Return True if two JSON-compatible values are structurally equal.

    Dicts must share the same key set, lists must have the same length and
    match element-wise. Booleans never match numbers, even though Python
    treats ``True == 1``.

    Args:
        a: First JSON value
        b: Second JSON value

    Returns:
        True when both values describe the same JSON document
    """
    if isinstance(a, bool) or isinstance(b, bool):
        return isinstance(a, bool) and isinstance(b, bool) and a == b

    if isinstance(a, dict):
        if not isinstance(b, dict) or a.keys() != b.keys():
            return False
        return all(match_json(a[key], b[key]) for key in a)

    if isinstance(a, (list, tuple)):
        if not isinstance(b, (list, tuple)) or len(a) != len(b):
            return False
        return all(match_json(x, y) for x, y in zip(a, b))

    if isinstance(b, (dict, list, tuple)):
        return False

    return a == b
