#!/usr/bin/env python3
"""
User correction overlays.

Corrections are kept apart from a step's raw result and laid over it on
read. Every function here returns new objects and never mutates its inputs.
"""

import copy
from typing import Any, Dict, Iterable, List, Optional, Tuple


def merge_overlay(base: Any, overlay: Any) -> Any:
    """
    Lay overlay over base.

    Dicts merge key by key, recursively; any other overlay value replaces
    the base value wholesale (lists included).

    Args:
        base: Original value, left untouched
        overlay: Correction value

    Returns:
        A new merged value
    """
    if isinstance(base, dict) and isinstance(overlay, dict):
        merged = copy.deepcopy(base)
        for key, value in overlay.items():
            merged[key] = merge_overlay(base.get(key), value)
        return merged
    return copy.deepcopy(overlay)


def merge_corrections(existing: Optional[Dict[str, Any]], incoming: Dict[str, Any]) -> Dict[str, Any]:
    """Deep-merge an incoming correction payload into the existing overlay."""
    if not isinstance(incoming, dict):
        raise TypeError("corrections must be a mapping")
    return merge_overlay(existing or {}, incoming)


def revert_corrections(existing: Optional[Dict[str, Any]], keys: Optional[Iterable[str]] = None) -> Dict[str, Any]:
    """
    Drop correction keys.

    Args:
        existing: Current overlay
        keys: Top-level keys to drop; None drops everything

    Returns:
        The remaining overlay
    """
    if keys is None:
        return {}
    drop = set(keys)
    return {key: copy.deepcopy(value) for key, value in (existing or {}).items() if key not in drop}


def diff_corrections(result: Any, corrections: Dict[str, Any], prefix: str = '') -> List[Tuple[str, Any, Any]]:
    """
    List what the overlay changes relative to the raw result.

    Returns:
        (dotted path, original value, corrected value) for each leaf that differs
    """
    changes: List[Tuple[str, Any, Any]] = []
    base = result if isinstance(result, dict) else {}
    for key, corrected in corrections.items():
        path = f"{prefix}{key}"
        original = base.get(key)
        if isinstance(corrected, dict) and corrected and isinstance(original, dict):
            changes.extend(diff_corrections(original, corrected, prefix=f"{path}."))
        elif original != corrected:
            changes.append((path, copy.deepcopy(original), copy.deepcopy(corrected)))
    return changes
