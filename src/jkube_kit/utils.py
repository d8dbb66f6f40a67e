"""Utility helpers shared across the jkube_kit package."""
from __future__ import annotations

import copy
import re
import time
from typing import Any, Dict, Mapping, Optional


def deep_merge(base: Dict[str, Any], new: Dict[str, Any]) -> Dict[str, Any]:
    """Return a deep merge of ``base`` with ``new`` without mutating the inputs."""

    merged: Dict[str, Any] = copy.deepcopy(base)
    for key, value in new.items():
        if isinstance(value, dict):
            base_sub = merged.get(key, {})
            if not isinstance(base_sub, dict):
                merged[key] = copy.deepcopy(value)
            else:
                merged[key] = deep_merge(base_sub, value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def merge_maps_and_remove_empty(
    override: Optional[Mapping[str, Any]],
    original: Optional[Mapping[str, Any]],
) -> Optional[Dict[str, Any]]:
    """Overlay ``override`` onto ``original``; blank override values delete the key.

    Returns ``None`` when both sides are ``None`` so that absent maps stay absent.
    """

    if override is None and original is None:
        return None
    answer: Dict[str, Any] = dict(original or {})
    for key, value in (override or {}).items():
        if value is None or value == "":
            answer.pop(key, None)
        else:
            answer[key] = value
    return answer


def first_registry_of(*registries: Optional[str]) -> Optional[str]:
    """Return the first registry that is set and not blank."""

    for registry in registries:
        if registry and registry.strip():
            return registry
    return None


def format_duration_since(start: float) -> str:
    """Render the time elapsed since ``start`` (a ``time.monotonic()`` value)."""

    elapsed = time.monotonic() - start
    if elapsed < 1:
        return f"{int(elapsed * 1000)} ms"
    minutes, seconds = divmod(elapsed, 60)
    if minutes:
        return f"{int(minutes)} minutes and {int(seconds)} seconds"
    return f"{seconds:.1f} seconds"


def sanitize_file_name(name: str) -> str:
    return re.sub(r"[^A-Za-z0-9_.-]", "-", name) if name else name
