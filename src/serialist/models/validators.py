# src/serialist/models/validators.py
"""Custom validators for Pydantic models."""

from __future__ import annotations

import re
from typing import Annotated, Any

from pydantic import BeforeValidator

_NUMBER_RE = re.compile(r"-?\d+(?:\.\d+)?")

GENERIC_NAMES = frozenset(
    {
        "unknown",
        "none",
        "n/a",
        "narrator",
        "protagonist",
        "mc",
        "main character",
        "everyone",
        "someone",
        "stranger",
        "crowd",
        "villain",
        "enemy",
        "enemies",
        "guard",
        "guards",
        "disciple",
        "disciples",
        "elder",
        "master",
        "he",
        "she",
        "they",
    }
)


def _to_number(value: Any) -> float:
    if isinstance(value, bool):
        raise ValueError("boolean is not a score")
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        match = _NUMBER_RE.search(value)
        if match:
            return float(match.group())
    raise ValueError(f"not a number: {value!r}")


def clamp_score(value: Any) -> float:
    """Clamp a model-reported score into [0, 10]."""
    return min(10.0, max(0.0, _to_number(value)))


def clamp_ratio(value: Any) -> float:
    """Clamp a ratio into [0, 1]."""
    return min(1.0, max(0.0, _to_number(value)))


def coerce_int(value: Any) -> int:
    return int(round(_to_number(value)))


def coerce_str_list(value: Any) -> list[str]:
    """Accept a list, a delimited string or ``None`` and return a list of strings."""
    if value is None:
        return []
    if isinstance(value, str):
        parts = re.split(r"[\n;,]+", value)
        return [p.strip(" -\t") for p in parts if p.strip(" -\t")]
    if isinstance(value, dict):
        return [f"{k}: {v}" if v not in (None, "", True) else str(k) for k, v in value.items()]
    if isinstance(value, (list, tuple, set)):
        return [str(v).strip() for v in value if v is not None and str(v).strip()]
    return [str(value)]


Score = Annotated[float, BeforeValidator(clamp_score)]
Ratio = Annotated[float, BeforeValidator(clamp_ratio)]
LenientInt = Annotated[int, BeforeValidator(coerce_int)]
StrList = Annotated[list[str], BeforeValidator(coerce_str_list)]


def is_valid_character_name(name: str) -> bool:
    """Reject labels, numbering and annotations that models emit in place of names."""
    candidate = (name or "").strip()
    if not 2 <= len(candidate) <= 50:
        return False
    if candidate.isdigit() or re.match(r"^\d{2,}", candidate):
        return False
    if candidate.lower() in GENERIC_NAMES:
        return False
    if re.search(r"\(.*\)", candidate):
        return False
    return candidate.count(",") < 2


__all__ = [
    "GENERIC_NAMES",
    "LenientInt",
    "Ratio",
    "Score",
    "StrList",
    "clamp_ratio",
    "clamp_score",
    "coerce_int",
    "coerce_str_list",
    "is_valid_character_name",
]
