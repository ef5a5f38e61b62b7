# src/serialist/core/json_repair.py
"""Tolerant recovery of JSON records from model responses.

Model output may be wrapped in prose or code fences, cut off mid-record when
the token budget runs out, or wrapped in a one-element array.  The helpers
here peel those layers off before anything is validated.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, TypeVar

import dirtyjson
from pydantic import BaseModel, ValidationError

T = TypeVar("T", bound=BaseModel)

_FENCE_BLOCK = re.compile(r"```(?:json|JSON)?\s*\n?([\s\S]*?)```")
_OPEN_FENCE = re.compile(r"```(?:json|JSON)?\s*\n?([\s\S]*)$")
_BALANCED = re.compile(r"(\{[\s\S]*\}|\[[\s\S]*\])")


def _candidates(text: str) -> list[str]:
    """Return JSON-looking spans of ``text``, most specific first.

    A fenced block wins over the raw text.  Within it, the span from the first
    opening bracket to the last closer is tried first, then everything from
    the first opener onward, which is what survives a truncated response.
    """
    if not text:
        return []
    candidate = text.strip()
    fenced = _FENCE_BLOCK.search(candidate)
    if fenced:
        candidate = fenced.group(1).strip()
    else:
        unterminated = _OPEN_FENCE.search(candidate)
        if unterminated:
            candidate = unterminated.group(1).strip()

    starts = [i for i in (candidate.find("{"), candidate.find("[")) if i >= 0]
    if not starts:
        return []
    start = min(starts)
    tail = candidate[start:].strip()
    match = _BALANCED.search(candidate, start)
    if match and match.start() == start and match.group(1) != tail:
        return [match.group(1), tail]
    return [tail]


def extract_json(text: str) -> str | None:
    """Return the JSON-looking portion of ``text`` or ``None``."""
    spans = _candidates(text)
    return spans[0] if spans else None


@dataclass
class _Frame:
    kind: str
    cut: int
    state: str


def _valid_token(token: str) -> bool:
    try:
        json.loads(token)
    except ValueError:
        return False
    return True


def _remove_trailing_commas(text: str) -> str:
    """Drop commas that directly precede a closing bracket, outside strings."""
    out: list[str] = []
    in_string = False
    escape = False
    for ch in text:
        if in_string:
            out.append(ch)
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in "}]":
            idx = len(out) - 1
            while idx >= 0 and out[idx].isspace():
                idx -= 1
            if idx >= 0 and out[idx] == ",":
                del out[idx]
        out.append(ch)
    return "".join(out)


def repair_truncated_json(text: str) -> str:
    """Close a JSON document that was cut off mid-stream.

    The scan tracks open containers and, per container, whether a key, colon,
    value or comma is expected next.  Whatever member was being written when
    the text ended is either completed (a string value gets its closing quote)
    or dropped (a dangling key, colon or partial literal), then every open
    container is closed in reverse order.
    """
    s = text.strip()
    stack: list[_Frame] = []
    in_string = False
    escape = False
    string_is_key = False
    token_start: int | None = None

    for i, ch in enumerate(s):
        if in_string:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
                if stack:
                    top = stack[-1]
                    top.state = "colon" if string_is_key else "comma"
            continue

        if token_start is not None and (ch.isspace() or ch in ",]}:"):
            token_start = None
            if stack:
                stack[-1].state = "comma"

        if ch == '"':
            in_string = True
            string_is_key = bool(stack) and stack[-1].kind == "{" and stack[-1].state == "key"
        elif ch in "{[":
            if stack:
                stack[-1].state = "comma"
            stack.append(_Frame(ch, i + 1, "key" if ch == "{" else "value"))
        elif ch in "}]":
            if stack:
                stack.pop()
        elif ch == ":":
            if stack and stack[-1].kind == "{":
                stack[-1].state = "value"
        elif ch == ",":
            if stack:
                top = stack[-1]
                top.cut = i
                top.state = "key" if top.kind == "{" else "value"
        elif not ch.isspace() and token_start is None:
            token_start = i

    if in_string:
        if string_is_key and stack:
            s = s[: stack[-1].cut]
        else:
            if escape:
                s = s[:-1]
            s += '"'
    elif token_start is not None:
        # A finished scalar in value position completes its member.
        complete = _valid_token(s[token_start:]) and (
            not stack or stack[-1].kind == "[" or stack[-1].state == "value"
        )
        if not complete:
            s = s[: stack[-1].cut] if stack else s[:token_start]
    elif stack and stack[-1].kind == "{" and stack[-1].state in ("colon", "value"):
        s = s[: stack[-1].cut]

    s = s.rstrip()
    if s.endswith(","):
        s = s[:-1]
    closers = "".join("}" if f.kind == "{" else "]" for f in reversed(stack))
    return _remove_trailing_commas(s + closers)


def _unwrap(value: Any, expect_object: bool) -> Any:
    if (
        expect_object
        and isinstance(value, list)
        and len(value) == 1
        and isinstance(value[0], dict)
    ):
        return value[0]
    return value


def _loads(candidate: str) -> Any | None:
    try:
        return json.loads(candidate)
    except ValueError:
        return None


def _decode(spans: list[str]) -> Any | None:
    # Clean parse of any span first, then repair from the longest span.
    for span in spans:
        value = _loads(span)
        if value is not None:
            return value
    repaired = [repair_truncated_json(span) for span in reversed(spans)]
    for span in repaired:
        value = _loads(span)
        if value is not None:
            return value
    for span in repaired:
        try:
            return _plain(dirtyjson.loads(span))
        except (ValueError, IndexError, KeyError):
            continue
    return None


def parse_json(text: str, *, expect_object: bool = True) -> Any | None:
    """Best-effort parse of a model response into plain JSON data.

    Parameters
    ----------
    text:
        Raw model output.
    expect_object:
        When true a single-element array holding an object is unwrapped.

    Returns
    -------
    Any | None
        The decoded value, or ``None`` when nothing could be recovered.
    """
    spans = _candidates(text)
    if not spans:
        return None
    value = _decode(spans)
    if value is None:
        return None
    return _unwrap(value, expect_object)


def parse_model(text: str, response_model: type[T]) -> T | None:
    """Parse ``text`` and validate it into ``response_model``; ``None`` on failure."""
    data = parse_json(text, expect_object=True)
    if not isinstance(data, dict):
        return None
    try:
        return response_model.model_validate(_plain(data))
    except ValidationError:
        return None


def _plain(value: Any) -> Any:
    """Convert dirtyjson's attributed containers into plain dicts and lists."""
    if isinstance(value, dict):
        return {str(k): _plain(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_plain(v) for v in value]
    return value


__all__ = ["extract_json", "repair_truncated_json", "parse_json", "parse_model"]
