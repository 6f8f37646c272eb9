"""Helpers for pulling structured data out of free-form oracle responses."""
from __future__ import annotations

import json
import math
from datetime import datetime, tzinfo
from typing import Optional

from brain.errors import ParseError

_CLOSERS = {"[": "]", "{": "}"}


def strip_code_fences(text: str) -> str:
    """Drop a surrounding ```json ... ``` fence if the response has one."""
    text = text.strip()
    if text.startswith("```"):
        # Strip opening fence (e.g. ```json\n or ```\n)
        text = text.split("\n", 1)[1] if "\n" in text else text[3:]
        text = text.rsplit("```", 1)[0]
    return text.strip()


def _extract_balanced(text: str, opener: str) -> Optional[str]:
    """Return the substring from the first `opener` to its matching closer.

    Brackets inside JSON string literals are ignored, so a title such as
    "Arrays [part 1]" does not end the match early.
    """
    closer = _CLOSERS[opener]
    start = text.find(opener)
    if start == -1:
        return None

    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == opener:
            depth += 1
        elif ch == closer:
            depth -= 1
            if depth == 0:
                return text[start: i + 1]
    return None


def extract_json_array(raw: str) -> list:
    """Parse the first JSON array embedded in `raw` (prose and fences allowed)."""
    body = _extract_balanced(strip_code_fences(raw or ""), "[")
    if body is None:
        raise ParseError("No JSON array found in oracle response", raw_response=raw or "")
    try:
        data = json.loads(body)
    except json.JSONDecodeError as exc:
        raise ParseError(f"Oracle returned invalid JSON: {exc}", raw_response=raw) from exc
    return data


def extract_json_object(raw: str) -> dict:
    """Parse the first JSON object embedded in `raw`."""
    body = _extract_balanced(strip_code_fences(raw or ""), "{")
    if body is None:
        raise ParseError("No JSON object found in oracle response", raw_response=raw or "")
    try:
        data = json.loads(body)
    except json.JSONDecodeError as exc:
        raise ParseError(f"Oracle returned invalid JSON: {exc}", raw_response=raw) from exc
    return data


def coerce_hours(value) -> float:
    """Non-negative float, 0 for anything missing or non-numeric."""
    if isinstance(value, bool):
        return 0.0
    try:
        hours = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(hours) or hours < 0:
        return 0.0
    return hours


def parse_datetime(value, default_tz: tzinfo) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp; naive values are taken as `default_tz` local time."""
    if isinstance(value, dict):
        value = value.get("dateTime")
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        dt = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=default_tz)
    return dt
