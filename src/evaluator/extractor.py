"""
Best-effort extraction of evaluation fields from free-form model output.

The model is asked for JSON but may wrap it in prose or markdown fences, and
may copy sloppy JSON such as trailing commas. Extraction locates the first
top-level JSON object in the text, repairing trailing commas if plain decoding
fails, and projects named dotted paths out of it; anything missing or
malformed falls back to the field's zero value. Nothing here raises.
"""

import json
import math
import re
from typing import Any, Iterator, Optional

from shared.models import EvaluationResult

_CLOSING_AFTER_SPACE = re.compile(r"\s*[}\]]")


def _outside_strings(text: str) -> Iterator[tuple[int, str]]:
    """Yield (index, char) for every character outside JSON string literals."""
    in_string = escaped = False
    for i, char in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
            continue
        yield i, char


def _object_end(text: str, start: int) -> Optional[int]:
    """Index just past the brace closing the object opened at ``start``."""
    depth = 0
    for i, char in _outside_strings(text[start:]):
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return start + i + 1
    return None


def strip_trailing_commas(text: str) -> str:
    """Drop commas directly followed by ``}`` or ``]``, leaving strings alone."""
    dropped = {
        i
        for i, char in _outside_strings(text)
        if char == "," and _CLOSING_AFTER_SPACE.match(text, i + 1)
    }
    if not dropped:
        return text
    return "".join(char for i, char in enumerate(text) if i not in dropped)


def _decode_object(candidate: str) -> Optional[dict]:
    for attempt in (candidate, strip_trailing_commas(candidate)):
        try:
            value = json.loads(attempt)
        except (ValueError, RecursionError):
            continue
        if isinstance(value, dict):
            return value
    return None


def find_json_object(text: str) -> Optional[dict]:
    """
    Return the first top-level JSON object embedded in ``text``, or None.

    Objects nested inside a brace block that fails to decode are never
    returned in its place; scanning resumes after the whole block.
    """
    if not text:
        return None

    start = text.find("{")
    while start != -1:
        end = _object_end(text, start)
        if end is None:
            return None
        document = _decode_object(text[start:end])
        if document is not None:
            return document
        start = text.find("{", end)
    return None


def get_path(document: Any, path: str) -> Optional[Any]:
    """Look up a dotted path (``breakdown.cv.cultural_fit``, ``items.0``)."""
    current = document
    for key in path.split("."):
        if isinstance(current, dict):
            if key not in current:
                return None
            current = current[key]
        elif isinstance(current, list) and key.isdigit():
            index = int(key)
            if index >= len(current):
                return None
            current = current[index]
        else:
            return None
    return current


def get_float(document: Any, path: str) -> float:
    value = get_path(document, path)
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip().rstrip("%"))
        except ValueError:
            return 0.0
    else:
        return 0.0
    return number if math.isfinite(number) else 0.0


def get_text(document: Any, path: str) -> str:
    value = get_path(document, path)
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return str(value)


def get_raw(document: Any, path: str, default: str = "") -> str:
    """The value at ``path`` re-serialized as JSON text."""
    value = get_path(document, path)
    if value is None:
        return default
    try:
        return json.dumps(value, allow_nan=False)
    except ValueError:
        return default


def extract_evaluation(text: str) -> EvaluationResult:
    """Project the evaluation schema out of the model's answer."""
    document = find_json_object(text)
    if document is None:
        return EvaluationResult()

    breakdown = get_path(document, "breakdown")
    return EvaluationResult(
        cv_match_rate=get_float(document, "cv_match_rate"),
        cv_feedback=get_text(document, "cv_feedback"),
        project_score=get_float(document, "project_score"),
        project_feedback=get_text(document, "project_feedback"),
        overall_summary=get_text(document, "overall_summary"),
        breakdown=get_raw(document, "breakdown", "{}") if isinstance(breakdown, dict) else "{}",
    )
