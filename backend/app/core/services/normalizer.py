from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Optional, Sequence, Tuple

from app.core.entities import NormalizedRecord, RecordCategory

# ================================================================
# Mapping rules (data, so tests can enumerate them)
# ================================================================
@dataclass(frozen=True)
class FieldMappingRules:
    content_fields: Tuple[str, ...] = (
        "feedback_content", "feedback", "prompt", "content", "body",
        "task_content", "text", "message", "instruction", "response",
    )
    min_content_length: int = 10
    rating_fields: Tuple[str, ...] = (
        "prompt_quality_rating", "feedback_quality_rating", "quality_rating",
        "rating", "category", "label", "score", "avg_score",
    )
    top_aliases: Tuple[str, ...] = ("top_10", "top10", "top", "selected", "better")
    bottom_aliases: Tuple[str, ...] = ("bottom_10", "bottom10", "bottom", "rejected", "worse")
    # 1-5 scale
    top_min: float = 4.0
    bottom_max: float = 2.0
    # 0-1 scale: top is (low, high], bottom is [low, high)
    fraction_top: Tuple[float, float] = (0.8, 1.0)
    fraction_bottom: Tuple[float, float] = (0.0, 0.2)
    rating_key_markers: Tuple[str, ...] = ("rating", "score")


DEFAULT_RULES = FieldMappingRules()

_LEADING_NUMBER = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?")


def _pick(obj: dict, keys: Sequence[str]) -> str:
    for k in keys:
        v = obj.get(k)
        if isinstance(v, str) and v.strip():
            return v.strip()
    return ""


def _first_truthy(obj: dict, keys: Sequence[str]) -> Any:
    for k in keys:
        v = obj.get(k)
        if v:
            return v
    return None


def _as_text(value: Any) -> str:
    if value is None or value is False:
        return ""
    if value is True:
        return "true"
    return str(value)


def parse_leading_number(raw: str) -> Optional[Tuple[float, bool]]:
    """Read a number from the start of `raw` ("4.5 stars" -> 4.5).

    Returns (value, integral) where integral is False when the literal
    carried a decimal point or exponent.
    """
    m = _LEADING_NUMBER.match(raw)
    if not m:
        return None
    literal = m.group(0)
    integral = not any(c in literal for c in ".eE")
    return float(literal), integral


# ================================================================
# Content extraction
# ================================================================
def extract_content(record: Any, rules: FieldMappingRules = DEFAULT_RULES) -> str:
    if isinstance(record, str):
        return record if record else json.dumps(record)
    if not isinstance(record, dict):
        return json.dumps(record, default=str)

    content = _pick(record, rules.content_fields)

    if not content or len(content) < rules.min_content_length:
        longest = ""
        for value in record.values():
            if isinstance(value, str) and len(value) > rules.min_content_length and len(value) > len(longest):
                longest = value
        if longest:
            content = longest

    if not content:
        content = json.dumps(record, default=str)
    return content


# ================================================================
# Category detection
# ================================================================
def classify_rating(raw: str, rules: FieldMappingRules = DEFAULT_RULES) -> Tuple[Optional[RecordCategory], bool]:
    """Classify a lower-cased, trimmed rating value.

    Returns (category, numeric) so the caller knows whether the value
    was a number; non-numeric misses fall through to the rating-key scan.
    """
    if "top" in raw and "10" in raw:
        return RecordCategory.TOP_10, False
    if "bottom" in raw and "10" in raw:
        return RecordCategory.BOTTOM_10, False
    if raw in rules.top_aliases:
        return RecordCategory.TOP_10, False
    if raw in rules.bottom_aliases:
        return RecordCategory.BOTTOM_10, False

    parsed = parse_leading_number(raw) if raw else None
    if parsed is None:
        return None, False

    num, integral = parsed
    if integral:
        if num >= rules.top_min:
            return RecordCategory.TOP_10, True
        if num <= rules.bottom_max:
            return RecordCategory.BOTTOM_10, True
        return None, True

    top_lo, top_hi = rules.fraction_top
    bot_lo, bot_hi = rules.fraction_bottom
    if num >= rules.top_min or top_lo < num <= top_hi:
        return RecordCategory.TOP_10, True
    if num <= rules.bottom_max or bot_lo <= num < bot_hi:
        return RecordCategory.BOTTOM_10, True
    return None, True


def detect_category(record: Any, rules: FieldMappingRules = DEFAULT_RULES) -> Optional[RecordCategory]:
    if not isinstance(record, dict):
        return None

    raw = _as_text(_first_truthy(record, rules.rating_fields)).lower().strip()
    category, numeric = classify_rating(raw, rules)
    if category is not None or numeric:
        return category

    for key in record:
        lowered = str(key).lower()
        if any(marker in lowered for marker in rules.rating_key_markers):
            fallback, _ = classify_rating(_as_text(record[key]).lower().strip(), rules)
            return fallback
    return None


def normalize_record(record: Any, rules: FieldMappingRules = DEFAULT_RULES) -> NormalizedRecord:
    return NormalizedRecord(
        content=extract_content(record, rules),
        category=detect_category(record, rules),
    )


def matches_keywords(content: str, keywords: Sequence[str]) -> bool:
    if not keywords:
        return True
    lowered = content.lower()
    return any(k.lower() in lowered for k in keywords)
