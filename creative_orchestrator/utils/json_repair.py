"""Lenient JSON parsing for model output."""

import json
import logging
import re
from enum import Enum
from typing import Any, Dict, Tuple

logger = logging.getLogger(__name__)


class ParseTier(str, Enum):
    """Which step of the fallback chain produced the value."""
    EXACT = "exact"
    REPAIRED = "repaired"
    EXTRACTED = "extracted"
    EMPTY = "empty"


_SMART_QUOTES = {
    "\u201c": '"', "\u201d": '"', "\u201e": '"',
    "\u2018": "'", "\u2019": "'",
}
_TRAILING_COMMA = re.compile(r",\s*([}\]])")
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f]")


def _strip_code_fence(text: str) -> str:
    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = cleaned.strip("`")
        if "\n" in cleaned:
            cleaned = cleaned.split("\n", 1)[1]
    return cleaned.strip()


def _balance_brackets(text: str) -> str:
    """Close any brackets and strings left open by a truncated payload."""
    stack = []
    in_string = False
    escaped = False
    for ch in text:
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
        elif ch in "{[":
            stack.append("}" if ch == "{" else "]")
        elif ch in "}]" and stack and stack[-1] == ch:
            stack.pop()
    if in_string:
        text += '"'
    return text + "".join(reversed(stack))


def repair_json_text(text: str) -> str:
    """Apply structural fixes that commonly break model-emitted JSON."""
    repaired = _strip_code_fence(text)
    for smart, plain in _SMART_QUOTES.items():
        repaired = repaired.replace(smart, plain)
    repaired = _CONTROL_CHARS.sub("", repaired)
    repaired = repaired.replace("\r\n", " ").replace("\n", " ")
    repaired = _TRAILING_COMMA.sub(r"\1", repaired)
    return _balance_brackets(repaired)


def _extract_object(text: str) -> str:
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return ""
    return text[start:end + 1]


def parse_json_lenient(text: str, context: str = "model output") -> Tuple[Dict[str, Any], ParseTier]:
    """
    Parse a JSON object, falling back through progressively looser tiers.

    Tiers: exact parse, structural repair, outermost-object extraction,
    then an empty object. Every fallback tier is logged.

    Args:
        text: Raw text that should contain a JSON object
        context: Label used in log lines

    Returns:
        (parsed object, tier that produced it)
    """
    if not text or not text.strip():
        return {}, ParseTier.EXACT

    try:
        value = json.loads(text)
        if isinstance(value, dict):
            return value, ParseTier.EXACT
    except json.JSONDecodeError:
        pass

    repaired = repair_json_text(text)
    try:
        value = json.loads(repaired)
        if isinstance(value, dict):
            logger.warning("JSON repair: %s parsed after structural repair", context)
            return value, ParseTier.REPAIRED
    except json.JSONDecodeError:
        pass

    candidate = _extract_object(_strip_code_fence(text))
    if candidate:
        for attempt in (candidate, repair_json_text(candidate)):
            try:
                value = json.loads(attempt)
            except json.JSONDecodeError:
                continue
            if isinstance(value, dict):
                logger.warning("JSON repair: %s parsed from extracted object", context)
                return value, ParseTier.EXTRACTED

    logger.warning("JSON repair: %s unparseable, using empty object (%d chars)", context, len(text))
    return {}, ParseTier.EMPTY
