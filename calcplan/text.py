"""
Helpers for the free-text hints (skill descriptions, table text samples,
buff hint lines) that the inference and repair rules read.
"""

from __future__ import annotations
import re

_TAG_RE = re.compile(r"</?[^>]+>")
_BR_RE = re.compile(r"<br\s*/?>", re.IGNORECASE)
_WS_RE = re.compile(r"\s+")


def normalize_text(text: object) -> str:
    """Collapse markup, escaped newlines and whitespace into single spaces."""
    if not isinstance(text, str):
        return ""
    out = text.replace(" ", " ").replace("&nbsp;", " ")
    out = out.replace("\\n", " ").replace("\n", " ")
    out = _BR_RE.sub(" ", out)
    out = _TAG_RE.sub(" ", out)
    return _WS_RE.sub(" ", out).strip()


def squash(text: object) -> str:
    """normalize_text without any whitespace, for token matching."""
    return normalize_text(text).replace(" ", "")


def has_pct(text: str) -> bool:
    return "%" in text or "％" in text


def parse_number(text: str) -> float | None:
    try:
        return float(text)
    except (TypeError, ValueError):
        return None


CN_DIGITS = {"一": 1, "二": 2, "两": 2, "三": 3, "四": 4, "五": 5, "六": 6, "七": 7, "八": 8, "九": 9, "十": 10}


def parse_count(text: str) -> int | None:
    """Parse a small count written as digits or a single Chinese numeral."""
    text = text.strip()
    if text.isdigit():
        return int(text)
    return CN_DIGITS.get(text)
