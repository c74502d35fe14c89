"""
Damage-key helpers shared by the renderer and the key normalization pass.
"""

from __future__ import annotations
import re

from ..plan_schema import CalcSuggestInput, Detail, DetailKind, Game
from ..plan_schema.vocab import BANNED_KEY_TOKENS, GS_LUNAR, GS_LUNAR_CN

_NIGHTSOUL_BLOCKS = ("a", "e", "q")


def sanitize_key(key: str) -> str:
    """Drop reaction and physical tokens from a comma-separated key."""
    parts = [p.strip() for p in (key or "").split(",")]
    return ",".join(p for p in parts if p and p.lower() not in BANNED_KEY_TOKENS)


def lunar_ele(input: CalcSuggestInput, detail: Detail) -> str | None:
    """GS lunar reaction id carried by a damage row, from ele or its title/table."""
    if input.game != Game.GS:
        return None
    ele = (getattr(detail, "ele", None) or "").strip()
    if ele in GS_LUNAR:
        return ele
    if ele in GS_LUNAR_CN:
        return GS_LUNAR_CN[ele]
    if ele:
        return None
    hint = f"{detail.title} {detail.table or ''}"
    for cn, rid in GS_LUNAR_CN.items():
        if cn in hint:
            return rid
    return None


def nightsoul_keys(input: CalcSuggestInput, details: list[Detail]) -> list[str | None]:
    """
    Effective keys after GS nightsoul tagging.

    When any row of a talent block carries a nightsoul key, every other
    damage row of that block gets the tag too (lunar and reaction rows
    excepted).
    """
    keys = [d.key for d in details]
    if input.game != Game.GS:
        return keys
    tagged = {
        d.talent for d in details
        if d.talent in _NIGHTSOUL_BLOCKS and d.key and "nightsoul" in d.key.lower()
    }
    if not tagged:
        return keys
    for idx, d in enumerate(details):
        if d.talent not in tagged or d.kind == DetailKind.REACTION:
            continue
        ele = (getattr(d, "ele", None) or "").strip()
        if re.match(r"^lunar", ele, re.IGNORECASE):
            continue
        key = (d.key or "").strip()
        if not key:
            keys[idx] = f"{d.talent},nightsoul"
        elif "nightsoul" not in key.lower():
            keys[idx] = f"{key},nightsoul"
    return keys


def detail_key(detail: Detail | None, key: str | None = None) -> str:
    """Key used for defDmgKey matching: explicit key, else the talent block."""
    if detail is None:
        return ""
    key = detail.key if key is None else key
    if key and key.strip():
        return key.strip()
    return detail.talent or ""
