"""
Title and damage-key repairs.

- normalize_titles: 普攻一段 -> 普攻首段 at the title root or after a 状态· prefix
- normalize_keys: lower-case key tokens, drop reaction/physical tokens, nightsoul tagging
- route_state_conversion: attacks converted by a Q/E state are routed to a/a2/a3
"""

from __future__ import annotations
import re

from ..plan_schema import CalcSuggestInput, CalcSuggestResult
from ..render.keys import nightsoul_keys, sanitize_key
from ..text import normalize_text
from .common import dmg_rows, key_bucket

_FIRST_HIT_RE = re.compile(r"(^|状态·)普攻一段(?=[(（\s]|伤害|$)")

_ATTACK_WORDS_RE = re.compile(r"(普通攻击|普攻|重击|下落攻击)")
_CONVERT_WORDS_RE = re.compile(r"(转为|转化为|转换为|附魔|替换为|变为|变成)")
_COUNTS_AS_RE = {
    "q": re.compile(r"(视为|视作).{0,24}元素爆发伤害"),
    "e": re.compile(r"(视为|视作).{0,24}元素战技伤害"),
}
_STATE_PREFIX = {"q": "Q状态·", "e": "E状态·"}
_SEGMENT_RE = re.compile(r"^(一|二|三|四|五|六|七|八|九|十)段伤害")
_PLUNGE_TABLES = ("下落攻击伤害", "坠地冲击伤害", "下坠期间伤害")

# longer names first: 超激化 before 激化, 超绽放/烈绽放 before 绽放
REACTION_SUFFIXES = ("蒸发", "融化", "超激化", "激化", "扩散", "结晶", "超绽放", "烈绽放", "绽放", "超导", "感电", "碎冰")


def normalize_titles(input: CalcSuggestInput, plan: CalcSuggestResult) -> None:
    for d in plan.details:
        title = d.title.strip()
        if title:
            d.title = _FIRST_HIT_RE.sub(r"\1普攻首段", title)


def _normalize_key(key: str | None) -> str | None:
    if key is None:
        return None
    tokens: list[str] = []
    for token in sanitize_key(key.lower()).split(","):
        token = token.strip()
        if token and token not in tokens:
            tokens.append(token)
    return ",".join(tokens) or None


def normalize_keys(input: CalcSuggestInput, plan: CalcSuggestResult) -> None:
    for d in plan.details:
        d.key = _normalize_key(d.key)
    if input.is_gs:
        for d, key in zip(plan.details, nightsoul_keys(input, plan.details)):
            d.key = key
    plan.def_dmg_key = _normalize_key(plan.def_dmg_key)


def alt_attack_route(table: str, prefix: str) -> tuple[str, str] | None:
    """(key, title) for a table that names a normal/charged/plunging attack."""
    table = normalize_text(table)
    seg = _SEGMENT_RE.match(table)
    if seg:
        name = "首段" if seg.group(1) == "一" else f"{seg.group(1)}段"
        return "a", f"{prefix}普攻{name}"
    if "重击伤害" in table:
        return "a2", f"{prefix}重击伤害"
    for plunge in _PLUNGE_TABLES:
        if plunge in table:
            return "a3", f"{prefix}{plunge}"
    return None


def reaction_suffix(title: str) -> str:
    title = normalize_text(title)
    for word in REACTION_SUFFIXES:
        if word in title:
            return word
    return ""


def _converts_attacks(input: CalcSuggestInput, block: str) -> bool:
    desc = normalize_text(input.desc(block))
    if not desc or not _ATTACK_WORDS_RE.search(desc) or not _CONVERT_WORDS_RE.search(desc):
        return False
    return not _COUNTS_AS_RE[block].search(desc)


def route_state_conversion(input: CalcSuggestInput, plan: CalcSuggestResult) -> None:
    """
    A Q (or E) state that replaces normal-attack multipliers keeps its own
    tables but the rows belong to the a/a2/a3 buckets, so normal-attack
    buffs apply. Text saying the hits count as burst/skill damage keeps
    the original bucket.
    """
    for block in ("q", "e"):
        if not _converts_attacks(input, block):
            continue
        for d in dmg_rows(plan):
            if d.talent != block or not d.table or key_bucket(d) != block:
                continue
            route = alt_attack_route(d.table, _STATE_PREFIX[block])
            if route is None:
                continue
            key, title = route
            d.key = key
            d.title = title + reaction_suffix(d.title)
            d.params.setdefault(block, True)
