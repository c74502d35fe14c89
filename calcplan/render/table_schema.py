"""
Array table schema inference.

Some talent tables return arrays at runtime. The text sample tells what the
components mean:

- statFlat:  "%生命值上限 + 800"      -> [pct, flat]
- statStat:  "%攻击 + %精通"          -> [pct of stat0, pct of stat1]
- pctList:   "32.42%+32.42%"          -> per-hit percentages to be summed
- statTimes: "1.41%HP*5"              -> [pct, hit count]
"""

from __future__ import annotations
from dataclasses import dataclass
import math
import re

from ..plan_schema import CalcSuggestInput
from ..text import has_pct, normalize_text

_MASTERY_RE = re.compile(r"(元素精通|精通|mastery|elemental mastery|\bem\b)", re.IGNORECASE)
_HP_RE = re.compile(r"(生命上限|生命值上限|最大生命值|生命值|\bhp\b)", re.IGNORECASE)
_DEF_RE = re.compile(r"(防御力|\bdef\b)", re.IGNORECASE)
_ATK_RE = re.compile(r"(攻击力|攻击|\batk\b)", re.IGNORECASE)
_TIMES_RE = re.compile(r"[*×xX]\s*\d+")


@dataclass(frozen=True)
class ArrayTableSchema:
    kind: str  # statFlat | statStat | pctList | statTimes
    stats: tuple[str, ...]

    @property
    def stat(self) -> str:
        return self.stats[0]


def infer_stat_from_text(text: str) -> str | None:
    if _MASTERY_RE.search(text):
        return "mastery"
    if _HP_RE.search(text):
        return "hp"
    if _DEF_RE.search(text):
        return "def"
    if _ATK_RE.search(text):
        return "atk"
    return None


def _is_hit_count(value: object) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        return False
    return abs(value - round(value)) < 1e-9 and 1 < value <= 20


def infer_array_table_schema(input: CalcSuggestInput, block: str, table: str) -> ArrayTableSchema | None:
    """Schema of an array-valued table, or None when the text sample says nothing useful."""
    text = normalize_text(input.text_sample(block, table))
    if not text:
        return None

    if _TIMES_RE.search(text) and has_pct(text):
        stat = infer_stat_from_text(text) or "atk"
        sample = input.sample(block, table)
        if isinstance(sample, list) and len(sample) >= 2 and _is_hit_count(sample[1]):
            return ArrayTableSchema("statTimes", (stat,))

    parts = [p.strip() for p in re.split(r"[+＋]", text) if p.strip()]
    if len(parts) < 2:
        return None

    unit_stat = infer_stat_from_text(normalize_text(input.unit(block, table)))

    if all(has_pct(p) for p in parts):
        stats = [s for s in (infer_stat_from_text(p) for p in parts) if s]
        stat = stats[0] if stats else "atk"
        if all(s == stat for s in stats):
            if len(parts) == 2 and unit_stat:
                s0 = infer_stat_from_text(parts[0])
                s1 = infer_stat_from_text(parts[1])
                if s0 and not s1 and unit_stat != s0:
                    return ArrayTableSchema("statStat", (s0, unit_stat))
                if not s0 and s1 and unit_stat != s1:
                    return ArrayTableSchema("statStat", (unit_stat, s1))
            return ArrayTableSchema("pctList", (stat,))

    p0, p1 = parts[0], parts[1]
    s0 = infer_stat_from_text(p0)
    s1 = infer_stat_from_text(p1)
    if s0 and s1 and has_pct(p0) and has_pct(p1):
        return ArrayTableSchema("statStat", (s0, s1))
    if s0 and has_pct(p0) and not s1 and re.search(r"\d", p1) and not has_pct(p1):
        return ArrayTableSchema("statFlat", (s0,))
    return None
