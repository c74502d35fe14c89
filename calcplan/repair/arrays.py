"""
Array-table variant repairs.

Numeric array samples without a text-sample schema are variant lists: each
component is a separate hit or state. A row without pick renders only the
first component.
"""

from __future__ import annotations
import math
import re

from ..plan_schema import CalcSuggestInput, CalcSuggestResult, DamageDetail, HealDetail, ShieldDetail
from ..render.table_schema import infer_array_table_schema
from ..text import normalize_text
from .common import add_detail, title_key

_SEG_CN = {"首": 0, "一": 0, "二": 1, "三": 2, "四": 3, "五": 4, "六": 5, "七": 6, "八": 7, "九": 8, "十": 9}
_SEG_CN_RE = re.compile(r"(首|一|二|三|四|五|六|七|八|九|十)段")
_SEG_NUM_RE = re.compile(r"(\d{1,2})段")
_LAYER_RE = re.compile(r"(\d{1,2})层")
_ZERO_RE = re.compile(r"((?<![\d.])0%|=0%|=0(?!\d)|第0层|零层)")
_BELOW_FULL_RE = re.compile(r"(<100%|<=100%|≤100%)")
_AT_LEAST_FULL_RE = re.compile(r"(>=100%|≥100%)")
_FULL_RE = re.compile(r"(^|[^<])(?:=)?100%")
_PCT_RE = re.compile(r"(\d{1,3}(?:\.\d+)?)%")
_LOW_LIKE_RE = re.compile(r"(生命之契<100%|生命之契≤100%|低生命之契|低空)")
_HIGH_LIKE_RE = re.compile(r"(生命之契>=100%|生命之契≥100%|高生命之契|高空|满层|满辉|最高|最大)")
_EXPLICIT_MAX_RE = re.compile(r"(满层|满辉|最高|最大)")
_HIGH_VARIANT_RE = re.compile(r"(?:^|[^<])(?:=)?100%|>=100%|≥100%|高生命之契|高空|长按|满层|满辉|最高|最大")

VARIANT_ROWS = (DamageDetail, HealDetail, ShieldDetail)


def numeric_array(value: object, lo: int = 2, hi: int = 10) -> bool:
    return (
        isinstance(value, list)
        and lo <= len(value) <= hi
        and all(isinstance(x, (int, float)) and not isinstance(x, bool) and math.isfinite(x) for x in value)
    )


def _variant_table(input: CalcSuggestInput, block: str | None, table: str | None) -> list | None:
    if not block or not table:
        return None
    sample = input.sample(block, table)
    if not numeric_array(sample) or infer_array_table_schema(input, block, table) is not None:
        return None
    return sample


# -- A/B split -------------------------------------------------------------

def split_ab_arrays(input: CalcSuggestInput, plan: CalcSuggestResult) -> None:
    """
    `A/B` tables with a two-number sample hold two named instances; one row
    per component instead of an arbitrary first component.
    """
    idx = 0
    while idx < len(plan.details):
        d = plan.details[idx]
        idx += 1
        if not isinstance(d, DamageDetail) or d.pick is not None or d.dmg_expr is not None or not d.table:
            continue
        sample = _variant_table(input, d.talent, d.table)
        if sample is None or len(sample) != 2:
            continue
        parts = [p.strip() for p in normalize_text(d.table).split("/")]
        if len(parts) != 2 or not all(parts):
            continue
        title = title_key(d.title)
        if any(title_key(p) in title for p in parts):
            continue
        base_title = d.title
        sibling = DamageDetail(
            title=f"{base_title}({parts[1]})", talent=d.talent, table=d.table, key=d.key,
            params=dict(d.params), check=d.check, cons=d.cons, ele=d.ele, stat=d.stat, pick=1,
        )
        if not add_detail(plan, sibling, index=idx):
            continue
        d.title = f"{base_title}({parts[0]})"
        d.pick = 0
        idx += 1


# -- pick from title -------------------------------------------------------

def infer_pick_from_title(
    title: str, size: int, group_size: int = 1, has_zero: bool = False, has_high: bool = False,
) -> int | None:
    """Component index a showcase title refers to, or None."""
    if size < 2:
        return None
    t = title_key(title)
    if not t:
        return None
    last = size - 1

    if "点按" in t or "低空" in t:
        return 0
    if "长按" in t or "高空" in t:
        return min(1, last)

    m = _SEG_CN_RE.search(t)
    if m:
        return max(0, min(last, _SEG_CN[m.group(1)]))
    m = _SEG_NUM_RE.search(t)
    if m and 1 <= int(m.group(1)) <= 20:
        return max(0, min(last, int(m.group(1)) - 1))

    m = _LAYER_RE.search(t)
    if m and int(m.group(1)) < size:
        return int(m.group(1))

    if _ZERO_RE.search(t):
        return 0
    if _BELOW_FULL_RE.search(t):
        return 0 if size == 2 else 1
    if _AT_LEAST_FULL_RE.search(t) or _FULL_RE.search(t):
        return last

    m = _PCT_RE.search(t)
    if m:
        pct = float(m.group(1))
        if 0 <= pct <= 100:
            return max(0, min(last, round(pct / 100 * last)))

    if _HIGH_LIKE_RE.search(t):
        if not _EXPLICIT_MAX_RE.search(t) and has_zero and has_high and group_size == 3 and size > 3:
            return min(2, last)
        return last
    if _LOW_LIKE_RE.search(t):
        return 0 if size == 2 else 1
    return None


def pick_from_title(input: CalcSuggestInput, plan: CalcSuggestResult) -> None:
    groups: dict[tuple[str, str], list] = {}
    sizes: dict[tuple[str, str], int] = {}
    for d in plan.details:
        if not isinstance(d, VARIANT_ROWS) or d.pick is not None:
            continue
        sample = _variant_table(input, d.talent, d.table)
        if sample is None:
            continue
        group = (d.talent, d.table)
        groups.setdefault(group, []).append(d)
        sizes[group] = len(sample)

    for group, rows in groups.items():
        titles = [title_key(normalize_text(d.title)) for d in rows]
        has_zero = any(_ZERO_RE.search(t) for t in titles)
        has_high = any(_HIGH_VARIANT_RE.search(t) for t in titles)
        for d in rows:
            pick = infer_pick_from_title(d.title, sizes[group], len(rows), has_zero, has_high)
            if pick is not None and 0 <= pick < sizes[group]:
                d.pick = pick
