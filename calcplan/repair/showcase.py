"""
Showcase canonicalization for structurally complex kits.

A kit is recognized by a fingerprint over its table names (never by the
character's name) and gets a fixed, deterministic row set in place of the
rows the plan proposed for the same tables. A kit may also drop the plan's
buffs that model what its rows already compute; the remaining buffs are
the kit's buff set.

Registered kits:
- memosprite random + last: me-block 随机伤害 / 最后伤害 tables, the skill
  hits a random target N times then everyone once
- enhanced-skill stacks: t-block per-layer ratio tables for the main and
  adjacent targets feeding the e2 enhanced skill; buffs putting the same
  per-layer ratio on the e bucket are dropped
"""

from __future__ import annotations
from dataclasses import dataclass
import logging
import re
from typing import Callable

from ..expr import Binary, Call, Ident, Member, Node, Num, Str, make_table_ref
from ..expr.build import add, dmg_avg, mul, num0, param
from ..plan_schema import Buff, CalcSuggestInput, CalcSuggestResult, DamageDetail, Detail, Game
from ..plan_schema.validation import MAX_DETAILS
from ..text import normalize_text
from .common import title_key

logger = logging.getLogger(__name__)

_HITS_RES = (
    re.compile(r"造成\s*(\d{1,2})\s*次(?:伤害|攻击)"),
    re.compile(r"(\d{1,2})\s*次(?:伤害|攻击)"),
)


def parse_hit_count(desc: str) -> int | None:
    desc = normalize_text(desc)
    for pattern in _HITS_RES:
        m = pattern.search(desc)
        if m:
            n = int(m.group(1))
            return n if 2 <= n <= 60 else None
    return None


def _emit(value: Node, key: str) -> Call:
    return Call(Ident("dmg"), (value, Str(key)))


def weighted_total(parts: list[tuple[Node, int]]) -> Node:
    """({ dmg: a.dmg * n + b.dmg * m, avg: ... }) over (emission, count) pairs."""
    def side(prop: str) -> Node:
        terms = []
        for emission, n in parts:
            if n <= 0:
                continue
            term: Node = Member(emission, prop)
            terms.append(term if n == 1 else Binary("*", term, Num(n)))
        return add(*terms)

    return dmg_avg(side("dmg"), side("avg"))


@dataclass(frozen=True)
class Kit:
    name: str
    game: Game
    matches: Callable[[CalcSuggestInput], bool]
    rows: Callable[[CalcSuggestInput], list[Detail]]
    # rows of the plan the canonical set replaces
    replaces: Callable[[Detail], bool]
    drops_buff: Callable[[CalcSuggestInput, Buff], bool] | None = None


# -- memosprite random + last ---------------------------------------------------

MEMO_RANDOM = "随机伤害"
MEMO_LAST = "最后伤害"


def _memo_matches(input: CalcSuggestInput) -> bool:
    tables = input.tables.get("me", [])
    return MEMO_RANDOM in tables and MEMO_LAST in tables


def _memo_rows(input: CalcSuggestInput) -> list[Detail]:
    rand = DamageDetail(title="忆灵技伤害(随机单体)", talent="me", table=MEMO_RANDOM, key="me")
    last = DamageDetail(title="忆灵技伤害(最后)", talent="me", table=MEMO_LAST, key="me")
    rows: list[Detail] = [rand, last]
    n = parse_hit_count(input.desc("me"))
    if n:
        total = weighted_total([
            (_emit(make_table_ref("me", MEMO_RANDOM), "me"), n),
            (_emit(make_table_ref("me", MEMO_LAST), "me"), 1),
        ])
        rows.append(DamageDetail(title="忆灵技伤害(完整)", talent="me", table=MEMO_RANDOM, key="me", dmg_expr=total))
    return rows


def _memo_replaces(d: Detail) -> bool:
    return d.talent == "me" and (d.table in (MEMO_RANDOM, MEMO_LAST) or "完整" in normalize_text(d.title))


# -- enhanced-skill stacks ------------------------------------------------------

_PER_MAIN_RE = re.compile(r"主目标.*每层.*倍率")
_PER_ADJ_RE = re.compile(r"(相邻|其他).*每层.*倍率")
_STACK_NAME_RE = re.compile(r"【([^】]{1,12})】[^。\n]{0,180}?最多(?:可)?叠加\s*(\d{1,3})\s*层")
_REPEAT_RE = re.compile(r"(?:可重复|重复)\s*(\d{1,2})\s*次")
_ALL_TARGETS_RE = re.compile(r"(所有目标|敌方全体|全体)")
_BUFF_ONLY_RE = re.compile(r"(能量恢复|削韧|提高|降低|概率|持续时间|回合)")


def _first(tables: list[str], pattern: re.Pattern) -> str | None:
    return next((t for t in tables if pattern.search(normalize_text(t))), None)


def _stack_source(input: CalcSuggestInput) -> tuple[str, int] | None:
    m = _STACK_NAME_RE.search(normalize_text(input.desc("t")))
    if not m:
        return None
    cap = int(m.group(2))
    return (m.group(1).strip(), cap) if 1 <= cap <= 200 else None


def _e2_base(input: CalcSuggestInput) -> str | None:
    tables = input.tables.get("e2", [])
    if "技能伤害" in tables:
        return "技能伤害"
    return next((t for t in tables if "伤害" in t and not _BUFF_ONLY_RE.search(t)), None)


def _stack_matches(input: CalcSuggestInput) -> bool:
    t = input.tables.get("t", [])
    return bool(
        _first(t, _PER_MAIN_RE) and _first(t, _PER_ADJ_RE) and _e2_base(input) and _stack_source(input)
    )


def _stack_rows(input: CalcSuggestInput) -> list[Detail]:
    t = input.tables.get("t", [])
    per_main, per_adj = _first(t, _PER_MAIN_RE), _first(t, _PER_ADJ_RE)
    base = _e2_base(input)
    name, cap = _stack_source(input)
    all_table = next(
        (x for x in input.tables.get("e2", []) if _ALL_TARGETS_RE.search(x) and "伤害" in x and x != base), None,
    )
    m = _REPEAT_RE.search(normalize_text(input.desc("e2")))
    repeats = int(m.group(1)) if m and 1 <= int(m.group(1)) <= 6 else 0

    stacks = Binary("||", param("stacks"), Num(cap))

    def hit(table: str, per: str) -> Call:
        return _emit(add(num0(make_table_ref("e2", table)), mul(num0(make_table_ref("t", per)), stacks)), "e")

    if all_table:
        parts = [
            (hit(base, per_main), 1 + repeats),
            (hit(base, per_adj), repeats * 2),
            (hit(all_table, per_main), 1),
            (hit(all_table, per_adj), 2),
        ]
    else:
        parts = [(hit(base, per_main), max(1, repeats)), (hit(base, per_adj), max(0, repeats - 1) * 2)]

    return [
        DamageDetail(
            title=f"强化战技伤害(单次主目标 满层{name})", talent="e2", table=base, key="e",
            params={"stacks": cap}, dmg_expr=hit(base, per_main),
        ),
        DamageDetail(
            title=f"强化战技伤害(完整 3目标 满层{name})", talent="e2", table=base, key="e",
            params={"stacks": cap}, dmg_expr=weighted_total(parts),
        ),
    ]


def _stack_replaces(d: Detail) -> bool:
    return d.talent == "e2" and "强化战技" in normalize_text(d.title) and "满层" in normalize_text(d.title)


_PER_LAYER_KEYS = ("ePct", "eMulti", "ePlus")


def _stack_drops_buff(input: CalcSuggestInput, buff: Buff) -> bool:
    """A buff named after the stack that adds per-layer ratio to e."""
    name, _ = _stack_source(input)
    keys = [k for k in buff.data if not k.startswith("_")]
    return bool(keys) and name in normalize_text(buff.title) and all(k in _PER_LAYER_KEYS for k in keys)


KITS: list[Kit] = [
    Kit("memosprite-random-last", Game.SR, _memo_matches, _memo_rows, _memo_replaces),
    Kit("enhanced-skill-stacks", Game.SR, _stack_matches, _stack_rows, _stack_replaces, _stack_drops_buff),
]


def apply_kit(kit: Kit, input: CalcSuggestInput, plan: CalcSuggestResult) -> None:
    rows = kit.rows(input)
    canonical = {title_key(r.title) for r in rows}
    kept: list[Detail] = []
    at: int | None = None
    for d in plan.details:
        if kit.replaces(d) or title_key(d.title) in canonical:
            at = len(kept) if at is None else at
            continue
        kept.append(d)
    at = len(kept) if at is None else at
    room = MAX_DETAILS - len(kept)
    kept[at:at] = rows[:max(0, room)]
    plan.details = kept
    if kit.drops_buff is not None:
        for buff in plan.object_buffs():
            if kit.drops_buff(input, buff):
                logger.debug("kit %s: buff %r dropped", kit.name, buff.title)
                plan.buffs.remove(buff)


def canonicalize(input: CalcSuggestInput, plan: CalcSuggestResult) -> None:
    for kit in KITS:
        if kit.game == input.game and kit.matches(input):
            logger.debug("kit %s recognized, rows replaced", kit.name)
            apply_kit(kit, input, plan)
