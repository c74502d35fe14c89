"""
Derived damage rows.

- multi_hit_totals: total-titled rows multiply the single hit by the hit count
- break_damage: SR break ratio tables become reaction rows at low and high toughness
- stack_per_layer: GS 基础伤害 + 每层伤害 tables summed over a stack param
"""

from __future__ import annotations
import logging
import re

from ..expr import Binary, Call, Cond, Ident, Index, Member, Node, Num, Str, make_table_ref
from ..expr.build import add, call, dmg_avg, mul, num0, param, ratio, scaled_result
from ..plan_schema import CalcSuggestInput, CalcSuggestResult, Detail, DetailKind, ReactionDetail, canonical_reaction
from ..plan_schema.vocab import SR_ELEM_BREAK
from ..render.renderer import PER_HIT_RE, WANTS_TOTAL_RE
from ..render.table_schema import infer_array_table_schema
from ..text import normalize_text, parse_count, squash
from .common import add_detail, detail_emission, dmg_rows, hint_lines, key_arg
from .rules import SKILL_KEYS

logger = logging.getLogger(__name__)

MAX_HITS = 60

_TIMES_RE = re.compile(r"[*×xX]\s*(\d{1,2})\s*$")
_COUNT_TABLE_RE = re.compile(r"(攻击次数|命中次数|攻击段数|次数|段数)")
_CAUSE_TIMES_RE = re.compile(r"造成(\d{1,2}|[一二两三四五六七八九十])次")
_TIER_RE = re.compile(r"^([1-6])(命|魂)[:：]")
_EXTRA_TIMES_RES = (
    re.compile(r"次数增加(\d{1,2})"),
    re.compile(r"额外.{0,16}?(\d{1,2})次"),
)
_CLAUSE_BREAKS = ("，", ",", "。", "；", ";", "、")
_GENERIC_TOKENS = ("技能", "攻击")

BREAK_TABLE_RE = re.compile(r"击破伤害比例")
SUPER_BREAK_RE = re.compile(r"超击破")
TOUGHNESS_VARIANTS = (("低韧性", 3), ("高韧性", 10))

_BASE_TABLE_RE = re.compile(r"基础伤害")
_PER_LAYER_RE = re.compile(r"(每层|每叠).*伤害")


# -- hit counts ------------------------------------------------------------

def _hits(value: object) -> int | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    n = int(value)
    return n if n == value and 2 <= n <= MAX_HITS else None


def times_from_desc(desc: str, token: str) -> int | None:
    """`N次<token>` or `<token>…N次` in a description."""
    desc = squash(desc)
    if not desc or len(token) < 2:
        return None
    esc = re.escape(token)
    for pattern in (rf"(\d{{1,3}})(?:次|段|枚){esc}", rf"{esc}[^\d]{{0,16}}?(\d{{1,3}})(?:次|段|枚)"):
        m = re.search(pattern, desc)
        if m:
            n = int(m.group(1))
            return n if 1 <= n <= MAX_HITS else None
    return None


def hit_count(input: CalcSuggestInput, block: str, table: str) -> int | None:
    text = normalize_text(input.text_sample(block, table))
    sample = input.sample(block, table)
    if text and not isinstance(sample, list) and infer_array_table_schema(input, block, table) is None:
        m = _TIMES_RE.search(text)
        if m and _hits(int(m.group(1))):
            return int(m.group(1))

    counts = [
        n for n in (_hits(input.sample(block, t)) for t in input.tables.get(block, []) if _COUNT_TABLE_RE.search(t))
        if n
    ]
    if counts:
        return max(counts)

    desc = input.desc(block)
    token = re.sub(r"2$", "", table).replace("伤害", "").strip()
    n = times_from_desc(desc, token)
    if n and n >= 2:
        return n
    m = _CAUSE_TIMES_RE.search(squash(desc))
    if m:
        n = parse_count(m.group(1))
        if n and n >= 2:
            return n
    return None


def _row_words(input: CalcSuggestInput, detail: Detail) -> list[str]:
    """Skill nouns for the row's block and key, plus its table token."""
    buckets = {detail.talent} | {k.strip() for k in key_arg(detail).split(",") if k.strip()}
    words = [word for word, bucket in SKILL_KEYS[input.game] if bucket in buckets]
    token = re.sub(r"\s*[(（]?\d[)）]?$", "", detail.table or "").replace("伤害", "").strip()
    if len(token) >= 2 and token not in _GENERIC_TOKENS:
        words.append(token)
    return words


def extra_hits(input: CalcSuggestInput, detail: Detail) -> list[tuple[int, int]]:
    """
    (tier, extra hits) per constellation/eidolon tier whose hint clause
    names the row's skill or table. A tier adding hits to some other
    attack does not count.
    """
    words = _row_words(input, detail)
    found: dict[int, int] = {}
    for line in hint_lines(input):
        tier = _TIER_RE.match(line)
        if not tier or int(tier.group(1)) in found:
            continue
        for pattern in _EXTRA_TIMES_RES:
            m = pattern.search(line)
            if not m or not 1 <= int(m.group(1)) <= MAX_HITS:
                continue
            start = max(line.rfind(p, 0, m.start()) for p in _CLAUSE_BREAKS) + 1
            clause = line[max(start, tier.end()):m.end()]
            if any(word in clause for word in words):
                found[int(tier.group(1))] = int(m.group(1))
                break
    return sorted(found.items())


def hit_factor(n: int, extras: list[tuple[int, int]]) -> Node:
    """n + (cons >= tier ? more : 0) + ..."""
    out: Node = Num(n)
    for tier, more in extras:
        out = Binary("+", out, Cond(Binary(">=", Ident("cons"), Num(tier)), Num(more), Num(0)))
    return out


def multi_hit_totals(input: CalcSuggestInput, plan: CalcSuggestResult) -> None:
    for d in dmg_rows(plan):
        if d.dmg_expr is not None or not d.talent or not d.table:
            continue
        title = normalize_text(d.title)
        if not WANTS_TOTAL_RE.search(title) or PER_HIT_RE.search(title):
            continue
        schema = infer_array_table_schema(input, d.talent, d.table)
        if schema is not None and schema.kind in ("statTimes", "pctList"):
            continue
        n = hit_count(input, d.talent, d.table)
        if n is None:
            continue
        emission = detail_emission(input, d)
        if emission is None:
            continue
        d.dmg_expr = scaled_result(emission, hit_factor(n, extra_hits(input, d)))


# -- break damage ----------------------------------------------------------

def break_id(input: CalcSuggestInput) -> str | None:
    elem = (input.elem or "").strip()
    return SR_ELEM_BREAK.get(elem.lower()) or SR_ELEM_BREAK.get(elem) or canonical_reaction(input.game, elem)


def toughness_coefficient() -> Node:
    """(params.toughness + 2) / 4"""
    return Binary("/", Binary("+", param("toughness"), Num(2)), Num(4))


def break_expr(reaction_id: str, table_ref: Index) -> Node:
    def part(prop: str) -> Node:
        return mul(Member(call("reaction", Str(reaction_id)), prop), ratio(table_ref), toughness_coefficient())

    return dmg_avg(part("dmg"), part("avg"))


def super_break_expr(input: CalcSuggestInput, block: str, table: str) -> Node:
    ref = make_table_ref(block, table)
    reduction: Node | None = None
    if input.has_table(block, "削韧"):
        reduction = Binary("||", make_table_ref(block, "削韧"), Num(1))

    def part(prop: str) -> Node:
        value: Node = Binary("/", Member(call("reaction", Str("superBreak")), prop), Num(0.9))
        if reduction is not None:
            value = mul(value, reduction)
        return mul(value, ratio(ref))

    return dmg_avg(part("dmg"), part("avg"))


def break_damage(input: CalcSuggestInput, plan: CalcSuggestResult) -> None:
    """
    Break damage scales with the target's max toughness through
    (toughness + 2) / 4; one showcase row per toughness class.
    """
    idx = 0
    while idx < len(plan.details):
        d = plan.details[idx]
        idx += 1
        if d.kind == DetailKind.REACTION or d.dmg_expr is not None or not d.talent or not d.table:
            continue
        table = normalize_text(d.table)
        if SUPER_BREAK_RE.search(table):
            plan.details[idx - 1] = ReactionDetail(
                title=d.title, talent=d.talent, table=d.table, params=dict(d.params), check=d.check,
                cons=d.cons, reaction="superBreak", dmg_expr=super_break_expr(input, d.talent, d.table),
            )
            continue
        if not BREAK_TABLE_RE.search(table):
            continue
        rid = break_id(input)
        if rid is None:
            logger.debug("no break element for %r, row %r left as is", input.elem, d.title)
            continue
        expr = break_expr(rid, make_table_ref(d.talent, d.table))
        rows = [
            ReactionDetail(
                title=f"{d.title}({label})", talent=d.talent, table=d.table,
                params={**d.params, "toughness": toughness}, check=d.check, cons=d.cons,
                reaction=rid, dmg_expr=expr,
            )
            for label, toughness in TOUGHNESS_VARIANTS
        ]
        plan.details[idx - 1] = rows[0]
        if add_detail(plan, rows[1], index=idx):
            idx += 1


# -- stack per layer -------------------------------------------------------

def _stack_rank(name: str) -> int:
    if re.match(r"^stacks?$", name, re.IGNORECASE):
        return 0
    if re.match(r"^layers?$", name, re.IGNORECASE):
        return 1
    if re.search(r"stack", name, re.IGNORECASE):
        return 2
    if re.search(r"layer", name, re.IGNORECASE):
        return 3
    if re.search(r"[层叠]", name):
        return 4
    return 999


def stack_param(params: dict) -> str | None:
    ranked = sorted((k for k in params if _stack_rank(k) < 999), key=_stack_rank)
    return ranked[0] if ranked else None


def stack_per_layer(input: CalcSuggestInput, plan: CalcSuggestResult) -> None:
    for d in dmg_rows(plan):
        if d.dmg_expr is not None or d.talent not in ("a", "e", "q") or not d.table:
            continue
        if not _BASE_TABLE_RE.search(normalize_text(d.table)):
            continue
        per_tables = [t for t in input.tables.get(d.talent, []) if _PER_LAYER_RE.search(normalize_text(t))]
        key = stack_param(d.params)
        if not per_tables or key is None:
            continue
        stacks = num0(Index(Ident("params"), Str(key)))
        total = add(
            num0(make_table_ref(d.talent, d.table)),
            mul(num0(make_table_ref(d.talent, per_tables[0])), stacks),
        )
        tail: tuple[Node, ...] = (Str(key_arg(d)),) + ((Str(d.ele),) if d.ele else ())
        d.dmg_expr = Call(Ident("dmg"), (total,) + tail)
