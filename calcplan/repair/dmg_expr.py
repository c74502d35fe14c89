"""
dmgExpr rewrites.

- strip_crit_expectation: `.avg * (1 + cpct * cdmg)` style factors are removed;
  dmg() already returns the crit expectation in avg
- fix_array_calls: dmg(<mixed-stat array table>, ...) -> dmg.basic(...) guarded by Array.isArray
- delta_multipliers: multiplier-increase tables are added to their base table
- redundant_inline_multiplier: `* 1.4` next to a 40% buff on the same bucket is dropped
"""

from __future__ import annotations
import logging
import re

from ..expr import (
    Binary, Call, Cond, Ident, Member, Node, Num, ObjectLit, Str, callee_name, make_table_ref, transform, walk,
)
from ..expr.build import add, at, calc, call, mul, num0, ratio
from ..plan_schema import CalcSuggestInput, CalcSuggestResult, DamageDetail
from ..render.scaling import infer_detail_base
from ..render.table_schema import infer_array_table_schema
from ..text import normalize_text
from .common import (
    call_key, is_emission, key_arg, number_value, numeric_buff_values, ref_of,
    strip_number_wrapper, strip_ratio, uses_calc,
)

logger = logging.getLogger(__name__)

DELTA_TABLE_RE = re.compile(r"(伤害)?倍率(提高|提升|增加)|系数提高")
_INC_TABLE_RE = re.compile(r"(伤害提升|伤害提高|伤害增加|伤害加成|加成|增伤)")
_INC_EXCLUDE_RE = re.compile(r"(治疗|护盾|上限|概率|持续时间|冷却时间|消耗|能量|回复)")
_DELTA_WORDS_RE = re.compile(r"(伤害)?(倍率|系数)(提高|提升|增加)")
_BUFF_LIKE_RE = re.compile(r"(提高|提升|增加|降低|减少|加成|增伤|穿透|无视|概率|几率|冷却|能量|持续时间)")


def _replace_first_arg(node: Call, arg: Node) -> Call:
    return Call(node.callee, (arg,) + node.args[1:])


def _map_dmg_exprs(plan: CalcSuggestResult, fn) -> None:
    for d in plan.details:
        if d.dmg_expr is not None:
            d.dmg_expr = transform(d.dmg_expr, fn)


# -- crit expectation ------------------------------------------------------

def _crit_factor(node: Node) -> bool:
    return uses_calc(node, "cpct") and uses_calc(node, "cdmg")


def strip_crit_expectation(input: CalcSuggestInput, plan: CalcSuggestResult) -> None:
    def fix(node: Node) -> Node | None:
        if (
            isinstance(node, Binary)
            and node.op == "*"
            and isinstance(node.left, Member)
            and node.left.prop in ("avg", "dmg")
            and _crit_factor(node.right)
        ):
            return Member(node.left.obj, "avg")
        return None

    _map_dmg_exprs(plan, fix)


# -- array calls -----------------------------------------------------------

def _guarded_tables(expr: Node) -> set[tuple[str, str]]:
    out: set[tuple[str, str]] = set()
    for sub in walk(expr):
        if isinstance(sub, Call) and callee_name(sub.callee) == "Array.isArray" and len(sub.args) == 1:
            ref = ref_of(sub.args[0])
            if ref:
                out.add(ref)
    return out


def fix_array_calls(input: CalcSuggestInput, plan: CalcSuggestResult) -> None:
    for d in plan.details:
        if d.dmg_expr is None:
            continue
        guarded = _guarded_tables(d.dmg_expr)

        def fix(node: Node) -> Node | None:
            if not isinstance(node, Call) or callee_name(node.callee) != "dmg" or not 2 <= len(node.args) <= 3:
                return None
            ref = ref_of(node.args[0])
            if ref is None or ref in guarded or node.args[0] != make_table_ref(*ref):
                return None
            block, table = ref
            if block not in ("a", "e", "q"):
                return None
            schema = infer_array_table_schema(input, block, table)
            if schema is None or schema.kind not in ("statStat", "statFlat"):
                return None
            acc = node.args[0]
            if schema.kind == "statStat":
                s0, s1 = schema.stats
                value = add(mul(calc(s0), ratio(at(acc, 0))), mul(calc(s1), ratio(at(acc, 1))))
            else:
                value = add(mul(calc(schema.stat), ratio(at(acc, 0))), num0(at(acc, 1)))
            mixed = Call(Member(Ident("dmg"), "basic"), (value,) + node.args[1:])
            return Cond(call("Array.isArray", acc), mixed, node)

        d.dmg_expr = transform(d.dmg_expr, fix)


# -- delta multipliers -----------------------------------------------------

def _is_increase_table(input: CalcSuggestInput, table: str) -> bool:
    name = normalize_text(table)
    if DELTA_TABLE_RE.search(name):
        return True
    return input.is_gs and bool(_INC_TABLE_RE.search(name)) and not _INC_EXCLUDE_RE.search(name)


def _multiplier(node: Node) -> Node | None:
    """Integer 1..60 or params.<x>."""
    value = number_value(node)
    if value is not None:
        if value == int(value) and 1 <= value <= 60:
            return Num(int(value))
        return None
    if isinstance(node, Member) and isinstance(node.obj, Ident) and node.obj.name == "params":
        return node
    return None


def _inc_ref(node: Node) -> tuple[str, str] | None:
    """toRatio(T) / T / 100 / T / Number(T) || 0 -> (block, table)"""
    if isinstance(node, Binary) and node.op == "/" and number_value(node.right) == 100:
        node = node.left
    return ref_of(strip_ratio(strip_number_wrapper(node)))


def _inc_term(node: Node) -> tuple[tuple[str, str], Node | None] | None:
    if isinstance(node, Binary) and node.op == "*":
        m = _multiplier(node.right)
        if m is not None:
            ref = _inc_ref(node.left)
            return (ref, m) if ref else None
        m = _multiplier(node.left)
        if m is not None:
            ref = _inc_ref(node.right)
            return (ref, m) if ref else None
    if isinstance(node, Binary) and node.op == "/" and number_value(node.right) == 100:
        inner = _inc_term(node.left)
        if inner is not None:
            return inner
    ref = _inc_ref(node)
    return (ref, None) if ref else None


def _sum_terms(node: Node) -> list[Node]:
    if isinstance(node, Binary) and node.op == "+":
        return _sum_terms(node.left) + _sum_terms(node.right)
    return [node]


def coefficient_increments(input: CalcSuggestInput, factor: Node) -> list[Node] | None:
    """
    `1 + toRatio(D) * N + ...` -> [D * N, ...] when every D is an increase table.
    """
    terms = _sum_terms(factor)
    if len(terms) < 2 or number_value(terms[0]) != 1:
        return None
    out: list[Node] = []
    for term in terms[1:]:
        parsed = _inc_term(term)
        if parsed is None:
            return None
        (block, table), m = parsed
        if not input.has_table(block, table) or not _is_increase_table(input, table):
            return None
        ref = make_table_ref(block, table)
        out.append(ref if m is None or m == Num(1) else Binary("*", ref, m))
    return out


def _coefficient_product(input: CalcSuggestInput, node: Node) -> Node | None:
    """base * (1 + D...) -> base + D..."""
    if not (isinstance(node, Binary) and node.op == "*"):
        return None
    base = node.left
    if ref_of(base) is None or (isinstance(base, Call) and callee_name(base.callee) == "toRatio"):
        return None
    incs = coefficient_increments(input, node.right)
    if not incs:
        return None
    return add(base, *incs)


def _strip_times_100(node: Node) -> Node | None:
    if isinstance(node, Binary) and node.op == "*" and number_value(node.right) == 100 and ref_of(node.left):
        return node.left
    return None


def _rewrite_coefficients(input: CalcSuggestInput, expr: Node) -> Node:
    def fix(node: Node) -> Node | None:
        if is_emission(node) and node.args:
            coeff = _coefficient_product(input, node.args[0])
            if coeff is not None:
                return _replace_first_arg(node, coeff)
            return None
        if isinstance(node, ObjectLit):
            return _scaled_pair(input, node)
        return None

    return transform(expr, fix)


def _scaled_pair(input: CalcSuggestInput, node: ObjectLit) -> Node | None:
    """{ dmg: E.dmg * (1 + D), avg: E.avg * (1 + D) } -> E with base + D."""
    dmg, avg = node.get("dmg"), node.get("avg")
    if len(node.props) != 2 or not isinstance(dmg, Binary) or not isinstance(avg, Binary):
        return None
    if dmg.op != "*" or avg.op != "*" or dmg.right != avg.right:
        return None
    if not (isinstance(dmg.left, Member) and dmg.left.prop == "dmg"):
        return None
    if not (isinstance(avg.left, Member) and avg.left.prop == "avg"):
        return None
    emission = dmg.left.obj
    if emission != avg.left.obj or not is_emission(emission) or not emission.args:
        return None
    base = emission.args[0]
    if ref_of(base) is None:
        return None
    incs = coefficient_increments(input, dmg.right)
    if not incs:
        return None
    return _replace_first_arg(emission, add(base, *incs))


def _strip_percent_scaling(expr: Node) -> Node:
    def fix(node: Node) -> Node | None:
        if is_emission(node) and node.args:
            return Call(node.callee, tuple(transform(a, _strip_times_100) for a in node.args))
        return None

    return transform(expr, fix)


def _stem(table: str) -> str:
    return _DELTA_WORDS_RE.sub("", normalize_text(table)).strip()


def find_base_table(input: CalcSuggestInput, block: str, delta: str, title: str) -> str | None:
    """
    Base multiplier table for a delta table: same stem first, then a
    table whose name appears in the row title. None when ambiguous.
    """
    candidates = [
        t for t in input.tables.get(block, [])
        if t != delta and "伤害" in t and not DELTA_TABLE_RE.search(t) and not _BUFF_LIKE_RE.search(t)
        and not isinstance(input.sample(block, t), list)
    ]
    stem = _stem(delta)
    if stem:
        hits = [t for t in candidates if normalize_text(t).startswith(stem)]
        if len(hits) == 1:
            return hits[0]
    title = normalize_text(title)
    hits = [t for t in candidates if normalize_text(t).replace("伤害", "") and normalize_text(t).replace("伤害", "") in title]
    if len(hits) == 1:
        return hits[0]
    return None


def _uses_delta_alone(d: DamageDetail) -> bool:
    if d.dmg_expr is None:
        return True
    if not is_emission(d.dmg_expr) or not d.dmg_expr.args:
        return False
    return ref_of(d.dmg_expr.args[0]) == (d.talent, d.table)


def delta_multipliers(input: CalcSuggestInput, plan: CalcSuggestResult) -> None:
    for d in plan.details:
        if d.dmg_expr is None:
            continue
        expr = d.dmg_expr
        if input.is_sr:
            expr = _strip_percent_scaling(expr)
        d.dmg_expr = _rewrite_coefficients(input, expr)

    for d in plan.details:
        if not isinstance(d, DamageDetail) or not d.talent or not d.table:
            continue
        if not DELTA_TABLE_RE.search(normalize_text(d.table)) or not _uses_delta_alone(d):
            continue
        if isinstance(input.sample(d.talent, d.table), list):
            continue
        base = find_base_table(input, d.talent, d.table, d.title)
        if base is None:
            logger.debug("no base table for delta table %s/%s, row left as is", d.talent, d.table)
            continue
        total = add(num0(make_table_ref(d.talent, base)), num0(make_table_ref(d.talent, d.table)))
        tail: tuple[Node, ...] = (Str(key_arg(d)),) + ((Str(d.ele),) if d.ele else ())
        stat = infer_detail_base(input, DamageDetail(title=d.title, talent=d.talent, table=base, stat=d.stat))
        if stat == "atk":
            d.dmg_expr = Call(Ident("dmg"), (total,) + tail)
        else:
            d.dmg_expr = Call(Member(Ident("dmg"), "basic"), (mul(calc(stat), ratio(total)),) + tail)
        d.table = base


# -- redundant inline multipliers -----------------------------------------

def _inline_factor(node: Node) -> tuple[Node, float] | None:
    if not (isinstance(node, Binary) and node.op == "*"):
        return None
    for value_node, other in ((node.right, node.left), (node.left, node.right)):
        k = number_value(value_node)
        if k is not None and 1 < k <= 10:
            return other, k
    return None


def redundant_inline_multiplier(input: CalcSuggestInput, plan: CalcSuggestResult) -> None:
    """
    dmg(x * 1.4, "e") next to a buff eDmg: 40 counts the bonus twice;
    the inline factor is dropped and the buff kept.
    """
    def fix(node: Node) -> Node | None:
        if not is_emission(node) or not node.args:
            return None
        parsed = _inline_factor(node.args[0])
        if parsed is None:
            return None
        value, k = parsed
        if ref_of(value) is None:
            return None
        key = (call_key(node) or "").split(",")[0].strip()
        bonus = round((k - 1) * 100, 6)
        values = numeric_buff_values(plan, "dmg")
        if key:
            values += numeric_buff_values(plan, f"{key}Dmg")
        if any(abs(v - bonus) < 1e-6 for v in values):
            return _replace_first_arg(node, value)
        return None

    _map_dmg_exprs(plan, fix)
