"""
Shared helpers for the repair passes: row bookkeeping, AST matchers and the
emission-call builder used whenever a pass needs a row's plain damage call.
"""

from __future__ import annotations
import re
from typing import Iterator

from ..expr import (
    Binary, Call, Cond, Ident, Index, Member, Node, Num, Str, Unary, callee_name, make_table_ref, walk,
)
from ..expr.build import at, calc, call, num0, ratio
from ..plan_schema import (
    Buff, CalcSuggestInput, CalcSuggestResult, DamageDetail, Detail,
)
from ..plan_schema.validation import MAX_BUFFS, MAX_DETAILS
from ..render.scaling import infer_detail_base
from ..render.table_schema import infer_array_table_schema
from ..text import normalize_text

DMG_HELPERS = frozenset({"dmg", "dmg.basic", "dmg.dynamic"})

_TITLE_PUNCT_RE = re.compile(r"[\s·!?！？…\-_—–()（）【】\[\]「」『』《》〈〉“”‘’\"']")


def title_key(title: object) -> str:
    """Title with whitespace and punctuation removed, for duplicate checks."""
    return _TITLE_PUNCT_RE.sub("", normalize_text(title))


def has_title(plan: CalcSuggestResult, title: str) -> bool:
    key = title_key(title)
    return any(title_key(d.title) == key for d in plan.details)


def add_detail(plan: CalcSuggestResult, detail: Detail, index: int | None = None) -> bool:
    """Insert a synthesized row unless the plan is full or the title exists."""
    if len(plan.details) >= MAX_DETAILS or has_title(plan, detail.title):
        return False
    if index is None:
        plan.details.append(detail)
    else:
        plan.details.insert(index, detail)
    return True


def add_buff(plan: CalcSuggestResult, buff: Buff, front: bool = False) -> bool:
    if len(plan.buffs) >= MAX_BUFFS:
        return False
    if front:
        plan.buffs.insert(0, buff)
    else:
        plan.buffs.append(buff)
    return True


def dmg_rows(plan: CalcSuggestResult) -> Iterator[DamageDetail]:
    for d in plan.details:
        if isinstance(d, DamageDetail):
            yield d


def key_bucket(detail: Detail) -> str:
    """First token of the row's damage key (the talent block when unset)."""
    key = (detail.key or "").strip() or (detail.talent or "")
    return key.split(",")[0].strip().lower()


def key_arg(detail: Detail) -> str:
    return (detail.key or "").strip() or (detail.talent or "")


def number_value(node: Node | None) -> float | None:
    """Literal number (optionally negated) or None."""
    if isinstance(node, Num):
        return float(node.value)
    if isinstance(node, Unary) and node.op == "-" and isinstance(node.operand, Num):
        return -float(node.operand.value)
    return None


def emission_calls(node: Node | None) -> Iterator[Call]:
    """dmg() / dmg.basic() / dmg.dynamic() calls anywhere under node."""
    if node is None:
        return
    for sub in walk(node):
        if isinstance(sub, Call) and callee_name(sub.callee) in DMG_HELPERS:
            yield sub


def is_emission(node: Node) -> bool:
    return isinstance(node, Call) and callee_name(node.callee) in DMG_HELPERS


def call_key(node: Call) -> str | None:
    """The literal key argument of a dmg helper call."""
    if len(node.args) > 1 and isinstance(node.args[1], Str):
        return node.args[1].value
    return None


def uses_calc(node: Node, bucket: str) -> bool:
    """True when node reads calc(attr.<bucket>) or attr.<bucket> directly."""
    for sub in walk(node):
        if (
            isinstance(sub, Member)
            and sub.prop == bucket
            and isinstance(sub.obj, Ident)
            and sub.obj.name == "attr"
        ):
            return True
    return False


def strip_number_wrapper(node: Node) -> Node:
    """Number(x) || 0 / Number(x) -> x"""
    if isinstance(node, Binary) and node.op == "||" and number_value(node.right) == 0:
        node = node.left
    if isinstance(node, Call) and callee_name(node.callee) == "Number" and len(node.args) == 1:
        return node.args[0]
    return node


def strip_ratio(node: Node) -> Node:
    """toRatio(x) -> x"""
    if isinstance(node, Call) and callee_name(node.callee) == "toRatio" and len(node.args) == 1:
        return node.args[0]
    return node


def ref_of(node: Node) -> tuple[str, str] | None:
    """(block, table) of a bare or Number()/toRatio()-wrapped table reference."""
    inner = strip_number_wrapper(strip_ratio(strip_number_wrapper(node)))
    if (
        isinstance(inner, Index)
        and isinstance(inner.index, Str)
        and isinstance(inner.obj, Member)
        and isinstance(inner.obj.obj, Ident)
        and inner.obj.obj.name == "talent"
    ):
        return inner.obj.prop, inner.index.value
    return None


def desc_text(input: CalcSuggestInput, *blocks: str) -> str:
    return " ".join(t for t in (normalize_text(input.desc(b)) for b in blocks) if t)


def hint_lines(input: CalcSuggestInput) -> list[str]:
    return [t for t in (normalize_text(h) for h in input.buff_hints) if t]


def numeric_buff_values(plan: CalcSuggestResult, key: str) -> list[float]:
    out: list[float] = []
    for buff in plan.object_buffs():
        value = buff.data.get(key)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            out.append(float(value))
    return out


def detail_emission(input: CalcSuggestInput, detail: Detail, table: str | None = None,
                    ele: str | None = None) -> Node | None:
    """
    The plain emission call for a damage row, as an expression.

    Handles pick, the array schemas the renderer knows and the inferred base
    stat; pctList arrays return None (summing needs a loop).
    """
    block = detail.talent or ""
    table = table or detail.table or ""
    if not block or not table:
        return None
    ele = ele if ele is not None else (getattr(detail, "ele", None) or "")
    tail: tuple[Node, ...] = (Str(key_arg(detail) or block),) + ((Str(ele),) if ele else ())
    acc = make_table_ref(block, table)
    candidate = DamageDetail(title=detail.title, talent=block, table=table, stat=getattr(detail, "stat", None))
    base = infer_detail_base(input, candidate)
    use_basic = base != "atk"

    def emit(value: Node) -> Node:
        if use_basic:
            return Call(Member(Ident("dmg"), "basic"), (Binary("*", calc(base), ratio(value)),) + tail)
        return Call(Ident("dmg"), (value,) + tail)

    def basic(value: Node) -> Call:
        return Call(Member(Ident("dmg"), "basic"), (value,) + tail)

    def component(idx: int = 0) -> Node:
        return num0(Cond(call("Array.isArray", acc), at(acc, idx), acc))

    pick = getattr(detail, "pick", None)
    if pick is not None:
        return emit(component(max(0, min(10, int(pick)))))

    schema = infer_array_table_schema(input, block, table)
    kind = schema.kind if schema else None
    if kind == "statStat":
        s0, s1 = schema.stats
        mixed = basic(Binary("+", Binary("*", calc(s0), ratio(at(acc, 0))), Binary("*", calc(s1), ratio(at(acc, 1)))))
        return Cond(call("Array.isArray", acc), mixed, emit(acc))
    if kind == "statFlat":
        mixed = basic(Binary("+", Binary("*", calc(schema.stat), ratio(at(acc, 0))), num0(at(acc, 1))))
        return Cond(call("Array.isArray", acc), mixed, emit(acc))
    if kind == "statTimes":
        if schema.stat == "atk" and not use_basic:
            return Call(Ident("dmg"), (component(),) + tail)
        return basic(Binary("*", calc(schema.stat), ratio(component())))
    if kind == "pctList":
        return None
    if isinstance(input.sample(block, table), list):
        return emit(component())
    return emit(acc)
