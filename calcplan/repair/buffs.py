"""
Buff repairs.

- kx_sign: shred and ignore values are non-negative
- filter_buffs: GS keys the hint text gives no support for are dropped
- synthesize_buffs: buffs the tier-prefixed hint lines imply and the plan lacks
- relax_over_gating: guards on flags nothing can ever set are dropped
- key_scope: block-wide buffs titled after one table are narrowed to that table
"""

from __future__ import annotations
import logging
import re

from ..expr import Binary, Bool, Call, Ident, Node, Num, Unary, callee_name, walk
from ..expr.build import call, param
from ..plan_schema import Buff, CalcSuggestInput, CalcSuggestResult, Game, ShieldDetail
from ..render.def_params import infer_def_params, param_refs
from ..text import normalize_text
from .common import add_buff, title_key
from .rules import derive_from_hints, shield_strength

logger = logging.getLogger(__name__)

# -- kx sign ---------------------------------------------------------------

SHRED_KEY_RE = re.compile(
    r"^(kx|fykx|enemyDef|enemyIgnore|ignore)$|^(a|a2|a3|e|q|t|me|mt|dot|break|nightsoul)(Def|Ignore)$"
)


def non_negative(value: object) -> object:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return abs(value)
    if isinstance(value, Num):
        return Num(abs(value.value))
    if isinstance(value, Unary) and value.op == "-":
        return value.operand
    if isinstance(value, Call) and callee_name(value.callee) == "Math.abs":
        return value
    if isinstance(value, Node):
        return call("Math.abs", value)
    return value


def kx_sign(input: CalcSuggestInput, plan: CalcSuggestResult) -> None:
    for buff in plan.object_buffs():
        for key, value in list(buff.data.items()):
            if SHRED_KEY_RE.match(key):
                buff.data[key] = non_negative(value)


# -- GS filter ---------------------------------------------------------------

_GS_CONS_RE = re.compile(r"^([1-6])\s*命[:：]")
_ONE_SHOT_RE = re.compile(r"(下次|下一次|首次)(施放|释放|使用|攻击|普攻|重击|战技|元素战技|爆发|元素爆发|技能)?")
_CONSUMED_RE = re.compile(r"(后移除|使用后移除|施放后移除|释放后移除|命中后移除|并将在.{0,40}后移除|将在.{0,40}后移除)")
_ORIGINAL_RE = re.compile(r"(造成|提高为|变为|改为).{0,12}原本.{0,6}\d+|原本\s*\d+(\.\d+)?\s*%")
_DMG_INTENT_RE = re.compile(r"伤害|增伤|造成.{0,12}伤害")
_MULTI_INTENT_RE = re.compile(
    r"(倍率|系数|原本|提高到|提升到|提高至|提升至|变为|变成|改为|伤害为原伤害的)|原本\s*\d+(\.\d+)?\s*%"
)
_GS_SCOPED_RE = re.compile(r"^(a|a2|a3|e|q|nightsoul)(Dmg|Pct|Multi|Plus|Cpct|Cdmg|Enemydmg|Elevated|Def|Ignore)$")


def _one_shot(text: str) -> bool:
    if _ONE_SHOT_RE.search(text):
        return True
    return bool(_CONSUMED_RE.search(text) and _ORIGINAL_RE.search(text))


def _damage_like(key: str) -> bool:
    if not key or key.startswith("_"):
        return False
    if key in ("dmg", "phy", "enemydmg") or key.endswith(("Dmg", "Enemydmg")):
        return True
    return bool(re.match(r"^(a|a2|a3|e|q|nightsoul)(Plus|Pct)$", key))


def cons_hints(input: CalcSuggestInput) -> dict[int, str]:
    out: dict[int, str] = {}
    for raw in input.buff_hints:
        line = normalize_text(raw)
        m = _GS_CONS_RE.match(line)
        if m:
            cons = int(m.group(1))
            out[cons] = f"{out[cons]} {line}" if cons in out else line
    return out


def unsupported_keys(buff: Buff, hints: dict[int, str]) -> list[str]:
    """Data keys the buff title and its constellation hint give no support for."""
    hint = hints.get(buff.cons or 0, "")
    evidence = f"{normalize_text(buff.title)} {hint}".strip()
    squashed = title_key(evidence)
    dmg_intent = bool(squashed and _DMG_INTENT_RE.search(squashed))
    multi_intent = bool(squashed and _MULTI_INTENT_RE.search(squashed))
    one_shot = bool(evidence and _one_shot(evidence))

    dropped: list[str] = []
    for key in buff.data:
        if key.startswith("_"):
            continue
        if one_shot and (key.endswith("Multi") or _GS_SCOPED_RE.match(key)):
            dropped.append(key)
        elif key.endswith("Multi"):
            if not multi_intent:
                dropped.append(key)
        elif _damage_like(key) and not dmg_intent:
            dropped.append(key)
    return dropped


def filter_buffs(input: CalcSuggestInput, plan: CalcSuggestResult) -> None:
    """
    Drops `*Multi`/scoped keys from one-shot ("next cast") buffs, `*Multi`
    keys without multiplier wording and damage keys without damage wording.
    A buff left without effect keys is removed.
    """
    hints = cons_hints(input)
    for buff in list(plan.object_buffs()):
        dropped = unsupported_keys(buff, hints)
        if not dropped:
            continue
        for key in dropped:
            del buff.data[key]
        logger.debug("buff %r: dropped unsupported keys %s", buff.title, dropped)
        if not any(not k.startswith("_") for k in buff.data):
            plan.buffs.remove(buff)


# -- synthesis ---------------------------------------------------------------

SYNTH_TITLE = "推导："


def _tier(value: int | None) -> int:
    return value or 0


def _same_value(a: object, b: object) -> bool:
    if isinstance(a, (int, float)) and isinstance(b, (int, float)):
        return abs(float(a) - float(b)) < 1e-9
    return a == b


def has_equivalent(plan: CalcSuggestResult, key: str, value: object, cons: int | None, tree: int | None) -> bool:
    """A buff with the same key and tier, or the same key and value."""
    for buff in plan.object_buffs():
        if key not in buff.data:
            continue
        if _tier(buff.cons) == _tier(cons) and _tier(buff.tree) == _tier(tree):
            return True
        if _same_value(buff.data[key], value):
            return True
    return False


def synthesize_buffs(input: CalcSuggestInput, plan: CalcSuggestResult) -> None:
    """
    On GS a derived key filter_buffs would drop (a one-shot "next cast"
    bonus, say) is not synthesized either.
    """
    hints = cons_hints(input) if input.game == Game.GS else None
    by_line: dict[str, Buff] = {}
    for m in derive_from_hints(input):
        if has_equivalent(plan, m.key, m.value, m.cons, m.tree):
            continue
        title = f"{SYNTH_TITLE}{m.line}"
        if hints is not None and unsupported_keys(Buff(title=title, cons=m.cons, data={m.key: m.value}), hints):
            logger.debug("hint %r: %s not synthesized", m.line, m.key)
            continue
        buff = by_line.get(m.line)
        if buff is None:
            buff = Buff(title=title, cons=m.cons, tree=m.tree)
            if not add_buff(plan, buff):
                logger.debug("buff list full, hint %r not synthesized", m.line)
                break
            by_line[m.line] = buff
        buff.data.setdefault(m.key, m.value)

    if input.game == Game.GS and any(isinstance(d, ShieldDetail) for d in plan.details):
        total = shield_strength(input)
        if total is not None and not any("shield" in b.data for b in plan.object_buffs()):
            add_buff(plan, Buff(title=f"{SYNTH_TITLE}护盾强效提高{total}%", data={"shield": total}), front=True)


# -- over-gating ---------------------------------------------------------------

_UNCONDITIONAL_KEY_RE = re.compile(
    r"^(dmg|cpct|cdmg|kx|enemyDef|ignore|enemydmg)$|(Dmg|Plus|Pct|Cpct|Cdmg)$"
)


def _only_params(node: Node) -> bool:
    return all(not isinstance(sub, Ident) or sub.name == "params" for sub in walk(node))


def relax_over_gating(input: CalcSuggestInput, plan: CalcSuggestResult) -> None:
    """
    Drops a guard that reads only params flags when no detail sets any of
    them and no default param provides them: such a buff can never fire.
    """
    set_by_rows = {k for d in plan.details for k in d.params}
    defaults = set(infer_def_params(input, plan) or {})
    for buff in plan.object_buffs():
        if buff.check is None or not buff.data:
            continue
        if not all(_UNCONDITIONAL_KEY_RE.search(k) for k in buff.data):
            continue
        refs = param_refs(buff.check)
        if not refs or not _only_params(buff.check):
            continue
        if refs & (set_by_rows | defaults):
            continue
        logger.debug("buff %r: guard on unset flags %s dropped", buff.title, sorted(refs))
        buff.check = None


# -- key scope ---------------------------------------------------------------

_SCOPE_RE = re.compile(r"Scope\d+$")


def _table_token(table: str) -> str:
    return title_key(re.sub(r"[(（]\s*\d\s*[)）]$", "", table)).replace("伤害", "")


def scope_param(block: str, idx: int) -> str:
    return f"{block}Scope{idx + 1}"


def key_scope(input: CalcSuggestInput, plan: CalcSuggestResult) -> None:
    for buff in plan.object_buffs():
        if len(buff.data) != 1 or any(_SCOPE_RE.search(r) for r in param_refs(buff.check)):
            continue
        key = next(iter(buff.data))
        m = re.match(r"^(a|a2|a3|e|q|t|me|mt)Dmg$", key)
        if not m:
            continue
        block = m.group(1)
        rows = [d for d in plan.details if d.talent == block and d.table and (d.key or block) == block]
        if len({d.table for d in rows}) < 2:
            continue
        title = title_key(buff.title)
        tables = input.tables.get(block, [])
        hits = [
            i for i, t in enumerate(tables)
            if len(_table_token(t)) >= 2 and _table_token(t) in title
        ]
        if len(hits) != 1:
            continue
        table = tables[hits[0]]
        name = scope_param(block, hits[0])
        guard: Node = Binary("===", param(name), Bool(True))
        buff.check = guard if buff.check is None else Binary("&&", buff.check, guard)
        for d in rows:
            if d.table == table:
                d.params.setdefault(name, True)
        logger.debug("buff %r scoped to %s[%r]", buff.title, block, table)
