"""
Default parameter inference (the module's `defParams` export).

Only parameters that some buff actually reads get a default, and only
when no detail row sets them itself.
"""

from __future__ import annotations
import math
import re
from typing import Any, Iterator

from ..expr import Binary, Ident, Index, Member, Node, Num, Str, walk
from ..plan_schema import Buff, CalcSuggestInput, CalcSuggestResult, Game
from ..text import normalize_text

_GS_COUNT_RE = re.compile(r"(?:layer|layers|stack|stacks|count|cnt|num|cracks|drops)$", re.IGNORECASE)
_GS_COUNT_NAMES_RE = re.compile(r"^(?:hunterstacks|glory_stacks|veil_of_falsehood|hpabove50count)$", re.IGNORECASE)
_SR_COUNT_RE = re.compile(r"(?:layer|layers|stack|stacks|count|cnt|num|times)$", re.IGNORECASE)
_MOONSIGN_RE = re.compile(r"(月兆|月曜|月辉|月感电|月绽放|月结晶|Moonsign)", re.IGNORECASE)
_STACK_CAP_RE = re.compile(r"(?:最高|最多)(?:叠加)?\s*(\d{1,2})\s*层")
_PCT_RE = re.compile(r"(\d+(?:\.\d+)?)\s*[%％]")


def param_name(node: Node) -> str | None:
    """params.x / params["x"] -> x"""
    if isinstance(node, Member) and isinstance(node.obj, Ident) and node.obj.name == "params":
        return node.prop
    if (
        isinstance(node, Index)
        and isinstance(node.obj, Ident)
        and node.obj.name == "params"
        and isinstance(node.index, Str)
    ):
        return node.index.value
    return None


def param_refs(node: Node | None) -> set[str]:
    if node is None:
        return set()
    return {name for name in (param_name(sub) for sub in walk(node)) if name}


def _thresholds(node: Node) -> Iterator[tuple[str, int]]:
    """(param, minimum) pairs from `params.x >= n` / `params.x > n`."""
    for sub in walk(node):
        if not isinstance(sub, Binary) or sub.op not in (">=", ">"):
            continue
        name = param_name(sub.left)
        if name and isinstance(sub.right, Num) and float(sub.right.value).is_integer():
            n = int(sub.right.value)
            yield name, n + 1 if sub.op == ">" else n


def _linear_stacks(node: Node) -> Iterator[tuple[str, float]]:
    """(param, per-stack value) pairs from `params.x * k` / `k * params.x`."""
    for sub in walk(node):
        if not isinstance(sub, Binary) or sub.op != "*":
            continue
        name = param_name(sub.left)
        if name and isinstance(sub.right, Num):
            yield name, float(sub.right.value)
            continue
        name = param_name(sub.right)
        if name and isinstance(sub.left, Num):
            yield name, float(sub.left.value)


def _buff_nodes(buff: Buff) -> tuple[list[Node], list[Node]]:
    checks = [buff.check] if buff.check is not None else []
    data = [v for v in buff.data.values() if isinstance(v, Node)]
    return checks, data


def _detail_numbers(plan: CalcSuggestResult) -> tuple[dict[str, float], set[str]]:
    num_max: dict[str, float] = {}
    keys: set[str] = set()
    for d in plan.details:
        for key, value in d.params.items():
            keys.add(key)
            if isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value):
                num_max[key] = max(num_max.get(key, -math.inf), value)
    return num_max, keys


def _small_int(value: float | None, limit: int) -> int | None:
    if value is None or not math.isfinite(value):
        return None
    if abs(value - round(value)) > 1e-9 or value <= 0 or value > limit:
        return None
    return int(value)


def _stack_cap(hints: list[str], per: float) -> int:
    best = 0
    for line in hints:
        if "层" not in line and "叠加" not in line:
            continue
        m = _STACK_CAP_RE.search(line)
        if not m:
            continue
        if not any(abs(float(p) - per) < 1e-9 for p in _PCT_RE.findall(line)):
            continue
        cap = int(m.group(1))
        if 0 < cap <= 50:
            best = max(best, cap)
    return best


def _infer_sr(input: CalcSuggestInput, plan: CalcSuggestResult) -> dict[str, Any]:
    out: dict[str, Any] = {}
    memo_re = re.compile(r"(忆灵|Memosprite)", re.IGNORECASE)
    blocks = [k for k in input.tables if k.startswith(("me", "mt"))]
    texts = list(input.talent_desc.values()) + list(input.buff_hints) + [d.title for d in plan.details]
    if (
        blocks
        or any(d.talent and d.talent.startswith(("me", "mt")) for d in plan.details)
        or any(memo_re.search(t) for t in texts)
    ):
        out["Memosprite"] = True

    hints = [normalize_text(h) for h in input.buff_hints if normalize_text(h)]
    refs: set[str] = set()
    need: dict[str, int] = {}
    per_stack: dict[str, float] = {}
    for buff in plan.object_buffs():
        checks, data = _buff_nodes(buff)
        for node in checks:
            refs |= param_refs(node)
            for name, n in _thresholds(node):
                if 1 <= n <= 50:
                    need[name] = max(need.get(name, 0), n)
        for node in data:
            refs |= param_refs(node)
            for name, per in _linear_stacks(node):
                if 0 < per <= 1000:
                    per_stack[name] = max(per_stack.get(name, 0), per)

    num_max, detail_keys = _detail_numbers(plan)
    for key in sorted(refs):
        if key in out or key in detail_keys:
            continue
        if key == "Memosprite":
            out[key] = True
            continue
        if key in ("type", "idx", "index"):
            out[key] = 0
            continue
        if not _SR_COUNT_RE.search(key):
            continue
        n = _small_int(num_max.get(key), 50)
        if n is not None:
            out[key] = n
        elif key in need:
            out[key] = need[key]
        elif key in per_stack and _stack_cap(hints, per_stack[key]):
            out[key] = _stack_cap(hints, per_stack[key])
        elif key == "debuffCount":
            out[key] = 3
        elif key == "tArtisBuffCount":
            out[key] = 6
    return out


def _moonsign_level(text: str) -> int:
    if re.search(r"(月兆|月曜|月辉|Moonsign).{0,20}(3|三)", text, re.IGNORECASE):
        return 3
    return 2


def _infer_gs(input: CalcSuggestInput, plan: CalcSuggestResult) -> dict[str, Any]:
    out: dict[str, Any] = {}
    texts = [t for names in input.tables.values() for t in names]
    texts += list(input.talent_desc.values()) + list(input.buff_hints)
    for text in texts:
        if "Nightsoul" not in out and "夜魂" in text:
            out["Nightsoul"] = True
        if "Hexenzirkel" not in out and re.search(r"(魔女会|Hexenzirkel)", text, re.IGNORECASE):
            out["Hexenzirkel"] = True
        if "Moonsign" not in out and _MOONSIGN_RE.search(text):
            out["Moonsign"] = _moonsign_level(text)

    refs: set[str] = set()
    need: dict[str, int] = {}
    for buff in plan.object_buffs():
        checks, data = _buff_nodes(buff)
        for node in checks:
            refs |= param_refs(node)
            for name, n in _thresholds(node):
                if 1 <= n <= 20:
                    need[name] = max(need.get(name, 0), n)
        for node in data:
            refs |= param_refs(node)

    num_max, _ = _detail_numbers(plan)
    for key in sorted(refs):
        if key in out:
            continue
        if key in ("elementTypes", "team_element_count", "teamElementCount"):
            out[key] = 4
            continue
        if key in ("type", "idx", "index"):
            out[key] = 0
            continue
        if not (_GS_COUNT_RE.search(key) or _GS_COUNT_NAMES_RE.match(key)):
            continue
        n = _small_int(num_max.get(key), 20)
        if n is not None:
            out[key] = n
        elif key in need:
            out[key] = need[key]

    detail_moonsign = any("Moonsign" in d.params for d in plan.details)
    wanted = "Moonsign" in refs
    if "Moonsign" in out:
        if detail_moonsign or not wanted:
            del out["Moonsign"]
    elif wanted and not detail_moonsign:
        out["Moonsign"] = 2
    return out


def infer_def_params(input: CalcSuggestInput, plan: CalcSuggestResult) -> dict[str, Any] | None:
    """Default params for the rendered module, or None when there are none."""
    out = _infer_sr(input, plan) if input.game == Game.SR else _infer_gs(input, plan)
    return out or None
