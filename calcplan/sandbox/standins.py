"""
Synthetic runtime context handed to rendered closures.

Stands in for the downstream engine's talent tables, attribute buckets,
parameter map and dmg helper. Values are showcase-scale only; they exist so
unit mistakes blow past the plausibility bounds in verifier.py.
"""

from __future__ import annotations
import math
from typing import Any, Callable

from ..expr import format_number
from ..plan_schema import CalcSuggestInput, Game, runtime_ele_ok, talent_blocks
from .values import UNDEFINED, HostObject, JSThrow, NativeFunction, to_number, typeof

MAX_SHOWCASE_CALL = 20_000_000
MAX_SHOWCASE_DETAIL = {Game.GS: 20_000_000, Game.SR: 60_000_000}

ATTR_BASES = {
    "atk": 2000,
    "hp": 40_000,
    "def": 1000,
    "mastery": 800,
    "recharge": 120,
    "heal": 0,
    "shield": 100,
    "cpct": 50,
    "cdmg": 100,
    "dmg": 0,
    "phy": 0,
    "speed": 100,
    "enemydmg": 0,
    "effPct": 0,
    "effDef": 0,
    "stance": 0,
}

PARAM_SEEDS: dict[str, Any] = {
    "q": True,
    "e": True,
    "half": True,
    "halfHp": True,
    "lowHp": True,
    "weak": True,
    "shield": True,
    "triggered": False,
    "tBuff": True,
    "stacks": 60.0,
    "stack": 4.0,
    "wish": 60.0,
    "debuffCount": 3.0,
    "tArtisBuffCount": 8.0,
    "Memosprite": True,
}

GS_ELEMENT_VARIANTS = ("火", "水", "雷", "冰", "风", "岩", "草")
SR_ELEMENT_VARIANTS = ("shock", "burn", "windShear", "bleed", "entanglement", "fireBreak", "iceBreak")


class AttrItem(HostObject):
    """One attribute bucket; coerces to base + plus + base * pct / 100 (as a string)."""

    def __init__(self, base: float):
        self.fields = {"base": float(base), "plus": 0.0, "pct": 0.0, "inc": 0.0}

    def get(self, key: str) -> Any:
        return self.fields.get(key, UNDEFINED)

    def total(self) -> float:
        return item_total(self)

    def primitive(self) -> Any:
        return format_number(self.total())


class AttrMap(HostObject):
    """attr stand-in: known buckets are AttrItems, anything else reads 0."""

    def __init__(self):
        self.items = {key: AttrItem(base) for key, base in ATTR_BASES.items()}

    def get(self, key: str) -> Any:
        return self.items.get(key, 0.0)

    def primitive(self) -> Any:
        return 0.0


class ParamMap(HostObject):
    """params stand-in: seeded flags and counters, unknown keys read 0."""

    def __init__(self, seeds: dict[str, Any] | None = None):
        self.values = dict(PARAM_SEEDS if seeds is None else seeds)

    def get(self, key: str) -> Any:
        return self.values.get(key, 0.0)

    def primitive(self) -> Any:
        return 0.0


class ScalarTalent(HostObject):
    """SR table value: numeric, but numeric indexing is a plan bug."""

    def __init__(self, value: float):
        self.value = value

    def get(self, key: str) -> Any:
        if key.isdigit() and (key == "0" or not key.startswith("0")):
            raise JSThrow(f"unexpected numeric index access on scalar talent table value: [{key}]")
        return UNDEFINED

    def primitive(self) -> Any:
        return self.value

    def callable(self) -> bool:
        return True

    def call(self, args: list[Any]) -> Any:
        return self.value


def _field(obj: Any, key: str) -> Any:
    if isinstance(obj, dict):
        return obj.get(key, UNDEFINED)
    if isinstance(obj, HostObject):
        return obj.get(key)
    return UNDEFINED


def item_total(ds: Any) -> float:
    """base + plus + base * pct / 100 with Number(x) || 0 on each field."""
    def num(key: str) -> float:
        n = to_number(_field(ds, key))
        return 0.0 if math.isnan(n) else n

    b, p, pct = num("base"), num("plus"), num("pct")
    return b + p + b * pct / 100


def _calc(ds: Any = UNDEFINED) -> float:
    if ds is UNDEFINED or ds is None or typeof(ds) != "object":
        raise JSThrow("calc() expects AttrItem-like object")
    return item_total(ds)


def _table_value(game: Game, sample: Any, n: float) -> Any:
    if isinstance(sample, list):
        return [n] * len(sample)
    if isinstance(sample, dict) and sample:
        obj: dict[str, Any] = {}
        for key, value in sample.items():
            if isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value):
                obj[str(key)] = float(value)
            elif isinstance(value, list):
                obj[str(key)] = [n] * len(value)
        return obj if obj else n
    return ScalarTalent(n) if game == Game.SR else n


def build_talent(input: CalcSuggestInput, n: float) -> dict[str, Any]:
    """talent stand-in: block -> table -> synthetic value of the sampled shape."""
    blocks = [b.strip() for b in input.tables if b and b.strip()]
    if not blocks:
        blocks = list(talent_blocks(input.game))
    out: dict[str, Any] = {}
    for block in blocks:
        out[block] = {
            name: _table_value(input.game, input.sample(block, name), float(n))
            for name in input.tables.get(block, [])
        }
    return out


def build_context(input: CalcSuggestInput, n: float, attr: AttrMap | None = None,
                  params: ParamMap | None = None) -> dict[str, Any]:
    """The object passed as the first argument to every rendered closure."""
    star = input.star if isinstance(input.star, int) else 5
    return {
        "talent": build_talent(input, n),
        "attr": attr or AttrMap(),
        "calc": NativeFunction("calc", _calc),
        "params": params or ParamMap(),
        "cons": 6.0,
        "weapon": {"name": input.weapon or "武器", "star": float(star), "affix": 1.0, "type": input.weapon or ""},
        "trees": {},
        "element": "雷" if input.is_gs else "shock",
        "currentTalent": "",
    }


def talent_variants(input: CalcSuggestInput) -> list[str]:
    """currentTalent values every check is exercised with."""
    blocks = [b.strip() for b in input.tables if b and b.strip()]
    if input.is_gs:
        out: list[str] = []
        for block in ["a", "a2", "a3", "e", "q"] + blocks:
            if block not in out:
                out.append(block)
        return out
    return blocks or ["a", "e", "q", "t"]


def element_variants(game: Game) -> tuple[str, ...]:
    return GS_ELEMENT_VARIANTS if game == Game.GS else SR_ELEMENT_VARIANTS


# -- dmg helper ------------------------------------------------------------

def assert_showcase_num(value: Any, where: str, max_abs: float = MAX_SHOWCASE_CALL):
    """Bound a numeric result; non-numbers pass through unchecked."""
    if typeof(value) != "number":
        return
    if not math.isfinite(value):
        raise JSThrow(f"{where} returned non-finite number")
    if abs(value) > max_abs:
        raise JSThrow(f"{where} returned unreasonable showcase value: {format_number(float(value))}")


def _to_num(value: Any) -> float:
    n = to_number(value)
    return n if math.isfinite(n) else 0.0


def _default(value: Any, fallback: Any) -> Any:
    return fallback if value is UNDEFINED else value


def build_dmg_fn(game: Game) -> NativeFunction:
    """dmg(pct, key, ele) and its helper properties."""

    def validate_ele(ele: Any):
        if ele is UNDEFINED or ele is None or ele is False or not isinstance(ele, str):
            return
        text = ele.strip()
        if not text:
            raise JSThrow("invalid ele arg: empty string")
        if not runtime_ele_ok(game, text):
            raise JSThrow(f"invalid ele arg: {text}")

    def emission(where: str, ele_slot: int) -> Callable[..., dict[str, Any]]:
        def fn(*args):
            ele = args[ele_slot] if len(args) > ele_slot else UNDEFINED
            validate_ele(_default(ele, False))
            n = _to_num(_default(args[0] if args else UNDEFINED, 0.0))
            assert_showcase_num(n, where)
            return {"dmg": n, "avg": n}
        return fn

    def support(where: str) -> Callable[..., dict[str, Any]]:
        def fn(*args):
            v = _to_num(_default(args[0] if args else UNDEFINED, 0.0))
            assert_showcase_num(v, where)
            return {"avg": v}
        return fn

    def reaction(*args):
        validate_ele(_default(args[0] if args else UNDEFINED, False))
        return {"dmg": 1000.0, "avg": 1000.0}

    def swirl(*args):
        validate_ele("swirl")
        return {"dmg": 1000.0, "avg": 1000.0}

    props = {
        "basic": NativeFunction("dmg.basic", emission("dmg.basic()", 2)),
        "dynamic": NativeFunction("dmg.dynamic", emission("dmg.dynamic()", 3)),
        "reaction": NativeFunction("dmg.reaction", reaction),
        "swirl": NativeFunction("dmg.swirl", swirl),
        "heal": NativeFunction("dmg.heal", support("dmg.heal()")),
        "shield": NativeFunction("dmg.shield", support("dmg.shield()")),
        "elation": NativeFunction("dmg.elation", lambda *args: {"dmg": 1000.0, "avg": 1000.0}),
    }
    return NativeFunction("dmg", emission("dmg()", 2), props=props)
