"""
Script Renderer - plan -> calc.js module text.

Every closure in the output is built as an AST and printed by the canonical
printer; validated plan fragments are spliced in as nodes, never as text.

Output layout:

    // Auto-generated by <createdBy>.
    const toRatio = (v) => { ... }
    export const details = [ ... ]

    export const defDmgIdx = 0
    export const defDmgKey = "e"
    export const mainAttr = "atk,cpct,cdmg"

    export const defParams = { ... }      (only when inferred)

    export const buffs = [ ... ]

    export const createdBy = "<createdBy>"
"""

from __future__ import annotations
import logging
import re

from ..config import get_settings
from ..expr import (
    Arrow, ArrayLit, Binary, Block, Bool, Call, Cond, ConstDecl, Ident, If, Index, Member,
    Module, Node, Null, Num, ObjectLit, ObjectPattern, Return, Str, Unary, make_table_ref,
)
from ..expr.build import add, call, calc, literal, mul, num0, ratio
from ..plan_schema import (
    Buff, CalcSuggestInput, CalcSuggestResult, Detail, DetailKind, Game, ReactionDetail,
)
from .keys import detail_key, lunar_ele, nightsoul_keys, sanitize_key
from .def_params import infer_def_params
from .layout import format_module
from .scaling import build_mixed_stat_dmg_expr, infer_detail_base, infer_heal_stat, infer_scale_stat_from_unit
from .table_schema import infer_array_table_schema

logger = logging.getLogger(__name__)

CHECK_PARAMS = ObjectPattern(("talent", "attr", "calc", "params", "cons", "weapon", "trees", "currentTalent"))
BUFF_PARAMS = ObjectPattern(
    ("talent", "attr", "calc", "params", "cons", "weapon", "trees", "element", "currentTalent")
)
TABLE_PARAMS = ObjectPattern(("talent", "attr", "calc"))
HEAL_TABLE_PARAMS = ObjectPattern(("attr", "talent", "calc"))

WANTS_TOTAL_RE = re.compile(r"(?:合计|总计|总伤|一轮|总)")
PER_HIT_RE = re.compile(r"(?:单次|单段|每段|每跳|每次)")
_MULTI_TARGET_RE = re.compile(r"(主目标|相邻目标|次要|副目标)")
_PAREN2_RE = re.compile(r"^(.*?)[（(]\s*2\s*[)）]$")

HEAL_FLAT_THRESHOLD = {Game.GS: 200, Game.SR: 5}


# -- node helpers ----------------------------------------------------------

def _id(name: str) -> Ident:
    return Ident(name)


def _at(name: str, idx: int) -> Index:
    return Index(_id(name), Num(idx))


def _is_array(name: str) -> Call:
    return call("Array.isArray", _id(name))


def ratio_function(game: Game) -> ConstDecl:
    """Module-level percentage -> ratio conversion, one per game."""
    n = _id("n")
    value = Binary("/", n, Num(100)) if game == Game.GS else n
    body = Block((
        ConstDecl("n", call("Number", _id("v"))),
        Return(Cond(call("Number.isFinite", n), value, Num(0))),
    ))
    return ConstDecl("toRatio", Arrow((_id("v"),), body))


# -- detail rows -----------------------------------------------------------

class _DetailRenderer:
    """Builds the row object for one detail."""

    def __init__(self, input: CalcSuggestInput, detail: Detail, key: str | None):
        self.input = input
        self.d = detail
        self.key = key

    def header(self, with_talent: bool = True, dmg_key: str | None = None) -> list[tuple[str, Node]]:
        d = self.d
        props: list[tuple[str, Node]] = [("title", Str(d.title))]
        if with_talent and d.talent:
            props.append(("talent", Str(d.talent)))
        if dmg_key is not None:
            props.append(("dmgKey", Str(dmg_key)))
        if d.cons is not None:
            props.append(("cons", Num(int(d.cons))))
        if d.params:
            props.append(("params", literal(d.params)))
        if d.check is not None:
            props.append(("check", Arrow((CHECK_PARAMS,), d.check)))
        return props

    def render(self) -> ObjectLit:
        d = self.d
        expr = d.dmg_expr
        if expr is None and d.kind == DetailKind.DMG and self.input.is_sr:
            expr = build_mixed_stat_dmg_expr(
                self.input, d.talent or "", d.table or "", self.key or d.talent or "e", getattr(d, "ele", None)
            )
        if expr is not None:
            return self.render_expr(expr)
        if isinstance(d, ReactionDetail):
            props = self.header(with_talent=bool(d.talent))
            fn = Arrow((ObjectPattern(()), ObjectPattern(("reaction",))), call("reaction", Str(d.reaction or "swirl")))
            return ObjectLit(tuple(props + [("dmg", fn)]))
        if d.kind in (DetailKind.HEAL, DetailKind.SHIELD):
            return self.render_support()
        return self.render_table()

    def render_expr(self, expr: Node) -> ObjectLit:
        d = self.d
        dmg_key = None if d.kind == DetailKind.REACTION else (self.key or d.talent or "e")
        props = self.header(with_talent=bool(d.talent), dmg_key=dmg_key)
        params = (CHECK_PARAMS, _id("dmg"))
        if d.kind == DetailKind.DMG:
            fn = Arrow(params, expr)
        else:
            alias = d.kind.value
            fn = Arrow(params, Block((ConstDecl(alias, Member(_id("dmg"), alias)), Return(expr))))
        return ObjectLit(tuple(props + [("dmg", fn)]))

    # heal / shield

    def _gs_pair(self) -> tuple[str, str] | None:
        if self.input.game != Game.GS:
            return None
        table = self.d.table or ""
        if "基础" in table:
            extra = table.replace("基础", "附加")
            if extra != table and self.input.has_table(self.d.talent, extra):
                return table, extra
        if "附加" in table:
            base = table.replace("附加", "基础")
            if base != table and self.input.has_table(self.d.talent, base):
                return base, table
        return None

    def _sr_pair(self, stat: str) -> tuple[str, str] | None:
        if self.input.game != Game.SR:
            return None
        names = self.input.tables.get(self.d.talent or "", [])
        table = self.d.table or ""

        def has(name: str) -> bool:
            return name in names

        flat_any = next((n for n in names if "固定值" in n), None)
        if stat == "hp":
            pct_any = next((n for n in names if re.search(r"(百分比生命|生命值百分比)", n)), None)
        elif stat == "def":
            pct_any = next((n for n in names if re.search(r"(百分比防御|防御力百分比)", n)), None)
        elif stat == "atk":
            pct_any = next((n for n in names if "攻击力百分比" in n), None)
        else:
            pct_any = next((n for n in names if "百分比" in n), None)

        if "百分比" in table and "固定值" not in table:
            flat = re.sub(r"百分比生命|生命值百分比|百分比防御|防御力百分比|攻击力百分比", "固定值", table)
            if flat != table and has(flat):
                return table, flat
            if flat_any:
                return table, flat_any
        if "固定值" in table:
            token = {"def": "百分比防御", "atk": "攻击力百分比"}.get(stat, "百分比生命")
            pct = table.replace("固定值", token)
            if pct != table and has(pct):
                return pct, table
            if pct_any:
                return pct_any, table

        m = _PAREN2_RE.match(table)
        if m:
            base = m.group(1).strip()
            if base and has(base) and not _MULTI_TARGET_RE.search(base) and not _MULTI_TARGET_RE.search(table):
                return base, table
        elif not _MULTI_TARGET_RE.search(table):
            for cand in (f"{table}(2)", f"{table}（2）"):
                if has(cand):
                    return table, cand
        return None

    def render_support(self) -> ObjectLit:
        d = self.d
        input = self.input
        method = d.kind.value
        block = d.talent or ""
        stat = infer_heal_stat(input, d)
        props = self.header(dmg_key=self.key or block)
        body: list[Node] = []

        def ref(table: str) -> Index:
            return make_table_ref(block, table)

        pair_gs = self._gs_pair()
        pair_sr = None if pair_gs else self._sr_pair(stat)
        if pair_gs:
            base_table, add_table = pair_gs
            body += [
                ConstDecl("tBase", ref(base_table)),
                ConstDecl("tAdd", ref(add_table)),
                ConstDecl("flat", Cond(_is_array("tBase"), num0(_at("tBase", 1)), num0(_id("tBase")))),
                ConstDecl("pct", Cond(_is_array("tAdd"), num0(_at("tAdd", 0)), num0(_id("tAdd")))),
                ConstDecl("flat2", Cond(_is_array("tAdd"), num0(_at("tAdd", 1)), Num(0))),
                ConstDecl("base", calc(stat)),
                Return(call(method, add(_id("flat"), mul(_id("base"), ratio(_id("pct"))), _id("flat2")))),
            ]
        elif pair_sr:
            pct_table, flat_table = pair_sr
            flat_item = Binary("??", _at("tFlat", 1), _at("tFlat", 0))
            body += [
                ConstDecl("tPct", ref(pct_table)),
                ConstDecl("tFlat", ref(flat_table)),
                ConstDecl("pct", Cond(_is_array("tPct"), num0(_at("tPct", 0)), num0(_id("tPct")))),
                ConstDecl("flat", Cond(_is_array("tFlat"), num0(flat_item), num0(_id("tFlat")))),
                ConstDecl("base", calc(stat)),
                Return(call(method, add(mul(_id("base"), ratio(_id("pct"))), _id("flat")))),
            ]
        else:
            array_form = call(method, add(mul(_id("base"), ratio(_at("t", 0))), num0(_at("t", 1))))
            body += [
                ConstDecl("t", ref(d.table or "")),
                ConstDecl("base", calc(stat)),
                If(_is_array("t"), Return(array_form)),
            ]
            if infer_scale_stat_from_unit(input.unit(block, d.table)):
                body.append(Return(call(method, mul(_id("base"), ratio(_id("t"))))))
            else:
                threshold = HEAL_FLAT_THRESHOLD[input.game]
                body += [
                    ConstDecl("n", num0(_id("t"))),
                    If(Binary(">", _id("n"), Num(threshold)), Return(call(method, _id("n")))),
                    Return(call(method, mul(_id("base"), ratio(_id("n"))))),
                ]

        fn = Arrow((HEAL_TABLE_PARAMS, ObjectPattern((method,))), Block(tuple(body)))
        return ObjectLit(tuple(props + [("dmg", fn)]))

    # damage tables

    def render_table(self) -> ObjectLit:
        d = self.d
        input = self.input
        block = d.talent or ""
        table = d.table or ""

        ele_raw = (getattr(d, "ele", None) or "").strip()
        lunar = lunar_ele(input, d)
        ele = ele_raw or lunar
        key_arg = "" if lunar else (sanitize_key(self.key or "") or block)
        tail: tuple[Node, ...] = (Str(key_arg), Str(ele)) if ele else (Str(key_arg),)

        base = infer_detail_base(input, d)
        use_basic = base != "atk"

        def emit(value: Node) -> Call:
            return Call(_id("dmg"), (value,) + tail)

        def basic(value: Node) -> Call:
            return Call(Member(_id("dmg"), "basic"), (value,) + tail)

        arr: list[Node] = []
        pick = getattr(d, "pick", None)
        if pick is not None:
            arr.append(ConstDecl("v", num0(_at("t", max(0, min(10, int(pick)))))))
            arr.append(Return(basic(mul(calc(base), ratio(_id("v")))) if use_basic else emit(_id("v"))))
        else:
            arr += self._array_branch(base, use_basic, emit, basic)

        body: list[Node] = [ConstDecl("t", make_table_ref(block, table)), If(_is_array("t"), Block(tuple(arr)))]
        if use_basic:
            body += [ConstDecl("base", calc(base)), Return(basic(mul(_id("base"), ratio(_id("t")))))]
        else:
            body.append(Return(emit(_id("t"))))

        props = self.header(dmg_key=self.key or block)
        fn = Arrow((TABLE_PARAMS, _id("dmg")), Block(tuple(body)))
        return ObjectLit(tuple(props + [("dmg", fn)]))

    def _array_branch(self, base: str, use_basic: bool, emit, basic) -> list[Node]:
        d = self.d
        schema = infer_array_table_schema(self.input, d.talent or "", d.table or "")
        kind = schema.kind if schema else None
        t0, t1 = _at("t", 0), _at("t", 1)

        if kind == "statStat":
            s0, s1 = schema.stats
            return [Return(basic(add(mul(calc(s0), ratio(t0)), mul(calc(s1), ratio(t1)))))]
        if kind == "statTimes":
            wants_total = WANTS_TOTAL_RE.search(d.title) is not None and PER_HIT_RE.search(d.title) is None
            atk_plain = schema.stat == "atk" and not use_basic
            if wants_total:
                if atk_plain:
                    return [Return(emit(mul(num0(t0), num0(t1))))]
                return [Return(basic(mul(calc(schema.stat), ratio(t0), num0(t1))))]
            if atk_plain:
                return [Return(emit(num0(t0)))]
            return [Return(basic(mul(calc(schema.stat), ratio(t0))))]
        if kind == "pctList":
            reducer = Arrow((_id("acc"), _id("x")), add(_id("acc"), num0(_id("x"))))
            total = ConstDecl("sum", Call(Member(_id("t"), "reduce"), (reducer, Num(0))))
            if schema.stat == "atk" and not use_basic:
                return [total, Return(emit(_id("sum")))]
            return [total, Return(basic(mul(calc(schema.stat), ratio(_id("sum")))))]
        if kind == "statFlat":
            return [Return(basic(add(mul(calc(schema.stat), ratio(t0)), num0(t1))))]
        if use_basic:
            return [
                ConstDecl("base", calc(base)),
                ConstDecl("v", num0(t0)),
                Return(basic(mul(_id("base"), ratio(_id("v"))))),
            ]
        return [ConstDecl("v", num0(t0)), Return(emit(_id("v")))]


# -- buffs -----------------------------------------------------------------

def numeric_guard(expr: Node) -> Arrow:
    """Wrap a buff data expression so non-finite numbers become 0."""
    v = _id("v")
    falsy = Binary(
        "||",
        Binary(
            "||",
            Binary("||", Binary("===", v, _id("undefined")), Binary("===", v, Null())),
            Binary("===", v, Bool(False)),
        ),
        Binary("===", v, Str("")),
    )
    body = Block((
        ConstDecl("v", expr),
        If(Binary("===", Unary("typeof", v), Str("number")), Return(Cond(call("Number.isFinite", v), v, Num(0)))),
        If(falsy, Return(v)),
        Return(Num(0)),
    ))
    return Arrow((BUFF_PARAMS,), body)


def render_buff(buff: Buff | str) -> Node:
    if isinstance(buff, str):
        return Str(buff)
    props: list[tuple[str, Node]] = [("title", Str(buff.title))]
    for name in ("sort", "cons", "tree"):
        value = getattr(buff, name)
        if value is not None:
            props.append((name, Num(int(value))))
    if buff.check is not None:
        props.append(("check", Arrow((BUFF_PARAMS,), buff.check)))
    data = []
    for key, value in buff.data.items():
        data.append((key, numeric_guard(value) if isinstance(value, Node) else Num(value)))
    if data:
        props.append(("data", ObjectLit(tuple(data))))
    return ObjectLit(tuple(props))


# -- module ----------------------------------------------------------------

def default_row(plan: CalcSuggestResult, keys: list[str | None]) -> tuple[int, str]:
    """(defDmgIdx, defDmgKey): the plan's defDmgKey, else the first keyed row."""
    resolved = [detail_key(d, k) for d, k in zip(plan.details, keys)]
    first = next((i for i, k in enumerate(resolved) if k), 0)
    fallback = resolved[first] if resolved else ""
    key = (plan.def_dmg_key or "").strip() or fallback or "e"
    idx = resolved.index(key) if key in resolved else first
    return idx, key


def build_module(input: CalcSuggestInput, plan: CalcSuggestResult, created_by: str) -> tuple[Module, list[int]]:
    """The module AST plus the statement indexes followed by a blank line."""
    keys = nightsoul_keys(input, plan.details)
    rows = [_DetailRenderer(input, d, k).render() for d, k in zip(plan.details, keys)]
    def_idx, def_key = default_row(plan, keys)

    body: list[Node] = [
        ratio_function(input.game),
        ConstDecl("details", ArrayLit(tuple(rows)), export=True),
        ConstDecl("defDmgIdx", Num(def_idx), export=True),
        ConstDecl("defDmgKey", Str(def_key), export=True),
        ConstDecl("mainAttr", Str(plan.main_attr), export=True),
    ]
    breaks = [1, 4]
    def_params = infer_def_params(input, plan)
    if def_params:
        body.append(ConstDecl("defParams", literal(def_params), export=True))
        breaks.append(len(body) - 1)
    body.append(ConstDecl("buffs", ArrayLit(tuple(render_buff(b) for b in plan.buffs)), export=True))
    breaks.append(len(body) - 1)
    body.append(ConstDecl("createdBy", Str(created_by), export=True))
    return Module(tuple(body)), breaks


def render_calc_js(input: CalcSuggestInput, plan: CalcSuggestResult, created_by: str | None = None) -> str:
    """Render plan as calc.js module text."""
    created_by = created_by or get_settings().created_by
    module, breaks = build_module(input, plan, created_by)
    header = "// Auto-generated by " + " ".join(created_by.split()) + "."
    text = format_module(module, header=header, groups=breaks)
    logger.debug("rendered %d details, %d buffs (%d chars)", len(plan.details), len(plan.buffs), len(text))
    return text
