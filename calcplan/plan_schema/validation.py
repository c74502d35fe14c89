"""
Plan Validation - turn an untrusted LLM plan into a normalized plan.

Validates that:
1. Every detail row references a known talent block + table (or a known reaction)
2. Expression fragments pass the safety checks and table resolver
3. Buff data keys belong to the per-game allow-list
4. mainAttr is present and at least one detail survives

Per-field problems are soft: the field (or row / buff) is dropped and a
warning recorded. Only an empty mainAttr or zero surviving details raise.
"""

from __future__ import annotations
from dataclasses import dataclass, field
import logging
import math
import re
from typing import Any

from ..errors import ExpressionError, PlanValidationError
from ..expr import ExprContext, Node, check_node, validate_fragment, validate_table_refs
from .plan import (
    Buff, BuffEntry, CalcSuggestInput, CalcSuggestResult, DETAIL_CLASSES, Detail, DetailKind,
    Game, ParamValue, ReactionDetail,
)
from .vocab import (
    CANNED_BUFF_RE, GS_TALENT_BLOCKS, canonical_reaction, is_allowed_buff_key, sanitize_detail_ele,
)

logger = logging.getLogger(__name__)

MAX_DETAILS = 20
MAX_BUFFS = 30
MAX_PARAMS = 12

HEAL_WORDS_RE = re.compile(r"治疗|回复|恢复")
SHIELD_WORDS_RE = re.compile(r"护盾|吸收量")
PER_HIT_TITLE_RE = re.compile(r"单次|单段|每段|每跳|每次")
_PARAM_KEY_RE = re.compile(r"^[A-Za-z_$][A-Za-z0-9_$]*$")


@dataclass
class ValidationReport:
    """Soft problems found while validating, plus the overall verdict."""
    valid: bool = True
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def drop(self, where: str, message: str) -> None:
        text = f"{where}: {message}"
        self.warnings.append(text)
        logger.info("dropped %s", text)


def known_tables(input: CalcSuggestInput) -> dict[str, list[str]]:
    """Talent blocks (and their tables) a plan may reference."""
    if input.game == Game.GS:
        return {b: t for b, t in input.tables.items() if b in GS_TALENT_BLOCKS}
    return dict(input.tables)


def normalize_kind(value: Any) -> DetailKind:
    text = value.strip().lower() if isinstance(value, str) else ""
    if text == "damage":
        return DetailKind.DMG
    if text == "healing":
        return DetailKind.HEAL
    for kind in DetailKind:
        if kind.value == text:
            return kind
    return DetailKind.DMG


def normalize_stat(value: Any) -> str | None:
    text = value.strip().lower() if isinstance(value, str) else ""
    if not text:
        return None
    if text in ("em", "elementalmastery"):
        return "mastery"
    if text in ("atk", "hp", "def", "mastery"):
        return text
    return None


def _int_in_range(value: Any, lo: int, hi: int) -> int | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value):
        return None
    n = int(value)
    return n if lo <= n <= hi else None


def _str_field(raw: dict[str, Any], name: str) -> str | None:
    value = raw.get(name)
    return value.strip() if isinstance(value, str) else None


def validate_params(raw: Any, where: str, report: ValidationReport) -> dict[str, ParamValue]:
    """ASCII identifier keys, JSON-primitive values, at most MAX_PARAMS entries."""
    if not isinstance(raw, dict):
        return {}
    params: dict[str, ParamValue] = {}
    for key, value in raw.items():
        if len(params) >= MAX_PARAMS:
            report.drop(where, f"params beyond {MAX_PARAMS} entries")
            break
        key = str(key).strip()
        if not _PARAM_KEY_RE.match(key):
            report.drop(where, f"params key {key!r} is not an ASCII identifier")
            continue
        if isinstance(value, bool) or isinstance(value, str):
            params[key] = value
        elif isinstance(value, (int, float)) and math.isfinite(value):
            params[key] = value
        else:
            report.drop(where, f"params.{key} has unsupported value {value!r}")
    return params


def _validate_expr(
    text: str | None,
    context: ExprContext,
    field_name: str,
    tables: dict[str, list[str]],
    where: str,
    report: ValidationReport,
    kind: str = "dmg",
) -> Node | None:
    if not text:
        return None
    try:
        node = validate_fragment(text, context, field_name, kind)
        validate_table_refs(node, tables, field=field_name)
    except ExpressionError as exc:
        report.drop(where, str(exc))
        return None
    return node


def resolve_table(input: CalcSuggestInput, block: str, table: str) -> str | None:
    """Exact table name, or the one that matches after whitespace normalization."""
    names = input.tables.get(block, [])
    if table in names:
        return table
    squashed = re.sub(r"\s+", "", table)
    for name in names:
        if re.sub(r"\s+", "", name) == squashed:
            return name
    return None


def structured_sibling(input: CalcSuggestInput, block: str, table: str) -> str | None:
    """The `<table>2` style sibling that carries an array sample, if any."""
    if isinstance(input.sample(block, table), list):
        return None
    for candidate in (f"{table}2", f"{table}(2)", f"{table} (2)"):
        if input.has_table(block, candidate) and isinstance(input.sample(block, candidate), list):
            return candidate
    return None


def _reclassify(kind: DetailKind, title: str, table: str) -> DetailKind:
    if kind != DetailKind.DMG:
        return kind
    text = f"{title} {table}"
    if "伤害" in text:
        return kind
    if SHIELD_WORDS_RE.search(text):
        return DetailKind.SHIELD
    if HEAL_WORDS_RE.search(text):
        return DetailKind.HEAL
    return kind


def validate_detail(
    input: CalcSuggestInput,
    raw: Any,
    index: int,
    report: ValidationReport,
) -> Detail | None:
    """Validate one raw detail row; None when the row must be dropped."""
    if not isinstance(raw, dict):
        return None
    title = _str_field(raw, "title") or ""
    where = f"details[{index}]"
    if not title:
        report.drop(where, "missing title")
        return None
    where = f"details[{index}] {title}"
    tables = known_tables(input)
    kind = normalize_kind(raw.get("kind"))
    talent = _str_field(raw, "talent") or None
    table = _str_field(raw, "table") or None

    reaction = None
    if kind == DetailKind.REACTION:
        reaction = canonical_reaction(input.game, _str_field(raw, "reaction") or _str_field(raw, "ele"))
        if reaction is None:
            report.drop(where, f"unknown reaction {raw.get('reaction')!r}")
            return None
        if talent not in tables:
            talent = None
        table = None
    else:
        if talent not in tables:
            report.drop(where, f"unsupported talent key {talent!r}")
            return None
        resolved = resolve_table(input, talent, table or "")
        if resolved is None:
            report.drop(where, f"unknown table {table!r} in talent.{talent}")
            return None
        table = resolved
        kind = _reclassify(kind, title, table)
        sibling = structured_sibling(input, talent, table)
        if sibling and not PER_HIT_TITLE_RE.search(title):
            table = sibling

    cls = DETAIL_CLASSES[kind]
    values: dict[str, Any] = {"title": title, "talent": talent, "table": table}

    key = raw.get("key")
    if isinstance(key, str):
        values["key"] = key.strip()

    values["params"] = validate_params(raw.get("params"), where, report)

    cons = _int_in_range(raw.get("cons"), 1, 6)
    if cons is not None:
        values["cons"] = cons

    values["check"] = _validate_expr(
        _str_field(raw, "check"), ExprContext.DETAIL_CHECK, "detail.check", tables, where, report
    )
    values["dmg_expr"] = _validate_expr(
        _str_field(raw, "dmgExpr"), ExprContext.DETAIL_DMG_EXPR, "detail.dmgExpr", tables, where, report,
        kind=kind.value,
    )

    if kind == DetailKind.REACTION:
        values["reaction"] = reaction
        return ReactionDetail(**values)

    stat = normalize_stat(raw.get("stat"))
    if stat:
        values["stat"] = stat

    pick = raw.get("pick")
    if isinstance(pick, (int, float)) and not isinstance(pick, bool) and math.isfinite(pick):
        pick = int(pick)
        sample = input.sample(talent, table)
        if "/" in table and isinstance(sample, list) and 0 <= pick < len(sample):
            values["pick"] = pick
        else:
            report.drop(where, f"pick {pick} does not fit table {table!r}")

    if kind == DetailKind.DMG:
        ele_raw = _str_field(raw, "ele")
        if ele_raw:
            ele = sanitize_detail_ele(input.game, ele_raw)
            if ele is None:
                if canonical_reaction(input.game, ele_raw):
                    report.drop(where, f"ele {ele_raw!r} is a reaction id (use kind=reaction)")
                else:
                    report.drop(where, f"invalid ele {ele_raw!r}")
            else:
                values["ele"] = ele

    return cls(**values)


def validate_buff(
    input: CalcSuggestInput,
    raw: Any,
    index: int,
    report: ValidationReport,
) -> BuffEntry | None:
    """Validate one raw buff; None when the buff must be dropped."""
    if isinstance(raw, str):
        text = raw.strip()
        if CANNED_BUFF_RE.match(text):
            return text
        report.drop(f"buffs[{index}]", f"invalid buff id {raw!r}")
        return None
    if not isinstance(raw, dict):
        return None
    title = _str_field(raw, "title") or ""
    if not title:
        report.drop(f"buffs[{index}]", "missing title")
        return None
    where = f"buffs[{index}] {title}"
    tables = known_tables(input)
    data_raw = raw.get("data")
    if not isinstance(data_raw, dict) or not data_raw:
        report.drop(where, "missing data")
        return None

    data: dict[str, Any] = {}
    for key, value in data_raw.items():
        key = str(key).strip()
        if not is_allowed_buff_key(input.game, key):
            report.drop(where, f"data key {key!r} is not allowed")
            continue
        if isinstance(value, bool):
            report.drop(where, f"data.{key} is a boolean")
            continue
        if isinstance(value, (int, float)):
            if math.isfinite(value):
                data[key] = value
            else:
                report.drop(where, f"data.{key} is not finite")
            continue
        if isinstance(value, str):
            node = _validate_expr(value.strip(), ExprContext.BUFF_DATA, "buff.data", tables, where, report)
            if node is not None:
                data[key] = node
            continue
        report.drop(where, f"data.{key} has unsupported value")
    if not data:
        report.drop(where, "no usable data entries")
        return None

    sort = raw.get("sort")
    return Buff(
        title=title,
        data=data,
        sort=int(sort) if isinstance(sort, (int, float)) and not isinstance(sort, bool) and math.isfinite(sort) else None,
        cons=_int_in_range(raw.get("cons"), 1, 6),
        tree=_int_in_range(raw.get("tree"), 1, 4),
        check=_validate_expr(_str_field(raw, "check"), ExprContext.BUFF_CHECK, "buff.check", tables, where, report),
    )


def normalize_main_attr(raw: Any) -> str:
    if isinstance(raw, list):
        parts = [str(p) for p in raw]
    elif isinstance(raw, str):
        parts = raw.split(",")
    else:
        parts = []
    out: list[str] = []
    for part in parts:
        text = part.strip()
        if text and text not in out:
            out.append(text)
    return ",".join(out)


def validate_plan(
    input: CalcSuggestInput,
    raw: dict[str, Any],
    report: ValidationReport | None = None,
) -> CalcSuggestResult:
    """
    Validate a raw plan dict.

    Raises PlanValidationError when mainAttr is empty or no detail survives.
    """
    report = report if report is not None else ValidationReport()
    if not isinstance(raw, dict):
        report.valid = False
        report.errors.append("plan is not an object")
        raise PlanValidationError("plan is not an object", report.errors)

    main_attr = normalize_main_attr(raw.get("mainAttr"))
    if not main_attr:
        report.valid = False
        report.errors.append("mainAttr is empty")
        raise PlanValidationError("mainAttr is empty", report.errors)

    details: list[Detail] = []
    details_raw = raw.get("details") if isinstance(raw.get("details"), list) else []
    for idx, item in enumerate(details_raw):
        if len(details) >= MAX_DETAILS:
            report.drop(f"details[{idx}]", f"beyond {MAX_DETAILS} rows")
            break
        detail = validate_detail(input, item, idx, report)
        if detail is not None:
            details.append(detail)
    if not details:
        report.valid = False
        report.errors.append("no valid details")
        raise PlanValidationError("no valid details", report.errors)

    buffs: list[BuffEntry] = []
    buffs_raw = raw.get("buffs") if isinstance(raw.get("buffs"), list) else []
    for idx, item in enumerate(buffs_raw):
        if len(buffs) >= MAX_BUFFS:
            report.drop(f"buffs[{idx}]", f"beyond {MAX_BUFFS} buffs")
            break
        buff = validate_buff(input, item, idx, report)
        if buff is not None:
            buffs.append(buff)

    def_dmg_key = raw.get("defDmgKey")
    def_dmg_key = def_dmg_key.strip() if isinstance(def_dmg_key, str) else None
    if def_dmg_key and def_dmg_key not in {d.key for d in details}:
        report.drop("defDmgKey", f"{def_dmg_key!r} matches no detail key")
        def_dmg_key = None

    logger.debug("validated plan: %d details, %d buffs", len(details), len(buffs))
    return CalcSuggestResult(main_attr=main_attr, details=details, buffs=buffs, def_dmg_key=def_dmg_key or None)


def check_plan_expressions(input: CalcSuggestInput, plan: CalcSuggestResult) -> list[str]:
    """
    Re-run the safety checks and table resolver over every expression in plan.

    Returns a list of error strings (empty when everything passes).
    """
    tables = known_tables(input)
    errors: list[str] = []

    def run(node: Node, context: ExprContext, field_name: str, where: str, kind: str = "dmg") -> None:
        try:
            checked = check_node(node, context, field_name, kind)
            validate_table_refs(checked, tables, field=field_name)
        except ExpressionError as exc:
            errors.append(f"{where}: {exc}")

    for d in plan.details:
        if d.kind != DetailKind.REACTION and not input.has_table(d.talent, d.table):
            errors.append(f"{d.title}: unknown table {d.table!r} in talent.{d.talent}")
        if d.check is not None:
            run(d.check, ExprContext.DETAIL_CHECK, "detail.check", d.title)
        if d.dmg_expr is not None:
            run(d.dmg_expr, ExprContext.DETAIL_DMG_EXPR, "detail.dmgExpr", d.title, d.kind.value)
    for b in plan.object_buffs():
        for key, value in b.data.items():
            if not is_allowed_buff_key(input.game, key):
                errors.append(f"{b.title}: data key {key!r} is not allowed")
            if isinstance(value, Node):
                run(value, ExprContext.BUFF_DATA, "buff.data", b.title)
        if b.check is not None:
            run(b.check, ExprContext.BUFF_CHECK, "buff.check", b.title)
    return errors
