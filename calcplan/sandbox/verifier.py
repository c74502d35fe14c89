"""
Sandboxed Runtime Verifier.

Runs a rendered calc.js module against synthetic stand-ins and rejects it
when any closure throws or produces an implausible showcase number.

Passes:
- detail pass (N = 100 GS / 10 SR): every detail check for every
  currentTalent variant, then dmg(ctx, dmgFn), bounded by MAX_SHOWCASE_DETAIL
- buff passes (N = 20, 1 GS / 0.2, 0.01 SR): every buff check and data
  closure over element x currentTalent variants; data only runs when the
  check passes
"""

from __future__ import annotations
from dataclasses import dataclass, field
import logging
import math
import re
from typing import Any

from ..config import get_settings
from ..errors import ExpressionError, VerificationError
from ..expr import format_number
from ..plan_schema import CalcSuggestInput, Game
from .evaluator import EvalContext, ModuleEvaluator, get_property, load_module
from .standins import (
    MAX_SHOWCASE_DETAIL, AttrMap, ParamMap, assert_showcase_num, build_context, build_dmg_fn,
    element_variants, talent_variants,
)
from .values import UNDEFINED, JSThrow, is_callable, to_boolean, typeof

logger = logging.getLogger(__name__)

DETAIL_N = {Game.GS: 100.0, Game.SR: 10.0}
BUFF_N = {Game.GS: (20.0, 1.0), Game.SR: (0.2, 0.01)}

_FLAT_KEY_RE = re.compile(r"Plus$")


def is_crit_rate_key(key: str) -> bool:
    return key == "cpct" or key.endswith("Cpct")


def is_percent_like_key(key: str) -> bool:
    """Buff data keys whose values are percentages (bounded tighter than flat additions)."""
    if not key or key.startswith("_"):
        return False
    if key.endswith("Inc") or key.endswith("Multi"):
        return True
    if _FLAT_KEY_RE.search(key) or key in ("fyplus", "fybase"):
        return False
    if key.endswith(("Pct", "Dmg", "Cdmg", "Cpct")):
        return True
    return key in ("cpct", "cdmg", "dmg", "phy", "heal", "shield", "recharge", "kx", "enemyDef", "fypct", "fyinc")


def validate_buff_number(game: Game, key: str, value: float):
    """Raise JSThrow when a buff value is outside its plausible range."""
    shown = f"{key}={format_number(float(value))}"
    if not math.isfinite(value):
        raise JSThrow("buff.data() returned non-finite number")
    percent_like = is_percent_like_key(key)
    if is_crit_rate_key(key) and abs(value) > 100:
        raise JSThrow(f"buff.data() returned unreasonable cpct-like value: {shown}")
    big_dmg_key = key == "dmg" or key.endswith("Dmg")
    max_percent = 5000 if game == Game.SR and big_dmg_key else 500
    if percent_like and abs(value) > max_percent:
        raise JSThrow(f"buff.data() returned unreasonable percent-like value: {shown}")
    if game == Game.SR:
        if key == "kx" and abs(value) > 100:
            raise JSThrow(f"buff.data() returned unreasonable kx value: {shown}")
        if key in ("enemyDef", "enemyIgnore", "ignore") and abs(value) > 120:
            raise JSThrow(f"buff.data() returned unreasonable shred/ignore value: {shown}")
        if key == "enemydmg" and abs(value) > 250:
            raise JSThrow(f"buff.data() returned unreasonable enemydmg value: {shown}")
    if percent_like and value < -80:
        raise JSThrow(f"buff.data() returned suspicious negative percent-like value: {shown}")


@dataclass
class VerificationReport:
    """What a successful verification exercised."""
    details_checked: int = 0
    buffs_checked: int = 0
    passes: list[str] = field(default_factory=list)
    steps: int = 0


class CalcVerifier:
    """
    Verifies one rendered module for one character.

    Usage:
        report = CalcVerifier(input).verify(js)
    """

    def __init__(self, input: CalcSuggestInput, timeout_ms: int | None = None):
        self.input = input
        self.game = input.game
        self.timeout_ms = get_settings().sandbox_timeout_ms if timeout_ms is None else timeout_ms
        self.attr = AttrMap()
        self.params = ParamMap()
        self.talents = talent_variants(input)
        self.elements = element_variants(input.game)

    def verify(self, js: str) -> VerificationReport:
        context = EvalContext.with_timeout(self.timeout_ms)
        try:
            evaluator, exports = load_module(js, context)
        except ExpressionError as e:
            raise VerificationError("module", f"does not parse: {e}") from e
        except JSThrow as e:
            raise VerificationError("module", f"runtime extract failed: {e}") from e

        report = VerificationReport()
        details = exports.get("details")
        buffs = exports.get("buffs")
        details = details if isinstance(details, list) else []
        buffs = buffs if isinstance(buffs, list) else []

        label = f"N={format_number(DETAIL_N[self.game])}"
        ctx = self._context(DETAIL_N[self.game])
        dmg_fn = build_dmg_fn(self.game)
        for row in details:
            if self._verify_detail(evaluator, row, ctx, dmg_fn):
                report.details_checked += 1
        report.passes.append(label)

        for n in BUFF_N[self.game]:
            label = f"N={format_number(n)}"
            ctx = self._context(n)
            for buff in buffs:
                self._verify_buff(evaluator, buff, ctx, label)
            report.passes.append(label)

        report.buffs_checked = sum(1 for b in buffs if isinstance(b, dict))
        report.steps = context.steps
        logger.debug(
            "verified %d details, %d buffs in %d steps", report.details_checked, report.buffs_checked, report.steps
        )
        return report

    def _context(self, n: float) -> dict[str, Any]:
        return build_context(self.input, n, attr=self.attr, params=self.params)

    # -- details -------------------------------------------------------

    def _verify_detail(self, evaluator: ModuleEvaluator, row: Any, ctx: dict[str, Any], dmg_fn: Any) -> bool:
        if not isinstance(row, dict):
            return False
        dmg = row.get("dmg", UNDEFINED)
        if not is_callable(dmg):
            return False
        title = _title(row)

        check = row.get("check", UNDEFINED)
        if is_callable(check):
            prev = ctx["currentTalent"]
            try:
                for talent in self.talents:
                    ctx["currentTalent"] = talent
                    evaluator.call(check, [ctx])
            except JSThrow as e:
                raise VerificationError("detail.check()", str(e), target=title) from e
            ctx["currentTalent"] = prev

        prev = ctx["currentTalent"]
        talent = row.get("talent")
        if isinstance(talent, str) and talent in self.talents:
            ctx["currentTalent"] = talent
        try:
            ret = evaluator.call(dmg, [ctx, dmg_fn])
            ctx["currentTalent"] = prev
            if ret is UNDEFINED or ret is None or typeof(ret) != "object":
                raise JSThrow(f"detail.dmg() returned non-object ({typeof(ret)})")
            limit = MAX_SHOWCASE_DETAIL[self.game]
            assert_showcase_num(get_property(ret, "dmg"), "detail.dmg()", limit)
            assert_showcase_num(get_property(ret, "avg"), "detail.dmg()", limit)
        except JSThrow as e:
            raise VerificationError("detail.dmg()", str(e), target=title) from e
        return True

    # -- buffs ---------------------------------------------------------

    def _verify_buff(self, evaluator: ModuleEvaluator, buff: Any, ctx: dict[str, Any], label: str):
        if not isinstance(buff, dict):
            return
        title = _title(buff)
        check = buff.get("check", UNDEFINED)
        has_check = is_callable(check)

        if has_check:
            try:
                for _ in self._variants(ctx):
                    evaluator.call(check, [ctx])
            except JSThrow as e:
                raise VerificationError("buff.check()", str(e), target=title, pass_label=label) from e

        data = buff.get("data", UNDEFINED)
        if not isinstance(data, dict):
            return
        for key, value in data.items():
            if typeof(value) == "number":
                try:
                    validate_buff_number(self.game, key, float(value))
                except JSThrow as e:
                    raise VerificationError("buff.data()", str(e), target=title, pass_label=label) from e
                continue
            if not is_callable(value):
                continue
            try:
                for _ in self._variants(ctx):
                    if has_check and not to_boolean(evaluator.call(check, [ctx])):
                        continue
                    self._check_data_result(key, evaluator.call(value, [ctx]))
            except JSThrow as e:
                raise VerificationError("buff.data()", str(e), target=title, pass_label=label) from e

    def _variants(self, ctx: dict[str, Any]):
        """Iterate element x currentTalent, restoring ctx when done."""
        prev_talent, prev_element = ctx["currentTalent"], ctx["element"]
        for element in self.elements:
            ctx["element"] = element
            for talent in self.talents:
                ctx["currentTalent"] = talent
                yield element, talent
        ctx["element"] = prev_element
        ctx["currentTalent"] = prev_talent

    def _check_data_result(self, key: str, ret: Any):
        if typeof(ret) == "number":
            validate_buff_number(self.game, key, float(ret))
        elif ret is UNDEFINED or ret is None or ret is False or ret == "":
            return
        elif ret is True:
            raise JSThrow("buff.data() returned boolean true")
        else:
            raise JSThrow(f"buff.data() returned non-number ({typeof(ret)})")


def _title(obj: dict[str, Any]) -> str:
    title = obj.get("title")
    return title if isinstance(title, str) else ""


def verify_calc_js(js: str, input: CalcSuggestInput, timeout_ms: int | None = None) -> VerificationReport:
    """
    Verify rendered module text for input.

    Raises:
        VerificationError: on the first failing row / buff (SandboxTimeout when out of budget)
    """
    return CalcVerifier(input, timeout_ms=timeout_ms).verify(js)
