"""
Repair Pipeline - declared, ordered stages over a validated plan.

Each stage:
- is a named RepairPass with the games it applies to and the stages it must run after
- mutates the plan in place and must be idempotent
- is followed by a re-check of every expression in the plan; a stage that
  introduced an expression failing the safety checker or table resolver is
  reverted and logged, never kept

The pipeline never raises for a misbehaving stage: repair ambiguity is soft.
"""

from __future__ import annotations
from copy import deepcopy
from dataclasses import dataclass, field
import logging
from typing import Callable

from ..errors import CalcPlanError
from ..plan_schema import CalcSuggestInput, CalcSuggestResult, Game, check_plan_expressions
from . import arrays, buffs, dmg_expr, flags, showcase, stats, titles, totals

logger = logging.getLogger(__name__)

PassFn = Callable[[CalcSuggestInput, CalcSuggestResult], None]

ALL_GAMES = (Game.GS, Game.SR)


@dataclass(frozen=True)
class RepairPass:
    """
    One repair stage.

    trusted=False marks stages that must not run when the input carries a
    trusted upstream source.
    """
    name: str
    run: PassFn
    games: tuple[Game, ...] = ALL_GAMES
    after: tuple[str, ...] = ()
    trusted: bool = True
    doc: str = ""

    def applies(self, input: CalcSuggestInput) -> bool:
        if input.game not in self.games:
            return False
        return self.trusted or not input.trusted


@dataclass
class PassOutcome:
    name: str
    changed: bool = False
    skipped: bool = False
    reverted: bool = False
    errors: list[str] = field(default_factory=list)


@dataclass
class RepairReport:
    """What each stage did to one plan."""
    outcomes: list[PassOutcome] = field(default_factory=list)

    @property
    def changed(self) -> list[str]:
        return [o.name for o in self.outcomes if o.changed]

    @property
    def reverted(self) -> list[str]:
        return [o.name for o in self.outcomes if o.reverted]

    def outcome(self, name: str) -> PassOutcome | None:
        for o in self.outcomes:
            if o.name == name:
                return o
        return None


class RepairPipeline:
    """
    Ordered repair stages.

    Usage:
        pipeline = default_pipeline()
        repaired = pipeline.run(input, plan)
    """

    def __init__(self, passes: list[RepairPass]):
        seen: set[str] = set()
        for p in passes:
            if p.name in seen:
                raise ValueError(f"duplicate repair pass: {p.name}")
            missing = [dep for dep in p.after if dep not in seen]
            if missing:
                raise ValueError(f"repair pass {p.name} must run after {', '.join(missing)}")
            seen.add(p.name)
        self.passes = list(passes)

    @property
    def names(self) -> list[str]:
        return [p.name for p in self.passes]

    def run(
        self,
        input: CalcSuggestInput,
        plan: CalcSuggestResult,
        report: RepairReport | None = None,
    ) -> CalcSuggestResult:
        """Return a repaired copy of plan; the argument is left untouched."""
        plan = deepcopy(plan)
        report = report if report is not None else RepairReport()
        baseline = set(check_plan_expressions(input, plan))

        for p in self.passes:
            outcome = PassOutcome(p.name)
            report.outcomes.append(outcome)
            if not p.applies(input):
                outcome.skipped = True
                continue

            snapshot = deepcopy(plan)
            before = plan.to_dict()
            try:
                p.run(input, plan)
            except CalcPlanError as e:
                logger.warning("repair pass %s failed, reverted: %s", p.name, e)
                outcome.reverted = True
                outcome.errors.append(str(e))
                plan = snapshot
                continue

            new_errors = [e for e in check_plan_expressions(input, plan) if e not in baseline]
            if new_errors:
                logger.warning("repair pass %s produced invalid expressions, reverted: %s", p.name, new_errors[0])
                outcome.reverted = True
                outcome.errors.extend(new_errors)
                plan = snapshot
                continue

            outcome.changed = plan.to_dict() != before
            if outcome.changed:
                logger.debug("repair pass %s changed the plan", p.name)
        return plan


DEFAULT_PASSES = [
    RepairPass("normalize-titles", titles.normalize_titles, games=(Game.GS,),
               doc="普攻一段 -> 普攻首段"),
    RepairPass("normalize-keys", titles.normalize_keys,
               doc="lower-case key tokens, drop banned tokens, nightsoul tagging"),
    RepairPass("route-state-conversion", titles.route_state_conversion, games=(Game.GS,),
               after=("normalize-keys",), doc="Q/E state conversions route to a/a2/a3"),
    RepairPass("strip-crit-expectation", dmg_expr.strip_crit_expectation,
               doc="drop hand-written crit expectation factors"),
    RepairPass("fix-array-calls", dmg_expr.fix_array_calls, games=(Game.GS,),
               doc="dmg() on mixed-stat array tables -> dmg.basic()"),
    RepairPass("split-ab-arrays", arrays.split_ab_arrays,
               doc="A/B two-component tables -> two rows"),
    RepairPass("pick-from-title", arrays.pick_from_title, games=(Game.GS,),
               after=("split-ab-arrays",), doc="title words pick an array component"),
    RepairPass("pin-scaling-stat", stats.pin_scaling_stat, games=(Game.SR,),
               doc="hp/def scaling rows get an explicit stat"),
    RepairPass("delta-multipliers", dmg_expr.delta_multipliers,
               doc="multiplier-increase tables add to their base table"),
    RepairPass("redundant-inline-multiplier", dmg_expr.redundant_inline_multiplier,
               after=("delta-multipliers",), doc="drop inline factors already modeled as buffs"),
    RepairPass("multi-hit-totals", totals.multi_hit_totals,
               doc="total-titled rows multiply by the hit count"),
    RepairPass("break-damage", totals.break_damage, games=(Game.SR,),
               doc="break ratio tables -> reaction rows with toughness variants"),
    RepairPass("stack-per-layer", totals.stack_per_layer, games=(Game.GS,),
               doc="base + per-layer damage with a stack param"),
    RepairPass("low-hp-flag", flags.low_hp_flag,
               doc="low-HP titles set the HP flag"),
    RepairPass("kx-sign", buffs.kx_sign,
               doc="shred/ignore values are non-negative"),
    RepairPass("filter-buffs", buffs.filter_buffs, games=(Game.GS,),
               doc="drop buff keys the hint text does not support"),
    RepairPass("synthesize-buffs", buffs.synthesize_buffs, trusted=False,
               doc="add buffs the hint text implies and the plan lacks"),
    RepairPass("relax-over-gating", buffs.relax_over_gating,
               after=("synthesize-buffs", "low-hp-flag"), doc="drop guards that can never pass"),
    RepairPass("key-scope", buffs.key_scope,
               after=("normalize-keys", "relax-over-gating"), doc="narrow block-wide buffs to one table"),
    RepairPass("showcase-canonicalization", showcase.canonicalize,
               doc="fingerprinted kits get a fixed row set"),
]


def default_pipeline() -> RepairPipeline:
    return RepairPipeline(DEFAULT_PASSES)


def repair_plan(
    input: CalcSuggestInput,
    plan: CalcSuggestResult,
    report: RepairReport | None = None,
) -> CalcSuggestResult:
    """Run the default pipeline over plan and return the repaired copy."""
    return default_pipeline().run(input, plan, report=report)
