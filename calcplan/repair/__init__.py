"""Heuristic Repair Engine - ordered, idempotent passes over a validated plan."""

from .pipeline import (
    RepairPass,
    PassOutcome,
    RepairReport,
    RepairPipeline,
    DEFAULT_PASSES,
    default_pipeline,
    repair_plan,
)
from .rules import TextRule, RuleMatch, RULES, match_line, parse_tier
from .showcase import Kit, KITS

__all__ = [
    "RepairPass",
    "PassOutcome",
    "RepairReport",
    "RepairPipeline",
    "DEFAULT_PASSES",
    "default_pipeline",
    "repair_plan",
    "TextRule",
    "RuleMatch",
    "RULES",
    "match_line",
    "parse_tier",
    "Kit",
    "KITS",
]
