"""Scaling-stat pinning for SR damage rows."""

from __future__ import annotations

from ..plan_schema import CalcSuggestInput, CalcSuggestResult
from ..render.scaling import infer_table_base
from .common import dmg_rows


def pin_scaling_stat(input: CalcSuggestInput, plan: CalcSuggestResult) -> None:
    """
    Rows on hp/def tables get an explicit stat, so later passes and the
    renderer agree on the base even when the description mentions atk.
    """
    for d in dmg_rows(plan):
        if d.stat or d.dmg_expr is not None or not d.talent or not d.table:
            continue
        base = infer_table_base(input, d.talent, d.table)
        if base in ("hp", "def"):
            d.stat = base
