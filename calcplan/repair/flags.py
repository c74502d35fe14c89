"""Showcase-state flags implied by row titles."""

from __future__ import annotations
import re

from ..plan_schema import CalcSuggestInput, CalcSuggestResult
from ..render.def_params import param_refs
from ..text import normalize_text

LOW_HP_TITLE_RE = re.compile(
    r"(低血|半血|残血|生命值?(?:低于|少于|不高于|不足|<|≤)|(?:低于|少于|不足)\s*\d+\s*[%％].{0,4}生命"
    r"|below\s*\d+\s*%\s*hp|low\s*hp)",
    re.IGNORECASE,
)
_HP_FLAG_RE = re.compile(r"^(half|halfhp|lowhp|hplow|hpbelow\d*|below\d*hp|low\w*hp)$", re.IGNORECASE)

DEFAULT_HP_FLAG = {"gs": "halfHp", "sr": "lowHp"}


def hp_flag(input: CalcSuggestInput, plan: CalcSuggestResult) -> str:
    """The low-HP param buffs read, or the per-game default."""
    names: set[str] = set()
    for buff in plan.object_buffs():
        names |= param_refs(buff.check)
        for value in buff.data.values():
            if not isinstance(value, (int, float)):
                names |= param_refs(value)
    used = sorted(n for n in names if _HP_FLAG_RE.match(n))
    return used[0] if used else DEFAULT_HP_FLAG[input.game.value]


def low_hp_flag(input: CalcSuggestInput, plan: CalcSuggestResult) -> None:
    flag = None
    for d in plan.details:
        if not LOW_HP_TITLE_RE.search(normalize_text(d.title)):
            continue
        flag = flag or hp_flag(input, plan)
        d.params.setdefault(flag, True)
