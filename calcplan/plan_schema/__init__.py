"""Plan schema - data model, per-game vocabularies and the plan validator."""

from .plan import (
    Game,
    DetailKind,
    CalcSuggestInput,
    Detail,
    DamageDetail,
    HealDetail,
    ShieldDetail,
    ReactionDetail,
    Buff,
    BuffEntry,
    CalcSuggestResult,
    convert_detail,
)
from .vocab import canonical_reaction, is_allowed_buff_key, sanitize_detail_ele, runtime_ele_ok, talent_blocks
from .validation import (
    ValidationReport,
    validate_plan,
    validate_detail,
    validate_buff,
    check_plan_expressions,
    known_tables,
    normalize_kind,
    normalize_stat,
)

__all__ = [
    "Game",
    "DetailKind",
    "CalcSuggestInput",
    "Detail",
    "DamageDetail",
    "HealDetail",
    "ShieldDetail",
    "ReactionDetail",
    "Buff",
    "BuffEntry",
    "CalcSuggestResult",
    "convert_detail",
    "canonical_reaction",
    "is_allowed_buff_key",
    "sanitize_detail_ele",
    "runtime_ele_ok",
    "talent_blocks",
    "ValidationReport",
    "validate_plan",
    "validate_detail",
    "validate_buff",
    "check_plan_expressions",
    "known_tables",
    "normalize_kind",
    "normalize_stat",
]
