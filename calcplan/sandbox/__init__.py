"""Sandbox - tree-walking module evaluator, runtime stand-ins and the runtime verifier."""

from .values import UNDEFINED, HostObject, JSThrow, NativeFunction, to_number, to_boolean, to_string, typeof
from .evaluator import EvalContext, ModuleEvaluator, Scope, JSFunction, load_module, get_property
from .standins import (
    MAX_SHOWCASE_CALL,
    MAX_SHOWCASE_DETAIL,
    AttrItem,
    AttrMap,
    ParamMap,
    ScalarTalent,
    build_context,
    build_dmg_fn,
    talent_variants,
)
from .verifier import (
    CalcVerifier,
    VerificationReport,
    verify_calc_js,
    validate_buff_number,
    is_percent_like_key,
    is_crit_rate_key,
)

__all__ = [
    "UNDEFINED",
    "HostObject",
    "JSThrow",
    "NativeFunction",
    "to_number",
    "to_boolean",
    "to_string",
    "typeof",
    "EvalContext",
    "ModuleEvaluator",
    "Scope",
    "JSFunction",
    "load_module",
    "get_property",
    "MAX_SHOWCASE_CALL",
    "MAX_SHOWCASE_DETAIL",
    "AttrItem",
    "AttrMap",
    "ParamMap",
    "ScalarTalent",
    "build_context",
    "build_dmg_fn",
    "talent_variants",
    "CalcVerifier",
    "VerificationReport",
    "verify_calc_js",
    "validate_buff_number",
    "is_percent_like_key",
    "is_crit_rate_key",
]
