"""Script Renderer - plan -> calc.js module text, plus the inference it relies on."""

from .renderer import render_calc_js, build_module, ratio_function, numeric_guard, default_row
from .table_schema import ArrayTableSchema, infer_array_table_schema, infer_stat_from_text
from .scaling import (
    infer_dmg_base,
    infer_dmg_base_from_unit,
    infer_dmg_base_from_text_sample,
    infer_scale_stat_from_unit,
    infer_scale_stat_from_desc,
    infer_table_base,
    infer_detail_base,
    build_mixed_stat_dmg_expr,
)
from .def_params import infer_def_params, param_refs, param_name
from .keys import sanitize_key, nightsoul_keys, lunar_ele, detail_key
from .heuristic import heuristic_plan, pick_damage_table

__all__ = [
    "render_calc_js",
    "build_module",
    "ratio_function",
    "numeric_guard",
    "default_row",
    "ArrayTableSchema",
    "infer_array_table_schema",
    "infer_stat_from_text",
    "infer_dmg_base",
    "infer_dmg_base_from_unit",
    "infer_dmg_base_from_text_sample",
    "infer_scale_stat_from_unit",
    "infer_scale_stat_from_desc",
    "infer_table_base",
    "infer_detail_base",
    "build_mixed_stat_dmg_expr",
    "infer_def_params",
    "param_refs",
    "param_name",
    "sanitize_key",
    "nightsoul_keys",
    "lunar_ele",
    "detail_key",
    "heuristic_plan",
    "pick_damage_table",
]
