"""
Tests for calc.js rendering.

Tests:
- Module layout and exports
- Per-game ratio conversion
- Table, heal and shield rows
- Buff data guards
- Default row selection
- Default parameter inference
- Heuristic fallback plan
"""

import pytest

from ..expr import parse_expression, to_source
from ..plan_schema import validate_plan
from ..render import default_row, numeric_guard, render_calc_js
from ..render.def_params import infer_def_params
from ..render.heuristic import heuristic_plan, pick_damage_table
from .conftest import GS_INPUT, GS_PLAN, SR_INPUT, SR_PLAN, make_input


class TestModuleLayout:
    """Header, export order and separators."""

    def test_header_and_footer(self, gs_input, gs_plan):
        js = render_calc_js(gs_input, gs_plan, created_by="tests")
        assert js.startswith("// Auto-generated by tests.\n")
        assert js.rstrip().endswith('export const createdBy = "tests"')

    def test_export_order(self, gs_input, gs_plan):
        js = render_calc_js(gs_input, gs_plan, created_by="tests")
        order = [
            "const toRatio",
            "export const details",
            "export const defDmgIdx",
            "export const buffs",
            "export const createdBy",
        ]
        positions = [js.index(name) for name in order]
        assert positions == sorted(positions)

    def test_default_row_block(self, gs_input, gs_plan):
        js = render_calc_js(gs_input, gs_plan, created_by="tests")
        assert (
            "export const defDmgIdx = 0\n"
            'export const defDmgKey = "e"\n'
            'export const mainAttr = "atk,cpct,cdmg"\n'
        ) in js

    def test_created_by_whitespace_collapsed_in_header(self, gs_input, gs_plan):
        js = render_calc_js(gs_input, gs_plan, created_by="calc  bot")
        assert js.startswith("// Auto-generated by calc bot.\n")


class TestRatio:
    """toRatio divides by 100 for GS only."""

    def test_gs(self, gs_input, gs_plan):
        js = render_calc_js(gs_input, gs_plan, created_by="tests")
        assert "const toRatio = (v) => { const n = Number(v); return Number.isFinite(n) ? n / 100 : 0 }" in js

    def test_sr(self, sr_input, sr_plan):
        js = render_calc_js(sr_input, sr_plan, created_by="tests")
        assert "const toRatio = (v) => { const n = Number(v); return Number.isFinite(n) ? n : 0 }" in js
        assert "n / 100" not in js


class TestDetailRows:
    """Row objects built from validated details."""

    def test_table_row(self, gs_input, gs_plan):
        js = render_calc_js(gs_input, gs_plan, created_by="tests")
        assert 'title: "E伤害"' in js
        assert 'const t = talent.e["技能伤害"]' in js
        assert "if (Array.isArray(t)) {" in js
        assert 'return dmg(t, "e")' in js

    def test_row_key(self, gs_input, gs_plan):
        js = render_calc_js(gs_input, gs_plan, created_by="tests")
        assert 'dmgKey: "a2"' in js
        assert 'return dmg(t, "a2")' in js

    def test_heal_expression_row(self, gs_input, gs_raw_plan):
        gs_raw_plan["details"].append({
            "title": "Q治疗量",
            "kind": "heal",
            "talent": "q",
            "table": "技能伤害",
            "dmgExpr": "heal(calc(attr.hp) * 0.1)",
        })
        plan = validate_plan(gs_input, gs_raw_plan)
        js = render_calc_js(gs_input, plan, created_by="tests")
        assert "const heal = dmg.heal" in js
        assert "return heal(calc(attr.hp) * 0.1)" in js

    def test_shield_table_row(self, gs_input, gs_raw_plan):
        gs_raw_plan["details"].append({"title": "E护盾量", "talent": "e", "table": "护盾吸收量"})
        plan = validate_plan(gs_input, gs_raw_plan)
        js = render_calc_js(gs_input, plan, created_by="tests")
        assert "({ attr, talent, calc }, { shield }) =>" in js
        assert 'const t = talent.e["护盾吸收量"]' in js
        assert "shield(" in js

    def test_row_params(self, gs_input, gs_raw_plan):
        gs_raw_plan["details"][0]["params"] = {"q": True}
        plan = validate_plan(gs_input, gs_raw_plan)
        js = render_calc_js(gs_input, plan, created_by="tests")
        assert "params: { q: true }" in js


class TestBuffs:
    """Buff objects and their data."""

    def test_numeric_data(self, gs_input, gs_plan):
        js = render_calc_js(gs_input, gs_plan, created_by="tests")
        assert '{ title: "天赋：攻击力提高", data: { atkPct: 20 } }' in js

    def test_expression_data_is_guarded(self, gs_input, gs_raw_plan):
        gs_raw_plan["buffs"] = [{"title": "天赋：攻击力提高", "data": {"atkPlus": "calc(attr.hp) * 0.02"}}]
        plan = validate_plan(gs_input, gs_raw_plan)
        js = render_calc_js(gs_input, plan, created_by="tests")
        assert 'typeof v === "number"' in js
        assert "const v = calc(attr.hp) * 0.02" in js

    def test_numeric_guard(self):
        text = to_source(numeric_guard(parse_expression("calc(attr.atk) * 0.1")))
        assert "const v = calc(attr.atk) * 0.1" in text
        assert "Number.isFinite(v) ? v : 0" in text
        assert text.startswith("({ talent, attr, calc, params, cons, weapon, trees, element, currentTalent }) =>")

    def test_check_closure(self, gs_input, gs_raw_plan):
        gs_raw_plan["buffs"] = [{"title": "2命：暴击率提高", "cons": 2, "check": "params.q === true", "data": {"cpct": 12}}]
        plan = validate_plan(gs_input, gs_raw_plan)
        js = render_calc_js(gs_input, plan, created_by="tests")
        assert "cons: 2" in js
        assert "check: ({ talent, attr, calc, params, cons, weapon, trees, element, currentTalent }) => params.q === true" in js


class TestDefaultRow:
    """defDmgIdx / defDmgKey resolution."""

    @pytest.mark.parametrize("key, expected", [
        ("e", (0, "e")),
        ("q", (1, "q")),
        ("a2", (2, "a2")),
        ("zzz", (0, "e")),
    ])
    def test_default_row(self, gs_input, gs_raw_plan, key, expected):
        gs_raw_plan["defDmgKey"] = key
        plan = validate_plan(gs_input, gs_raw_plan)
        assert default_row(plan, [d.key for d in plan.details]) == expected

    def test_missing_key_uses_first_row(self, gs_input, gs_raw_plan):
        del gs_raw_plan["defDmgKey"]
        plan = validate_plan(gs_input, gs_raw_plan)
        assert default_row(plan, [d.key for d in plan.details]) == (0, "e")


def with_buffs(input, raw_plan, buffs, details=None):
    raw = {**raw_plan, "details": [dict(d) for d in (details or raw_plan["details"])], "buffs": buffs}
    return validate_plan(input, raw)


class TestDefParams:
    """defParams inference from kit text and from the params buffs read."""

    def test_nothing_to_default(self, gs_input, gs_plan, sr_input, sr_plan):
        assert infer_def_params(gs_input, gs_plan) is None
        assert infer_def_params(sr_input, sr_plan) is None
        assert "defParams" not in render_calc_js(gs_input, gs_plan, created_by="tests")

    def test_gs_nightsoul(self, gs_plan):
        input = make_input(GS_INPUT, talentDesc={"e": "进入夜魂加持状态，造成雷元素伤害。"})
        assert infer_def_params(input, gs_plan) == {"Nightsoul": True}
        js = render_calc_js(input, gs_plan, created_by="tests")
        assert "export const defParams = { Nightsoul: true }\n" in js

    def test_gs_hexenzirkel(self, gs_plan):
        input = make_input(GS_INPUT, talentDesc={"q": "作为魔女会成员，造成雷元素范围伤害。"})
        assert infer_def_params(input, gs_plan) == {"Hexenzirkel": True}

    def test_gs_moonsign_only_when_read(self, gs_plan):
        input = make_input(GS_INPUT, talentDesc={"q": "月兆达到3级时，造成雷元素伤害。"})
        assert infer_def_params(input, gs_plan) is None

        plan = with_buffs(input, GS_PLAN, [
            {"title": "月兆增伤", "check": "params.Moonsign >= 2", "data": {"dmg": 10}},
        ])
        assert infer_def_params(input, plan) == {"Moonsign": 3}

    def test_gs_counts(self, gs_input):
        plan = with_buffs(gs_input, GS_PLAN, [
            {"title": "叠层", "check": "params.stacks >= 3", "data": {"atkPct": 5}},
            {"title": "元素种类", "check": "params.elementTypes >= 2", "data": {"dmg": 10}},
        ])
        assert infer_def_params(gs_input, plan) == {"elementTypes": 4, "stacks": 3}

        details = [
            {"title": "E伤害(2层)", "talent": "e", "table": "技能伤害", "key": "e", "params": {"stacks": 2}},
            {"title": "E伤害(4层)", "talent": "e", "table": "技能伤害", "key": "e", "params": {"stacks": 4}},
        ]
        plan = with_buffs(gs_input, GS_PLAN, [
            {"title": "叠层", "check": "params.stacks >= 3", "data": {"atkPct": 5}},
        ], details=details)
        assert infer_def_params(gs_input, plan) == {"stacks": 4}

    def test_sr_memosprite(self, sr_plan):
        input = make_input(SR_INPUT, tables={**SR_INPUT["tables"], "me": ["技能伤害"]})
        assert infer_def_params(input, sr_plan) == {"Memosprite": True}

    def test_sr_stack_cap_from_hints(self):
        input = make_input(SR_INPUT, buffHints=["天赋: 每层使造成的伤害提高8%，最多叠加5层"])
        plan = with_buffs(input, SR_PLAN, [
            {"title": "天赋：每层增伤", "data": {"dmg": "params.layers * 8"}},
            {"title": "负面效果", "data": {"dmg": "params.debuffCount * 10"}},
        ])
        assert infer_def_params(input, plan) == {"debuffCount": 3, "layers": 5}
        js = render_calc_js(input, plan, created_by="tests")
        assert "export const defParams = { debuffCount: 3, layers: 5 }\n" in js

    def test_sr_param_set_by_row_not_defaulted(self):
        input = make_input(SR_INPUT, buffHints=["天赋: 每层使造成的伤害提高8%，最多叠加5层"])
        details = [{**SR_PLAN["details"][0], "params": {"layers": 2}}, SR_PLAN["details"][1]]
        plan = with_buffs(input, SR_PLAN, [
            {"title": "天赋：每层增伤", "data": {"dmg": "params.layers * 8"}},
        ], details=details)
        assert infer_def_params(input, plan) is None


class TestHeuristicPlan:
    """Fallback rows from table names and descriptions."""

    def test_damage_table_choice(self):
        assert pick_damage_table(["伤害提高", "冷却时间", "技能伤害"]) == "技能伤害"
        assert pick_damage_table(["持续时间", "冷却时间"]) is None

    def test_gs(self, gs_input):
        plan = heuristic_plan(gs_input)
        assert plan["mainAttr"] == "atk,cpct,cdmg"
        assert plan["defDmgKey"] == "e"
        assert plan["details"] == [
            {"title": "E伤害", "talent": "e", "table": "技能伤害", "key": "e"},
            {"title": "Q伤害", "talent": "q", "table": "技能伤害", "key": "q"},
            {"title": "普攻伤害", "talent": "a", "table": "一段伤害", "key": "a", "ele": "phy"},
        ]

    def test_sr(self, sr_input):
        plan = heuristic_plan(sr_input)
        assert plan["mainAttr"] == "atk,cpct,cdmg"
        assert plan["defDmgKey"] == "e"
        assert [(d["title"], d["talent"], d["table"]) for d in plan["details"]] == [
            ("普攻伤害", "a", "技能伤害"),
            ("战技伤害", "e", "技能伤害"),
            ("终结技伤害", "q", "技能伤害"),
            ("天赋伤害", "t", "技能伤害"),
        ]

    def test_sr_heal_and_extra_ultimate_rows(self):
        input = make_input(
            SR_INPUT,
            tables={**SR_INPUT["tables"], "e": ["百分比生命", "固定值"], "q": ["技能伤害", "回合开始伤害"]},
            talentDesc={"e": "为我方全体回复生命值。", "q": "对敌方全体造成伤害。"},
        )
        plan = heuristic_plan(input)
        heal = plan["details"][1]
        assert heal == {
            "title": "战技治疗量", "kind": "heal", "talent": "e", "table": "百分比生命", "key": "e", "stat": "hp",
        }
        assert {"title": "附加伤害", "talent": "q", "table": "回合开始伤害", "key": "q"} in plan["details"]
        assert plan["mainAttr"] == "atk,cpct,cdmg,hp"

    def test_sr_shield_adds_def(self):
        input = make_input(
            SR_INPUT,
            tables={**SR_INPUT["tables"], "e": ["百分比防御", "固定值"]},
            talentDesc={"e": "为我方全体提供护盾。", "q": "对敌方全体造成伤害。"},
        )
        plan = heuristic_plan(input)
        shield = plan["details"][1]
        assert (shield["kind"], shield["table"], shield["stat"]) == ("shield", "百分比防御", "def")
        assert plan["mainAttr"] == "atk,cpct,cdmg,def"
