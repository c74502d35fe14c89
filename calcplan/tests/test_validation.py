"""
Tests for the plan validator.

Tests:
- Input parsing from the camelCase shape
- Detail row validation (tables, kinds, sibling preference, pick)
- Buff validation (allow-list, canned ids, tiers)
- Hard failures
"""

import pytest

from ..errors import PlanValidationError
from ..plan_schema import (
    Buff,
    CalcSuggestInput,
    DamageDetail,
    Game,
    HealDetail,
    ReactionDetail,
    ShieldDetail,
    ValidationReport,
    check_plan_expressions,
    is_allowed_buff_key,
    validate_plan,
)
from ..plan_schema.validation import MAX_DETAILS, normalize_main_attr
from .conftest import GS_INPUT, SR_INPUT, make_input


def _plan(*details, buffs=None, **extra):
    raw = {"mainAttr": "atk,cpct,cdmg", "details": list(details)}
    if buffs is not None:
        raw["buffs"] = buffs
    raw.update(extra)
    return raw


class TestInput:
    """CalcSuggestInput.from_dict."""

    def test_from_dict(self, gs_input):
        assert gs_input.game == Game.GS
        assert gs_input.tables["e"][0] == "技能伤害"
        assert gs_input.sample("e", "技能伤害") == 220.3
        assert gs_input.desc("q")
        assert not gs_input.trusted

    def test_unknown_game(self):
        with pytest.raises(ValueError):
            CalcSuggestInput.from_dict({"game": "zzz", "tables": {}})

    def test_duplicate_table_names_collapse(self):
        input = CalcSuggestInput.from_dict({"game": "sr", "tables": {"e": ["技能伤害", " 技能伤害 ", ""]}})
        assert input.tables == {"e": ["技能伤害"]}

    def test_trusted_upstream(self):
        assert make_input(SR_INPUT, upstreamDirect=True).trusted
        assert make_input(SR_INPUT, upstream={"source": "baseline"}).trusted


class TestDetailValidation:
    """Detail row checks."""

    def test_valid_plan(self, gs_input, gs_raw_plan):
        report = ValidationReport()
        plan = validate_plan(gs_input, gs_raw_plan, report)
        assert plan.main_attr == "atk,cpct,cdmg"
        assert [d.title for d in plan.details] == ["E伤害", "Q伤害", "重击伤害"]
        assert all(isinstance(d, DamageDetail) for d in plan.details)
        assert plan.def_dmg_key == "e"
        assert report.valid
        assert report.warnings == []

    def test_unknown_table_row_dropped(self, gs_input):
        report = ValidationReport()
        plan = validate_plan(gs_input, _plan(
            {"title": "E伤害", "talent": "e", "table": "技能伤害"},
            {"title": "幻觉", "talent": "e", "table": "不存在的表"},
        ), report)
        assert len(plan.details) == 1
        assert any("unknown table" in w for w in report.warnings)

    def test_gs_unsupported_talent_block(self, gs_input):
        report = ValidationReport()
        plan = validate_plan(gs_input, _plan(
            {"title": "E伤害", "talent": "e", "table": "技能伤害"},
            {"title": "天赋", "talent": "t", "table": "技能伤害"},
        ), report)
        assert len(plan.details) == 1
        assert any("unsupported talent key" in w for w in report.warnings)

    def test_table_whitespace_resolves(self, gs_input):
        plan = validate_plan(gs_input, _plan({"title": "E", "talent": "e", "table": "技能 伤害"}))
        assert plan.details[0].table == "技能伤害"

    def test_kind_synonyms_and_reclassification(self, gs_input):
        plan = validate_plan(gs_input, _plan(
            {"title": "E伤害", "kind": "damage", "talent": "e", "table": "技能伤害"},
            {"title": "护盾量", "talent": "e", "table": "护盾吸收量"},
        ))
        assert isinstance(plan.details[0], DamageDetail)
        assert isinstance(plan.details[1], ShieldDetail)

    def test_heal_kind(self, sr_input):
        plan = validate_plan(sr_input, _plan({"title": "治疗", "kind": "healing", "talent": "e", "table": "技能伤害"}))
        assert isinstance(plan.details[0], HealDetail)

    def test_reaction_row(self, sr_input):
        plan = validate_plan(sr_input, _plan(
            {"title": "战技", "talent": "e", "table": "技能伤害"},
            {"title": "击破", "kind": "reaction", "reaction": "雷"},
        ))
        row = plan.details[1]
        assert isinstance(row, ReactionDetail)
        assert row.reaction == "lightningBreak"
        assert row.table is None

    def test_unknown_reaction_dropped(self, sr_input):
        report = ValidationReport()
        validate_plan(sr_input, _plan(
            {"title": "战技", "talent": "e", "table": "技能伤害"},
            {"title": "?", "kind": "reaction", "reaction": "swirl"},
        ), report)
        assert any("unknown reaction" in w for w in report.warnings)

    def test_reaction_id_as_ele_dropped(self, gs_input):
        report = ValidationReport()
        plan = validate_plan(gs_input, _plan({"title": "E", "talent": "e", "table": "技能伤害", "ele": "swirl"}), report)
        assert plan.details[0].ele is None
        assert any("kind=reaction" in w for w in report.warnings)

    def test_ele_kept(self, gs_input):
        plan = validate_plan(gs_input, _plan({"title": "E蒸发", "talent": "e", "table": "技能伤害", "ele": "vaporize"}))
        assert plan.details[0].ele == "vaporize"

    def test_stat_normalized(self, sr_input):
        plan = validate_plan(sr_input, _plan({"title": "E", "talent": "e", "table": "技能伤害", "stat": "EM"}))
        assert plan.details[0].stat == "mastery"

    def test_structured_sibling_preferred(self):
        input = make_input(GS_INPUT, tables={"e": ["斩击伤害", "斩击伤害2"]},
                           tableSamples={"e": {"斩击伤害": 120, "斩击伤害2": [60, 2]}})
        plan = validate_plan(input, _plan(
            {"title": "斩击总伤", "talent": "e", "table": "斩击伤害"},
            {"title": "斩击单次", "talent": "e", "table": "斩击伤害"},
        ))
        assert plan.details[0].table == "斩击伤害2"
        assert plan.details[1].table == "斩击伤害"

    def test_pick_requires_slash_table(self):
        input = make_input(GS_INPUT, tables={"e": ["点按/长按伤害", "多段伤害"]},
                           tableSamples={"e": {"点按/长按伤害": [100, 200], "多段伤害": [50, 60]}})
        report = ValidationReport()
        plan = validate_plan(input, _plan(
            {"title": "长按", "talent": "e", "table": "点按/长按伤害", "pick": 1},
            {"title": "多段", "talent": "e", "table": "多段伤害", "pick": 1},
            {"title": "越界", "talent": "e", "table": "点按/长按伤害", "pick": 5},
        ), report)
        assert [d.pick for d in plan.details] == [1, None, None]
        assert sum("pick" in w for w in report.warnings) == 2

    def test_params_checked(self, gs_input):
        report = ValidationReport()
        plan = validate_plan(gs_input, _plan({
            "title": "E", "talent": "e", "table": "技能伤害",
            "params": {"q": True, "层数": 3, "stacks": 4, "bad": [1]},
        }), report)
        assert plan.details[0].params == {"q": True, "stacks": 4}
        assert len(report.warnings) == 2

    def test_unsafe_expressions_dropped(self, gs_input):
        report = ValidationReport()
        plan = validate_plan(gs_input, _plan({
            "title": "E", "talent": "e", "table": "技能伤害",
            "check": "process.exit(1)",
            "dmgExpr": "dmg(talent.e['不存在'], 'e')",
        }), report)
        row = plan.details[0]
        assert row.check is None
        assert row.dmg_expr is None
        assert len(report.warnings) == 2

    def test_cons_range(self, gs_input):
        plan = validate_plan(gs_input, _plan(
            {"title": "E", "talent": "e", "table": "技能伤害", "cons": 2},
            {"title": "Q", "talent": "q", "table": "技能伤害", "cons": 9},
        ))
        assert [d.cons for d in plan.details] == [2, None]

    def test_detail_cap(self, gs_input):
        rows = [{"title": f"E{i}", "talent": "e", "table": "技能伤害"} for i in range(MAX_DETAILS + 5)]
        plan = validate_plan(gs_input, _plan(*rows))
        assert len(plan.details) == MAX_DETAILS

    def test_def_dmg_key_must_match(self, gs_input):
        plan = validate_plan(gs_input, _plan({"title": "E", "talent": "e", "table": "技能伤害", "key": "e"},
                                             defDmgKey="q"))
        assert plan.def_dmg_key is None


class TestBuffValidation:
    """Buff row checks."""

    def test_allow_list(self):
        assert is_allowed_buff_key(Game.GS, "eDmg")
        assert is_allowed_buff_key(Game.GS, "atkPct")
        assert is_allowed_buff_key(Game.SR, "enemydmg")
        assert is_allowed_buff_key(Game.SR, "tDmg")
        assert not is_allowed_buff_key(Game.GS, "tDmg")
        assert not is_allowed_buff_key(Game.GS, "speedPct")
        assert is_allowed_buff_key(Game.GS, "_note")

    def test_buffs(self, gs_input):
        report = ValidationReport()
        plan = validate_plan(gs_input, _plan(
            {"title": "E", "talent": "e", "table": "技能伤害"},
            buffs=[
                "staticBuff",
                "not a buff id",
                {"title": "攻击", "cons": 2, "data": {"atkPct": 20, "speedPct": 10, "cpct": True}},
                {"title": "精通", "check": "params.q === true", "data": {"dmgPlus": "calc(attr.mastery) * 2"}},
                {"title": "空", "data": {"bogus": 1}},
                {"title": "", "data": {"dmg": 1}},
            ],
        ), report)
        assert plan.buffs[0] == "staticBuff"
        attack = plan.buffs[1]
        assert isinstance(attack, Buff)
        assert attack.data == {"atkPct": 20}
        assert attack.cons == 2
        mastery = plan.buffs[2]
        assert mastery.check is not None
        assert len(plan.buffs) == 3
        assert len(plan.object_buffs()) == 2

    def test_bad_check_keeps_buff(self, gs_input):
        plan = validate_plan(gs_input, _plan(
            {"title": "E", "talent": "e", "table": "技能伤害"},
            buffs=[{"title": "x", "check": "{ a: 1 }", "data": {"dmg": 10}}],
        ))
        assert plan.buffs[0].check is None
        assert plan.buffs[0].data == {"dmg": 10}

    def test_tier_ranges(self, gs_input):
        plan = validate_plan(gs_input, _plan(
            {"title": "E", "talent": "e", "table": "技能伤害"},
            buffs=[{"title": "x", "cons": 7, "tree": 2, "sort": 3.0, "data": {"dmg": 10}}],
        ))
        buff = plan.buffs[0]
        assert buff.cons is None
        assert buff.tree == 2
        assert buff.sort == 3


class TestHardFailures:
    """Errors that stop the pipeline."""

    def test_no_valid_details(self, gs_input):
        with pytest.raises(PlanValidationError) as exc:
            validate_plan(gs_input, _plan({"title": "x", "talent": "e", "table": "不存在"}))
        assert "no valid details" in str(exc.value)
        assert str(exc.value).startswith("[calcplan] invalid LLM plan: ")

    def test_empty_main_attr(self, gs_input):
        with pytest.raises(PlanValidationError) as exc:
            validate_plan(gs_input, {"mainAttr": " , ", "details": []})
        assert exc.value.reason == "mainAttr is empty"

    def test_not_an_object(self, gs_input):
        with pytest.raises(PlanValidationError):
            validate_plan(gs_input, ["details"])

    def test_main_attr_normalized(self):
        assert normalize_main_attr(" atk, cpct ,atk,cdmg") == "atk,cpct,cdmg"
        assert normalize_main_attr(["hp", "hp", "cdmg"]) == "hp,cdmg"


class TestExpressionRecheck:
    """check_plan_expressions over a validated plan."""

    def test_clean_plan(self, gs_input, gs_plan):
        assert check_plan_expressions(gs_input, gs_plan) == []

    def test_detects_bad_table(self, gs_input, gs_plan):
        gs_plan.details[0].table = "不存在"
        errors = check_plan_expressions(gs_input, gs_plan)
        assert len(errors) == 1
        assert "unknown table" in errors[0]

    def test_sr_blocks_known(self, sr_input):
        plan = validate_plan(sr_input, _plan({"title": "E", "talent": "e", "table": "技能伤害"}))
        assert check_plan_expressions(sr_input, plan) == []
