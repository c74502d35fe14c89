"""
Tests for the sandboxed module evaluator and runtime verifier.

Tests:
- Module evaluation and exported closures
- Budget exhaustion
- Detail and buff failures by stage
- Buff value plausibility bounds
- Stand-in context shape
"""

import pytest

from ..errors import SandboxTimeout, VerificationError
from ..plan_schema import Game
from ..sandbox import (
    EvalContext, JSThrow, build_context, build_dmg_fn, load_module, talent_variants,
    validate_buff_number, verify_calc_js,
)

RATIO = "const toRatio = (v) => { const n = Number(v); return Number.isFinite(n) ? n / 100 : 0 }\n"


def module(details: str, buffs: str = "") -> str:
    return (
        "// Auto-generated by tests.\n"
        + RATIO
        + f"export const details = [{details}]\n"
        + f"export const buffs = [{buffs}]\n"
    )


E_ROW = '{ title: "E伤害", talent: "e", dmg: ({ talent, attr, calc }, dmg) => dmg(talent.e["技能伤害"], "e") }'


class TestEvaluator:
    """Running modules and closures."""

    def test_exports(self):
        evaluator, exports = load_module(module(E_ROW, '{ title: "天赋", data: { atkPct: 20 } }'))
        assert exports["details"][0]["title"] == "E伤害"
        assert exports["buffs"][0]["data"] == {"atkPct": 20}

    def test_calling_a_closure(self, gs_input):
        evaluator, exports = load_module(module(E_ROW))
        ctx = build_context(gs_input, 100.0)
        result = evaluator.call(exports["details"][0]["dmg"], [ctx, build_dmg_fn(Game.GS)])
        assert result == {"dmg": 100.0, "avg": 100.0}

    def test_ratio_helper(self):
        evaluator, exports = load_module(RATIO + "export const x = toRatio(250)\nexport const y = toRatio(\"abc\")\n")
        assert exports["x"] == 2.5
        assert exports["y"] == 0

    def test_array_methods(self):
        js = "export const total = [1, 2, 3].reduce((acc, x) => acc + x, 0)\n"
        _, exports = load_module(js)
        assert exports["total"] == 6

    def test_step_budget(self):
        with pytest.raises(SandboxTimeout):
            load_module(module(E_ROW), EvalContext(max_steps=3))


class TestVerifier:
    """verify_calc_js accepts sane modules and names the failing stage."""

    def test_passes(self, gs_input):
        report = verify_calc_js(module(E_ROW, '{ title: "天赋", data: { atkPct: 20 } }'), gs_input)
        assert report.details_checked == 1
        assert report.buffs_checked == 1
        assert report.passes == ["N=100", "N=20", "N=1"]
        assert report.steps > 0

    def test_unparseable_module(self, gs_input):
        with pytest.raises(VerificationError) as exc:
            verify_calc_js("export const details = [", gs_input)
        assert exc.value.stage == "module"
        assert "Generated calc.js invalid module" in str(exc.value)

    def test_showcase_bound(self, gs_input):
        row = '{ title: "E伤害", dmg: ({ talent }, dmg) => dmg(talent.e["技能伤害"] * 1000000, "e") }'
        with pytest.raises(VerificationError) as exc:
            verify_calc_js(module(row), gs_input)
        assert exc.value.stage == "detail.dmg()"
        assert exc.value.target == "E伤害"
        assert "unreasonable showcase value" in exc.value.message

    def test_non_object_result(self, gs_input):
        with pytest.raises(VerificationError) as exc:
            verify_calc_js(module('{ title: "E", dmg: () => 5 }'), gs_input)
        assert "non-object" in exc.value.message

    def test_scalar_indexed_in_sr(self, sr_input):
        row = '{ title: "战技", dmg: ({ talent }, dmg) => dmg(talent.e["技能伤害"][0], "e") }'
        with pytest.raises(VerificationError) as exc:
            verify_calc_js(module(row), sr_input)
        assert exc.value.stage == "detail.dmg()"
        assert "numeric index access" in exc.value.message

    def test_unreasonable_crit_rate(self, gs_input):
        with pytest.raises(VerificationError) as exc:
            verify_calc_js(module(E_ROW, '{ title: "天赋", data: { cpct: 150 } }'), gs_input)
        assert exc.value.stage == "buff.data()"
        assert exc.value.pass_label == "N=20"
        assert exc.value.target == "天赋"
        assert "cpct=150" in exc.value.message

    def test_data_closure_runs_only_when_check_passes(self, gs_input):
        buff = '{ title: "触发", check: ({ params }) => params.triggered === true, data: { cpct: () => 1000 } }'
        verify_calc_js(module(E_ROW, buff), gs_input)

    def test_data_closure_boolean(self, gs_input):
        buff = '{ title: "天赋", data: { dmg: ({ params }) => params.q === true } }'
        with pytest.raises(VerificationError) as exc:
            verify_calc_js(module(E_ROW, buff), gs_input)
        assert "boolean true" in exc.value.message

    def test_throwing_check(self, gs_input):
        buff = '{ title: "天赋", check: ({ talent }) => talent.x["y"] > 1, data: { dmg: 10 } }'
        with pytest.raises(VerificationError) as exc:
            verify_calc_js(module(E_ROW, buff), gs_input)
        assert exc.value.stage == "buff.check()"


class TestBuffBounds:
    """Per-key plausibility of buff numbers."""

    @pytest.mark.parametrize("game, key, value", [
        (Game.GS, "cpct", 150),
        (Game.GS, "atkPct", 600),
        (Game.GS, "dmg", -90),
        (Game.SR, "kx", 120),
        (Game.SR, "enemydmg", 300),
        (Game.SR, "dmg", 6000),
    ])
    def test_rejected(self, game, key, value):
        with pytest.raises(JSThrow):
            validate_buff_number(game, key, value)

    @pytest.mark.parametrize("game, key, value", [
        (Game.GS, "cpct", 100),
        (Game.GS, "atkPlus", 5000),
        (Game.GS, "kx", -30),
        (Game.SR, "dmg", 3000),
        (Game.SR, "speedPlus", 200),
    ])
    def test_accepted(self, game, key, value):
        validate_buff_number(game, key, value)


class TestStandIns:
    """Synthetic runtime inputs."""

    def test_gs_talent_variants(self, gs_input):
        variants = talent_variants(gs_input)
        assert variants[:5] == ["a", "a2", "a3", "e", "q"]

    def test_sr_talent_variants(self, sr_input):
        assert talent_variants(sr_input) == ["a", "e", "q", "t"]

    def test_table_shapes(self, gs_input):
        ctx = build_context(gs_input, 20.0)
        assert ctx["talent"]["e"]["技能伤害"] == 20.0
        assert ctx["talent"]["e"]["护盾吸收量"] == [20.0, 20.0]
        assert ctx["cons"] == 6.0
