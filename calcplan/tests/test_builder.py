"""
Tests for the calc builder and its cache.

Tests:
- Successful builds from a supplied plan
- Heuristic fallback on missing, invalid and failing plans
- Build caching
"""

from ..builder import BuildStatus, CalcBuilder, build_calc
from ..cache import BuildCache


class TestCalcBuilder:
    """validate -> repair -> render -> verify."""

    def test_success(self, gs_input, gs_raw_plan):
        result = CalcBuilder(created_by="tests").build(gs_input, gs_raw_plan)

        assert result.status == BuildStatus.SUCCESS
        assert result.used_plan
        assert result.error is None
        assert result.js.startswith("// Auto-generated by tests.\n")
        assert result.verification.details_checked == 3
        assert result.repair is not None
        assert len(result.plan.details) == 3

    def test_to_dict(self, gs_input, gs_raw_plan):
        out = CalcBuilder(created_by="tests").build(gs_input, gs_raw_plan).to_dict()
        assert out["usedPlan"] is True
        assert "error" not in out
        assert out["plan"]["mainAttr"] == "atk,cpct,cdmg"

    def test_no_plan(self, gs_input):
        result = CalcBuilder(created_by="tests").build(gs_input)

        assert result.status == BuildStatus.FALLBACK
        assert not result.used_plan
        assert result.error == "no plan supplied"
        assert "export const details" in result.js
        assert result.repair is None

    def test_invalid_plan_falls_back(self, gs_input):
        raw = {"mainAttr": "atk,cpct,cdmg", "details": [{"title": "E伤害", "talent": "e", "table": "不存在"}]}
        result = CalcBuilder(created_by="tests").build(gs_input, raw)

        assert result.status == BuildStatus.FALLBACK
        assert "invalid LLM plan" in result.error
        assert "no valid details" in result.error

    def test_failed_verification_falls_back(self, gs_input, gs_raw_plan):
        gs_raw_plan["details"][0]["dmgExpr"] = 'dmg(talent.e["技能伤害"] * 1000000, "e")'
        result = CalcBuilder(created_by="tests").build(gs_input, gs_raw_plan)

        assert result.status == BuildStatus.FALLBACK
        assert "Generated calc.js invalid detail.dmg()" in result.error
        assert "1000000" not in result.js

    def test_without_verification(self, gs_input, gs_raw_plan):
        result = CalcBuilder(created_by="tests", verify=False).build(gs_input, gs_raw_plan)
        assert result.status == BuildStatus.SUCCESS
        assert result.verification is None

    def test_validation_warnings_surface(self, gs_input, gs_raw_plan):
        gs_raw_plan["details"].append({"title": "Q额外", "talent": "q", "table": "不存在"})
        result = CalcBuilder(created_by="tests").build(gs_input, gs_raw_plan)
        assert result.used_plan
        assert any("不存在" in w for w in result.warnings)

    def test_build_calc(self, sr_input, sr_raw_plan):
        result = build_calc(sr_input, sr_raw_plan, created_by="tests")
        assert result.used_plan
        assert result.verification.passes == ["N=10", "N=0.2", "N=0.01"]


class TestBuildCaching:
    """Repeated builds are served from disk."""

    def test_second_build_is_cached(self, gs_input, gs_raw_plan, tmp_path):
        builder = CalcBuilder(created_by="tests", use_cache=True, cache_dir=str(tmp_path))
        first = builder.build(gs_input, gs_raw_plan)
        second = builder.build(gs_input, gs_raw_plan)

        assert first.status == BuildStatus.SUCCESS
        assert second.status == BuildStatus.CACHED
        assert second.js == first.js
        assert second.used_plan
        assert len(builder.cache.list_cached()) == 1

    def test_different_plan_is_a_miss(self, gs_input, gs_raw_plan, tmp_path):
        builder = CalcBuilder(created_by="tests", use_cache=True, cache_dir=str(tmp_path))
        builder.build(gs_input, gs_raw_plan)
        result = builder.build(gs_input)
        assert result.status == BuildStatus.FALLBACK
        assert len(builder.cache.list_cached()) == 2


class TestBuildCache:
    """File-backed entries."""

    INPUT = {"game": "gs", "name": "x"}
    PLAN = {"details": []}

    def test_miss(self, tmp_path):
        assert BuildCache(tmp_path).get(self.INPUT, self.PLAN) is None

    def test_put_get(self, tmp_path):
        cache = BuildCache(tmp_path)
        cache.put(self.INPUT, self.PLAN, {"js": "x", "usedPlan": True})
        assert cache.get(self.INPUT, self.PLAN) == {"js": "x", "usedPlan": True}
        assert cache.get(self.INPUT, None) is None

    def test_key_ignores_dict_order(self, tmp_path):
        cache = BuildCache(tmp_path)
        assert cache.make_key({"a": 1, "b": 2}, None) == cache.make_key({"b": 2, "a": 1}, None)

    def test_builder_version_change(self, tmp_path):
        BuildCache(tmp_path, builder_version="1").put(self.INPUT, self.PLAN, {"js": "x"})
        assert BuildCache(tmp_path, builder_version="2").get(self.INPUT, self.PLAN) is None

    def test_corrupt_entry_removed(self, tmp_path):
        cache = BuildCache(tmp_path)
        cache.put(self.INPUT, self.PLAN, {"js": "x"})
        path = tmp_path / f"{cache.make_key(self.INPUT, self.PLAN)}.json"
        path.write_text("{not json", encoding="utf-8")

        assert cache.get(self.INPUT, self.PLAN) is None
        assert not path.exists()

    def test_invalidate_and_clear(self, tmp_path):
        cache = BuildCache(tmp_path)
        cache.put(self.INPUT, self.PLAN, {"js": "x"})
        cache.put(self.INPUT, None, {"js": "y"})
        cache.invalidate(self.INPUT, None)
        assert len(cache.list_cached()) == 1
        cache.clear()
        assert cache.list_cached() == []
