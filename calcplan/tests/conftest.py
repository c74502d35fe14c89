"""
Pytest fixtures for calcplan tests.
"""

import pytest

from ..plan_schema import CalcSuggestInput, CalcSuggestResult, validate_plan


GS_INPUT = {
    "game": "gs",
    "name": "测试角色",
    "elem": "雷",
    "id": 10000099,
    "weapon": "sword",
    "star": 5,
    "tables": {
        "a": ["一段伤害", "二段伤害", "重击伤害", "下坠期间伤害"],
        "e": ["技能伤害", "护盾吸收量", "冷却时间"],
        "q": ["技能伤害", "持续时间"],
    },
    "tableSamples": {
        "a": {"一段伤害": 80.5, "二段伤害": 78.2, "重击伤害": 150.1, "下坠期间伤害": 63.9},
        "e": {"技能伤害": 220.3, "护盾吸收量": [16.0, 1540], "冷却时间": 12},
        "q": {"技能伤害": 420.0, "持续时间": 12},
    },
    "tableTextSamples": {
        "e": {"护盾吸收量": "16%生命值上限+1540"},
    },
    "talentDesc": {
        "e": "造成雷元素范围伤害，并创造一个护盾。",
        "q": "造成雷元素范围伤害。",
    },
    "buffHints": [
        "1命: 元素战技造成的伤害提高40%",
        "2命: 暴击率提高12%",
    ],
}

SR_INPUT = {
    "game": "sr",
    "name": "测试角色",
    "elem": "雷",
    "tables": {
        "a": ["技能伤害"],
        "e": ["技能伤害", "相邻目标伤害"],
        "q": ["技能伤害"],
        "t": ["技能伤害"],
    },
    "tableSamples": {
        "a": {"技能伤害": 1.0},
        "e": {"技能伤害": 2.0, "相邻目标伤害": 0.8},
        "q": {"技能伤害": 3.6},
        "t": {"技能伤害": 1.2},
    },
    "talentDesc": {
        "e": "对指定敌方单体造成等同于攻击力的雷属性伤害。",
        "q": "对敌方全体造成等同于攻击力的雷属性伤害。",
    },
    "buffHints": [
        "3魂: 攻击命中时, 造成的伤害提高160%",
    ],
}

GS_PLAN = {
    "mainAttr": "atk,cpct,cdmg",
    "defDmgKey": "e",
    "details": [
        {"title": "E伤害", "talent": "e", "table": "技能伤害", "key": "e"},
        {"title": "Q伤害", "talent": "q", "table": "技能伤害", "key": "q"},
        {"title": "重击伤害", "talent": "a", "table": "重击伤害", "key": "a2"},
    ],
    "buffs": [
        {"title": "天赋：攻击力提高", "data": {"atkPct": 20}},
    ],
}

SR_PLAN = {
    "mainAttr": "atk,cpct,cdmg",
    "defDmgKey": "e",
    "details": [
        {"title": "战技伤害(主目标)", "talent": "e", "table": "技能伤害", "key": "e"},
        {"title": "终结技伤害", "talent": "q", "table": "技能伤害", "key": "q"},
    ],
    "buffs": [
        {"title": "行迹：暴击率提高", "tree": 1, "data": {"cpct": 12}},
    ],
}


def make_input(base: dict, **changes) -> CalcSuggestInput:
    """Input from a fixture dict with top-level keys replaced."""
    data = dict(base)
    data.update(changes)
    return CalcSuggestInput.from_dict(data)


@pytest.fixture
def gs_input() -> CalcSuggestInput:
    """A GS character with a/e/q tables and tier-prefixed hints."""
    return CalcSuggestInput.from_dict(GS_INPUT)


@pytest.fixture
def sr_input() -> CalcSuggestInput:
    """An SR character with a/e/q/t tables."""
    return CalcSuggestInput.from_dict(SR_INPUT)


@pytest.fixture
def gs_raw_plan() -> dict:
    return {**GS_PLAN, "details": [dict(d) for d in GS_PLAN["details"]]}


@pytest.fixture
def sr_raw_plan() -> dict:
    return {**SR_PLAN, "details": [dict(d) for d in SR_PLAN["details"]]}


@pytest.fixture
def gs_plan(gs_input, gs_raw_plan) -> CalcSuggestResult:
    """The GS raw plan after validation."""
    return validate_plan(gs_input, gs_raw_plan)


@pytest.fixture
def sr_plan(sr_input, sr_raw_plan) -> CalcSuggestResult:
    """The SR raw plan after validation."""
    return validate_plan(sr_input, sr_raw_plan)
