"""
Heuristic fallback plan, built from table names and descriptions only.

Used when no LLM plan is available or the supplied one is unusable.
"""

from __future__ import annotations
import re
from typing import Any

from ..plan_schema import CalcSuggestInput, Game
from ..text import normalize_text

_BUFF_LIKE_RE = re.compile(
    r"(提高|提升|增加|降低|减少|加成|增伤|穿透|抗性穿透|无视|概率|几率|命中|抵抗|击破效率|削韧|冷却|能量|回合|持续时间)"
)
_HP_WORD_RE = re.compile(r"(生命上限|生命值上限|最大生命值|生命值)")
MAX_HEURISTIC_DETAILS = 12


def pick_damage_table(tables: list[str]) -> str | None:
    """First table that names damage and is not a buff/utility table."""
    for name in tables:
        if "伤害" in name and not _BUFF_LIKE_RE.search(name):
            return name
    return None


def _sr_stat(tables: list[str], fallback: str) -> str:
    joined = "|".join(tables)
    if _HP_WORD_RE.search(joined):
        return "hp"
    if "防御力" in joined:
        return "def"
    if re.search(r"(攻击力|攻击)", joined):
        return "atk"
    return fallback


def _heal_like(text: str) -> bool:
    return bool(re.search(r"(治疗|回复)", text)) or ("恢复" in text and bool(_HP_WORD_RE.search(text)))


def _gs_plan(input: CalcSuggestInput) -> dict[str, Any]:
    details = []
    e = pick_damage_table(input.tables.get("e", []))
    q = pick_damage_table(input.tables.get("q", []))
    a = pick_damage_table(input.tables.get("a", []))
    if e:
        details.append({"title": "E伤害", "talent": "e", "table": e, "key": "e"})
    if q:
        details.append({"title": "Q伤害", "talent": "q", "table": q, "key": "q"})
    if a:
        details.append({"title": "普攻伤害", "talent": "a", "table": a, "key": "a", "ele": "phy"})
    return {
        "mainAttr": "atk,cpct,cdmg",
        "defDmgKey": "e" if e else "q" if q else "a",
        "details": details,
        "buffs": [],
    }


def _sr_support_row(block: str, tables: list[str], kind: str, title: str) -> dict[str, Any] | None:
    if kind == "heal":
        pct_re = r"(百分比生命|生命值百分比|百分比)"
    else:
        pct_re = r"(百分比防御|防御力百分比|百分比生命|生命值百分比|百分比)"
    prefer = next((t for t in tables if re.search(pct_re, t)), "")
    table = prefer or next((t for t in tables if "固定值" in t), "")
    if not table:
        return None
    stat = _sr_stat(tables, "hp" if kind == "heal" else "def")
    return {"title": title, "kind": kind, "talent": block, "table": table, "key": block, "stat": stat}


def _sr_plan(input: CalcSuggestInput) -> dict[str, Any]:
    details: list[dict[str, Any]] = []
    a = pick_damage_table(input.tables.get("a", []))
    if a:
        details.append({"title": "普攻伤害", "talent": "a", "table": a, "key": "a"})

    labels = {"e": ("战技", "战技伤害"), "q": ("终结技", "终结技伤害")}
    descs = {}
    for block, (prefix, dmg_title) in labels.items():
        tables = input.tables.get(block, [])
        desc = normalize_text(input.desc(block))
        descs[block] = desc
        has_heal = _heal_like(desc) or any(re.search(r"(治疗|回复)", t) for t in tables)
        has_shield = "护盾" in desc or any("护盾" in t for t in tables)
        row = None
        if has_shield:
            row = _sr_support_row(block, tables, "shield", f"{prefix}护盾量")
        elif has_heal:
            row = _sr_support_row(block, tables, "heal", f"{prefix}治疗量")
        else:
            table = pick_damage_table(tables)
            if table:
                row = {"title": dmg_title, "talent": block, "table": table, "key": block}
        if row:
            details.append(row)

    q_main = next(
        (d["table"] for d in details if d["talent"] == "q" and d.get("kind") not in ("heal", "shield")), ""
    )
    for name in input.tables.get("q", []):
        if "伤害" not in name or name == q_main:
            continue
        if len(details) >= MAX_HEURISTIC_DETAILS:
            break
        details.append({"title": name.replace("回合开始伤害", "附加伤害"), "talent": "q", "table": name, "key": "q"})

    t = pick_damage_table(input.tables.get("t", []))
    if t:
        details.append({"title": "反击伤害" if "反击" in t else "天赋伤害", "talent": "t", "table": t, "key": "t"})

    main_attr = ["atk", "cpct", "cdmg"]
    joined = f"{descs['e']} {descs['q']}"
    if any(d.get("kind") == "heal" for d in details) or _HP_WORD_RE.search(joined):
        main_attr.append("hp")
    if any(d.get("kind") == "shield" for d in details) or "防御力" in joined:
        main_attr.append("def")

    talents = {d["talent"] for d in details}
    def_key = next((k for k in ("e", "q", "a") if k in talents), "e")
    return {"mainAttr": ",".join(main_attr), "defDmgKey": def_key, "details": details, "buffs": []}


def heuristic_plan(input: CalcSuggestInput) -> dict[str, Any]:
    """Raw plan dict in the same shape an LLM would return."""
    if input.game == Game.GS:
        return _gs_plan(input)
    return _sr_plan(input)
