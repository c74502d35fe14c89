"""
Scaling-stat inference.

Precedence for a damage row: explicit table unit > table text sample >
(GS normal attacks, or any GS table with no per-table hint) atk > skill
description read with negative-evidence contexts.
"""

from __future__ import annotations
import re

from ..expr import Binary, Call, Ident, Member, Node, Num, Str, make_table_ref
from ..expr.build import calc
from ..plan_schema import CalcSuggestInput, Detail, DetailKind, Game
from ..text import has_pct, normalize_text

_MASTERY_RE = re.compile(r"(元素精通|精通|mastery|elemental mastery|\bem\b)", re.IGNORECASE)
_HP_UNIT_RE = re.compile(r"(生命上限|生命值上限|最大生命值|生命值)")
_HP_RE = re.compile(r"(生命上限|生命值上限|最大生命值|生命值|\bhp\b)", re.IGNORECASE)
_DEF_RE = re.compile(r"(防御力|\bdef\b)", re.IGNORECASE)
_ATK_RE = re.compile(r"(攻击力|攻击|\batk\b)", re.IGNORECASE)
_ANY_STAT_RE = re.compile(r"(生命|防御|精通|\bhp\b|\bdef\b|mastery|\bem\b|攻击力|攻击|\batk\b)", re.IGNORECASE)
_NON_ATK_STAT_RE = re.compile(r"(生命|防御|精通|\bhp\b|\bdef\b|mastery|\bem\b)", re.IGNORECASE)
_PLAIN_UNIT_EXCLUDE_RE = re.compile(
    r"(生命上限|生命值上限|最大生命值|生命值|hp|防御力|防御|def|精通|元素精通|mastery|\bem\b)", re.IGNORECASE
)
_ENHANCED_BLOCK_RE = re.compile(r"^(a|e|q|t|z|me|mt)\d+$")


def infer_dmg_base_from_unit(unit: object) -> str | None:
    """hp / def / mastery when a unit label names that stat."""
    text = normalize_text(unit)
    if not text:
        return None
    if _MASTERY_RE.search(text):
        return "mastery"
    if _HP_UNIT_RE.search(text):
        return "hp"
    if "防御力" in text:
        return "def"
    return None


def infer_scale_stat_from_unit(unit: object) -> str | None:
    text = normalize_text(unit)
    if not text:
        return None
    if _MASTERY_RE.search(text):
        return "mastery"
    if _HP_RE.search(text):
        return "hp"
    if _DEF_RE.search(text):
        return "def"
    if _ATK_RE.search(text):
        return "atk"
    return None


def infer_dmg_base_from_text_sample(text: object) -> str | None:
    """Stat named in a table text sample; a bare percentage reads as atk."""
    norm = normalize_text(text)
    if not norm:
        return None
    stat = infer_scale_stat_from_unit(norm)
    if stat:
        return stat
    return "atk" if has_pct(norm) else None


def infer_scale_stat_from_desc(desc: object) -> str:
    text = normalize_text(desc)
    if not text:
        return "atk"
    if re.search(r"(元素精通|精通)", text):
        return "mastery"
    if re.search(r"(基于|按).{0,20}(生命上限|生命值上限|最大生命值|生命值)", text):
        return "hp"
    if re.search(r"(基于|按).{0,20}防御力", text):
        return "def"
    return "atk"


_DMG_WORD = "(?:伤害|造成|提高|提升|增加|加成|转化)"
_HEAL_WORD = "(?:治疗|恢复)"
_EQ_WORD = "(?:等同于|相当于|同等于|视为|基于|按)"
_BONUS_VAL_WORD = "(?:提高|提升|增加|加成)(?:的)?值"
_STAT_WORDS = {
    "hp": "(?:生命上限|生命值上限|最大生命值|生命值)",
    "def": "(?:防御力)",
    "mastery": "(?:元素精通|精通)",
}


def _ctx(pattern: str, text: str) -> bool:
    return re.search(pattern, text) is not None


def _damage_ctx(word: str, text: str) -> bool:
    return (
        _ctx(f"(?:基于|按).{{0,20}}{word}.{{0,30}}{_DMG_WORD}", text)
        or _ctx(f"{_DMG_WORD}.{{0,30}}(?:基于|按).{{0,20}}{word}", text)
        or _ctx(f"{_EQ_WORD}.{{0,20}}{word}.{{0,30}}伤害", text)
        or _ctx(f"伤害.{{0,30}}{_EQ_WORD}.{{0,20}}{word}", text)
    )


def _bonus_ctx(word: str, text: str) -> bool:
    """The stat feeds an additive bonus, not the base multiplier."""
    return (
        _ctx(f"{_BONUS_VAL_WORD}.{{0,20}}{word}", text)
        or _ctx(f"(?:提高|提升|增加|加成).{{0,12}}(?:相当于|等同于).{{0,8}}{word}", text)
        or _ctx(f"(?:基于|按).{{0,20}}{word}.{{0,10}}(?:提高|提升|增加|加成)", text)
    )


def infer_dmg_base(desc: object) -> str:
    """
    Damage base stat from a skill description.

    Only flips away from atk when the description ties the stat to damage,
    and never for healing, additive-bonus or inherited-HP wording.
    """
    text = normalize_text(desc)
    if not text or "伤害" not in text:
        return "atk"
    hp = _STAT_WORDS["hp"]
    hp_heal = (
        _ctx(f"{_HEAL_WORD}.{{0,30}}(?:基于|按).{{0,20}}{hp}", text)
        or _ctx(f"(?:基于|按).{{0,20}}{hp}.{{0,30}}{_HEAL_WORD}", text)
        or _ctx(f"{_HEAL_WORD}.{{0,30}}{_EQ_WORD}.{{0,20}}{hp}", text)
        or _ctx(f"{_EQ_WORD}.{{0,20}}{hp}.{{0,30}}{_HEAL_WORD}", text)
    )
    hp_inherit = _ctx(f"(?:继承|取决于).{{0,20}}{hp}", text) or _ctx(f"{hp}.{{0,20}}(?:继承|取决于)", text)

    mastery = _STAT_WORDS["mastery"]
    if _damage_ctx(mastery, text) and not _bonus_ctx(mastery, text):
        return "mastery"
    if _damage_ctx(hp, text) and not (hp_heal or _bonus_ctx(hp, text) or hp_inherit):
        return "hp"
    defw = _STAT_WORDS["def"]
    if _damage_ctx(defw, text) and not _bonus_ctx(defw, text):
        return "def"
    return "atk"


def base_block(block: str) -> str | None:
    """e2 -> e, mt1 -> mt; None for plain blocks."""
    m = _ENHANCED_BLOCK_RE.match(block or "")
    if not m or m.group(1) == block:
        return None
    return m.group(1)


def _desc_base(input: CalcSuggestInput, block: str) -> str:
    if not block:
        return "atk"
    if input.is_gs and block == "a":
        return "atk"
    return infer_dmg_base(input.desc(block))


def infer_table_base(input: CalcSuggestInput, block: str, table: str) -> str:
    """Stat a damage table multiplies, before any explicit row override."""
    unit = input.unit(block, table)
    sample_text = input.text_sample(block, table)
    if not sample_text and table.endswith("2"):
        sample_text = input.text_sample(block, table[:-1])
    text_norm = normalize_text(sample_text)
    unit_norm = normalize_text(unit)

    desc_base = _desc_base(input, block)
    desc_norm = normalize_text(input.desc(block))
    if desc_base == "atk" and not (desc_norm and _ANY_STAT_RE.search(desc_norm)):
        parent = base_block(block)
        if parent:
            desc_base = _desc_base(input, parent)

    unit_base = infer_dmg_base_from_unit(unit)
    mixed_scale = (
        unit_base is not None
        and bool(text_norm)
        and re.search(r"[+＋]", text_norm) is not None
        and _ATK_RE.search(text_norm) is not None
        and _NON_ATK_STAT_RE.search(text_norm) is None
    )
    if mixed_scale:
        unit_base = None
    if unit_base:
        return unit_base

    text_base = infer_dmg_base_from_text_sample(sample_text)
    if text_base:
        return text_base

    plain_pct_unit = bool(unit_norm) and has_pct(unit_norm) and not _PLAIN_UNIT_EXCLUDE_RE.search(unit_norm)
    plain_pct_text = (
        bool(text_norm)
        and has_pct(text_norm)
        and not re.search(r"[+*/xX×]", text_norm)
        and not _NON_ATK_STAT_RE.search(text_norm)
    )
    has_hint = bool(unit_norm) or bool(text_norm)
    if (input.is_gs and not has_hint) or plain_pct_unit or plain_pct_text:
        return "atk"
    return desc_base or "atk"


def infer_detail_base(input: CalcSuggestInput, detail: Detail) -> str:
    """Base stat for a damage row; SR rows may pin hp/def/atk via detail.stat."""
    stat = getattr(detail, "stat", None)
    if input.game == Game.SR and detail.kind == DetailKind.DMG and stat in ("hp", "def", "atk"):
        return stat
    return infer_table_base(input, detail.talent or "", detail.table or "")


def infer_heal_stat(input: CalcSuggestInput, detail: Detail) -> str:
    stat = getattr(detail, "stat", None)
    if stat:
        return stat
    return (
        infer_scale_stat_from_unit(input.unit(detail.talent, detail.table))
        or infer_scale_stat_from_desc(input.desc(detail.talent))
    )


# -- SR mixed-stat variants ----------------------------------------------

_VARIANT_PAREN_RE = re.compile(r"^(.*?)[（(]?\s*(\d{1,2})\s*[)）]$")
_VARIANT_TAIL_RE = re.compile(r"^(.*?)(\d{1,2})$")
_MIXED_STAT_RE = re.compile(
    r"\$\d+\[[^\]]*\][^$]{0,40}?(累计已损失生命值|已损失生命值|攻击力|防御力|生命上限|生命值上限|生命值)"
)
_LOST_HP_CAP_RE = re.compile(r"最高不超过[^%]{0,80}生命[^%]{0,80}?([0-9]+(?:\.[0-9]+)?)\s*[%％]")


def parse_variant_name(table: str) -> tuple[str, int]:
    """'技能伤害(2)' -> ('技能伤害', 2); names without a suffix are variant 1."""
    name = (table or "").strip()
    if not name:
        return "", 1
    m = _VARIANT_PAREN_RE.match(name)
    if m:
        return m.group(1).strip(), max(1, int(m.group(2)))
    m = _VARIANT_TAIL_RE.match(name)
    if m and m.group(1).strip():
        return m.group(1).strip(), max(1, int(m.group(2)))
    return name, 1


def pick_adjacent_segment(desc: object, want_adjacent: bool) -> str:
    text = normalize_text(desc)
    idx = text.find("相邻")
    if idx == -1:
        return text
    return text[idx:] if want_adjacent else text[:idx]


def infer_mixed_stat_order(segment: str) -> list[str]:
    """Stats in the order the description's $N[...] placeholders name them."""
    out: list[str] = []
    for m in _MIXED_STAT_RE.finditer(segment or ""):
        word = m.group(1)
        if "已损失" in word:
            out.append("lostHp")
        elif "攻击" in word:
            out.append("atk")
        elif "防御" in word:
            out.append("def")
        else:
            out.append("hp")
        if len(out) >= 6:
            break
    return out


def pick_lost_hp_cap_ratio(desc: object) -> float | None:
    m = _LOST_HP_CAP_RE.search(normalize_text(desc))
    if not m:
        return None
    ratio = float(m.group(1)) / 100
    if ratio <= 0 or ratio > 1.5:
        return None
    return ratio


def build_mixed_stat_dmg_expr(
    input: CalcSuggestInput,
    block: str,
    table: str,
    key: str,
    ele: str | None = None,
) -> Node | None:
    """
    SR rows whose table has numbered variants that each scale a different
    stat render as one dmg.basic() sum over the variants.
    """
    if input.game != Game.SR or not block or not table:
        return None
    names = input.tables.get(block, [])
    base_name, _ = parse_variant_name(table)
    if not names or not base_name:
        return None

    variants: dict[int, str] = {}
    for name in names:
        base, idx = parse_variant_name(name)
        if base == base_name and 1 <= idx <= 6 and idx not in variants:
            variants[idx] = name
    if len(variants) < 2:
        return None
    ordered = [variants[i] for i in sorted(variants)]

    desc = input.desc(block)
    stats = infer_mixed_stat_order(pick_adjacent_segment(desc, "相邻" in base_name))
    if len(stats) < len(ordered):
        return None
    stats = stats[: len(ordered)]
    if len(set(stats)) <= 1:
        return None
    samples = input.table_samples.get(block, {})
    if any(name in samples for name in ordered):
        return None

    cap = None
    if "lostHp" in stats:
        cap = pick_lost_hp_cap_ratio(desc)
        if cap is None:
            return None

    total: Node | None = None
    for name, stat in zip(ordered, stats):
        ratio = Call(Ident("toRatio"), (make_table_ref(block, name),))
        if stat == "lostHp":
            base: Node = Binary("*", calc("hp"), Num(round(cap, 6)))
        else:
            base = calc(stat)
        term = Binary("*", base, ratio)
        total = term if total is None else Binary("+", total, term)

    args: list[Node] = [total, Str(key or block)]
    if ele:
        args.append(Str(ele))
    return Call(Member(Ident("dmg"), "basic"), tuple(args))
