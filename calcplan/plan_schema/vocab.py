"""
Per-game vocabularies: reaction ids, element tags, buff-data keys.
"""

from __future__ import annotations
import re

from .plan import Game

GS_TALENT_BLOCKS = ("a", "e", "q")
SR_TALENT_BLOCKS = ("a", "e", "q", "t")

# Canonical reaction ids. Keys are lower-cased synonyms.
GS_REACTIONS = (
    "swirl", "crystallize", "bloom", "hyperBloom", "burgeon", "burning", "overloaded",
    "electroCharged", "superConduct", "shatter", "lunarCharged", "lunarBloom", "lunarCrystallize",
)
GS_REACTION_SYNONYMS = {
    "扩散": "swirl",
    "结晶": "crystallize",
    "绽放": "bloom",
    "超绽放": "hyperBloom",
    "烈绽放": "burgeon",
    "燃烧": "burning",
    "超载": "overloaded",
    "感电": "electroCharged",
    "超导": "superConduct",
    "碎冰": "shatter",
    "月感电": "lunarCharged",
    "月绽放": "lunarBloom",
    "月结晶": "lunarCrystallize",
}

SR_BREAKS = (
    "physicalBreak", "fireBreak", "iceBreak", "lightningBreak", "windBreak", "quantumBreak",
    "imaginaryBreak",
)
SR_REACTIONS = SR_BREAKS + (
    "superBreak", "shock", "burn", "windShear", "bleed", "entanglement", "elation",
)
SR_REACTION_SYNONYMS = {
    "物理": "physicalBreak",
    "火": "fireBreak",
    "冰": "iceBreak",
    "雷": "lightningBreak",
    "风": "windBreak",
    "量子": "quantumBreak",
    "虚数": "imaginaryBreak",
    "超击破": "superBreak",
    "触电": "shock",
    "灼烧": "burn",
    "风化": "windShear",
    "裂伤": "bleed",
    "纠缠": "entanglement",
}

# Element name -> break id, used when reading "<elem>属性击破" text.
SR_ELEM_BREAK = {
    "physical": "physicalBreak", "物理": "physicalBreak",
    "fire": "fireBreak", "火": "fireBreak",
    "ice": "iceBreak", "冰": "iceBreak",
    "lightning": "lightningBreak", "雷": "lightningBreak",
    "wind": "windBreak", "风": "windBreak",
    "quantum": "quantumBreak", "量子": "quantumBreak",
    "imaginary": "imaginaryBreak", "虚数": "imaginaryBreak",
}

# Values accepted as the element tag of a damage row.
GS_DETAIL_ELE = frozenset({
    "phy", "scene", "vaporize", "melt", "蒸发", "融化", "aggravate", "spread", "超激化", "蔓激化",
    "lunarCharged", "lunarBloom", "lunarCrystallize", "月感电", "月绽放", "月结晶",
})
SR_DETAIL_ELE = frozenset({"shock", "burn", "windShear", "bleed", "entanglement", "skillDot", "elation", "scene"})

# Values the runtime dmg() helper accepts as its element argument.
GS_RUNTIME_ELE = frozenset({
    "phy", "scene", "vaporize", "melt", "蒸发", "融化", "crystallize", "burning", "superConduct",
    "swirl", "electroCharged", "shatter", "overloaded", "bloom", "burgeon", "hyperBloom",
    "aggravate", "spread", "结晶", "燃烧", "超导", "扩散", "感电", "碎冰", "超载", "绽放", "烈绽放",
    "超绽放", "超激化", "蔓激化", "lunarCharged", "lunarBloom", "lunarCrystallize", "月感电",
    "月绽放", "月结晶",
})
SR_RUNTIME_ELE = frozenset(SR_DETAIL_ELE | set(SR_BREAKS) | {"superBreak"})

GS_LUNAR = ("lunarCharged", "lunarBloom", "lunarCrystallize")
GS_LUNAR_CN = {"月感电": "lunarCharged", "月绽放": "lunarBloom", "月结晶": "lunarCrystallize"}

# Key tokens that never belong in a damage key argument.
BANNED_KEY_TOKENS = frozenset(
    {r.lower() for r in GS_REACTIONS + SR_REACTIONS}
    | {"phy", "physical", "phys", "vaporize", "melt", "aggravate", "spread"}
)

# Built-in canned buff ids (baseline meta).
CANNED_BUFF_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_]*$")

_GS_KEY_RES = [
    re.compile(r"^(hp|atk|def)(Base|Plus|Pct|Inc)?$"),
    re.compile(r"^(mastery|cpct|cdmg|heal|recharge|dmg|phy|shield)(Plus|Pct|Inc)?$"),
    re.compile(r"^(enemyDef|enemyIgnore|ignore)$"),
    re.compile(r"^(kx|fykx|multi|fyplus|fypct|fybase|fyinc|fycdmg|elevated)$"),
    re.compile(
        r"^(vaporize|melt|crystallize|burning|superConduct|swirl|electroCharged|shatter|overloaded|"
        r"bloom|burgeon|hyperBloom|aggravate|spread|lunarCharged|lunarBloom|lunarCrystallize)$"
    ),
    re.compile(r"^(a|a2|a3|e|q|nightsoul)(Def|Ignore|Dmg|Enemydmg|Plus|Pct|Cpct|Cdmg|Multi|Elevated)$"),
]

_SR_KEY_RES = [
    re.compile(r"^(hp|atk|def|speed)(Base|Plus|Pct|Inc)?$"),
    re.compile(r"^(speed|recharge|cpct|cdmg|heal|dmg|enemydmg|effPct|effDef|shield|stance)(Plus|Pct|Inc)?$"),
    re.compile(r"^(enemyDef|enemyIgnore|ignore)$"),
    re.compile(r"^(kx|multi)$"),
    re.compile(r"^(a|a2|a3|e|q|t|me|mt|dot|break)(Def|Ignore|Dmg|Enemydmg|Plus|Pct|Cpct|Cdmg|Multi|Elevated)$"),
    re.compile(r"^elation(Pct|Enemydmg|Merrymake|Def|Ignore)?$"),
]


def is_allowed_buff_key(game: Game, key: str) -> bool:
    """True when key is a buff-data bucket the downstream runtime understands."""
    if not key:
        return False
    if key.startswith("_"):
        return True
    patterns = _GS_KEY_RES if game == Game.GS else _SR_KEY_RES
    return any(p.match(key) for p in patterns)


def talent_blocks(game: Game) -> tuple[str, ...]:
    return GS_TALENT_BLOCKS if game == Game.GS else SR_TALENT_BLOCKS


def canonical_reaction(game: Game, raw: str | None) -> str | None:
    """Canonical reaction id for raw (case-insensitive, synonyms), or None."""
    text = (raw or "").strip()
    if not text:
        return None
    ids = GS_REACTIONS if game == Game.GS else SR_REACTIONS
    synonyms = GS_REACTION_SYNONYMS if game == Game.GS else SR_REACTION_SYNONYMS
    lowered = text.lower()
    for rid in ids:
        if rid.lower() == lowered:
            return rid
    if text in synonyms:
        return synonyms[text]
    if game == Game.SR:
        stripped = re.sub(r"(属性)?(弱点)?击破(伤害)?$", "", text)
        if stripped in synonyms:
            return synonyms[stripped]
        if stripped.lower() in SR_ELEM_BREAK:
            return SR_ELEM_BREAK[stripped.lower()]
    return None


def sanitize_detail_ele(game: Game, raw: str | None) -> str | None:
    """Element tag for a damage row, or None when it should be dropped."""
    text = (raw or "").strip()
    if not text:
        return None
    allowed = GS_DETAIL_ELE if game == Game.GS else SR_DETAIL_ELE
    if text in allowed:
        return text
    lowered = text.lower()
    for candidate in allowed:
        if candidate.lower() == lowered:
            return candidate
    return None


def runtime_ele_ok(game: Game, ele: str) -> bool:
    """Element argument check used by the sandbox dmg() stand-in."""
    if ele == "scene" or re.search(r"(^|,)scene(,|$)", ele):
        return True
    allowed = GS_RUNTIME_ELE if game == Game.GS else SR_RUNTIME_ELE
    return ele in allowed
