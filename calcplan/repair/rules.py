"""
Text rule registry for buff synthesis.

Each TextRule maps a pattern over one buff hint line to a buff-data entry.
Rules are tried in registry order; a match consumes its span of the line so
a generic rule (伤害提高 -> dmg) never re-reads text a specific rule
(暴击伤害提高 -> cdmg, 元素战技伤害提高 -> eDmg) already claimed.

Hint lines carry a tier prefix: `N命:` / `N魂:` -> cons N, `行迹N:` -> tree N.
Lines without a tier prefix are not read.
"""

from __future__ import annotations
from dataclasses import dataclass
import re
from typing import Callable

from ..expr import Binary, Node, Num
from ..expr.build import calc
from ..plan_schema import CalcSuggestInput, Game, is_allowed_buff_key
from ..plan_schema.plan import BuffValue
from ..text import normalize_text

ALL_GAMES = (Game.GS, Game.SR)

_NUM = r"(?P<n>\d{1,3}(?:\.\d+)?)\s*[%％]"
_UP = r"(?:提高|提升|增加)"
_DOWN = r"(?:降低|减少)"
_ENEMY = r"(?:敌人|敌方|目标|对方)"

TIER_RE = re.compile(r"^\s*(?:(?P<cons>[1-6])\s*(?:命|魂)|行迹\s*(?P<tree>[1-4])?)\s*[:：]\s*")

SKILL_KEYS = {
    Game.GS: (
        ("普通攻击", "a"), ("普攻", "a"), ("重击", "a2"), ("下落攻击", "a3"),
        ("元素战技", "e"), ("元素爆发", "q"),
    ),
    Game.SR: (
        ("普通攻击", "a"), ("普攻", "a"), ("战技", "e"), ("终结技", "q"),
        ("追加攻击", "t"), ("天赋", "t"), ("忆灵", "me"),
    ),
}
_SKILL = r"(?P<skill>普通攻击|普攻|重击|下落攻击|元素战技|元素爆发|战技|终结技|追加攻击|天赋|忆灵)"

STAT_WORDS = (("元素精通", "mastery"), ("生命值上限", "hp"), ("生命上限", "hp"), ("生命值", "hp"),
              ("防御力", "def"), ("攻击力", "atk"))
_STAT = r"(?P<stat>元素精通|生命值上限|生命上限|生命值|防御力|攻击力)"


def skill_bucket(game: Game, noun: str | None) -> str | None:
    if not noun:
        return None
    for word, bucket in SKILL_KEYS[game]:
        if noun == word:
            return bucket
    return None


def _pct(m: re.Match) -> BuffValue:
    value = float(m.group("n"))
    return int(value) if value.is_integer() else value


def _stat_scaled(m: re.Match) -> BuffValue:
    stat = dict(STAT_WORDS)[m.group("stat")]
    return Binary("*", calc(stat), Num(round(float(m.group("n")) / 100, 6)))


def _skill_key(suffix: str) -> Callable[[re.Match, Game], str | None]:
    def key(m: re.Match, game: Game) -> str | None:
        bucket = skill_bucket(game, m.group("skill"))
        return f"{bucket}{suffix}" if bucket else None
    return key


@dataclass(frozen=True)
class TextRule:
    name: str
    pattern: re.Pattern
    key: str | Callable[[re.Match, Game], str | None]
    value: Callable[[re.Match], BuffValue] = _pct
    games: tuple[Game, ...] = ALL_GAMES
    limit: float = 200

    def resolve_key(self, m: re.Match, game: Game) -> str | None:
        return self.key if isinstance(self.key, str) else self.key(m, game)


@dataclass
class RuleMatch:
    rule: str
    key: str
    value: BuffValue
    cons: int | None
    tree: int | None
    line: str


RULES: list[TextRule] = [
    TextRule("skill-stat-plus", re.compile(
        rf"{_SKILL}(?:造成的)?伤害{_UP}(?:值)?.{{0,6}}?(?:相当于|基于)?.{{0,4}}?{_STAT}的\s*{_NUM}"),
        _skill_key("Plus"), value=_stat_scaled),
    TextRule("stat-plus", re.compile(
        rf"(?:造成的)?伤害{_UP}(?:值)?.{{0,6}}?(?:相当于|基于)?.{{0,4}}?{_STAT}的\s*{_NUM}"),
        "dmgPlus", value=_stat_scaled),
    TextRule("crit-damage", re.compile(rf"暴击伤害{_UP}\s*{_NUM}"), "cdmg", limit=300),
    TextRule("crit-rate", re.compile(rf"暴击率{_UP}\s*{_NUM}"), "cpct", limit=100),
    TextRule("res-pen", re.compile(rf"抗性穿透{_UP}\s*{_NUM}"), "kx", limit=100),
    TextRule("res-shred", re.compile(rf"{_ENEMY}.{{0,12}}?抗性{_DOWN}\s*{_NUM}"), "kx", limit=100),
    TextRule("def-ignore", re.compile(rf"无视.{{0,6}}?{_NUM}(?:的)?防御力?"), "ignore", limit=100),
    TextRule("def-shred", re.compile(rf"{_ENEMY}.{{0,12}}?防御力{_DOWN}\s*{_NUM}"), "enemyDef", limit=100),
    TextRule("vulnerability", re.compile(rf"受到的?伤害{_UP}\s*{_NUM}"), "enemydmg", games=(Game.SR,)),
    TextRule("skill-dmg", re.compile(rf"{_SKILL}(?:造成的)?伤害{_UP}\s*{_NUM}"), _skill_key("Dmg")),
    TextRule("dmg", re.compile(rf"造成的伤害{_UP}\s*{_NUM}"), "dmg"),
]


def parse_tier(line: str) -> tuple[int | None, int | None, str] | None:
    """(cons, tree, rest) for a tier-prefixed hint line, else None."""
    m = TIER_RE.match(line)
    if not m:
        return None
    cons = int(m.group("cons")) if m.group("cons") else None
    tree = None if cons else int(m.group("tree") or 1)
    return cons, tree, line[m.end():]


def match_line(game: Game, line: str, rules: list[TextRule] | None = None) -> list[RuleMatch]:
    parsed = parse_tier(normalize_text(line))
    if parsed is None:
        return []
    cons, tree, text = parsed
    out: list[RuleMatch] = []
    for rule in RULES if rules is None else rules:
        if game not in rule.games:
            continue
        m = rule.pattern.search(text)
        if not m:
            continue
        text = text[:m.start()] + "\u0000" + text[m.end():]
        key = rule.resolve_key(m, game)
        if not key or not is_allowed_buff_key(game, key):
            continue
        value = rule.value(m)
        if isinstance(value, (int, float)) and not 0 < value <= rule.limit:
            continue
        out.append(RuleMatch(rule.name, key, value, cons, tree, normalize_text(line)))
    return out


def derive_from_hints(input: CalcSuggestInput) -> list[RuleMatch]:
    out: list[RuleMatch] = []
    for line in input.buff_hints:
        out.extend(match_line(input.game, line))
    return out


# -- GS shield strength ---------------------------------------------------

_SHIELD_PER_RE = re.compile(rf"护盾强效.{{0,12}}?{_UP}\s*{_NUM}")
_SHIELD_CAP_RE = re.compile(r"(?:至多|最多|最高)\s*(?:可)?(?:叠加|累积)\s*(\d{1,2})\s*(?:次|层)")
SHIELD_CAP = 200


def shield_strength(input: CalcSuggestInput) -> float | None:
    """Total shield strength bonus at max stacks, capped at 200."""
    per: float | None = None
    stacks: int | None = None
    for line in input.buff_hints:
        line = normalize_text(line)
        m = _SHIELD_PER_RE.search(line)
        if m and 0 < float(m.group("n")) <= 80:
            per = max(per or 0, float(m.group("n")))
        m = _SHIELD_CAP_RE.search(line)
        if m and 1 <= int(m.group(1)) <= 20:
            stacks = max(stacks or 0, int(m.group(1)))
    if per is None:
        return None
    total = min(SHIELD_CAP, per * (stacks or 1))
    return int(total) if float(total).is_integer() else total
