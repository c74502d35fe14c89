"""
Plan data model.

CalcSuggestInput is the per-character context (tables, hints, descriptions).
CalcSuggestResult is the plan: mainAttr, detail rows and buff rows.

Detail rows are a tagged union, one dataclass per kind:
- DamageDetail: talent table multiplier damage (dmg)
- HealDetail: healing amount (heal)
- ShieldDetail: shield absorption (shield)
- ReactionDetail: reaction / break damage through reaction("<id>")

Expression fields (check, dmgExpr, buff data strings) hold parsed AST nodes,
never raw strings.
"""

from __future__ import annotations
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, ClassVar, Union

from ..expr import Node, to_source


class Game(Enum):
    """Supported games."""
    GS = "gs"
    SR = "sr"


class DetailKind(Enum):
    """Detail row kinds."""
    DMG = "dmg"
    HEAL = "heal"
    SHIELD = "shield"
    REACTION = "reaction"


ParamValue = Union[int, float, bool, str]
BuffValue = Union[int, float, Node]


def _str_map(raw: Any) -> dict[str, Any]:
    if not isinstance(raw, dict):
        return {}
    return {str(k): v for k, v in raw.items()}


def _table_lists(raw: Any) -> dict[str, list[str]]:
    out: dict[str, list[str]] = {}
    for block, names in _str_map(raw).items():
        if not isinstance(names, list):
            continue
        seen: list[str] = []
        for name in names:
            text = str(name or "").strip()
            if text and text not in seen:
                seen.append(text)
        out[block] = seen
    return out


def _nested_map(raw: Any) -> dict[str, dict[str, Any]]:
    return {block: _str_map(values) for block, values in _str_map(raw).items() if isinstance(values, dict)}


@dataclass
class CalcSuggestInput:
    """
    Immutable per-character context supplied by the caller.

    tables maps talent block -> ordered table names available at runtime.
    The table_* maps are inference hints only, never authoritative.
    """
    game: Game
    tables: dict[str, list[str]]
    name: str = ""
    elem: str = ""
    id: int | None = None
    weapon: str | None = None
    star: int | None = None
    table_units: dict[str, dict[str, str]] = field(default_factory=dict)
    table_samples: dict[str, dict[str, Any]] = field(default_factory=dict)
    table_text_samples: dict[str, dict[str, str]] = field(default_factory=dict)
    talent_desc: dict[str, str] = field(default_factory=dict)
    buff_hints: list[str] = field(default_factory=list)
    upstream: dict[str, Any] | None = None
    upstream_direct: bool = False

    @property
    def is_gs(self) -> bool:
        return self.game == Game.GS

    @property
    def is_sr(self) -> bool:
        return self.game == Game.SR

    @property
    def trusted(self) -> bool:
        """Plan was derived from a trusted upstream source."""
        return bool(self.upstream) or self.upstream_direct

    def has_table(self, block: str | None, table: str | None) -> bool:
        return bool(block and table) and table in self.tables.get(block, [])

    def sample(self, block: str | None, table: str | None) -> Any:
        if not block or not table:
            return None
        return self.table_samples.get(block, {}).get(table)

    def unit(self, block: str | None, table: str | None) -> str:
        if not block or not table:
            return ""
        units = self.table_units.get(block, {})
        raw = units.get(table)
        if raw is None and table.endswith("2"):
            raw = units.get(table[:-1])
        return str(raw or "")

    def text_sample(self, block: str | None, table: str | None) -> str:
        if not block or not table:
            return ""
        return str(self.table_text_samples.get(block, {}).get(table) or "")

    def desc(self, block: str | None) -> str:
        if not block:
            return ""
        return str(self.talent_desc.get(block) or "")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CalcSuggestInput:
        """Build from the camelCase JSON shape."""
        game_raw = str(data.get("game", "")).strip().lower()
        try:
            game = Game(game_raw)
        except ValueError:
            raise ValueError(f"Unknown game: {data.get('game')!r}")
        hints = data.get("buffHints") or []
        star = data.get("star")
        avatar_id = data.get("id")
        return cls(
            game=game,
            tables=_table_lists(data.get("tables")),
            name=str(data.get("name") or ""),
            elem=str(data.get("elem") or ""),
            id=avatar_id if isinstance(avatar_id, int) else None,
            weapon=data.get("weapon") if isinstance(data.get("weapon"), str) else None,
            star=star if isinstance(star, int) else None,
            table_units=_nested_map(data.get("tableUnits")),
            table_samples=_nested_map(data.get("tableSamples")),
            table_text_samples=_nested_map(data.get("tableTextSamples")),
            talent_desc={k: str(v) for k, v in _str_map(data.get("talentDesc")).items() if isinstance(v, str)},
            buff_hints=[str(h) for h in hints if isinstance(h, str)] if isinstance(hints, list) else [],
            upstream=data.get("upstream") if isinstance(data.get("upstream"), dict) else None,
            upstream_direct=bool(data.get("upstreamDirect")),
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "game": self.game.value,
            "name": self.name,
            "elem": self.elem,
            "tables": self.tables,
        }
        if self.id is not None:
            out["id"] = self.id
        if self.weapon:
            out["weapon"] = self.weapon
        if self.star is not None:
            out["star"] = self.star
        for key, value in (
            ("tableUnits", self.table_units),
            ("tableSamples", self.table_samples),
            ("tableTextSamples", self.table_text_samples),
            ("talentDesc", self.talent_desc),
            ("buffHints", self.buff_hints),
        ):
            if value:
                out[key] = value
        if self.upstream:
            out["upstream"] = self.upstream
        if self.upstream_direct:
            out["upstreamDirect"] = True
        return out


def _expr_out(node: Node | None) -> str | None:
    return to_source(node) if node is not None else None


@dataclass
class Detail:
    """Fields shared by every detail kind."""
    title: str
    talent: str | None = None
    table: str | None = None
    key: str | None = None
    params: dict[str, ParamValue] = field(default_factory=dict)
    check: Node | None = None
    dmg_expr: Node | None = None
    cons: int | None = None

    kind: ClassVar[DetailKind]

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"title": self.title, "kind": self.kind.value}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None or value == {} or f.name == "title":
                continue
            name = "dmgExpr" if f.name == "dmg_expr" else f.name
            out[name] = _expr_out(value) if isinstance(value, Node) else value
        return out


@dataclass
class DamageDetail(Detail):
    """Talent multiplier damage row."""
    ele: str | None = None
    stat: str | None = None
    pick: int | None = None

    kind: ClassVar[DetailKind] = DetailKind.DMG


@dataclass
class HealDetail(Detail):
    stat: str | None = None
    pick: int | None = None

    kind: ClassVar[DetailKind] = DetailKind.HEAL


@dataclass
class ShieldDetail(Detail):
    stat: str | None = None
    pick: int | None = None

    kind: ClassVar[DetailKind] = DetailKind.SHIELD


@dataclass
class ReactionDetail(Detail):
    """Reaction / break damage row; reaction holds the canonical id."""
    reaction: str = ""

    kind: ClassVar[DetailKind] = DetailKind.REACTION


DETAIL_CLASSES: dict[DetailKind, type[Detail]] = {
    DetailKind.DMG: DamageDetail,
    DetailKind.HEAL: HealDetail,
    DetailKind.SHIELD: ShieldDetail,
    DetailKind.REACTION: ReactionDetail,
}


def convert_detail(detail: Detail, kind: DetailKind, **changes: Any) -> Detail:
    """Rebuild detail as another kind, carrying over the fields both share."""
    cls = DETAIL_CLASSES[kind]
    names = {f.name for f in fields(cls)}
    values = {f.name: getattr(detail, f.name) for f in fields(detail) if f.name in names}
    values["params"] = dict(detail.params)
    values.update(changes)
    return cls(**values)


@dataclass
class Buff:
    """
    Conditional or unconditional modifier.

    data values are numbers or parsed value expressions.
    """
    title: str
    data: dict[str, BuffValue] = field(default_factory=dict)
    sort: int | None = None
    cons: int | None = None
    tree: int | None = None
    check: Node | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"title": self.title}
        for name in ("sort", "cons", "tree"):
            value = getattr(self, name)
            if value is not None:
                out[name] = value
        if self.check is not None:
            out["check"] = to_source(self.check)
        out["data"] = {k: (to_source(v) if isinstance(v, Node) else v) for k, v in self.data.items()}
        return out


BuffEntry = Union[Buff, str]


@dataclass
class CalcSuggestResult:
    """The validated (and later repaired) plan."""
    main_attr: str
    details: list[Detail] = field(default_factory=list)
    buffs: list[BuffEntry] = field(default_factory=list)
    def_dmg_key: str | None = None

    def object_buffs(self) -> list[Buff]:
        return [b for b in self.buffs if isinstance(b, Buff)]

    def detail_keys(self) -> list[str]:
        return [d.key for d in self.details if d.key]

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"mainAttr": self.main_attr}
        if self.def_dmg_key:
            out["defDmgKey"] = self.def_dmg_key
        out["details"] = [d.to_dict() for d in self.details]
        if self.buffs:
            out["buffs"] = [b if isinstance(b, str) else b.to_dict() for b in self.buffs]
        return out
