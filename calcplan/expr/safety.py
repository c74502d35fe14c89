"""
Expression Safety Checker.

Two layers:

- is_safe_guard_expr / is_safe_value_expr: the boolean gate. A fragment is
  safe when it lexes and parses as a single expression, uses no denylisted
  identifier and (for guards) contains no object literal.
- check_expr_structure: structural checks run on the parsed tree for a
  given context (which free identifiers exist there, calc() argument shape,
  helper member access, talent table access style, params keys, helper
  argument limits, structured dmgExpr results).

validate_fragment() runs both and returns the parsed node.
"""

from __future__ import annotations
from enum import Enum
import re

from ..errors import ExpressionError
from .nodes import (
    ArrayLit, Binary, Call, Cond, Ident, Index, Member, Node, ObjectLit, Str,
    callee_name, walk,
)
from .parser import parse_expression
from .printer import to_source


class ExprContext(str, Enum):
    """Where a fragment will be spliced into the rendered module."""
    DETAIL_CHECK = "detail.check"
    DETAIL_DMG_EXPR = "detail.dmgExpr"
    BUFF_CHECK = "buff.check"
    BUFF_DATA = "buff.data"


DENYLIST = frozenset({
    "process", "eval", "globalThis", "global", "window", "import", "require", "module",
    "exports", "Function", "constructor", "prototype", "__proto__", "class", "function",
    "this", "new", "delete", "void", "for", "while", "do", "try", "catch", "finally",
    "throw", "return", "var", "let", "const", "with", "yield", "await", "async",
    "switch", "case", "break", "continue",
})

ALWAYS_ALLOWED = frozenset({
    "Math", "Number", "Array", "String", "Boolean", "Infinity", "NaN", "undefined", "isFinite",
})

_BASE_CONTEXT = frozenset({"talent", "attr", "calc", "params", "cons", "weapon", "trees"})

# Names that exist somewhere in the rendered module but not in every closure.
RESERVED_CONTEXT = frozenset({"element", "currentTalent", "dmg", "toRatio", "heal", "shield", "reaction"})

CALC_BUCKETS = frozenset({
    "atk", "hp", "def", "mastery", "recharge", "heal", "shield", "cpct", "cdmg", "dmg",
    "phy", "speed", "enemydmg", "effPct", "effDef", "stance",
})

CALL_ONLY_HELPERS = frozenset({"calc", "toRatio", "heal", "shield", "reaction"})
DMG_MEMBERS = frozenset({"basic", "dynamic", "reaction", "swirl", "heal", "shield", "elation"})

NAMESPACE_MEMBERS = {
    "Math": frozenset({"max", "min", "abs", "floor", "ceil", "round", "trunc", "sqrt", "pow", "sign", "log", "exp"}),
    "Number": frozenset({"isFinite", "isInteger"}),
    "Array": frozenset({"isArray"}),
}

VALUE_METHODS = frozenset({"reduce", "includes", "indexOf", "some", "every", "map"})
CALLBACK_METHODS = frozenset({"reduce", "some", "every", "map"})

CALLABLE_IDENTIFIERS = frozenset({
    "calc", "dmg", "toRatio", "heal", "shield", "reaction", "isFinite", "Number", "String", "Boolean",
})

EMISSION_HELPERS = frozenset({
    "dmg", "dmg.basic", "dmg.dynamic", "dmg.reaction", "dmg.swirl", "dmg.heal", "dmg.shield",
    "dmg.elation", "heal", "shield", "reaction",
})

# Positional argument limit and element-slot index per damage helper.
_DMG_ARG_RULES = {
    "dmg": (3, 2),
    "dmg.basic": (3, 2),
    "dmg.dynamic": (4, 3),
}

_ASCII_IDENT_RE = re.compile(r"^[A-Za-z_$][A-Za-z0-9_$]*$")


def is_ascii_identifier(name: str) -> bool:
    return bool(_ASCII_IDENT_RE.match(name))


def allowed_identifiers(context: ExprContext, kind: str = "dmg") -> frozenset[str]:
    """Free identifiers a fragment may reference in the given context."""
    context = ExprContext(context)
    if context == ExprContext.DETAIL_CHECK:
        names = _BASE_CONTEXT | {"currentTalent"}
    elif context == ExprContext.DETAIL_DMG_EXPR:
        names = _BASE_CONTEXT | {"dmg", "toRatio"}
        if kind == "heal":
            names = names | {"heal"}
        elif kind == "shield":
            names = names | {"shield"}
        elif kind == "reaction":
            names = names | {"reaction"}
    else:
        names = _BASE_CONTEXT | {"element", "currentTalent"}
    return frozenset(names) | ALWAYS_ALLOWED


def _parse_or_none(text: str) -> Node | None:
    try:
        return parse_expression(text)
    except ExpressionError:
        return None


def _uses_denylisted(node: Node) -> str | None:
    for sub in walk(node):
        if isinstance(sub, Ident) and sub.name in DENYLIST:
            return sub.name
        if isinstance(sub, Member) and sub.prop in DENYLIST:
            return sub.prop
        if isinstance(sub, Index) and isinstance(sub.index, Str) and sub.index.value in DENYLIST:
            return sub.index.value
    return None


def is_safe_guard_expr(text: str) -> bool:
    """True when text is a single boolean-style expression with nothing dangerous in it."""
    node = _parse_or_none(text)
    if node is None or _uses_denylisted(node):
        return False
    return not any(isinstance(sub, ObjectLit) for sub in walk(node))


def is_safe_value_expr(text: str) -> bool:
    """True when text is a single value expression with nothing dangerous in it."""
    node = _parse_or_none(text)
    return node is not None and _uses_denylisted(node) is None


def is_structured_result(node: Node) -> bool:
    """An emission helper call, a { dmg, avg } object, or branches that all are."""
    if isinstance(node, Call):
        return callee_name(node.callee) in EMISSION_HELPERS
    if isinstance(node, ObjectLit):
        return node.get("dmg") is not None and node.get("avg") is not None
    if isinstance(node, Cond):
        return is_structured_result(node.then) and is_structured_result(node.other)
    if isinstance(node, Binary) and node.op in ("||", "??"):
        return is_structured_result(node.left) and is_structured_result(node.right)
    return False


class _StructureChecker:

    def __init__(self, allowed: frozenset[str]):
        self.allowed = allowed

    def check(self, node: Node, parent: Node | None = None) -> None:
        if isinstance(node, Ident):
            self.check_ident(node)
        elif isinstance(node, Member):
            self.check_member(node, parent)
        elif isinstance(node, Index):
            self.check_index(node)
        elif isinstance(node, Call):
            self.check_call(node)
        for child in node.children():
            self.check(child, node)

    def check_ident(self, node: Ident) -> None:
        name = node.name
        if name in DENYLIST:
            raise ExpressionError(f"uses forbidden identifier {name}")
        if name in self.allowed:
            return
        if name in RESERVED_CONTEXT:
            raise ExpressionError(f"uses unavailable context field {name}")
        raise ExpressionError(f"uses unknown identifier {name}")

    def check_member(self, node: Member, parent: Node | None) -> None:
        obj = node.obj
        if node.prop in DENYLIST:
            raise ExpressionError(f"uses forbidden identifier {node.prop}")
        if isinstance(obj, Ident):
            if obj.name in CALL_ONLY_HELPERS:
                raise ExpressionError(f"uses member access on call-only helper {obj.name}()")
            if obj.name == "dmg" and node.prop not in DMG_MEMBERS:
                raise ExpressionError(f"uses unknown dmg helper dmg.{node.prop}")
            if obj.name in NAMESPACE_MEMBERS and node.prop not in NAMESPACE_MEMBERS[obj.name]:
                raise ExpressionError(f"uses unsupported {obj.name}.{node.prop}")
            if obj.name == "params" and not is_ascii_identifier(node.prop):
                raise ExpressionError(f"uses non-ASCII params key {node.prop}")
            if obj.name == "talent":
                if not (isinstance(parent, Index) and parent.obj is node):
                    raise ExpressionError(f"uses talent.{node.prop} as a value")
        if isinstance(obj, Member) and isinstance(obj.obj, Ident) and obj.obj.name == "talent":
            raise ExpressionError(f"uses dotted talent table access talent.{obj.prop}.{node.prop}")
        if isinstance(parent, Call) and parent.callee is node and not self._is_namespace(obj):
            if node.prop not in VALUE_METHODS:
                raise ExpressionError(f"calls unsupported method .{node.prop}()")
            if node.prop in CALLBACK_METHODS:
                raise ExpressionError(f"calls .{node.prop}() which needs a callback")

    @staticmethod
    def _is_namespace(obj: Node) -> bool:
        return isinstance(obj, Ident) and (obj.name in NAMESPACE_MEMBERS or obj.name == "dmg")

    def check_index(self, node: Index) -> None:
        obj = node.obj
        if isinstance(obj, Ident) and obj.name == "talent":
            raise ExpressionError("uses dynamic talent access")
        if isinstance(obj, Member) and isinstance(obj.obj, Ident) and obj.obj.name == "talent":
            if not isinstance(node.index, Str):
                raise ExpressionError(f"uses dynamic table access on talent.{obj.prop}")
        if isinstance(obj, Ident) and obj.name == "params":
            if not isinstance(node.index, Str):
                raise ExpressionError("uses dynamic params access")
            if not is_ascii_identifier(node.index.value):
                raise ExpressionError(f"uses non-ASCII params key {node.index.value}")
        if isinstance(node.index, Str) and node.index.value in DENYLIST:
            raise ExpressionError(f"uses forbidden identifier {node.index.value}")

    def check_call(self, node: Call) -> None:
        name = callee_name(node.callee)
        if isinstance(node.callee, Ident) and name not in CALLABLE_IDENTIFIERS:
            raise ExpressionError(f"calls non-callable {name}")
        if name == "calc":
            if len(node.args) != 1 or not _is_attr_bucket(node.args[0]):
                raise ExpressionError("uses illegal calc() call")
        elif name == "toRatio":
            if len(node.args) != 1:
                raise ExpressionError("uses illegal toRatio() call")
        elif name in _DMG_ARG_RULES:
            limit, ele_slot = _DMG_ARG_RULES[name]
            if len(node.args) > limit:
                raise ExpressionError(f"passes too many arguments to {name}()")
            if len(node.args) > ele_slot and isinstance(node.args[ele_slot], (ObjectLit, ArrayLit)):
                raise ExpressionError(f"passes an object/array as the element of {name}()")


def _is_attr_bucket(node: Node) -> bool:
    return (
        isinstance(node, Member)
        and isinstance(node.obj, Ident)
        and node.obj.name == "attr"
        and node.prop in CALC_BUCKETS
    )


def check_expr_structure(node: Node, context: ExprContext, kind: str = "dmg") -> None:
    """Raise ExpressionError when node breaks a structural rule for context."""
    context = ExprContext(context)
    _StructureChecker(allowed_identifiers(context, kind)).check(node)
    if context == ExprContext.DETAIL_DMG_EXPR and not is_structured_result(node):
        raise ExpressionError("must return a structured result (emission helper call or { dmg, avg })")


def validate_fragment(text: str, context: ExprContext, field: str, kind: str = "dmg") -> Node:
    """
    Parse and check a plan fragment.

    Returns the parsed node; raises ExpressionError (with field set) otherwise.
    """
    context = ExprContext(context)
    try:
        node = parse_expression(text)
        banned = _uses_denylisted(node)
        if banned:
            raise ExpressionError(f"uses forbidden identifier {banned}")
        if context in (ExprContext.DETAIL_CHECK, ExprContext.BUFF_CHECK):
            if any(isinstance(sub, ObjectLit) for sub in walk(node)):
                raise ExpressionError("contains block delimiters")
        check_expr_structure(node, context, kind)
    except ExpressionError as exc:
        raise ExpressionError(exc.reason, field=field) from None
    return node


def check_node(node: Node, context: ExprContext, field: str, kind: str = "dmg") -> Node:
    """Same checks as validate_fragment, for a tree the repair engine built."""
    return validate_fragment(to_source(node), context, field, kind)
