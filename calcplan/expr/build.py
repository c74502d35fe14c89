"""
Small constructors for the expression nodes the renderer and the repair
passes synthesize.
"""

from __future__ import annotations
from typing import Any

from .nodes import ArrayLit, Binary, Bool, Call, Ident, Index, Member, Node, Null, Num, ObjectLit, Str


def call(name: str, *args: Node) -> Call:
    """call("dmg.basic", x) -> dmg.basic(x)"""
    head, *rest = name.split(".")
    callee: Node = Ident(head)
    for prop in rest:
        callee = Member(callee, prop)
    return Call(callee, tuple(args))


def num0(node: Node) -> Node:
    """Number(x) || 0"""
    return Binary("||", call("Number", node), Num(0))


def ratio(node: Node) -> Call:
    return call("toRatio", node)


def calc(stat: str) -> Call:
    """calc(attr.<stat>)"""
    return call("calc", Member(Ident("attr"), stat))


def param(name: str) -> Member:
    return Member(Ident("params"), name)


def at(node: Node, idx: int) -> Index:
    return Index(node, Num(idx))


def mul(*nodes: Node) -> Node:
    out = nodes[0]
    for node in nodes[1:]:
        out = Binary("*", out, node)
    return out


def add(*nodes: Node) -> Node:
    out = nodes[0]
    for node in nodes[1:]:
        out = Binary("+", out, node)
    return out


def dmg_avg(dmg: Node, avg: Node) -> ObjectLit:
    """({ dmg, avg }) result object."""
    return ObjectLit((("dmg", dmg), ("avg", avg)))


def scaled_result(emission: Node, factor: Node) -> ObjectLit:
    """({ dmg: (call).dmg * k, avg: (call).avg * k })"""
    return dmg_avg(
        Binary("*", Member(emission, "dmg"), factor),
        Binary("*", Member(emission, "avg"), factor),
    )


def literal(value: Any) -> Node:
    """JSON-style literal node for a param / defParams value."""
    if value is None:
        return Null()
    if isinstance(value, bool):
        return Bool(value)
    if isinstance(value, (int, float)):
        return Num(value)
    if isinstance(value, str):
        return Str(value)
    if isinstance(value, dict):
        return ObjectLit(tuple((str(k), literal(v)) for k, v in value.items()))
    if isinstance(value, (list, tuple)):
        return ArrayLit(tuple(literal(v) for v in value))
    raise TypeError(f"cannot render {type(value).__name__} literal")
