"""
AST node types for the restricted expression language.

Plan fragments (check / dmgExpr / buff data) only ever produce expression
nodes. The module-level nodes (Arrow, Block, ConstDecl, If, Return, Module)
exist so the sandbox can read back the renderer's own output.

All nodes are frozen dataclasses: equality is structural, which the repair
engine relies on for idempotence checks.
"""

from __future__ import annotations
from dataclasses import dataclass, fields, replace
from typing import Callable, Iterator, Union


class Node:
    """Base class for every AST node."""

    def children(self) -> Iterator["Node"]:
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, Node):
                yield value
            elif isinstance(value, tuple):
                for item in value:
                    if isinstance(item, Node):
                        yield item
                    elif isinstance(item, tuple):
                        for sub in item:
                            if isinstance(sub, Node):
                                yield sub


@dataclass(frozen=True)
class Num(Node):
    value: Union[int, float]


@dataclass(frozen=True)
class Str(Node):
    value: str


@dataclass(frozen=True)
class Bool(Node):
    value: bool


@dataclass(frozen=True)
class Null(Node):
    pass


@dataclass(frozen=True)
class Ident(Node):
    name: str


@dataclass(frozen=True)
class Member(Node):
    """Dotted access: obj.prop"""
    obj: Node
    prop: str


@dataclass(frozen=True)
class Index(Node):
    """Computed access: obj[index]"""
    obj: Node
    index: Node


@dataclass(frozen=True)
class Call(Node):
    callee: Node
    args: tuple[Node, ...] = ()


@dataclass(frozen=True)
class Unary(Node):
    op: str
    operand: Node


@dataclass(frozen=True)
class Binary(Node):
    op: str
    left: Node
    right: Node


@dataclass(frozen=True)
class Cond(Node):
    test: Node
    then: Node
    other: Node


@dataclass(frozen=True)
class ObjectLit(Node):
    """Object literal; props are (key, value) pairs in source order."""
    props: tuple[tuple[str, Node], ...] = ()

    def get(self, key: str) -> Node | None:
        for k, v in self.props:
            if k == key:
                return v
        return None


@dataclass(frozen=True)
class ArrayLit(Node):
    items: tuple[Node, ...] = ()


@dataclass(frozen=True)
class ObjectPattern(Node):
    """Destructuring parameter: ({ talent, attr })"""
    names: tuple[str, ...] = ()


Param = Union[Ident, ObjectPattern]


@dataclass(frozen=True)
class Block(Node):
    body: tuple[Node, ...] = ()


@dataclass(frozen=True)
class Arrow(Node):
    params: tuple[Node, ...]
    body: Node  # expression or Block


@dataclass(frozen=True)
class ConstDecl(Node):
    name: str
    value: Node
    export: bool = False


@dataclass(frozen=True)
class If(Node):
    test: Node
    then: Node


@dataclass(frozen=True)
class Return(Node):
    value: Node | None = None


@dataclass(frozen=True)
class Module(Node):
    body: tuple[Node, ...] = ()

    def exports(self) -> dict[str, Node]:
        return {s.name: s.value for s in self.body if isinstance(s, ConstDecl) and s.export}


def walk(node: Node) -> Iterator[Node]:
    """Pre-order traversal of node and all descendants."""
    stack = [node]
    while stack:
        current = stack.pop()
        yield current
        kids = list(current.children())
        stack.extend(reversed(kids))


def transform(node: Node, fn: Callable[[Node], Node | None]) -> Node:
    """
    Rebuild node bottom-up, letting fn replace any node.

    fn returns a replacement node, or None to keep the (rebuilt) node.
    """
    changes = {}
    for f in fields(node):
        value = getattr(node, f.name)
        if isinstance(value, Node):
            new = transform(value, fn)
            if new is not value:
                changes[f.name] = new
        elif isinstance(value, tuple) and value:
            rebuilt = tuple(_transform_item(item, fn) for item in value)
            if any(a is not b for a, b in zip(rebuilt, value)):
                changes[f.name] = rebuilt
    rebuilt_node = replace(node, **changes) if changes else node
    out = fn(rebuilt_node)
    return rebuilt_node if out is None else out


def _transform_item(item, fn):
    if isinstance(item, Node):
        return transform(item, fn)
    if isinstance(item, tuple):
        rebuilt = tuple(_transform_item(sub, fn) for sub in item)
        if any(a is not b for a, b in zip(rebuilt, item)):
            return rebuilt
    return item


def table_ref(node: Node) -> tuple[str, str] | None:
    """Match talent.<block>["<table>"] and return (block, table)."""
    if (
        isinstance(node, Index)
        and isinstance(node.index, Str)
        and isinstance(node.obj, Member)
        and isinstance(node.obj.obj, Ident)
        and node.obj.obj.name == "talent"
    ):
        return node.obj.prop, node.index.value
    return None


def make_table_ref(block: str, table: str) -> Index:
    return Index(Member(Ident("talent"), block), Str(table))


def callee_name(node: Node) -> str | None:
    """Dotted name of a call target: dmg / dmg.basic / Math.max ..."""
    if isinstance(node, Ident):
        return node.name
    if isinstance(node, Member):
        base = callee_name(node.obj)
        return f"{base}.{node.prop}" if base else None
    return None
