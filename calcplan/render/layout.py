"""
Multi-line layout for rendered modules.

Expressions print through expr.to_source; this module only decides where
the line breaks go for row arrays, row objects and closure bodies.
"""

from __future__ import annotations

from ..expr import Arrow, ArrayLit, Block, ConstDecl, If, Module, Node, ObjectLit, Return, to_source
from ..expr.printer import format_key

INLINE_BLOCK_LIMIT = 100
_INDENT = "  "


def _has_arrow(node: ObjectLit) -> bool:
    return any(isinstance(v, Arrow) or (isinstance(v, ObjectLit) and _has_arrow(v)) for _, v in node.props)


def _block_inline(block: Block) -> bool:
    if any(isinstance(s, If) and isinstance(s.then, Block) for s in block.body):
        return False
    return len(to_source(block)) <= INLINE_BLOCK_LIMIT


def format_value(node: Node, level: int) -> str:
    if isinstance(node, ArrayLit) and any(isinstance(i, ObjectLit) for i in node.items):
        pad = _INDENT * (level + 1)
        items = [pad + format_value(i, level + 1) for i in node.items]
        return "[\n" + ",\n".join(items) + "\n" + _INDENT * level + "]"
    if isinstance(node, ObjectLit) and _has_arrow(node):
        pad = _INDENT * (level + 1)
        props = [f"{pad}{format_key(k)}: {format_value(v, level + 1)}" for k, v in node.props]
        return "{\n" + ",\n".join(props) + "\n" + _INDENT * level + "}"
    if isinstance(node, Arrow) and isinstance(node.body, Block) and not _block_inline(node.body):
        params = "(" + ", ".join(to_source(p) for p in node.params) + ")"
        return f"{params} => {format_block(node.body, level)}"
    return to_source(node)


def format_block(block: Block, level: int) -> str:
    pad = _INDENT * (level + 1)
    lines = [pad + format_statement(s, level + 1) for s in block.body]
    return "{\n" + "\n".join(lines) + "\n" + _INDENT * level + "}"


def format_statement(node: Node, level: int) -> str:
    if isinstance(node, If) and isinstance(node.then, Block):
        return f"if ({to_source(node.test)}) {format_block(node.then, level)}"
    if isinstance(node, ConstDecl):
        value = format_value(node.value, level)
        prefix = "export const" if node.export else "const"
        return f"{prefix} {node.name} = {value}"
    if isinstance(node, Return) and node.value is not None:
        return f"return {format_value(node.value, level)}"
    return to_source(node)


def format_module(module: Module, header: str = "", groups: list[int] | None = None) -> str:
    """
    Print module with one declaration per line.

    groups lists statement indexes after which a blank line goes.
    """
    breaks = set(groups or [])
    lines: list[str] = []
    if header:
        lines.append(header)
    for idx, stmt in enumerate(module.body):
        lines.append(format_statement(stmt, 0))
        if idx in breaks:
            lines.append("")
    return "\n".join(lines) + "\n"
