"""
Table/Reference Resolver.

Every talent.<block>["<table>"] reference must name a block the character
has and a table inside that block. Computed table names are never accepted.
"""

from __future__ import annotations
from typing import Mapping, Sequence

from ..errors import ExpressionError, TableRefError
from .nodes import Ident, Index, Member, Node, Str, table_ref, walk
from .parser import parse_expression


def iter_table_refs(node: Node):
    """Yield (block, table) for every static table reference in node."""
    for sub in walk(node):
        ref = table_ref(sub)
        if ref is not None:
            yield ref


def validate_table_refs(
    expr: Node | str,
    known_tables: Mapping[str, Sequence[str]],
    field: str = "expr",
) -> None:
    """Raise TableRefError on the first reference outside known_tables."""
    node = parse_expression(expr) if isinstance(expr, str) else expr
    for sub in walk(node):
        if not isinstance(sub, Index):
            continue
        obj = sub.obj
        if isinstance(obj, Ident) and obj.name == "talent":
            raise ExpressionError("uses dynamic talent access", field=field)
        if not (isinstance(obj, Member) and isinstance(obj.obj, Ident) and obj.obj.name == "talent"):
            continue
        block = obj.prop
        if block not in known_tables:
            raise TableRefError(TableRefError.UNSUPPORTED_TALENT, block, field=field)
        if not isinstance(sub.index, Str):
            raise ExpressionError(f"uses dynamic table access on talent.{block}", field=field)
        if sub.index.value not in known_tables[block]:
            raise TableRefError(TableRefError.UNKNOWN_TABLE, block, sub.index.value, field=field)
