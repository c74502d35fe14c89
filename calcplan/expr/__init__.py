"""
Restricted expression language: lexer, parser, AST, printer, safety checks
and talent table reference resolution.
"""

from .nodes import (
    Node, Num, Str, Bool, Null, Ident, Member, Index, Call, Unary, Binary, Cond,
    ObjectLit, ArrayLit, ObjectPattern, Block, Arrow, ConstDecl, If, Return, Module,
    walk, transform, table_ref, make_table_ref, callee_name,
)
from .parser import parse_expression, parse_module
from .printer import to_source, format_number, quote_string, format_key
from .safety import (
    ExprContext,
    is_safe_guard_expr,
    is_safe_value_expr,
    is_structured_result,
    check_expr_structure,
    validate_fragment,
    check_node,
    is_ascii_identifier,
)
from .tables import validate_table_refs, iter_table_refs

__all__ = [
    # Nodes
    "Node", "Num", "Str", "Bool", "Null", "Ident", "Member", "Index", "Call",
    "Unary", "Binary", "Cond", "ObjectLit", "ArrayLit", "ObjectPattern", "Block",
    "Arrow", "ConstDecl", "If", "Return", "Module",
    "walk", "transform", "table_ref", "make_table_ref", "callee_name",
    # Parsing / printing
    "parse_expression", "parse_module", "to_source", "format_number", "quote_string", "format_key",
    # Safety
    "ExprContext", "is_safe_guard_expr", "is_safe_value_expr", "is_structured_result",
    "check_expr_structure", "validate_fragment", "check_node", "is_ascii_identifier",
    # Tables
    "validate_table_refs", "iter_table_refs",
]
