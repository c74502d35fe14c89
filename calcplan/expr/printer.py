"""
Canonical source printer.

Output is deterministic: the same tree always prints to the same text, which
is what makes repair + render byte-stable across runs.
"""

from __future__ import annotations
import json
import math
import re

from .nodes import (
    Arrow, ArrayLit, Binary, Block, Bool, Call, Cond, ConstDecl, Ident, If, Index,
    Member, Module, Node, Null, Num, ObjectLit, ObjectPattern, Return, Str, Unary,
)
from .parser import BINARY_PRECEDENCE, UNARY_PRECEDENCE

_ARROW = 1
_COND = 2
_POSTFIX = 17
_PRIMARY = 18

_PLAIN_KEY_RE = re.compile(r"^[A-Za-z_$][A-Za-z0-9_$]*$")
_LOGICAL = ("||", "&&")


def format_number(value) -> str:
    """Format a number the way a JS engine would print it."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "Infinity" if value > 0 else "-Infinity"
    if value.is_integer() and abs(value) < 1e21:
        return str(int(value))
    text = repr(value)
    if "e" in text:
        mantissa, exp = text.split("e")
        sign = "-" if exp.startswith("-") else "+"
        digits = exp.lstrip("+-").lstrip("0") or "0"
        text = f"{mantissa}e{sign}{digits}"
    return text


def quote_string(value: str) -> str:
    return json.dumps(value, ensure_ascii=False).replace("\u2028", "\\u2028").replace("\u2029", "\\u2029")


def format_key(key: str) -> str:
    return key if _PLAIN_KEY_RE.match(key) else quote_string(key)


def precedence(node: Node) -> int:
    if isinstance(node, Arrow):
        return _ARROW
    if isinstance(node, Cond):
        return _COND
    if isinstance(node, Binary):
        return BINARY_PRECEDENCE[node.op][0]
    if isinstance(node, Unary):
        return UNARY_PRECEDENCE
    if isinstance(node, Num) and (node.value < 0 or (isinstance(node.value, float) and math.copysign(1, node.value) < 0)):
        return UNARY_PRECEDENCE
    if isinstance(node, (Call, Member, Index)):
        return _POSTFIX
    return _PRIMARY


def _wrap(text: str, wrap: bool) -> str:
    return f"({text})" if wrap else text


def _mixes_nullish(op: str, child: Node) -> bool:
    if not isinstance(child, Binary):
        return False
    return (op == "??" and child.op in _LOGICAL) or (op in _LOGICAL and child.op == "??")


def to_source(node: Node) -> str:
    """Print an expression or module node as source text."""
    if isinstance(node, Num):
        return format_number(node.value)
    if isinstance(node, Str):
        return quote_string(node.value)
    if isinstance(node, Bool):
        return "true" if node.value else "false"
    if isinstance(node, Null):
        return "null"
    if isinstance(node, Ident):
        return node.name

    if isinstance(node, Member):
        obj = to_source(node.obj)
        wrap = precedence(node.obj) < _POSTFIX or isinstance(node.obj, (Num, ObjectLit))
        return f"{_wrap(obj, wrap)}.{node.prop}"

    if isinstance(node, Index):
        obj = to_source(node.obj)
        wrap = precedence(node.obj) < _POSTFIX or isinstance(node.obj, ObjectLit)
        return f"{_wrap(obj, wrap)}[{to_source(node.index)}]"

    if isinstance(node, Call):
        callee = to_source(node.callee)
        wrap = precedence(node.callee) < _POSTFIX or isinstance(node.callee, (Num, ObjectLit))
        args = ", ".join(to_source(a) for a in node.args)
        return f"{_wrap(callee, wrap)}({args})"

    if isinstance(node, Unary):
        operand = to_source(node.operand)
        wrap = precedence(node.operand) < UNARY_PRECEDENCE
        operand = _wrap(operand, wrap)
        if node.op == "typeof":
            return f"typeof {operand}"
        if not wrap and operand[:1] in ("-", "+"):
            return f"{node.op} {operand}"
        return f"{node.op}{operand}"

    if isinstance(node, Binary):
        prec, right_assoc = BINARY_PRECEDENCE[node.op]
        lp = precedence(node.left)
        rp = precedence(node.right)
        wrap_left = lp < prec or (right_assoc and lp == prec) or _mixes_nullish(node.op, node.left)
        if node.op == "**" and lp == UNARY_PRECEDENCE:
            wrap_left = True
        wrap_right = rp < prec or (not right_assoc and rp == prec) or _mixes_nullish(node.op, node.right)
        left = _wrap(to_source(node.left), wrap_left)
        right = _wrap(to_source(node.right), wrap_right)
        return f"{left} {node.op} {right}"

    if isinstance(node, Cond):
        test = _wrap(to_source(node.test), precedence(node.test) <= _COND)
        then = _wrap(to_source(node.then), precedence(node.then) < _COND)
        other = _wrap(to_source(node.other), precedence(node.other) < _COND)
        return f"{test} ? {then} : {other}"

    if isinstance(node, ObjectLit):
        if not node.props:
            return "{}"
        parts = []
        for key, value in node.props:
            if isinstance(value, Ident) and value.name == key and _PLAIN_KEY_RE.match(key):
                parts.append(key)
            else:
                parts.append(f"{format_key(key)}: {_wrap(to_source(value), precedence(value) < _COND)}")
        return "{ " + ", ".join(parts) + " }"

    if isinstance(node, ArrayLit):
        return "[" + ", ".join(to_source(item) for item in node.items) + "]"

    if isinstance(node, ObjectPattern):
        if not node.names:
            return "{}"
        return "{ " + ", ".join(node.names) + " }"

    if isinstance(node, Arrow):
        params = "(" + ", ".join(to_source(p) for p in node.params) + ")"
        if isinstance(node.body, Block):
            body = to_source(node.body)
        else:
            body = _wrap(to_source(node.body), isinstance(node.body, ObjectLit) or precedence(node.body) < _COND)
        return f"{params} => {body}"

    if isinstance(node, Block):
        if not node.body:
            return "{}"
        return "{ " + "; ".join(to_source(s) for s in node.body) + " }"

    if isinstance(node, ConstDecl):
        prefix = "export const" if node.export else "const"
        return f"{prefix} {node.name} = {to_source(node.value)}"

    if isinstance(node, If):
        return f"if ({to_source(node.test)}) {to_source(node.then)}"

    if isinstance(node, Return):
        if node.value is None:
            return "return"
        return f"return {to_source(node.value)}"

    if isinstance(node, Module):
        return "\n".join(to_source(s) + ";" for s in node.body) + "\n"

    raise TypeError(f"cannot print {type(node).__name__}")
