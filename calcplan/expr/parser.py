"""
Pratt parser for the restricted expression language.

parse_expression() reads a single plan fragment; parse_module() reads back a
rendered calc.js module (const declarations, arrow functions, small blocks).
"""

from __future__ import annotations

from ..errors import ExpressionError
from .lexer import EOF, IDENT, NUM, PUNCT, STR, Token, tokenize
from .nodes import (
    Arrow, ArrayLit, Binary, Block, Bool, Call, Cond, ConstDecl, Ident, If, Index,
    Member, Module, Node, Null, Num, ObjectLit, ObjectPattern, Return, Str, Unary,
)

# Binary operator -> (precedence, right associative)
BINARY_PRECEDENCE: dict[str, tuple[int, bool]] = {
    "??": (3, False),
    "||": (3, False),
    "&&": (4, False),
    "==": (8, False),
    "!=": (8, False),
    "===": (8, False),
    "!==": (8, False),
    "<": (9, False),
    ">": (9, False),
    "<=": (9, False),
    ">=": (9, False),
    "+": (11, False),
    "-": (11, False),
    "*": (12, False),
    "/": (12, False),
    "%": (12, False),
    "**": (13, True),
}

UNARY_PRECEDENCE = 14
UNARY_OPS = ("!", "-", "+")

_MAX_DEPTH = 200


class Parser:
    """Recursive-descent / precedence-climbing parser over a token list."""

    def __init__(self, tokens: list[Token], module: bool = False):
        self.tokens = tokens
        self.pos = 0
        self.module = module
        self.depth = 0

    # -- token helpers -------------------------------------------------

    @property
    def current(self) -> Token:
        return self.tokens[self.pos]

    def peek(self, offset: int = 1) -> Token:
        idx = min(self.pos + offset, len(self.tokens) - 1)
        return self.tokens[idx]

    def advance(self) -> Token:
        tok = self.tokens[self.pos]
        if tok.kind != EOF:
            self.pos += 1
        return tok

    def accept(self, *values: str) -> bool:
        if self.current.is_punct(*values):
            self.advance()
            return True
        return False

    def expect(self, value: str) -> Token:
        tok = self.current
        if not tok.is_punct(value):
            raise self.error(f"expected {value!r}")
        return self.advance()

    def error(self, what: str) -> ExpressionError:
        tok = self.current
        found = "end of input" if tok.kind == EOF else repr(tok.value)
        return ExpressionError(f"has syntax error: {what}, found {found} at {tok.pos}")

    # -- expressions ---------------------------------------------------

    def parse_expression(self) -> Node:
        self.depth += 1
        if self.depth > _MAX_DEPTH:
            raise ExpressionError("is nested too deeply")
        try:
            return self.parse_conditional()
        finally:
            self.depth -= 1

    def parse_conditional(self) -> Node:
        if self.module and self._at_arrow():
            return self.parse_arrow()
        test = self.parse_binary(0)
        if self.accept("?"):
            then = self.parse_expression()
            self.expect(":")
            other = self.parse_expression()
            return Cond(test, then, other)
        return test

    def parse_binary(self, min_prec: int) -> Node:
        left = self.parse_unary()
        while True:
            tok = self.current
            if tok.kind != PUNCT or tok.value not in BINARY_PRECEDENCE:
                return left
            prec, right_assoc = BINARY_PRECEDENCE[tok.value]
            if prec < min_prec:
                return left
            self.advance()
            right = self.parse_binary(prec if right_assoc else prec + 1)
            left = Binary(tok.value, left, right)

    def parse_unary(self) -> Node:
        tok = self.current
        if tok.is_punct(*UNARY_OPS):
            self.advance()
            return Unary(tok.value, self.parse_unary())
        if tok.is_ident("typeof"):
            self.advance()
            return Unary("typeof", self.parse_unary())
        return self.parse_postfix()

    def parse_postfix(self) -> Node:
        node = self.parse_primary()
        while True:
            if self.accept("."):
                name = self.current
                if name.kind != IDENT:
                    raise self.error("expected property name")
                self.advance()
                node = Member(node, name.value)
            elif self.accept("["):
                index = self.parse_expression()
                self.expect("]")
                node = Index(node, index)
            elif self.accept("("):
                node = Call(node, self.parse_arguments())
            else:
                return node

    def parse_arguments(self) -> tuple[Node, ...]:
        args: list[Node] = []
        if self.accept(")"):
            return ()
        while True:
            args.append(self.parse_expression())
            if self.accept(")"):
                return tuple(args)
            self.expect(",")
            if self.accept(")"):
                return tuple(args)

    def parse_primary(self) -> Node:
        tok = self.current
        if tok.kind == NUM:
            self.advance()
            return Num(tok.value)
        if tok.kind == STR:
            self.advance()
            return Str(tok.value)
        if tok.kind == IDENT:
            self.advance()
            if tok.value == "true":
                return Bool(True)
            if tok.value == "false":
                return Bool(False)
            if tok.value == "null":
                return Null()
            return Ident(tok.value)
        if self.accept("("):
            inner = self.parse_expression()
            self.expect(")")
            return inner
        if tok.is_punct("["):
            return self.parse_array()
        if tok.is_punct("{"):
            return self.parse_object()
        raise self.error("expected expression")

    def parse_array(self) -> ArrayLit:
        self.expect("[")
        items: list[Node] = []
        while not self.accept("]"):
            items.append(self.parse_expression())
            if self.accept("]"):
                break
            self.expect(",")
        return ArrayLit(tuple(items))

    def parse_object(self) -> ObjectLit:
        self.expect("{")
        props: list[tuple[str, Node]] = []
        while not self.accept("}"):
            key_tok = self.advance()
            if key_tok.kind == IDENT or key_tok.kind == STR:
                key = key_tok.value
            elif key_tok.kind == NUM:
                key = _number_key(key_tok.value)
            else:
                self.pos -= 1
                raise self.error("expected property key")
            if self.accept(":"):
                value = self.parse_expression()
            elif key_tok.kind == IDENT:
                value = Ident(key)
            else:
                raise self.error("expected ':'")
            props.append((key, value))
            if self.accept("}"):
                break
            self.expect(",")
        return ObjectLit(tuple(props))

    # -- module-only constructs ----------------------------------------

    def _at_arrow(self) -> bool:
        tok = self.current
        if tok.kind == IDENT and self.peek().is_punct("=>"):
            return True
        if not tok.is_punct("("):
            return False
        depth = 0
        i = self.pos
        while i < len(self.tokens):
            t = self.tokens[i]
            if t.kind == EOF:
                return False
            if t.is_punct("(", "[", "{"):
                depth += 1
            elif t.is_punct(")", "]", "}"):
                depth -= 1
                if depth == 0:
                    return self.tokens[i + 1].is_punct("=>")
            i += 1
        return False

    def parse_arrow(self) -> Arrow:
        params: list[Node] = []
        if self.current.kind == IDENT:
            params.append(Ident(self.advance().value))
        else:
            self.expect("(")
            while not self.accept(")"):
                params.append(self.parse_param())
                if self.accept(")"):
                    break
                self.expect(",")
        self.expect("=>")
        if self.current.is_punct("{"):
            return Arrow(tuple(params), self.parse_block())
        return Arrow(tuple(params), self.parse_expression())

    def parse_param(self) -> Node:
        if self.current.kind == IDENT:
            return Ident(self.advance().value)
        self.expect("{")
        names: list[str] = []
        while not self.accept("}"):
            tok = self.advance()
            if tok.kind != IDENT:
                self.pos -= 1
                raise self.error("expected parameter name")
            names.append(tok.value)
            if self.accept("}"):
                break
            self.expect(",")
        return ObjectPattern(tuple(names))

    def parse_block(self) -> Block:
        self.expect("{")
        body: list[Node] = []
        while not self.accept("}"):
            if self.accept(";"):
                continue
            body.append(self.parse_statement())
        return Block(tuple(body))

    def parse_statement(self) -> Node:
        tok = self.current
        if tok.is_ident("const"):
            stmt = self.parse_const(export=False)
        elif tok.is_ident("return"):
            self.advance()
            if self.current.is_punct(";", "}"):
                stmt = Return(None)
            else:
                stmt = Return(self.parse_expression())
        elif tok.is_ident("if"):
            self.advance()
            self.expect("(")
            test = self.parse_expression()
            self.expect(")")
            if self.current.is_punct("{"):
                then = self.parse_block()
            else:
                then = self.parse_statement()
            return If(test, then)
        else:
            raise self.error("expected statement")
        self.accept(";")
        return stmt

    def parse_const(self, export: bool) -> ConstDecl:
        if not self.current.is_ident("const"):
            raise self.error("expected 'const'")
        self.advance()
        name = self.advance()
        if name.kind != IDENT:
            self.pos -= 1
            raise self.error("expected binding name")
        self.expect("=")
        return ConstDecl(name.value, self.parse_expression(), export=export)

    def parse_module(self) -> Module:
        body: list[Node] = []
        while self.current.kind != EOF:
            if self.accept(";"):
                continue
            export = False
            if self.current.is_ident("export"):
                self.advance()
                export = True
            body.append(self.parse_const(export))
            self.accept(";")
        return Module(tuple(body))


def _number_key(value) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def parse_expression(text: str) -> Node:
    """Parse a plan fragment into an expression node."""
    if not isinstance(text, str) or not text.strip():
        raise ExpressionError("is empty")
    parser = Parser(tokenize(text))
    node = parser.parse_expression()
    if parser.current.kind != EOF:
        raise parser.error("unexpected trailing input")
    return node


def parse_module(text: str) -> Module:
    """Parse rendered calc.js module text."""
    parser = Parser(tokenize(text, module=True), module=True)
    return parser.parse_module()
