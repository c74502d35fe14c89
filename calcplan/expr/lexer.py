"""
Tokenizer for the restricted expression language.

Two modes:
- fragment mode (default): plan fragments from the LLM. Statement
  separators, comments, template strings, assignment and arrow syntax are
  rejected here, before any parsing happens.
- module mode: the renderer's own output, which additionally contains
  `//` header comments, `=` in const declarations, `=>` and `;`.
"""

from __future__ import annotations
from dataclasses import dataclass

from ..errors import ExpressionError

NUM = "num"
STR = "str"
IDENT = "ident"
PUNCT = "punct"
EOF = "eof"

# Longest first so that greedy matching works.
_OPERATORS = [
    "===", "!==", "**", "==", "!=", "<=", ">=", "&&", "||", "??", "=>",
    "+", "-", "*", "/", "%", "<", ">", "!", "?", ":", ".", ",",
    "(", ")", "[", "]", "{", "}", "=", ";",
]

_ASSIGN_OPS = ("+=", "-=", "*=", "/=", "%=", "**=", "&&=", "||=", "??=")


@dataclass(frozen=True)
class Token:
    kind: str
    value: object
    pos: int

    def is_punct(self, *values: str) -> bool:
        return self.kind == PUNCT and self.value in values

    def is_ident(self, *names: str) -> bool:
        return self.kind == IDENT and (not names or self.value in names)


def _is_ident_start(ch: str) -> bool:
    return ch == "_" or ch == "$" or ch.isalpha()


def _is_ident_part(ch: str) -> bool:
    return ch == "_" or ch == "$" or ch.isalnum()


def tokenize(text: str, module: bool = False) -> list[Token]:
    """Split text into tokens, rejecting constructs the mode does not allow."""
    tokens: list[Token] = []
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if ch in " \t\r\n ":
            i += 1
            continue

        if ch == "/" and i + 1 < n and text[i + 1] in "/*":
            if not module:
                raise ExpressionError("contains comment syntax")
            if text[i + 1] == "/":
                end = text.find("\n", i)
                i = n if end == -1 else end + 1
            else:
                end = text.find("*/", i + 2)
                if end == -1:
                    raise ExpressionError("has unterminated comment")
                i = end + 2
            continue

        if ch == "`":
            raise ExpressionError("uses template string syntax")

        if ch.isdigit() or (ch == "." and i + 1 < n and text[i + 1].isdigit()):
            j = i
            while j < n and text[j].isdigit():
                j += 1
            is_float = False
            if j < n and text[j] == ".":
                is_float = True
                j += 1
                while j < n and text[j].isdigit():
                    j += 1
            if j < n and text[j] in "eE":
                k = j + 1
                if k < n and text[k] in "+-":
                    k += 1
                if k < n and text[k].isdigit():
                    is_float = True
                    j = k
                    while j < n and text[j].isdigit():
                        j += 1
            raw = text[i:j]
            if j < n and _is_ident_start(text[j]):
                raise ExpressionError(f"has malformed number near {text[i:j + 1]!r}")
            value = float(raw) if is_float else int(raw)
            tokens.append(Token(NUM, value, i))
            i = j
            continue

        if ch in "\"'":
            value, end = _read_string(text, i)
            tokens.append(Token(STR, value, i))
            i = end
            continue

        if _is_ident_start(ch):
            j = i + 1
            while j < n and _is_ident_part(text[j]):
                j += 1
            tokens.append(Token(IDENT, text[i:j], i))
            i = j
            continue

        for op in _ASSIGN_OPS:
            if text.startswith(op, i):
                raise ExpressionError("uses assignment operator")
        if text.startswith("++", i) or text.startswith("--", i):
            raise ExpressionError("uses increment/decrement operator")

        for op in _OPERATORS:
            if text.startswith(op, i):
                if not module:
                    if op == ";":
                        raise ExpressionError("contains statement separator")
                    if op == "=>":
                        raise ExpressionError("uses arrow function syntax")
                    if op == "=":
                        raise ExpressionError("uses assignment operator")
                tokens.append(Token(PUNCT, op, i))
                i += len(op)
                break
        else:
            raise ExpressionError(f"has unexpected character {ch!r}")

    tokens.append(Token(EOF, None, n))
    return tokens


_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "b": "\b", "f": "\f", "v": "\v", "0": "\0"}


def _read_string(text: str, start: int) -> tuple[str, int]:
    quote = text[start]
    out: list[str] = []
    i = start + 1
    n = len(text)
    while i < n:
        ch = text[i]
        if ch == quote:
            return "".join(out), i + 1
        if ch == "\n":
            break
        if ch == "\\":
            i += 1
            if i >= n:
                break
            esc = text[i]
            if esc == "u":
                hex_digits = text[i + 1:i + 5]
                if len(hex_digits) != 4 or any(c not in "0123456789abcdefABCDEF" for c in hex_digits):
                    raise ExpressionError("has invalid unicode escape")
                out.append(chr(int(hex_digits, 16)))
                i += 5
                continue
            if esc == "x":
                hex_digits = text[i + 1:i + 3]
                if len(hex_digits) != 2 or any(c not in "0123456789abcdefABCDEF" for c in hex_digits):
                    raise ExpressionError("has invalid hex escape")
                out.append(chr(int(hex_digits, 16)))
                i += 3
                continue
            out.append(_ESCAPES.get(esc, esc))
            i += 1
            continue
        out.append(ch)
        i += 1
    raise ExpressionError("has unterminated string literal")
