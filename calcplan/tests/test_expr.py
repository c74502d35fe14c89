"""
Tests for the restricted expression language.

Tests:
- Lexing rejections for plan fragments
- Parsing and canonical printing
- Safety checks per context
- Table reference resolution
"""

import pytest

from ..errors import ExpressionError, TableRefError
from ..expr import (
    Binary, Call, ExprContext, Ident, Member, Num, Str,
    check_expr_structure, is_safe_guard_expr, is_safe_value_expr, is_structured_result,
    make_table_ref, parse_expression, parse_module, table_ref, to_source, validate_fragment,
    validate_table_refs,
)
from ..expr.printer import format_number


class TestLexer:
    """Constructs rejected before parsing."""

    @pytest.mark.parametrize("text, reason", [
        ("a; b", "statement separator"),
        ("`x`", "template string"),
        ("a // note", "comment"),
        ("a /* note */", "comment"),
        ("a = 1", "assignment"),
        ("a += 1", "assignment"),
        ("(x) => x", "arrow function"),
        ("a++", "increment"),
    ])
    def test_rejected_syntax(self, text, reason):
        with pytest.raises(ExpressionError) as exc:
            parse_expression(text)
        assert reason in str(exc.value)

    def test_empty_fragment(self):
        with pytest.raises(ExpressionError):
            parse_expression("   ")

    def test_trailing_input(self):
        with pytest.raises(ExpressionError):
            parse_expression("a b")

    def test_unterminated_string(self):
        with pytest.raises(ExpressionError):
            parse_expression('"abc')


class TestParserPrinter:
    """Parsing into nodes and printing canonically."""

    def test_table_reference(self):
        node = parse_expression("talent.e['技能伤害']")
        assert table_ref(node) == ("e", "技能伤害")
        assert node == make_table_ref("e", "技能伤害")

    def test_strings_print_with_double_quotes(self):
        node = parse_expression("dmg(talent.e['技能伤害'], 'e')")
        assert to_source(node) == 'dmg(talent.e["技能伤害"], "e")'

    def test_spacing_is_canonical(self):
        assert to_source(parse_expression("a*b+c")) == "a * b + c"
        assert to_source(parse_expression("params.x===true&&cons>=2")) == "params.x === true && cons >= 2"

    def test_parentheses_kept_only_when_needed(self):
        assert to_source(parse_expression("(a + b) * c")) == "(a + b) * c"
        assert to_source(parse_expression("(a * b) + c")) == "a * b + c"
        assert to_source(parse_expression("a - (b - c)")) == "a - (b - c)"

    def test_ternary_and_object(self):
        text = "cons >= 2 ? { dmg: 1, avg: 2 } : dmg(1, 'e')"
        assert to_source(parse_expression(text)) == 'cons >= 2 ? { dmg: 1, avg: 2 } : dmg(1, "e")'

    def test_printing_is_stable(self):
        text = "Math.max(calc(attr.atk) * 0.6, params.stacks || 3) / 100"
        once = to_source(parse_expression(text))
        assert to_source(parse_expression(once)) == once

    def test_numbers(self):
        assert format_number(40) == "40"
        assert format_number(40.0) == "40"
        assert format_number(1.4) == "1.4"
        assert to_source(parse_expression("1.50")) == "1.5"

    def test_unicode_escapes(self):
        assert parse_expression('"\\u6280"') == Str("技")

    def test_module_grammar(self):
        module = parse_module(
            "// header\n"
            "const toRatio = (v) => { const n = Number(v); return Number.isFinite(n) ? n / 100 : 0 }\n"
            "export const details = [{ title: \"E\", dmg: ({ talent }, dmg) => dmg(1, \"e\") }]\n"
        )
        assert len(module.body) == 2
        assert module.body[1].export


class TestSafetyChecker:
    """Per-context structural checks."""

    def test_guard_and_value_gates(self):
        assert is_safe_guard_expr("params.q === true")
        assert not is_safe_guard_expr("({ a: 1 }).a")
        assert not is_safe_guard_expr("process.exit")
        assert is_safe_value_expr("calc(attr.atk) * 0.6")
        assert not is_safe_value_expr("eval('1')")

    @pytest.mark.parametrize("text, context, message", [
        ("constructor", ExprContext.BUFF_DATA, "forbidden identifier"),
        ("foo + 1", ExprContext.BUFF_DATA, "unknown identifier foo"),
        ("element === '雷'", ExprContext.DETAIL_CHECK, "unavailable context field element"),
        ("calc(attr.atk, 1)", ExprContext.BUFF_DATA, "illegal calc() call"),
        ("calc(attr.foo)", ExprContext.BUFF_DATA, "illegal calc() call"),
        ("toRatio.call", ExprContext.DETAIL_DMG_EXPR, "call-only helper"),
        ("dmg.crit(1)", ExprContext.DETAIL_DMG_EXPR, "unknown dmg helper"),
        ("talent.e.技能伤害", ExprContext.BUFF_DATA, "dotted talent table access"),
        ("talent.e", ExprContext.BUFF_DATA, "as a value"),
        ("talent.e[params.t]", ExprContext.BUFF_DATA, "dynamic table access"),
        ("params.层数 > 1", ExprContext.BUFF_CHECK, "non-ASCII params key"),
        ("dmg(1, 'e', 'phy', 2)", ExprContext.DETAIL_DMG_EXPR, "too many arguments"),
        ("dmg(1, 'e', { a: 1 })", ExprContext.DETAIL_DMG_EXPR, "object/array as the element"),
        ("Math.random()", ExprContext.BUFF_DATA, "unsupported Math.random"),
        ("params.list.map(1)", ExprContext.BUFF_DATA, "needs a callback"),
        ("talent.e['技能伤害'] * 2", ExprContext.DETAIL_DMG_EXPR, "structured result"),
    ])
    def test_rejections(self, text, context, message):
        with pytest.raises(ExpressionError) as exc:
            validate_fragment(text, context, "frag")
        assert message in str(exc.value)
        assert exc.value.field == "frag"

    def test_heal_helper_only_for_heal_rows(self):
        node = validate_fragment("heal(calc(attr.hp) * 0.1)", ExprContext.DETAIL_DMG_EXPR, "f", kind="heal")
        assert isinstance(node, Call)
        with pytest.raises(ExpressionError):
            validate_fragment("heal(calc(attr.hp) * 0.1)", ExprContext.DETAIL_DMG_EXPR, "f", kind="dmg")

    def test_structured_results(self):
        assert is_structured_result(parse_expression("dmg.basic(calc(attr.hp) * 0.5, 'e')"))
        assert is_structured_result(parse_expression("{ dmg: 1, avg: 2 }"))
        assert is_structured_result(parse_expression("cons >= 1 ? dmg(1, 'e') : dmg(2, 'e')"))
        assert not is_structured_result(parse_expression("cons >= 1 ? dmg(1, 'e') : 2"))
        assert not is_structured_result(parse_expression("{ dmg: 1 }"))

    def test_buff_context_allows_element(self):
        node = parse_expression("element === '雷' ? 20 : 0")
        check_expr_structure(node, ExprContext.BUFF_DATA)

    def test_crafted_tree_is_checked(self):
        node = Binary("*", Call(Ident("calc"), (Member(Ident("attr"), "atk"),)), Num(0.5))
        check_expr_structure(node, ExprContext.BUFF_DATA)


class TestTableResolver:
    """Table references against the known tables."""

    TABLES = {"e": ["技能伤害"], "q": ["技能伤害"]}

    def test_known_table(self):
        validate_table_refs("talent.e['技能伤害'] + talent.q['技能伤害']", self.TABLES)

    def test_unknown_table(self):
        with pytest.raises(TableRefError) as exc:
            validate_table_refs("talent.e['不存在']", self.TABLES, field="detail.dmgExpr")
        assert exc.value.kind == TableRefError.UNKNOWN_TABLE
        assert exc.value.table == "不存在"
        assert "unknown table" in str(exc.value)

    def test_unsupported_talent(self):
        with pytest.raises(TableRefError) as exc:
            validate_table_refs("talent.t['技能伤害']", self.TABLES)
        assert exc.value.kind == TableRefError.UNSUPPORTED_TALENT

    def test_dynamic_access(self):
        with pytest.raises(ExpressionError):
            validate_table_refs("talent[params.block]", self.TABLES)
