"""
Unit tests for the sandboxed formula language.
"""

from datetime import date

import pytest

from form_builder.expression import (
    ExpressionEvaluationError,
    ExpressionSyntaxError,
    compile_expression,
    evaluate_expression,
    tokenize,
)


def fixed_clock():
    return date(2024, 6, 1)


class TestArithmetic:
    """Test cases for operators and precedence."""

    @pytest.mark.parametrize("formula, expected", [
        ("1 + 2 * 3", 7),
        ("(1 + 2) * 3", 9),
        ("10 - 4 - 3", 3),
        ("10 / 4", 2.5),
        ("10 / 5", 2),
        ("7 % 3", 1),
        ("-2 * 3", -6),
        ("2 - -3", 5),
        ("1.5 + 1.5", 3),
    ])
    def test_numeric_results(self, formula, expected):
        """Test arithmetic evaluation and precedence."""
        assert evaluate_expression(formula, {}) == expected

    def test_integral_results_are_ints(self):
        """Test that whole-number float results come back as int."""
        result = evaluate_expression("a / 2", {'a': 8})

        assert result == 4
        assert isinstance(result, int)

    def test_numeric_text_is_coerced(self):
        """Test that numeric strings from text inputs work in arithmetic."""
        assert evaluate_expression("a * 2", {'a': '21'}) == 42

    def test_plus_concatenates_with_text(self):
        """Test string concatenation."""
        assert evaluate_expression("'a' + 1", {}) == 'a1'
        assert evaluate_expression("first + ' ' + last", {'first': 'Ada', 'last': 'Lovelace'}) == 'Ada Lovelace'
        assert evaluate_expression("'x' + null", {}) == 'x'

    def test_division_by_zero(self):
        """Test that dividing by zero is an evaluation error."""
        with pytest.raises(ExpressionEvaluationError):
            evaluate_expression("1 / 0", {})
        with pytest.raises(ExpressionEvaluationError):
            evaluate_expression("5 % 0", {})

    def test_empty_input_in_arithmetic(self):
        """Test that an unset input cannot be used as a number."""
        with pytest.raises(ExpressionEvaluationError):
            evaluate_expression("a + 1", {'a': None})

    def test_booleans_are_not_numbers(self):
        """Test that true + 1 is rejected."""
        with pytest.raises(ExpressionEvaluationError):
            evaluate_expression("true + 1", {})


class TestLogicAndComparison:
    """Test cases for comparison and logical operators."""

    @pytest.mark.parametrize("formula, expected", [
        ("1 < 2 && 3 > 4", False),
        ("1 < 2 || 3 > 4", True),
        ("true and not false", True),
        ("!(2 >= 2)", False),
        ("'5' == 5", True),
        ("1 === 1", True),
        ("1 !== 2", True),
        ("1 == true", False),
        ("'abc' < 'abd'", True),
        ("null == null", True),
    ])
    def test_boolean_results(self, formula, expected):
        """Test comparisons and logic."""
        assert evaluate_expression(formula, {}) is expected

    def test_or_returns_operand(self):
        """Test that || yields the first truthy operand."""
        assert evaluate_expression("nickname || 'anonymous'", {'nickname': ''}) == 'anonymous'

    def test_short_circuit(self):
        """Test that the right side is skipped when the left decides."""
        assert evaluate_expression("false && 1 / 0", {}) is False
        assert evaluate_expression("true || 1 / 0", {}) is True

    def test_ordering_with_empty_value_fails(self):
        """Test that comparing an unset input is an error."""
        with pytest.raises(ExpressionEvaluationError):
            evaluate_expression("age >= 18", {'age': None})


class TestFunctions:
    """Test cases for whitelisted functions."""

    @pytest.mark.parametrize("formula, expected", [
        ("max(1, 5, 3)", 5),
        ("min(4, 2)", 2),
        ("abs(-3)", 3),
        ("round(2.5)", 3),
        ("round(-2.5)", -3),
        ("round(1.25, 1)", 1.3),
        ("floor(2.7)", 2),
        ("ceil(2.1)", 3),
        ("len('abc')", 3),
        ("upper(trim('  hi '))", 'HI'),
        ("lower('ABC')", 'abc'),
        ("concat('a', 1, true)", 'a1true'),
        ("number('12.5')", 12.5),
        ("text(3)", '3'),
    ])
    def test_function_results(self, formula, expected):
        """Test scalar functions."""
        assert evaluate_expression(formula, {}) == expected

    def test_if_selects_branch(self):
        """Test the conditional function."""
        formula = "if(total > 100, 'large', 'small')"

        assert evaluate_expression(formula, {'total': 150}) == 'large'
        assert evaluate_expression(formula, {'total': 50}) == 'small'

    def test_if_is_lazy(self):
        """Test that the unused branch is not evaluated."""
        assert evaluate_expression("if(true, 1, 1 / 0)", {}) == 1

    def test_unknown_function(self):
        """Test that only whitelisted functions can be called."""
        with pytest.raises(ExpressionEvaluationError):
            evaluate_expression("__import__('os')", {})
        with pytest.raises(ExpressionEvaluationError):
            evaluate_expression("open('x')", {})

    def test_wrong_arity(self):
        """Test argument count checks."""
        with pytest.raises(ExpressionEvaluationError):
            evaluate_expression("abs(1, 2)", {})
        with pytest.raises(ExpressionEvaluationError):
            evaluate_expression("if(true, 1)", {})


class TestDates:
    """Test cases for date handling."""

    def test_years_between_with_clock(self):
        """Test an age calculation against a fixed today()."""
        formula = "years_between(dob, today())"

        assert evaluate_expression(formula, {'dob': '2000-06-02'}, clock=fixed_clock) == 23
        assert evaluate_expression(formula, {'dob': '2000-06-01'}, clock=fixed_clock) == 24

    def test_date_arithmetic(self):
        """Test adding days and subtracting dates."""
        assert evaluate_expression("date('2024-01-31') + 1", {}) == '2024-02-01'
        assert evaluate_expression("date('2024-03-01') - date('2024-01-01')", {}) == 60
        assert evaluate_expression("days_between('2024-01-01', '2024-03-01')", {}) == 60

    def test_date_parts(self):
        """Test year, month and day."""
        inputs = {'d': '2024-05-06'}

        assert evaluate_expression("year(d)", inputs) == 2024
        assert evaluate_expression("month(d)", inputs) == 5
        assert evaluate_expression("day(d)", inputs) == 6
        assert evaluate_expression("date(2024, 2, 29)", {}) == '2024-02-29'

    def test_invalid_date(self):
        """Test that unparseable dates are evaluation errors."""
        with pytest.raises(ExpressionEvaluationError):
            evaluate_expression("year(d)", {'d': 'not a date'})
        with pytest.raises(ExpressionEvaluationError):
            evaluate_expression("date(2023, 2, 30)", {})


class TestSandbox:
    """Test cases for names and syntax restrictions."""

    def test_unknown_name(self):
        """Test that every name must be a supplied input."""
        with pytest.raises(ExpressionEvaluationError):
            evaluate_expression("secret + 1", {'a': 1})

    def test_braced_reference(self):
        """Test references to ids that are not plain identifiers."""
        inputs = {'first-name': 'Ada', '3f2a-b': 2}

        assert evaluate_expression("{first-name} + '!'", inputs) == 'Ada!'
        assert evaluate_expression("{3f2a-b} * 2", inputs) == 4

    @pytest.mark.parametrize("formula", [
        "a.b",
        "x[0]",
        "a = 1",
        "1 +",
        "(1 + 2",
        "1 + 2)",
        "1 2",
        "f(1,)",
        "(1, 2)",
        "'unterminated",
        "{unterminated",
        "",
        "   ",
    ])
    def test_syntax_errors(self, formula):
        """Test malformed and disallowed syntax."""
        with pytest.raises(ExpressionSyntaxError):
            compile_expression(formula)

    def test_syntax_error_position(self):
        """Test that tokenizer errors report where they happened."""
        with pytest.raises(ExpressionSyntaxError) as exc_info:
            tokenize("1 $ 2")

        assert exc_info.value.position == 2

    def test_length_limit(self):
        """Test that overly long formulas are rejected."""
        formula = "'" + "x" * 600 + "'"

        with pytest.raises(ExpressionSyntaxError):
            compile_expression(formula)
        assert evaluate_expression(formula, {}, max_length=1000) == "x" * 600

    def test_depth_limit(self):
        """Test that deeply nested formulas are rejected."""
        with pytest.raises(ExpressionSyntaxError):
            compile_expression("-" * 150 + "1")

    def test_text_result_limit(self):
        """Test that huge text results are rejected."""
        with pytest.raises(ExpressionEvaluationError):
            evaluate_expression("concat(s, s)", {'s': 'x' * 6000})


class TestCompileExpression:
    """Test cases for compiled expressions."""

    def test_names_lists_referenced_inputs(self):
        """Test that names holds every input the formula reads."""
        expression = compile_expression("a + {b c} * max(a, d)")

        assert expression.names == frozenset({'a', 'b c', 'd'})

    def test_compiled_expressions_are_cached(self):
        """Test that the same text compiles once."""
        assert compile_expression("1 + 1") is compile_expression("1 + 1")

    def test_expression_is_reusable(self):
        """Test evaluating one compiled formula against different inputs."""
        expression = compile_expression("price * quantity")

        assert expression.evaluate({'price': 2, 'quantity': 3}) == 6
        assert expression.evaluate({'price': 2.5, 'quantity': 2}) == 5
