"""Tests for the closed-grammar expression evaluator."""

import pytest

from agency_workflows.core.exceptions import ConditionEvaluationError
from agency_workflows.core.expressions import (
    BoolOp,
    Compare,
    FieldRef,
    Literal,
    Not,
    evaluate_expression,
    parse_expression,
    resolve_field,
    tokenize,
)


@pytest.fixture
def student():
    return {
        "budget": 35000,
        "status": "active",
        "tags": ["vip", "returning"],
        "student": {"name": "Amara", "address": {"city": "Leeds"}},
        "score": 7.5,
        "nickname": None,
    }


class TestTokenizer:
    """Test cases for tokenize."""

    def test_keywords_are_case_insensitive(self):
        """Keywords are normalized to lower case."""
        tokens = tokenize("a AND b Or NOT c")
        assert [token.value for token in tokens if token.kind == "keyword"] == ["and", "or", "not"]

    def test_dotted_names_are_single_tokens(self):
        """Dotted paths stay in one name token."""
        tokens = tokenize("student.address.city == 'Leeds'")
        assert tokens[0].kind == "name"
        assert tokens[0].value == "student.address.city"

    def test_rejects_characters_outside_grammar(self):
        """Characters such as ; or __ calls never reach evaluation."""
        with pytest.raises(ConditionEvaluationError, match="Unexpected character"):
            tokenize("budget > 1; import os")


class TestParser:
    """Test cases for parse_expression."""

    def test_comparison_tree(self):
        """A single comparison parses to a Compare node."""
        tree = parse_expression("budget > 30000")
        assert tree == Compare(">", FieldRef("budget"), Literal(30000))

    def test_and_binds_tighter_than_or(self):
        """a or b and c groups as a or (b and c)."""
        tree = parse_expression("a or b and c")
        assert isinstance(tree, BoolOp)
        assert tree.operator == "or"
        assert isinstance(tree.operands[1], BoolOp)
        assert tree.operands[1].operator == "and"

    def test_symbolic_operators(self):
        """&&, || and ! are accepted as aliases."""
        tree = parse_expression("!a && (b || c)")
        assert isinstance(tree, BoolOp)
        assert isinstance(tree.operands[0], Not)

    @pytest.mark.parametrize("text", [
        "",
        "budget >",
        "(budget > 1",
        "budget > 1 )",
        "[1, budget]",
        "budget 1",
    ])
    def test_invalid_syntax(self, text):
        """Malformed expressions raise ConditionEvaluationError."""
        with pytest.raises(ConditionEvaluationError):
            parse_expression(text)

    def test_non_string_expression(self):
        """Only strings can be parsed."""
        with pytest.raises(ConditionEvaluationError, match="must be a string"):
            parse_expression(42)

    def test_nesting_limit(self):
        assert parse_expression("(" * 64 + "budget > 1" + ")" * 64) == Compare(">", FieldRef("budget"), Literal(1))
        with pytest.raises(ConditionEvaluationError, match="nested too deeply"):
            parse_expression("(" * 65 + "budget > 1" + ")" * 65)
        with pytest.raises(ConditionEvaluationError, match="nested too deeply"):
            parse_expression("not " * 100 + "budget")

    def test_length_limit(self):
        with pytest.raises(ConditionEvaluationError, match="longer than 2000 characters"):
            parse_expression("(" * 2000 + "a" + ")" * 2000)
        with pytest.raises(ConditionEvaluationError, match="longer than"):
            evaluate_expression(" or ".join(["budget > 1"] * 200), {"budget": 5})


class TestEvaluation:
    """Test cases for evaluate_expression."""

    @pytest.mark.parametrize("text, expected", [
        ("budget > 30000", True),
        ("budget <= 30000", False),
        ("budget >= 35000 and status == 'active'", True),
        ("status != \"active\" or score > 7", True),
        ("not status == 'active'", False),
        ("tags contains 'vip'", True),
        ("'gold' in tags", False),
        ("student.address.city in ['Leeds', 'York']", True),
        ("student.address.postcode == null", True),
        ("nickname == none", True),
        ("score > 7.25 && score < 8", True),
        ("missing > 10", False),
        ("true", True),
        ("false or budget", True),
    ])
    def test_expressions(self, student, text, expected):
        """Expressions evaluate against the named fields."""
        assert evaluate_expression(text, student) is expected

    def test_incomparable_types(self, student):
        """Ordering a string against a number is an evaluation error, not a crash."""
        with pytest.raises(ConditionEvaluationError, match="Cannot apply"):
            evaluate_expression("status > 3", student)

    def test_empty_data(self):
        """Unknown fields resolve to null."""
        assert evaluate_expression("anything == null", None) is True


class TestResolveField:
    """Test cases for resolve_field."""

    def test_nested_dicts(self, student):
        assert resolve_field(student, "student.address.city") == "Leeds"

    def test_list_index(self, student):
        assert resolve_field(student, "tags.1") == "returning"
        assert resolve_field(student, "tags.5") is None

    def test_missing_segment(self, student):
        assert resolve_field(student, "student.phone.mobile") is None
        assert resolve_field(student, "budget.amount") is None
