"""Tests for the condition expression grammar and its evaluation.

Covers:
- Infix and prefix (Go-template style) forms
- Truthiness of bare variables
- Equality across bools, numbers and strings
- Unset variables
- Syntax errors with offsets
"""

from __future__ import annotations

import pytest

from forge.blueprints.conditions import evaluate_condition, parse_condition
from forge.blueprints.variables import BoolValue, ResolvedVariables, StringValue
from forge.errors import ConditionSyntaxError

pytestmark = pytest.mark.unit


VALUES = {
    "UseAuth": True,
    "UseCache": False,
    "AuthType": "jwt",
    "Empty": "",
    "Workers": 4,
}


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------


class TestEvaluate:
    @pytest.mark.parametrize(
        "expression, expected",
        [
            ("UseAuth", True),
            ("UseCache", False),
            ("AuthType", True),
            ("Empty", False),
            ("Workers", True),
            ("not UseCache", True),
            ("!UseAuth", False),
            ("UseAuth and UseCache", False),
            ("UseAuth && AuthType", True),
            ("UseCache or UseAuth", True),
            ("UseCache || Empty", False),
            ('AuthType == "jwt"', True),
            ("AuthType != 'jwt'", False),
            ("Workers == 4", True),
            ('Workers == "4.0"', True),
            ("UseAuth == true", True),
            ('UseCache == "False"', True),
            ("(UseCache or UseAuth) and not Empty", True),
            ("not UseCache and UseAuth", True),
        ],
    )
    def test_infix(self, expression: str, expected: bool) -> None:
        assert parse_condition(expression).evaluate(VALUES) is expected

    @pytest.mark.parametrize(
        "expression, expected",
        [
            ('{{eq .AuthType "jwt"}}', True),
            ('{{ne .AuthType ""}}', True),
            ('{{and (ne .AuthType "") (ne .AuthType "none")}}', True),
            ("{{or .UseCache .Empty}}", False),
            ("{{or .UseCache .Empty .UseAuth}}", True),
            ("{{not .UseCache}}", True),
            ("{{- .UseAuth -}}", True),
        ],
    )
    def test_prefix(self, expression: str, expected: bool) -> None:
        assert parse_condition(expression).evaluate(VALUES) is expected

    def test_unset_variables(self) -> None:
        assert evaluate_condition("Missing", VALUES) is False
        assert evaluate_condition('Missing == ""', VALUES) is True
        assert evaluate_condition("Missing == false", VALUES) is True
        assert evaluate_condition('Missing != "x"', VALUES) is True

    def test_blank_condition_is_true(self) -> None:
        assert evaluate_condition(None, {}) is True
        assert evaluate_condition("   ", {}) is True

    def test_accepts_resolved_variables(self) -> None:
        resolved = ResolvedVariables(
            {"UseAuth": BoolValue(value=True), "AuthType": StringValue(value="none")}
        )
        assert evaluate_condition('UseAuth and AuthType != "none"', resolved) is False


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


class TestParse:
    def test_collects_variables(self) -> None:
        condition = parse_condition('{{and .UseAuth (eq .AuthType "jwt")}} ')
        assert condition.variables == frozenset({"UseAuth", "AuthType"})

    def test_parse_is_cached(self) -> None:
        assert parse_condition("UseAuth") is parse_condition("UseAuth")

    @pytest.mark.parametrize(
        "expression",
        ["", "UseAuth and", "(UseAuth", "UseAuth ) ", "A == == B", "eq .A", "UseAuth @ x", "A B"],
    )
    def test_syntax_errors(self, expression: str) -> None:
        with pytest.raises(ConditionSyntaxError):
            parse_condition(expression)

    def test_error_reports_offset(self) -> None:
        with pytest.raises(ConditionSyntaxError) as exc_info:
            parse_condition("UseAuth @ x")
        assert exc_info.value.position == 8
