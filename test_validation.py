"""
Unit tests for the validation engine.
"""

import pytest

from form_builder.form_models import FormField, ValidationRules
from form_builder.validation import ErrorKind, ValidationResult, validate, validate_field


class TestRequired:
    """Test cases for the required rule."""

    @pytest.mark.parametrize("value", [None, "", "   ", "\t\n"])
    def test_required_fails_on_absent_or_blank(self, value):
        """Test that absent and blank values fail required."""
        result = validate(value, ValidationRules(required=True))

        assert not result.is_valid
        assert result.kind == ErrorKind.REQUIRED
        assert result.message == "Field is required"

    @pytest.mark.parametrize("value", [0, 0.0, False, "x"])
    def test_required_passes_on_falsy_scalars(self, value):
        """Test that 0 and False count as present."""
        assert validate(value, ValidationRules(required=True)).is_valid

    def test_required_checked_before_other_rules(self):
        """Test that the first failing rule wins."""
        rules = ValidationRules(required=True, email=True, min_length=5)

        assert validate("", rules).kind == ErrorKind.REQUIRED


class TestLengthRules:
    """Test cases for minLength and maxLength."""

    def test_min_length_boundary(self):
        """Test that a value exactly at the minimum passes."""
        rules = ValidationRules(min_length=3)

        assert validate("abc", rules).is_valid
        result = validate("ab", rules)
        assert result.kind == ErrorKind.MIN_LENGTH
        assert result.message == "Min 3 characters"

    def test_max_length_boundary(self):
        """Test that a value exactly at the maximum passes."""
        rules = ValidationRules(max_length=5)

        assert validate("abcde", rules).is_valid
        result = validate("abcdef", rules)
        assert result.kind == ErrorKind.MAX_LENGTH
        assert result.message == "Max 5 characters"

    def test_min_checked_before_max(self):
        """Test rule order when both bounds are impossible to meet."""
        rules = ValidationRules(min_length=5, max_length=2)

        assert validate("abc", rules).kind == ErrorKind.MIN_LENGTH

    def test_zero_bounds_are_unset(self):
        """Test that a bound of 0 never fails."""
        rules = ValidationRules(min_length=0, max_length=0)

        assert validate("anything at all", rules).is_valid

    def test_length_rules_skip_non_strings(self):
        """Test that numbers and booleans only see the required rule."""
        rules = ValidationRules(min_length=5, max_length=1, email=True, password_rule=True)

        assert validate(12, rules).is_valid
        assert validate(True, rules).is_valid


class TestEmailRule:
    """Test cases for the email rule."""

    def test_email_scenario(self):
        """Test the email example: missing top-level domain fails."""
        rules = ValidationRules(required=True, email=True)

        failed = validate("bob@example", rules)
        assert failed.kind == ErrorKind.EMAIL
        assert failed.message

        assert validate("bob@example.com", rules).is_valid

    def test_email_is_case_insensitive(self):
        """Test upper-case addresses."""
        assert validate("Bob.Smith@Example.COM", ValidationRules(email=True)).is_valid

    @pytest.mark.parametrize("value", ["bob", "bob@", "@example.com", "bob@example.c", "bob@example.com\n"])
    def test_invalid_emails(self, value):
        """Test malformed addresses."""
        assert validate(value, ValidationRules(email=True)).kind == ErrorKind.EMAIL


class TestPasswordRule:
    """Test cases for the password rule."""

    def test_password_needs_length_and_digit(self):
        """Test the eight character and digit requirement."""
        rules = ValidationRules(password_rule=True)

        assert validate("abcdefg1", rules).is_valid
        assert validate("abcdefgh", rules).kind == ErrorKind.PASSWORD
        assert validate("abc1", rules).kind == ErrorKind.PASSWORD
        assert validate("abc1", rules).message == (
            "Password must be at least 8 characters and contain a number"
        )


class TestValidateHelpers:
    """Test cases for validate_field and ValidationResult."""

    def test_no_rules_is_ok(self):
        """Test a field without rules."""
        assert validate(None, None).is_valid
        assert validate_field(FormField(id='a'), None).is_valid

    def test_validate_field_uses_field_rules(self):
        """Test that validate_field applies the field's rule set."""
        field = FormField(id='name', label='Name', validations=ValidationRules(required=True))

        assert validate_field(field, "").kind == ErrorKind.REQUIRED

    def test_validate_is_pure(self):
        """Test that repeated calls give equal results."""
        rules = ValidationRules(min_length=4)

        assert validate("abc", rules) == validate("abc", rules)

    def test_result_to_dict(self):
        """Test result serialization."""
        assert ValidationResult.ok().to_dict() == {'kind': None, 'message': ''}
        assert ValidationResult.fail(ErrorKind.EMAIL, "Invalid email").to_dict() == {
            'kind': 'email', 'message': 'Invalid email'
        }
