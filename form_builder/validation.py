"""
Validation engine for form field values.

Pure functions mapping a value and a rule set to a single result. Rules are
checked in a fixed order and the first failing rule wins, so the message for
a given (value, rules) pair is always the same.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional
import re
import logging

from .form_models import FormField, ValidationRules

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r'^[\w\-.]+@[\w-]+\.[a-z]{2,}\Z', re.IGNORECASE)
PASSWORD_MIN_LENGTH = 8
_DIGIT = re.compile(r'\d')


class ErrorKind:
    """Validation error kind constants."""
    REQUIRED = "required"
    MIN_LENGTH = "min_length"
    MAX_LENGTH = "max_length"
    EMAIL = "email"
    PASSWORD = "password"


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of validating one value. ``kind`` is None when the value passed."""

    kind: Optional[str] = None
    message: str = ""

    @property
    def is_valid(self) -> bool:
        return self.kind is None

    @classmethod
    def ok(cls) -> 'ValidationResult':
        return cls()

    @classmethod
    def fail(cls, kind: str, message: str) -> 'ValidationResult':
        return cls(kind=kind, message=message)

    def to_dict(self) -> Dict[str, Any]:
        return {'kind': self.kind, 'message': self.message}


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    return str(value).strip() == ''


def validate(value: Any, rules: Optional[ValidationRules]) -> ValidationResult:
    """
    Validate a value against a rule set.

    Order: required, minLength, maxLength, email, passwordRule. Length,
    email and password rules only apply to string values; numbers and
    booleans are checked for presence only, so ``0`` and ``False`` satisfy
    ``required``.

    Args:
        value: Current field value (None when absent)
        rules: Rule set, or None for a field without rules

    Returns:
        ValidationResult for the first failing rule, or an ok result
    """
    if rules is None:
        return ValidationResult.ok()

    if rules.required and _is_blank(value):
        return ValidationResult.fail(ErrorKind.REQUIRED, "Field is required")

    if not isinstance(value, str):
        return ValidationResult.ok()

    # a bound of 0 is how the editor stores an empty length input
    if rules.min_length and len(value) < rules.min_length:
        return ValidationResult.fail(ErrorKind.MIN_LENGTH, f"Min {rules.min_length} characters")

    if rules.max_length and len(value) > rules.max_length:
        return ValidationResult.fail(ErrorKind.MAX_LENGTH, f"Max {rules.max_length} characters")

    if rules.email and not EMAIL_PATTERN.match(value):
        return ValidationResult.fail(ErrorKind.EMAIL, "Invalid email")

    if rules.password_rule and (len(value) < PASSWORD_MIN_LENGTH or not _DIGIT.search(value)):
        return ValidationResult.fail(
            ErrorKind.PASSWORD,
            f"Password must be at least {PASSWORD_MIN_LENGTH} characters and contain a number"
        )

    return ValidationResult.ok()


def validate_field(field: FormField, value: Any) -> ValidationResult:
    """Validate a value against the rules declared on a field."""
    result = validate(value, field.validations)
    if not result.is_valid:
        logger.debug(f"Field '{field.label or field.id}' failed {result.kind}: {result.message}")
    return result
