"""
Form session controller.

Holds the schema being edited together with the preview values, validation
errors and derived-field states, and is the only way the UI changes any of
them. Every operation returns an inspectable result; nothing raised by the
derivation engine or the persistence gateway escapes a public method.
"""

import math
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Tuple
import logging

from .derivation import (
    DerivationGraph,
    DerivedState,
    FormulaEvaluator,
    SandboxedFormulaEvaluator,
    recompute,
)
from .diff_utils import calculate_schema_diff, format_changes, get_change_summary, has_changes
from .exceptions import PersistenceError
from .expression import DEFAULT_MAX_LENGTH, Clock, ExpressionError, compile_expression
from .form_models import FormField, FormSchema, needs_options
from .persistence import FormRepository
from .validation import ValidationResult, validate_field

logger = logging.getLogger(__name__)

_TRUE_STRINGS = {'true', '1', 'yes', 'on'}


def utc_timestamp() -> str:
    """Current UTC time as ISO-8601 with milliseconds and a ``Z`` suffix."""
    now = datetime.now(timezone.utc)
    return now.isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def coerce_value(field_def: FormField, raw: Any) -> Any:
    """
    Convert a raw input value to the representation stored for the field type.

    Raises:
        ValueError: If a number field receives a value that is not a finite number
    """
    if field_def.type == 'number':
        if raw is None:
            return None
        if isinstance(raw, bool):
            raise ValueError(f"'{raw}' is not a number")
        if isinstance(raw, (int, float)):
            number = raw
        else:
            text = str(raw).strip()
            if text == '':
                return None
            try:
                return int(text)
            except ValueError:
                pass
            try:
                number = float(text)
            except ValueError:
                raise ValueError(f"'{raw}' is not a number")
        # nan and infinities are not usable values
        if isinstance(number, float) and not math.isfinite(number):
            raise ValueError(f"'{raw}' is not a number")
        return number

    if field_def.type == 'checkbox':
        if isinstance(raw, str):
            return raw.strip().lower() in _TRUE_STRINGS
        return bool(raw)

    if field_def.type == 'date' and isinstance(raw, date):
        return raw.isoformat()

    return raw


@dataclass
class SubmitReport:
    """Outcome of validating every ordinary field."""

    is_valid: bool
    errors: Dict[str, ValidationResult] = field(default_factory=dict)

    def messages(self) -> Dict[str, str]:
        """Messages of the failing fields keyed by field id."""
        return {field_id: result.message for field_id, result in self.errors.items()
                if not result.is_valid}


@dataclass
class SessionSnapshot:
    """Read-only view of the session state for rendering."""

    fields: List[FormField]
    values: Dict[str, Any]
    errors: Dict[str, ValidationResult]
    derived_states: Dict[str, DerivedState]


class FormSession:
    """
    Controller for one in-progress form schema and its live preview.

    Structural operations return ``(ok, error)`` tuples; a failed operation
    leaves the session unchanged.
    """

    def __init__(self, store: FormRepository, schema: Optional[FormSchema] = None,
                 evaluator: Optional[FormulaEvaluator] = None, clock: Optional[Clock] = None):
        self._store = store
        self._evaluator = evaluator or SandboxedFormulaEvaluator(clock=clock)
        self._schema = schema.model_copy(deep=True) if schema else FormSchema.empty()
        self._baseline: Optional[FormSchema] = schema.model_copy(deep=True) if schema else None
        self._values: Dict[str, Any] = {}
        self._errors: Dict[str, ValidationResult] = {}
        self._derived_states: Dict[str, DerivedState] = {}
        self._saved: List[FormSchema] = []
        self.last_error: Optional[PersistenceError] = None

        self.refresh_saved_forms()
        self.reset_values()

    # ------------------------------------------------------------------
    # Read-only views

    @property
    def schema(self) -> FormSchema:
        return self._schema.model_copy(deep=True)

    @property
    def fields(self) -> List[FormField]:
        return [f.model_copy(deep=True) for f in self._schema.fields]

    @property
    def values(self) -> Dict[str, Any]:
        return dict(self._values)

    @property
    def errors(self) -> Dict[str, ValidationResult]:
        return dict(self._errors)

    @property
    def derived_states(self) -> Dict[str, DerivedState]:
        return dict(self._derived_states)

    @property
    def state(self) -> SessionSnapshot:
        return SessionSnapshot(
            fields=self.fields,
            values=self.values,
            errors=self.errors,
            derived_states=self.derived_states,
        )

    @property
    def saved_forms(self) -> List[FormSchema]:
        return [schema.model_copy(deep=True) for schema in self._saved]

    # ------------------------------------------------------------------
    # Structural edits

    def add_field(self, new_field: FormField) -> Tuple[bool, Optional[str]]:
        """Append a field to the schema."""
        if self._schema.find_field(new_field.id) is not None:
            logger.warning(f"Rejected add_field: duplicate field id '{new_field.id}'")
            return False, f"A field with id '{new_field.id}' already exists"

        added = new_field.model_copy(deep=True)
        self._schema.fields.append(added)
        self._apply_default(added)
        self._recompute()
        logger.info(f"Added {added.type} field '{added.label or added.id}'")
        return True, None

    def update_field(self, updated: FormField) -> Tuple[bool, Optional[str]]:
        """Replace the field with the same id, keeping its position."""
        index = self._schema.field_index(updated.id)
        if index < 0:
            logger.warning(f"Rejected update_field: unknown field id '{updated.id}'")
            return False, f"Field '{updated.id}' does not exist"

        replacement = updated.model_copy(deep=True)
        self._schema.fields[index] = replacement

        if replacement.is_derived:
            self._errors.pop(replacement.id, None)
        elif replacement.id in self._values:
            try:
                self._values[replacement.id] = coerce_value(replacement, self._values[replacement.id])
            except ValueError:
                self._values[replacement.id] = None
        self._apply_default(replacement)
        self._recompute()
        if replacement.id in self._errors:
            self._errors[replacement.id] = validate_field(replacement, self._values.get(replacement.id))
        logger.info(f"Updated field '{replacement.label or replacement.id}'")
        return True, None

    def delete_field(self, field_id: str) -> Tuple[bool, Optional[str]]:
        """Remove a field with its value and error."""
        index = self._schema.field_index(field_id)
        if index < 0:
            logger.warning(f"Rejected delete_field: unknown field id '{field_id}'")
            return False, f"Field '{field_id}' does not exist"

        removed = self._schema.fields.pop(index)
        self._values.pop(field_id, None)
        self._errors.pop(field_id, None)
        self._recompute()
        logger.info(f"Deleted field '{removed.label or removed.id}'")
        return True, None

    def move_field(self, from_index: int, to_index: int) -> Tuple[bool, Optional[str]]:
        """
        Move the field at ``from_index`` so it ends up at ``to_index``.

        Same semantics as removing the item and inserting it again, so
        ``move_field(0, 2)`` on ``[A, B, C]`` gives ``[B, C, A]``.
        """
        count = len(self._schema.fields)
        if not (0 <= from_index < count) or not (0 <= to_index < count):
            logger.warning(f"Rejected move_field({from_index}, {to_index}) on {count} fields")
            return False, f"Cannot move field from position {from_index} to {to_index}"

        moved = self._schema.fields.pop(from_index)
        self._schema.fields.insert(to_index, moved)
        self._recompute()
        logger.info(f"Moved field '{moved.label or moved.id}' from {from_index} to {to_index}")
        return True, None

    # ------------------------------------------------------------------
    # Values

    def set_value(self, field_id: str, raw_value: Any) -> Tuple[bool, Optional[str]]:
        """
        Store a value for an ordinary field, recompute derived fields and
        validate the changed field.
        """
        field_def = self._schema.find_field(field_id)
        if field_def is None:
            logger.warning(f"Rejected set_value: unknown field id '{field_id}'")
            return False, f"Field '{field_id}' does not exist"
        if field_def.is_derived:
            logger.warning(f"Rejected set_value on derived field '{field_id}'")
            return False, f"'{field_def.label or field_id}' is computed and cannot be edited"

        try:
            value = coerce_value(field_def, raw_value)
        except ValueError as e:
            logger.debug(f"Rejected value for '{field_id}': {e}")
            return False, str(e)

        self._values[field_id] = value
        self._recompute()
        self._errors[field_id] = validate_field(field_def, value)
        logger.debug(f"Set value of '{field_id}' to {value!r}")
        return True, None

    def reset_values(self) -> None:
        """Start the preview over from each field's default value."""
        self._values = {}
        self._errors = {}
        for field_def in self._schema.fields:
            self._apply_default(field_def)
        self._recompute()

    def submit(self) -> SubmitReport:
        """Validate every ordinary field and keep the results as the error map."""
        results: Dict[str, ValidationResult] = {}
        for field_def in self._schema.fields:
            if field_def.is_derived:
                continue
            results[field_def.id] = validate_field(field_def, self._values.get(field_def.id))

        self._errors = dict(results)
        report = SubmitReport(is_valid=all(r.is_valid for r in results.values()), errors=results)
        failed = len(report.messages())
        if report.is_valid:
            logger.info(f"Submit passed for {len(results)} fields")
        else:
            logger.info(f"Submit failed: {failed} of {len(results)} fields invalid")
        return report

    # ------------------------------------------------------------------
    # Saving and loading

    def commit_save(self, name: str) -> Tuple[Optional[FormSchema], Optional[str]]:
        """
        Save the current schema under ``name`` as a new entry.

        Returns:
            Tuple of (saved schema, None) or (None, error message)
        """
        clean_name = (name or '').strip()
        if not clean_name:
            logger.warning("Rejected commit_save: empty form name")
            return None, "Form name is required"
        if not self._schema.fields:
            logger.warning("Rejected commit_save: form has no fields")
            return None, "Add at least one field before saving"

        saved = self._schema.model_copy(deep=True, update={
            'id': str(uuid.uuid4()),
            'name': clean_name,
            'created_at': utc_timestamp(),
        })

        try:
            collection = self._store.append(saved)
        except PersistenceError as e:
            logger.error(f"Failed to save form '{clean_name}': {e}", exc_info=True)
            self.last_error = e
            return None, e.message

        self._saved = [schema.model_copy(deep=True) for schema in collection]
        self._schema.id = saved.id
        self._schema.name = saved.name
        self._schema.created_at = saved.created_at
        self._baseline = saved.model_copy(deep=True)
        self.last_error = None
        logger.info(f"Saved form '{clean_name}' ({saved.id}) with {len(saved.fields)} fields")
        return saved.model_copy(deep=True), None

    def refresh_saved_forms(self) -> Tuple[bool, Optional[str]]:
        """Reload the saved-forms collection from the store."""
        try:
            self._saved = self._store.load()
        except PersistenceError as e:
            logger.error(f"Could not load saved forms: {e}", exc_info=True)
            self._saved = []
            self.last_error = e
            return False, e.message
        self.last_error = None
        return True, None

    def open_saved_form(self, form_id: str) -> Tuple[bool, Optional[str]]:
        """Make a copy of a saved form the current schema."""
        for schema in self._saved:
            if schema.id == form_id:
                self._schema = schema.model_copy(deep=True)
                self._baseline = schema.model_copy(deep=True)
                self.reset_values()
                logger.info(f"Opened saved form '{schema.name}' ({schema.id})")
                return True, None
        logger.warning(f"Rejected open_saved_form: unknown form id '{form_id}'")
        return False, f"Saved form '{form_id}' not found"

    def new_form(self) -> None:
        """Discard the current schema and start a blank one."""
        self._schema = FormSchema.empty()
        self._baseline = None
        self.reset_values()
        logger.info("Started a new form")

    def has_unsaved_changes(self) -> bool:
        return has_changes(calculate_schema_diff(self._baseline, self._schema))

    def describe_unsaved_changes(self) -> List[str]:
        """Readable list of edits since the last save or open."""
        diff = calculate_schema_diff(self._baseline, self._schema)
        if not has_changes(diff):
            return []
        summary = get_change_summary(diff)
        logger.debug(f"Unsaved changes: {summary}")
        return format_changes(diff, self._schema)

    # ------------------------------------------------------------------
    # Diagnostics

    def schema_issues(self) -> List[str]:
        """Structural problems the editor should warn about."""
        issues: List[str] = []
        fields = self._schema.fields
        labels = {f.id: (f.label or f.id) for f in fields}

        seen = set()
        for field_def in fields:
            if field_def.id in seen:
                issues.append(f"Duplicate field id '{field_def.id}'")
            seen.add(field_def.id)

        max_length = getattr(self._evaluator, 'max_length', DEFAULT_MAX_LENGTH)
        for field_def in fields:
            label = labels[field_def.id]
            if needs_options(field_def.type) and field_def.type != 'checkbox' and not field_def.options:
                issues.append(f"'{label}' has no options")
            if not field_def.is_derived:
                continue
            formula = field_def.derived.formula
            if not formula.strip():
                issues.append(f"'{label}' has an empty formula")
                continue
            try:
                expression = compile_expression(formula, max_length)
            except ExpressionError as e:
                issues.append(f"'{label}' formula: {e}")
                continue
            unknown = sorted(expression.names - set(field_def.parent_ids))
            if unknown:
                issues.append(f"'{label}' formula uses inputs that are not parent fields: {', '.join(unknown)}")

        graph = DerivationGraph.from_fields(fields)
        for field_id, missing in graph.missing_parents.items():
            issues.append(f"'{labels[field_id]}' depends on missing field(s): {', '.join(missing)}")
        for cycle in graph.describe_cycles():
            path = ' → '.join(labels[node] for node in cycle + cycle[:1])
            issues.append(f"Circular dependency: {path}")

        return issues

    # ------------------------------------------------------------------

    def _apply_default(self, field_def: FormField) -> None:
        if field_def.is_derived or field_def.default_value is None:
            return
        if self._values.get(field_def.id) is not None:
            return
        try:
            self._values[field_def.id] = coerce_value(field_def, field_def.default_value)
        except ValueError:
            logger.warning(f"Ignoring default value {field_def.default_value!r} of '{field_def.id}'")

    def _recompute(self) -> None:
        ordinary_ids = {f.id for f in self._schema.fields if not f.is_derived}
        ordinary = {fid: value for fid, value in self._values.items() if fid in ordinary_ids}
        self._errors = {fid: result for fid, result in self._errors.items() if fid in ordinary_ids}

        result = recompute(self._schema.fields, ordinary, self._evaluator)
        self._values = {**ordinary, **result.values}
        self._derived_states = result.states
        logger.debug(f"Recomputed {len(result.values)} derived fields in order {result.order}")
