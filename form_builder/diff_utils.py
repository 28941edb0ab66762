"""
Diff utilities for form schemas.

Compares the schema being edited with the version last saved (or opened) to
tell the editor whether there are unsaved changes and what they are. Uses
DeepDiff over a normalized view of the schema in which fields are keyed by
id, so a label edit shows up as a value change on that field instead of a
shifted list.
"""

from typing import Any, Dict, List, Optional
import re
import logging

from deepdiff import DeepDiff

from .form_models import FormSchema

logger = logging.getLogger(__name__)

CHANGE_TYPES = (
    'values_changed',
    'type_changes',
    'dictionary_item_added',
    'dictionary_item_removed',
    'iterable_item_added',
    'iterable_item_removed',
)

_PATH_TOKEN = re.compile(r"\['([^']*)'\]|\[(\d+)\]")


def _normalize_schema(schema: Optional[FormSchema]) -> Dict[str, Any]:
    """Schema document without save metadata, fields keyed by id."""
    if schema is None:
        return {'name': '', 'field_order': [], 'fields': {}}
    document = schema.to_dict()
    return {
        'name': document.get('name', ''),
        'field_order': [field['id'] for field in document.get('fields', [])],
        'fields': {field['id']: field for field in document.get('fields', [])},
    }


def calculate_schema_diff(saved: Optional[FormSchema], current: FormSchema) -> Dict[str, Any]:
    """
    Calculate differences between a saved schema and the current one.

    ``id`` and ``createdAt`` are ignored; they only change on save.

    Args:
        saved: Last saved or opened schema, or None for a brand new form
        current: Schema being edited

    Returns:
        Dict keyed by DeepDiff change type; each section maps a cleaned path
        (e.g. ``fields.<id>.label``) to details of the change
    """
    try:
        diff = DeepDiff(
            _normalize_schema(saved),
            _normalize_schema(current),
            ignore_order=False,
            verbose_level=2,
        )
    except Exception as e:
        logger.error(f"Error calculating schema diff: {e}", exc_info=True)
        return {}

    processed: Dict[str, Any] = {}
    for change_type in CHANGE_TYPES:
        section = diff.get(change_type)
        if not section:
            continue
        if hasattr(section, 'items'):
            processed[change_type] = {_clean_path(path): detail for path, detail in section.items()}
        else:
            processed[change_type] = {_clean_path(path): None for path in section}
    return processed


def has_changes(diff: Dict[str, Any]) -> bool:
    """
    Check if there are any changes in the diff.

    Args:
        diff: Diff dictionary from calculate_schema_diff

    Returns:
        True if there are changes, False otherwise
    """
    if not diff:
        return False
    return any(diff.get(change_type) for change_type in CHANGE_TYPES)


def get_change_summary(diff: Dict[str, Any]) -> Dict[str, int]:
    """
    Get a summary of changes by type.

    Args:
        diff: Diff dictionary from calculate_schema_diff

    Returns:
        Dictionary with change counts by type
    """
    summary = {
        'modified': len(diff.get('values_changed', {})),
        'type_changed': len(diff.get('type_changes', {})),
        'added': len(diff.get('dictionary_item_added', {})) + len(diff.get('iterable_item_added', {})),
        'removed': len(diff.get('dictionary_item_removed', {})) + len(diff.get('iterable_item_removed', {})),
    }
    summary['total'] = sum(summary.values())
    return summary


def format_changes(diff: Dict[str, Any], schema: Optional[FormSchema] = None) -> List[str]:
    """
    Render a diff as short human-readable lines.

    Field ids in paths are replaced by the field label when ``schema`` knows
    the field.
    """
    labels = {field.id: field.label for field in schema.fields} if schema else {}
    lines: List[str] = []
    reordered = False

    def describe(path: str) -> str:
        parts = path.split('.')
        if parts[0] == 'fields' and len(parts) >= 2:
            parts = [labels.get(parts[1]) or parts[1]] + parts[2:]
        elif parts == ['name']:
            parts = ['Form name']
        return ' › '.join(parts)

    for change_type in CHANGE_TYPES:
        for path, detail in diff.get(change_type, {}).items():
            if path.startswith('field_order'):
                reordered = True
                continue
            if change_type in ('values_changed', 'type_changes'):
                old_value = detail.get('old_value') if isinstance(detail, dict) else None
                new_value = detail.get('new_value') if isinstance(detail, dict) else None
                lines.append(f"✏️ {describe(path)}: {old_value!r} → {new_value!r}")
            elif change_type.endswith('_added'):
                lines.append(f"➕ {describe(path)}")
            else:
                lines.append(f"➖ {describe(path)}")

    fields_added_or_removed = any(
        len(path.split('.')) == 2 and path.startswith('fields.')
        for change_type in ('dictionary_item_added', 'dictionary_item_removed')
        for path in diff.get(change_type, {})
    )
    if reordered and not fields_added_or_removed:
        lines.append("↕️ Field order changed")
    return lines


def _clean_path(path: Any) -> str:
    """Convert ``root['fields']['a1']['label']`` into ``fields.a1.label``."""
    text = str(path)
    tokens = [quoted if quoted else index for quoted, index in _PATH_TOKEN.findall(text)]
    return '.'.join(tokens) if tokens else text.replace('root', '').strip('.') or 'root'
