"""
Create-form page: the field editor, the field list and the save panel.

All changes go through the FormSession held by SessionManager.
"""

import streamlit as st
from typing import Any, Dict, List, Optional
import logging

from pydantic import ValidationError

from .form_models import (
    FIELD_TYPES,
    DerivedFieldConfig,
    FormField,
    FormSchema,
    ValidationRules,
    needs_options,
    new_field_id,
)
from .form_session import FormSession, coerce_value
from .session_manager import SessionManager
from .ui_feedback import Notify, UserFeedback

logger = logging.getLogger(__name__)

LENGTH_RULE_TYPES = ('text', 'textarea')
TEXT_RULE_TYPES = ('text',)


def parse_options(text: str) -> List[str]:
    """One option per line; blank lines dropped."""
    return [line.strip() for line in (text or '').splitlines() if line.strip()]


def _bound_input_value(bound) -> int:
    """Editor start value for a stored length bound; the input only takes whole numbers from 0."""
    return max(0, int(bound or 0))


def build_field(inputs: Dict[str, Any], field_id: Optional[str] = None) -> FormField:
    """
    Build a FormField from raw editor inputs.

    Rules only apply to the types that use them; a length bound of 0 means
    the input was left empty.

    Raises:
        ValueError: If a length bound is negative or the default value does
            not suit the field type
        pydantic.ValidationError: If the inputs do not form a valid field
    """
    field_type = inputs.get('type', 'text')
    for bound in ('min_length', 'max_length'):
        if (inputs.get(bound) or 0) < 0:
            raise ValueError(f"{bound.replace('_', ' ').capitalize()} must not be negative")

    rules = ValidationRules(
        required=True if inputs.get('required') else None,
        min_length=(inputs.get('min_length') or None) if field_type in LENGTH_RULE_TYPES else None,
        max_length=(inputs.get('max_length') or None) if field_type in LENGTH_RULE_TYPES else None,
        email=True if inputs.get('email') and field_type in TEXT_RULE_TYPES else None,
        password_rule=True if inputs.get('password_rule') and field_type in TEXT_RULE_TYPES else None,
    )

    derived = None
    if inputs.get('derived'):
        derived = DerivedFieldConfig(
            parent_fields=list(inputs.get('parent_fields') or []),
            formula=(inputs.get('formula') or '').strip(),
        )

    new_field = FormField(
        id=field_id or new_field_id(),
        type=field_type,
        label=(inputs.get('label') or '').strip(),
        validations=None if rules.is_empty() else rules,
        options=parse_options(inputs.get('options', '')) if needs_options(field_type) else None,
        derived=derived,
    )

    raw_default = inputs.get('default_value')
    if raw_default not in (None, '') and not derived:
        new_field.default_value = coerce_value(new_field, raw_default)
    return new_field


def render_create_form_page():
    """Render the Create Form page."""
    session = SessionManager.get_form_session()
    schema = session.schema

    st.header("🛠️ Create Form")
    if schema.name:
        st.caption(f"Editing saved form **{schema.name}**")

    col_editor, col_list = st.columns([1, 1])
    with col_editor:
        _render_field_editor(session, schema)
    with col_list:
        _render_field_list(session, schema)

    issues = session.schema_issues()
    if issues:
        UserFeedback.show_validation_results([], issues)

    _render_save_panel(session, schema)


def _render_field_editor(session: FormSession, schema: FormSchema):
    editing_id = SessionManager.get_editing_field_id()
    existing = schema.find_field(editing_id) if editing_id else None
    if editing_id and existing is None:
        SessionManager.set_editing_field_id(None)
        editing_id = None

    prefix = f"editor_{editing_id or 'new'}_{SessionManager.get_form_version()}"
    st.subheader("Edit Field" if existing else "Add Field")

    field_type = st.selectbox(
        "Field Type",
        options=list(FIELD_TYPES),
        index=FIELD_TYPES.index(existing.type) if existing else 0,
        format_func=str.title,
        key=f"{prefix}_type",
    )
    label = st.text_input("Field Label", value=existing.label if existing else "", key=f"{prefix}_label")

    rules = existing.validations if existing and existing.validations else ValidationRules()
    inputs: Dict[str, Any] = {'type': field_type, 'label': label}
    inputs['required'] = st.toggle("Required", value=bool(rules.required), key=f"{prefix}_required")

    if field_type == 'checkbox':
        inputs['default_value'] = st.checkbox(
            "Checked by default",
            value=bool(existing.default_value) if existing else False,
            key=f"{prefix}_default_bool",
        )
    else:
        current_default = existing.default_value if existing and existing.default_value is not None else ""
        inputs['default_value'] = st.text_input(
            "Default Value",
            value=str(current_default),
            help="YYYY-MM-DD for date fields" if field_type == 'date' else None,
            key=f"{prefix}_default",
        )

    if field_type in LENGTH_RULE_TYPES:
        col_min, col_max = st.columns(2)
        with col_min:
            inputs['min_length'] = st.number_input(
                "Min Length", min_value=0, step=1, value=_bound_input_value(rules.min_length), key=f"{prefix}_min"
            )
        with col_max:
            inputs['max_length'] = st.number_input(
                "Max Length", min_value=0, step=1, value=_bound_input_value(rules.max_length), key=f"{prefix}_max"
            )

    if field_type in TEXT_RULE_TYPES:
        inputs['email'] = st.checkbox("Email", value=bool(rules.email), key=f"{prefix}_email")
        inputs['password_rule'] = st.checkbox(
            "Password Rule", value=bool(rules.password_rule),
            help="At least 8 characters including a number", key=f"{prefix}_password"
        )

    if needs_options(field_type):
        inputs['options'] = st.text_area(
            "Options (one per line)",
            value="\n".join(existing.options or []) if existing else "",
            key=f"{prefix}_options",
        )

    inputs['derived'] = st.checkbox(
        "Derived Field?", value=bool(existing and existing.is_derived), key=f"{prefix}_derived"
    )
    if inputs['derived']:
        candidates = [f for f in schema.fields if f.id != editing_id]
        labels = {f.id: f.label or f.id for f in candidates}
        inputs['parent_fields'] = st.multiselect(
            "Parent Fields",
            options=list(labels),
            default=[pid for pid in (existing.parent_ids if existing else []) if pid in labels],
            format_func=lambda field_id: labels.get(field_id, field_id),
            key=f"{prefix}_parents",
        )
        for parent_id in inputs['parent_fields']:
            st.caption(f"`{{{parent_id}}}` → {labels[parent_id]}")
        inputs['formula'] = st.text_input(
            "Formula",
            value=existing.derived.formula if existing and existing.derived else "",
            help="Refer to a parent as {its id}, e.g. years_between({id}, today()) >= 18",
            key=f"{prefix}_formula",
        )

    col_save, col_cancel = st.columns(2)
    with col_save:
        if st.button("💾 Save Field", type="primary", key=f"{prefix}_save"):
            _save_field(session, inputs, editing_id)
    with col_cancel:
        if existing and st.button("Cancel", key=f"{prefix}_cancel"):
            SessionManager.set_editing_field_id(None)
            st.rerun()


def _save_field(session: FormSession, inputs: Dict[str, Any], editing_id: Optional[str]):
    try:
        new_field = build_field(inputs, editing_id)
    except (ValidationError, ValueError) as e:
        logger.warning(f"Invalid field definition: {e}")
        Notify.error(f"Invalid field: {e}")
        return

    if editing_id:
        ok, error = session.update_field(new_field)
    else:
        ok, error = session.add_field(new_field)

    if not ok:
        Notify.error(error)
        return

    Notify.success(f"Field '{new_field.label or new_field.type}' saved")
    SessionManager.set_editing_field_id(None)
    SessionManager.bump_form_version()
    st.rerun()


def _render_field_list(session: FormSession, schema: FormSchema):
    st.subheader(f"Fields ({len(schema.fields)})")
    if not schema.fields:
        st.info("No fields yet. Add one with the editor.")
        return

    last_index = len(schema.fields) - 1
    for index, field_def in enumerate(schema.fields):
        with st.container(border=True):
            col_info, col_up, col_down, col_edit, col_delete = st.columns([6, 1, 1, 1, 1])
            with col_info:
                badge = " 🧮 *derived*" if field_def.is_derived else ""
                required = " *" if field_def.validations and field_def.validations.required else ""
                st.markdown(f"**{field_def.label or '(no label)'}**{required} · {field_def.type}{badge}")
            with col_up:
                if st.button("⬆️", key=f"up_{field_def.id}", disabled=index == 0, help="Move up"):
                    _move(session, index, index - 1)
            with col_down:
                if st.button("⬇️", key=f"down_{field_def.id}", disabled=index == last_index, help="Move down"):
                    _move(session, index, index + 1)
            with col_edit:
                if st.button("✏️", key=f"edit_{field_def.id}", help="Edit"):
                    SessionManager.set_editing_field_id(field_def.id)
                    st.rerun()
            with col_delete:
                if st.button("🗑️", key=f"delete_{field_def.id}", help="Delete"):
                    ok, error = session.delete_field(field_def.id)
                    if ok:
                        if SessionManager.get_editing_field_id() == field_def.id:
                            SessionManager.set_editing_field_id(None)
                        st.rerun()
                    else:
                        Notify.error(error)


def _move(session: FormSession, from_index: int, to_index: int):
    ok, error = session.move_field(from_index, to_index)
    if ok:
        st.rerun()
    else:
        Notify.error(error)


def _render_save_panel(session: FormSession, schema: FormSchema):
    st.divider()
    st.subheader("Save Form")

    if session.has_unsaved_changes():
        with st.expander("Unsaved changes"):
            for line in session.describe_unsaved_changes():
                st.write(line)

    name = st.text_input("Form Name", value=schema.name, key=f"form_name_{SessionManager.get_form_version()}")
    col_save, col_new = st.columns(2)
    with col_save:
        if st.button("💾 Save Form", type="primary", disabled=not schema.fields):
            saved, error = session.commit_save(name)
            if error:
                if session.last_error is not None and session.last_error.message == error:
                    UserFeedback.show_error(session.last_error)
                else:
                    Notify.error(error)
            else:
                Notify.success(f"Form '{saved.name}' saved")
                SessionManager.bump_form_version()
                st.rerun()
    with col_new:
        if st.button("🆕 New Form"):
            session.new_form()
            SessionManager.set_editing_field_id(None)
            SessionManager.bump_form_version()
            st.rerun()
