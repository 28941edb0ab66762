"""
Preview page: renders the current schema as a live form.

Each input writes through FormSession.set_value from its on_change callback,
so derived values and field errors are current when the page redraws.
"""

import streamlit as st
from datetime import date
from typing import Any, Optional
import logging

from dateutil import parser as date_parser

from .derivation import DerivedState
from .form_models import FormField
from .session_manager import SessionManager
from .ui_feedback import Notify
from .validation import ValidationResult

logger = logging.getLogger(__name__)

SUBMIT_RESULT_KEY = 'preview_submit_result'


def display_value(value: Any) -> str:
    """Text shown for a derived value."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def parse_date_value(value: Any) -> Optional[date]:
    """Stored date text to a date for the date widget; None when unparseable."""
    if value in (None, ''):
        return None
    if isinstance(value, date):
        return value
    try:
        return date_parser.parse(str(value)).date()
    except (ValueError, OverflowError) as e:
        logger.warning(f"Could not parse date value '{value}': {e}")
        return None


def _widget_key(field_def: FormField) -> str:
    return f"preview_{field_def.id}_{SessionManager.get_form_version()}"


def _on_value_change(field_id: str, widget_key: str):
    session = SessionManager.get_form_session()
    ok, error = session.set_value(field_id, st.session_state.get(widget_key))
    if not ok:
        Notify.warn(error)
    st.session_state.pop(SUBMIT_RESULT_KEY, None)


def _on_submit():
    report = SessionManager.get_form_session().submit()
    st.session_state[SUBMIT_RESULT_KEY] = {
        'is_valid': report.is_valid,
        'failed': len(report.messages()),
    }
    if report.is_valid:
        Notify.success("Form data is valid!")


def _on_reset():
    SessionManager.get_form_session().reset_values()
    SessionManager.bump_form_version()
    st.session_state.pop(SUBMIT_RESULT_KEY, None)


def render_preview_page():
    """Render the Preview page."""
    session = SessionManager.get_form_session()
    snapshot = session.state
    schema_name = session.schema.name

    st.header(f"👁️ Preview: {schema_name or 'Untitled form'}")

    if not snapshot.fields:
        st.info("This form has no fields yet. Add some on the Create Form page.")
        return

    for field_def in snapshot.fields:
        if field_def.is_derived:
            _render_derived_field(
                field_def,
                snapshot.values.get(field_def.id),
                snapshot.derived_states.get(field_def.id),
            )
        else:
            _render_input_field(field_def, snapshot.values.get(field_def.id))
            _render_field_error(snapshot.errors.get(field_def.id))

    col_submit, col_reset = st.columns([1, 1])
    with col_submit:
        st.button("Submit", type="primary", on_click=_on_submit)
    with col_reset:
        st.button("Reset", on_click=_on_reset)

    result = st.session_state.get(SUBMIT_RESULT_KEY)
    if result:
        if result['is_valid']:
            st.success("✅ Form data is valid!")
        else:
            st.error(f"❌ {result['failed']} field(s) need attention")


def _render_derived_field(field_def: FormField, value: Any, derived_state: Optional[DerivedState]):
    with st.container(border=True):
        st.markdown(f"**{field_def.label or field_def.id}** · 🧮 *derived*")
        if derived_state is not None and not derived_state.is_ok:
            st.warning(f"⚠️ {derived_state.message}")
        else:
            shown = display_value(value)
            st.code(shown if shown else " ", language=None)


def _render_field_error(result: Optional[ValidationResult]):
    if result is not None and not result.is_valid:
        st.error(result.message)


def _render_input_field(field_def: FormField, value: Any):
    key = _widget_key(field_def)
    label = field_def.label or field_def.id
    if field_def.validations and field_def.validations.required:
        label = f"{label} *"
    callback = {'on_change': _on_value_change, 'args': (field_def.id, key), 'key': key}

    if field_def.type in ('text', 'number'):
        st.text_input(label, value="" if value is None else str(value), **callback)
    elif field_def.type == 'textarea':
        st.text_area(label, value="" if value is None else str(value), **callback)
    elif field_def.type == 'date':
        st.date_input(label, value=parse_date_value(value), format="YYYY-MM-DD", **callback)
    elif field_def.type == 'select':
        options = [""] + list(field_def.options or [])
        index = options.index(value) if value in options else 0
        st.selectbox(label, options=options, index=index,
                     format_func=lambda option: option or "Select...", **callback)
    elif field_def.type == 'radio':
        options = list(field_def.options or [])
        if not options:
            st.caption(f"{label}: no options defined")
            return
        st.radio(label, options=options, index=options.index(value) if value in options else None, **callback)
    elif field_def.type == 'checkbox':
        st.checkbox(label, value=bool(value), **callback)
    else:
        logger.warning(f"No widget for field type {field_def.type}")
