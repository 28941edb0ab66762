"""
Unit tests for the create-form page.
"""

from unittest.mock import MagicMock, patch

import pytest
from pydantic import ValidationError

from form_builder import field_editor_view, session_manager
from form_builder.field_editor_view import build_field, parse_options, render_create_form_page
from form_builder.form_models import FormField
from form_builder.form_session import FormSession
from form_builder.persistence import FormRepository, MemoryBlobStore
from test_persistence import FailingBlobStore
from test_session_manager import _SessionState


def _columns(spec, **_kwargs):
    count = spec if isinstance(spec, int) else len(spec)
    return tuple(MagicMock() for _ in range(count))


@pytest.fixture
def fake_st(monkeypatch):
    st = MagicMock()
    st.session_state = _SessionState({'form_version': 0, 'editing_field_id': None})
    st.columns.side_effect = _columns
    st.button.return_value = False
    st.selectbox.return_value = 'text'
    st.text_input.return_value = ''
    st.text_area.return_value = ''
    st.number_input.return_value = 0
    st.checkbox.return_value = False
    st.toggle.return_value = False
    monkeypatch.setattr(field_editor_view, "st", st)
    monkeypatch.setattr(session_manager, "st", st)
    return st


@pytest.fixture
def form_session(fake_st):
    session = FormSession(FormRepository(MemoryBlobStore()))
    fake_st.session_state.form_session = session
    return session


class TestParseOptions:
    """Test cases for parse_options."""

    def test_one_option_per_line(self):
        assert parse_options("Red\n\n  Green \nBlue\n") == ['Red', 'Green', 'Blue']

    def test_empty(self):
        assert parse_options("") == []
        assert parse_options(None) == []


class TestBoundInputValue:
    """Test cases for the editor's length bound start values."""

    @pytest.mark.parametrize("stored, expected", [(None, 0), (5, 5), (1.5, 1), (-2, 0)])
    def test_stored_bounds_fit_the_input(self, stored, expected):
        assert field_editor_view._bound_input_value(stored) == expected


class TestBuildField:
    """Test cases for build_field."""

    def test_text_rules(self):
        """Test rule inputs for a text field; a 0 bound is unset."""
        new_field = build_field({
            'type': 'text', 'label': ' Email ', 'required': True,
            'min_length': 3, 'max_length': 0, 'email': True, 'password_rule': False,
        })

        assert new_field.label == 'Email'
        assert new_field.validations.required is True
        assert new_field.validations.min_length == 3
        assert new_field.validations.max_length is None
        assert new_field.validations.email is True
        assert new_field.validations.password_rule is None

    def test_rules_limited_to_type(self):
        """Test that text-only rules are dropped for other types."""
        new_field = build_field({'type': 'number', 'label': 'Age', 'email': True, 'min_length': 2})

        assert new_field.validations is None

    def test_choice_options(self):
        new_field = build_field({'type': 'select', 'label': 'Colour', 'options': "Red\nBlue"})

        assert new_field.options == ['Red', 'Blue']

    def test_derived_config(self):
        """Test parents are deduplicated and the formula trimmed."""
        new_field = build_field({
            'type': 'number', 'label': 'Total', 'derived': True,
            'parent_fields': ['a', 'a', 'b'], 'formula': ' a + b ', 'default_value': '7',
        }, field_id='total')

        assert new_field.id == 'total'
        assert new_field.parent_ids == ['a', 'b']
        assert new_field.derived.formula == 'a + b'
        assert new_field.default_value is None

    def test_number_default_coerced(self):
        assert build_field({'type': 'number', 'default_value': '42'}).default_value == 42

    def test_bad_number_default_raises(self):
        with pytest.raises(ValueError):
            build_field({'type': 'number', 'default_value': 'forty'})

    def test_negative_length_bound_raises(self):
        """Test that the editor only writes non-negative bounds."""
        with pytest.raises(ValueError, match="Min length must not be negative"):
            build_field({'type': 'text', 'label': 'Name', 'min_length': -1})

    def test_unknown_type_raises(self):
        with pytest.raises(ValidationError):
            build_field({'type': 'color', 'label': 'Colour'})


class TestSaveField:
    """Test cases for saving editor input."""

    def test_adds_field(self, fake_st, form_session):
        """Test that a valid definition is appended."""
        with patch.object(field_editor_view.Notify, 'success') as mock_success:
            field_editor_view._save_field(form_session, {'type': 'text', 'label': 'Name'}, None)

        assert [f.label for f in form_session.fields] == ['Name']
        mock_success.assert_called_once()
        fake_st.rerun.assert_called_once()
        assert fake_st.session_state.form_version == 1

    def test_invalid_definition_reported(self, fake_st, form_session):
        """Test that a bad default is reported and nothing is added."""
        with patch.object(field_editor_view.Notify, 'error') as mock_error:
            field_editor_view._save_field(form_session, {'type': 'number', 'default_value': 'x'}, None)

        assert form_session.fields == []
        mock_error.assert_called_once()
        fake_st.rerun.assert_not_called()

    def test_updates_existing_field(self, fake_st, form_session):
        form_session.add_field(FormField(id='f1', type='text', label='Old'))
        fake_st.session_state.editing_field_id = 'f1'

        with patch.object(field_editor_view.Notify, 'success'):
            field_editor_view._save_field(form_session, {'type': 'text', 'label': 'New'}, 'f1')

        assert form_session.fields[0].label == 'New'
        assert fake_st.session_state.editing_field_id is None


class TestRenderCreateFormPage:
    """Test cases for render_create_form_page."""

    def test_empty_builder(self, fake_st, form_session):
        """Test the page for a form with no fields."""
        render_create_form_page()

        fake_st.subheader.assert_any_call("Add Field")
        fake_st.info.assert_called_once_with("No fields yet. Add one with the editor.")

    def test_lists_fields(self, fake_st, form_session):
        form_session.add_field(FormField(id='f1', type='text', label='Name'))

        render_create_form_page()

        fake_st.subheader.assert_any_call("Fields (1)")
        fake_st.markdown.assert_any_call("**Name** · text")

    def test_editing_unknown_field_resets_editor(self, fake_st, form_session):
        fake_st.session_state.editing_field_id = 'gone'

        render_create_form_page()

        assert fake_st.session_state.editing_field_id is None
        fake_st.subheader.assert_any_call("Add Field")

    def test_save_failure_shows_storage_error(self, fake_st):
        """Test that a storage failure on save is shown with its details."""
        session = FormSession(FormRepository(FailingBlobStore()))
        session.add_field(FormField(id='f1', type='text', label='Name'))
        fake_st.session_state.form_session = session
        fake_st.text_input.return_value = 'Contact'
        fake_st.button.side_effect = lambda label, **_kwargs: label == "💾 Save Form"

        with patch.object(field_editor_view.UserFeedback, 'show_error') as mock_show_error:
            render_create_form_page()

        mock_show_error.assert_called_once_with(session.last_error)
        assert session.saved_forms == []
