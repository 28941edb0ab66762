"""
Unit tests for the My Forms page.
"""

from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest

from form_builder import saved_forms_view, session_manager
from form_builder.form_models import FormField, FormSchema
from form_builder.form_session import FormSession
from form_builder.persistence import FormRepository, MemoryBlobStore
from form_builder.saved_forms_view import format_created_at, render_my_forms_page
from form_builder.session_manager import PAGE_MY_FORMS, PAGE_PREVIEW
from test_session_manager import _SessionState


def _columns(spec, **_kwargs):
    count = spec if isinstance(spec, int) else len(spec)
    return tuple(MagicMock() for _ in range(count))


@pytest.fixture
def fake_st(monkeypatch):
    st = MagicMock()
    st.session_state = _SessionState({'form_version': 0, 'current_page': PAGE_MY_FORMS})
    st.columns.side_effect = _columns
    st.button.return_value = False
    monkeypatch.setattr(saved_forms_view, "st", st)
    monkeypatch.setattr(session_manager, "st", st)
    return st


def saved_repository():
    repository = FormRepository(MemoryBlobStore())
    repository.save([FormSchema(
        id='form-1',
        name='Signup',
        created_at='2024-01-02T03:04:05.678Z',
        fields=[FormField(id='email', type='text', label='Email', default_value='a@b.co')],
    )])
    return repository


class TestFormatCreatedAt:
    """Test cases for format_created_at."""

    def test_iso_timestamp_in_local_time(self):
        expected = datetime(2024, 1, 2, 3, 4, 5, 678000, tzinfo=timezone.utc).astimezone()

        assert format_created_at('2024-01-02T03:04:05.678Z') == expected.strftime("%Y-%m-%d %H:%M:%S")

    def test_missing_and_unparseable(self):
        assert format_created_at('') == "Unknown"
        assert format_created_at(None) == "Unknown"
        assert format_created_at('yesterday') == 'yesterday'


class TestRenderMyFormsPage:
    """Test cases for render_my_forms_page."""

    def test_no_saved_forms(self, fake_st):
        fake_st.session_state.form_session = FormSession(FormRepository(MemoryBlobStore()))

        render_my_forms_page()

        fake_st.info.assert_called_once_with("No forms saved yet.")

    def test_lists_saved_forms(self, fake_st):
        fake_st.session_state.form_session = FormSession(saved_repository())

        render_my_forms_page()

        fake_st.markdown.assert_any_call("**Signup**")
        assert "1 field(s)" in fake_st.caption.call_args.args[0]

    def test_open_switches_to_preview(self, fake_st):
        """Test that opening a form loads it and shows the preview."""
        session = FormSession(saved_repository())
        fake_st.session_state.form_session = session
        fake_st.button.side_effect = lambda label, **_kwargs: label == "Open"

        render_my_forms_page()

        assert session.schema.id == 'form-1'
        assert session.values['email'] == 'a@b.co'
        assert fake_st.session_state.current_page == PAGE_PREVIEW
        assert fake_st.session_state.form_version == 1
        fake_st.rerun.assert_called_once()

    def test_load_error_shown(self, fake_st):
        """Test that a storage failure is reported on the page."""
        repository = FormRepository(MemoryBlobStore({'forms': '{broken'}))
        session = FormSession(repository)
        fake_st.session_state.form_session = session

        with patch.object(saved_forms_view.UserFeedback, 'show_error') as mock_show_error:
            render_my_forms_page()

        mock_show_error.assert_called_once_with(session.last_error)
        fake_st.info.assert_called_once_with("No forms saved yet.")
