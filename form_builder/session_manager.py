"""
Session state management for the Streamlit form builder.
Keeps one FormSession per browser session plus the page and editor state.
"""

import streamlit as st
from typing import Any, Dict, Optional
import logging

from .derivation import SandboxedFormulaEvaluator
from .expression import DEFAULT_MAX_LENGTH
from .form_session import FormSession
from .persistence import create_form_repository

logger = logging.getLogger(__name__)

PAGE_CREATE = "create"
PAGE_PREVIEW = "preview"
PAGE_MY_FORMS = "my_forms"
PAGES = (PAGE_CREATE, PAGE_PREVIEW, PAGE_MY_FORMS)
DEFAULT_PAGE = PAGE_CREATE


class SessionManager:
    """Manages Streamlit session state for the form builder."""

    @staticmethod
    def initialize(config: Dict[str, Any]):
        """Initialize session state; existing keys are left alone."""
        defaults = {
            'current_page': DEFAULT_PAGE,
            'editing_field_id': None,
            'form_version': 0,
        }

        for key, default_value in defaults.items():
            if key not in st.session_state:
                st.session_state[key] = default_value

        if st.session_state.get('form_session') is None:
            st.session_state.form_session = SessionManager._create_form_session(config)
            logger.info("Form session created")

    @staticmethod
    def _create_form_session(config: Dict[str, Any]) -> FormSession:
        repository = create_form_repository(config)
        max_length = config.get('expressions', {}).get('max_length', DEFAULT_MAX_LENGTH)
        try:
            max_length = int(max_length)
        except (TypeError, ValueError):
            logger.warning(f"Invalid expressions.max_length {max_length!r}, using {DEFAULT_MAX_LENGTH}")
            max_length = DEFAULT_MAX_LENGTH
        return FormSession(repository, evaluator=SandboxedFormulaEvaluator(max_length=max_length))

    @staticmethod
    def get_form_session() -> FormSession:
        """Get the form session; call initialize() first."""
        return st.session_state.form_session

    @staticmethod
    def get_current_page() -> str:
        """Get the current page."""
        return st.session_state.get('current_page', DEFAULT_PAGE)

    @staticmethod
    def set_current_page(page: str):
        """Set the current page and handle page transitions."""
        if page not in PAGES:
            logger.warning(f"Ignoring unknown page: {page}")
            return

        old_page = st.session_state.get('current_page')
        if old_page != page:
            logger.info(f"Page transition: {old_page} -> {page}")
            if old_page == PAGE_CREATE:
                st.session_state.editing_field_id = None
            st.session_state.current_page = page

    @staticmethod
    def get_editing_field_id() -> Optional[str]:
        """Id of the field loaded into the editor, or None when adding a new field."""
        return st.session_state.get('editing_field_id')

    @staticmethod
    def set_editing_field_id(field_id: Optional[str]):
        st.session_state.editing_field_id = field_id

    @staticmethod
    def get_form_version() -> int:
        """Counter mixed into preview widget keys so a reset redraws every input."""
        return st.session_state.get('form_version', 0)

    @staticmethod
    def bump_form_version():
        st.session_state.form_version = SessionManager.get_form_version() + 1

    @staticmethod
    def reset_session(config: Dict[str, Any]):
        """Drop the form session and start over with a fresh one."""
        logger.info("Resetting form builder session")
        st.session_state.form_session = SessionManager._create_form_session(config)
        st.session_state.editing_field_id = None
        SessionManager.bump_form_version()
