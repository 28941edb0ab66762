"""
Main Streamlit application for the form builder.
Define form schemas with validation rules and computed fields, preview them live
and keep named forms for later.
"""

import streamlit as st
import logging

from form_builder.config_loader import get_app_config, get_config_value, validate_config
from form_builder.field_editor_view import render_create_form_page
from form_builder.form_renderer import render_preview_page
from form_builder.saved_forms_view import render_my_forms_page
from form_builder.session_manager import (
    PAGE_CREATE,
    PAGE_MY_FORMS,
    PAGE_PREVIEW,
    PAGES,
    SessionManager,
)


def get_logging_level(level_str):
    """Map string logging level to logging constant."""
    level_map = {
        'DEBUG': logging.DEBUG,
        'INFO': logging.INFO,
        'WARNING': logging.WARNING,
        'ERROR': logging.ERROR,
        'CRITICAL': logging.CRITICAL
    }
    return level_map.get(str(level_str).upper(), logging.INFO)


# Configure logging dynamically from config
try:
    log_level_str = get_config_value('logging', 'level', 'INFO')
    logging.basicConfig(level=get_logging_level(log_level_str))
    logger = logging.getLogger(__name__)
    logger.info(f"Logging configured to level: {log_level_str}")
except Exception as e:
    logging.basicConfig(level=logging.INFO)
    logger = logging.getLogger(__name__)
    logger.error(f"Failed to configure logging from config: {e}, using INFO level")

PAGE_LABELS = {
    PAGE_CREATE: '🛠️ Create Form',
    PAGE_PREVIEW: '👁️ Preview',
    PAGE_MY_FORMS: '📂 My Forms',
}

PAGE_RENDERERS = {
    PAGE_CREATE: render_create_form_page,
    PAGE_PREVIEW: render_preview_page,
    PAGE_MY_FORMS: render_my_forms_page,
}


def main():
    """Main application entry point."""
    config = get_app_config()

    st.set_page_config(
        page_title=get_config_value('ui', 'page_title', 'Form Builder'),
        page_icon="📝",
        layout="wide",
        initial_sidebar_state="expanded"
    )

    if not validate_config(config):
        st.warning("⚠️ **Configuration Issues Detected**: some settings are invalid, using defaults where necessary.")

    SessionManager.initialize(config)
    render_sidebar(config)
    render_main_content()


def render_sidebar(config):
    """Render application sidebar."""
    with st.sidebar:
        st.title(f"📝 {get_config_value('app', 'name', 'Form Builder')}")
        st.header(get_config_value('ui', 'sidebar_title', 'Navigation'))

        current_page = SessionManager.get_current_page()
        page = st.radio(
            "Select View:",
            options=list(PAGES),
            format_func=PAGE_LABELS.get,
            index=PAGES.index(current_page),
        )

        if page != current_page:
            SessionManager.set_current_page(page)
            st.rerun()

        st.divider()

        session = SessionManager.get_form_session()
        schema = session.schema
        st.caption(f"Current form: **{schema.name or 'Untitled'}** · {len(schema.fields)} field(s)")
        if session.has_unsaved_changes():
            st.caption("✏️ Unsaved changes")

        if st.button("🔄 Reset Session", help="Discard the current form and reload saved forms"):
            SessionManager.reset_session(config)
            st.rerun()

        st.caption(f"Version {get_config_value('app', 'version', 'Unknown')}")


def render_main_content():
    """Render the page selected in the sidebar."""
    page = SessionManager.get_current_page()
    renderer = PAGE_RENDERERS.get(page, render_create_form_page)
    renderer()


if __name__ == "__main__":
    main()
