"""
My Forms page: lists saved forms and opens one in the preview.
"""

import streamlit as st
from typing import Any
import logging

from dateutil import parser as date_parser

from .session_manager import PAGE_PREVIEW, SessionManager
from .ui_feedback import Notify, UserFeedback

logger = logging.getLogger(__name__)


def format_created_at(value: Any) -> str:
    """Render a stored ISO timestamp in local time."""
    if not value:
        return "Unknown"
    try:
        created = date_parser.isoparse(str(value))
    except (ValueError, OverflowError):
        logger.debug(f"Unparseable createdAt value: {value}")
        return str(value)
    if created.tzinfo is not None:
        created = created.astimezone()
    return created.strftime("%Y-%m-%d %H:%M:%S")


def render_my_forms_page():
    """Render the My Forms page."""
    session = SessionManager.get_form_session()

    col_title, col_refresh = st.columns([4, 1])
    with col_title:
        st.header("📂 My Saved Forms")
    with col_refresh:
        if st.button("🔄 Refresh", help="Reload saved forms from storage"):
            ok, _ = session.refresh_saved_forms()
            if ok:
                Notify.info("Saved forms reloaded")

    if session.last_error is not None:
        UserFeedback.show_error(session.last_error)

    forms = session.saved_forms
    if not forms:
        st.info("No forms saved yet.")
        return

    for schema in forms:
        with st.container(border=True):
            col_info, col_open = st.columns([5, 1])
            with col_info:
                st.markdown(f"**{schema.name}**")
                st.caption(f"{format_created_at(schema.created_at)} · {len(schema.fields)} field(s)")
            with col_open:
                if st.button("Open", key=f"open_{schema.id}"):
                    ok, error = session.open_saved_form(schema.id)
                    if not ok:
                        Notify.error(error)
                        continue
                    SessionManager.bump_form_version()
                    SessionManager.set_current_page(PAGE_PREVIEW)
                    st.rerun()
