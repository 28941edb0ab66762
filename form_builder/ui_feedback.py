"""
UI feedback utilities for the form builder.
Provides toast notifications and inline validation and error panels.
"""

import streamlit as st
from typing import List, Optional
import logging

from .exceptions import FormBuilderError, create_user_friendly_error_message

logger = logging.getLogger(__name__)


class Notify:
    """
    Toast-first notification helper.
    Uses st.toast for non-blocking notifications and falls back to the inline
    st.success / st.info / st.warning / st.error messages if the toast fails.

    Usage:
    Notify.success("Form saved")
    Notify.once("Unique message", notification_type="info", key="my_once_key")  # Shows only once per session
    """

    _ICONS = {
        'success': '✅',
        'info': 'ℹ️',
        'warning': '⚠️',
        'error': '❌'
    }

    @staticmethod
    def _display_notification(message: str, notification_type: str = 'info') -> None:
        """Internal method to display notification based on type."""
        icon = Notify._ICONS.get(notification_type, 'ℹ️')

        try:
            st.toast(message, icon=icon)
        except Exception as e:
            logger.error(f"Error using st.toast: {e}", exc_info=True)
            full_message = f"{icon} {message}"
            if notification_type == 'success':
                st.success(full_message)
            elif notification_type == 'warning':
                st.warning(full_message)
            elif notification_type == 'error':
                st.error(full_message)
            else:
                st.info(full_message)

    @staticmethod
    def success(message: str) -> None:
        """Show success notification."""
        Notify._display_notification(message, 'success')

    @staticmethod
    def info(message: str) -> None:
        """Show info notification."""
        Notify._display_notification(message, 'info')

    @staticmethod
    def warn(message: str) -> None:
        """Show warning notification."""
        Notify._display_notification(message, 'warning')

    @staticmethod
    def error(message: str) -> None:
        """Show error notification."""
        Notify._display_notification(message, 'error')

    @staticmethod
    def once(message: str, notification_type: str = 'info', key: str = 'default_once') -> bool:
        """
        Show notification only once per session for the given key.
        Returns True if shown, False if already shown.
        """
        if key not in st.session_state:
            st.session_state[key] = False
        if not st.session_state[key]:
            Notify._display_notification(message, notification_type)
            st.session_state[key] = True
            return True
        return False


class UserFeedback:
    """Inline feedback panels."""

    @staticmethod
    def show_validation_results(errors: List[str], warnings: Optional[List[str]] = None):
        """Show validation results with errors and warnings."""
        if warnings is None:
            warnings = []

        if errors:
            st.error("❌ **Validation Errors:**")
            for error in errors:
                st.error(f"  • {error}")

        if warnings:
            st.warning("⚠️ **Warnings:**")
            for warning in warnings:
                st.warning(f"  • {warning}")

        if not errors and not warnings:
            st.success("✅ **Validation Passed:** No issues found")

    @staticmethod
    def show_error(error: FormBuilderError):
        """Show a form builder error with its recovery suggestions."""
        details = create_user_friendly_error_message(error)
        if details['severity'] == 'warning':
            st.warning(f"**{details['title']}:** {details['message']}")
        else:
            st.error(f"**{details['title']}:** {details['message']}")

        if details['recovery_suggestions']:
            with st.expander("What can I do?"):
                for suggestion in details['recovery_suggestions']:
                    st.write(f"• {suggestion}")
