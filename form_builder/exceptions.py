"""
Custom exception classes for the form builder.

Every failure that can cross a module boundary carries a message, a context
dictionary and a list of recovery suggestions so the UI can present it
without knowing the concrete error type.
"""

import logging
from typing import Optional, Dict, Any, List
from pathlib import Path

logger = logging.getLogger(__name__)


class FormBuilderError(Exception):
    """
    Base exception for form builder errors.

    Attributes:
        message: Error message
        context: Additional context information
        recovery_suggestions: List of suggested recovery actions
    """

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None,
                 recovery_suggestions: Optional[List[str]] = None):
        self.message = message
        self.context = context or {}
        self.recovery_suggestions = recovery_suggestions or []
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message

    def get_full_details(self) -> Dict[str, Any]:
        """Get complete error details including context and suggestions."""
        return {
            'error_type': self.__class__.__name__,
            'message': self.message,
            'context': self.context,
            'recovery_suggestions': self.recovery_suggestions
        }


class PersistenceError(FormBuilderError):
    """
    Exception raised when the saved-forms collection cannot be read or written.

    This includes unreadable slots, malformed stored JSON and write failures.
    """

    def __init__(self, key: str, operation: str, original_error: Optional[Exception] = None,
                 message: Optional[str] = None):
        self.key = key
        self.operation = operation
        self.original_error = original_error

        if message is None:
            detail = f": {original_error}" if original_error is not None else ""
            message = f"Failed to {operation} saved forms in slot '{key}'{detail}"

        context = {
            'key': key,
            'operation': operation,
            'original_error_type': type(original_error).__name__ if original_error else None,
            'original_error_message': str(original_error) if original_error else None
        }

        recovery_suggestions = [
            "Check that the storage directory exists and is writable",
            "Verify the stored forms file contains a valid JSON array",
            "The current form is unchanged; try saving again"
        ]

        super().__init__(message, context, recovery_suggestions)


class ConfigurationLoadError(FormBuilderError):
    """
    Exception raised when configuration file loading fails.

    This includes YAML parsing errors, file not found, permission issues, etc.
    """

    def __init__(self, config_path: Path, original_error: Exception,
                 message: Optional[str] = None):
        self.config_path = config_path
        self.original_error = original_error

        if message is None:
            message = f"Failed to load configuration from {config_path}: {str(original_error)}"

        context = {
            'config_path': str(config_path),
            'original_error_type': type(original_error).__name__,
            'original_error_message': str(original_error)
        }

        recovery_suggestions = [
            "Check if config.yaml exists and is readable",
            "Verify YAML syntax is correct",
            "Application will use default configuration as fallback"
        ]

        super().__init__(message, context, recovery_suggestions)


def create_user_friendly_error_message(error: FormBuilderError) -> Dict[str, Any]:
    """
    Create user-friendly error message for display in UI.

    Args:
        error: FormBuilderError instance

    Returns:
        Dictionary with formatted error information for UI display
    """
    error_details = error.get_full_details()

    error_type_info = {
        'PersistenceError': {
            'title': 'Storage Error',
            'icon': '💾',
            'severity': 'error'
        },
        'ConfigurationLoadError': {
            'title': 'Configuration File Error',
            'icon': '📄',
            'severity': 'warning'
        }
    }

    error_type = error_details['error_type']
    type_info = error_type_info.get(error_type, {
        'title': 'Form Builder Error',
        'icon': '❌',
        'severity': 'error'
    })

    return {
        'title': f"{type_info['icon']} {type_info['title']}",
        'message': error_details['message'],
        'severity': type_info['severity'],
        'recovery_suggestions': error_details['recovery_suggestions']
    }
