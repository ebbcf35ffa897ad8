"""
Error formatting and logging utilities for the NBD client.

Provides consistent error formatting for command-line display and
technical logging.
"""

import json
import logging
import traceback
from datetime import datetime
from typing import Any, Dict, Optional

from py2nbd.core.errors import ErrorCodes, NBDError

logger = logging.getLogger(__name__)

SEVERITY_LEVELS = {
    'critical': logging.CRITICAL,
    'error': logging.ERROR,
    'warning': logging.WARNING,
}


class ErrorFormatter:
    """
    Formats errors for consistent presentation.

    Handles both NBDError instances and standard Python exceptions.
    """

    COLORS = {
        'RED': '\033[91m',
        'YELLOW': '\033[93m',
        'RESET': '\033[0m'
    }

    def __init__(self, use_colors: bool = False):
        self.use_colors = use_colors

    def format_for_user(self, error: Exception) -> str:
        """
        Format error for end-user display.

        Shows the message, the failing protocol step and any suggestions.
        """
        if isinstance(error, NBDError):
            message = error.format_user_message()
            if error.step:
                message = f"[{error.step}] {message}"
            return self.colorize(message, 'RED')
        return self.colorize(f"An error occurred: {error}", 'RED')

    def format_for_log(self, error: Exception, include_trace: bool = True) -> str:
        """Format error for technical logging."""
        if isinstance(error, NBDError):
            return error.format_log_message()
        msg = f"{error.__class__.__name__}: {error}"
        if include_trace:
            msg += f"\nStack trace:\n{traceback.format_exc()}"
        return msg

    def format_for_json(self, error: Exception) -> str:
        """Format error as JSON for structured logging."""
        if isinstance(error, NBDError):
            data = error.to_dict()
        else:
            data = {
                'error_type': error.__class__.__name__,
                'message': str(error),
                'timestamp': datetime.now().isoformat()
            }
        return json.dumps(data, indent=2, default=str)

    def severity(self, error: Exception) -> str:
        """
        Severity from the error code range.

        Transport failures are critical since the session cannot continue;
        rejected caller arguments are warnings.
        """
        code = error.error_code if isinstance(error, NBDError) else ErrorCodes.UNKNOWN_ERROR
        if code < 2000:
            return 'critical'
        elif 7000 <= code < 8000:
            return 'warning'
        return 'error'

    def colorize(self, text: str, color: str) -> str:
        if self.use_colors and color in self.COLORS:
            return f"{self.COLORS[color]}{text}{self.COLORS['RESET']}"
        return text


def log_error(
    error: Exception,
    level: Optional[int] = None,
    target: Optional[logging.Logger] = None,
    extra_context: Optional[Dict[str, Any]] = None
) -> None:
    """
    Log an error: a one-line summary at level, full details at DEBUG.

    Args:
        error: The error to log
        level: Logging level for the summary line (default: from severity)
        target: Logger to use (default: this module's logger)
        extra_context: Additional context to include in the details
    """
    target = target or logger
    formatter = ErrorFormatter()
    if level is None:
        level = SEVERITY_LEVELS[formatter.severity(error)]

    if isinstance(error, NBDError):
        target.log(level, f"[{error.error_code}] {error.message}")
        target.debug(formatter.format_for_log(error))
        context = dict(error.context)
        if extra_context:
            context.update(extra_context)
        if context:
            target.debug(f"Error context: {json.dumps(context, indent=2, default=str)}")
    else:
        target.log(level, formatter.format_for_log(error, include_trace=True))


def format_error(error: Exception, format_type: str = 'user') -> str:
    """
    Format an error.

    Args:
        error: The error to format
        format_type: One of 'user', 'log' or 'json'
    """
    formatter = ErrorFormatter()

    if format_type == 'user':
        return formatter.format_for_user(error)
    elif format_type == 'log':
        return formatter.format_for_log(error)
    elif format_type == 'json':
        return formatter.format_for_json(error)
    raise ValueError(f"Unknown format type: {format_type}")
