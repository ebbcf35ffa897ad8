"""
Unified error handling framework for the NBD client.

This module defines the error hierarchy raised by every layer of the
protocol engine. Each error carries a numeric code, the negotiation or
transmission step that failed, and (for mismatches) the expected and
actual wire values so interoperability problems can be diagnosed from a
single log line.

Error Code Ranges:
- 1000-1999: Transport / encryption errors
- 2000-2999: Protocol errors
- 3000-3999: Server-reported command errors
- 6000-6999: Configuration errors
- 7000-7999: Validation errors
- 9000-9999: Unknown errors
"""

from typing import Optional, Dict, Any, List
from datetime import datetime
import traceback


class ErrorCodes:
    """Standard error codes for common error scenarios."""

    # Transport errors (1000-1999)
    CONNECTION_LOST = 1001
    CONNECTION_REFUSED = 1002
    SHORT_READ = 1003
    SESSION_CLOSED = 1004
    SESSION_UNUSABLE = 1005
    TLS_HANDSHAKE_FAILED = 1101

    # Protocol errors (2000-2999)
    PROTOCOL_MISMATCH = 2003
    OPTION_REJECTED = 2101

    # Server errors (3000-3999)
    SERVER_ERROR = 3001

    # Configuration errors (6000-6999)
    CONFIG_ERROR = 6001
    CONFIG_NOT_FOUND = 6002
    CONFIG_INVALID = 6003

    # Validation errors (7000-7999)
    INVALID_PARAMETER = 7001
    OUT_OF_RANGE = 7002

    UNKNOWN_ERROR = 9000


class NBDError(Exception):
    """
    Base exception for all NBD client errors.

    Provides structured error information with context tracking.
    """

    DEFAULT_CODE = ErrorCodes.UNKNOWN_ERROR

    def __init__(
        self,
        message: str,
        error_code: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        suggestions: Optional[List[str]] = None
    ):
        """
        Initialize an NBD error.

        Args:
            message: Human-readable error description
            error_code: Numeric error code for categorization
            context: Additional context information (step, field, values)
            cause: Original exception if this wraps another error
            suggestions: List of possible solutions or next steps
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.DEFAULT_CODE
        self.context = context or {}
        self.cause = cause
        self.suggestions = suggestions or []
        self.timestamp = datetime.now()

        self.stack_trace = traceback.format_exc() if cause else None

        if cause:
            self.context['original_error'] = str(cause)
            self.context['original_type'] = type(cause).__name__

    @property
    def step(self) -> Optional[str]:
        """Protocol step that failed, if known."""
        return self.context.get('step')

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        return {
            'error_type': self.__class__.__name__,
            'message': self.message,
            'code': self.error_code,
            'context': self.context,
            'suggestions': self.suggestions,
            'timestamp': self.timestamp.isoformat(),
            'cause': str(self.cause) if self.cause else None,
            'stack_trace': self.stack_trace
        }

    def format_user_message(self) -> str:
        """Format error for user display (without technical details)."""
        msg = f"{self.message}"
        if self.suggestions:
            msg += "\n\nSuggestions:"
            for i, suggestion in enumerate(self.suggestions, 1):
                msg += f"\n  {i}. {suggestion}"
        return msg

    def format_log_message(self) -> str:
        """Format error for logging (with all details)."""
        parts = [
            f"[{self.error_code}] {self.__class__.__name__}: {self.message}"
        ]

        if self.context:
            parts.append(f"Context: {self.context}")

        if self.cause:
            parts.append(f"Caused by: {self.cause}")

        if self.stack_trace:
            parts.append(f"Stack trace:\n{self.stack_trace}")

        return " | ".join(parts)


def _with_category(kwargs: Dict[str, Any], category: str, **extra) -> Dict[str, Any]:
    context = dict(kwargs.get('context') or {})
    context['category'] = category
    for key, value in extra.items():
        if value is not None:
            context[key] = value
    kwargs['context'] = context
    return kwargs


class TransportError(NBDError):
    """I/O failure on the underlying stream (including short reads)."""
    DEFAULT_CODE = ErrorCodes.CONNECTION_LOST

    def __init__(self, message: str, step: Optional[str] = None, **kwargs):
        super().__init__(message, **_with_category(kwargs, 'TRANSPORT', step=step))


class EncryptionHandshakeFailure(NBDError):
    """The TLS handshake after an acknowledged STARTTLS failed."""
    DEFAULT_CODE = ErrorCodes.TLS_HANDSHAKE_FAILED

    def __init__(self, message: str, **kwargs):
        super().__init__(message, **_with_category(kwargs, 'ENCRYPTION', step='starttls'))


class ProtocolMismatch(NBDError):
    """A fixed magic, flag, id, length or handle did not match."""
    DEFAULT_CODE = ErrorCodes.PROTOCOL_MISMATCH

    def __init__(
        self,
        message: str,
        step: Optional[str] = None,
        field: Optional[str] = None,
        expected: Any = None,
        actual: Any = None,
        **kwargs
    ):
        super().__init__(
            message,
            **_with_category(
                kwargs, 'PROTOCOL',
                step=step, field=field,
                expected=_hex(expected), actual=_hex(actual)
            )
        )


class OptionRejected(NBDError):
    """The server answered an option request with an error-flagged reply."""
    DEFAULT_CODE = ErrorCodes.OPTION_REJECTED

    def __init__(
        self,
        message: str,
        option: Optional[int] = None,
        reply_type: Optional[int] = None,
        reply_name: Optional[str] = None,
        server_message: Optional[str] = None,
        **kwargs
    ):
        self.option = option
        self.reply_type = reply_type
        super().__init__(
            message,
            **_with_category(
                kwargs, 'OPTION',
                option=option, reply_type=_hex(reply_type),
                reply_name=reply_name, server_message=server_message
            )
        )


class ServerCommandError(NBDError):
    """A command reply carried a non-zero error number."""
    DEFAULT_CODE = ErrorCodes.SERVER_ERROR

    def __init__(
        self,
        message: str,
        errno: Optional[int] = None,
        errno_name: Optional[str] = None,
        **kwargs
    ):
        self.errno = errno
        super().__init__(
            message,
            **_with_category(kwargs, 'SERVER', errno=errno, errno_name=errno_name)
        )


class ConfigurationError(NBDError):
    """Errors related to configuration files and settings."""
    DEFAULT_CODE = ErrorCodes.CONFIG_ERROR

    def __init__(self, message: str, setting_name: Optional[str] = None, **kwargs):
        super().__init__(message, **_with_category(kwargs, 'CONFIGURATION', setting=setting_name))


class ValidationError(NBDError):
    """Errors related to input validation and parameter checking."""
    DEFAULT_CODE = ErrorCodes.INVALID_PARAMETER

    def __init__(self, message: str, field_name: Optional[str] = None, **kwargs):
        super().__init__(message, **_with_category(kwargs, 'VALIDATION', field=field_name))


def _hex(value: Any) -> Any:
    if isinstance(value, bool) or not isinstance(value, int):
        return value
    return f"0x{value:x}"


def wrap_external_error(
    e: Exception,
    message: str,
    error_class=TransportError,
    error_code: Optional[int] = None,
    suggestions: Optional[List[str]] = None,
    **context
) -> NBDError:
    """
    Wrap an external exception in an NBDError.

    Args:
        e: The original exception
        message: Context-specific error message
        error_class: The NBDError subclass to use
        error_code: Code overriding the class default
        suggestions: Possible solutions to show the user
        **context: Additional context information (for example step=...)

    Returns:
        An NBDError instance wrapping the original exception
    """
    return error_class(
        message=message,
        error_code=error_code,
        cause=e,
        suggestions=suggestions,
        context=context
    )
