"""
Exception hierarchy for the authenticated API client.

This module defines structured exceptions with error codes, context information,
and recovery suggestions, plus the closed set of authentication error kinds that
every auth operation reports to its caller.
"""

from datetime import datetime
from typing import Optional, Dict, Any, List, TYPE_CHECKING
from enum import Enum

if TYPE_CHECKING:
    from shared.models import AuthErrorBody


GENERIC_ERROR_MESSAGE = "Something went wrong. Please try again."


class ErrorCode(Enum):
    """Standardized error codes for the client."""

    # Authentication errors (1000-1099)
    AUTH_INVALID_TOKEN = "AUTH_1001"
    AUTH_TOKEN_CREATION_FAILED = "AUTH_1002"
    AUTH_SERVER_REJECTED = "AUTH_1003"
    AUTH_REQUEST_FAILED = "AUTH_1004"
    AUTH_BAD_REQUEST = "AUTH_1005"

    # Network and communication errors (2000-2099)
    NETWORK_CONNECTION_FAILED = "NETWORK_2001"
    NETWORK_TIMEOUT = "NETWORK_2002"

    # Storage errors (3000-3099)
    STORAGE_READ_FAILED = "STORAGE_3001"
    STORAGE_WRITE_FAILED = "STORAGE_3002"
    STORAGE_UNAVAILABLE = "STORAGE_3003"

    # Validation errors (4000-4099)
    VALIDATION_INVALID_INPUT = "VALIDATION_4001"

    # Configuration errors (8000-8099)
    CONFIG_FILE_NOT_FOUND = "CONFIG_8001"
    CONFIG_INVALID_FORMAT = "CONFIG_8002"
    CONFIG_INVALID_VALUE = "CONFIG_8004"

    # Internal errors (9000-9099)
    INTERNAL_UNEXPECTED_ERROR = "INTERNAL_9001"


class ErrorSeverity(Enum):
    """Error severity levels for logging and handling."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RecoveryAction(Enum):
    """Suggested recovery actions for errors."""
    RETRY = "retry"
    RECONNECT = "reconnect"
    REFRESH_TOKEN = "refresh_token"
    LOGIN_AGAIN = "login_again"
    USER_INTERVENTION = "user_intervention"
    CONTACT_ADMIN = "contact_admin"


class AuthErrorKind(Enum):
    """Closed set of authentication failure kinds."""
    NETWORK_FAILURE = "network_failure"
    INVALID_TOKEN = "invalid_token"
    TOKEN_CREATION = "token_creation"
    BAD_REQUEST = "bad_request"
    REQUEST_FAILED = "request_failed"
    SERVER_REJECTED = "server_rejected"
    STORAGE_FAILURE = "storage_failure"


_KIND_DETAILS = {
    AuthErrorKind.NETWORK_FAILURE: (
        "Request never reached the server",
        ErrorCode.NETWORK_CONNECTION_FAILED,
        [RecoveryAction.RETRY, RecoveryAction.RECONNECT],
    ),
    AuthErrorKind.INVALID_TOKEN: (
        "No usable token in local storage",
        ErrorCode.AUTH_INVALID_TOKEN,
        [RecoveryAction.LOGIN_AGAIN],
    ),
    AuthErrorKind.TOKEN_CREATION: (
        "Server accepted the token exchange but issued no access token",
        ErrorCode.AUTH_TOKEN_CREATION_FAILED,
        [RecoveryAction.REFRESH_TOKEN, RecoveryAction.CONTACT_ADMIN],
    ),
    AuthErrorKind.BAD_REQUEST: (
        "Authenticated request could not be sent",
        ErrorCode.AUTH_BAD_REQUEST,
        [RecoveryAction.RETRY],
    ),
    AuthErrorKind.REQUEST_FAILED: (
        "Authentication request failed",
        ErrorCode.AUTH_REQUEST_FAILED,
        [RecoveryAction.RETRY],
    ),
    AuthErrorKind.SERVER_REJECTED: (
        "Server rejected the request",
        ErrorCode.AUTH_SERVER_REJECTED,
        [RecoveryAction.USER_INTERVENTION],
    ),
    AuthErrorKind.STORAGE_FAILURE: (
        "Token storage failed",
        ErrorCode.STORAGE_WRITE_FAILED,
        [RecoveryAction.USER_INTERVENTION],
    ),
}


class AuthClientError(Exception):
    """
    Base exception class for all client errors.

    Provides structured error information including error codes, context,
    and recovery suggestions for consistent error handling.
    """

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        context: Optional[Dict[str, Any]] = None,
        recovery_actions: Optional[List[RecoveryAction]] = None,
        cause: Optional[Exception] = None,
        user_message: Optional[str] = None
    ):
        super().__init__(message)

        self.message = message
        self.error_code = error_code
        self.severity = severity
        self.context = context or {}
        self.recovery_actions = recovery_actions or []
        self.cause = cause
        self.user_message = user_message or message
        self.timestamp = datetime.now()

        if cause:
            self.context['cause_type'] = type(cause).__name__
            self.context['cause_message'] = str(cause)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary format for serialization."""
        return {
            'error': {
                'code': self.error_code.value,
                'message': self.message,
                'user_message': self.user_message,
                'severity': self.severity.value,
                'timestamp': self.timestamp.isoformat(),
                'context': self.context,
                'recovery_actions': [action.value for action in self.recovery_actions],
                'cause': {
                    'type': self.context.get('cause_type'),
                    'message': self.context.get('cause_message')
                } if self.cause else None
            }
        }


class AuthError(AuthClientError):
    """
    Classified authentication failure.

    Either carries the status code and structured body the server returned
    (kind SERVER_REJECTED), or only a kind for failures that never produced a
    parsable server answer. Instances are read-only once constructed.
    """

    def __init__(
        self,
        kind: AuthErrorKind,
        status: Optional[int] = None,
        body: Optional["AuthErrorBody"] = None,
        message: Optional[str] = None,
        cause: Optional[Exception] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        default_message, error_code, recovery_actions = _KIND_DETAILS[kind]
        context = dict(context or {})
        context['kind'] = kind.value
        if status is not None:
            context['status'] = status

        super().__init__(
            message=message or (body.message if body else default_message),
            error_code=error_code,
            severity=ErrorSeverity.HIGH,
            context=context,
            recovery_actions=list(recovery_actions),
            cause=cause,
            user_message=body.message if body else GENERIC_ERROR_MESSAGE
        )
        self._kind = kind
        self._status = status
        self._body = body

    @property
    def kind(self) -> AuthErrorKind:
        return self._kind

    @property
    def status(self) -> Optional[int]:
        """HTTP status of the rejecting response, if the server answered."""
        return self._status

    @property
    def body(self) -> Optional["AuthErrorBody"]:
        """Structured error body sent by the server, if one was parsed."""
        return self._body

    @property
    def display_message(self) -> str:
        """Message a front end should render for this error."""
        if self._body is not None and self._body.message:
            return self._body.message
        return GENERIC_ERROR_MESSAGE

    def __repr__(self) -> str:
        return f"AuthError(kind={self._kind.value!r}, status={self._status!r}, message={self.message!r})"


class TokenStorageError(AuthClientError):
    """Persistent token storage failed (read, write, or backend unavailable)."""

    def __init__(self, message: str, error_code: ErrorCode = ErrorCode.STORAGE_WRITE_FAILED, **kwargs):
        super().__init__(
            message=message,
            error_code=error_code,
            severity=ErrorSeverity.HIGH,
            recovery_actions=[RecoveryAction.USER_INTERVENTION],
            **kwargs
        )


class TransportError(AuthClientError):
    """The HTTP call did not produce a response."""

    def __init__(self, message: str, error_code: ErrorCode = ErrorCode.NETWORK_CONNECTION_FAILED, **kwargs):
        super().__init__(
            message=message,
            error_code=error_code,
            severity=ErrorSeverity.MEDIUM,
            recovery_actions=[RecoveryAction.RETRY, RecoveryAction.RECONNECT],
            **kwargs
        )


class ConfigurationError(AuthClientError):
    """Configuration related errors."""

    def __init__(self, message: str, error_code: ErrorCode, config_key: Optional[str] = None, **kwargs):
        context = kwargs.pop('context', {})
        if config_key:
            context['config_key'] = config_key

        super().__init__(
            message=message,
            error_code=error_code,
            severity=ErrorSeverity.HIGH,
            recovery_actions=[RecoveryAction.USER_INTERVENTION, RecoveryAction.CONTACT_ADMIN],
            context=context,
            **kwargs
        )


def handle_exception(
    exception: Exception,
    context: Optional[Dict[str, Any]] = None,
    default_error_code: ErrorCode = ErrorCode.INTERNAL_UNEXPECTED_ERROR
) -> AuthClientError:
    """
    Convert a generic exception to a structured AuthClientError.

    Args:
        exception: The original exception
        context: Additional context information
        default_error_code: Default error code if specific mapping not found

    Returns:
        Structured AuthClientError
    """
    if isinstance(exception, AuthClientError):
        return exception

    exception_mapping = {
        ConnectionError: ErrorCode.NETWORK_CONNECTION_FAILED,
        TimeoutError: ErrorCode.NETWORK_TIMEOUT,
        FileNotFoundError: ErrorCode.CONFIG_FILE_NOT_FOUND,
        ValueError: ErrorCode.VALIDATION_INVALID_INPUT,
    }

    error_code = exception_mapping.get(type(exception), default_error_code)

    return AuthClientError(
        message=str(exception),
        error_code=error_code,
        context=context,
        cause=exception
    )
