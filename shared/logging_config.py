"""
Logging configuration for the authenticated API client.

Console and rotating-file output in plain, detailed or JSON form, plus two
structured channels: the ``audit`` logger (authentication, token refresh and
session events) and the ``operations`` logger (one start/progress/complete
trail per authenticated request).
"""

import json
import logging
import logging.handlers
import sys
from datetime import datetime
from pathlib import Path
from typing import Dict, Any, Optional
from enum import Enum

from shared.exceptions import AuthClientError


class LogLevel(Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogFormat(Enum):
    STANDARD = "standard"
    JSON = "json"
    DETAILED = "detailed"


class AuditEventType(Enum):
    """Kinds of audit trail entries."""
    AUTHENTICATION = "authentication"
    TOKEN_REFRESH = "token_refresh"
    SESSION = "session"


# Attributes every LogRecord carries; anything else came in through ``extra``.
_STANDARD_ATTRS = frozenset(vars(logging.LogRecord('', 0, '', 0, '', None, None))) | {
    'message', 'asctime', 'error_info', 'audit_info', 'operation_context'
}


def _error_details(error: AuthClientError) -> Dict[str, Any]:
    return {
        'code': error.error_code.value,
        'severity': error.severity.value,
        'context': error.context,
        'recovery_actions': [action.value for action in error.recovery_actions],
        'user_message': error.user_message
    }


class StructuredFormatter(logging.Formatter):
    """One JSON object per record."""

    def __init__(self, include_extra_fields: bool = True):
        super().__init__()
        self.include_extra_fields = include_extra_fields

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            'timestamp': datetime.fromtimestamp(record.created).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'source': f"{record.module}.{record.funcName}:{record.lineno}"
        }

        if record.exc_info and record.exc_info[0]:
            entry['exception'] = {
                'type': record.exc_info[0].__name__,
                'message': str(record.exc_info[1]),
                'traceback': self.formatException(record.exc_info)
            }

        error = getattr(record, 'error_info', None)
        if isinstance(error, AuthClientError):
            entry['error'] = _error_details(error)

        for attr, key in (('audit_info', 'audit'), ('operation_context', 'operation')):
            if hasattr(record, attr):
                entry[key] = getattr(record, attr)

        if self.include_extra_fields:
            extra = {k: v for k, v in vars(record).items() if k not in _STANDARD_ATTRS}
            if extra:
                entry['extra'] = extra

        return json.dumps(entry, default=str, ensure_ascii=False)


class DetailedFormatter(logging.Formatter):
    """Human-readable lines followed by any structured payload, indented."""

    def __init__(self):
        super().__init__(
            fmt='%(asctime)s | %(levelname)-8s | %(name)-28s | %(funcName)s:%(lineno)d | %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

    def format(self, record: logging.LogRecord) -> str:
        lines = [super().format(record)]

        error = getattr(record, 'error_info', None)
        if isinstance(error, AuthClientError):
            details = _error_details(error)
            lines.append(f"  Error Code: {details['code']} ({details['severity']})")
            if details['context']:
                lines.append(f"  Context: {json.dumps(details['context'], default=str)}")
            if details['recovery_actions']:
                lines.append(f"  Recovery Actions: {', '.join(details['recovery_actions'])}")

        if hasattr(record, 'audit_info'):
            lines.append(f"  Audit: {json.dumps(record.audit_info, default=str)}")
        if hasattr(record, 'operation_context'):
            lines.append(f"  Operation: {json.dumps(record.operation_context, default=str)}")

        return "\n".join(lines)


class AuditLogger:
    """
    Audit trail of authentication activity.

    Entries name the user and request involved but never carry token values.
    """

    def __init__(self, logger_name: str = "audit"):
        self.logger = logging.getLogger(logger_name)

    def log_event(
        self,
        event_type: AuditEventType,
        message: str,
        username: Optional[str] = None,
        request_id: Optional[str] = None,
        result: Optional[str] = None,
        additional_context: Optional[Dict[str, Any]] = None
    ):
        """
        Write one audit entry.

        Args:
            event_type: Kind of entry
            message: Human-readable summary
            username: User the event concerns, if known
            request_id: Authenticated request the event belongs to
            result: Outcome such as success, failure or cleared
            additional_context: Extra fields for the entry
        """
        audit_info = {
            'event_type': event_type.value,
            'timestamp': datetime.now().isoformat(),
            'context': additional_context or {}
        }
        for key, value in (('username', username), ('request_id', request_id), ('result', result)):
            if value is not None:
                audit_info[key] = value

        self.logger.info(message, extra={'audit_info': audit_info})

    def log_authentication(
        self,
        action: str,
        username: Optional[str] = None,
        success: bool = True,
        failure_reason: Optional[str] = None
    ):
        """Record a register, login or password reset attempt."""
        context = {'action': action}
        if failure_reason:
            context['failure_reason'] = failure_reason

        outcome = "succeeded" if success else "failed"
        message = f"{action.replace('_', ' ').capitalize()} {outcome}"
        if username:
            message += f" for {username}"

        self.log_event(
            AuditEventType.AUTHENTICATION,
            message,
            username=username,
            result="success" if success else "failure",
            additional_context=context
        )

    def log_token_refresh(
        self,
        request_id: str,
        success: bool = True,
        expires_at: Optional[datetime] = None,
        failure_reason: Optional[str] = None
    ):
        context = {}
        if expires_at:
            context['expires_at'] = expires_at.isoformat()
        if failure_reason:
            context['failure_reason'] = failure_reason

        self.log_event(
            AuditEventType.TOKEN_REFRESH,
            f"Access token refresh {'succeeded' if success else 'failed'}",
            request_id=request_id,
            result="success" if success else "failure",
            additional_context=context
        )

    def log_session_cleared(self, reason: str):
        self.log_event(
            AuditEventType.SESSION,
            f"Session cleared ({reason})",
            result="cleared",
            additional_context={'reason': reason}
        )


class OperationLogger:
    """Start, state transitions and outcome of each authenticated request."""

    def __init__(self, logger_name: str = "operations"):
        self.logger = logging.getLogger(logger_name)

    def _log(self, level: int, message: str, operation_id: str, stage: str, **fields):
        context = {'operation_id': operation_id, 'stage': stage, 'timestamp': datetime.now().isoformat()}
        context.update(fields)
        self.logger.log(level, message, extra={'operation_context': context})

    def log_operation_start(
        self,
        operation_type: str,
        operation_id: str,
        context: Optional[Dict[str, Any]] = None
    ):
        self._log(logging.DEBUG, f"{operation_type} started ({operation_id})", operation_id, 'started',
                  operation_type=operation_type, context=context or {})

    def log_operation_progress(self, operation_id: str, stage: str):
        self._log(logging.DEBUG, f"Request {operation_id} is {stage}", operation_id, stage)

    def log_operation_complete(
        self,
        operation_id: str,
        success: bool,
        duration_seconds: Optional[float] = None,
        result_summary: Optional[str] = None
    ):
        """Record the outcome; failures are logged as warnings."""
        message = f"Request {operation_id} {'completed' if success else 'failed'}"
        if duration_seconds is not None:
            message += f" after {duration_seconds * 1000:.0f}ms"
        if result_summary:
            message += f": {result_summary}"

        self._log(logging.DEBUG if success else logging.WARNING, message, operation_id, 'completed',
                  success=success, duration_seconds=duration_seconds, result_summary=result_summary)


def _rotating_handler(path: str, formatter: logging.Formatter, max_bytes: int, backup_count: int):
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    handler = logging.handlers.RotatingFileHandler(
        path, maxBytes=max_bytes, backupCount=backup_count, encoding='utf-8'
    )
    handler.setFormatter(formatter)
    return handler


def setup_logging(
    log_level: LogLevel = LogLevel.INFO,
    log_format: LogFormat = LogFormat.STANDARD,
    log_file: Optional[str] = None,
    max_file_size: int = 10 * 1024 * 1024,
    backup_count: int = 3,
    enable_console: bool = True,
    enable_audit: bool = True,
    audit_file: Optional[str] = None
) -> Dict[str, logging.Logger]:
    """
    Configure the root, audit and operations loggers.

    Existing root and audit handlers are replaced, so calling this twice
    does not duplicate output.

    Args:
        log_level: Minimum level for the root logger
        log_format: Output format for console and log file
        log_file: Rotating log file, in addition to the console
        max_file_size: Rotation threshold in bytes
        backup_count: Rotated files to keep
        enable_console: Log to stderr
        enable_audit: Emit audit entries at all
        audit_file: Separate JSON file for audit entries; when set, audit
            entries no longer reach the console or main log file

    Returns:
        The configured loggers by role
    """
    if log_format == LogFormat.JSON:
        formatter = StructuredFormatter()
    elif log_format == LogFormat.DETAILED:
        formatter = DetailedFormatter()
    else:
        formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s',
                                      datefmt='%H:%M:%S')

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    root_logger.setLevel(log_level.value)

    if enable_console:
        # stderr keeps stdout free for --json output
        console = logging.StreamHandler(sys.stderr)
        console.setFormatter(formatter)
        root_logger.addHandler(console)
    if log_file:
        root_logger.addHandler(_rotating_handler(log_file, formatter, max_file_size, backup_count))

    loggers = {
        'root': root_logger,
        'auth': logging.getLogger('client.auth'),
        'operations': logging.getLogger('operations'),
        'network': logging.getLogger('client.api_client')
    }

    audit_logger = logging.getLogger('audit')
    for handler in audit_logger.handlers[:]:
        audit_logger.removeHandler(handler)
        handler.close()
    audit_logger.propagate = True

    if not enable_audit:
        audit_logger.setLevel(logging.CRITICAL + 1)
        return loggers

    audit_logger.setLevel(logging.INFO)
    if audit_file:
        audit_logger.addHandler(_rotating_handler(audit_file, StructuredFormatter(), max_file_size, backup_count))
        audit_logger.propagate = False
    loggers['audit'] = audit_logger
    return loggers


def log_structured_error(
    logger: logging.Logger,
    error: AuthClientError,
    request_id: Optional[str] = None
):
    """Log ``error`` at ERROR level with its code, context and recovery hints attached."""
    logger.error(error.message, extra={'error_info': error, 'request_id': request_id})
