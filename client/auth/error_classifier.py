"""
Mapping of failed HTTP exchanges onto AuthError kinds.
"""

import logging
from typing import Optional

from pydantic import ValidationError

from shared.exceptions import AuthError, AuthErrorKind, TransportError
from shared.models import AuthErrorBody, HttpResponse

logger = logging.getLogger(__name__)


def default_error(cause: Optional[Exception] = None) -> AuthError:
    """Generic error used whenever nothing more specific is known."""
    return AuthError(AuthErrorKind.REQUEST_FAILED, cause=cause)


def from_error_type(kind: AuthErrorKind, cause: Optional[Exception] = None) -> AuthError:
    """Error for a client-side condition that never reached the server."""
    return AuthError(kind, cause=cause)


def classify_transport_failure(error: TransportError) -> AuthError:
    """The request never produced a response."""
    return AuthError(AuthErrorKind.NETWORK_FAILURE, cause=error)


def classify(response: HttpResponse) -> AuthError:
    """
    Classify a non-success response.

    A body of the form ``{"status": ..., "message": ...}`` is carried through
    verbatim; anything else yields the generic error so the caller always has
    something to render.
    """
    if response.ok:
        logger.warning(f"Classifying a successful response (status {response.status})")

    try:
        body = AuthErrorBody.model_validate_json(response.body)
    except ValidationError as e:
        logger.debug(f"Unparsable error body for status {response.status}: {e.error_count()} errors")
        return default_error(cause=e)

    logger.info(f"Server rejected request with status {response.status}: {body.message}")
    return AuthError(
        AuthErrorKind.SERVER_REJECTED,
        status=response.status,
        body=body
    )
