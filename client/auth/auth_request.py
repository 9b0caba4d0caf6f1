"""
Authenticated requests with automatic access token refresh.

Every send first exchanges the stored requester token for a fresh access
token (``GET /auth/request``), stores it, and only then sends the wrapped
request with the new token as bearer credential. There is no cache-until-401
path and no retry loop, so a request moves through its states exactly once:

    CREATED -> REFRESHING -> SENDING -> DONE
"""

import logging
import time
import uuid
from enum import Enum
from typing import Optional

from shared.exceptions import AuthError, AuthErrorKind, TokenStorageError, TransportError
from shared.logging_config import AuditLogger, OperationLogger
from shared.models import HttpResponse, RequestDescription
from client.api_client import ClientContext
from client.auth import error_classifier
from client.auth.token_codec import AuthToken, EMPTY_TOKEN, bearer, decode, fits_header, peek_expiry
from client.auth.token_storage import TokenSlot, TokenStore

logger = logging.getLogger(__name__)

TOKEN_EXCHANGE_PATH = "/auth/request"


class RequestState(Enum):
    CREATED = "created"
    REFRESHING = "refreshing"
    SENDING = "sending"
    DONE = "done"


class AuthenticatedRequest:
    """
    A single authenticated call.

    Built from a request description and a snapshot of the stored access
    token; ``send()`` may be awaited once.
    """

    def __init__(
        self,
        context: ClientContext,
        token_store: TokenStore,
        request: RequestDescription,
        audit_logger: Optional[AuditLogger] = None,
        operation_logger: Optional[OperationLogger] = None
    ):
        self.context = context
        self.token_store = token_store
        self.request = request
        self.request_id = str(uuid.uuid4())
        self.state = RequestState.CREATED
        self.error: Optional[AuthError] = None

        self._audit = audit_logger or AuditLogger()
        self._operations = operation_logger or OperationLogger()

        # A visitor without a session has no token; that is not an error here.
        try:
            self.token: AuthToken = token_store.get(TokenSlot.ACCESS) or EMPTY_TOKEN
        except TokenStorageError as e:
            logger.debug(f"Access token unreadable, starting with empty token: {e}")
            self.token = EMPTY_TOKEN

    @property
    def succeeded(self) -> bool:
        return self.state == RequestState.DONE and self.error is None

    async def send(self) -> HttpResponse:
        """
        Refresh the access token and send the request with it.

        Returns:
            The raw response, whatever its status

        Raises:
            AuthError: when the refresh fails or the request cannot be sent
        """
        if self.state != RequestState.CREATED:
            raise RuntimeError(f"Request {self.request_id} was already sent")

        self._operations.log_operation_start(
            operation_type=f"{self.request.method} {self.request.url}",
            operation_id=self.request_id
        )
        started = time.monotonic()

        try:
            self._transition(RequestState.REFRESHING)
            await self._refresh_token()

            self._transition(RequestState.SENDING)
            response = await self._send_with_token()
        except AuthError as e:
            self.error = e
            self.state = RequestState.DONE
            self._operations.log_operation_complete(
                self.request_id,
                success=False,
                duration_seconds=time.monotonic() - started,
                result_summary=f"{e.kind.value}: {e.message}"
            )
            raise

        self.state = RequestState.DONE
        self._operations.log_operation_complete(
            self.request_id,
            success=True,
            duration_seconds=time.monotonic() - started,
            result_summary=f"status {response.status}"
        )
        return response

    def _transition(self, state: RequestState) -> None:
        self.state = state
        self._operations.log_operation_progress(self.request_id, state.value)

    async def _request_access_token(self) -> None:
        """Exchange the requester token for a new access token and store it."""
        try:
            requester_token = self.token_store.get(TokenSlot.REQUESTER)
        except TokenStorageError as e:
            raise self._refresh_failed(error_classifier.from_error_type(AuthErrorKind.INVALID_TOKEN, cause=e))
        if requester_token is None or not fits_header(requester_token):
            raise self._refresh_failed(error_classifier.from_error_type(AuthErrorKind.INVALID_TOKEN))

        try:
            response = await self.context.transport.request(
                'GET',
                self.context.url(TOKEN_EXCHANGE_PATH),
                headers={'Authorization': bearer(requester_token)}
            )
        except TransportError as e:
            raise self._refresh_failed(error_classifier.default_error(cause=e))

        if not response.ok:
            raise self._refresh_failed(error_classifier.classify(response))

        header_values = response.header_values('Authorization')
        access_token = decode(header_values[0]) if header_values else EMPTY_TOKEN
        if access_token.is_empty:
            # Leave the previous access token in place rather than blanking it.
            raise self._refresh_failed(error_classifier.from_error_type(AuthErrorKind.TOKEN_CREATION))

        try:
            self.token_store.set(TokenSlot.ACCESS, access_token)
        except TokenStorageError as e:
            raise self._refresh_failed(error_classifier.from_error_type(AuthErrorKind.STORAGE_FAILURE, cause=e))

        self._audit.log_token_refresh(self.request_id, success=True, expires_at=peek_expiry(access_token))

    async def _refresh_token(self) -> None:
        await self._request_access_token()

        try:
            token = self.token_store.get(TokenSlot.ACCESS)
        except TokenStorageError as e:
            raise error_classifier.from_error_type(AuthErrorKind.INVALID_TOKEN, cause=e)
        if token is None:
            raise error_classifier.from_error_type(AuthErrorKind.INVALID_TOKEN)
        self.token = token

    async def _send_with_token(self) -> HttpResponse:
        request = self.request.with_headers(Authorization=bearer(self.token))
        try:
            return await self.context.transport.request(
                request.method,
                request.url,
                json=request.json,
                data=request.data,
                headers=request.headers
            )
        except TransportError as e:
            raise error_classifier.from_error_type(AuthErrorKind.BAD_REQUEST, cause=e)

    def _refresh_failed(self, error: AuthError) -> AuthError:
        self._audit.log_token_refresh(self.request_id, success=False, failure_reason=error.kind.value)
        return error
