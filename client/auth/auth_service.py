"""
Auth operations for the authenticated API client.

This module exposes the public authentication surface used by front ends:
register, login, password reset, logout and the authenticated test route.
Every failure is reported as an AuthError.
"""

import logging
from typing import Callable, List, Optional

from pydantic import ValidationError

from shared.exceptions import AuthError, AuthErrorKind, TokenStorageError, TransportError
from shared.logging_config import AuditLogger
from shared.models import HttpResponse, LoginUser, RegisterUser, RequestDescription, ResetUser, UserInfo
from client.api_client import ClientContext
from client.auth import error_classifier
from client.auth.auth_request import AuthenticatedRequest
from client.auth.token_storage import TokenSlot, TokenStore

logger = logging.getLogger(__name__)


class AuthService:
    """
    Authentication operations with session change notification.

    Register/login/reset talk to the transport directly since no session
    exists yet; the test route goes through AuthenticatedRequest.
    """

    def __init__(
        self,
        context: ClientContext,
        token_store: TokenStore,
        audit_logger: Optional[AuditLogger] = None
    ):
        self.context = context
        self.token_store = token_store
        self.audit = audit_logger or AuditLogger()

        self._session_callbacks: List[Callable[[bool], None]] = []

    def add_session_callback(self, callback: Callable[[bool], None]) -> None:
        """
        Add callback for session state changes.

        Args:
            callback: Function called with True when a session is established
                and False when it is cleared
        """
        self._session_callbacks.append(callback)

    def _notify_session_change(self, established: bool) -> None:
        for callback in self._session_callbacks:
            try:
                callback(established)
            except Exception as e:
                logger.error(f"Error in session callback: {e}")

    def is_authenticated(self) -> bool:
        """Check whether a requester token is stored."""
        try:
            return self.token_store.get(TokenSlot.REQUESTER) is not None
        except TokenStorageError as e:
            logger.warning(f"Could not read requester token: {e}")
            return False

    def authenticated_request(self, request: RequestDescription) -> AuthenticatedRequest:
        """Wrap a request description so it is sent with a fresh access token."""
        return AuthenticatedRequest(self.context, self.token_store, request, audit_logger=self.audit)

    async def test_auth_route(self) -> int:
        """
        Call ``GET /auth/test`` with a fresh access token.

        Returns:
            Response status code
        """
        request = self.authenticated_request(
            RequestDescription('GET', self.context.url('/auth/test'))
        )
        response = await request.send()

        if not response.ok:
            raise error_classifier.classify(response)

        self._store_rotated_requester_token(response)

        try:
            text = response.text()
        except UnicodeDecodeError as e:
            logger.error(f"Error with parsing body as text: {e}")
            raise error_classifier.default_error(cause=e)

        logger.info(f"Auth test route answered: {text}")
        return response.status

    async def register(self, user: RegisterUser) -> UserInfo:
        """
        Register a new user and store the issued requester token.

        Args:
            user: Registration data

        Returns:
            Information about the new user
        """
        return await self._establish_session('register', '/auth/register', user.username, user.to_wire())

    async def login(self, user: LoginUser) -> UserInfo:
        """
        Log in and store the issued requester token.

        Args:
            user: Login credentials

        Returns:
            Information about the logged in user
        """
        return await self._establish_session('login', '/auth/login', user.username, user.to_wire())

    async def reset_password(self, user: ResetUser, key: str) -> int:
        """
        Set a new password using a reset key.

        Stored tokens are cleared whenever the server answers, even if it
        rejects the key.

        Returns:
            Response status code

        Raises:
            AuthError: ``BAD_REQUEST`` for an empty key, without contacting
                the server
        """
        if not key:
            raise error_classifier.from_error_type(AuthErrorKind.BAD_REQUEST)
        return await self._reset('reset_password', f'/auth/reset/{key}', json=user.to_wire())

    async def request_reset(self, email: str) -> int:
        """
        Ask the server to send a password reset key to ``email``.

        Stored tokens are cleared whenever the server answers.

        Returns:
            Response status code
        """
        return await self._reset('request_reset', '/auth/reset', data=email)

    def logout(self) -> None:
        """Forget both tokens. Safe to call without a session."""
        try:
            self.token_store.clear()
        except TokenStorageError as e:
            raise error_classifier.from_error_type(AuthErrorKind.STORAGE_FAILURE, cause=e)

        self.audit.log_session_cleared("logout")
        self._notify_session_change(False)

    async def _post(self, path: str, json=None, data=None) -> HttpResponse:
        url = self.context.url(path)
        try:
            return await self.context.transport.request('POST', url, json=json, data=data)
        except TransportError as e:
            logger.error(f"Error with request to {url}: {e}")
            raise error_classifier.classify_transport_failure(e)

    async def _establish_session(self, action: str, path: str, username: str, payload) -> UserInfo:
        try:
            response = await self._post(path, json=payload)
            if not response.ok:
                raise error_classifier.classify(response)

            try:
                self.token_store.store_from_headers(response.headers)
            except TokenStorageError as e:
                raise error_classifier.from_error_type(AuthErrorKind.STORAGE_FAILURE, cause=e)

            try:
                user_info = UserInfo.model_validate_json(response.body)
            except ValidationError as e:
                logger.error(f"Error parsing body: {e}")
                raise error_classifier.default_error(cause=e)

        except AuthError as e:
            self.audit.log_authentication(action, username, success=False, failure_reason=e.message)
            raise

        self.audit.log_authentication(action, username, success=True)
        self._notify_session_change(True)
        return user_info

    async def _reset(self, action: str, path: str, json=None, data=None) -> int:
        response = await self._post(path, json=json, data=data)

        # TODO: confirm with product whether a rejected reset should end the session
        try:
            self.token_store.clear()
        except TokenStorageError as e:
            raise error_classifier.from_error_type(AuthErrorKind.STORAGE_FAILURE, cause=e)
        self.audit.log_session_cleared(action)
        self._notify_session_change(False)

        if not response.ok:
            error = error_classifier.classify(response)
            self.audit.log_authentication(action, success=False, failure_reason=error.message)
            raise error

        self.audit.log_authentication(action, success=True)
        return response.status

    def _store_rotated_requester_token(self, response: HttpResponse) -> None:
        try:
            if self.token_store.store_from_headers(response.headers) is not None:
                logger.debug("Stored rotated requester token")
        except TokenStorageError as e:
            raise error_classifier.from_error_type(AuthErrorKind.STORAGE_FAILURE, cause=e)
