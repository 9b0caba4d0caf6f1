"""
User operations that require an authenticated session.
"""

import logging
from typing import List

from pydantic import TypeAdapter, ValidationError

from shared.exceptions import AuthError
from shared.models import RequestDescription, UserInfo
from client.auth import error_classifier
from client.auth.auth_service import AuthService

logger = logging.getLogger(__name__)

_USER_LIST = TypeAdapter(List[UserInfo])


class UserService:
    """User information and administration calls."""

    def __init__(self, auth_service: AuthService):
        self.auth = auth_service
        self.context = auth_service.context

    async def get_user_info(self) -> UserInfo:
        """
        Fetch the current user from ``GET /user/info``.

        Returns:
            The current user, or an anonymous UserInfo if there is no valid
            session or the answer cannot be read
        """
        request = self.auth.authenticated_request(
            RequestDescription('GET', self.context.url('/user/info'))
        )
        try:
            response = await request.send()
        except AuthError as e:
            logger.info(f"No user info available: {e.kind.value}")
            return UserInfo()

        if not response.ok:
            logger.info(f"User info request rejected with status {response.status}")
            return UserInfo()

        try:
            return UserInfo.model_validate_json(response.body)
        except ValidationError as e:
            logger.warning(f"Unreadable user info: {e.error_count()} errors")
            return UserInfo()

    async def get_all_users(self) -> List[UserInfo]:
        """List every user (``GET /user/all``); admin only on the server side."""
        request = self.auth.authenticated_request(
            RequestDescription('GET', self.context.url('/user/all'))
        )
        response = await request.send()

        if not response.ok:
            raise error_classifier.classify(response)

        try:
            return _USER_LIST.validate_json(response.body)
        except ValidationError as e:
            logger.error(f"Error parsing user list: {e}")
            raise error_classifier.default_error(cause=e)

    async def delete_user(self, user_uuid: str) -> int:
        """
        Delete a user (``DELETE /user`` with the uuid as raw body).

        Returns:
            Response status code, including non-success codes
        """
        request = self.auth.authenticated_request(
            RequestDescription('DELETE', self.context.url('/user'), data=user_uuid)
        )
        response = await request.send()
        logger.info(f"Delete user {user_uuid} answered with status {response.status}")
        return response.status
