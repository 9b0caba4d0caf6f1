"""
Tests for the public authentication operations.
"""

from unittest.mock import Mock

import pytest

from shared.exceptions import AuthError, AuthErrorKind, GENERIC_ERROR_MESSAGE, TransportError
from shared.models import LoginUser, RegisterUser, ResetUser
from client.auth.auth_service import AuthService
from client.auth.token_codec import AuthToken
from client.auth.token_storage import EncryptedFileStorage, TokenSlot, TokenStore

from conftest import make_response


def seed_session(token_store):
    token_store.set(TokenSlot.REQUESTER, AuthToken("rtok-abc"))
    token_store.set(TokenSlot.ACCESS, AuthToken("atok-old"))


class TestLoginAndTestRoute:
    """Test establishing a session and using it."""

    @pytest.mark.asyncio
    async def test_login_then_test_route(self, auth_service, transport, token_store):
        transport.add('POST', '/auth/login', make_response(
            200, {'uuid': 'u-1', 'is_admin': False, 'username': 'alice'},
            headers=[('Authorization', 'rtok-abc')]
        ))
        transport.add('GET', '/auth/request', make_response(200, headers=[('Authorization', 'atok-xyz')]))
        transport.add('GET', '/auth/test', make_response(200, "ok"))

        info = await auth_service.login(LoginUser(username='alice', password='pw'))

        assert info.uuid == 'u-1'
        assert token_store.get(TokenSlot.REQUESTER) == AuthToken("rtok-abc")
        assert transport.calls[0]['json'] == {'username': 'alice', 'pass': 'pw'}

        status = await auth_service.test_auth_route()

        assert status == 200
        assert transport.calls_to('GET', '/auth/request')[0]['headers']['Authorization'] == 'Bearer rtok-abc'
        assert transport.calls_to('GET', '/auth/test')[0]['headers']['Authorization'] == 'Bearer atok-xyz'
        assert token_store.get(TokenSlot.ACCESS) == AuthToken("atok-xyz")

    @pytest.mark.asyncio
    async def test_route_stores_rotated_requester_token(self, auth_service, transport, token_store):
        seed_session(token_store)
        transport.add('GET', '/auth/request', make_response(200, headers=[('Authorization', 'atok-xyz')]))
        transport.add('GET', '/auth/test', make_response(200, "ok", headers=[('Authorization', 'rtok-new')]))

        await auth_service.test_auth_route()

        assert token_store.get(TokenSlot.REQUESTER) == AuthToken("rtok-new")

    @pytest.mark.asyncio
    async def test_route_rejection(self, auth_service, transport, token_store):
        seed_session(token_store)
        transport.add('GET', '/auth/request', make_response(200, headers=[('Authorization', 'atok-xyz')]))
        transport.add('GET', '/auth/test', make_response(401, {'status': 401, 'message': 'unauthorized'}))

        with pytest.raises(AuthError) as exc_info:
            await auth_service.test_auth_route()

        assert exc_info.value.kind == AuthErrorKind.SERVER_REJECTED
        assert exc_info.value.status == 401

    @pytest.mark.asyncio
    async def test_route_without_session(self, auth_service, transport):
        with pytest.raises(AuthError) as exc_info:
            await auth_service.test_auth_route()

        assert exc_info.value.kind == AuthErrorKind.INVALID_TOKEN
        assert transport.calls == []

    @pytest.mark.asyncio
    async def test_login_unreadable_body(self, auth_service, transport):
        transport.add('POST', '/auth/login', make_response(200, "not json", headers=[('Authorization', 'rtok-abc')]))

        with pytest.raises(AuthError) as exc_info:
            await auth_service.login(LoginUser(username='alice', password='pw'))

        assert exc_info.value.kind == AuthErrorKind.REQUEST_FAILED

    @pytest.mark.asyncio
    async def test_login_network_failure(self, auth_service, transport, token_store):
        transport.add('POST', '/auth/login', TransportError("connection refused"))

        with pytest.raises(AuthError) as exc_info:
            await auth_service.login(LoginUser(username='alice', password='pw'))

        assert exc_info.value.kind == AuthErrorKind.NETWORK_FAILURE
        assert exc_info.value.display_message == GENERIC_ERROR_MESSAGE
        assert token_store.get(TokenSlot.REQUESTER) is None


class TestRegister:
    """Test user registration."""

    @pytest.mark.asyncio
    async def test_register_stores_requester_token(self, auth_service, transport, token_store):
        transport.add('POST', '/auth/register', make_response(
            201, {'uuid': 'u-2', 'is_admin': False}, headers=[('Authorization', 'rtok-new')]
        ))
        user = RegisterUser(username='bob', password='pw', email='bob@example.com')

        info = await auth_service.register(user)

        assert info.uuid == 'u-2'
        assert token_store.get(TokenSlot.REQUESTER) == AuthToken("rtok-new")
        assert transport.calls[0]['json'] == {'username': 'bob', 'pass': 'pw', 'email': 'bob@example.com'}

    @pytest.mark.asyncio
    async def test_duplicate_username(self, auth_service, transport, token_store, storage):
        seed_session(token_store)
        before = dict((key, storage.get(key)) for key in storage.keys())
        transport.add('POST', '/auth/register', make_response(409, {'status': 409, 'message': 'username taken'}))

        with pytest.raises(AuthError) as exc_info:
            await auth_service.register(RegisterUser(username='bob', password='pw', email='bob@example.com'))

        error = exc_info.value
        assert error.kind == AuthErrorKind.SERVER_REJECTED
        assert error.status == 409
        assert error.body.message == 'username taken'
        assert dict((key, storage.get(key)) for key in storage.keys()) == before


class TestPasswordReset:
    """Test reset flows, which clear the session on any answer."""

    @pytest.mark.asyncio
    async def test_expired_key_clears_storage(self, auth_service, transport, token_store, storage):
        seed_session(token_store)
        transport.add('POST', '/auth/reset/k-1', make_response(400, {'status': 400, 'message': 'key expired'}))

        with pytest.raises(AuthError) as exc_info:
            await auth_service.reset_password(ResetUser(password='new'), 'k-1')

        assert exc_info.value.status == 400
        assert exc_info.value.display_message == 'key expired'
        assert storage.keys() == []
        assert transport.calls[0]['json'] == {'pass': 'new'}

    @pytest.mark.asyncio
    async def test_successful_reset(self, auth_service, transport, token_store, storage):
        seed_session(token_store)
        transport.add('POST', '/auth/reset/k-1', make_response(200))

        assert await auth_service.reset_password(ResetUser(password='new'), 'k-1') == 200
        assert storage.keys() == []

    @pytest.mark.asyncio
    async def test_empty_key(self, auth_service, transport, token_store):
        seed_session(token_store)

        with pytest.raises(AuthError) as exc_info:
            await auth_service.reset_password(ResetUser(password='new'), '')

        assert exc_info.value.kind == AuthErrorKind.BAD_REQUEST
        assert transport.calls == []
        assert token_store.get(TokenSlot.REQUESTER) == AuthToken("rtok-abc")

    @pytest.mark.asyncio
    async def test_request_reset_sends_raw_email(self, auth_service, transport, token_store, storage):
        seed_session(token_store)
        transport.add('POST', '/auth/reset', make_response(200))

        assert await auth_service.request_reset('alice@example.com') == 200
        assert transport.calls[0]['data'] == 'alice@example.com'
        assert transport.calls[0]['json'] is None
        assert storage.keys() == []

    @pytest.mark.asyncio
    async def test_network_failure_keeps_storage(self, auth_service, transport, token_store):
        seed_session(token_store)
        transport.add('POST', '/auth/reset', TransportError("timeout"))

        with pytest.raises(AuthError) as exc_info:
            await auth_service.request_reset('alice@example.com')

        assert exc_info.value.kind == AuthErrorKind.NETWORK_FAILURE
        assert token_store.get(TokenSlot.REQUESTER) == AuthToken("rtok-abc")


class TestSession:
    """Test logout and session notifications."""

    def test_logout_is_idempotent(self, auth_service, token_store, storage):
        seed_session(token_store)

        auth_service.logout()
        auth_service.logout()

        assert storage.keys() == []
        assert not auth_service.is_authenticated()

    def test_logout_storage_failure(self, auth_service, storage):
        storage.delete = Mock(side_effect=OSError("read-only"))

        with pytest.raises(AuthError) as exc_info:
            auth_service.logout()
        assert exc_info.value.kind == AuthErrorKind.STORAGE_FAILURE

    def test_logout_removes_unreadable_token_file(self, context, tmp_path):
        path = tmp_path / "tokens.enc"
        path.write_bytes(b"garbage not fernet")
        service = AuthService(context, TokenStore(EncryptedFileStorage(path)))

        service.logout()

        assert not path.exists()
        assert not service.is_authenticated()

    @pytest.mark.asyncio
    async def test_login_over_unreadable_token_file(self, context, transport, tmp_path):
        path = tmp_path / "tokens.enc"
        path.write_bytes(b"garbage not fernet")
        token_store = TokenStore(EncryptedFileStorage(path))
        transport.add('POST', '/auth/login', make_response(200, {'uuid': 'u-1'}, headers=[('Authorization', 'rtok-abc')]))

        await AuthService(context, token_store).login(LoginUser(username='alice', password='pw'))

        assert token_store.get(TokenSlot.REQUESTER) == AuthToken("rtok-abc")

    @pytest.mark.asyncio
    async def test_session_callbacks(self, auth_service, transport):
        events = []
        auth_service.add_session_callback(events.append)
        auth_service.add_session_callback(Mock(side_effect=RuntimeError("broken listener")))
        transport.add('POST', '/auth/login', make_response(200, {'uuid': 'u-1'}, headers=[('Authorization', 'rtok-abc')]))

        await auth_service.login(LoginUser(username='alice', password='pw'))
        assert auth_service.is_authenticated()
        auth_service.logout()

        assert events == [True, False]

    @pytest.mark.asyncio
    async def test_audit_events(self, context, token_store, transport):
        audit = Mock()
        service = AuthService(context, token_store, audit_logger=audit)
        transport.add('POST', '/auth/login', make_response(401, {'status': 401, 'message': 'bad credentials'}))

        with pytest.raises(AuthError):
            await service.login(LoginUser(username='alice', password='wrong'))

        audit.log_authentication.assert_called_once_with(
            'login', 'alice', success=False, failure_reason='bad credentials'
        )
