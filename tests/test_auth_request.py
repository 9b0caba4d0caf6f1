"""
Tests for the refresh-then-send authenticated request.
"""

import asyncio
from unittest.mock import Mock

import pytest

from shared.exceptions import AuthError, AuthErrorKind, TokenStorageError, TransportError
from shared.models import RequestDescription
from client.auth.auth_request import AuthenticatedRequest, RequestState, TOKEN_EXCHANGE_PATH
from client.auth.token_codec import AuthToken, EMPTY_TOKEN
from client.auth.token_storage import TokenSlot

from conftest import BASE_URL, make_response


@pytest.fixture
def request_description():
    return RequestDescription('GET', f"{BASE_URL}/user/info")


@pytest.fixture
def logged_in(token_store):
    token_store.set(TokenSlot.REQUESTER, AuthToken("rtok-abc"))
    return token_store


class TestAuthenticatedRequest:
    """Test the per-call token refresh and send."""

    def test_initial_token_snapshot(self, context, token_store, request_description):
        request = AuthenticatedRequest(context, token_store, request_description)
        assert request.token is EMPTY_TOKEN
        assert request.state == RequestState.CREATED

        token_store.set(TokenSlot.ACCESS, AuthToken("atok-old"))
        request = AuthenticatedRequest(context, token_store, request_description)
        assert request.token == AuthToken("atok-old")

    def test_unreadable_storage_starts_with_empty_token(self, context, request_description):
        store = Mock()
        store.get.side_effect = TokenStorageError("locked")

        request = AuthenticatedRequest(context, store, request_description)
        assert request.token is EMPTY_TOKEN

    @pytest.mark.asyncio
    async def test_refresh_then_send(self, context, transport, logged_in, request_description):
        transport.add('GET', TOKEN_EXCHANGE_PATH, make_response(200, headers=[('Authorization', 'atok-xyz')]))
        transport.add('GET', '/user/info', make_response(200, {'uuid': 'u-1'}))

        request = AuthenticatedRequest(context, logged_in, request_description)
        response = await request.send()

        assert response.status == 200
        assert [c['path'] for c in transport.calls] == [TOKEN_EXCHANGE_PATH, '/user/info']
        assert transport.calls[0]['headers'] == {'Authorization': 'Bearer rtok-abc'}
        assert transport.calls[1]['headers'] == {'Authorization': 'Bearer atok-xyz'}
        assert logged_in.get(TokenSlot.ACCESS) == AuthToken("atok-xyz")
        assert request.token == AuthToken("atok-xyz")
        assert request.state == RequestState.DONE
        assert request.succeeded

    @pytest.mark.asyncio
    async def test_refresh_runs_even_with_stored_access_token(self, context, transport, logged_in, request_description):
        logged_in.set(TokenSlot.ACCESS, AuthToken("atok-old"))
        transport.add('GET', TOKEN_EXCHANGE_PATH, make_response(200, headers=[('authorization', 'atok-new')]))
        transport.add('GET', '/user/info', make_response(200))

        await AuthenticatedRequest(context, logged_in, request_description).send()

        assert len(transport.calls_to('GET', TOKEN_EXCHANGE_PATH)) == 1
        assert transport.calls[1]['headers']['Authorization'] == 'Bearer atok-new'

    @pytest.mark.asyncio
    async def test_non_success_response_is_returned(self, context, transport, logged_in, request_description):
        transport.add('GET', TOKEN_EXCHANGE_PATH, make_response(200, headers=[('Authorization', 'atok-xyz')]))
        transport.add('GET', '/user/info', make_response(403, {'status': 403, 'message': 'forbidden'}))

        response = await AuthenticatedRequest(context, logged_in, request_description).send()
        assert response.status == 403

    @pytest.mark.asyncio
    async def test_request_headers_and_body_are_kept(self, context, transport, logged_in):
        transport.add('GET', TOKEN_EXCHANGE_PATH, make_response(200, headers=[('Authorization', 'atok-xyz')]))
        transport.add('DELETE', '/user', make_response(204))
        description = RequestDescription('DELETE', f"{BASE_URL}/user", data="u-1", headers={'X-Trace': '1'})

        await AuthenticatedRequest(context, logged_in, description).send()

        call = transport.calls_to('DELETE', '/user')[0]
        assert call['data'] == "u-1"
        assert call['headers'] == {'X-Trace': '1', 'Authorization': 'Bearer atok-xyz'}
        assert description.headers == {'X-Trace': '1'}

    @pytest.mark.asyncio
    async def test_missing_requester_token(self, context, transport, token_store, request_description):
        request = AuthenticatedRequest(context, token_store, request_description)

        with pytest.raises(AuthError) as exc_info:
            await request.send()

        assert exc_info.value.kind == AuthErrorKind.INVALID_TOKEN
        assert transport.calls == []
        assert request.error is exc_info.value
        assert request.state == RequestState.DONE
        assert not request.succeeded

    @pytest.mark.asyncio
    async def test_requester_token_unfit_for_header(self, context, transport, token_store, request_description):
        token_store.set(TokenSlot.REQUESTER, AuthToken("rtok\r\nX-Injected: 1"))

        with pytest.raises(AuthError) as exc_info:
            await AuthenticatedRequest(context, token_store, request_description).send()

        assert exc_info.value.kind == AuthErrorKind.INVALID_TOKEN
        assert transport.calls == []

    @pytest.mark.asyncio
    async def test_missing_authorization_header_keeps_previous_token(
        self, context, transport, logged_in, request_description
    ):
        logged_in.set(TokenSlot.ACCESS, AuthToken("atok-old"))
        transport.add('GET', TOKEN_EXCHANGE_PATH, make_response(200))

        with pytest.raises(AuthError) as exc_info:
            await AuthenticatedRequest(context, logged_in, request_description).send()

        assert exc_info.value.kind == AuthErrorKind.TOKEN_CREATION
        assert logged_in.get(TokenSlot.ACCESS) == AuthToken("atok-old")
        assert transport.calls_to('GET', '/user/info') == []

    @pytest.mark.asyncio
    async def test_empty_authorization_header(self, context, transport, logged_in, request_description):
        transport.add('GET', TOKEN_EXCHANGE_PATH, make_response(200, headers=[('Authorization', '')]))

        with pytest.raises(AuthError) as exc_info:
            await AuthenticatedRequest(context, logged_in, request_description).send()

        assert exc_info.value.kind == AuthErrorKind.TOKEN_CREATION
        assert logged_in.get(TokenSlot.ACCESS) is None

    @pytest.mark.asyncio
    async def test_rejected_refresh_is_classified(self, context, transport, logged_in, request_description):
        transport.add('GET', TOKEN_EXCHANGE_PATH, make_response(401, {'status': 401, 'message': 'session expired'}))

        with pytest.raises(AuthError) as exc_info:
            await AuthenticatedRequest(context, logged_in, request_description).send()

        assert exc_info.value.kind == AuthErrorKind.SERVER_REJECTED
        assert exc_info.value.status == 401
        assert exc_info.value.display_message == 'session expired'

    @pytest.mark.asyncio
    async def test_refresh_transport_failure(self, context, transport, logged_in, request_description):
        transport.add('GET', TOKEN_EXCHANGE_PATH, TransportError("connection refused"))

        with pytest.raises(AuthError) as exc_info:
            await AuthenticatedRequest(context, logged_in, request_description).send()

        assert exc_info.value.kind == AuthErrorKind.REQUEST_FAILED

    @pytest.mark.asyncio
    async def test_send_transport_failure(self, context, transport, logged_in, request_description):
        transport.add('GET', TOKEN_EXCHANGE_PATH, make_response(200, headers=[('Authorization', 'atok-xyz')]))
        transport.add('GET', '/user/info', TransportError("connection reset"))

        with pytest.raises(AuthError) as exc_info:
            await AuthenticatedRequest(context, logged_in, request_description).send()

        assert exc_info.value.kind == AuthErrorKind.BAD_REQUEST
        assert logged_in.get(TokenSlot.ACCESS) == AuthToken("atok-xyz")

    @pytest.mark.asyncio
    async def test_storage_write_failure(self, context, transport, logged_in, request_description):
        transport.add('GET', TOKEN_EXCHANGE_PATH, make_response(200, headers=[('Authorization', 'atok-xyz')]))
        logged_in.storage.set = Mock(side_effect=OSError("read-only"))

        with pytest.raises(AuthError) as exc_info:
            await AuthenticatedRequest(context, logged_in, request_description).send()

        assert exc_info.value.kind == AuthErrorKind.STORAGE_FAILURE

    @pytest.mark.asyncio
    async def test_send_only_once(self, context, transport, logged_in, request_description):
        transport.add('GET', TOKEN_EXCHANGE_PATH, make_response(200, headers=[('Authorization', 'atok-xyz')]))
        transport.add('GET', '/user/info', make_response(200))

        request = AuthenticatedRequest(context, logged_in, request_description)
        await request.send()

        with pytest.raises(RuntimeError):
            await request.send()

    @pytest.mark.asyncio
    async def test_audit_records_refresh(self, context, transport, logged_in, request_description):
        audit = Mock()
        transport.add('GET', TOKEN_EXCHANGE_PATH, make_response(200, headers=[('Authorization', 'atok-xyz')]))
        transport.add('GET', '/user/info', make_response(200))

        request = AuthenticatedRequest(context, logged_in, request_description, audit_logger=audit)
        await request.send()

        audit.log_token_refresh.assert_called_once_with(request.request_id, success=True, expires_at=None)


class TestConcurrentSends:
    """Test two requests sent at the same time."""

    @pytest.mark.asyncio
    async def test_each_send_refreshes_and_last_write_wins(
        self, context, transport, logged_in, request_description
    ):
        first_request_sent = asyncio.Event()

        async def slow_exchange():
            await first_request_sent.wait()
            return make_response(200, headers=[('Authorization', 'atok-slow')])

        async def fast_exchange():
            return make_response(200, headers=[('Authorization', 'atok-fast')])

        async def user_info():
            first_request_sent.set()
            return make_response(200, "ok")

        transport.add('GET', TOKEN_EXCHANGE_PATH, slow_exchange, fast_exchange)
        transport.add('GET', '/user/info', user_info)

        slow = AuthenticatedRequest(context, logged_in, request_description)
        fast = AuthenticatedRequest(context, logged_in, request_description)
        responses = await asyncio.gather(slow.send(), fast.send())

        assert [r.status for r in responses] == [200, 200]
        assert len(transport.calls_to('GET', TOKEN_EXCHANGE_PATH)) == 2
        sent_with = [c['headers']['Authorization'] for c in transport.calls_to('GET', '/user/info')]
        assert sent_with == ['Bearer atok-fast', 'Bearer atok-slow']
        assert fast.token == AuthToken("atok-fast")
        assert slow.token == AuthToken("atok-slow")
        assert logged_in.get(TokenSlot.ACCESS) == AuthToken("atok-slow")
