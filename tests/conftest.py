"""
Shared fixtures for the client test suite.
"""

import json
from typing import Any, Dict, List, Optional, Union

import pytest
from multidict import CIMultiDict

from shared.exceptions import TransportError
from shared.interfaces import IHttpTransport
from shared.models import HttpResponse
from client.api_client import ClientContext
from client.auth.auth_service import AuthService
from client.auth.token_storage import MemoryStorage, TokenStore

BASE_URL = "http://auth.test"


def make_response(
    status: int = 200,
    body: Union[bytes, str, Dict[str, Any], List[Any], None] = b"",
    headers: Optional[List[tuple]] = None
) -> HttpResponse:
    """Build an HttpResponse; dict/list bodies are JSON encoded."""
    if isinstance(body, (dict, list)):
        body = json.dumps(body).encode()
    elif isinstance(body, str):
        body = body.encode()
    return HttpResponse(status=status, headers=CIMultiDict(headers or []), body=body or b"")


class FakeTransport(IHttpTransport):
    """
    Scripted transport keyed by (method, path).

    Each route holds a queue of responses or TransportError instances; the
    last entry is reused once the queue is drained. An entry may also be an
    async callable, awaited for the outcome, to hold an answer back. Every
    call is recorded.
    """

    def __init__(self, base_url: str = BASE_URL):
        self.base_url = base_url
        self.routes: Dict[tuple, list] = {}
        self.calls: List[Dict[str, Any]] = []
        self.closed = False

    def add(self, method: str, path: str, *outcomes) -> None:
        self.routes.setdefault((method, path), []).extend(outcomes)

    def calls_to(self, method: str, path: str) -> List[Dict[str, Any]]:
        return [c for c in self.calls if c['method'] == method and c['path'] == path]

    async def request(self, method, url, json=None, data=None, headers=None):
        path = url[len(self.base_url):]
        self.calls.append({
            'method': method,
            'url': url,
            'path': path,
            'json': json,
            'data': data,
            'headers': dict(headers or {})
        })

        queue = self.routes.get((method, path))
        if not queue:
            raise AssertionError(f"Unexpected request: {method} {path}")
        outcome = queue.pop(0) if len(queue) > 1 else queue[0]
        if callable(outcome):
            outcome = await outcome()
        if isinstance(outcome, TransportError):
            raise outcome
        return outcome

    async def close(self):
        self.closed = True


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def context(transport):
    return ClientContext(base_url=BASE_URL, transport=transport)


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def token_store(storage):
    return TokenStore(storage)


@pytest.fixture
def auth_service(context, token_store):
    return AuthService(context, token_store)
