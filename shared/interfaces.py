"""
Collaborator interfaces for the authenticated API client.

The token lifecycle code only talks to the network and to persistent storage
through these abstractions so both can be swapped out (for example in tests).
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, Optional, Union

from .models import HttpResponse


class IHttpTransport(ABC):
    """Interface for issuing HTTP requests."""

    @abstractmethod
    async def request(
        self,
        method: str,
        url: str,
        json: Optional[Any] = None,
        data: Optional[Union[str, bytes]] = None,
        headers: Optional[Dict[str, str]] = None
    ) -> HttpResponse:
        """
        Send a request and return the fully read response.

        Raises:
            TransportError: when no response was received
        """
        pass

    async def close(self) -> None:
        """Release network resources."""
        pass


class IKeyValueStorage(ABC):
    """Interface for synchronous persistent string storage."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Return the stored value, or None when the key is absent."""
        pass

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Store a value, replacing any previous one."""
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove a key; removing an absent key is not an error."""
        pass

    def delete_many(self, keys: Iterable[str]) -> None:
        """Remove several keys as one operation."""
        for key in keys:
            self.delete(key)
