"""
Core data models for the authenticated API client.

This module defines the wire models exchanged with the auth server and the
transport-neutral request/response values passed between client components.
"""

import json
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Union

from multidict import CIMultiDict
from pydantic import BaseModel, ConfigDict, Field, field_validator


class RegisterUser(BaseModel):
    """Registration payload sent to ``POST /auth/register``."""
    model_config = ConfigDict(populate_by_name=True)

    username: str = Field(..., min_length=1, max_length=255)
    password: str = Field(..., alias="pass", min_length=1)
    email: str = Field(..., min_length=3, max_length=255)

    @field_validator('email')
    @classmethod
    def validate_email(cls, v):
        if '@' not in v:
            raise ValueError("email address must contain '@'")
        return v

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class LoginUser(BaseModel):
    """Credentials sent to ``POST /auth/login``."""
    model_config = ConfigDict(populate_by_name=True)

    username: str = Field(..., min_length=1, max_length=255)
    password: str = Field(..., alias="pass", min_length=1)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class ResetUser(BaseModel):
    """New password sent to ``POST /auth/reset/{key}``."""
    model_config = ConfigDict(populate_by_name=True)

    password: str = Field(..., alias="pass", min_length=1)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class UserInfo(BaseModel):
    """User information returned by the server; an empty uuid means anonymous."""
    model_config = ConfigDict(extra='ignore')

    uuid: str = ""
    is_admin: bool = False
    username: Optional[str] = None
    email: Optional[str] = None

    @property
    def is_anonymous(self) -> bool:
        return not self.uuid


class AuthErrorBody(BaseModel):
    """Structured error body sent by the server on non-success responses."""
    status: int
    message: str


@dataclass(frozen=True)
class RequestDescription:
    """Immutable description of an HTTP request that can be cloned and resent."""
    method: str
    url: str
    json: Optional[Any] = None
    data: Optional[Union[str, bytes]] = None
    headers: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        if not self.method:
            raise ValueError("Request method cannot be empty")
        if not self.url:
            raise ValueError("Request URL cannot be empty")
        if self.json is not None and self.data is not None:
            raise ValueError("Request cannot carry both a JSON and a raw body")

    def with_headers(self, **extra: str) -> "RequestDescription":
        """Return a copy of this request with additional headers."""
        headers = dict(self.headers)
        headers.update(extra)
        return replace(self, headers=headers)


@dataclass
class HttpResponse:
    """A fully read HTTP response."""
    status: int
    headers: CIMultiDict = field(default_factory=CIMultiDict)
    body: bytes = b""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def header_values(self, name: str) -> List[str]:
        """All values of a (case-insensitive) response header, in order."""
        return self.headers.getall(name, [])

    def text(self, encoding: str = 'utf-8') -> str:
        return self.body.decode(encoding)

    def json(self) -> Any:
        return json.loads(self.body)
