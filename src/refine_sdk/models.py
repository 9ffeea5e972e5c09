"""Request and identity models shared by the sync and async clients."""

from dataclasses import dataclass, field
from typing import Any, Dict, Literal, Optional, get_args

import httpx
from pydantic import BaseModel, ConfigDict, Field, field_validator

HttpMethod = Literal['get', 'delete', 'head', 'options', 'post', 'put', 'patch']

HTTP_METHODS = frozenset(get_args(HttpMethod))

REFRESH_TOKEN_PATH = '/auth/refresh-token'


class ClientIdentity(BaseModel):
    """Identity of the application talking to the refine cloud API.

    Fixed for the lifetime of a client instance.
    """

    model_config = ConfigDict(frozen=True)

    base_url: str = Field(..., min_length=1, description='Base URL of the refine cloud API')
    client_id: str = Field(..., min_length=1, description='Application client ID')
    client_secret: Optional[str] = Field(None, description='Application client secret')

    @field_validator('base_url')
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip('/')

    @property
    def refresh_url(self) -> str:
        """Absolute URL of the refresh-token exchange endpoint."""
        return f'{self.base_url}{REFRESH_TOKEN_PATH}'


@dataclass(frozen=True)
class RequestSpec:
    """Description of one call through the client facade.

    Args:
        method: HTTP method, one of get, delete, head, options, post, put, patch
        url: Path relative to the client's base URL (or an absolute URL)
        params: Optional query parameters
        data: Optional request body; dicts and lists are sent as JSON
        headers: Optional extra request headers
        skip_auth_refresh: If True, a 401 is surfaced as-is instead of refreshing
    """

    method: str
    url: str
    params: Optional[Dict[str, Any]] = None
    data: Any = None
    headers: Dict[str, str] = field(default_factory=dict)
    skip_auth_refresh: bool = False

    def __post_init__(self):
        method = self.method.lower()
        if method not in HTTP_METHODS:
            raise ValueError(f"Unsupported HTTP method '{self.method}'. Expected one of: {sorted(HTTP_METHODS)}")
        object.__setattr__(self, 'method', method)
        object.__setattr__(self, 'headers', dict(self.headers or {}))

    def body_kwargs(self) -> Dict[str, Any]:
        """Return the httpx keyword arguments for the request body."""
        if self.data is None:
            return {}
        if isinstance(self.data, (str, bytes)):
            return {'content': self.data}
        return {'json': self.data}


def decode_body(response: httpx.Response) -> Any:
    """Return the decoded body of a response: JSON when parseable, text otherwise, None when empty."""
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text
