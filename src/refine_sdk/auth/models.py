"""Data models for refine cloud authentication.

Field aliases match the camelCase wire format of the refine cloud API.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError


class Credential(BaseModel):
    """Token pair currently held by a session.

    Both tokens are absent until the first successful authentication.
    """

    access_token: Optional[str] = Field(None, description='Access token for authenticated requests')
    refresh_token: Optional[str] = Field(None, description='Refresh token for renewing access')

    @property
    def is_empty(self) -> bool:
        return not self.access_token and not self.refresh_token


class TokenPair(BaseModel):
    """Token pair returned by a successful auth-bearing response."""

    model_config = ConfigDict(populate_by_name=True)

    access_token: str = Field(..., alias='accessToken', min_length=1)
    refresh_token: str = Field(..., alias='refreshToken', min_length=1)

    @classmethod
    def from_body(cls, body: Any) -> Optional['TokenPair']:
        """Extract a token pair from a decoded response body.

        Returns:
            TokenPair when the body is an object with both token fields, None otherwise
        """
        if not isinstance(body, dict):
            return None
        try:
            return cls.model_validate(body)
        except ValidationError:
            return None


class RefreshTokenRequest(BaseModel):
    """Body of the refresh-token exchange."""

    model_config = ConfigDict(populate_by_name=True)

    application_client_id: str = Field(..., alias='applicationClientId')
    refresh_token: str = Field(..., alias='refreshToken')

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True)
