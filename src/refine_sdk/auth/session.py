"""Per-client authentication session.

AuthSession owns the token storage of one client and implements both request
interceptors: ``stamp`` adds the bearer token to outgoing headers and
``capture`` persists token pairs returned by successful responses.
"""

import logging
from typing import Dict, Mapping, Optional

import httpx

from .models import Credential, TokenPair
from .storage import ACCESS_TOKEN_KEY, CLOUD_TOKEN_KEY, REFRESH_TOKEN_KEY, TokenStorage

logger = logging.getLogger(__name__)


class AuthSession:
    """Token state of a single client instance.

    Tokens are always read from storage at the moment they are needed, so a
    request stamped after a refresh carries the new access token.

    Args:
        storage: Token storage backend selected for this client
    """

    def __init__(self, storage: TokenStorage):
        self.storage = storage

    @property
    def access_token(self) -> Optional[str]:
        return self.storage.get(ACCESS_TOKEN_KEY)

    @property
    def refresh_token(self) -> Optional[str]:
        return self.storage.get(REFRESH_TOKEN_KEY)

    @property
    def credential(self) -> Credential:
        """Snapshot of the stored token pair."""
        return Credential(access_token=self.access_token, refresh_token=self.refresh_token)

    def persist(self, access_token: str, refresh_token: str) -> None:
        """Store a new token pair, overwriting the previous one in a single write."""
        self.storage.update({ACCESS_TOKEN_KEY: access_token, REFRESH_TOKEN_KEY: refresh_token})
        logger.debug('Persisted new access/refresh token pair')

    def cloud_token(self) -> Optional[str]:
        """Return the externally provisioned refine cloud token, if any."""
        if not self.storage.persistent:
            logger.warning(f'"{CLOUD_TOKEN_KEY}" is only available with persistent token storage')
            return None

        token = self.storage.get(CLOUD_TOKEN_KEY)
        if not token:
            logger.warning(f'"{CLOUD_TOKEN_KEY}" is not set in token storage')
            return None
        return token

    def stamp(self, headers: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
        """Return a copy of headers carrying the current bearer token.

        Headers are returned unchanged (as a new dict) when no access token is stored.
        """
        return self.apply_token(headers, self.access_token)

    @staticmethod
    def apply_token(headers: Optional[Mapping[str, str]], token: Optional[str]) -> Dict[str, str]:
        """Return a copy of headers with ``Authorization: Bearer <token>`` when token is set."""
        stamped = dict(headers or {})
        if token:
            for name in [name for name in stamped if name.lower() == 'authorization']:
                del stamped[name]
            stamped['Authorization'] = f'Bearer {token}'
        return stamped

    def capture(self, response: httpx.Response) -> bool:
        """Persist the token pair carried by a successful response.

        Every 200 response is inspected, whatever endpoint produced it.

        Returns:
            True if a token pair was found and stored
        """
        if response.status_code != 200:
            return False

        try:
            body = response.json()
        except ValueError:
            return False

        pair = TokenPair.from_body(body)
        if pair is None:
            return False

        self.persist(pair.access_token, pair.refresh_token)
        return True
