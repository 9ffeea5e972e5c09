"""Client configuration loaded from arguments or environment variables."""

import os
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, ValidationError

from .models import ClientIdentity

_TRUE_VALUES = {'1', 'true', 'yes', 'on'}
_FALSE_VALUES = {'0', 'false', 'no', 'off'}


class ClientConfig(BaseModel):
    """Settings for building a Client or AsyncClient.

    Environment variables read by ``from_env``:
        REFINE_BASE_URL: Base URL of the refine cloud API (required)
        REFINE_CLIENT_ID: Application client ID (required)
        REFINE_CLIENT_SECRET: Application client secret
        REFINE_TIMEOUT: Request timeout in seconds (default 30)
        REFINE_REFRESH_TIMEOUT: Token refresh timeout in seconds (default 10)
        REFINE_TOKEN_FILE: Token cache file (default ~/.refine/cache/refine_sdk_auth)
        REFINE_PERSIST_TOKENS: Set to false to keep tokens out of the cache file
    """

    base_url: str = Field(..., min_length=1)
    client_id: str = Field(..., min_length=1)
    client_secret: Optional[str] = None
    timeout: float = Field(default=30.0, gt=0)
    refresh_timeout: float = Field(default=10.0, gt=0)
    token_file: Optional[Path] = None
    persist_tokens: bool = True

    @property
    def identity(self) -> ClientIdentity:
        return ClientIdentity(base_url=self.base_url, client_id=self.client_id, client_secret=self.client_secret)

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> 'ClientConfig':
        """Build a configuration from environment variables.

        Args:
            environ: Mapping to read instead of os.environ

        Raises:
            ValueError: If a required variable is missing or a value is invalid
        """
        env = os.environ if environ is None else environ

        for name in ('REFINE_BASE_URL', 'REFINE_CLIENT_ID'):
            if not env.get(name):
                raise ValueError(f'{name} is required to reach the refine cloud API.')

        raw: Dict[str, Any] = {
            'base_url': env['REFINE_BASE_URL'],
            'client_id': env['REFINE_CLIENT_ID'],
            'client_secret': env.get('REFINE_CLIENT_SECRET') or None,
        }
        if env.get('REFINE_TIMEOUT'):
            raw['timeout'] = env['REFINE_TIMEOUT']
        if env.get('REFINE_REFRESH_TIMEOUT'):
            raw['refresh_timeout'] = env['REFINE_REFRESH_TIMEOUT']
        if env.get('REFINE_TOKEN_FILE'):
            raw['token_file'] = env['REFINE_TOKEN_FILE']

        persist = env.get('REFINE_PERSIST_TOKENS')
        if persist:
            if persist.lower() in _TRUE_VALUES:
                raw['persist_tokens'] = True
            elif persist.lower() in _FALSE_VALUES:
                raw['persist_tokens'] = False
            else:
                raise ValueError(f"Invalid REFINE_PERSIST_TOKENS value '{persist}'. Use true or false.")

        try:
            return cls(**raw)
        except ValidationError as exc:
            messages = '; '.join(err['msg'] for err in exc.errors())
            raise ValueError(f'Invalid refine client configuration: {messages}') from exc
