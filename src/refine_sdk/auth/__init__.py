"""Authentication module for the refine cloud client.

Holds the per-client token session, the token storage backends and the
coordinators that refresh rejected access tokens.
"""

from .models import Credential, RefreshTokenRequest, TokenPair
from .refresh import AsyncRefreshCoordinator, RefreshCoordinator, RefreshState
from .session import AuthSession
from .storage import (
    ACCESS_TOKEN_KEY,
    CLOUD_TOKEN_KEY,
    REFRESH_TOKEN_KEY,
    FileTokenStorage,
    MemoryTokenStorage,
    NullTokenStorage,
    TokenStorage,
    detect_storage,
)

__all__ = [
    'ACCESS_TOKEN_KEY',
    'REFRESH_TOKEN_KEY',
    'CLOUD_TOKEN_KEY',
    'AsyncRefreshCoordinator',
    'AuthSession',
    'Credential',
    'FileTokenStorage',
    'MemoryTokenStorage',
    'NullTokenStorage',
    'RefreshCoordinator',
    'RefreshState',
    'RefreshTokenRequest',
    'TokenPair',
    'TokenStorage',
    'detect_storage',
]
