"""refine-sdk - authenticated HTTP client for the refine cloud API."""

from refine_sdk.async_client import AsyncClient
from refine_sdk.client import Client
from refine_sdk.config import ClientConfig
from refine_sdk.errors import (
    AuthenticationError,
    RefineCloudError,
    RefreshError,
    RefreshTimeoutError,
    RequestTimeoutError,
    TransportError,
)
from refine_sdk.models import ClientIdentity, RequestSpec

__all__ = [
    'AsyncClient',
    'AuthenticationError',
    'Client',
    'ClientConfig',
    'ClientIdentity',
    'RefineCloudError',
    'RefreshError',
    'RefreshTimeoutError',
    'RequestSpec',
    'RequestTimeoutError',
    'TransportError',
]
