"""HTTP client for the refine cloud API.

This module provides the blocking Client class. It is safe to share between
threads: concurrent requests rejected with 401 share a single refresh-token
exchange.
"""

import logging
from typing import Any, Dict, Optional, Tuple

import httpx

from .auth import AuthSession, RefreshCoordinator, RefreshTokenRequest, TokenStorage, detect_storage
from .config import ClientConfig
from .errors import map_error_response, from_transport_error
from .models import ClientIdentity, RequestSpec, decode_body

logger = logging.getLogger(__name__)


class Client:
    """HTTP client for the refine cloud API.

    Args:
        base_url: Base URL of the refine cloud API (e.g., 'https://api.refine.dev')
        client_id: Application client ID, sent with refresh-token exchanges
        client_secret: Optional application client secret
        storage: Token storage (defaults to the cache file, or no-op storage when unavailable)
        timeout: Request timeout in seconds
        refresh_timeout: Upper bound in seconds for one refresh-token exchange
        transport: Optional httpx transport (e.g., for testing)

    Example:
        >>> with Client('https://api.refine.dev', client_id='my-app') as client:
        ...     resource = client.call('get', '/resource')
        >>>
        >>> # Configuration from REFINE_* environment variables
        >>> client = Client.from_config(ClientConfig.from_env())
    """

    def __init__(
        self,
        base_url: str,
        client_id: str,
        client_secret: Optional[str] = None,
        *,
        storage: Optional[TokenStorage] = None,
        timeout: float = 30.0,
        refresh_timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.identity = ClientIdentity(base_url=base_url, client_id=client_id, client_secret=client_secret)
        self.refresh_timeout = refresh_timeout
        self.session = AuthSession(storage if storage is not None else detect_storage())
        self.coordinator = RefreshCoordinator(self.session, self._exchange_refresh_token, timeout=refresh_timeout)

        self._http = httpx.Client(
            base_url=self.identity.base_url,
            timeout=timeout,
            follow_redirects=True,
            transport=transport,
        )

    @classmethod
    def from_config(cls, config: ClientConfig, **kwargs) -> 'Client':
        """Build a client from a ClientConfig.

        Keyword arguments (e.g., ``storage``, ``transport``) override the config.
        """
        if 'storage' not in kwargs:
            kwargs['storage'] = detect_storage(config.token_file, persist=config.persist_tokens)
        return cls(
            config.base_url,
            config.client_id,
            config.client_secret,
            timeout=config.timeout,
            refresh_timeout=config.refresh_timeout,
            **kwargs,
        )

    @property
    def base_url(self) -> str:
        return self.identity.base_url

    @property
    def client_id(self) -> str:
        return self.identity.client_id

    @property
    def client_secret(self) -> Optional[str]:
        return self.identity.client_secret

    def get_refine_cloud_token(self) -> Optional[str]:
        """Return the refine cloud token provisioned by an external login, if available."""
        return self.session.cloud_token()

    def call(
        self,
        method: str,
        url: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        data: Any = None,
        headers: Optional[Dict[str, str]] = None,
        skip_auth_refresh: bool = False,
    ) -> Any:
        """Make a request and return its decoded body.

        Args:
            method: HTTP method (get, delete, head, options, post, put, patch)
            url: Path relative to the base URL
            params: Optional query parameters
            data: Optional request body; dicts and lists are sent as JSON
            headers: Optional extra headers
            skip_auth_refresh: If True, a 401 is raised without refreshing the token

        Returns:
            Decoded JSON body, text for non-JSON bodies, None for empty bodies

        Raises:
            ValueError: If method is not supported
            RefineCloudError: If the request failed (see refine_sdk.errors)
        """
        spec = RequestSpec(
            method=method,
            url=url,
            params=params,
            data=data,
            headers=headers or {},
            skip_auth_refresh=skip_auth_refresh,
        )
        return self.send(spec)

    def send(self, spec: RequestSpec) -> Any:
        """Make the request described by spec and return its decoded body."""
        return self._send(spec)

    def _send(self, spec: RequestSpec, timeout: Optional[float] = None) -> Any:
        response, token = self._dispatch(spec, timeout)

        if response.status_code == 401 and not spec.skip_auth_refresh:
            self.coordinator.recover(token, map_error_response(response))
            logger.debug(f'Retrying {spec.method.upper()} {spec.url} after token refresh')
            response, _ = self._dispatch(spec, timeout)

        if response.status_code >= 400:
            raise map_error_response(response)

        return decode_body(response)

    def _dispatch(self, spec: RequestSpec, timeout: Optional[float] = None) -> Tuple[httpx.Response, Optional[str]]:
        token = self.session.access_token
        headers = AuthSession.apply_token(spec.headers, token)

        kwargs = spec.body_kwargs()
        if timeout is not None:
            kwargs['timeout'] = timeout

        try:
            response = self._http.request(spec.method.upper(), spec.url, params=spec.params, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            logger.debug(f'{spec.method.upper()} {spec.url} failed without response: {e}')
            raise from_transport_error(e) from e

        self.session.capture(response)
        return response, token

    def _exchange_refresh_token(self, refresh_token: str) -> Any:
        body = RefreshTokenRequest(application_client_id=self.client_id, refresh_token=refresh_token)
        spec = RequestSpec(method='post', url=self.identity.refresh_url, data=body.to_wire(), skip_auth_refresh=True)
        return self._send(spec, timeout=self.refresh_timeout)

    def close(self):
        """Close the HTTP client and release resources."""
        self._http.close()

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()
