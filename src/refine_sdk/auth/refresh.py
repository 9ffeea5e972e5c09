"""Recovery from rejected access tokens.

When a request is rejected with 401, the client hands the failure to a refresh
coordinator. The coordinator runs at most one refresh-token exchange at a time:
every request that fails while an exchange is pending waits for that exchange
and then either retries with the new access token or fails with the
exchange's error.

Two variants share the same state machine:
- AsyncRefreshCoordinator: one shared asyncio task, for AsyncClient
- RefreshCoordinator: one shared Future guarded by a lock, for the threaded Client
"""

import asyncio
import logging
import threading
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from ..errors import AuthenticationError, RefineCloudError, RefreshError, RefreshTimeoutError, as_refresh_error
from .models import TokenPair
from .session import AuthSession

logger = logging.getLogger(__name__)


class RefreshState(Enum):
    """State of a refresh coordinator.

    FAILED is entered when the refresh token is missing or the exchange fails and
    is left for IDLE as soon as the failure is recorded in ``last_failure``.
    """

    IDLE = 'idle'
    REFRESHING = 'refreshing'
    FAILED = 'failed'


def _check_exchange_body(body: Any) -> None:
    # The pair was persisted when the response was captured; without one the store is unchanged
    if TokenPair.from_body(body) is None:
        raise RefreshError('Refresh response did not contain an access/refresh token pair', 200, 'OK')


def _timeout_error(timeout: Optional[float]) -> RefreshTimeoutError:
    return RefreshTimeoutError(f'Token refresh did not complete within {timeout}s')


class _BaseCoordinator:
    def __init__(self, session: AuthSession, timeout: Optional[float]):
        self.session = session
        self.timeout = timeout
        self.state = RefreshState.IDLE
        self.exchange_count = 0
        self.last_failure: Optional[BaseException] = None

    def _already_refreshed(self, stale_token: Optional[str]) -> bool:
        current = self.session.access_token
        return bool(current) and current != stale_token

    def _begin(self, error: AuthenticationError) -> str:
        refresh_token = self.session.refresh_token
        if not refresh_token:
            logger.debug('No refresh token stored, surfacing authentication failure')
            self._fail(error)
            raise error
        self.state = RefreshState.REFRESHING
        self.exchange_count += 1
        logger.info('Access token rejected, exchanging refresh token')
        return refresh_token

    def _finish(self, failure: Optional[BaseException]) -> None:
        if failure is None:
            self.state = RefreshState.IDLE
            logger.info('Token refresh succeeded')
        else:
            logger.warning(f'Token refresh failed: {failure}')
            self._fail(failure)

    def _fail(self, failure: BaseException) -> None:
        self.state = RefreshState.FAILED
        self.last_failure = failure
        logger.debug('Refresh coordinator failed, resetting to idle for the next authentication failure')
        self.state = RefreshState.IDLE


class AsyncRefreshCoordinator(_BaseCoordinator):
    """Single-flight token refresh for asyncio clients.

    Token reads in ``recover`` run on the event loop without yielding, so checking
    for a pending exchange and starting a new one cannot interleave between tasks.

    Args:
        session: Session whose tokens are refreshed
        exchange: Coroutine function performing the exchange for a refresh token and
            returning the decoded response body
        timeout: Upper bound in seconds for one exchange (None for no bound)

    Example:
        >>> coordinator = AsyncRefreshCoordinator(session, client._exchange_refresh_token)
        >>> await coordinator.recover(stale_token, error)  # returns once a retry makes sense
    """

    def __init__(
        self,
        session: AuthSession,
        exchange: Callable[[str], Awaitable[Any]],
        timeout: Optional[float] = 10.0,
    ):
        super().__init__(session, timeout)
        self._exchange = exchange
        self._pending: Optional[asyncio.Task] = None

    @property
    def pending(self) -> bool:
        return self._pending is not None

    async def recover(self, stale_token: Optional[str], error: AuthenticationError) -> None:
        """Repair the session after a request was rejected with 401.

        Args:
            stale_token: Access token the rejected request was stamped with
            error: The normalized 401 error of that request

        Raises:
            AuthenticationError: The given error, when no refresh token is stored
            RefreshError: If the exchange failed (RefreshTimeoutError if it timed out)
        """
        pending = self._pending
        if pending is None:
            if self._already_refreshed(stale_token):
                logger.debug('Access token changed since the request was sent, retrying')
                return
            refresh_token = self._begin(error)
            pending = asyncio.get_running_loop().create_task(self._run(refresh_token))
            self._pending = pending
        else:
            logger.debug('Token refresh already in progress, waiting for it')

        # A cancelled caller must not cancel the exchange other requests wait on
        await asyncio.shield(pending)

    async def _run(self, refresh_token: str) -> None:
        failure: Optional[BaseException] = None
        try:
            body = await asyncio.wait_for(self._exchange(refresh_token), self.timeout)
            _check_exchange_body(body)
        except asyncio.TimeoutError as e:
            failure = _timeout_error(self.timeout)
            raise failure from e
        except RefineCloudError as e:
            failure = as_refresh_error(e)
            raise failure
        except BaseException as e:
            failure = e
            raise
        finally:
            self._pending = None
            self._finish(failure)


class RefreshCoordinator(_BaseCoordinator):
    """Single-flight token refresh for threaded clients.

    The exchange runs on a worker thread started by the first failing request.
    Every failing thread, the one that started it included, blocks on the same
    Future for at most ``timeout`` seconds. When that deadline passes the attempt
    is abandoned: all waiters fail with RefreshTimeoutError and the next
    authentication failure starts a new exchange. An abandoned exchange that
    completes later no longer affects the waiters or the coordinator state.

    Args:
        session: Session whose tokens are refreshed
        exchange: Function performing the exchange for a refresh token and
            returning the decoded response body
        timeout: Upper bound in seconds for one exchange (None for no bound)
    """

    def __init__(
        self,
        session: AuthSession,
        exchange: Callable[[str], Any],
        timeout: Optional[float] = 10.0,
    ):
        super().__init__(session, timeout)
        self._exchange = exchange
        self._lock = threading.Lock()
        self._pending: Optional[Future] = None

    @property
    def pending(self) -> bool:
        return self._pending is not None

    def recover(self, stale_token: Optional[str], error: AuthenticationError) -> None:
        """Repair the session after a request was rejected with 401.

        Args:
            stale_token: Access token the rejected request was stamped with
            error: The normalized 401 error of that request

        Raises:
            AuthenticationError: The given error, when no refresh token is stored
            RefreshError: If the exchange failed (RefreshTimeoutError if it timed out)
        """
        with self._lock:
            pending = self._pending
            if pending is None:
                if self._already_refreshed(stale_token):
                    logger.debug('Access token changed since the request was sent, retrying')
                    return
                refresh_token = self._begin(error)
                pending = Future()
                self._pending = pending
                worker = threading.Thread(
                    target=self._run,
                    args=(pending, refresh_token),
                    name='refine-token-refresh',
                    daemon=True,
                )
                worker.start()
            else:
                logger.debug('Token refresh already in progress, waiting for it')

        try:
            pending.result(timeout=self.timeout)
        except FutureTimeoutError:
            self._abandon(pending)
            # Raises the outcome every waiter observes, or returns if the exchange just succeeded
            pending.result(timeout=0)

    def _abandon(self, pending: Future) -> None:
        with self._lock:
            if pending.done():
                return
            failure = _timeout_error(self.timeout)
            if self._pending is pending:
                self._pending = None
                self._finish(failure)
            pending.set_exception(failure)

    def _run(self, pending: Future, refresh_token: str) -> None:
        failure: Optional[Exception] = None
        try:
            body = self._exchange(refresh_token)
            _check_exchange_body(body)
        except RefineCloudError as e:
            failure = as_refresh_error(e)
        except Exception as e:
            failure = e

        with self._lock:
            if pending.done():
                logger.debug('Discarding the result of a token refresh that exceeded its timeout')
                return
            if self._pending is pending:
                self._pending = None
                self._finish(failure)
            if failure is None:
                pending.set_result(None)
            else:
                pending.set_exception(failure)
