"""
Unit tests for the token refresh coordinators.

The exchange is replaced by in-process fakes so that the single-flight
behaviour, the state machine and the failure paths can be driven precisely.
"""

import asyncio
import gc
import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from refine_sdk.auth import (
    ACCESS_TOKEN_KEY,
    REFRESH_TOKEN_KEY,
    AsyncRefreshCoordinator,
    AuthSession,
    RefreshCoordinator,
    RefreshState,
)
from refine_sdk.errors import AuthenticationError, RefineCloudError, RefreshError, RefreshTimeoutError

NEW_PAIR = {'accessToken': 'new-access', 'refreshToken': 'new-refresh'}


def _auth_error():
    return AuthenticationError('jwt expired', 401, 'Unauthorized')


@pytest.mark.unit
class TestAsyncRefreshCoordinator:
    """Test the asyncio single-flight coordinator"""

    @pytest.mark.asyncio
    async def test_concurrent_failures_share_one_exchange(self, session):
        """Test N concurrent recoveries produce exactly one exchange"""
        release = asyncio.Event()
        calls = []

        async def exchange(refresh_token):
            calls.append(refresh_token)
            await release.wait()
            session.persist(NEW_PAIR['accessToken'], NEW_PAIR['refreshToken'])
            return NEW_PAIR

        coordinator = AsyncRefreshCoordinator(session, exchange)
        tasks = [asyncio.create_task(coordinator.recover('old-access', _auth_error())) for _ in range(5)]
        await asyncio.sleep(0)

        assert coordinator.state is RefreshState.REFRESHING
        assert coordinator.pending is True

        release.set()
        await asyncio.gather(*tasks)

        assert calls == ['old-refresh']
        assert coordinator.exchange_count == 1
        assert coordinator.state is RefreshState.IDLE
        assert coordinator.pending is False
        assert session.access_token == 'new-access'

    @pytest.mark.asyncio
    async def test_no_refresh_token_raises_original_error(self, authenticated_storage):
        """Test a session without refresh token fails fast with the 401"""
        authenticated_storage.set(REFRESH_TOKEN_KEY, '')
        session = AuthSession(authenticated_storage)
        calls = []

        async def exchange(refresh_token):
            calls.append(refresh_token)

        coordinator = AsyncRefreshCoordinator(session, exchange)
        error = _auth_error()

        with pytest.raises(AuthenticationError) as exc_info:
            await coordinator.recover('old-access', error)

        assert exc_info.value is error
        assert calls == []
        assert coordinator.state is RefreshState.IDLE
        assert coordinator.last_failure is error
        assert coordinator.exchange_count == 0

    @pytest.mark.asyncio
    async def test_failure_reaches_all_waiters(self, session, authenticated_storage):
        """Test every waiter fails with the exchange's error and tokens are untouched"""
        release = asyncio.Event()

        async def exchange(refresh_token):
            await release.wait()
            raise AuthenticationError('refresh token expired', 401, 'Unauthorized')

        coordinator = AsyncRefreshCoordinator(session, exchange)
        tasks = [asyncio.create_task(coordinator.recover('old-access', _auth_error())) for _ in range(3)]
        await asyncio.sleep(0)
        release.set()

        results = await asyncio.gather(*tasks, return_exceptions=True)

        assert all(isinstance(result, RefreshError) for result in results)
        assert {result.message for result in results} == {'refresh token expired'}
        assert coordinator.state is RefreshState.IDLE
        assert isinstance(coordinator.last_failure, RefreshError)
        assert coordinator.exchange_count == 1
        assert authenticated_storage.get(ACCESS_TOKEN_KEY) == 'old-access'
        assert authenticated_storage.get(REFRESH_TOKEN_KEY) == 'old-refresh'

    @pytest.mark.asyncio
    async def test_failed_state_is_not_sticky(self, session):
        """Test a new failure after a failed exchange starts a new exchange"""
        outcomes = [RefineCloudError('server down', 500, 'Internal Server Error'), None]

        async def exchange(refresh_token):
            outcome = outcomes.pop(0)
            if outcome is not None:
                raise outcome
            session.persist(NEW_PAIR['accessToken'], NEW_PAIR['refreshToken'])
            return NEW_PAIR

        coordinator = AsyncRefreshCoordinator(session, exchange)

        with pytest.raises(RefreshError):
            await coordinator.recover('old-access', _auth_error())
        assert coordinator.state is RefreshState.IDLE
        assert coordinator.last_failure.status == 500

        await coordinator.recover('old-access', _auth_error())

        assert coordinator.state is RefreshState.IDLE
        assert coordinator.exchange_count == 2

    @pytest.mark.asyncio
    async def test_stale_failure_retries_without_exchange(self, session, authenticated_storage):
        """Test a 401 for a token that was already replaced does not refresh again"""
        authenticated_storage.set(ACCESS_TOKEN_KEY, 'new-access')
        calls = []

        async def exchange(refresh_token):
            calls.append(refresh_token)

        coordinator = AsyncRefreshCoordinator(session, exchange)
        await coordinator.recover('old-access', _auth_error())

        assert calls == []

    @pytest.mark.asyncio
    async def test_exchange_timeout(self, session):
        """Test a hanging exchange fails waiters with RefreshTimeoutError"""

        async def exchange(refresh_token):
            await asyncio.sleep(5)

        coordinator = AsyncRefreshCoordinator(session, exchange, timeout=0.05)

        with pytest.raises(RefreshTimeoutError):
            await coordinator.recover('old-access', _auth_error())

        assert coordinator.state is RefreshState.IDLE
        assert isinstance(coordinator.last_failure, RefreshTimeoutError)
        assert coordinator.pending is False

    @pytest.mark.asyncio
    async def test_exchange_without_token_pair_fails(self, session):
        async def exchange(refresh_token):
            return {'ok': True}

        coordinator = AsyncRefreshCoordinator(session, exchange)

        with pytest.raises(RefreshError, match='did not contain'):
            await coordinator.recover('old-access', _auth_error())

    @pytest.mark.asyncio
    async def test_cancelled_waiter_does_not_cancel_exchange(self, session):
        """Test cancelling one caller leaves the shared exchange running for others"""
        release = asyncio.Event()
        finished = []

        async def exchange(refresh_token):
            await release.wait()
            session.persist(NEW_PAIR['accessToken'], NEW_PAIR['refreshToken'])
            finished.append(True)
            return NEW_PAIR

        coordinator = AsyncRefreshCoordinator(session, exchange)
        first = asyncio.create_task(coordinator.recover('old-access', _auth_error()))
        second = asyncio.create_task(coordinator.recover('old-access', _auth_error()))
        await asyncio.sleep(0)

        first.cancel()
        release.set()
        await second

        assert finished == [True]
        assert first.cancelled()
        assert coordinator.state is RefreshState.IDLE

    @pytest.mark.asyncio
    async def test_failure_without_remaining_waiters_is_not_reported(self, session):
        """Test an exchange failing after every waiter was cancelled leaves no unretrieved exception"""
        loop = asyncio.get_running_loop()
        reported = []
        previous_handler = loop.get_exception_handler()
        loop.set_exception_handler(lambda _, context: reported.append(context))
        release = asyncio.Event()

        async def exchange(refresh_token):
            await release.wait()
            raise AuthenticationError('refresh token expired', 401, 'Unauthorized')

        coordinator = AsyncRefreshCoordinator(session, exchange)
        try:
            waiter = asyncio.create_task(coordinator.recover('old-access', _auth_error()))
            await asyncio.sleep(0)
            waiter.cancel()
            release.set()
            while coordinator.pending:
                await asyncio.sleep(0)
            for _ in range(3):
                await asyncio.sleep(0)
            del waiter
            gc.collect()
        finally:
            loop.set_exception_handler(previous_handler)

        assert reported == []
        assert isinstance(coordinator.last_failure, RefreshError)


@pytest.mark.unit
class TestRefreshCoordinator:
    """Test the threaded single-flight coordinator"""

    def test_concurrent_threads_share_one_exchange(self, session):
        """Test threads failing during an exchange wait for it instead of starting their own"""
        started = threading.Event()
        release = threading.Event()
        calls = []

        def exchange(refresh_token):
            calls.append(refresh_token)
            started.set()
            release.wait(5)
            session.persist(NEW_PAIR['accessToken'], NEW_PAIR['refreshToken'])
            return NEW_PAIR

        coordinator = RefreshCoordinator(session, exchange)

        with ThreadPoolExecutor(max_workers=4) as pool:
            leader = pool.submit(coordinator.recover, 'old-access', _auth_error())
            assert started.wait(5)
            assert coordinator.state is RefreshState.REFRESHING
            waiters = [pool.submit(coordinator.recover, 'old-access', _auth_error()) for _ in range(3)]
            time.sleep(0.05)
            release.set()
            for future in [leader, *waiters]:
                future.result(timeout=5)

        assert calls == ['old-refresh']
        assert coordinator.exchange_count == 1
        assert coordinator.state is RefreshState.IDLE
        assert coordinator.pending is False

    def test_failure_reaches_all_threads(self, session, authenticated_storage):
        started = threading.Event()
        release = threading.Event()

        def exchange(refresh_token):
            started.set()
            release.wait(5)
            raise AuthenticationError('refresh token expired', 401, 'Unauthorized')

        coordinator = RefreshCoordinator(session, exchange)

        with ThreadPoolExecutor(max_workers=3) as pool:
            leader = pool.submit(coordinator.recover, 'old-access', _auth_error())
            assert started.wait(5)
            waiters = [pool.submit(coordinator.recover, 'old-access', _auth_error()) for _ in range(2)]
            time.sleep(0.05)
            release.set()
            errors = [future.exception(timeout=5) for future in [leader, *waiters]]

        assert all(isinstance(error, RefreshError) for error in errors)
        assert all(error.status == 401 for error in errors)
        assert coordinator.state is RefreshState.IDLE
        assert coordinator.last_failure is errors[0]
        assert authenticated_storage.get(ACCESS_TOKEN_KEY) == 'old-access'

    def test_no_refresh_token_raises_original_error(self, empty_storage):
        calls = []
        coordinator = RefreshCoordinator(AuthSession(empty_storage), calls.append)
        error = _auth_error()

        with pytest.raises(AuthenticationError) as exc_info:
            coordinator.recover(None, error)

        assert exc_info.value is error
        assert calls == []

    def test_stale_failure_retries_without_exchange(self, session, authenticated_storage):
        authenticated_storage.set(ACCESS_TOKEN_KEY, 'new-access')
        calls = []
        coordinator = RefreshCoordinator(session, calls.append)

        coordinator.recover('old-access', _auth_error())

        assert calls == []

    def test_hanging_exchange_times_out_for_every_thread(self, session):
        """Test the thread that started a hanging exchange is bounded like the waiters"""
        started = threading.Event()
        release = threading.Event()

        def exchange(refresh_token):
            started.set()
            release.wait(5)
            return NEW_PAIR

        coordinator = RefreshCoordinator(session, exchange, timeout=0.3)

        try:
            with ThreadPoolExecutor(max_workers=2) as pool:
                leader = pool.submit(coordinator.recover, 'old-access', _auth_error())
                assert started.wait(5)
                waiter = pool.submit(coordinator.recover, 'old-access', _auth_error())
                errors = [leader.exception(timeout=2), waiter.exception(timeout=2)]
        finally:
            release.set()

        assert all(isinstance(error, RefreshTimeoutError) for error in errors)
        assert coordinator.state is RefreshState.IDLE
        assert coordinator.pending is False
        assert isinstance(coordinator.last_failure, RefreshTimeoutError)

    def test_abandoned_exchange_does_not_block_next_recovery(self, session):
        """Test a failure after a timed out exchange starts a new exchange instead of joining it"""
        release = threading.Event()
        calls = []

        def exchange(refresh_token):
            calls.append(refresh_token)
            if len(calls) == 1:
                release.wait(5)
                return None
            session.persist(NEW_PAIR['accessToken'], NEW_PAIR['refreshToken'])
            return NEW_PAIR

        coordinator = RefreshCoordinator(session, exchange, timeout=0.2)

        try:
            with pytest.raises(RefreshTimeoutError):
                coordinator.recover('old-access', _auth_error())

            coordinator.recover('old-access', _auth_error())
        finally:
            release.set()

        assert calls == ['old-refresh', 'old-refresh']
        assert coordinator.exchange_count == 2
        assert coordinator.state is RefreshState.IDLE
        assert session.access_token == 'new-access'

    def test_unexpected_exchange_error_propagates(self, session):
        def exchange(refresh_token):
            raise RuntimeError('boom')

        coordinator = RefreshCoordinator(session, exchange)

        with pytest.raises(RuntimeError, match='boom'):
            coordinator.recover('old-access', _auth_error())

        assert coordinator.state is RefreshState.IDLE
        assert isinstance(coordinator.last_failure, RuntimeError)
        assert coordinator.pending is False
