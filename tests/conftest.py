# tests/conftest.py
"""
Shared pytest configuration and fixtures for the refine-sdk test suite.
"""

import logging

import pytest
import respx

from refine_sdk.auth import ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY, AuthSession, MemoryTokenStorage

logging.basicConfig(level=logging.INFO)

BASE_URL = 'https://api.refine.test'
CLIENT_ID = 'test-client-id'


@pytest.fixture
def empty_storage():
    """Storage with no tokens, as for a client that never authenticated"""
    return MemoryTokenStorage()


@pytest.fixture
def authenticated_storage():
    """Storage holding an (expired) access token and a valid refresh token"""
    return MemoryTokenStorage({ACCESS_TOKEN_KEY: 'old-access', REFRESH_TOKEN_KEY: 'old-refresh'})


@pytest.fixture
def session(authenticated_storage):
    return AuthSession(authenticated_storage)


@pytest.fixture
def refine_env(monkeypatch, tmp_path):
    """Environment for ClientConfig.from_env with the token cache under tmp_path"""
    monkeypatch.setenv('REFINE_BASE_URL', BASE_URL)
    monkeypatch.setenv('REFINE_CLIENT_ID', CLIENT_ID)
    monkeypatch.setenv('REFINE_TOKEN_FILE', str(tmp_path / 'refine_sdk_auth'))
    for name in ('REFINE_CLIENT_SECRET', 'REFINE_TIMEOUT', 'REFINE_REFRESH_TIMEOUT', 'REFINE_PERSIST_TOKENS'):
        monkeypatch.delenv(name, raising=False)
    return tmp_path / 'refine_sdk_auth'


@pytest.fixture
def router():
    """respx router for the test API; unmatched requests fail the test"""
    with respx.mock(base_url=BASE_URL, assert_all_called=False) as mock:
        yield mock


def pytest_configure(config):
    """Configure custom pytest markers"""
    config.addinivalue_line('markers', 'unit: Unit tests (fast, no network)')
    config.addinivalue_line('markers', 'integration: Integration tests against mocked HTTP')
