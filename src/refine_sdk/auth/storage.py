"""Key-value token storage backends.

The storage variant is chosen once when a client is built: a JSON cache file
when the host offers a writable home, otherwise a no-op store that only logs.
"""

import json
import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Mapping, Optional

logger = logging.getLogger(__name__)

ACCESS_TOKEN_KEY = 'refine-sdk-access-token'
REFRESH_TOKEN_KEY = 'refine-sdk-refresh-token'
# Provisioned by an external login flow, never written by the SDK
CLOUD_TOKEN_KEY = 'refine-cloud-token'

TOKEN_CACHE_DIR = Path.home() / '.refine' / 'cache'
TOKEN_CACHE_FILE = TOKEN_CACHE_DIR / 'refine_sdk_auth'


class TokenStorage(ABC):
    """Minimal key-value interface used by AuthSession."""

    persistent = False

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Return the value stored under key, or None."""

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Store value under key, replacing any previous value."""

    def update(self, values: Mapping[str, str]) -> None:
        """Store several values so that readers see all of them or none."""
        for key, value in values.items():
            self.set(key, value)


class NullTokenStorage(TokenStorage):
    """Storage for hosts without persistent key-value support.

    Reads always return None and writes are dropped.
    """

    def get(self, key: str) -> Optional[str]:
        logger.debug(f"Token storage unavailable, cannot read '{key}'")
        return None

    def set(self, key: str, value: str) -> None:
        logger.debug(f"Token storage unavailable, dropping write of '{key}'")


class MemoryTokenStorage(TokenStorage):
    """Ephemeral storage scoped to a single client instance."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._values: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        self._values[key] = value

    def update(self, values: Mapping[str, str]) -> None:
        self._values.update(values)


class FileTokenStorage(TokenStorage):
    """Persistent storage backed by a JSON object in a cache file.

    The file is re-read on every ``get`` so that tokens written by another
    process (or another client instance) are picked up. Writes go to a
    temporary file in the same directory that then replaces the cache file,
    so a concurrent reader sees either the previous or the new content.

    Example:
        >>> storage = FileTokenStorage(Path('/tmp/refine_sdk_auth'))
        >>> storage.set(ACCESS_TOKEN_KEY, 'token')
        >>> storage.get(ACCESS_TOKEN_KEY)
        'token'
    """

    persistent = True

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path).expanduser() if path else TOKEN_CACHE_FILE
        self._write_lock = threading.Lock()

    def _load(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, 'r') as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f'Failed to read token cache {self.path}: {e}')
            return {}
        if not isinstance(data, dict):
            logger.warning(f'Ignoring token cache {self.path}: expected a JSON object')
            return {}
        return data

    def get(self, key: str) -> Optional[str]:
        value = self._load().get(key)
        return value if isinstance(value, str) else None

    def set(self, key: str, value: str) -> None:
        self.update({key: value})

    def update(self, values: Mapping[str, str]) -> None:
        # Load-modify-write must not interleave with another writer of this instance
        with self._write_lock:
            data = self._load()
            data.update(values)
            self._write(data)
        logger.debug(f'Stored {sorted(values)} in {self.path}')

    def _write(self, data: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = tempfile.NamedTemporaryFile(
            mode='w', dir=self.path.parent, prefix=f'.{self.path.name}.', suffix='.tmp', delete=False
        )
        try:
            with tmp as f:
                json.dump(data, f, indent=2)
            os.replace(tmp.name, self.path)
        except Exception:
            Path(tmp.name).unlink(missing_ok=True)
            raise


def detect_storage(path: Optional[Path] = None, persist: bool = True) -> TokenStorage:
    """Pick the token storage variant for this host.

    Args:
        path: Optional cache file location (defaults to ~/.refine/cache/refine_sdk_auth)
        persist: If False, always use the no-op storage

    Returns:
        FileTokenStorage when the cache directory is writable, NullTokenStorage otherwise
    """
    if not persist:
        return NullTokenStorage()

    storage = FileTokenStorage(path)
    cache_dir = storage.path.parent
    try:
        cache_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.warning(f'Token cache directory {cache_dir} unavailable, tokens will not be persisted: {e}')
        return NullTokenStorage()

    if not os.access(cache_dir, os.W_OK):
        logger.warning(f'Token cache directory {cache_dir} is not writable, tokens will not be persisted')
        return NullTokenStorage()

    return storage
