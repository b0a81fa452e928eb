"""In-memory cache of the HLS key directory.

The cache holds one immutable snapshot (``MappingProxyType`` over a plain
dict) mapping key names to key bytes. Lookups take the shared side of a
readers-writer lock; ``reload`` scans and reads the directory without holding
any lock and only takes the exclusive side to swap the snapshot in. A reload
that fails part way leaves the previous snapshot in place.
"""
from __future__ import annotations

import logging
import os
import threading
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Dict, FrozenSet, Iterable, Iterator, Mapping, Optional, Protocol, Tuple

from app.core import metrics
from app.core.errors import KeyNotFound, ScanFailure
from app.core.validation import is_valid_key_name, validate_key_name

logger = logging.getLogger(__name__)


class KeySource(Protocol):
    """Backing store consumed by :meth:`KeyStore.reload`."""

    def entries(self) -> Iterable[Tuple[str, bool]]:
        """Yield ``(name, is_regular_file)`` for each directory entry."""
        ...

    def read(self, name: str) -> bytes:
        """Return the full contents of ``name``."""
        ...


class DirectoryKeySource:
    """Reads ``.key`` files from a single flat directory."""

    def __init__(self, directory: str):
        if not directory:
            raise ValueError("key directory cannot be empty")
        self.directory = directory

    def ensure_exists(self) -> None:
        os.makedirs(self.directory, mode=0o755, exist_ok=True)

    def entries(self) -> Iterable[Tuple[str, bool]]:
        with os.scandir(self.directory) as it:
            return [(entry.name, entry.is_file()) for entry in it]

    def read(self, name: str) -> bytes:
        with open(os.path.join(self.directory, name), "rb") as f:
            return f.read()

    def __repr__(self) -> str:
        return f"DirectoryKeySource({self.directory!r})"


class ReadWriteLock:
    """Many concurrent readers or a single writer; writers are not starved."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read_locked(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if not self._readers:
                    self._cond.notify_all()

    @contextmanager
    def write_locked(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class KeyStore:
    """
    Thread-safe, read-mostly cache of HLS encryption keys.

    One instance is created at startup and shared by every request through
    ``app.state``.
    """

    def __init__(self, source: KeySource):
        self._source = source
        self._lock = ReadWriteLock()
        self._snapshot: Mapping[str, bytes] = MappingProxyType({})
        self.last_reload: Optional[datetime] = None
        self.skipped = 0

    @classmethod
    def from_directory(cls, directory: str) -> "KeyStore":
        """Create the key directory if needed and load it."""
        source = DirectoryKeySource(directory)
        try:
            source.ensure_exists()
        except OSError as e:
            raise ScanFailure(f"create key directory {directory}: {e}") from e

        store = cls(source)
        count = store.reload()
        if not count:
            logger.warning(f"No keys found in {directory}")
        return store

    def get(self, name: str) -> bytes:
        """
        Return the key bytes cached under ``name``.

        Raises:
            InvalidKeyName: If ``name`` fails validation; the cache is not consulted
            KeyNotFound: If no key with that name is cached
        """
        validate_key_name(name)

        with self._lock.read_locked():
            key = self._snapshot.get(name)

        metrics.record_cache_lookup(key is not None)
        if key is None:
            raise KeyNotFound(f"key {name} not found")
        # bytes are immutable, callers cannot reach the cached value through it
        return bytes(key)

    def list(self) -> FrozenSet[str]:
        with self._lock.read_locked():
            return frozenset(self._snapshot)

    def reload(self) -> int:
        """
        Rescan the key source and atomically replace the snapshot.

        Entries that are not regular files or whose names fail validation are
        skipped. Any enumeration or read error aborts the reload and keeps the
        current snapshot.

        Returns:
            Number of keys cached after the reload

        Raises:
            ScanFailure: If the source cannot be listed or a key cannot be read
        """
        start = time.perf_counter()
        try:
            fresh, skipped = self._scan()
        except ScanFailure:
            metrics.record_reload_failure(time.perf_counter() - start)
            raise

        snapshot = MappingProxyType(fresh)
        with self._lock.write_locked():
            self._snapshot = snapshot
            self.last_reload = datetime.now(timezone.utc)
            self.skipped = skipped

        metrics.record_reload(len(snapshot), skipped, time.perf_counter() - start)
        if skipped:
            logger.info(f"Skipped {skipped} non-key entries while loading keys")
        logger.info(f"Loaded {len(snapshot)} keys from {self._source!r}")
        return len(snapshot)

    def _scan(self) -> Tuple[Dict[str, bytes], int]:
        try:
            entries = list(self._source.entries())
        except OSError as e:
            raise ScanFailure(f"read key directory: {e}") from e

        fresh: Dict[str, bytes] = {}
        skipped = 0
        for name, is_file in entries:
            if not is_file or not is_valid_key_name(name):
                skipped += 1
                continue
            try:
                fresh[name] = self._source.read(name)
            except OSError as e:
                raise ScanFailure(f"read key file {name}: {e}") from e
        return fresh, skipped

    def __len__(self) -> int:
        with self._lock.read_locked():
            return len(self._snapshot)

    def __contains__(self, name: object) -> bool:
        with self._lock.read_locked():
            return name in self._snapshot
