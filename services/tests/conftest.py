"""
Top-level test configuration for blockrepair.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import UTC, datetime, timedelta

import pytest

from blockrepair.blocks.retry import RetryPolicy
from blockrepair.storage.protocol import ObjectMeta, ObjectNotFoundError, ObjectStoreError

# Ensure test-friendly defaults
os.environ.setdefault("BLOCKREPAIR_STORAGE__BACKEND", "filesystem")
os.environ.setdefault("BLOCKREPAIR_JSON_LOGS", "false")
os.environ.setdefault("BLOCKREPAIR_LOG_LEVEL", "DEBUG")
os.environ.setdefault("BLOCKREPAIR_CONFIG_FILE", "/nonexistent/blockrepair-test.yaml")

EPOCH = datetime(1970, 1, 1, tzinfo=UTC)
ALWAYS = -1


class MemoryStore:
    """In-memory ObjectStore with fault injection and call accounting.

    fail_on("delete") makes every delete fail; fail_on("put", times=1) fails
    only the first put. peak_in_flight records the highest number of calls
    outstanding at the same moment.
    """

    def __init__(self, latency: float = 0.0) -> None:
        self.objects: dict[str, tuple[bytes, ObjectMeta]] = {}
        self.calls: list[tuple[str, str]] = []
        self.latency = latency
        self.in_flight = 0
        self.peak_in_flight = 0
        self._failures: dict[str, int] = {}

    def add(
        self, key: str, data: bytes = b"", *, size: int | None = None, time_ms: int = 0
    ) -> None:
        self.objects[key] = (
            data,
            ObjectMeta(
                key=key,
                size_bytes=len(data) if size is None else size,
                content_type="application/octet-stream",
                etag=f"etag-{len(self.objects)}",
                last_modified=EPOCH + timedelta(milliseconds=time_ms),
            ),
        )

    def fail_on(self, operation: str, times: int = ALWAYS) -> None:
        self._failures[operation] = times

    def calls_to(self, operation: str) -> list[str]:
        return [key for op, key in self.calls if op == operation]

    @asynccontextmanager
    async def _op(self, operation: str, key: str) -> AsyncIterator[None]:
        self.calls.append((operation, key))
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.latency)
            remaining = self._failures.get(operation, 0)
            if remaining:
                if remaining > 0:
                    self._failures[operation] = remaining - 1
                raise ObjectStoreError(f"injected {operation} failure for {key}")
            yield
        finally:
            self.in_flight -= 1

    async def put(
        self,
        key: str,
        data: bytes,
        content_type: str = "application/octet-stream",
        metadata: dict[str, str] | None = None,
    ) -> ObjectMeta:
        async with self._op("put", key):
            meta = ObjectMeta(
                key=key,
                size_bytes=len(data),
                content_type=content_type,
                etag=f"etag-{len(self.objects)}",
                last_modified=datetime.now(UTC),
                metadata=metadata or {},
            )
            self.objects[key] = (data, meta)
            return meta

    async def get(self, key: str) -> bytes:
        async with self._op("get", key):
            if key not in self.objects:
                raise ObjectNotFoundError(key)
            return self.objects[key][0]

    async def copy(self, source_key: str, dest_key: str) -> None:
        async with self._op("copy", source_key):
            if source_key not in self.objects:
                raise ObjectNotFoundError(source_key)
            data, meta = self.objects[source_key]
            self.objects[dest_key] = (data, replace(meta, key=dest_key))

    async def delete(self, key: str) -> None:
        async with self._op("delete", key):
            self.objects.pop(key, None)

    async def exists(self, key: str) -> bool:
        async with self._op("exists", key):
            return key in self.objects

    async def head(self, key: str) -> ObjectMeta:
        async with self._op("head", key):
            if key not in self.objects:
                raise ObjectNotFoundError(key)
            return self.objects[key][1]

    async def list_prefix(self, prefix: str) -> list[ObjectMeta]:
        async with self._op("list_prefix", prefix):
            return [
                meta for key, (_, meta) in sorted(self.objects.items()) if key.startswith(prefix)
            ]

    async def list_common_prefixes(self, prefix: str, delimiter: str = "/") -> list[str]:
        async with self._op("list_common_prefixes", prefix):
            children: set[str] = set()
            for key in self.objects:
                if not key.startswith(prefix):
                    continue
                rest = key[len(prefix) :]
                idx = rest.find(delimiter)
                if idx >= 0:
                    children.add(prefix + rest[: idx + len(delimiter)])
            return sorted(children)

    async def close(self) -> None:
        pass


@pytest.fixture
def memory_store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def make_memory_store() -> Callable[..., MemoryStore]:
    return MemoryStore


@pytest.fixture
def fast_retry() -> RetryPolicy:
    """Production attempt count without the wait between attempts."""
    return RetryPolicy(max_attempts=3, delay_seconds=0)
