# tests/conftest.py
"""
Pytest configuration and fixtures for the tidecopy test suite.

This module provides:
- An in-memory `BackendClient` that records every call, supports paging and
  can be told to fail specific reads, so tests can assert exactly which
  backend operations happened.
- Factories for configs, plans and populated fake buckets.
"""

from collections import defaultdict
from datetime import datetime, timezone
from typing import AsyncIterator, Dict, List, Optional

import pytest

from tidecopy.config import RunConfig
from tidecopy.exceptions import DestinationExists
from tidecopy.models import IfExists, ObjectDescriptor

FAKE_S3_ENV: Dict[str, str] = {
    "ACCESS_KEY_ID": "test-key",
    "SECRET_ACCESS_KEY": "test-secret",
    "DEFAULT_REGION": "eu-west-1",
}


class FakeSink:
    """Collects written bytes and stores them in the owning client on commit."""

    def __init__(self, client: "FakeClient", key: str, offset: int) -> None:
        self._client: FakeClient = client
        self._key: str = key
        existing: bytes = client.partials.get(key, b"")
        if offset and len(existing) >= offset:
            self.offset: int = offset
            self._data: bytearray = bytearray(existing[:offset])
        else:
            self.offset = 0
            self._data = bytearray()

    async def write(self, data: bytes) -> None:
        self._data.extend(data)
        self._client.partials[self._key] = bytes(self._data)

    async def commit(self) -> None:
        self._client.objects[self._key] = bytes(self._data)
        self._client.partials.pop(self._key, None)
        self._client.calls["commit"].append(self._key)

    async def abort(self, keep_partial: bool = False) -> None:
        if not keep_partial:
            self._client.partials.pop(self._key, None)
        self._client.calls["abort"].append(self._key)


class FakeClient:
    """
    An in-memory `BackendClient`.

    Attributes:
        objects (Dict[str, bytes]): Committed objects by key.
        partials (Dict[str, bytes]): Uncommitted sink contents by key.
        calls (Dict[str, List]): Arguments of every call, by operation name.
        read_failures (Dict[str, List[Exception]]): Errors raised by the next
            reads of a key, consumed one per read.
        fail_after_bytes (Dict[str, int]): Byte count after which the first
            read of a key raises the next queued failure mid-stream.
        remote_copy (bool): Whether other `FakeClient`s can be copied from
            without streaming.
    """

    def __init__(
        self,
        objects: Optional[Dict[str, bytes]] = None,
        supports_range_reads: bool = True,
        supports_offset_writes: bool = True,
        chunk_size: int = 4,
        remote_copy: bool = False,
    ) -> None:
        self.objects: Dict[str, bytes] = dict(objects or {})
        self.partials: Dict[str, bytes] = {}
        self.calls: Dict[str, List] = defaultdict(list)
        self.read_failures: Dict[str, List[Exception]] = {}
        self.fail_after_bytes: Dict[str, int] = {}
        self.supports_range_reads: bool = supports_range_reads
        self.supports_offset_writes: bool = supports_offset_writes
        self._chunk_size: int = chunk_size
        self.remote_copy: bool = remote_copy

    async def list_page(
        self, prefix: str, continuation_token: Optional[str], page_size: int
    ):
        self.calls["list_page"].append((prefix, continuation_token, page_size))
        keys: List[str] = sorted(k for k in self.objects if k.startswith(prefix))
        start: int = int(continuation_token) if continuation_token else 0
        selected: List[str] = keys[start : start + page_size]
        descriptors: List[ObjectDescriptor] = [
            ObjectDescriptor(
                key=key,
                size=len(self.objects[key]),
                etag=f"etag-{len(self.objects[key])}",
                last_modified=datetime(2024, 1, 1, tzinfo=timezone.utc),
            )
            for key in selected
        ]
        end: int = start + page_size
        return descriptors, (str(end) if end < len(keys) else None)

    async def open_read(self, key: str, offset: int = 0) -> AsyncIterator[bytes]:
        self.calls["open_read"].append((key, offset))
        failures: List[Exception] = self.read_failures.get(key, [])
        if failures and key not in self.fail_after_bytes:
            raise failures.pop(0)
        data: bytes = self.objects[key][offset:]
        sent: int = 0
        for i in range(0, len(data), self._chunk_size):
            limit: Optional[int] = self.fail_after_bytes.get(key)
            if limit is not None and failures and sent >= limit:
                del self.fail_after_bytes[key]
                raise failures.pop(0)
            chunk: bytes = data[i : i + self._chunk_size]
            sent += len(chunk)
            yield chunk

    async def open_write(
        self, key: str, offset: int = 0, if_exists: IfExists = IfExists.OVERWRITE
    ) -> FakeSink:
        self.calls["open_write"].append((key, offset))
        if if_exists is IfExists.ERROR and key in self.objects:
            raise DestinationExists(f"'{key}' already exists.")
        return FakeSink(self, key, offset if self.supports_offset_writes else 0)

    def can_copy_from(self, source: "FakeClient") -> bool:
        return self.remote_copy and isinstance(source, FakeClient)

    async def copy_from(
        self,
        source: "FakeClient",
        source_key: str,
        key: str,
        size: int,
        if_exists: IfExists = IfExists.OVERWRITE,
    ) -> None:
        self.calls["copy_from"].append((source_key, key, size))
        self.objects[key] = source.objects[source_key]

    async def delete(self, key: str) -> None:
        self.calls["delete"].append(key)
        del self.objects[key]

    async def close(self) -> None:
        self.calls["close"].append(None)


@pytest.fixture(scope="function")
def test_config() -> RunConfig:
    """
    Provide a RunConfig tuned for fast, deterministic tests.

    Returns:
        RunConfig: Zero backoff, small pages and a tiny stream threshold.
    """
    return RunConfig(
        concurrency=4,
        max_attempts=3,
        backoff_base_s=0.0,
        backoff_max_s=0.0,
        page_size=2,
        stream_threshold_bytes=8,
        chunk_size_bytes=4,
    )


@pytest.fixture(scope="function")
def source_objects() -> Dict[str, bytes]:
    """Three objects under ``dir/`` plus one outside it."""
    return {
        "dir/a.csv": b"col1,col2\nval1,val2\n",
        "dir/b.json": b'{"key": "value"}',
        "dir/nested/c.txt": b"hello world",
        "other/d.txt": b"not copied",
    }


@pytest.fixture(scope="function")
def source_client(source_objects: Dict[str, bytes]) -> FakeClient:
    return FakeClient(source_objects)


@pytest.fixture(scope="function")
def dest_client() -> FakeClient:
    return FakeClient()
