# tests/unit/test_lister.py
"""Unit tests for paginated object enumeration."""

from typing import Dict, List

import pytest

from tests.conftest import FakeClient
from tidecopy.exceptions import TransientNetworkError
from tidecopy.lister import ObjectLister
from tidecopy.locator import parse_locator
from tidecopy.models import ObjectDescriptor


@pytest.mark.asyncio
async def test_pages_until_exhausted(source_client: FakeClient) -> None:
    """
    Tests that the lister walks every page and tracks its cursor.

    Arrange:
        - A fake bucket with three objects under ``dir/``.
    Act:
        - Fetch pages of two until the cursor is exhausted.
    Assert:
        - Two pages were fetched, the second using the first's token.
        - All three keys were returned in order.
    """
    lister: ObjectLister = ObjectLister(
        source_client, parse_locator("s3://bucket/dir/"), page_size=2
    )

    first: List[ObjectDescriptor] = await lister.fetch_page()
    assert lister.cursor.continuation_token == "2"
    assert lister.cursor.exhausted is False
    second: List[ObjectDescriptor] = await lister.fetch_page()

    assert [d.key for d in first + second] == [
        "dir/a.csv",
        "dir/b.json",
        "dir/nested/c.txt",
    ]
    assert lister.cursor.exhausted is True
    assert lister.cursor.pages_fetched == 2
    assert source_client.calls["list_page"] == [
        ("dir/", None, 2),
        ("dir/", "2", 2),
    ]
    assert await lister.fetch_page() == []
    assert len(source_client.calls["list_page"]) == 2


@pytest.mark.asyncio
async def test_async_iteration_and_reset(source_client: FakeClient) -> None:
    lister: ObjectLister = ObjectLister(
        source_client, parse_locator("s3://bucket/dir/"), page_size=1
    )

    keys: List[str] = [d.key async for d in lister]
    lister.reset()
    again: List[str] = [d.key async for d in lister]

    assert keys == again
    assert len(keys) == 3
    assert lister.cursor.pages_fetched == 3


@pytest.mark.asyncio
async def test_directory_markers_are_skipped() -> None:
    objects: Dict[str, bytes] = {"dir/": b"", "dir/sub/": b"", "dir/x.txt": b"x"}
    lister: ObjectLister = ObjectLister(
        FakeClient(objects), parse_locator("s3://bucket/dir/"), page_size=10
    )

    assert [d.key async for d in lister] == ["dir/x.txt"]


@pytest.mark.asyncio
async def test_failed_fetch_leaves_cursor_untouched(
    source_client: FakeClient,
) -> None:
    """
    Tests that a failing page fetch does not advance the cursor, so the same
    page is requested again on the next call.
    """
    lister: ObjectLister = ObjectLister(
        source_client, parse_locator("s3://bucket/dir/"), page_size=2
    )
    await lister.fetch_page()
    original = source_client.list_page

    async def broken(*args, **kwargs):
        raise TransientNetworkError("connection reset")

    source_client.list_page = broken  # type: ignore[method-assign]
    with pytest.raises(TransientNetworkError):
        await lister.fetch_page()
    assert lister.cursor.continuation_token == "2"
    assert lister.cursor.pages_fetched == 1

    source_client.list_page = original  # type: ignore[method-assign]
    page: List[ObjectDescriptor] = await lister.fetch_page()
    assert [d.key for d in page] == ["dir/nested/c.txt"]
