# tests/unit/test_local_backend.py
"""Unit tests for the local filesystem backend."""

import os
from contextlib import AsyncExitStack
from pathlib import Path
from typing import List, Optional
from unittest.mock import MagicMock, patch

import pytest

from tidecopy.backends import open_client
from tidecopy.backends.local import PART_SUFFIX, LocalClient, LocalSink
from tidecopy.config import RunConfig
from tidecopy.credentials import Credentials
from tidecopy.exceptions import DestinationExists, NotFound
from tidecopy.locator import Backend, parse_locator
from tidecopy.models import IfExists


@pytest.fixture
def tree(tmp_path: Path) -> Path:
    """
    Create a small directory tree::

        src/a.csv, src/b.json, src/nested/c.txt, srcx/other.txt
    """
    (tmp_path / "src" / "nested").mkdir(parents=True)
    (tmp_path / "srcx").mkdir()
    (tmp_path / "src" / "a.csv").write_bytes(b"a,b\n1,2\n")
    (tmp_path / "src" / "b.json").write_bytes(b"{}")
    (tmp_path / "src" / "nested" / "c.txt").write_bytes(b"hello world")
    (tmp_path / "srcx" / "other.txt").write_bytes(b"x")
    return tmp_path


@pytest.mark.asyncio
async def test_list_page_is_sorted_and_paged(tree: Path) -> None:
    """
    Tests that listing returns files under a prefix in key order, one page at
    a time, and skips leftover part files.
    """
    (tree / "src" / f"d.bin{PART_SUFFIX}").write_bytes(b"partial")
    client: LocalClient = LocalClient(root=tree)

    first, token = await client.list_page("src/", None, 2)
    second, last_token = await client.list_page("src/", token, 2)

    assert [d.key for d in first] == ["src/a.csv", "src/b.json"]
    assert token == "src/b.json"
    assert [d.key for d in second] == ["src/nested/c.txt"]
    assert last_token is None
    assert second[0].size == 11
    assert second[0].etag


@pytest.mark.asyncio
async def test_list_uses_string_prefix_semantics(tree: Path) -> None:
    client: LocalClient = LocalClient(root=tree)

    descriptors, _ = await client.list_page("src", None, 10)

    assert [d.key for d in descriptors] == [
        "src/a.csv",
        "src/b.json",
        "src/nested/c.txt",
        "srcx/other.txt",
    ]


@pytest.mark.asyncio
async def test_list_missing_directory_is_empty(tmp_path: Path) -> None:
    client: LocalClient = LocalClient(root=tmp_path)
    assert await client.list_page("nope/", None, 10) == ([], None)


@pytest.mark.asyncio
async def test_read_from_offset(tree: Path) -> None:
    client: LocalClient = LocalClient(root=tree, chunk_size=4)

    chunks: List[bytes] = [c async for c in client.open_read("src/nested/c.txt", 6)]

    assert chunks == [b"worl", b"d"]


@pytest.mark.asyncio
async def test_read_missing_raises_not_found(tmp_path: Path) -> None:
    client: LocalClient = LocalClient(root=tmp_path)

    with pytest.raises(NotFound):
        async for _ in client.open_read("missing.txt"):
            pass


@pytest.mark.asyncio
async def test_write_commit_and_resume(tmp_path: Path) -> None:
    """
    Tests the part-file lifecycle of a local write.

    Arrange:
        - Open a sink and write the first half of an object.
    Act:
        - Abort keeping the partial data, reopen at the written offset,
          write the rest and commit.
    Assert:
        - The reopened sink starts at the offset.
        - The final file holds both halves and no part file remains.
    """
    client: LocalClient = LocalClient(root=tmp_path)
    target: Path = tmp_path / "out" / "file.bin"
    part: Path = target.with_name(target.name + PART_SUFFIX)

    sink: LocalSink = await client.open_write("out/file.bin")
    await sink.write(b"hello ")
    await sink.abort(keep_partial=True)
    assert part.read_bytes() == b"hello "
    assert not target.exists()

    resumed: LocalSink = await client.open_write("out/file.bin", offset=6)
    assert resumed.offset == 6
    await resumed.write(b"world")
    await resumed.commit()

    assert target.read_bytes() == b"hello world"
    assert not part.exists()


@pytest.mark.asyncio
async def test_resume_without_partial_restarts(tmp_path: Path) -> None:
    client: LocalClient = LocalClient(root=tmp_path)

    sink: LocalSink = await client.open_write("file.bin", offset=100)
    await sink.abort()

    assert sink.offset == 0
    assert not (tmp_path / f"file.bin{PART_SUFFIX}").exists()


@pytest.mark.asyncio
async def test_delete(tree: Path) -> None:
    client: LocalClient = LocalClient(root=tree)

    await client.delete("src/b.json")

    assert not (tree / "src" / "b.json").exists()
    with pytest.raises(NotFound):
        await client.delete("src/b.json")


@pytest.mark.asyncio
async def test_open_client_for_local_locator(tree: Path) -> None:
    """
    Tests that the backend factory serves an absolute local path with the
    local client.
    """
    locator = parse_locator(f"{tree.as_posix()}/src/")
    async with AsyncExitStack() as stack:
        client = await open_client(
            locator, Credentials(Backend.LOCAL), RunConfig(), stack
        )
        descriptors, _ = await client.list_page(locator.path, None, 10)

    assert isinstance(client, LocalClient)
    assert len(descriptors) == 3


async def _list_all(client: LocalClient, prefix: str, page_size: int) -> List[str]:
    keys: List[str] = []
    token: Optional[str] = None
    while True:
        page, token = await client.list_page(prefix, token, page_size)
        keys.extend(d.key for d in page)
        if token is None:
            return keys


@pytest.mark.asyncio
async def test_paged_listing_reads_each_directory_once(tmp_path: Path) -> None:
    """
    Tests that paging through a large tree does not walk it again per page.

    Arrange:
        - 200 files in ``flat/`` and 10 files in each of ``deep/d0..d4/``.
    Act:
        - List the whole tree ten keys at a time, counting directory reads.
    Assert:
        - All 250 keys come back once each, in sorted order.
        - Each of the 8 directories was read exactly once.
    """
    (tmp_path / "flat").mkdir()
    for i in range(200):
        (tmp_path / "flat" / f"{i:03d}.txt").write_bytes(b"x")
    for j in range(5):
        (tmp_path / "deep" / f"d{j}").mkdir(parents=True)
        for i in range(10):
            (tmp_path / "deep" / f"d{j}" / f"{i}.txt").write_bytes(b"y")
    client: LocalClient = LocalClient(root=tmp_path)

    with patch(
        "tidecopy.backends.local.os.scandir", side_effect=os.scandir
    ) as scandir:
        keys: List[str] = await _list_all(client, "", 10)
        reads: int = scandir.call_count

    assert len(keys) == 250
    assert keys == sorted(keys)
    assert len(set(keys)) == 250
    assert reads == 8


@pytest.mark.asyncio
async def test_listing_order_is_lexicographic_across_directories(
    tmp_path: Path,
) -> None:
    """
    Tests that keys inside a directory sort between siblings whose names
    compare below and above "/".
    """
    (tmp_path / "a").mkdir()
    (tmp_path / "a-b.txt").write_bytes(b"1")
    (tmp_path / "a" / "x.txt").write_bytes(b"2")
    (tmp_path / "a0.txt").write_bytes(b"3")
    client: LocalClient = LocalClient(root=tmp_path)

    keys: List[str] = await _list_all(client, "", 1)

    assert keys == ["a-b.txt", "a/x.txt", "a0.txt"]


@pytest.mark.asyncio
async def test_error_policy_refuses_existing_file(tmp_path: Path) -> None:
    (tmp_path / "file.bin").write_bytes(b"old")
    client: LocalClient = LocalClient(root=tmp_path)

    with pytest.raises(DestinationExists):
        await client.open_write("file.bin", if_exists=IfExists.ERROR)

    assert (tmp_path / "file.bin").read_bytes() == b"old"
    assert not (tmp_path / f"file.bin{PART_SUFFIX}").exists()


@pytest.mark.asyncio
async def test_error_policy_commit_keeps_file_created_meanwhile(
    tmp_path: Path,
) -> None:
    """
    Tests that a no-clobber write fails at commit when another writer created
    the file after the sink was opened.

    Arrange:
        - Open a sink with `IfExists.ERROR` while the target is absent.
    Act:
        - Create the target behind the sink's back, then commit.
    Assert:
        - Commit raises `DestinationExists` and the other file is intact.
        - Aborting afterwards removes the part file.
    """
    client: LocalClient = LocalClient(root=tmp_path)
    target: Path = tmp_path / "file.bin"
    sink: LocalSink = await client.open_write("file.bin", if_exists=IfExists.ERROR)
    await sink.write(b"new")
    target.write_bytes(b"theirs")

    with pytest.raises(DestinationExists):
        await sink.commit()
    await sink.abort()

    assert target.read_bytes() == b"theirs"
    assert not (tmp_path / f"file.bin{PART_SUFFIX}").exists()


def test_local_client_has_no_server_side_copy() -> None:
    client: LocalClient = LocalClient()

    assert not client.can_copy_from(MagicMock())
