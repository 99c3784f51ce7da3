# tests/unit/test_pipeline.py
"""
Unit tests for the `TransferPipeline`.

A counting client factory stands in for `open_client`, so the tests can check
that input, credential and capability errors stop a run before any backend
client is opened.
"""

import asyncio
from contextlib import AsyncExitStack
from pathlib import Path
from typing import Dict, List

import polars as pl
import pytest

from tests.conftest import FAKE_S3_ENV, FakeClient
from tidecopy.backends import BackendClient
from tidecopy.config import RunConfig
from tidecopy.credentials import Credentials
from tidecopy.exceptions import (
    InvalidLocator,
    MissingCredential,
    UnsupportedOperation,
)
from tidecopy.locator import Locator
from tidecopy.models import TaskState
from tidecopy.pipeline import TransferPipeline
from tidecopy.report import TransferReport


class CountingFactory:
    """Serves one `FakeClient` per bucket and records every open."""

    def __init__(self, buckets: Dict[str, FakeClient]) -> None:
        self.buckets: Dict[str, FakeClient] = buckets
        self.opened: List[Locator] = []

    async def __call__(
        self,
        locator: Locator,
        credentials: Credentials,
        config: RunConfig,
        stack: AsyncExitStack,
    ) -> BackendClient:
        self.opened.append(locator)
        client: FakeClient = self.buckets.setdefault(locator.bucket, FakeClient())
        stack.push_async_callback(client.close)
        return client


def _pipeline(
    factory: CountingFactory, config: RunConfig, env: Dict[str, str]
) -> TransferPipeline:
    return TransferPipeline(
        config,
        env,
        asyncio.Event(),
        client_factory=factory,
        show_progress=False,
    )


@pytest.mark.asyncio
async def test_missing_credential_opens_no_client(
    test_config: RunConfig, source_client: FakeClient
) -> None:
    """
    Tests that a missing credential fails the run before any client exists.

    Arrange:
        - An environment without ``ACCESS_KEY_ID``.
    Act:
        - Run an S3 to local copy.
    Assert:
        - `MissingCredential` names ``ACCESS_KEY_ID``.
        - The client factory was never called.
    """
    factory: CountingFactory = CountingFactory({"bucket": source_client})
    env: Dict[str, str] = {
        k: v for k, v in FAKE_S3_ENV.items() if k != "ACCESS_KEY_ID"
    }

    with pytest.raises(MissingCredential, match="ACCESS_KEY_ID"):
        await _pipeline(factory, test_config, env).run("s3://bucket/dir/", "out/")

    assert factory.opened == []
    assert source_client.calls == {}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "source, destination, error",
    [
        ("s3://bucket/dir/a.csv", "s3://other/out/a.csv", UnsupportedOperation),
        ("s3://bucket/dir/", "s3://other/out", InvalidLocator),
        ("gs://bucket/dir/", "out/", InvalidLocator),
    ],
)
async def test_rejected_requests_open_no_client(
    test_config: RunConfig, source: str, destination: str, error: type
) -> None:
    factory: CountingFactory = CountingFactory({})

    with pytest.raises(error):
        await _pipeline(factory, test_config, FAKE_S3_ENV).run(source, destination)

    assert factory.opened == []


@pytest.mark.asyncio
async def test_s3_to_s3_prefix_copy(
    test_config: RunConfig, source_client: FakeClient
) -> None:
    """
    Tests a full prefix copy between two fake buckets.
    """
    dest: FakeClient = FakeClient()
    factory: CountingFactory = CountingFactory({"bucket": source_client, "other": dest})

    report: TransferReport = await _pipeline(factory, test_config, FAKE_S3_ENV).run(
        "s3://bucket/dir/", "s3://other/out/"
    )

    assert report.ok
    assert len(report) == 3
    assert sorted(dest.objects) == ["out/a.csv", "out/b.json", "out/nested/c.txt"]
    assert [loc.bucket for loc in factory.opened] == ["bucket", "other"]
    assert source_client.calls["close"] and dest.calls["close"]


@pytest.mark.asyncio
async def test_local_move_with_report(tmp_path: Path, test_config: RunConfig) -> None:
    """
    Tests a move between two local directories using the real backend
    factory, with the report exported to CSV.

    Arrange:
        - A source directory with two files.
    Act:
        - Run a move to an empty destination directory.
    Assert:
        - Both files exist at the destination and are gone from the source.
        - The CSV report has one succeeded row per file.
    """
    src: Path = tmp_path / "src"
    (src / "sub").mkdir(parents=True)
    (src / "one.txt").write_bytes(b"1")
    (src / "sub" / "two.txt").write_bytes(b"22")
    report_path: Path = tmp_path / "report.csv"
    config: RunConfig = RunConfig(
        concurrency=2, backoff_base_s=0.0, report_path=report_path
    )
    pipeline: TransferPipeline = TransferPipeline(
        config, {}, asyncio.Event(), show_progress=False
    )

    report: TransferReport = await pipeline.run(
        f"{src.as_posix()}/", f"{(tmp_path / 'dst').as_posix()}/", delete_source=True
    )

    assert report.ok
    assert (tmp_path / "dst" / "one.txt").read_bytes() == b"1"
    assert (tmp_path / "dst" / "sub" / "two.txt").read_bytes() == b"22"
    assert not (src / "one.txt").exists()
    assert not (src / "sub" / "two.txt").exists()
    frame: pl.DataFrame = pl.read_csv(report_path)
    assert frame["state"].to_list() == [TaskState.SUCCEEDED.value] * 2


@pytest.mark.asyncio
async def test_escaping_key_writes_nothing(test_config: RunConfig) -> None:
    """
    Tests that a listing containing a key that climbs out of its prefix stops
    the run before the destination receives a single write.
    """
    source: FakeClient = FakeClient(
        {"dir/a.csv": b"ok", "dir/../../escaped.txt": b"outside"}
    )
    dest: FakeClient = FakeClient()
    factory: CountingFactory = CountingFactory({"bucket": source, "": dest})

    with pytest.raises(InvalidLocator):
        await _pipeline(factory, test_config, FAKE_S3_ENV).run(
            "s3://bucket/dir/", "out/"
        )

    assert dest.calls["open_write"] == []
    assert dest.objects == {}


@pytest.mark.asyncio
async def test_pending_is_zero_outside_a_run(
    test_config: RunConfig, source_client: FakeClient
) -> None:
    factory: CountingFactory = CountingFactory({"bucket": source_client})
    pipeline: TransferPipeline = _pipeline(factory, test_config, FAKE_S3_ENV)

    assert pipeline.pending() == (0, 0)
    await pipeline.run("s3://bucket/dir/", "s3://other/out/")
    assert pipeline.pending() == (0, 0)
