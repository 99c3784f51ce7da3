# src/tidecopy/backends/__init__.py
"""
Backend clients, selected by the locator's backend tag.

`open_client` is the only place that knows which concrete client serves a
backend; everything else talks to the `BackendClient` protocol.
"""

import logging
from contextlib import AsyncExitStack
from pathlib import Path
from typing import Awaitable, Callable, Dict

from aiobotocore.session import AioSession, get_session
from botocore.config import Config as BotoConfig

from tidecopy.backends.base import BackendClient, ByteSink, Page
from tidecopy.backends.local import LocalClient
from tidecopy.backends.s3 import S3ObjectClient
from tidecopy.config import RunConfig
from tidecopy.credentials import Credentials
from tidecopy.locator import Backend, Locator

logger: logging.Logger = logging.getLogger(__name__)

ClientFactory = Callable[
    [Locator, Credentials, RunConfig, AsyncExitStack], Awaitable[BackendClient]
]


async def _open_local(
    locator: Locator,
    credentials: Credentials,
    config: RunConfig,
    stack: AsyncExitStack,
) -> BackendClient:
    return LocalClient(root=Path("."), chunk_size=config.chunk_size_bytes)


async def _open_s3(
    locator: Locator,
    credentials: Credentials,
    config: RunConfig,
    stack: AsyncExitStack,
) -> BackendClient:
    # The executor owns retries, so botocore makes exactly one attempt.
    boto_config: BotoConfig = BotoConfig(
        signature_version="s3v4",
        max_pool_connections=config.concurrency + 10,
        retries={"total_max_attempts": 1, "mode": "standard"},
    )
    session: AioSession = get_session()
    client = await stack.enter_async_context(
        session.create_client("s3", **credentials.as_boto_dict(), config=boto_config)
    )
    logger.debug(f"Opened S3 client for bucket '{locator.bucket}'.")
    return S3ObjectClient(
        client,
        locator.bucket,
        chunk_size=config.chunk_size_bytes,
        part_size=config.part_size_bytes,
        endpoint=credentials.get("ENDPOINT_URL"),
    )


CLIENT_FACTORIES: Dict[Backend, ClientFactory] = {
    Backend.LOCAL: _open_local,
    Backend.S3: _open_s3,
}


async def open_client(
    locator: Locator,
    credentials: Credentials,
    config: RunConfig,
    stack: AsyncExitStack,
) -> BackendClient:
    """
    Opens the client serving a locator's backend.

    Args:
        locator (Locator): The locator whose backend and bucket to serve.
        credentials (Credentials): Resolved credentials for that backend.
        config (RunConfig): Run settings (pool and chunk sizes).
        stack (AsyncExitStack): Owns the lifetime of any network client.

    Returns:
        BackendClient: A client bound to the locator's bucket or root.
    """
    client: BackendClient = await CLIENT_FACTORIES[locator.backend](
        locator, credentials, config, stack
    )
    stack.push_async_callback(client.close)
    return client


__all__ = [
    "BackendClient",
    "ByteSink",
    "ClientFactory",
    "CLIENT_FACTORIES",
    "LocalClient",
    "Page",
    "S3ObjectClient",
    "open_client",
]
