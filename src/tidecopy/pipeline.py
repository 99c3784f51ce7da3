# src/tidecopy/pipeline.py
"""Core orchestration of a tidecopy run."""

import asyncio
import logging
from contextlib import AsyncExitStack
from typing import Mapping, Optional, Tuple

from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeRemainingColumn,
)

from tidecopy.backends import BackendClient, ClientFactory, open_client
from tidecopy.capabilities import DEFAULT_REGISTRY, CapabilityRegistry
from tidecopy.config import RunConfig
from tidecopy.credentials import CredentialResolver, Credentials
from tidecopy.executor import TransferExecutor
from tidecopy.journal import TransferJournal
from tidecopy.locator import Locator, parse_locator
from tidecopy.models import IfExists, TransferPlan
from tidecopy.planner import TransferPlanner
from tidecopy.report import TransferReport
from tidecopy.retry import RetryPolicy

logger: logging.Logger = logging.getLogger(__name__)


class TransferPipeline:
    """Orchestrates one copy or move from start to finish."""

    def __init__(
        self,
        config: RunConfig,
        env: Mapping[str, str],
        cancel_event: asyncio.Event,
        overrides: Optional[Mapping[str, str]] = None,
        registry: CapabilityRegistry = DEFAULT_REGISTRY,
        client_factory: ClientFactory = open_client,
        show_progress: bool = True,
    ) -> None:
        """
        Initializes the pipeline with the given configuration.

        Args:
            config (RunConfig): The run configuration.
            env (Mapping[str, str]): Environment used for credential lookup.
            cancel_event (asyncio.Event): Event to signal graceful shutdown.
            overrides (Mapping[str, str], optional): Per-run credential values.
            registry (CapabilityRegistry): Capabilities to enforce.
            client_factory (ClientFactory): Opens the backend clients.
            show_progress (bool): Whether to render a rich progress bar.
        """
        self._config: RunConfig = config
        self._cancel_event: asyncio.Event = cancel_event
        self._resolver: CredentialResolver = CredentialResolver(env, overrides)
        self._registry: CapabilityRegistry = registry
        self._client_factory: ClientFactory = client_factory
        self._show_progress: bool = show_progress
        self._retry: RetryPolicy = RetryPolicy.from_config(config)
        self._executor: Optional[TransferExecutor] = None

    def pending(self) -> Tuple[int, int]:
        """
        Counts the copies in flight and the tasks still queued.

        Returns:
            Tuple[int, int]: Both zero until execution has started.
        """
        if self._executor is None:
            return 0, 0
        return self._executor.pending()

    async def run(
        self,
        source_raw: str,
        destination_raw: str,
        delete_source: bool = False,
        if_exists: IfExists = IfExists.OVERWRITE,
    ) -> TransferReport:
        """
        Executes the full transfer.

        Locators are parsed, credentials resolved and capabilities checked
        before any backend client is opened, so input and capability errors
        surface without a single network call.

        Args:
            source_raw (str): The source locator string.
            destination_raw (str): The destination locator string.
            delete_source (bool): Move rather than copy.
            if_exists (IfExists): Policy for destination objects that exist.

        Returns:
            TransferReport: The outcome of every planned task.
        """
        source: Locator = parse_locator(source_raw)
        destination: Locator = parse_locator(destination_raw)
        source_credentials: Credentials = self._resolver.resolve(source.backend)
        destination_credentials: Credentials = self._resolver.resolve(
            destination.backend
        )

        planner: TransferPlanner = TransferPlanner(
            registry=self._registry,
            retry_policy=self._retry,
            page_size=self._config.page_size,
            cancel_event=self._cancel_event,
        )
        planner.validate(source, destination, delete_source, if_exists)

        logger.info(f"Starting transfer from '{source}' to '{destination}'.")
        async with AsyncExitStack() as stack:
            source_client: BackendClient = await self._client_factory(
                source, source_credentials, self._config, stack
            )
            dest_client: BackendClient = await self._client_factory(
                destination, destination_credentials, self._config, stack
            )
            plan: TransferPlan = await planner.plan(
                source, destination, source_client, delete_source, if_exists
            )

            journal: Optional[TransferJournal] = None
            if self._config.journal_dir is not None:
                journal = stack.enter_context(
                    TransferJournal(
                        self._config.journal_dir, self._config.journal_map_size_mb
                    )
                )

            progress: Optional[Progress] = None
            if self._show_progress:
                progress = stack.enter_context(
                    Progress(
                        SpinnerColumn(),
                        TextColumn("[progress.description]{task.description}"),
                        BarColumn(),
                        MofNCompleteColumn(),
                        TimeRemainingColumn(),
                        transient=True,
                    )
                )

            self._executor = TransferExecutor(
                source_client,
                dest_client,
                self._config,
                retry_policy=self._retry,
                cancel_event=self._cancel_event,
                journal=journal,
                progress=progress,
            )
            report: TransferReport = await self._executor.execute(
                plan, self._config.concurrency
            )

        if self._config.report_path is not None:
            report.write(self._config.report_path)
        return report
