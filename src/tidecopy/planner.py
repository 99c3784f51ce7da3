# src/tidecopy/planner.py
"""
Builds validated transfer plans.

Planning runs in two phases. `validate` checks the requested combination
against the capability registry without touching any backend. Only if that
passes does `plan` enumerate the source and map every object onto its
destination. A rejected request therefore produces no plan, no tasks and no
backend calls.
"""

import asyncio
import logging
from typing import List, Optional

from tidecopy.backends.base import BackendClient
from tidecopy.capabilities import DEFAULT_REGISTRY, CapabilityRegistry, OperationKind
from tidecopy.exceptions import EmptySource, InvalidLocator, NotFound
from tidecopy.lister import ObjectLister
from tidecopy.locator import Locator
from tidecopy.models import IfExists, ObjectDescriptor, TransferPlan, TransferTask
from tidecopy.retry import RetryPolicy

logger: logging.Logger = logging.getLogger(__name__)


class TransferPlanner:
    """Turns a source and destination locator into a `TransferPlan`."""

    def __init__(
        self,
        registry: CapabilityRegistry = DEFAULT_REGISTRY,
        retry_policy: Optional[RetryPolicy] = None,
        page_size: int = 1000,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> None:
        """
        Args:
            registry (CapabilityRegistry): Capabilities to enforce.
            retry_policy (RetryPolicy, optional): Applied to each page fetch.
            page_size (int): Objects requested per listing page.
            cancel_event (asyncio.Event, optional): Aborts pending retries.
        """
        self._registry: CapabilityRegistry = registry
        self._retry: RetryPolicy = retry_policy or RetryPolicy()
        self._page_size: int = page_size
        self._cancel_event: Optional[asyncio.Event] = cancel_event

    def validate(
        self,
        source: Locator,
        destination: Locator,
        delete_source: bool = False,
        if_exists: IfExists = IfExists.OVERWRITE,
    ) -> None:
        """
        Checks that both backends support the requested transfer.

        Raises:
            UnsupportedOperation: If a required operation is missing.
            InvalidLocator: If a prefix would be copied onto a single object.
        """
        require = self._registry.require_support
        require(source.backend, OperationKind.READ_OBJECT)

        if source.is_prefix:
            if not destination.is_prefix:
                raise InvalidLocator(
                    str(destination),
                    "copying a prefix requires a destination ending with '/'",
                )
            require(source.backend, OperationKind.LIST_OBJECTS)
            require(destination.backend, OperationKind.WRITE_PREFIX)
        elif destination.is_prefix:
            require(destination.backend, OperationKind.WRITE_PREFIX)
        else:
            require(destination.backend, OperationKind.WRITE_SINGLE_OBJECT)

        if delete_source:
            require(source.backend, OperationKind.DELETE_OBJECT)
        self._registry.require_if_exists(destination.backend, if_exists)

    async def _next_page(self, lister: ObjectLister) -> List[ObjectDescriptor]:
        return await self._retry.run(
            lister.fetch_page,
            f"Listing page {lister.cursor.pages_fetched + 1}",
            self._cancel_event,
        )

    async def _describe_single(
        self, client: BackendClient, source: Locator
    ) -> ObjectDescriptor:
        lister: ObjectLister = ObjectLister(client, source, self._page_size)
        while not lister.cursor.exhausted:
            for descriptor in await self._next_page(lister):
                if descriptor.key == source.path:
                    return descriptor
        raise NotFound(f"Source object '{source}' does not exist.")

    async def plan(
        self,
        source: Locator,
        destination: Locator,
        source_client: BackendClient,
        delete_source: bool = False,
        if_exists: IfExists = IfExists.OVERWRITE,
    ) -> TransferPlan:
        """
        Validates the request and builds the ordered list of tasks.

        Args:
            source (Locator): Where to copy from.
            destination (Locator): Where to copy to.
            source_client (BackendClient): Client for the source backend.
            delete_source (bool): Delete each source object once copied.
            if_exists (IfExists): Policy for destination objects that exist.

        Returns:
            TransferPlan: Tasks in source enumeration order.

        Raises:
            UnsupportedOperation: If a backend lacks a required capability.
            EmptySource: If a prefix source contains no objects.
            NotFound: If a single-object source does not exist.
            InvalidLocator: If a listed key would land outside the
                destination prefix.
        """
        self.validate(source, destination, delete_source, if_exists)

        tasks: List[TransferTask] = []
        if not source.is_prefix:
            descriptor: ObjectDescriptor = await self._describe_single(
                source_client, source
            )
            target: Locator = (
                destination.child(source.basename)
                if destination.is_prefix
                else destination
            )
            tasks.append(self._task(0, source, target, descriptor))
        else:
            lister: ObjectLister = ObjectLister(source_client, source, self._page_size)
            while not lister.cursor.exhausted:
                for descriptor in await self._next_page(lister):
                    relative: str = source.relative_key(descriptor.key)
                    tasks.append(
                        self._task(
                            len(tasks),
                            source.child(relative),
                            destination.child(relative),
                            descriptor,
                        )
                    )
            if not tasks:
                raise EmptySource(f"No objects found under '{source}'.")

        plan: TransferPlan = TransferPlan(
            source=source,
            destination=destination,
            tasks=tuple(tasks),
            delete_source=delete_source,
            if_exists=if_exists,
        )
        logger.info(
            f"Planned {len(plan)} object(s), {plan.total_bytes} bytes, "
            f"from '{source}' to '{destination}'."
        )
        return plan

    @staticmethod
    def _task(
        index: int, source: Locator, destination: Locator, descriptor: ObjectDescriptor
    ) -> TransferTask:
        return TransferTask(
            index=index,
            source=source,
            destination=destination,
            expected_size=descriptor.size,
            etag=descriptor.etag,
        )
