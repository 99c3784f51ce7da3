# src/tidecopy/lister.py
"""
Lazy, restartable enumeration of the objects under a locator.

Pagination state lives in an explicit `ListCursor` rather than in generator
frames, so a listing can be inspected, retried page by page and restarted.
The lister never retries by itself: a failed `fetch_page` leaves the cursor
untouched and the caller decides whether to try again.
"""

import logging
from dataclasses import dataclass
from typing import AsyncIterator, List, Optional

from tidecopy.backends.base import BackendClient, Page
from tidecopy.locator import SEPARATOR, Locator
from tidecopy.models import ObjectDescriptor

logger: logging.Logger = logging.getLogger(__name__)


@dataclass
class ListCursor:
    """
    Where an enumeration currently stands.

    Attributes:
        prefix (str): The key prefix being enumerated.
        continuation_token (str, optional): Token for the next page.
        exhausted (bool): True once the backend reported the last page.
        pages_fetched (int): Number of pages successfully fetched.
    """

    prefix: str
    continuation_token: Optional[str] = None
    exhausted: bool = False
    pages_fetched: int = 0


class ObjectLister:
    """Enumerates object descriptors under a locator, one page at a time."""

    def __init__(
        self, client: BackendClient, locator: Locator, page_size: int = 1000
    ) -> None:
        """
        Args:
            client (BackendClient): The client for the locator's backend.
            locator (Locator): The prefix (or object key) to enumerate.
            page_size (int): Objects requested per page.
        """
        self._client: BackendClient = client
        self._locator: Locator = locator
        self._page_size: int = page_size
        self.cursor: ListCursor = ListCursor(prefix=locator.path)

    def reset(self) -> None:
        """Restarts the enumeration from the first page."""
        self.cursor = ListCursor(prefix=self._locator.path)

    async def fetch_page(self) -> List[ObjectDescriptor]:
        """
        Fetches the next page and advances the cursor.

        Directory markers (keys ending in "/") are dropped; everything else
        is returned in the backend's order.

        Returns:
            List[ObjectDescriptor]: The page's objects; empty once exhausted.
        """
        if self.cursor.exhausted:
            return []
        page: Page = await self._client.list_page(
            self.cursor.prefix, self.cursor.continuation_token, self._page_size
        )
        descriptors, next_token = page
        self.cursor.pages_fetched += 1
        self.cursor.continuation_token = next_token
        self.cursor.exhausted = next_token is None
        logger.debug(
            f"Listed page {self.cursor.pages_fetched} of '{self._locator}' "
            f"({len(descriptors)} objects)."
        )
        return [d for d in descriptors if not d.key.endswith(SEPARATOR)]

    async def __aiter__(self) -> AsyncIterator[ObjectDescriptor]:
        while not self.cursor.exhausted:
            for descriptor in await self.fetch_page():
                yield descriptor
