# src/tidecopy/backends/base.py
"""
The narrow client contract every storage backend implements.

Backend variants differ only in how they satisfy this protocol; the planner
and executor never branch on the concrete client type.
"""

from typing import AsyncIterator, List, Optional, Protocol, Tuple

from tidecopy.models import IfExists, ObjectDescriptor

Page = Tuple[List[ObjectDescriptor], Optional[str]]


class ByteSink(Protocol):
    """
    A destination object being written.

    Attributes:
        offset (int): Byte position the sink starts at. Lower than the
            requested offset when the backend could not resume.
    """

    offset: int

    async def write(self, data: bytes) -> None:
        """Appends bytes to the object."""
        ...

    async def commit(self) -> None:
        """Makes the written bytes visible as the destination object."""
        ...

    async def abort(self, keep_partial: bool = False) -> None:
        """
        Abandons the write.

        Args:
            keep_partial (bool): Keep already-written bytes so that a later
                `open_write` at the same offset can resume. Ignored by
                backends without offset writes.
        """
        ...


class BackendClient(Protocol):
    """Operations the transfer layer needs from a storage backend."""

    supports_range_reads: bool
    supports_offset_writes: bool

    async def list_page(
        self, prefix: str, continuation_token: Optional[str], page_size: int
    ) -> Page:
        """
        Fetches one page of objects whose key starts with `prefix`.

        Returns:
            Page: The descriptors in backend order and the token for the next
                page, or None when the listing is complete.
        """
        ...

    def open_read(self, key: str, offset: int = 0) -> AsyncIterator[bytes]:
        """Streams an object's bytes starting at `offset`."""
        ...

    async def open_write(
        self, key: str, offset: int = 0, if_exists: IfExists = IfExists.OVERWRITE
    ) -> ByteSink:
        """
        Opens a sink for an object, resuming at `offset` if supported.

        Raises:
            DestinationExists: If `if_exists` is ERROR and the object exists.
                Backends may also raise this from `ByteSink.commit`.
        """
        ...

    def can_copy_from(self, source: "BackendClient") -> bool:
        """Whether objects of `source` can be copied without streaming them."""
        ...

    async def copy_from(
        self,
        source: "BackendClient",
        source_key: str,
        key: str,
        size: int,
        if_exists: IfExists = IfExists.OVERWRITE,
    ) -> None:
        """Copies an object of `source` inside the storage service."""
        ...

    async def delete(self, key: str) -> None:
        """Deletes an object."""
        ...

    async def close(self) -> None:
        """Releases any resources held by the client."""
        ...
