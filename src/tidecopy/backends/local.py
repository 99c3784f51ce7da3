# src/tidecopy/backends/local.py
"""
Local filesystem backend.

Keys are ``/``-separated paths resolved against a root directory (absolute
keys ignore the root). Listing uses raw string-prefix semantics and returns
keys in lexicographic order, which is this backend's native order. Writes go
to a ``.tidecopy-part`` file that is renamed into place on commit, so a
partially written object never shadows the destination and can be resumed.
"""

import asyncio
import bisect
import itertools
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import IO, AsyncIterator, Callable, Dict, Iterator, List, Optional, TypeVar

from tidecopy.backends.base import BackendClient, Page
from tidecopy.capabilities import OperationKind
from tidecopy.exceptions import (
    AuthError,
    DestinationExists,
    NotFound,
    UnsupportedOperation,
)
from tidecopy.locator import SEPARATOR, Backend
from tidecopy.models import IfExists, ObjectDescriptor

logger: logging.Logger = logging.getLogger(__name__)

PART_SUFFIX: str = ".tidecopy-part"
DEFAULT_CHUNK_SIZE: int = 1024 * 1024

T = TypeVar("T")


async def _run_blocking(func: Callable[..., T], *args: object) -> T:
    loop: asyncio.AbstractEventLoop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, func, *args)


class LocalSink:
    """A `ByteSink` writing to a part file beside the destination path."""

    def __init__(
        self, target: Path, handle: IO[bytes], offset: int, replace: bool = True
    ) -> None:
        self._target: Path = target
        self._part: Path = target.with_name(target.name + PART_SUFFIX)
        self._handle: IO[bytes] = handle
        self._replace: bool = replace
        self.offset: int = offset

    async def write(self, data: bytes) -> None:
        await _run_blocking(self._handle.write, data)

    async def commit(self) -> None:
        def _finish() -> None:
            self._handle.flush()
            os.fsync(self._handle.fileno())
            self._handle.close()
            if self._replace:
                os.replace(self._part, self._target)
                return
            # link() refuses an existing target, unlike replace().
            os.link(self._part, self._target)
            self._part.unlink()

        try:
            await _run_blocking(_finish)
        except FileExistsError as e:
            raise DestinationExists(f"'{self._target}' already exists.") from e

    async def abort(self, keep_partial: bool = False) -> None:
        def _discard() -> None:
            self._handle.close()
            if not keep_partial:
                self._part.unlink(missing_ok=True)

        await _run_blocking(_discard)


class LocalClient:
    """`BackendClient` for paths on the local filesystem."""

    supports_range_reads: bool = True
    supports_offset_writes: bool = True

    def __init__(self, root: Path = Path("."), chunk_size: int = DEFAULT_CHUNK_SIZE):
        """
        Args:
            root (Path): Directory relative keys are resolved against.
            chunk_size (int): Read size used when streaming an object.
        """
        self._root: Path = root
        self._chunk_size: int = chunk_size
        # Sorted child keys per directory key, kept between the pages of
        # one listing so every directory is read once.
        self._dir_cache: Dict[str, List[str]] = {}

    def _resolve(self, key: str) -> Path:
        return self._root / key

    def _describe(self, key: str, path: Path) -> ObjectDescriptor:
        stat: os.stat_result = path.stat()
        return ObjectDescriptor(
            key=key,
            size=stat.st_size,
            etag=f"{stat.st_mtime_ns:x}-{stat.st_size:x}",
            last_modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
        )

    def _children(self, base: str) -> List[str]:
        """
        Lists one directory as sorted keys.

        Subdirectory keys end with "/", so sorting them beside file keys
        yields the lexicographic order of every key below them.

        Args:
            base (str): The directory key, "" or ending with "/".

        Returns:
            List[str]: Child keys, or an empty list if `base` is no directory.
        """
        cached: Optional[List[str]] = self._dir_cache.get(base)
        if cached is not None:
            return cached
        keys: List[str] = []
        try:
            with os.scandir(self._resolve(base) if base else self._root) as entries:
                for entry in entries:
                    if entry.is_dir(follow_symlinks=False):
                        keys.append(f"{base}{entry.name}{SEPARATOR}")
                    elif entry.is_file() and not entry.name.endswith(PART_SUFFIX):
                        keys.append(base + entry.name)
        except (FileNotFoundError, NotADirectoryError):
            pass
        keys.sort()
        self._dir_cache[base] = keys
        return keys

    def _walk(self, base: str, stem: str, after: Optional[str]) -> Iterator[str]:
        """
        Yields file keys below `base` in lexicographic order.

        Args:
            base (str): The directory key to walk.
            stem (str): Only children whose name starts with this are kept.
            after (str, optional): Only keys sorting after this are yielded.
        """
        keys: List[str] = self._children(base)
        start: int = 0
        if after is not None:
            start = bisect.bisect_right(keys, after)
            # The directory holding `after` sorts just before it.
            if start and keys[start - 1].endswith(SEPARATOR):
                if after.startswith(keys[start - 1]):
                    start -= 1
        for key in itertools.islice(keys, start, None):
            if not key.startswith(base + stem):
                continue
            if key.endswith(SEPARATOR):
                yield from self._walk(key, "", after)
            else:
                yield key

    async def list_page(
        self, prefix: str, continuation_token: Optional[str], page_size: int
    ) -> Page:
        def _page() -> Page:
            if not continuation_token:
                self._dir_cache.clear()
            head, sep, stem = prefix.rpartition(SEPARATOR)
            walker: Iterator[str] = self._walk(
                head + sep, stem, continuation_token or None
            )
            keys: List[str] = list(itertools.islice(walker, page_size + 1))
            selected: List[str] = keys[:page_size]
            next_token: Optional[str] = (
                selected[-1] if len(keys) > page_size and selected else None
            )
            # Only the directories enclosing the next token are read again.
            self._dir_cache = {
                base: children
                for base, children in self._dir_cache.items()
                if next_token is not None and next_token.startswith(base)
            }
            descriptors: List[ObjectDescriptor] = [
                self._describe(key, self._resolve(key)) for key in selected
            ]
            return descriptors, next_token

        try:
            return await _run_blocking(_page)
        except PermissionError as e:
            raise AuthError(f"Permission denied listing '{prefix}': {e}") from e

    async def open_read(self, key: str, offset: int = 0) -> AsyncIterator[bytes]:
        path: Path = self._resolve(key)
        try:
            handle: IO[bytes] = await _run_blocking(path.open, "rb")
        except (FileNotFoundError, IsADirectoryError) as e:
            raise NotFound(f"No such file: '{key}'") from e
        except PermissionError as e:
            raise AuthError(f"Permission denied reading '{key}': {e}") from e
        try:
            if offset:
                await _run_blocking(handle.seek, offset)
            while True:
                chunk: bytes = await _run_blocking(handle.read, self._chunk_size)
                if not chunk:
                    break
                yield chunk
        finally:
            handle.close()

    async def open_write(
        self, key: str, offset: int = 0, if_exists: IfExists = IfExists.OVERWRITE
    ) -> LocalSink:
        target: Path = self._resolve(key)
        part: Path = target.with_name(target.name + PART_SUFFIX)
        replace: bool = if_exists is IfExists.OVERWRITE

        def _open() -> LocalSink:
            if not replace and target.exists():
                raise DestinationExists(f"'{target}' already exists.")
            target.parent.mkdir(parents=True, exist_ok=True)
            if offset and part.exists() and part.stat().st_size >= offset:
                handle: IO[bytes] = part.open("r+b")
                handle.truncate(offset)
                handle.seek(offset)
                return LocalSink(target, handle, offset, replace)
            return LocalSink(target, part.open("wb"), 0, replace)

        try:
            sink: LocalSink = await _run_blocking(_open)
        except PermissionError as e:
            raise AuthError(f"Permission denied writing '{key}': {e}") from e
        if offset and sink.offset != offset:
            logger.debug(f"Partial data for '{key}' is gone, restarting from zero.")
        return sink

    def can_copy_from(self, source: BackendClient) -> bool:
        return False

    async def copy_from(
        self,
        source: BackendClient,
        source_key: str,
        key: str,
        size: int,
        if_exists: IfExists = IfExists.OVERWRITE,
    ) -> None:
        raise UnsupportedOperation(Backend.LOCAL, OperationKind.REMOTE_COPY)

    async def delete(self, key: str) -> None:
        try:
            await _run_blocking(self._resolve(key).unlink)
        except FileNotFoundError as e:
            raise NotFound(f"No such file: '{key}'") from e
        except PermissionError as e:
            raise AuthError(f"Permission denied deleting '{key}': {e}") from e

    async def close(self) -> None:
        return None
