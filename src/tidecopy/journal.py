# src/tidecopy/journal.py
"""
Persistent record of completed copies, backed by LMDB.

A journal lets a repeated run skip objects that an earlier run already copied.
Entries are keyed by `TransferTask.journal_key`, which includes the source
etag, so an object that changed since it was copied is transferred again.
"""

import logging
import shutil
from enum import Enum
from pathlib import Path
from types import TracebackType
from typing import Optional, Type

import lmdb

from tidecopy.exceptions import JournalError

logger: logging.Logger = logging.getLogger(__name__)


def _check_disk_space(check_path: Path, required_bytes: int) -> None:
    """
    Verify that there is enough disk space for the LMDB map size.

    Args:
        check_path (Path): The directory that will hold the journal.
        required_bytes (int): The configured map size in bytes.
    """
    free_space: int = shutil.disk_usage(check_path).free
    if free_space < required_bytes:
        raise JournalError(
            f"Insufficient disk space for the journal. Required: "
            f"{required_bytes / 1024**2:.0f} MiB, "
            f"Available: {free_space / 1024**2:.0f} MiB on '{check_path}'."
        )


class ObjectStatus(Enum):
    """Recorded outcome of a copy."""

    COMPLETED = b"C"
    FAILED = b"F"


class TransferJournal:
    """
    A wrapper around an LMDB environment recording per-copy outcomes.

    Usable as a context manager; the environment is flushed and closed on
    exit.
    """

    def __init__(self, db_path: Path, map_size_mb: int = 256) -> None:
        """
        Initializes and opens the LMDB environment.

        Args:
            db_path (Path): The path of the LMDB environment directory.
            map_size_mb (int): The maximum size of the journal in megabytes.
        """
        self._env: Optional[lmdb.Environment] = None
        map_size: int = map_size_mb * 1024**2
        try:
            db_path.mkdir(parents=True, exist_ok=True)
            _check_disk_space(db_path, map_size)
            self._env = lmdb.open(str(db_path), map_size=map_size)
            logger.info(f"Transfer journal opened at '{db_path}'")
        except lmdb.Error as e:
            logger.error(f"Failed to open LMDB journal at '{db_path}': {e}")
            raise JournalError(f"LMDB initialization failed: {e}") from e

    def __enter__(self) -> "TransferJournal":
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        self.close()

    def get_status(self, key: str) -> Optional[ObjectStatus]:
        """
        Retrieves the recorded status of a copy.

        Args:
            key (str): The journal key to look up.

        Returns:
            Optional[ObjectStatus]: The status if recorded, else None.
        """
        if not self._env:
            raise JournalError("LMDB environment is not open.")
        with self._env.begin() as txn:
            value: Optional[bytes] = txn.get(key.encode("utf-8"))
            return ObjectStatus(value) if value else None

    def set_status(self, key: str, status: ObjectStatus) -> None:
        """
        Records the status of a copy.

        Args:
            key (str): The journal key to update.
            status (ObjectStatus): The new status to set.
        """
        if not self._env:
            raise JournalError("LMDB environment is not open.")
        try:
            with self._env.begin(write=True) as txn:
                txn.put(key.encode("utf-8"), status.value)
        except lmdb.MapFullError as e:
            raise JournalError("LMDB journal is full.") from e

    def is_completed(self, key: str) -> bool:
        """
        Checks if a copy is recorded as completed.

        Returns:
            bool: True if the key is marked `COMPLETED`, False otherwise.
        """
        return self.get_status(key) == ObjectStatus.COMPLETED

    def close(self) -> None:
        """Closes the LMDB environment."""
        if self._env:
            db_path: str = self._env.path()
            self._env.sync(True)
            self._env.close()
            self._env = None
            logger.info(f"Transfer journal closed at '{db_path}'.")
