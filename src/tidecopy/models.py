# src/tidecopy/models.py
"""Value types shared by the lister, planner and executor."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple

from tidecopy.locator import Locator


@dataclass(frozen=True)
class ObjectDescriptor:
    """
    Metadata for one listed object.

    Attributes:
        key (str): The object key (or path) within its bucket or root.
        size (int): Size in bytes.
        etag (str): Opaque checksum or version marker from the backend.
        last_modified (datetime, optional): Last modification time.
    """

    key: str
    size: int
    etag: str = ""
    last_modified: Optional[datetime] = None


class IfExists(Enum):
    """What to do when a destination object already exists."""

    OVERWRITE = "overwrite"
    ERROR = "error"

    @property
    def label(self) -> str:
        return f"--if-exists {self.value}"


class TaskState(Enum):
    """Lifecycle state of a transfer task."""

    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class FailureKind(Enum):
    """Whether a failed task could succeed if run again."""

    RETRYABLE = "retryable"
    FATAL = "fatal"


@dataclass
class TransferTask:
    """
    The unit of work copying one object.

    Created by the planner. Only the executor mutates `state`, `failure`
    and `attempts`.

    Attributes:
        index (int): Position of the task in its plan.
        source (Locator): The single source object.
        destination (Locator): The single destination object.
        expected_size (int): Size reported by the source listing.
        etag (str): Source checksum at planning time.
        state (TaskState): Current lifecycle state.
        failure (FailureKind, optional): Set when `state` is FAILED.
        attempts (int): Number of attempts started so far.
    """

    index: int
    source: Locator
    destination: Locator
    expected_size: int
    etag: str = ""
    state: TaskState = TaskState.PENDING
    failure: Optional[FailureKind] = None
    attempts: int = 0

    @property
    def journal_key(self) -> str:
        """Identity of this copy across runs; changes when the source does."""
        return f"{self.source}|{self.destination}|{self.etag}"


@dataclass(frozen=True)
class TransferPlan:
    """
    The validated, ordered set of tasks for one run.

    Attributes:
        source (Locator): The source locator the plan was built from.
        destination (Locator): The destination locator.
        tasks (Tuple[TransferTask, ...]): Tasks in source enumeration order.
        delete_source (bool): Whether sources are deleted after copying.
        if_exists (IfExists): Policy for destination objects that exist.
    """

    source: Locator
    destination: Locator
    tasks: Tuple[TransferTask, ...]
    delete_source: bool = False
    if_exists: IfExists = IfExists.OVERWRITE

    def __len__(self) -> int:
        return len(self.tasks)

    @property
    def total_bytes(self) -> int:
        return sum(task.expected_size for task in self.tasks)
