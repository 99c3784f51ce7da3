# src/tidecopy/report.py
"""
Per-task outcomes of a run.

Workers append results concurrently through a `ReportCollector`; the final
`TransferReport` presents them in plan order regardless of completion order.
"""

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import numpy as np
import polars as pl

from tidecopy.models import FailureKind, TaskState, TransferPlan, TransferTask

logger: logging.Logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TaskResult:
    """
    An immutable snapshot of one task's terminal (or last) state.

    Attributes:
        index (int): Position of the task in the plan.
        source (str): The source object URI.
        destination (str): The destination object URI.
        state (TaskState): The state the task ended in.
        failure (FailureKind, optional): Failure classification, if failed.
        attempts (int): Attempts started.
        bytes_transferred (int): Bytes written on the final attempt,
            including any resumed offset.
        duration_s (float): Wall time spent on the task.
        error (str, optional): Message of the last error.
        skipped (bool): True if the journal showed the copy was already done.
    """

    index: int
    source: str
    destination: str
    state: TaskState
    failure: Optional[FailureKind] = None
    attempts: int = 0
    bytes_transferred: int = 0
    duration_s: float = 0.0
    error: Optional[str] = None
    skipped: bool = False

    @classmethod
    def from_task(
        cls,
        task: TransferTask,
        bytes_transferred: int = 0,
        duration_s: float = 0.0,
        error: Optional[str] = None,
        skipped: bool = False,
    ) -> "TaskResult":
        return cls(
            index=task.index,
            source=str(task.source),
            destination=str(task.destination),
            state=task.state,
            failure=task.failure,
            attempts=task.attempts,
            bytes_transferred=bytes_transferred,
            duration_s=duration_s,
            error=error,
            skipped=skipped,
        )


@dataclass(frozen=True)
class TransferReport:
    """
    Outcome of executing a plan: exactly one result per task, in plan order.

    Attributes:
        results (Tuple[TaskResult, ...]): Results ordered by task index.
        cancelled (bool): Whether the run was cancelled before finishing.
    """

    results: Tuple[TaskResult, ...]
    cancelled: bool = False

    def __len__(self) -> int:
        return len(self.results)

    def with_state(self, state: TaskState) -> List[TaskResult]:
        return [r for r in self.results if r.state == state]

    @property
    def succeeded(self) -> List[TaskResult]:
        return self.with_state(TaskState.SUCCEEDED)

    @property
    def failed(self) -> List[TaskResult]:
        return self.with_state(TaskState.FAILED)

    @property
    def ok(self) -> bool:
        """True only when every task succeeded."""
        return all(r.state == TaskState.SUCCEEDED for r in self.results)

    @property
    def bytes_transferred(self) -> int:
        return sum(r.bytes_transferred for r in self.results if not r.skipped)

    def duration_percentiles(self) -> Dict[str, float]:
        """
        Median and p90 of the wall time of tasks that were actually run.

        Returns:
            Dict[str, float]: ``{"p50": ..., "p90": ...}`` in seconds, zeros
                when no task ran.
        """
        durations: List[float] = [
            r.duration_s for r in self.results if r.attempts > 0 and not r.skipped
        ]
        if not durations:
            return {"p50": 0.0, "p90": 0.0}
        return {
            "p50": float(np.median(durations)),
            "p90": float(np.percentile(durations, 90)),
        }

    def summary(self) -> Dict[str, object]:
        percentiles: Dict[str, float] = self.duration_percentiles()
        return {
            "tasks": len(self.results),
            "succeeded": len(self.succeeded),
            "skipped": sum(1 for r in self.results if r.skipped),
            "failed": len(self.failed),
            "pending": len(self.with_state(TaskState.PENDING)),
            "bytes_transferred": self.bytes_transferred,
            "task_seconds_p50": round(percentiles["p50"], 3),
            "task_seconds_p90": round(percentiles["p90"], 3),
            "cancelled": self.cancelled,
        }

    def to_frame(self) -> pl.DataFrame:
        """
        Returns the results as a Polars DataFrame, one row per task.

        Returns:
            pl.DataFrame: Columns mirror the `TaskResult` fields.
        """
        return pl.DataFrame(
            {
                "index": [r.index for r in self.results],
                "source": [r.source for r in self.results],
                "destination": [r.destination for r in self.results],
                "state": [r.state.value for r in self.results],
                "failure": [
                    r.failure.value if r.failure else None for r in self.results
                ],
                "attempts": [r.attempts for r in self.results],
                "bytes_transferred": [r.bytes_transferred for r in self.results],
                "duration_s": [r.duration_s for r in self.results],
                "error": [r.error for r in self.results],
                "skipped": [r.skipped for r in self.results],
            },
            schema={
                "index": pl.Int64,
                "source": pl.Utf8,
                "destination": pl.Utf8,
                "state": pl.Utf8,
                "failure": pl.Utf8,
                "attempts": pl.Int64,
                "bytes_transferred": pl.Int64,
                "duration_s": pl.Float64,
                "error": pl.Utf8,
                "skipped": pl.Boolean,
            },
        )

    def write(self, path: Path) -> None:
        """
        Exports the report; ``.parquet`` writes Parquet, anything else CSV.

        Args:
            path (Path): The output file.
        """
        frame: pl.DataFrame = self.to_frame()
        path.parent.mkdir(parents=True, exist_ok=True)
        if path.suffix == ".parquet":
            frame.write_parquet(path)
        else:
            frame.write_csv(path)
        logger.info(f"Transfer report written to '{path}'.")


class ReportCollector:
    """Append-only, lock-protected collection of task results."""

    def __init__(self, plan: TransferPlan) -> None:
        self._plan: TransferPlan = plan
        self._results: Dict[int, TaskResult] = {}
        self._lock: asyncio.Lock = asyncio.Lock()

    async def append(self, result: TaskResult) -> None:
        async with self._lock:
            if result.index in self._results:
                raise ValueError(f"Task {result.index} was already reported")
            self._results[result.index] = result

    def build(self, cancelled: bool = False) -> TransferReport:
        """
        Produces the report, adding a snapshot for every unreported task.

        Returns:
            TransferReport: One result per plan task, in plan order.
        """
        results: List[TaskResult] = [
            self._results.get(task.index) or TaskResult.from_task(task)
            for task in self._plan.tasks
        ]
        return TransferReport(results=tuple(results), cancelled=cancelled)
