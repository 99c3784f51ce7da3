# src/tidecopy/executor.py
"""
Executes transfer plans with a bounded pool of workers.

Each worker pulls tasks from a shared queue and copies one object at a time,
streaming bytes from the source client into a destination sink. Transient
failures are retried with exponential backoff, resuming from the last byte
written when both backends allow it. A failing task never affects its
siblings: every task is driven to a terminal state and reported.
"""

import asyncio
import logging
import time
from contextlib import aclosing
from dataclasses import dataclass
from typing import TYPE_CHECKING, AsyncIterator, List, Optional, Tuple

from tidecopy.backends.base import BackendClient, ByteSink
from tidecopy.config import RunConfig
from tidecopy.exceptions import (
    Cancelled,
    TidecopyError,
    TransferError,
    TransientNetworkError,
)
from tidecopy.journal import ObjectStatus, TransferJournal
from tidecopy.models import (
    FailureKind,
    IfExists,
    TaskState,
    TransferPlan,
    TransferTask,
)
from tidecopy.report import ReportCollector, TaskResult, TransferReport
from tidecopy.retry import RetryPolicy

if TYPE_CHECKING:
    from rich.progress import Progress, TaskID

logger: logging.Logger = logging.getLogger(__name__)


@dataclass
class _Attempt:
    """Byte position reached by the most recent attempt of a task."""

    bytes_written: int = 0


class TransferExecutor:
    """Runs every task of a plan and collects a `TransferReport`."""

    def __init__(
        self,
        source_client: BackendClient,
        dest_client: BackendClient,
        config: RunConfig,
        retry_policy: Optional[RetryPolicy] = None,
        cancel_event: Optional[asyncio.Event] = None,
        journal: Optional[TransferJournal] = None,
        progress: Optional["Progress"] = None,
    ) -> None:
        """
        Args:
            source_client (BackendClient): Client for the source backend.
            dest_client (BackendClient): Client for the destination backend.
            config (RunConfig): Run settings.
            retry_policy (RetryPolicy, optional): Defaults to one built from
                `config`.
            cancel_event (asyncio.Event, optional): Stops scheduling when set.
            journal (TransferJournal, optional): Skips and records copies.
            progress (Progress, optional): A rich progress display to update.
        """
        self._source: BackendClient = source_client
        self._dest: BackendClient = dest_client
        self._config: RunConfig = config
        self._retry: RetryPolicy = retry_policy or RetryPolicy.from_config(config)
        self._cancel_event: asyncio.Event = cancel_event or asyncio.Event()
        self._journal: Optional[TransferJournal] = journal
        self._progress: Optional["Progress"] = progress
        self._progress_task_id: Optional["TaskID"] = None
        self._queue: Optional["asyncio.Queue[TransferTask]"] = None
        self._in_flight: int = 0

    @property
    def resumable(self) -> bool:
        """Whether a retry can continue from the last byte written."""
        return self._source.supports_range_reads and self._dest.supports_offset_writes

    def pending(self) -> Tuple[int, int]:
        """
        Counts the work left in the current run.

        Returns:
            Tuple[int, int]: Tasks being copied right now, and tasks still
                queued that cancellation would leave unstarted.
        """
        queued: int = self._queue.qsize() if self._queue is not None else 0
        return self._in_flight, queued

    async def execute(
        self, plan: TransferPlan, concurrency: Optional[int] = None
    ) -> TransferReport:
        """
        Runs the plan with at most `concurrency` tasks in flight.

        Args:
            plan (TransferPlan): The plan to execute.
            concurrency (int, optional): Defaults to the configured value.

        Returns:
            TransferReport: Exactly one result per task, in plan order.
        """
        limit: int = concurrency or self._config.concurrency
        collector: ReportCollector = ReportCollector(plan)
        queue: asyncio.Queue[TransferTask] = asyncio.Queue()
        for task in plan.tasks:
            queue.put_nowait(task)
        self._queue = queue

        if self._progress is not None:
            self._progress_task_id = self._progress.add_task(
                "Copying...", total=len(plan)
            )

        num_workers: int = max(1, min(limit, len(plan)))
        logger.info(f"Executing {len(plan)} task(s) with {num_workers} worker(s).")
        workers: List[asyncio.Task[None]] = [
            asyncio.create_task(self._worker(i, queue, collector, plan))
            for i in range(num_workers)
        ]
        await asyncio.gather(*workers)

        cancelled: bool = self._cancel_event.is_set()
        if cancelled:
            logger.warning(
                f"Run cancelled with {queue.qsize()} task(s) never started."
            )
        report: TransferReport = collector.build(cancelled=cancelled)
        logger.info(f"Transfer summary: {report.summary()}")
        return report

    async def _worker(
        self,
        worker_id: int,
        queue: "asyncio.Queue[TransferTask]",
        collector: ReportCollector,
        plan: TransferPlan,
    ) -> None:
        """
        Processes tasks until the queue is empty or cancellation is signaled.

        Args:
            worker_id (int): A unique identifier for this worker.
            queue (asyncio.Queue[TransferTask]): Tasks not yet started.
            collector (ReportCollector): Receives each task's result.
            plan (TransferPlan): The plan the tasks belong to.
        """
        logger.debug(f"Worker {worker_id} started.")
        while not self._cancel_event.is_set():
            try:
                task: TransferTask = queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            self._in_flight += 1
            try:
                result: TaskResult = await self._run_task(task, plan)
            finally:
                self._in_flight -= 1
            await collector.append(result)
            queue.task_done()
            if self._progress is not None and self._progress_task_id is not None:
                self._progress.update(self._progress_task_id, advance=1)
        logger.debug(f"Worker {worker_id} shutting down.")

    def _fail(self, task: TransferTask, kind: FailureKind) -> None:
        task.state = TaskState.FAILED
        task.failure = kind

    async def _run_task(self, task: TransferTask, plan: TransferPlan) -> TaskResult:
        """
        Drives one task to a terminal state, retrying transient failures.

        Args:
            task (TransferTask): The task to run.
            plan (TransferPlan): Supplies the move and if-exists settings.

        Returns:
            TaskResult: The task's final snapshot.
        """
        start_time: float = time.monotonic()
        if self._journal is not None and self._journal.is_completed(task.journal_key):
            logger.debug(f"Skipping '{task.source}', already copied.")
            task.state = TaskState.SUCCEEDED
            return TaskResult.from_task(
                task, bytes_transferred=task.expected_size, skipped=True
            )

        task.state = TaskState.IN_FLIGHT
        attempt: _Attempt = _Attempt()
        error: Optional[str] = None
        while True:
            task.attempts += 1
            try:
                await self._copy(task, attempt, plan.if_exists)
                if plan.delete_source:
                    await self._source.delete(task.source.path)
                task.state = TaskState.SUCCEEDED
                error = None
                break
            except TransientNetworkError as e:
                error = str(e)
                if task.attempts >= self._retry.max_attempts:
                    logger.error(
                        f"Giving up on '{task.source}' after {task.attempts} "
                        f"attempt(s): {e}"
                    )
                    self._fail(task, FailureKind.FATAL)
                    break
                logger.warning(
                    f"Transient failure copying '{task.source}' "
                    f"(attempt {task.attempts}/{self._retry.max_attempts}): {e}"
                )
                try:
                    await self._retry.wait(task.attempts, self._cancel_event)
                except Cancelled:
                    self._fail(task, FailureKind.RETRYABLE)
                    break
            except TidecopyError as e:
                error = str(e)
                logger.error(
                    f"Failed to copy '{task.source}': {type(e).__name__} - {e}"
                )
                self._fail(task, FailureKind.FATAL)
                break
            except Exception as e:
                error = f"{type(e).__name__}: {e}"
                logger.exception(
                    f"An unexpected error occurred copying '{task.source}'"
                )
                self._fail(task, FailureKind.FATAL)
                break

        if self._journal is not None:
            self._journal.set_status(
                task.journal_key,
                ObjectStatus.COMPLETED
                if task.state == TaskState.SUCCEEDED
                else ObjectStatus.FAILED,
            )
        if task.state == TaskState.SUCCEEDED:
            logger.debug(f"Copied '{task.source}' -> '{task.destination}'")
        return TaskResult.from_task(
            task,
            bytes_transferred=attempt.bytes_written,
            duration_s=time.monotonic() - start_time,
            error=error,
        )

    async def _copy(
        self,
        task: TransferTask,
        attempt: _Attempt,
        if_exists: IfExists = IfExists.OVERWRITE,
    ) -> None:
        """
        Performs one attempt at copying a task's object.

        When the destination can copy straight from the source, the storage
        service does the work and no bytes pass through this process.
        Otherwise objects above the stream threshold are written chunk by
        chunk, and smaller ones are buffered and written in one call.

        Args:
            task (TransferTask): The task being attempted.
            attempt (_Attempt): Carries the resume offset in and the bytes
                written out.
            if_exists (IfExists): Policy for an existing destination object.

        Raises:
            TransferError: If the bytes written do not match the planned size.
            DestinationExists: If the destination exists and may not be
                replaced.
        """
        if self._dest.can_copy_from(self._source):
            await self._dest.copy_from(
                self._source,
                task.source.path,
                task.destination.path,
                task.expected_size,
                if_exists,
            )
            attempt.bytes_written = task.expected_size
            return

        resumable: bool = self.resumable
        offset: int = attempt.bytes_written if resumable else 0
        sink: ByteSink = await self._dest.open_write(
            task.destination.path, offset, if_exists
        )
        offset = sink.offset
        attempt.bytes_written = offset
        if offset:
            logger.info(f"Resuming '{task.source}' at byte {offset}.")

        try:
            reader: AsyncIterator[bytes] = self._source.open_read(
                task.source.path, offset
            )
            async with aclosing(reader) as stream:
                if task.expected_size > self._config.stream_threshold_bytes:
                    async for chunk in stream:
                        await sink.write(chunk)
                        attempt.bytes_written += len(chunk)
                else:
                    buffer: bytearray = bytearray()
                    async for chunk in stream:
                        buffer.extend(chunk)
                    await sink.write(bytes(buffer))
                    attempt.bytes_written += len(buffer)

            if attempt.bytes_written != task.expected_size:
                raise TransferError(
                    f"Integrity check failed for '{task.source}': size mismatch "
                    f"({task.expected_size} planned, {attempt.bytes_written} copied)"
                )
            await sink.commit()
        except BaseException as e:
            await sink.abort(
                keep_partial=resumable and isinstance(e, TransientNetworkError)
            )
            raise
