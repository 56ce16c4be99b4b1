from __future__ import annotations
"""Bulk upload, download and delete with per-item progress.

Every item in a batch runs as its own background job and fails on its own;
siblings keep going. A batch completes once every item is terminal, and
completion is reported exactly once with the full list of failures.
"""
from collections import deque
from dataclasses import dataclass, field
import logging
import os
import threading
from typing import Callable, Iterable, Optional
import uuid

from .models import TransferKind, TransferStatus, TransferTask
from .services import BackendError, TransferCancelledError
from .sync import MutationKind
from .ui_utils import ValidationError, basename, compose_key, describe_failures

LOGGER = logging.getLogger(__name__)

DispatchFn = Callable[[Callable[[], None]], None]
RunFn = Callable[[Callable[[], None]], None]
MutationFn = Callable[[MutationKind], None]
ProgressFn = Callable[["ProgressEvent"], None]
CompleteFn = Callable[["BatchResult"], None]

_MUTATION_FOR_KIND = {
    TransferKind.UPLOAD: MutationKind.UPLOAD,
    TransferKind.DELETE: MutationKind.DELETE_FILES,
}


def start_daemon_thread(func: Callable[[], None]) -> None:
    threading.Thread(target=func, daemon=True).start()


@dataclass(frozen=True)
class ProgressEvent:
    batch_id: str
    kind: TransferKind
    identity: str
    percent: int


class PartialBatchFailure(Exception):
    """Some items of a bulk operation failed; ``failures`` names each one."""

    def __init__(self, kind: TransferKind, failures: list[tuple[str, Exception]]):
        self.kind = kind
        self.failures = failures
        names = describe_failures([item for item, _ in failures])
        super().__init__(f"{len(failures)} {kind.value}(s) failed: {names}")


@dataclass
class BatchResult:
    batch_id: str
    kind: TransferKind
    tasks: list[TransferTask] = field(default_factory=list)

    @property
    def succeeded(self) -> list[TransferTask]:
        return [task for task in self.tasks if task.status is TransferStatus.SUCCEEDED]

    @property
    def failed(self) -> list[TransferTask]:
        return [task for task in self.tasks if task.status is TransferStatus.FAILED]

    @property
    def partial_failure(self) -> Optional[PartialBatchFailure]:
        failed = self.failed
        if not failed:
            return None
        return PartialBatchFailure(self.kind, [(task.identity, task.error) for task in failed])


class TransferBatch:
    """Handle for one running bulk operation."""

    def __init__(
        self,
        kind: TransferKind,
        tasks: list[TransferTask],
        *,
        perform: Callable[[TransferTask, Callable[[int], None], Callable[[], bool]], None],
        run_in_background: RunFn,
        dispatch: DispatchFn,
        max_concurrency: int,
        on_progress: Optional[ProgressFn],
        on_complete: Optional[CompleteFn],
        on_mutation: Optional[MutationFn],
    ):
        self.id = uuid.uuid4().hex
        self.kind = kind
        self.tasks = tasks
        self._perform = perform
        self._run = run_in_background
        self._dispatch = dispatch
        self._max_concurrency = max(1, max_concurrency)
        self._on_progress = on_progress
        self._on_complete = on_complete
        self._on_mutation = on_mutation
        self._lock = threading.Lock()
        self._pending = deque(tasks)
        self._running = 0
        self._launching = False
        self._cancelled = False
        self._completed = False
        self._result: Optional[BatchResult] = None

    @property
    def is_complete(self) -> bool:
        return self._completed

    @property
    def cancel_requested(self) -> bool:
        return self._cancelled

    @property
    def result(self) -> Optional[BatchResult]:
        return self._result

    def start(self) -> "TransferBatch":
        LOGGER.debug("Starting %s batch %s with %d item(s)", self.kind.value, self.id, len(self.tasks))
        if not self.tasks:
            self._completed = True
            self._complete()
            return self
        self._launch_available()
        return self

    def cancel(self) -> None:
        """Stop pending items and ask in-flight transfers to stop."""

        with self._lock:
            if self._completed or self._cancelled:
                return
            self._cancelled = True
            skipped = list(self._pending)
            self._pending.clear()
        LOGGER.debug("Cancelling batch %s (%d pending item(s) skipped)", self.id, len(skipped))
        for task in skipped:
            self._finish(task, TransferCancelledError("Transfer cancelled before it started"))

    def _launch_available(self) -> None:
        with self._lock:
            if self._launching:
                # A launch loop is already running and will fill the freed slot.
                return
            self._launching = True
        try:
            while True:
                to_start = []
                with self._lock:
                    while self._pending and self._running < self._max_concurrency:
                        to_start.append(self._pending.popleft())
                        self._running += 1
                    if not to_start:
                        self._launching = False
                        return
                for task in to_start:
                    self._run(lambda task=task: self._run_task(task))
        except BaseException:
            with self._lock:
                self._launching = False
            raise

    def _run_task(self, task: TransferTask) -> None:
        if self._cancelled:
            self._finish(task, TransferCancelledError("Transfer cancelled before it started"), running=True)
            return
        task.status = TransferStatus.IN_PROGRESS
        try:
            self._perform(task, lambda percent: self._report_progress(task, percent), lambda: self._cancelled)
        except (BackendError, TransferCancelledError, OSError) as exc:
            LOGGER.warning("%s of '%s' failed: %s", self.kind.value, task.source_ref, exc)
            self._finish(task, exc, running=True)
        except Exception as exc:
            LOGGER.exception("Unexpected %s error for '%s'", self.kind.value, task.source_ref)
            self._finish(task, exc, running=True)
        else:
            self._report_progress(task, 100)
            self._finish(task, None, running=True)

    def _report_progress(self, task: TransferTask, percent: int) -> None:
        with self._lock:
            if percent <= task.progress_percent:
                return
            task.progress_percent = percent
        if self._on_progress:
            event = ProgressEvent(batch_id=self.id, kind=self.kind, identity=task.identity, percent=percent)
            self._dispatch(lambda: self._on_progress(event))

    def _finish(self, task: TransferTask, error: Optional[Exception], *, running: bool = False) -> None:
        with self._lock:
            task.error = error
            task.status = TransferStatus.FAILED if error else TransferStatus.SUCCEEDED
            if running:
                self._running -= 1
            done = not self._pending and self._running == 0 and all(t.status.is_terminal for t in self.tasks)
            if done:
                if self._completed:
                    return
                self._completed = True
        if done:
            self._complete()
        elif running:
            self._launch_available()

    def _complete(self) -> None:
        result = BatchResult(batch_id=self.id, kind=self.kind, tasks=list(self.tasks))
        self._result = result
        LOGGER.debug(
            "%s batch %s complete: %d succeeded, %d failed",
            self.kind.value,
            self.id,
            len(result.succeeded),
            len(result.failed),
        )

        def _notify() -> None:
            if self._on_complete:
                self._on_complete(result)
            mutation = _MUTATION_FOR_KIND.get(self.kind)
            if mutation and self._on_mutation:
                self._on_mutation(mutation)

        self._dispatch(_notify)


def _reject_duplicate_destinations(tasks: list[TransferTask]) -> None:
    seen: set[str] = set()
    duplicates: list[str] = []
    for task in tasks:
        if task.destination_key in seen and task.destination_key not in duplicates:
            duplicates.append(task.destination_key)
        seen.add(task.destination_key)
    if duplicates:
        raise ValidationError(f"Several selected files would be uploaded as {describe_failures(duplicates)}")


class BulkTransferCoordinator:
    """Starts bulk batches against a gateway."""

    def __init__(
        self,
        gateway,
        *,
        on_mutation: Optional[MutationFn] = None,
        dispatch: DispatchFn | None = None,
        run_in_background: RunFn | None = None,
        max_concurrency: int = 4,
    ):
        self._gateway = gateway
        self._on_mutation = on_mutation
        self._dispatch = dispatch or (lambda func: func())
        self._run = run_in_background or start_daemon_thread
        self.max_concurrency = max_concurrency

    def bulk_upload(
        self,
        bucket: str,
        destination_prefix: str,
        source_paths: Iterable[str],
        *,
        on_progress: Optional[ProgressFn] = None,
        on_complete: Optional[CompleteFn] = None,
    ) -> TransferBatch:
        tasks = [
            self._new_task(TransferKind.UPLOAD, str(path), compose_key(destination_prefix, basename(str(path))))
            for path in source_paths
        ]
        _reject_duplicate_destinations(tasks)

        def perform(task, progress, cancel_requested):
            self._gateway.upload_object(
                bucket,
                task.destination_key,
                task.source_ref,
                total_size=os.path.getsize(task.source_ref),
                progress_callback=progress,
                cancel_requested=cancel_requested,
            )

        return self._start(TransferKind.UPLOAD, tasks, perform, on_progress, on_complete)

    def bulk_download(
        self,
        bucket: str,
        keys: Iterable[str],
        destination_dir: str,
        *,
        on_progress: Optional[ProgressFn] = None,
        on_complete: Optional[CompleteFn] = None,
    ) -> TransferBatch:
        tasks = [
            self._new_task(TransferKind.DOWNLOAD, key, os.path.join(destination_dir, basename(key)))
            for key in keys
        ]

        def perform(task, progress, cancel_requested):
            os.makedirs(destination_dir, exist_ok=True)
            self._gateway.download_object(
                bucket,
                task.source_ref,
                task.destination_key,
                progress_callback=progress,
                cancel_requested=cancel_requested,
            )

        return self._start(TransferKind.DOWNLOAD, tasks, perform, on_progress, on_complete)

    def bulk_delete(
        self,
        bucket: str,
        keys: Iterable[str],
        *,
        on_progress: Optional[ProgressFn] = None,
        on_complete: Optional[CompleteFn] = None,
    ) -> TransferBatch:
        """Delete ``keys``; a key ending in ``/`` removes that whole prefix."""

        tasks = [self._new_task(TransferKind.DELETE, key, key) for key in keys]

        def perform(task, progress, cancel_requested):
            if cancel_requested():
                raise TransferCancelledError("Delete cancelled by user")
            if not task.source_ref.endswith("/"):
                self._gateway.delete_object(bucket, task.source_ref)
                return
            outcomes = self._gateway.delete_objects_by_prefix(bucket, task.source_ref)
            failed = [outcome.key for outcome in outcomes if not outcome.ok]
            if failed:
                raise BackendError(f"Unable to delete {describe_failures(failed)}")

        return self._start(TransferKind.DELETE, tasks, perform, on_progress, on_complete)

    def _start(self, kind, tasks, perform, on_progress, on_complete) -> TransferBatch:
        batch = TransferBatch(
            kind,
            tasks,
            perform=perform,
            run_in_background=self._run,
            dispatch=self._dispatch,
            max_concurrency=self.max_concurrency,
            on_progress=on_progress,
            on_complete=on_complete,
            on_mutation=self._on_mutation,
        )
        return batch.start()

    @staticmethod
    def _new_task(kind: TransferKind, source_ref: str, destination_key: str) -> TransferTask:
        return TransferTask(
            id=uuid.uuid4().hex,
            kind=kind,
            source_ref=source_ref,
            destination_key=destination_key,
        )
