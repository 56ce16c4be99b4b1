from __future__ import annotations
"""View-agnostic browser session that wires navigation, listing, folders and transfers."""
from dataclasses import dataclass, field, replace
from enum import Enum
import itertools
import logging
from typing import Callable, Iterable, Optional

from .controller import StorageController
from .folders import FolderMutator
from .listing import ListingEngine, ListingPage, SortColumn
from .models import (
    BucketInfo,
    FileEntry,
    FilePreview,
    FolderNode,
    FolderOperationKind,
    FolderOperationResult,
    ObjectDetails,
)
from .navigation import PathNavigator
from .services import BackendError, PreviewUnavailableError
from .settings import ConfigurationError
from .sync import EventStream, MutationKind, Observable, ViewSynchronizer
from .transfers import BatchResult, BulkTransferCoordinator, ProgressEvent, TransferBatch, start_daemon_thread
from .tree import FolderTreeBuilder, filter_tree
from .ui_utils import (
    ValidationError,
    describe_failures,
    folder_prefix,
    join_path,
    normalize_path,
    object_key,
    parent_path,
    validate_folder_name,
)

DispatchFn = Callable[[Callable[[], None]], None]
RunFn = Callable[[Callable[[], None]], None]

LOGGER = logging.getLogger(__name__)


class NotificationLevel(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class Notification:
    id: int
    level: NotificationLevel
    message: str
    items: tuple[str, ...] = ()


@dataclass(frozen=True)
class ListingState:
    bucket: str = ""
    path: str = ""
    entries: tuple[FileEntry, ...] = ()
    page: ListingPage = field(default_factory=ListingPage)
    selection: frozenset[str] = frozenset()
    loading: bool = False
    error: Optional[str] = None


@dataclass(frozen=True)
class TreeState:
    root: Optional[FolderNode] = None
    visible_root: Optional[FolderNode] = None
    search_term: str = ""
    loading: bool = False
    error: Optional[str] = None


_FetchTag = tuple[int, Optional[str], str]


class BrowserSession:
    """Runs backend work in the background and publishes results via subscribables.

    All state changes happen inside ``dispatch`` (the UI thread in a real
    application). Every listing and tree fetch is tagged with the refresh
    epoch, bucket and path it was issued for; results whose tag no longer
    matches are dropped, so only the latest navigation is ever shown.
    """

    def __init__(
        self,
        *,
        controller: StorageController | None = None,
        dispatch: DispatchFn | None = None,
        run_in_background: RunFn | None = None,
    ) -> None:
        self._controller = controller or StorageController()
        self._dispatch = dispatch or (lambda func: func())
        self._run = run_in_background or start_daemon_thread
        gateway = self._controller.gateway
        settings = self._controller.settings

        self.synchronizer = ViewSynchronizer()
        self.navigator = PathNavigator(self.synchronizer)
        self.listing = ListingEngine(page_size=settings.page_size)
        self._gateway = gateway
        self._tree_builder = FolderTreeBuilder(gateway)
        self._mutator = FolderMutator(gateway, on_mutation=self._mutation_from_worker)
        self._transfers = BulkTransferCoordinator(
            gateway,
            on_mutation=self.synchronizer.on_mutation,
            dispatch=self._dispatch,
            run_in_background=self._run,
            max_concurrency=settings.max_concurrency,
        )
        self._bucket: Optional[str] = None
        self._notification_ids = itertools.count(1)
        self._last_folder_result: Optional[FolderOperationResult] = None

        self.buckets: Observable[list[BucketInfo]] = Observable([])
        self.listing_state: Observable[ListingState] = Observable(ListingState())
        self.tree_state: Observable[TreeState] = Observable(TreeState())
        self.notifications: Observable[tuple[Notification, ...]] = Observable(())
        self.progress: EventStream[ProgressEvent] = EventStream()
        self.configuration_required: EventStream[str] = EventStream()

        self.synchronizer.subscribe(self._on_refresh)
        self.navigator.subscribe(lambda _path: self.listing.clear_selection())

    @property
    def bucket(self) -> Optional[str]:
        return self._bucket

    @property
    def current_path(self) -> str:
        return self.navigator.current_path

    @property
    def refresh_epoch(self) -> int:
        return self.synchronizer.refresh_epoch

    @property
    def last_folder_result(self) -> Optional[FolderOperationResult]:
        return self._last_folder_result

    # Connection and buckets

    def connect(self, *, on_done: Callable[[], None] | None = None) -> None:
        LOGGER.debug("Connecting with stored configuration")

        def task() -> None:
            try:
                buckets = self._controller.connect()
            except ConfigurationError as exc:
                LOGGER.warning("Configuration required: %s", exc)
                self._dispatch(lambda message=str(exc): self.configuration_required.emit(message))
            except BackendError as exc:
                LOGGER.exception("Connection error")
                self._dispatch(lambda exc=exc: self._notify_error(f"Unable to connect: {exc}"))
            except Exception as exc:
                LOGGER.exception("Unexpected connection error")
                self._dispatch(lambda exc=exc: self._notify_error(f"Unable to connect: {exc}"))
            else:
                LOGGER.debug("Connected (%d buckets)", len(buckets))
                self._dispatch(lambda: self._on_buckets(buckets))
            finally:
                if on_done:
                    self._dispatch(on_done)

        self._run(task)

    def refresh_buckets(self) -> None:
        self._in_background("Refreshing buckets", self._controller.refresh_buckets, on_success=self._on_buckets)

    def select_bucket(self, bucket: str) -> None:
        LOGGER.debug("Selecting bucket '%s'", bucket)
        self._bucket = bucket
        self._controller.remember_bucket(bucket)
        self.listing.reset()
        self.navigator.reset()
        self._publish_listing(loading=True)
        self.synchronizer.request_refresh()

    def _on_buckets(self, buckets: list[BucketInfo]) -> None:
        self.buckets.set(list(buckets))
        last = self._controller.settings.last_bucket
        if self._bucket is None and last and any(bucket.name == last for bucket in buckets):
            self.select_bucket(last)

    # Navigation

    def navigate_to(self, path: str) -> None:
        self.navigator.navigate_to(path)

    def navigate_up(self) -> None:
        self.navigator.navigate_up()

    def navigate_to_breadcrumb_segment(self, index: int) -> None:
        try:
            self.navigator.navigate_to_breadcrumb_segment(index)
        except ValidationError as exc:
            self._notify_error(str(exc))

    def open_entry(self, name: str) -> bool:
        """Enter the folder ``name`` of the current listing; returns ``False`` for files."""
        entry = self._entry(name)
        if entry is None or not entry.is_folder:
            return False
        self.navigator.enter(entry.name)
        return True

    def refresh(self) -> None:
        self.synchronizer.request_refresh()

    # Listing controls

    def search(self, term: str) -> None:
        self.listing.set_search(term)
        self._publish_listing()

    def sort_by(self, column: SortColumn | str) -> None:
        self.listing.toggle_sort(column)
        self._publish_listing()

    def go_to_page(self, page: int) -> None:
        self.listing.set_page(page)
        self._publish_listing()

    def set_page_size(self, page_size: int) -> None:
        try:
            self.listing.set_page_size(page_size)
        except ValidationError as exc:
            self._notify_error(str(exc))
            return
        settings = replace(self._controller.settings, page_size=page_size)
        self._controller.save_settings(settings)
        self._publish_listing()

    def select_files(self, names: Iterable[str]) -> None:
        self.listing.select(names)
        self._publish_listing()

    def toggle_selection(self, name: str) -> None:
        self.listing.toggle_selection(name)
        self._publish_listing()

    def clear_selection(self) -> None:
        self.listing.clear_selection()
        self._publish_listing()

    def search_folders(self, term: str) -> None:
        state = self.tree_state.value
        visible = filter_tree(state.root, term) if state.root else None
        self.tree_state.set(replace(state, search_term=term or "", visible_root=visible))

    # Folder operations

    def create_folder(self, name: str, *, parent: str | None = None) -> None:
        bucket = self._require_bucket()
        if bucket is None:
            return
        try:
            name = validate_folder_name(name)
        except ValidationError as exc:
            self._notify_error(str(exc))
            return
        parent = self.current_path if parent is None else normalize_path(parent)
        path = join_path(parent, name)
        self._in_background(
            f"Creating folder '{path}'",
            lambda: self._mutator.create_subfolder(bucket, parent, name),
            on_success=lambda result: self._on_folder_result(result, f"Created folder '{name}'"),
            items=(path,),
        )

    def rename_folder(self, path: str, new_name: str) -> None:
        bucket = self._require_bucket()
        if bucket is None:
            return
        path = normalize_path(path)
        try:
            if not path:
                raise ValidationError("The bucket root cannot be renamed")
            new_name = validate_folder_name(new_name)
        except ValidationError as exc:
            self._notify_error(str(exc))
            return
        self._in_background(
            f"Renaming folder '{path}'",
            lambda: self._mutator.rename_folder(bucket, path, new_name),
            on_success=lambda result: self._on_folder_result(result, f"Renamed '{path}' to '{new_name}'"),
            items=(path,),
        )

    def delete_folder(self, path: str) -> None:
        """Delete a folder and everything in it; the caller confirms with the user first."""
        bucket = self._require_bucket()
        if bucket is None:
            return
        path = normalize_path(path)
        if not path:
            self._notify_error("The bucket root cannot be deleted")
            return
        self._in_background(
            f"Deleting folder '{path}'",
            lambda: self._mutator.delete_folder(bucket, path),
            on_success=lambda result: self._on_folder_result(result, f"Deleted folder '{path}'"),
            items=(path,),
        )

    def retry_last_folder_operation(self) -> None:
        bucket = self._require_bucket()
        result = self._last_folder_result
        if bucket is None or result is None or result.ok:
            return
        self._in_background(
            f"Retrying {result.kind.value} of '{result.path}'",
            lambda: self._mutator.retry_failed(bucket, result),
            on_success=lambda retried: self._on_folder_result(retried, f"Retried {result.kind.value} of '{result.path}'"),
            items=(result.path,),
        )

    def _on_folder_result(self, result: FolderOperationResult, success_message: str) -> None:
        self._last_folder_result = result
        if not result.outcomes:
            self._notify(
                NotificationLevel.INFO,
                f"Folder '{result.path}' has no objects; nothing to {result.kind.value}",
                items=(result.path,),
            )
            return
        if result.failed:
            failed = [outcome.key for outcome in result.failed]
            self._notify_error(
                f"{result.kind.value.capitalize()} of '{result.path}' failed for "
                f"{len(failed)} of {len(result.outcomes)} object(s): {describe_failures(failed)}",
                items=failed,
            )
            return
        self._notify(NotificationLevel.SUCCESS, success_message)
        self._follow_folder_change(result)

    def _follow_folder_change(self, result: FolderOperationResult) -> None:
        current = self.current_path
        inside = current == result.path or current.startswith(folder_prefix(result.path))
        if not inside:
            return
        if result.new_path is not None:
            self.navigator.navigate_to(result.new_path + current[len(result.path):])
        elif result.kind is FolderOperationKind.DELETE:
            self.navigator.navigate_to(parent_path(result.path))

    # Bulk transfers

    def upload_files(self, source_paths: Iterable[str]) -> Optional[TransferBatch]:
        bucket = self._require_bucket()
        if bucket is None:
            return None
        paths = [str(path) for path in source_paths]
        if not paths:
            self._notify_error("Select at least one file to upload")
            return None
        try:
            return self._transfers.bulk_upload(
                bucket,
                folder_prefix(self.current_path),
                paths,
                on_progress=self.progress.emit,
                on_complete=self._on_batch_complete,
            )
        except ValidationError as exc:
            self._notify_error(str(exc))
            return None

    def download_files(self, names: Iterable[str] | None = None) -> Optional[TransferBatch]:
        bucket = self._require_bucket()
        if bucket is None:
            return None
        entries = self._entries_for(names)
        files = [entry for entry in entries if not entry.is_folder]
        if not files:
            self._notify_error("Select at least one file to download")
            return None
        if len(files) < len(entries):
            self._notify(NotificationLevel.INFO, "Folders are skipped when downloading")
        keys = [object_key(self.current_path, entry.name) for entry in files]
        return self._transfers.bulk_download(
            bucket,
            keys,
            self._controller.settings.download_dir,
            on_progress=self.progress.emit,
            on_complete=self._on_batch_complete,
        )

    def delete_files(self, names: Iterable[str] | None = None) -> Optional[TransferBatch]:
        """Delete the named entries (default: the selection); folders go with their contents."""
        bucket = self._require_bucket()
        if bucket is None:
            return None
        entries = self._entries_for(names)
        if not entries:
            self._notify_error("Select at least one item to delete")
            return None
        keys = [
            object_key(self.current_path, entry.name) + ("/" if entry.is_folder else "")
            for entry in entries
        ]
        return self._transfers.bulk_delete(
            bucket,
            keys,
            on_progress=self.progress.emit,
            on_complete=self._on_batch_complete,
        )

    def _on_batch_complete(self, result: BatchResult) -> None:
        failure = result.partial_failure
        if failure is not None:
            items = [item for item, _ in failure.failures]
            self._notify_error(
                f"{len(items)} of {len(result.tasks)} {result.kind.value}(s) failed: {describe_failures(items)}",
                items=items,
            )
            return
        self.listing.clear_selection()
        self._publish_listing()
        self._notify(NotificationLevel.SUCCESS, f"{len(result.tasks)} {result.kind.value}(s) completed")

    # Details and preview

    def get_file_details(self, name: str, *, on_success: Callable[[ObjectDetails], None]) -> None:
        bucket = self._require_bucket()
        if bucket is None:
            return
        key = object_key(self.current_path, name)
        self._in_background(
            f"Reading details of '{name}'",
            lambda: self._gateway.get_object_details(bucket, key),
            on_success=on_success,
            items=(name,),
        )

    def get_file_preview(self, name: str, *, on_success: Callable[[FilePreview], None]) -> None:
        bucket = self._require_bucket()
        if bucket is None:
            return
        key = object_key(self.current_path, name)
        max_bytes = self._controller.settings.preview_max_bytes
        self._in_background(
            f"Previewing '{name}'",
            lambda: self._gateway.get_preview(bucket, key, max_bytes=max_bytes),
            on_success=on_success,
            items=(name,),
        )

    # Notifications

    def dismiss_notification(self, notification_id: int) -> None:
        remaining = tuple(n for n in self.notifications.value if n.id != notification_id)
        self.notifications.set(remaining)

    def _notify(self, level: NotificationLevel, message: str, items: Iterable[str] = ()) -> Notification:
        notification = Notification(
            id=next(self._notification_ids),
            level=level,
            message=message,
            items=tuple(items),
        )
        self.notifications.set(self.notifications.value + (notification,))
        return notification

    def _notify_error(self, message: str, items: Iterable[str] = ()) -> Notification:
        return self._notify(NotificationLevel.ERROR, message, items)

    # Refresh handling

    def _mutation_from_worker(self, kind: MutationKind) -> None:
        self._dispatch(lambda: self.synchronizer.on_mutation(kind))

    def _on_refresh(self, epoch: int, kind: MutationKind) -> None:
        if self._bucket is None:
            return
        tag: _FetchTag = (epoch, self._bucket, self.current_path)
        self._fetch_listing(tag)
        self._fetch_tree(tag)

    def _is_current(self, tag: _FetchTag) -> bool:
        return tag == (self.synchronizer.refresh_epoch, self._bucket, self.current_path)

    def _fetch_listing(self, tag: _FetchTag) -> None:
        _, bucket, path = tag
        self._publish_listing(loading=True)
        LOGGER.debug("Listing '%s/%s' (epoch %d)", bucket, path, tag[0])

        def task() -> None:
            try:
                entries = self._gateway.list_prefixed(bucket, folder_prefix(path))
            except Exception as exc:
                LOGGER.exception("List error for '%s/%s'", bucket, path)
                self._dispatch(lambda exc=exc: self._apply_listing_error(tag, exc))
            else:
                self._dispatch(lambda: self._apply_listing(tag, entries))

        self._run(task)

    def _apply_listing(self, tag: _FetchTag, entries: list[FileEntry]) -> None:
        if not self._is_current(tag):
            LOGGER.debug("Discarding stale listing for '%s' (epoch %d)", tag[2], tag[0])
            return
        self.listing.set_entries(tag[2], entries)
        self._publish_listing()

    def _apply_listing_error(self, tag: _FetchTag, exc: Exception) -> None:
        if not self._is_current(tag):
            return
        self.listing.set_entries(tag[2], [])
        self._publish_listing(error=str(exc))
        self._notify_error(f"Unable to list '{tag[2] or tag[1]}': {exc}", items=(tag[2] or tag[1],))

    def _fetch_tree(self, tag: _FetchTag) -> None:
        _, bucket, _ = tag
        self.tree_state.set(replace(self.tree_state.value, loading=True, error=None))

        def task() -> None:
            try:
                root = self._tree_builder.build(bucket)
            except Exception as exc:
                LOGGER.exception("Folder tree error for '%s'", bucket)
                self._dispatch(lambda exc=exc: self._apply_tree(tag, None, str(exc)))
            else:
                self._dispatch(lambda: self._apply_tree(tag, root, None))

        self._run(task)

    def _apply_tree(self, tag: _FetchTag, root: Optional[FolderNode], error: Optional[str]) -> None:
        if not self._is_current(tag):
            LOGGER.debug("Discarding stale folder tree (epoch %d)", tag[0])
            return
        state = self.tree_state.value
        if root is None:
            self.tree_state.set(replace(state, loading=False, error=error))
            return
        visible = filter_tree(root, state.search_term)
        self.tree_state.set(TreeState(root=root, visible_root=visible, search_term=state.search_term))

    def _publish_listing(self, *, loading: bool = False, error: Optional[str] = None) -> None:
        self.listing_state.set(
            ListingState(
                bucket=self._bucket or "",
                path=self.current_path,
                entries=tuple(self.listing.entries),
                page=self.listing.current_page(),
                selection=self.listing.selection,
                loading=loading,
                error=error,
            )
        )

    # Helpers

    def _in_background(
        self,
        description: str,
        work: Callable[[], object],
        *,
        on_success: Callable[[object], None] | None = None,
        items: Iterable[str] = (),
    ) -> None:
        items = tuple(items)

        def task() -> None:
            try:
                result = work()
            except ConfigurationError as exc:
                LOGGER.warning("%s: configuration required (%s)", description, exc)
                self._dispatch(lambda message=str(exc): self.configuration_required.emit(message))
            except (BackendError, PreviewUnavailableError, ValidationError) as exc:
                LOGGER.warning("%s failed: %s", description, exc)
                self._dispatch(lambda exc=exc: self._notify_error(f"{description} failed: {exc}", items))
            except Exception as exc:
                LOGGER.exception("Unexpected error: %s", description)
                self._dispatch(lambda exc=exc: self._notify_error(f"{description} failed: {exc}", items))
            else:
                if on_success:
                    self._dispatch(lambda: on_success(result))

        self._run(task)

    def _require_bucket(self) -> Optional[str]:
        if self._bucket is None:
            self._notify_error("Select a bucket first")
        return self._bucket

    def _entry(self, name: str) -> Optional[FileEntry]:
        return next((entry for entry in self.listing.entries if entry.name == name), None)

    def _entries_for(self, names: Iterable[str] | None) -> list[FileEntry]:
        if names is None:
            return self.listing.selected_entries()
        wanted = set(names)
        return [entry for entry in self.listing.entries if entry.name in wanted]
