from __future__ import annotations
"""Create, rename and delete synthetic folders as object-key rewrites.

None of these are atomic. A rename is a copy followed by a delete for every
object under the folder, and a delete removes every object under the prefix.
Each object step gets its own :class:`ObjectOutcome` so callers can show
exactly what failed and retry just that.
"""
import logging
from typing import Callable, Optional

from .models import FolderOperationKind, FolderOperationResult, ObjectOutcome
from .services import BackendError
from .sync import MutationKind
from .ui_utils import (
    ValidationError,
    folder_prefix,
    join_path,
    normalize_path,
    parent_path,
    validate_folder_name,
)

LOGGER = logging.getLogger(__name__)

MutationFn = Callable[[MutationKind], None]


def renamed_path(old_path: str, new_name: str) -> str:
    """Path of the sibling folder ``new_name`` next to ``old_path``."""
    return join_path(parent_path(old_path), new_name)


def renamed_key(key: str, old_path: str, new_path: str) -> str:
    old_prefix = folder_prefix(old_path)
    if not key.startswith(old_prefix):
        raise ValueError(f"'{key}' is not inside '{old_path}'")
    return folder_prefix(new_path) + key[len(old_prefix):]


class FolderMutator:
    """Folder operations over a gateway.

    Rename and delete are best-effort: one failing object does not stop the
    rest. ``on_mutation`` is called once per operation that got past
    validation and listing, even when no object matched or some steps failed.
    """

    def __init__(self, gateway, on_mutation: Optional[MutationFn] = None):
        self._gateway = gateway
        self._on_mutation = on_mutation or (lambda kind: None)

    def create_folder(self, bucket: str, path: str) -> FolderOperationResult:
        path = normalize_path(path)
        if not path:
            raise ValidationError("Folder path cannot be empty")
        for part in path.split("/"):
            validate_folder_name(part)
        marker = folder_prefix(path)
        self._gateway.put_folder_marker(bucket, marker)
        LOGGER.debug("Created folder marker '%s' in '%s'", marker, bucket)
        self._on_mutation(MutationKind.CREATE_FOLDER)
        return FolderOperationResult(
            kind=FolderOperationKind.CREATE,
            path=path,
            outcomes=[ObjectOutcome(key=marker)],
        )

    def create_subfolder(self, bucket: str, parent: str, name: str) -> FolderOperationResult:
        return self.create_folder(bucket, join_path(parent, validate_folder_name(name)))

    def rename_folder(self, bucket: str, old_path: str, new_name: str) -> FolderOperationResult:
        old_path = normalize_path(old_path)
        if not old_path:
            raise ValidationError("The bucket root cannot be renamed")
        new_name = validate_folder_name(new_name)
        new_path = renamed_path(old_path, new_name)
        if new_path == old_path:
            raise ValidationError("The new folder name is the same as the current one")

        keys = self._gateway.list_all_keys(bucket, prefix=folder_prefix(old_path))
        result = FolderOperationResult(kind=FolderOperationKind.RENAME, path=old_path, new_path=new_path)
        result.outcomes = self._move_keys(bucket, [(key, renamed_key(key, old_path, new_path)) for key in keys])
        self._log_result(result)
        self._on_mutation(MutationKind.RENAME_FOLDER)
        return result

    def delete_folder(self, bucket: str, path: str) -> FolderOperationResult:
        path = normalize_path(path)
        if not path:
            raise ValidationError("The bucket root cannot be deleted")
        result = FolderOperationResult(kind=FolderOperationKind.DELETE, path=path)
        result.outcomes = self._gateway.delete_objects_by_prefix(bucket, folder_prefix(path))
        self._log_result(result)
        self._on_mutation(MutationKind.DELETE_FOLDER)
        return result

    def retry_failed(self, bucket: str, result: FolderOperationResult) -> FolderOperationResult:
        """Re-run only the failed object steps of a rename or delete."""

        failed = result.failed
        retried = FolderOperationResult(kind=result.kind, path=result.path, new_path=result.new_path)
        if not failed:
            return retried
        if result.kind is FolderOperationKind.RENAME:
            retried.outcomes = self._move_keys(bucket, [(outcome.key, outcome.new_key) for outcome in failed])
            kind = MutationKind.RENAME_FOLDER
        elif result.kind is FolderOperationKind.DELETE:
            retried.outcomes = self._gateway.delete_keys(bucket, [outcome.key for outcome in failed])
            kind = MutationKind.DELETE_FOLDER
        else:
            raise ValueError(f"Cannot retry a {result.kind.value} operation")
        self._log_result(retried)
        self._on_mutation(kind)
        return retried

    def _move_keys(self, bucket: str, moves: list[tuple[str, str]]) -> list[ObjectOutcome]:
        outcomes = []
        for key, new_key in moves:
            try:
                self._gateway.move_object(bucket, key, new_key)
            except BackendError as exc:
                LOGGER.warning("Unable to move '%s' to '%s': %s", key, new_key, exc)
                outcomes.append(ObjectOutcome(key=key, new_key=new_key, error=exc))
            else:
                outcomes.append(ObjectOutcome(key=key, new_key=new_key))
        return outcomes

    @staticmethod
    def _log_result(result: FolderOperationResult) -> None:
        LOGGER.debug(
            "%s of '%s': %d succeeded, %d failed",
            result.kind.value,
            result.path,
            len(result.succeeded),
            len(result.failed),
        )
