from __future__ import annotations
"""Data models representing bucket contents, folders and transfers."""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


@dataclass
class BucketInfo:
    """A bucket as shown in the bucket picker."""

    name: str
    created_at: Optional[datetime] = None
    location: Optional[str] = None


@dataclass
class FolderNode:
    """A synthetic folder derived from object key prefixes."""

    name: str
    path: str
    children: list[FolderNode] = field(default_factory=list)

    @property
    def is_root(self) -> bool:
        return self.path == ""


@dataclass(frozen=True)
class FileEntry:
    """One row of a listing for a single prefix."""

    name: str
    size: int = 0
    updated_at: Optional[datetime] = None
    is_folder: bool = False
    content_type: Optional[str] = None


@dataclass
class ObjectDetails:
    """Metadata about a single object."""

    bucket: str
    key: str
    size: Optional[int] = None
    last_modified: Optional[datetime] = None
    storage_class: Optional[str] = None
    etag: Optional[str] = None
    content_type: Optional[str] = None
    metadata: dict[str, str] = field(default_factory=dict)

    @property
    def is_folder(self) -> bool:
        return self.key.endswith("/")


@dataclass
class FilePreview:
    """Raw bytes of a previewable object."""

    key: str
    content_type: str
    data: bytes


@dataclass
class ObjectOutcome:
    """Result of one object-level step of a folder operation."""

    key: str
    new_key: Optional[str] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class FolderOperationKind(str, Enum):
    CREATE = "create"
    RENAME = "rename"
    DELETE = "delete"


@dataclass
class FolderOperationResult:
    """Per-object outcome of a create, rename or delete of a folder."""

    kind: FolderOperationKind
    path: str
    new_path: Optional[str] = None
    outcomes: list[ObjectOutcome] = field(default_factory=list)

    @property
    def succeeded(self) -> list[ObjectOutcome]:
        return [outcome for outcome in self.outcomes if outcome.ok]

    @property
    def failed(self) -> list[ObjectOutcome]:
        return [outcome for outcome in self.outcomes if not outcome.ok]

    @property
    def ok(self) -> bool:
        return not self.failed


class TransferKind(str, Enum):
    UPLOAD = "upload"
    DOWNLOAD = "download"
    DELETE = "delete"


class TransferStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TransferStatus.SUCCEEDED, TransferStatus.FAILED)


@dataclass
class TransferTask:
    """A single upload, download or delete within a bulk batch."""

    id: str
    kind: TransferKind
    source_ref: str
    destination_key: str
    status: TransferStatus = TransferStatus.PENDING
    progress_percent: int = 0
    error: Optional[Exception] = None

    @property
    def identity(self) -> str:
        """Key used for progress events: file name for uploads, object key otherwise."""
        if self.kind is TransferKind.UPLOAD:
            return self.source_ref.replace("\\", "/").rsplit("/", 1)[-1]
        return self.source_ref
