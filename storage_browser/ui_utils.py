from __future__ import annotations
"""UI-agnostic helpers for paths, validation and formatting."""
from datetime import datetime

from .models import FileEntry

RESERVED_FOLDER_NAMES = {".", ".."}


class ValidationError(ValueError):
    """Raised when user input is rejected before any backend call."""


def normalize_path(path: str | None) -> str:
    """Return ``path`` without surrounding slashes; ``""`` is the bucket root."""
    if not path:
        return ""
    return path.strip("/")


def join_path(parent: str, name: str) -> str:
    parent = normalize_path(parent)
    return f"{parent}/{name}" if parent else name


def parent_path(path: str) -> str:
    path = normalize_path(path)
    if "/" not in path:
        return ""
    return path.rsplit("/", 1)[0]


def basename(key: str) -> str:
    cleaned = key.rstrip("/")
    return cleaned.rsplit("/", 1)[-1]


def folder_prefix(path: str) -> str:
    """Key prefix shared by every object inside the folder at ``path``."""
    path = normalize_path(path)
    return f"{path}/" if path else ""


def object_key(path: str, name: str) -> str:
    """Key of the listed entry ``name`` inside the folder at ``path``.

    ``name`` comes from the backend and is used verbatim; surrounding spaces
    are part of the key.
    """
    return folder_prefix(path) + name


def compose_key(prefix: str, name: str) -> str:
    key_name = name.strip()
    if not key_name:
        raise ValidationError("Object name cannot be empty")
    cleaned_prefix = prefix.strip().lstrip("/")
    if cleaned_prefix and not cleaned_prefix.endswith("/"):
        cleaned_prefix += "/"
    return f"{cleaned_prefix}{key_name}" if cleaned_prefix else key_name


def validate_folder_name(name: str | None) -> str:
    cleaned = (name or "").strip()
    if not cleaned:
        raise ValidationError("Folder name cannot be empty")
    if "/" in cleaned:
        raise ValidationError("Folder name cannot contain '/'")
    if cleaned in RESERVED_FOLDER_NAMES:
        raise ValidationError(f"'{cleaned}' is not a valid folder name")
    return cleaned


def format_size(size: int | None) -> str:
    if size is None:
        return "-"
    suffixes = ["B", "KB", "MB", "GB", "TB"]
    value = float(max(size, 0))
    for suffix in suffixes:
        if value < 1024 or suffix == suffixes[-1]:
            return f"{value:.1f} {suffix}" if suffix != "B" else f"{int(value)} {suffix}"
        value /= 1024
    return f"{size} B"


def format_last_modified(last_modified: object) -> str:
    if not last_modified:
        return "-"
    if isinstance(last_modified, datetime):
        return last_modified.strftime("%Y-%m-%d %H:%M:%S %Z").strip() or last_modified.isoformat()
    try:
        return last_modified.strftime("%Y-%m-%d %H:%M:%S %Z").strip() or str(last_modified)
    except AttributeError:
        return str(last_modified)


def display_size(entry: FileEntry) -> str:
    if entry.is_folder:
        return "-"
    return format_size(entry.size)


def display_updated(entry: FileEntry) -> str:
    if entry.is_folder:
        return "-"
    return format_last_modified(entry.updated_at)


def describe_failures(items: list[str], *, limit: int = 5) -> str:
    """Render a short, human-readable list of failed item names."""
    if not items:
        return ""
    shown = ", ".join(items[:limit])
    remaining = len(items) - limit
    if remaining > 0:
        shown += f" and {remaining} more"
    return shown
