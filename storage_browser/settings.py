from __future__ import annotations
"""Configuration and application settings persistence helpers."""

from dataclasses import asdict, dataclass, field
import json
import logging
from pathlib import Path
from typing import Optional

from boto3.s3.transfer import TransferConfig

LOGGER = logging.getLogger(__name__)

THEMES = ("light", "dark", "system")
PAGE_SIZES = (5, 10, 25, 50)
MB = 1024 * 1024


class ConfigurationError(RuntimeError):
    """Raised when configuration is missing, malformed or rejected by the backend."""


@dataclass
class AppConfig:
    """The connection record the user sets up on first launch."""

    project_id: str
    credentials_file: str
    theme: str = "system"


class ConfigStorage:
    """JSON-backed persistence for :class:`AppConfig`, written wholesale."""

    def __init__(self, storage_path: str | Path | None = None):
        if storage_path is None:
            storage_path = Path.home() / ".storage_browser_config.json"
        self._path = Path(storage_path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> Optional[AppConfig]:
        """Return the stored config, or ``None`` for anything not shaped like one."""

        if not self._path.exists():
            return None
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            LOGGER.warning("Ignoring unreadable configuration at %s", self._path)
            return None
        if not isinstance(data, dict):
            return None
        project_id = data.get("projectId")
        credentials_file = data.get("credentialsFile")
        if not isinstance(project_id, str) or not project_id.strip():
            return None
        if not isinstance(credentials_file, str) or not credentials_file.strip():
            return None
        theme = data.get("theme")
        if theme not in THEMES:
            theme = "system"
        return AppConfig(
            project_id=project_id.strip(),
            credentials_file=credentials_file.strip(),
            theme=theme,
        )

    def require(self) -> AppConfig:
        config = self.load()
        if config is None:
            raise ConfigurationError("Storage is not configured")
        return config

    def save(self, config: AppConfig) -> None:
        if not config.project_id.strip() or not config.credentials_file.strip():
            raise ConfigurationError("Project ID and credentials file are required")
        payload = {
            "projectId": config.project_id.strip(),
            "credentialsFile": config.credentials_file.strip(),
            "theme": config.theme if config.theme in THEMES else "system",
        }
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(payload, indent=2), encoding="utf-8")


@dataclass
class AppSettings:
    """Simple container for persistent app settings."""

    page_size: int = 10
    preview_max_bytes: int = 20 * MB
    max_concurrency: int = 4
    upload_multipart_threshold: int = 8 * MB
    upload_chunk_size: int = 8 * MB
    upload_max_concurrency: int = 10
    download_dir: str = field(default_factory=lambda: str(Path.home() / "Downloads"))
    last_bucket: str = ""

    def transfer_config(self) -> TransferConfig:
        return TransferConfig(
            multipart_threshold=self.upload_multipart_threshold,
            multipart_chunksize=self.upload_chunk_size,
            max_concurrency=self.upload_max_concurrency,
        )


_POSITIVE_INT_FIELDS = (
    "preview_max_bytes",
    "max_concurrency",
    "upload_multipart_threshold",
    "upload_chunk_size",
    "upload_max_concurrency",
)


def _positive_int(value: object, default: int) -> int:
    if isinstance(value, bool):
        return default
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return number if number > 0 else default


class SettingsStorage:
    """JSON-backed persistence for :class:`AppSettings`."""

    def __init__(self, storage_path: str | Path | None = None):
        if storage_path is None:
            storage_path = Path.home() / ".storage_browser_settings.json"
        self._path = Path(storage_path)

    def load(self) -> AppSettings:
        if not self._path.exists():
            return AppSettings()
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            return AppSettings()
        if not isinstance(data, dict):
            return AppSettings()

        defaults = AppSettings()
        values = {
            name: _positive_int(data.get(name), getattr(defaults, name))
            for name in _POSITIVE_INT_FIELDS
        }
        page_size = _positive_int(data.get("page_size"), defaults.page_size)
        if page_size not in PAGE_SIZES:
            page_size = defaults.page_size
        download_dir = data.get("download_dir")
        if not isinstance(download_dir, str) or not download_dir:
            download_dir = defaults.download_dir
        last_bucket = data.get("last_bucket")
        if not isinstance(last_bucket, str):
            last_bucket = ""
        return AppSettings(
            page_size=page_size,
            download_dir=download_dir,
            last_bucket=last_bucket,
            **values,
        )

    def save(self, settings: AppSettings) -> None:
        payload = asdict(settings)
        for name in _POSITIVE_INT_FIELDS:
            payload[name] = max(int(payload[name]), 1)
        if payload["page_size"] not in PAGE_SIZES:
            payload["page_size"] = AppSettings.page_size
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        except OSError:
            LOGGER.warning("Unable to persist settings to %s", self._path)
