from __future__ import annotations
"""Object store gateway backed by a boto3 S3 client."""
import logging
import threading
from typing import Callable, Iterator, Optional

import boto3
from boto3.s3.transfer import TransferConfig
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError

from .credentials import StorageCredentials
from .models import BucketInfo, FileEntry, FilePreview, ObjectDetails, ObjectOutcome
from .ui_utils import basename

LOGGER = logging.getLogger(__name__)

DELETE_BATCH_SIZE = 1000
LIST_PAGE_SIZE = 1000
PREVIEWABLE_PREFIXES = ("image/",)
PREVIEWABLE_TYPES = {"application/pdf"}
PROJECT_HEADER = "x-goog-project-id"

ProgressFn = Callable[[int], None]
CancelFn = Callable[[], bool]


class BackendError(RuntimeError):
    """Any failure reported by the object store."""

    def __init__(self, message: str, *, code: str | None = None):
        super().__init__(message)
        self.code = code


class NotConnectedError(BackendError):
    """Raised when a storage operation is attempted before connecting."""


class TransferCancelledError(RuntimeError):
    """Raised when an upload or download is cancelled by the caller."""


class PreviewUnavailableError(ValueError):
    """Raised when an object cannot be previewed."""


def _wrap_error(exc: Exception, action: str) -> BackendError:
    code = None
    if isinstance(exc, ClientError):
        code = exc.response.get("Error", {}).get("Code")
    return BackendError(f"{action}: {exc}", code=code)


def is_previewable(content_type: str | None) -> bool:
    if not content_type:
        return False
    return content_type.startswith(PREVIEWABLE_PREFIXES) or content_type in PREVIEWABLE_TYPES


class StorageGateway:
    """Flat key-value access to buckets, independent of any UI technology."""

    def __init__(
        self,
        client_factory: Callable[..., object] | None = None,
        transfer_config: TransferConfig | None = None,
    ):
        self._client_factory = client_factory or boto3.client
        self._transfer_config = transfer_config or TransferConfig()
        self._client = None

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    def connect(self, credentials: StorageCredentials, *, project_id: str | None = None) -> None:
        client = self._client_factory(
            "s3",
            endpoint_url=credentials.endpoint_url,
            aws_access_key_id=credentials.access_key,
            aws_secret_access_key=credentials.secret_key,
            region_name=credentials.region,
            config=Config(signature_version="s3v4"),
        )
        if project_id:
            _register_project_header(client, project_id)
        self._client = client
        LOGGER.debug("Gateway connected to %s", credentials.endpoint_url)

    def set_transfer_config(self, transfer_config: TransferConfig) -> None:
        self._transfer_config = transfer_config

    def list_buckets(self) -> list[BucketInfo]:
        client = self._require_client()
        try:
            response = client.list_buckets()
        except (ClientError, BotoCoreError) as exc:
            raise _wrap_error(exc, "Unable to list buckets") from exc
        buckets = []
        for bucket in response.get("Buckets", []):
            name = bucket["Name"]
            buckets.append(
                BucketInfo(
                    name=name,
                    created_at=bucket.get("CreationDate"),
                    location=self._bucket_location(client, name),
                )
            )
        return buckets

    def list_all_keys(self, bucket: str, prefix: str = "") -> list[str]:
        """Return every key in ``bucket`` under ``prefix`` without a delimiter."""

        keys: list[str] = []
        for page in self._iter_pages(bucket, prefix=prefix, delimiter=None):
            keys.extend(obj["Key"] for obj in page.get("Contents", []))
        return keys

    def list_prefixed(self, bucket: str, prefix: str = "") -> list[FileEntry]:
        """Return entries exactly one level below ``prefix``, folders first."""

        folders: list[FileEntry] = []
        files: list[FileEntry] = []
        for page in self._iter_pages(bucket, prefix=prefix, delimiter="/"):
            for common in page.get("CommonPrefixes", []):
                folders.append(FileEntry(name=basename(common["Prefix"]), is_folder=True))
            for obj in page.get("Contents", []):
                key = obj["Key"]
                if key == prefix:
                    # The folder marker of the listed folder itself.
                    continue
                files.append(
                    FileEntry(
                        name=basename(key),
                        size=int(obj.get("Size") or 0),
                        updated_at=obj.get("LastModified"),
                        is_folder=key.endswith("/"),
                    )
                )
        return folders + files

    def get_object_details(self, bucket: str, key: str) -> ObjectDetails:
        client = self._require_client()
        try:
            response = client.head_object(Bucket=bucket, Key=key)
        except (ClientError, BotoCoreError) as exc:
            raise _wrap_error(exc, f"Unable to read metadata of '{key}'") from exc
        return ObjectDetails(
            bucket=bucket,
            key=key,
            size=response.get("ContentLength"),
            last_modified=response.get("LastModified"),
            storage_class=response.get("StorageClass"),
            etag=response.get("ETag"),
            content_type=response.get("ContentType"),
            metadata=dict(response.get("Metadata") or {}),
        )

    def get_object_bytes(self, bucket: str, key: str) -> bytes:
        client = self._require_client()
        try:
            response = client.get_object(Bucket=bucket, Key=key)
            body = response["Body"]
            try:
                return body.read()
            finally:
                body.close()
        except (ClientError, BotoCoreError) as exc:
            raise _wrap_error(exc, f"Unable to read '{key}'") from exc

    def get_preview(self, bucket: str, key: str, *, max_bytes: int | None = None) -> FilePreview:
        details = self.get_object_details(bucket, key)
        if not is_previewable(details.content_type):
            raise PreviewUnavailableError(f"File type not supported for preview: {details.content_type or 'unknown'}")
        if max_bytes is not None and (details.size or 0) > max_bytes:
            raise PreviewUnavailableError(f"'{basename(key)}' is too large to preview")
        return FilePreview(
            key=key,
            content_type=details.content_type,
            data=self.get_object_bytes(bucket, key),
        )

    def download_object(
        self,
        bucket: str,
        key: str,
        destination: str,
        *,
        progress_callback: Optional[ProgressFn] = None,
        cancel_requested: Optional[CancelFn] = None,
    ) -> None:
        """Download an object to ``destination``, reporting progress in percent."""

        client = self._require_client()
        callback = None
        if progress_callback or cancel_requested:
            total = self.get_object_details(bucket, key).size or 0
            callback = self._build_transfer_callback(total, progress_callback, cancel_requested)
        try:
            client.download_file(bucket, key, destination, Callback=callback, Config=self._transfer_config)
        except (ClientError, BotoCoreError) as exc:
            raise _wrap_error(exc, f"Unable to download '{key}'") from exc

    def upload_object(
        self,
        bucket: str,
        key: str,
        source_path: str,
        *,
        total_size: int | None = None,
        progress_callback: Optional[ProgressFn] = None,
        cancel_requested: Optional[CancelFn] = None,
    ) -> None:
        """Upload a local file to ``bucket``/``key``, reporting progress in percent."""

        client = self._require_client()
        callback = self._build_transfer_callback(total_size or 0, progress_callback, cancel_requested)
        try:
            client.upload_file(
                source_path,
                bucket,
                key,
                Callback=callback,
                Config=self._transfer_config,
            )
        except (ClientError, BotoCoreError) as exc:
            raise _wrap_error(exc, f"Unable to upload '{basename(key)}'") from exc

    def put_folder_marker(self, bucket: str, key: str) -> None:
        if not key.endswith("/"):
            key += "/"
        client = self._require_client()
        try:
            client.put_object(Bucket=bucket, Key=key, Body=b"")
        except (ClientError, BotoCoreError) as exc:
            raise _wrap_error(exc, f"Unable to create folder '{key}'") from exc

    def delete_object(self, bucket: str, key: str) -> None:
        client = self._require_client()
        try:
            client.delete_object(Bucket=bucket, Key=key)
        except (ClientError, BotoCoreError) as exc:
            raise _wrap_error(exc, f"Unable to delete '{key}'") from exc

    def delete_objects_by_prefix(self, bucket: str, prefix: str) -> list[ObjectOutcome]:
        """Delete every key under ``prefix`` and return one outcome per key."""

        if not prefix:
            raise ValueError("Refusing to delete an entire bucket by empty prefix")
        keys = self.list_all_keys(bucket, prefix=prefix)
        return self.delete_keys(bucket, keys)

    def delete_keys(self, bucket: str, keys: list[str]) -> list[ObjectOutcome]:
        client = self._require_client()
        outcomes: list[ObjectOutcome] = []
        for start in range(0, len(keys), DELETE_BATCH_SIZE):
            chunk = keys[start:start + DELETE_BATCH_SIZE]
            try:
                response = client.delete_objects(
                    Bucket=bucket,
                    Delete={"Objects": [{"Key": key} for key in chunk], "Quiet": True},
                )
            except (ClientError, BotoCoreError) as exc:
                error = _wrap_error(exc, "Unable to delete objects")
                outcomes.extend(ObjectOutcome(key=key, error=error) for key in chunk)
                continue
            errors = {
                entry["Key"]: BackendError(
                    f"Unable to delete '{entry['Key']}': {entry.get('Message') or entry.get('Code')}",
                    code=entry.get("Code"),
                )
                for entry in response.get("Errors", [])
            }
            outcomes.extend(ObjectOutcome(key=key, error=errors.get(key)) for key in chunk)
        return outcomes

    def copy_object(self, bucket: str, source_key: str, dest_key: str) -> None:
        client = self._require_client()
        try:
            client.copy_object(
                Bucket=bucket,
                Key=dest_key,
                CopySource={"Bucket": bucket, "Key": source_key},
            )
        except (ClientError, BotoCoreError) as exc:
            raise _wrap_error(exc, f"Unable to copy '{source_key}' to '{dest_key}'") from exc

    def move_object(self, bucket: str, source_key: str, dest_key: str) -> None:
        """Copy then delete; not atomic."""
        self.copy_object(bucket, source_key, dest_key)
        self.delete_object(bucket, source_key)

    def _require_client(self):
        if self._client is None:
            raise NotConnectedError("Not connected to storage")
        return self._client

    def _iter_pages(self, bucket: str, *, prefix: str, delimiter: str | None) -> Iterator[dict]:
        client = self._require_client()
        params = {"Bucket": bucket, "MaxKeys": LIST_PAGE_SIZE}
        if prefix:
            params["Prefix"] = prefix
        if delimiter:
            params["Delimiter"] = delimiter
        while True:
            try:
                response = client.list_objects_v2(**params)
            except (ClientError, BotoCoreError) as exc:
                raise _wrap_error(exc, f"Unable to list '{bucket}/{prefix}'") from exc
            yield response
            token = response.get("NextContinuationToken")
            if not response.get("IsTruncated") or not token:
                return
            params["ContinuationToken"] = token

    def _bucket_location(self, client, bucket: str) -> str | None:
        try:
            response = client.get_bucket_location(Bucket=bucket)
        except (ClientError, BotoCoreError) as exc:
            LOGGER.warning("Unable to read location of bucket '%s': %s", bucket, exc)
            return None
        return response.get("LocationConstraint") or None

    def _build_transfer_callback(
        self,
        total_size: int,
        progress_callback: Optional[ProgressFn],
        cancel_requested: Optional[CancelFn],
    ):
        if not progress_callback and not cancel_requested:
            return None

        transferred = 0
        last_percent = -1
        lock = threading.Lock()

        def _callback(bytes_amount: int) -> None:
            nonlocal transferred, last_percent
            if cancel_requested and cancel_requested():
                raise TransferCancelledError("Transfer cancelled by user")
            with lock:
                transferred += bytes_amount
                percent = progress_percent(transferred, total_size)
                if percent <= last_percent:
                    return
                last_percent = percent
            if progress_callback:
                progress_callback(percent)

        return _callback


def progress_percent(transferred: int, total: int) -> int:
    """``transferred / total * 100`` rounded half up and clamped to 0..100."""
    if total <= 0:
        return 0
    percent = int(transferred * 100 / total + 0.5)
    return max(0, min(percent, 100))


def _register_project_header(client, project_id: str) -> None:
    def _add_header(request, **_):
        request.headers[PROJECT_HEADER] = project_id

    client.meta.events.register("before-sign.s3.ListBuckets", _add_header)
