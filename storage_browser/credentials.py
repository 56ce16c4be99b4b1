from __future__ import annotations
"""Storage credentials loaded from a credentials file and the OS keychain."""
from dataclasses import dataclass
import json
import logging
from pathlib import Path

import keyring
from keyring.errors import KeyringError

from .settings import ConfigurationError

LOGGER = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "https://storage.googleapis.com"
DEFAULT_REGION = "auto"
KEYCHAIN_SERVICE = "storage-browser"


@dataclass
class StorageCredentials:
    """HMAC-style credentials for an S3-compatible endpoint."""

    access_key: str
    secret_key: str
    endpoint_url: str = DEFAULT_ENDPOINT
    region: str = DEFAULT_REGION


class KeychainStore:
    """Encapsulates OS keychain access for secrets."""

    def __init__(self, service_name: str = KEYCHAIN_SERVICE):
        self._service_name = service_name

    def get_secret(self, account: str) -> str:
        if not account:
            return ""
        try:
            return keyring.get_password(self._service_name, account) or ""
        except KeyringError:
            LOGGER.warning("Keychain lookup failed for '%s'", account)
            return ""

    def set_secret(self, account: str, secret_key: str) -> None:
        if not account:
            return
        if not secret_key:
            self.delete_secret(account)
            return
        try:
            keyring.set_password(self._service_name, account, secret_key)
        except KeyringError:
            LOGGER.warning("Unable to store secret for '%s' in the keychain", account)

    def delete_secret(self, account: str) -> None:
        if not account:
            return
        try:
            keyring.delete_password(self._service_name, account)
        except KeyringError:
            return


class CredentialsLoader:
    """Reads a credentials JSON file.

    Accepted shapes::

        {"access_key": "...", "secret_key": "...", "endpoint_url": "...", "region": "..."}
        {"accessId": "...", "secret": "..."}
        {"metadata": {"accessId": "..."}, "secret": "..."}

    The last two are what ``gcloud storage hmac create --format=json`` prints.
    When the file has no secret, the keychain entry for the project is used.
    """

    def __init__(self, keychain: KeychainStore | None = None):
        self._keychain = keychain or KeychainStore()

    def load(self, credentials_file: str | Path, *, project_id: str = "") -> StorageCredentials:
        path = Path(credentials_file).expanduser()
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except OSError as exc:
            raise ConfigurationError(f"Unable to read credentials file '{path}': {exc}") from exc
        except json.JSONDecodeError as exc:
            raise ConfigurationError(f"Credentials file '{path}' is not valid JSON") from exc
        if not isinstance(data, dict):
            raise ConfigurationError(f"Credentials file '{path}' must contain a JSON object")

        metadata = data.get("metadata") if isinstance(data.get("metadata"), dict) else {}
        access_key = data.get("access_key") or data.get("accessId") or metadata.get("accessId")
        secret_key = data.get("secret_key") or data.get("secret")
        if not secret_key:
            secret_key = self._keychain.get_secret(project_id)
        if not isinstance(access_key, str) or not access_key:
            raise ConfigurationError(f"Credentials file '{path}' has no access key")
        if not isinstance(secret_key, str) or not secret_key:
            raise ConfigurationError(f"No secret key found for '{path}' in the file or the keychain")

        endpoint_url = data.get("endpoint_url") or DEFAULT_ENDPOINT
        region = data.get("region") or DEFAULT_REGION
        return StorageCredentials(
            access_key=access_key,
            secret_key=secret_key,
            endpoint_url=str(endpoint_url),
            region=str(region),
        )
