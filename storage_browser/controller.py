from __future__ import annotations
"""Connection setup: configuration, credentials and the storage gateway."""

import logging
from typing import Optional

from .credentials import CredentialsLoader, KeychainStore
from .models import BucketInfo
from .services import BackendError, StorageGateway
from .settings import AppConfig, AppSettings, ConfigStorage, ConfigurationError, SettingsStorage

LOGGER = logging.getLogger(__name__)

AUTH_ERROR_CODES = {
    "InvalidAccessKeyId",
    "SignatureDoesNotMatch",
    "InvalidSecurity",
    "InvalidToken",
    "ExpiredToken",
}


class StorageController:
    """Coordinates configuration with the :class:`StorageGateway`."""

    def __init__(
        self,
        gateway: StorageGateway | None = None,
        config_storage: ConfigStorage | None = None,
        settings_storage: SettingsStorage | None = None,
        credentials_loader: CredentialsLoader | None = None,
        keychain: KeychainStore | None = None,
    ):
        self._gateway = gateway or StorageGateway()
        self._config_storage = config_storage or ConfigStorage()
        self._settings_storage = settings_storage or SettingsStorage()
        self._keychain = keychain or KeychainStore()
        self._credentials_loader = credentials_loader or CredentialsLoader(self._keychain)
        self._config: Optional[AppConfig] = self._config_storage.load()
        self._settings: AppSettings = self._settings_storage.load()

    @property
    def gateway(self) -> StorageGateway:
        return self._gateway

    @property
    def config(self) -> Optional[AppConfig]:
        return self._config

    @property
    def settings(self) -> AppSettings:
        return self._settings

    @property
    def needs_configuration(self) -> bool:
        return self._config is None

    @property
    def is_connected(self) -> bool:
        return self._gateway.is_connected

    def save_config(self, config: AppConfig, *, secret_key: str | None = None) -> None:
        """Persist ``config``; a secret, when given, goes to the keychain, never to disk."""

        self._config_storage.save(config)
        if secret_key is not None:
            self._keychain.set_secret(config.project_id, secret_key)
        self._config = self._config_storage.load()

    def save_settings(self, settings: AppSettings) -> None:
        self._settings_storage.save(settings)
        self._settings = self._settings_storage.load()
        self._gateway.set_transfer_config(self._settings.transfer_config())

    def remember_bucket(self, bucket: str) -> None:
        self._settings.last_bucket = bucket or ""
        self._settings_storage.save(self._settings)

    def connect(self) -> list[BucketInfo]:
        """Connect with the stored configuration and return the visible buckets.

        Raises:
            ConfigurationError: missing or invalid configuration, or credentials
                the backend rejects.
            BackendError: any other backend failure.
        """
        config = self._config_storage.require()
        credentials = self._credentials_loader.load(config.credentials_file, project_id=config.project_id)
        self._gateway.set_transfer_config(self._settings.transfer_config())
        self._gateway.connect(credentials, project_id=config.project_id)
        self._config = config
        try:
            buckets = self._gateway.list_buckets()
        except BackendError as exc:
            if exc.code in AUTH_ERROR_CODES:
                raise ConfigurationError(f"Credentials were rejected: {exc}") from exc
            raise
        LOGGER.debug("Connected to project '%s' (%d buckets)", config.project_id, len(buckets))
        return buckets

    def refresh_buckets(self) -> list[BucketInfo]:
        return self._gateway.list_buckets()
