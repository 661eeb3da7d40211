from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from okrhub.errors import InvalidSourceApp, NotConfigured
from okrhub.external_id import validate_source_app
from okrhub.logging_config import get_logger
from okrhub.models import SyncConfig, db

logger = get_logger(__name__)

DEFAULT_SYNC_INTERVAL_MS = 60000


@dataclass
class SyncSettings:
    """LinkHub connection details as used by one drain run."""
    endpoint_url: str
    api_key_prefix: str
    signing_secret: str
    auto_sync_enabled: bool = True
    sync_interval_ms: int = DEFAULT_SYNC_INTERVAL_MS
    source_app: Optional[str] = None

    @classmethod
    def from_record(cls, record):
        return cls(
            endpoint_url=record.endpoint_url,
            api_key_prefix=record.api_key_prefix,
            signing_secret=record.signing_secret,
            auto_sync_enabled=bool(record.auto_sync_enabled),
            sync_interval_ms=record.sync_interval_ms or DEFAULT_SYNC_INTERVAL_MS,
            source_app=record.source_app,
        )

    def to_dict(self):
        """Serialize for JSON response. The signing secret is never echoed."""
        return {
            'endpointUrl': self.endpoint_url,
            'apiKeyPrefix': self.api_key_prefix,
            'hasSigningSecret': bool(self.signing_secret),
            'autoSyncEnabled': self.auto_sync_enabled,
            'syncIntervalMs': self.sync_interval_ms,
            'sourceApp': self.source_app,
        }


class ConfigService:
    """Persisted singleton holding the LinkHub connection details."""

    @staticmethod
    def configure(endpoint_url, api_key_prefix, signing_secret, auto_sync_enabled=True,
                  sync_interval_ms=DEFAULT_SYNC_INTERVAL_MS, source_app=None):
        """
        Store (or replace) the connection details.

        Raises:
            ValueError: if any of the three connection values is empty or the
                interval is not positive
            InvalidSourceApp: if ``source_app`` is given but malformed
        """
        if not all([endpoint_url, api_key_prefix, signing_secret]):
            raise ValueError("endpoint_url, api_key_prefix and signing_secret are all required")
        if int(sync_interval_ms) <= 0:
            raise ValueError("sync_interval_ms must be positive")
        if source_app is not None and not validate_source_app(source_app):
            raise InvalidSourceApp(source_app)

        record = SyncConfig.get_current()
        if record is None:
            record = SyncConfig()
            db.session.add(record)

        record.endpoint_url = endpoint_url.rstrip("/")
        record.api_key_prefix = api_key_prefix
        record.signing_secret = signing_secret
        record.auto_sync_enabled = bool(auto_sync_enabled)
        record.sync_interval_ms = int(sync_interval_ms)
        record.source_app = source_app
        record.updated_at = datetime.utcnow()
        db.session.commit()

        logger.info(
            "LinkHub config stored",
            endpoint_url=record.endpoint_url,
            api_key_prefix=record.api_key_prefix,
            auto_sync_enabled=record.auto_sync_enabled,
            sync_interval_ms=record.sync_interval_ms,
        )
        return SyncSettings.from_record(record)

    @staticmethod
    def read_config():
        """Fresh read of the stored config, or None when nothing is stored."""
        record = SyncConfig.get_current()
        if record is None:
            return None
        return SyncSettings.from_record(record)

    @staticmethod
    def clear_config():
        deleted = SyncConfig.query.delete()
        db.session.commit()
        logger.info("LinkHub config cleared", deleted=deleted)
        return deleted > 0

    @staticmethod
    def resolve(endpoint_url=None, api_key_prefix=None, signing_secret=None):
        """
        Pick the settings for a drain run.

        All three explicit values win over the stored config. With any of
        them missing the stored config is used; with no stored config either
        the run cannot proceed.

        Raises:
            NotConfigured: when neither source is complete
        """
        if endpoint_url and api_key_prefix and signing_secret:
            stored = ConfigService.read_config()
            return SyncSettings(
                endpoint_url=endpoint_url.rstrip("/"),
                api_key_prefix=api_key_prefix,
                signing_secret=signing_secret,
                auto_sync_enabled=stored.auto_sync_enabled if stored else False,
                sync_interval_ms=stored.sync_interval_ms if stored else DEFAULT_SYNC_INTERVAL_MS,
                source_app=stored.source_app if stored else None,
            )

        stored = ConfigService.read_config()
        if stored is None:
            raise NotConfigured()
        return stored

    @staticmethod
    def bootstrap_from_app_config(app_config):
        """
        Seed the stored config from LINKHUB_* settings when none exists yet.

        Returns:
            SyncSettings or None if nothing was seeded
        """
        if SyncConfig.get_current() is not None:
            return None

        endpoint_url = app_config.get("LINKHUB_ENDPOINT_URL")
        api_key_prefix = app_config.get("LINKHUB_KEY_PREFIX")
        signing_secret = app_config.get("LINKHUB_SIGNING_SECRET")
        if not all([endpoint_url, api_key_prefix, signing_secret]):
            logger.info("No LinkHub config in environment, skipping bootstrap")
            return None

        return ConfigService.configure(
            endpoint_url,
            api_key_prefix,
            signing_secret,
            auto_sync_enabled=app_config.get("LINKHUB_AUTO_SYNC", True),
            sync_interval_ms=app_config.get("LINKHUB_SYNC_INTERVAL_MS", DEFAULT_SYNC_INTERVAL_MS),
            source_app=app_config.get("OKRHUB_SOURCE_APP"),
        )
