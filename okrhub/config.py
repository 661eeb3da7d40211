import os
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name, default):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Config:
    """Base configuration class with common settings."""
    # Identity namespace used when callers don't pass a source app
    OKRHUB_SOURCE_APP = os.environ.get("OKRHUB_SOURCE_APP")

    # LinkHub connection bootstrap. When set and no stored config exists yet,
    # these seed the persisted config record on startup.
    LINKHUB_ENDPOINT_URL = os.environ.get("LINKHUB_ENDPOINT_URL")
    LINKHUB_KEY_PREFIX = os.environ.get("LINKHUB_KEY_PREFIX")
    LINKHUB_SIGNING_SECRET = os.environ.get("LINKHUB_SIGNING_SECRET")
    LINKHUB_SYNC_INTERVAL_MS = int(os.environ.get("LINKHUB_SYNC_INTERVAL_MS", "60000"))
    LINKHUB_AUTO_SYNC = _env_bool("LINKHUB_AUTO_SYNC", True)
    LINKHUB_TIMEOUT_SECONDS = float(os.environ.get("LINKHUB_TIMEOUT_SECONDS", "30"))

    # Drain loop
    DRAIN_BATCH_SIZE = int(os.environ.get("DRAIN_BATCH_SIZE", "10"))
    # Processing records older than this are assumed abandoned and go back to pending
    DRAIN_STALE_AFTER_SECONDS = int(os.environ.get("DRAIN_STALE_AFTER_SECONDS", "300"))
    SCHEDULER_ENABLED = _env_bool("SCHEDULER_ENABLED", True)

    # Logging
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    LOG_FILE = os.environ.get("LOG_FILE")

    # CORS configuration
    CORS_ORIGINS = os.environ.get("CORS_ORIGINS", "*")


class LocalConfig(Config):
    """Configuration for local development."""
    ENV = "local"
    DEBUG = True


class SandboxConfig(Config):
    """Configuration for sandbox/staging environment."""
    ENV = "sandbox"
    DEBUG = False


class ProductionConfig(Config):
    """Configuration for production environment."""
    ENV = "production"
    DEBUG = False


def get_config():
    """Get the appropriate configuration class based on environment variable.

    Environment is determined by FLASK_ENV or ENVIRONMENT variable:
    - 'local' or 'development' -> LocalConfig
    - 'sandbox' or 'staging' -> SandboxConfig
    - 'production' or 'prod' -> ProductionConfig

    Defaults to LocalConfig if not set.
    """
    env = (os.environ.get("FLASK_ENV") or os.environ.get("ENVIRONMENT", "local")).lower()

    if env in ["local", "development", "dev"]:
        return LocalConfig
    elif env in ["sandbox", "staging", "stage"]:
        return SandboxConfig
    elif env in ["production", "prod"]:
        return ProductionConfig
    else:
        # Default to local for safety
        return LocalConfig
