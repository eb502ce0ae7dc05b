import os

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, model_validator

load_dotenv()


_TRUTHY_VALUES = {"1", "true", "yes", "on"}


def _env_bool(name: str, default: str = "") -> bool:
    return os.getenv(name, default).lower() in _TRUTHY_VALUES


class Settings(BaseModel):
    model_config = ConfigDict(frozen=True)

    database_url: str | None = os.getenv("DATABASE_URL")
    db_pool_size: int = int(os.getenv("DB_POOL_SIZE", "5"))
    db_max_overflow: int = int(os.getenv("DB_MAX_OVERFLOW", "10"))
    db_pool_timeout: int = int(os.getenv("DB_POOL_TIMEOUT", "30"))
    db_pool_recycle: int = int(os.getenv("DB_POOL_RECYCLE", "1800"))

    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    # Caller identity
    jwt_secret: str | None = os.getenv("JWT_SECRET")
    jwt_algorithm: str = os.getenv("JWT_ALGORITHM", "HS256")

    # Package blobs
    blob_storage_dir: str = os.getenv("BLOB_STORAGE_DIR", "var/blobs")
    blob_url_prefix: str = os.getenv("BLOB_URL_PREFIX", "/blobs")
    package_max_size_bytes: int = int(os.getenv("PACKAGE_MAX_SIZE_BYTES", str(200 * 1024 * 1024)))

    # Client-facing rate limits
    redis_url: str | None = os.getenv("REDIS_URL") or None
    update_check_rate_limit: int = int(os.getenv("UPDATE_CHECK_RATE_LIMIT", "120"))
    report_status_rate_limit: int = int(os.getenv("REPORT_STATUS_RATE_LIMIT", "60"))
    rate_limit_window_seconds: int = int(os.getenv("RATE_LIMIT_WINDOW_SECONDS", "60"))

    audit_recent_activity_limit: int = int(os.getenv("AUDIT_RECENT_ACTIVITY_LIMIT", "10"))

    # Runtime flags
    testing: bool = _env_bool("TESTING")

    @model_validator(mode="after")
    def require_database_url_when_not_testing(self) -> "Settings":
        if not self.testing and not (self.database_url and self.database_url.strip()):
            raise ValueError("DATABASE_URL must be set when TESTING is false")
        return self


settings = Settings()
