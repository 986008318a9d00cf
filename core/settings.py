from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv

load_dotenv()

SUPPORTED_STORAGE_BACKENDS = {"remote-file", "object-store"}

_POSITIVE_INT_SETTINGS = (
    "SFTP_PORT",
    "SFTP_CONNECT_TIMEOUT_SECONDS",
    "SFTP_WRITE_TIMEOUT_SECONDS",
    "SFTP_OPERATION_TIMEOUT_SECONDS",
    "S3_PRESIGN_EXPIRES_SECONDS",
    "DOCUMENT_MAX_SIZE_BYTES",
)


def _split_csv(value: str | None) -> tuple[str, ...]:
    if not value:
        return tuple()
    return tuple(item.strip() for item in value.split(",") if item.strip())


def _env(name: str) -> str | None:
    raw_value = os.getenv(name)
    if raw_value is None:
        return None
    normalized = raw_value.strip()
    return normalized or None


def _env_int(name: str, default: int) -> int:
    value = _env(name)
    if value is None:
        return default
    return int(value)


def _env_flag(name: str, default: str = "false") -> bool:
    return (os.getenv(name, default) or "").lower() in {"1", "true", "yes"}


def collect_missing_required_env_vars() -> list[str]:
    missing: list[str] = []

    always_required = (
        "SECRET_KEY",
        "MONGO_URL",
        "DB_NAME",
    )
    for var_name in always_required:
        if _env(var_name) is None:
            missing.append(var_name)

    # SFTP credentials are deliberately absent from this list: remote-file
    # operations fail with ConfigurationError instead of blocking startup.
    storage_backend = (_env("STORAGE_BACKEND") or "remote-file").lower()
    if storage_backend == "object-store" and _env("S3_BUCKET_NAME") is None:
        missing.append("S3_BUCKET_NAME")

    return sorted(set(missing))


def collect_invalid_env_values() -> list[str]:
    invalid_values: list[str] = []

    storage_backend = (_env("STORAGE_BACKEND") or "remote-file").lower()
    if storage_backend not in SUPPORTED_STORAGE_BACKENDS:
        invalid_values.append("STORAGE_BACKEND must be one of: remote-file, object-store")

    for var_name in _POSITIVE_INT_SETTINGS:
        raw_value = _env(var_name)
        if raw_value is None:
            continue
        try:
            parsed = int(raw_value)
            if parsed <= 0:
                raise ValueError("must be positive")
        except ValueError:
            invalid_values.append(f"{var_name} must be a positive integer")

    return invalid_values


def validate_required_environment() -> None:
    missing_vars = collect_missing_required_env_vars()
    invalid_values = collect_invalid_env_values()
    if not missing_vars and not invalid_values:
        return

    message_lines = ["Application startup blocked by invalid environment configuration."]
    if missing_vars:
        message_lines.append("")
        message_lines.append("Missing required environment variables:")
        message_lines.extend(f"- {name}" for name in missing_vars)
    if invalid_values:
        message_lines.append("")
        message_lines.append("Invalid environment values:")
        message_lines.extend(f"- {message}" for message in invalid_values)
    raise RuntimeError("\n".join(message_lines))


@dataclass(frozen=True)
class Settings:
    env: str
    secret_key: str
    cors_origins: tuple[str, ...]
    debug_include_error_details: bool
    log_level: str
    mongo_url: str | None
    db_name: str | None
    storage_backend: str
    sftp_host: str | None
    sftp_port: int
    sftp_user: str | None
    sftp_password: str | None
    sftp_base_path: str
    uploads_dir: str
    sftp_connect_timeout_seconds: int
    sftp_write_timeout_seconds: int
    sftp_operation_timeout_seconds: int
    sftp_strict_size_check: bool
    public_files_base_url: str | None
    s3_bucket_name: str | None
    s3_region: str | None
    s3_endpoint_url: str | None
    s3_presign_expires_seconds: int
    document_max_size_bytes: int

    @property
    def is_production(self) -> bool:
        return self.env.lower() == "production"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    validate_required_environment()

    settings = Settings(
        env=os.getenv("ENV", "development"),
        secret_key=os.getenv("SECRET_KEY", ""),
        cors_origins=_split_csv(os.getenv("CORS_ORIGINS")),
        debug_include_error_details=_env_flag("DEBUG_INCLUDE_ERROR_DETAILS"),
        log_level=(_env("LOG_LEVEL") or "INFO").upper(),
        mongo_url=_env("MONGO_URL"),
        db_name=_env("DB_NAME"),
        storage_backend=(_env("STORAGE_BACKEND") or "remote-file").lower(),
        sftp_host=_env("SFTP_HOST"),
        sftp_port=_env_int("SFTP_PORT", 22),
        sftp_user=_env("SFTP_USER"),
        sftp_password=_env("SFTP_PASSWORD"),
        sftp_base_path=(_env("SFTP_BASE_PATH") or "public_html").strip("/"),
        uploads_dir=(_env("STORAGE_UPLOADS_DIR") or "uploads/clients").strip("/"),
        sftp_connect_timeout_seconds=_env_int("SFTP_CONNECT_TIMEOUT_SECONDS", 30),
        sftp_write_timeout_seconds=_env_int("SFTP_WRITE_TIMEOUT_SECONDS", 240),
        sftp_operation_timeout_seconds=_env_int("SFTP_OPERATION_TIMEOUT_SECONDS", 60),
        sftp_strict_size_check=_env_flag("SFTP_STRICT_SIZE_CHECK"),
        public_files_base_url=_env("PUBLIC_FILES_BASE_URL"),
        s3_bucket_name=_env("S3_BUCKET_NAME"),
        s3_region=_env("S3_REGION"),
        s3_endpoint_url=_env("S3_ENDPOINT_URL"),
        s3_presign_expires_seconds=_env_int("S3_PRESIGN_EXPIRES_SECONDS", 3600),
        document_max_size_bytes=_env_int("DOCUMENT_MAX_SIZE_BYTES", 50 * 1024 * 1024),
    )

    if settings.is_production and len(settings.secret_key) < 32:
        raise RuntimeError("SECRET_KEY must be at least 32 characters when ENV=production")

    return settings
