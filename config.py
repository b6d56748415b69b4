"""Application-wide configuration helpers and constants."""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Final

from dotenv import load_dotenv

BASE_DIR: Final[Path] = Path(__file__).resolve().parent

load_dotenv(BASE_DIR / ".env")


logger = logging.getLogger(__name__)


def _clean_text(value: str | None) -> str:
    """Return ``value`` stripped of surrounding whitespace."""

    if value is None:
        return ""
    return value.strip()


def _path_from(env_value: str | None, default: str | Path) -> Path:
    """Resolve a filesystem path using an environment override when provided."""

    text = _clean_text(env_value)
    candidate = Path(text) if text else Path(default)
    candidate = candidate.expanduser()
    if candidate.is_absolute():
        try:
            return candidate.resolve()
        except (OSError, RuntimeError):  # pragma: no cover - fallback for exotic paths
            return candidate
    return candidate


def _coerce_positive_float(value: str | None, default: float) -> float:
    """Return ``value`` coerced to a positive float or ``default`` when invalid."""

    text = _clean_text(value)
    if not text:
        return default
    try:
        numeric = float(text)
    except (TypeError, ValueError):
        return default
    return numeric if numeric > 0 else default


def _coerce_positive_int(value: str | None, default: int) -> int:
    """Return ``value`` coerced to a positive integer or ``default`` when invalid."""

    text = _clean_text(value)
    if not text:
        return default
    try:
        numeric = int(float(text))
    except (TypeError, ValueError):
        return default
    return numeric if numeric > 0 else default


def _coerce_bool(value: str | None) -> bool:
    return _clean_text(value).lower() in {"1", "true", "yes", "on"}


def _coerce_choice(value: str | None, choices: tuple[str, ...], default: str) -> str:
    text = _clean_text(value).lower()
    if text in choices:
        return text
    if text:
        logger.warning("Ignoring unsupported value %r; expected one of %s", text, choices)
    return default


LOG_DIR_PATH: Final[Path] = _path_from(os.environ.get("LOG_DIR"), BASE_DIR / "logs")
LOG_DIR: Final[str] = os.fspath(LOG_DIR_PATH)
LOG_FILE_PATH: Final[Path] = _path_from(
    os.environ.get("LOG_FILE"), LOG_DIR_PATH / "app.log"
)
LOG_FILE: Final[str] = os.fspath(LOG_FILE_PATH)

IMAGE_DIR_PATH: Final[Path] = _path_from(os.environ.get("IMAGE_DIR"), "uploaded_images")
IMAGE_DIR: Final[str] = os.fspath(IMAGE_DIR_PATH)

BLOB_BACKENDS: Final[tuple[str, ...]] = ("sql", "redis")
BLOB_BACKEND: Final[str] = _coerce_choice(
    os.environ.get("BLOB_BACKEND"), BLOB_BACKENDS, "sql"
)


def _build_db_dsn() -> str:
    """Return the blob database DSN, defaulting to a local SQLite file."""

    explicit = _clean_text(os.environ.get("DB_DSN"))
    if explicit:
        return explicit
    sqlite_path = _path_from(None, BASE_DIR / "game_shelf.db").resolve()
    return f"sqlite:///{sqlite_path.as_posix()}"


DB_DSN: Final[str] = _build_db_dsn()
DB_CONNECT_TIMEOUT_SECONDS: Final[float] = _coerce_positive_float(
    os.environ.get("DB_CONNECT_TIMEOUT"), 10.0
)

REDIS_URL: Final[str] = (
    _clean_text(os.environ.get("REDIS_URL")) or "redis://localhost:6379/0"
)

DEV_SECRET: Final[str] = "dev-secret"
APP_SECRET_KEY: Final[str] = _clean_text(os.environ.get("APP_SECRET_KEY")) or DEV_SECRET
IDENTITY_SECRET: Final[str] = (
    _clean_text(os.environ.get("IDENTITY_SECRET")) or APP_SECRET_KEY
)
IDENTITY_TOKEN_MAX_AGE_SECONDS: Final[int] = _coerce_positive_int(
    os.environ.get("IDENTITY_TOKEN_MAX_AGE"), 7 * 24 * 3600
)
# Only local development may run with the built-in secret.
ALLOW_DEV_SECRET: Final[bool] = (
    _coerce_bool(os.environ.get("ALLOW_DEV_SECRET"))
    or _coerce_bool(os.environ.get("FLASK_DEBUG"))
)

PUBLIC_BASE_URL: Final[str] = _clean_text(os.environ.get("PUBLIC_BASE_URL")).rstrip("/")

MAX_UPLOAD_BYTES: Final[int] = _coerce_positive_int(
    os.environ.get("MAX_UPLOAD_BYTES"), 10 * 1024 * 1024
)
MAX_COVER_EDGE: Final[int] = _coerce_positive_int(
    os.environ.get("MAX_COVER_EDGE"), 1600
)

RAWG_API_KEY: Final[str] = _clean_text(os.environ.get("RAWG_API_KEY"))
RAWG_BASE_URL: Final[str] = (
    _clean_text(os.environ.get("RAWG_BASE_URL")) or "https://api.rawg.io/api"
).rstrip("/")
CATALOG_LOOKUP_DELAY_SECONDS: Final[float] = _coerce_positive_float(
    os.environ.get("CATALOG_LOOKUP_DELAY"), 0.5
)


def _check_identity_secret(secret: str, *, allow_dev_secret: bool) -> None:
    """Refuse to sign owner tokens with an empty or publicly known secret."""

    if not secret:
        raise RuntimeError("IDENTITY_SECRET must not be empty")
    if secret == DEV_SECRET and not allow_dev_secret:
        raise RuntimeError(
            "IDENTITY_SECRET (or APP_SECRET_KEY) must be set; the built-in "
            "development secret is only accepted with FLASK_DEBUG or ALLOW_DEV_SECRET"
        )
    if secret == DEV_SECRET:
        logger.warning("Signing identity tokens with the development secret")


def _validate_settings() -> None:
    """Sanity-check critical configuration values."""

    if not APP_SECRET_KEY:
        raise RuntimeError("APP_SECRET_KEY must not be empty")
    _check_identity_secret(IDENTITY_SECRET, allow_dev_secret=ALLOW_DEV_SECRET)
    if BLOB_BACKEND == "redis" and not REDIS_URL:
        raise RuntimeError("REDIS_URL is required when BLOB_BACKEND=redis")


_validate_settings()


__all__ = [
    "ALLOW_DEV_SECRET",
    "APP_SECRET_KEY",
    "BASE_DIR",
    "BLOB_BACKEND",
    "BLOB_BACKENDS",
    "CATALOG_LOOKUP_DELAY_SECONDS",
    "DB_CONNECT_TIMEOUT_SECONDS",
    "DB_DSN",
    "DEV_SECRET",
    "IDENTITY_SECRET",
    "IDENTITY_TOKEN_MAX_AGE_SECONDS",
    "IMAGE_DIR",
    "IMAGE_DIR_PATH",
    "LOG_DIR",
    "LOG_DIR_PATH",
    "LOG_FILE",
    "LOG_FILE_PATH",
    "MAX_COVER_EDGE",
    "MAX_UPLOAD_BYTES",
    "PUBLIC_BASE_URL",
    "RAWG_API_KEY",
    "RAWG_BASE_URL",
    "REDIS_URL",
]
