"""Library configuration helpers."""

import logging
import os


DEFAULT_CHUNK_SIZE = 64
DEFAULT_EXPORT_FORMAT = "stl"
EXPORT_FORMATS = {"stl", "obj"}


def parse_env_bool(value, default=False):
    """Parse a boolean-like environment value with a fallback default."""
    if value is None:
        return default
    normalized = str(value).strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def parse_env_int(name, default):
    """Parse an integer environment value with fallback."""
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except (TypeError, ValueError):
        return default


def get_cache_dir():
    raw = os.getenv("HEIGHTMESH_CACHE_DIR", "").strip()
    if raw:
        return raw
    return os.path.join(os.path.expanduser("~"), ".cache", "heightmesh")


def get_cache_max_age_seconds():
    """Cache expiry in seconds, or None when cached chunks never expire."""
    value = parse_env_int("HEIGHTMESH_CACHE_MAX_AGE_SECONDS", None)
    if value is None or value <= 0:
        return None
    return value


def get_default_chunk_size():
    return max(1, parse_env_int("HEIGHTMESH_DEFAULT_CHUNK_SIZE", DEFAULT_CHUNK_SIZE))


def get_validate_chunks():
    return parse_env_bool(os.getenv("HEIGHTMESH_VALIDATE_CHUNKS"), default=False)


def get_export_format():
    fmt = os.getenv("HEIGHTMESH_EXPORT_FORMAT", DEFAULT_EXPORT_FORMAT).strip().lower()
    if fmt in EXPORT_FORMATS:
        return fmt
    return DEFAULT_EXPORT_FORMAT


def get_log_level():
    """
    Return the logging level named by `HEIGHTMESH_LOG_LEVEL`.

    Unknown names fall back to WARNING.
    """
    name = os.getenv("HEIGHTMESH_LOG_LEVEL", "WARNING").strip().upper()
    level = logging.getLevelName(name)
    if isinstance(level, int):
        return level
    return logging.WARNING


def configure_logging(level=None):
    """Apply the configured level to the package logger and return it."""
    logger = logging.getLogger("heightmesh")
    logger.setLevel(get_log_level() if level is None else level)
    return logger
