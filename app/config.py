"""Environment-driven settings for the object manager runtime."""

from __future__ import annotations

import os
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]


def _load_env_file(path: Path) -> None:
    if not path.exists():
        return
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        if key and key not in os.environ:
            os.environ[key] = value


_load_env_file(ROOT / "app" / ".env")


def _int_env(name: str, default: int | None) -> int | None:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}")


def use_db() -> bool:
    return os.getenv("USE_DB", "0").strip() == "1"


def get_db_url() -> str:
    url = os.getenv("OBJMGR_DB_URL") or os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError("OBJMGR_DB_URL or DATABASE_URL is required when USE_DB=1")
    return url


def pool_bounds() -> tuple[int, int]:
    return _int_env("OBJMGR_DB_POOL_MIN", 1), _int_env("OBJMGR_DB_POOL_MAX", 10)


def migration_timeout_ms() -> int | None:
    return _int_env("OBJMGR_MIGRATION_TIMEOUT_MS", None)


SLOW_QUERY_MS = float(os.getenv("OBJMGR_QUERY_SLOW_MS", "200"))
LOG_ALL_QUERIES = os.getenv("OBJMGR_QUERY_LOG", "").strip() == "1"
