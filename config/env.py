"""
Process environment for settings.

Settings read plain environment variables. For local work they can be
seeded from dotenv files in the project root:

    .env        always, when present
    .env.dev    additionally, when DJANGO_ENV is dev/development/local

Variables already set in the process are never replaced by file values.
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

PROJECT_ROOT = Path(__file__).resolve().parent.parent

DEV_ENVIRONMENTS = frozenset({"dev", "development", "local"})
TRUTHY = frozenset({"1", "true", "yes", "on"})


def env_files(root: Path) -> list[Path]:
    files = [root / ".env"]
    if os.environ.get("DJANGO_ENV", "").lower() in DEV_ENVIRONMENTS:
        files.append(root / ".env.dev")
    return files


def load_env(base_dir: Path | None = None) -> list[Path]:
    """Seed ``os.environ`` from the dotenv files that exist; return those read."""
    loaded = []
    for path in env_files(base_dir or PROJECT_ROOT):
        if path.is_file():
            load_dotenv(path, override=False)
            loaded.append(path)
    return loaded


def _raw(name: str) -> str | None:
    value = os.environ.get(name)
    if value is None or not value.strip():
        return None
    return value.strip()


def env_bool(name: str, default: bool = False) -> bool:
    value = _raw(name)
    return default if value is None else value.lower() in TRUTHY


def env_int(name: str, default: int) -> int:
    value = _raw(name)
    return default if value is None else int(value)


def env_float(name: str, default: float) -> float:
    value = _raw(name)
    return default if value is None else float(value)
