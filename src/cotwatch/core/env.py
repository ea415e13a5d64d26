"""
`.env` loading for deployment knobs.

Operators keep `COTWATCH_*` overrides in a `.env` file next to the checkout or the service's
working directory. `load_dotenv_if_present()` loads it once per process and never overrides
variables already set in the environment, so real env vars always win.

Lookup order:
- `COTWATCH_ENV_FILE`, if set (a missing file loads nothing)
- the nearest `.env` walking up from the working directory, stopping at the first directory
  that holds `pyproject.toml` or `.git`
"""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv

logger = logging.getLogger(__name__)


def find_env_file(start: Path | None = None) -> Path | None:
    explicit = os.getenv("COTWATCH_ENV_FILE")
    if explicit:
        path = Path(explicit).expanduser().resolve()
        return path if path.is_file() else None

    here = (start or Path.cwd()).resolve()
    for directory in (here, *here.parents):
        candidate = directory / ".env"
        if candidate.is_file():
            return candidate
        if (directory / "pyproject.toml").is_file() or (directory / ".git").exists():
            break
    return None


@lru_cache
def load_dotenv_if_present() -> Path | None:
    """Load `.env` once if present; returns the loaded path (or None)."""
    env_path = find_env_file()
    if env_path is None:
        return None
    load_dotenv(dotenv_path=env_path, override=False)
    logger.debug("Loaded environment overrides from %s", env_path)
    return env_path
