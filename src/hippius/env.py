# src/hippius/env.py
from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

_LOADED = False


def load_dotenv_if_present(dotenv_path: Optional[str] = None) -> bool:
    """
    Best-effort .env loader.

    - Loads once per process.
    - Path rules:
        1) If dotenv_path arg provided, use it.
        2) Else if HIPPIUS_DOTENV_PATH is set, use that.
        3) Else default to ".env" in current working directory.

    Returns True if a dotenv file was found AND loaded, else False.
    """
    global _LOADED
    if _LOADED:
        return False

    path = Path(dotenv_path or os.getenv("HIPPIUS_DOTENV_PATH", ".env")).expanduser()
    if not path.exists() or not path.is_file():
        _LOADED = True
        return False

    from dotenv import load_dotenv

    load_dotenv(dotenv_path=str(path), override=False)
    _LOADED = True
    return True
