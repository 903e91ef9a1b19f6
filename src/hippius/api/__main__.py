# src/hippius/api/__main__.py
from __future__ import annotations

import os

import uvicorn

from hippius.env import load_dotenv_if_present
from hippius.structured_logging import configure_structured_logging


def main() -> None:
    # Load .env early so HIPPIUS_* vars exist before anything reads them.
    load_dotenv_if_present()
    configure_structured_logging()

    from hippius.api.app import create_app

    host = os.getenv("HIPPIUS_API_HOST", "127.0.0.1")
    port = int(os.getenv("HIPPIUS_API_PORT", "8080"))

    uvicorn.run(create_app(), host=host, port=port, log_level="info")


if __name__ == "__main__":
    main()
