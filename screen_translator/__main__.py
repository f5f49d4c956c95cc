"""Run the API server: ``python -m screen_translator``."""

from __future__ import annotations

import os

import uvicorn

from .logging_config import configure_logging


def main() -> None:
    configure_logging()
    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "2053"))
    uvicorn.run("screen_translator:app", host=host, port=port, reload=False, log_config=None)


if __name__ == "__main__":
    main()
