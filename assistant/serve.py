"""Launch the API with Uvicorn."""

from __future__ import annotations

import logging
import os

import uvicorn

logger = logging.getLogger("assistant.launcher")


def main() -> None:
    port = int(os.environ.get("PORT", "8000"))
    host = os.environ.get("HOST", "0.0.0.0")
    logger.debug("Starting server on %s:%d", host, port)
    uvicorn.run("assistant.main:app", host=host, port=port)


if __name__ == "__main__":
    main()
