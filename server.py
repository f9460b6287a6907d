"""Server launcher for the custom tables API.

This module provides a small entrypoint to initialize the database and run
the FastAPI app via uvicorn.

Copyright (c) Bryn Gwalad 2025
"""

import os

import uvicorn

from utils import config  # noqa: F401 - loads .env before anything reads the environment
from utils.database import init_db


def main() -> None:
    """Initialize DB and run uvicorn.

    Environment variables:
    - HOST: listen address (default 127.0.0.1)
    - PORT: listen port (default 8000)
    - RELOAD: set to '1' to enable uvicorn reload
    """
    init_db()

    host = os.getenv("HOST", "127.0.0.1")
    port = int(os.getenv("PORT", "8000"))
    reload = os.getenv("RELOAD", "0") in ("1", "true", "True")

    # reload needs an import string rather than an app object
    uvicorn.run("api.main:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    main()
