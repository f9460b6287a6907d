"""HTTP API for the custom tables service.

Assembles the FastAPI application: table management and entity routers,
the error boundary, the ``/uploads`` static mount for images and QR codes,
and the startup/shutdown hooks that own the database engine.

Copyright (c) Bryn Gwalad 2025
"""

import logging
from pathlib import Path

from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles

from api import entities, tables
from api.errors import register_exception_handlers
from utils import config
from utils.database import dispose_engine, init_db, init_engine

logger = logging.getLogger("custom_tables.api")

app = FastAPI(title="Custom Tables Inventory API")

register_exception_handlers(app)
app.include_router(tables.router)
app.include_router(entities.router)

upload_dir = Path(config.UPLOAD_DIR)
upload_dir.mkdir(parents=True, exist_ok=True)
app.mount("/uploads", StaticFiles(directory=str(upload_dir)), name="uploads")


@app.on_event("startup")
async def on_startup():
    """Configure logging, open the database engine and create the catalog."""
    # do not override logging configured by the host process
    if not logging.getLogger().handlers:
        logging.basicConfig(
            level=config.LOG_LEVEL,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )
    init_engine()
    init_db()
    logger.info("Custom tables API started (env=%s, uploads=%s)", config.APP_ENV, upload_dir)


@app.on_event("shutdown")
async def on_shutdown():
    dispose_engine()


@app.get("/api/health")
def health():
    return {"status": "ok"}
