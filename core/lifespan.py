import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from core.database import MongoStore
from core.log import setup_logging

logger = logging.getLogger("docgate")


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = app.state.settings
    setup_logging(settings)
    logger.info("DocGate: starting up")

    owns_store = app.state.store is None
    if owns_store:
        app.state.store = await MongoStore.connect(settings)

    logger.info(f"DocGate: startup complete, listening on port {settings.port}")

    yield

    logger.info("DocGate: shutting down")
    if owns_store:
        app.state.store.close()
        app.state.store = None
