# -*- coding: utf-8 -*-
"""Main file to start FastAPI application."""
import asyncio
import logging.config
import os
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from app_entregas.broker import delivery_broker_service
from app_entregas.core import config, database
from app_entregas.routers import delivery_router
from app_entregas.routers.error_handlers import register_exception_handlers
from app_entregas.services.stock_client import close_stock_client
from app_entregas.sql import models  # noqa: F401  registers the tables on Base.metadata

# Configure logging ################################################################################
logging.config.fileConfig(
    os.path.join(os.path.dirname(__file__), "logging.ini"),
    disable_existing_loggers=False,
)
logger = logging.getLogger(__name__)


# App Lifespan #####################################################################################
@asynccontextmanager
async def lifespan(__app: FastAPI):
    """Lifespan context manager."""
    task_retry = None
    try:
        logger.info("Starting up")

        try:
            logger.info("Creating database tables")
            async with database.engine.begin() as conn:
                await conn.run_sync(database.Base.metadata.create_all)
        except Exception:
            logger.error(
                "Could not create tables at startup", exc_info=True,
            )

        try:
            logger.info("🚀 Lanzando consumer de reintentos de acreditación...")
            task_retry = asyncio.create_task(delivery_broker_service.consume_reconciliation_retries())
        except Exception as e:
            logger.error(f"❌ Error lanzando broker service: {e}", exc_info=True)

        yield
    finally:
        logger.info("Shutting down rabbitmq")
        if task_retry is not None:
            task_retry.cancel()
        logger.info("Closing inventory client")
        await close_stock_client()
        logger.info("Shutting down database")
        await database.engine.dispose()


# OpenAPI Documentation ############################################################################
logger.info("Running app version %s", config.APP_VERSION)

app = FastAPI(
    redoc_url=None,  # disable redoc documentation.
    title="Entregas",
    description="Comprobantes de entrega con QR y confirmación de recepción por el cliente.",
    version=config.APP_VERSION,
    servers=[{"url": "/", "description": "Development"}],
    license_info={
        "name": "MIT License",
        "url": "https://choosealicense.com/licenses/mit/",
    },
    lifespan=lifespan,
)

register_exception_handlers(app)
app.include_router(delivery_router.router)

if __name__ == "__main__":
    """
    Application entry point. Starts the Uvicorn server with SSL configuration.
    Runs the FastAPI application on host.
    """
    cert_file = os.getenv("SERVICE_CERT_FILE", "/certs/entregas/entregas-cert.pem")
    key_file = os.getenv("SERVICE_KEY_FILE", "/certs/entregas/entregas-key.pem")

    uvicorn.run(
        "app_entregas.main:app",
        host="0.0.0.0",
        port=config.SERVICE_PORT,
        reload=True,
        ssl_certfile=cert_file,
        ssl_keyfile=key_file,
    )
