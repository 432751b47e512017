"""FastAPI application entry point.

This module initialises the FastAPI app, configures logging and
registers the messaging routes.  Point ``uvicorn`` at
``neighborly.main:app`` to serve the application.
"""

from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from loguru import logger

from .config.app_config import get_app_config
from .config.store_config import get_store_config
from .controllers.chat_controller import router as chat_router
from .controllers.realtime_controller import router as realtime_router
from .utils.error_handler import MessagingError, http_exception_handler
from .utils.logger import setup_logging


def create_app() -> FastAPI:
    """Create and configure a FastAPI application."""
    app_config = get_app_config()
    store_config = get_store_config()
    setup_logging(app_config, store_config)

    app = FastAPI(title="NeighborlyNeeds Messaging", version="0.1.0", debug=app_config.app_debug)

    # Enable CORS for all origins; adjust in production as needed
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(MessagingError, http_exception_handler)

    app.include_router(chat_router)
    app.include_router(realtime_router)

    # Uploaded chat images are served from the local blob root
    if store_config.blob_base_url.startswith("/"):
        Path(store_config.blob_root).mkdir(parents=True, exist_ok=True)
        app.mount(
            store_config.blob_base_url,
            StaticFiles(directory=store_config.blob_root, check_dir=False),
            name="blobs",
        )

    @app.get("/health", tags=["Health"])
    async def health() -> dict[str, str]:
        """Simple health check endpoint."""
        logger.debug("Health check invoked")
        return {"status": "ok"}

    logger.info("Messaging app created ({} environment)", app_config.app_env)
    return app


# Create an application instance for ASGI servers
app = create_app()
