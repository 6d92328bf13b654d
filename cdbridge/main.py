"""
CDBridge - Main application entry point.
"""
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI, Request

from .cdevents import EventPublisher
from .config import Settings, settings
from .logger import logger, setup_logging
from .setup import InstallationResolver
from .storage import DatabaseManager
from .web import create_api_router
from .webhook import WebhookHandler, GitProvider


def create_app(app_settings: Optional[Settings] = None) -> FastAPI:
    """Build the application and wire its components."""
    app_settings = app_settings or settings
    setup_logging(app_settings.debug)

    db = DatabaseManager(database_url=app_settings.database_url)
    resolver = InstallationResolver(db, app_settings)
    publisher = EventPublisher(timeout=app_settings.publish_timeout)
    webhook_handler = WebhookHandler(resolver, publisher, app_settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager."""
        await db.init_db()
        logger.info("Database initialized")

        async with httpx.AsyncClient(timeout=app_settings.publish_timeout) as client:
            publisher.use_client(client)
            logger.info("Publisher ready")

            yield

            logger.info("Shutting down application...")
            publisher.use_client(None)

        await db.close()
        logger.info("Application shutdown complete")

    app = FastAPI(
        title=app_settings.app_name,
        description="Git provider webhooks republished as CDEvents",
        version=app_settings.app_version,
        lifespan=lifespan,
        debug=app_settings.debug
    )
    app.state.db = db
    app.state.resolver = resolver
    app.state.publisher = publisher

    # Webhook endpoints
    @app.post("/webhooks/github")
    async def github_webhook(request: Request):
        """GitHub App webhook endpoint."""
        return await webhook_handler.handle_webhook(request, GitProvider.GITHUB)

    @app.post("/webhooks/gitlab")
    async def gitlab_webhook(request: Request):
        """GitLab webhook endpoint."""
        return await webhook_handler.handle_webhook(request, GitProvider.GITLAB)

    app.include_router(create_api_router(resolver, app_settings))

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "default_credentials": "configured" if resolver.default_credentials().is_complete else "missing",
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "cdbridge.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level="debug" if settings.debug else "info"
    )
