from __future__ import annotations

import logging
from typing import Optional

from fastapi import FastAPI, Request

from backend.app.config import Settings
from backend.app.logging_config import setup_logging

logger = logging.getLogger("addonhost.core")


def create_app(
    settings: Optional[Settings] = None,
    *,
    context=None,
    configure_logging: bool = True,
) -> FastAPI:
    """
    Build the application. The addon context is created at startup (or taken
    from `context`) and closed at shutdown; handlers reach it via app.state.
    """
    settings = settings or Settings.from_env()

    app = FastAPI(
        title="Addonhost",
        response_model_by_alias=False,
    )
    app.state.settings = settings
    app.state.addon_context = context

    # Delayed imports keep `import backend.app.main` free of docker/requests setup.
    from .addons.api.router import install_error_handlers, router as addons_router

    install_error_handlers(app)
    app.include_router(addons_router)

    @app.on_event("startup")
    async def startup_event() -> None:
        if configure_logging:
            setup_logging(settings.log_dir)
        logger.info("Addonhost backend starting")

        if app.state.addon_context is None:
            from .addons.context import AddonContext

            try:
                app.state.addon_context = AddonContext.build(settings)
            except Exception:
                logger.exception("Application startup failed")
                raise

        if not settings.addons_enabled:
            logger.info("Addon system disabled (ADDONS_ENABLED=false)")
        logger.info("Mounted addon routers")

    @app.on_event("shutdown")
    async def shutdown_event() -> None:
        logger.info("Running application shutdown tasks")
        ctx = app.state.addon_context
        if ctx is not None:
            ctx.close()

    @app.get("/api/health")
    def health(request: Request) -> dict:
        ctx = request.app.state.addon_context
        engine = "disabled"
        if ctx is not None and settings.addons_enabled:
            engine = "ok" if ctx.runtime.ping() else "unavailable"
        return {"status": "ok", "service": "Addonhost", "engine": engine}

    return app


app = create_app()
