"""FastAPI application exposing the plugin manager."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from inferhub import __version__
from inferhub.config import Settings, get_settings
from inferhub.plugins.api import router as plugins_router
from inferhub.plugins.manager import PluginManager

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None, manager: PluginManager | None = None
) -> FastAPI:
    """Build the app. A ``manager`` passed in is used as-is and not shut down."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = getattr(app.state, "plugin_manager", None) is None
        if owned:
            app.state.plugin_manager = PluginManager.bootstrap(settings or get_settings())
        logger.info("inferhub v%s started", __version__)
        yield
        if owned:
            logger.info("Shutting down plugin services")
            await app.state.plugin_manager.shutdown()

    app = FastAPI(title="inferhub", version=__version__, lifespan=lifespan)
    if manager is not None:
        app.state.plugin_manager = manager
    app.include_router(plugins_router)
    return app
