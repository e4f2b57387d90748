"""Plugin manager — the single entry point used by the HTTP layer.

Routes a plugin id plus an action to the registry, the process supervisor
or the download pipeline.  It keeps no state of its own.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ValidationError

from inferhub.config import Settings, get_settings
from inferhub.plugins.downloads import DownloadPipeline
from inferhub.plugins.errors import InvalidRequest
from inferhub.plugins.models import (
    DownloadRequest,
    DownloadResult,
    PluginDescriptor,
    ServiceStatus,
    StartRequest,
    StartResult,
    StopRequest,
    StopResult,
    TaskType,
)
from inferhub.plugins.registry import PluginRegistry, build_registry
from inferhub.plugins.supervisor import ProcessSupervisor

logger = logging.getLogger(__name__)

ACTIONS = ("list", "download", "start", "stop")


class PluginManager:
    def __init__(
        self,
        registry: PluginRegistry,
        supervisor: ProcessSupervisor,
        downloads: DownloadPipeline,
    ):
        self.registry = registry
        self.supervisor = supervisor
        self.downloads = downloads

    @classmethod
    def bootstrap(cls, settings: Settings | None = None) -> PluginManager:
        """Build the registry and components from settings."""
        settings = settings or get_settings()
        settings.ensure_directories()

        registry = build_registry(settings.plugins_dir)
        logger.info("Plugin manager ready with %d plugin(s)", len(registry))
        return cls(
            registry=registry,
            supervisor=ProcessSupervisor(registry, settings),
            downloads=DownloadPipeline(registry, settings),
        )

    def list_plugins(self) -> list[PluginDescriptor]:
        return self.registry.list()

    async def download(self, plugin_id: str, request: DownloadRequest) -> DownloadResult:
        return await self.downloads.download(plugin_id, request)

    async def start(self, plugin_id: str, request: StartRequest) -> StartResult:
        return await self.supervisor.start(plugin_id, request)

    async def stop(self, plugin_id: str, request: StopRequest) -> StopResult:
        return await self.supervisor.stop(plugin_id, request)

    def services(self, plugin_id: str | None = None) -> list[ServiceStatus]:
        return self.supervisor.status(plugin_id)

    def service_logs(self, plugin_id: str, task_type: TaskType, lines: int = 200) -> list[str]:
        return self.supervisor.read_logs(plugin_id, task_type, lines)

    async def dispatch(
        self,
        plugin_id: str | None,
        action: str,
        payload: Mapping[str, Any] | None = None,
    ) -> BaseModel | list[BaseModel]:
        """Run ``action`` for ``plugin_id`` with an unvalidated payload."""
        action = (action or "").strip().lower()
        if action == "list":
            return self.list_plugins()
        if action not in ACTIONS:
            raise InvalidRequest(f"Unknown action '{action}'. Use one of: {', '.join(ACTIONS)}")
        if not plugin_id:
            raise InvalidRequest(f"plugin_id is required for action '{action}'")

        if action == "download":
            return await self.download(plugin_id, _parse(DownloadRequest, payload))
        if action == "start":
            return await self.start(plugin_id, _parse(StartRequest, payload))
        return await self.stop(plugin_id, _parse(StopRequest, payload))

    async def shutdown(self) -> None:
        """Stop all services and release the HTTP client."""
        await self.supervisor.shutdown()
        await self.downloads.aclose()


def _parse(model: type[BaseModel], payload: Mapping[str, Any] | None) -> Any:
    try:
        return model.model_validate(dict(payload or {}))
    except ValidationError as e:
        raise InvalidRequest(f"Invalid {model.__name__}: {e}") from e
