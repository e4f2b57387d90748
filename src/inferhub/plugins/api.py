"""Plugins — FastAPI API router.

Provides REST endpoints for:
  /plugins                                   — registered plugins
  /plugins/{id}/models/download              — stream a model file to disk
  /plugins/{id}/services/start|stop          — service lifecycle
  /plugins/{id}/services                     — running services
  /plugins/{id}/services/{task_type}/logs    — service output
"""

import logging

from fastapi import APIRouter, HTTPException, Request

from inferhub.plugins.errors import PluginError
from inferhub.plugins.manager import PluginManager
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

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/plugins", tags=["Plugins"])


def _manager(request: Request) -> PluginManager:
    return request.app.state.plugin_manager


def _http_error(error: PluginError) -> HTTPException:
    return HTTPException(
        status_code=error.status_code,
        detail={"kind": error.kind, "message": str(error)},
    )


@router.get("", response_model=list[PluginDescriptor])
async def list_plugins(request: Request):
    """List all registered plugins."""
    return _manager(request).list_plugins()


@router.post("/{plugin_id}/models/download", response_model=DownloadResult)
async def download_model(plugin_id: str, payload: DownloadRequest, request: Request):
    """Download a model file from the model repository."""
    try:
        return await _manager(request).download(plugin_id, payload)
    except PluginError as e:
        raise _http_error(e) from e
    except Exception as e:
        logger.exception("Model download failed: %s", plugin_id)
        raise HTTPException(status_code=500, detail=str(e)) from e


@router.post("/{plugin_id}/services/start", response_model=StartResult)
async def start_service(plugin_id: str, payload: StartRequest, request: Request):
    """Start the plugin's service for a task type."""
    try:
        return await _manager(request).start(plugin_id, payload)
    except PluginError as e:
        raise _http_error(e) from e
    except Exception as e:
        logger.exception("Service start failed: %s", plugin_id)
        raise HTTPException(status_code=500, detail=str(e)) from e


@router.post("/{plugin_id}/services/stop", response_model=StopResult)
async def stop_service(plugin_id: str, payload: StopRequest, request: Request):
    """Stop the plugin's service for a task type."""
    try:
        return await _manager(request).stop(plugin_id, payload)
    except PluginError as e:
        raise _http_error(e) from e
    except Exception as e:
        logger.exception("Service stop failed: %s", plugin_id)
        raise HTTPException(status_code=500, detail=str(e)) from e


@router.get("/{plugin_id}/services", response_model=list[ServiceStatus])
async def list_services(plugin_id: str, request: Request):
    """List the plugin's running services."""
    try:
        return _manager(request).services(plugin_id)
    except PluginError as e:
        raise _http_error(e) from e


@router.get("/{plugin_id}/services/{task_type}/logs")
async def get_service_logs(plugin_id: str, task_type: TaskType, request: Request):
    """Get recent output of a service."""
    try:
        lines = _manager(request).service_logs(plugin_id, task_type)
    except PluginError as e:
        raise _http_error(e) from e
    return {"plugin_id": plugin_id, "task_type": task_type, "logs": lines}
