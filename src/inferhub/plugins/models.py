"""Request, response and descriptor models for the plugin runtime."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class PluginCapability(str, Enum):
    MODEL_DOWNLOAD = "model_download"
    SERVICE_START = "service_start"
    SERVICE_STOP = "service_stop"


class TaskType(str, Enum):
    TEXT = "text"
    TTS = "tts"


class ServiceState(str, Enum):
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


class PluginDescriptor(BaseModel):
    """Static metadata of an installed plugin. Never mutated once registered."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: str = ""
    capabilities: tuple[PluginCapability, ...] = ()

    @field_validator("capabilities")
    @classmethod
    def _dedupe(cls, value: tuple[PluginCapability, ...]) -> tuple[PluginCapability, ...]:
        return tuple(dict.fromkeys(value))


class DownloadRequest(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    model_id: str = Field(description="Repository id, e.g. 'org/model'")
    filename: str = Field(description="File inside the repository")
    revision: str = Field(default="main", description="Branch, tag or commit")
    destination_dir: str | None = Field(default=None, description="Override download directory")
    auth_token: str | None = Field(default=None, description="Bearer token for private repos")
    task_type: TaskType
    overwrite: bool = Field(default=False, description="Replace an existing file")


class DownloadResult(BaseModel):
    saved_path: str
    bytes_written: int


class StartRequest(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    model_path: str
    binary_path: str | None = None
    args: list[str] = Field(default_factory=list, description="Extra CLI arguments")
    environment: dict[str, str] = Field(default_factory=dict)
    task_type: TaskType


class StartResult(BaseModel):
    pid: int
    command: str
    args: list[str]


class StopRequest(BaseModel):
    task_type: TaskType


class StopResult(BaseModel):
    task_type: TaskType
    terminated: bool


class ServiceStatus(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    plugin_id: str
    task_type: TaskType
    pid: int | None = None
    state: ServiceState
    command: str
    args: list[str]
    model_path: str
    started_at: datetime
