"""Plugin registry — descriptors and launch profiles of installed plugins.

Populated once at startup from the builtin definitions and from optional
``plugin.json`` manifests:

    plugins/
      my-runtime/
        plugin.json      <- Required manifest

plugin.json manifest:
{
  "name": "My Runtime",
  "description": "A local inference server",
  "capabilities": ["model_download", "service_start", "service_stop"],
  "launch": {
    "binary": "my-runtime",
    "args": ["--model", "{model_path}", "--task", "{task_type}"],
    "env": {}
  }
}

The plugin id is the directory name unless the manifest sets ``id``.
After startup the registry is only read, so lookups take no lock.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from inferhub.plugins.errors import CapabilityNotSupported, UnknownPlugin
from inferhub.plugins.models import PluginCapability, PluginDescriptor

logger = logging.getLogger(__name__)

_MANIFEST_FILENAME = "plugin.json"


@dataclass(frozen=True)
class LaunchProfile:
    """Defaults used when starting a plugin's service."""

    binary: str | None = None
    args: tuple[str, ...] = ()
    env: Mapping[str, str] = field(default_factory=dict)

    def render_args(self, model_path: str, task_type: str) -> list[str]:
        return [
            arg.replace("{model_path}", model_path).replace("{task_type}", task_type)
            for arg in self.args
        ]


class PluginRegistry:
    """Authoritative list of installed plugins."""

    def __init__(self) -> None:
        self._descriptors: dict[str, PluginDescriptor] = {}
        self._profiles: dict[str, LaunchProfile] = {}

    def register(
        self, descriptor: PluginDescriptor, profile: LaunchProfile | None = None
    ) -> bool:
        """Register a plugin. Returns False when the id is already taken."""
        if descriptor.id in self._descriptors:
            logger.warning("Plugin '%s' already registered, ignoring duplicate", descriptor.id)
            return False
        self._descriptors[descriptor.id] = descriptor
        self._profiles[descriptor.id] = profile or LaunchProfile()
        logger.info(
            "Registered plugin: %s (%s)",
            descriptor.id,
            ", ".join(c.value for c in descriptor.capabilities) or "no capabilities",
        )
        return True

    def register_definition(self, definition: Mapping[str, Any]) -> bool:
        descriptor, profile = parse_definition(definition)
        return self.register(descriptor, profile)

    def list(self) -> list[PluginDescriptor]:
        """All plugins in registration order."""
        return list(self._descriptors.values())

    def resolve(self, plugin_id: str) -> PluginDescriptor:
        descriptor = self._descriptors.get(plugin_id)
        if descriptor is None:
            raise UnknownPlugin(plugin_id)
        return descriptor

    def supports(self, plugin_id: str, capability: PluginCapability) -> bool:
        return capability in self.resolve(plugin_id).capabilities

    def require(self, plugin_id: str, capability: PluginCapability) -> PluginDescriptor:
        """Resolve a plugin and check that it declares ``capability``."""
        descriptor = self.resolve(plugin_id)
        if capability not in descriptor.capabilities:
            raise CapabilityNotSupported(plugin_id, capability.value)
        return descriptor

    def launch_profile(self, plugin_id: str) -> LaunchProfile:
        self.resolve(plugin_id)
        return self._profiles[plugin_id]

    def __contains__(self, plugin_id: object) -> bool:
        return plugin_id in self._descriptors

    def __len__(self) -> int:
        return len(self._descriptors)

    @classmethod
    def from_definitions(cls, definitions: Iterable[Mapping[str, Any]]) -> PluginRegistry:
        registry = cls()
        for definition in definitions:
            registry.register_definition(definition)
        return registry


def parse_definition(definition: Mapping[str, Any]) -> tuple[PluginDescriptor, LaunchProfile]:
    """Build a descriptor and launch profile from a definition dict.

    Raises ``ValueError`` on unknown capability tags or missing fields.
    """
    plugin_id = str(definition.get("id") or "").strip()
    if not plugin_id:
        raise ValueError("Plugin definition is missing 'id'")

    try:
        descriptor = PluginDescriptor(
            id=plugin_id,
            name=definition.get("name") or plugin_id,
            description=definition.get("description", ""),
            capabilities=tuple(definition.get("capabilities") or ()),
        )
    except ValidationError as e:
        raise ValueError(f"Invalid plugin definition '{plugin_id}': {e}") from e

    launch = definition.get("launch") or {}
    profile = LaunchProfile(
        binary=launch.get("binary") or None,
        args=tuple(str(arg) for arg in launch.get("args") or ()),
        env={str(k): str(v) for k, v in (launch.get("env") or {}).items()},
    )
    return descriptor, profile


def _read_manifest(plugin_dir: Path) -> dict | None:
    """Read plugin.json manifest from a plugin directory."""
    manifest_path = plugin_dir / _MANIFEST_FILENAME
    if not manifest_path.exists():
        return None
    try:
        data = json.loads(manifest_path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError) as e:
        logger.warning("Failed to read manifest at %s: %s", manifest_path, e)
        return None
    if not isinstance(data, dict):
        logger.warning("Manifest at %s is not a JSON object", manifest_path)
        return None
    return data


def discover_manifests(plugins_dir: Path) -> list[dict[str, Any]]:
    """Collect definitions from ``<plugins_dir>/<id>/plugin.json``."""
    if not plugins_dir.is_dir():
        return []

    definitions = []
    for item in sorted(plugins_dir.iterdir()):
        if not item.is_dir():
            continue
        manifest = _read_manifest(item)
        if manifest is None:
            continue
        manifest.setdefault("id", item.name)
        definitions.append(manifest)
    return definitions


def build_registry(plugins_dir: Path | None = None) -> PluginRegistry:
    """Register builtin plugins, then any manifests found under ``plugins_dir``."""
    from inferhub.plugins.builtins import get_definitions

    registry = PluginRegistry()
    definitions = list(get_definitions())
    if plugins_dir is not None:
        definitions.extend(discover_manifests(plugins_dir))

    for definition in definitions:
        try:
            registry.register_definition(definition)
        except ValueError as e:
            logger.warning("Skipping plugin: %s", e)
    return registry
