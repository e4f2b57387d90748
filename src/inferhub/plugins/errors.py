"""Typed failures raised by the plugin runtime.

Every error carries a machine-readable ``kind`` and the HTTP status the
router answers with. Errors are scoped to the request that raised them.
"""

from __future__ import annotations


class PluginError(Exception):
    kind = "plugin_error"
    status_code = 500


class UnknownPlugin(PluginError):
    kind = "unknown_plugin"
    status_code = 404

    def __init__(self, plugin_id: str):
        super().__init__(f"Plugin '{plugin_id}' is not registered")
        self.plugin_id = plugin_id


class CapabilityNotSupported(PluginError):
    kind = "capability_not_supported"
    status_code = 400

    def __init__(self, plugin_id: str, capability: str):
        super().__init__(f"Plugin '{plugin_id}' does not support '{capability}'")
        self.plugin_id = plugin_id
        self.capability = capability


class InvalidRequest(PluginError):
    kind = "invalid_request"
    status_code = 400


class ServiceAlreadyRunning(PluginError):
    kind = "service_already_running"
    status_code = 409

    def __init__(self, plugin_id: str, task_type: str):
        super().__init__(f"A '{task_type}' service for plugin '{plugin_id}' is already running")
        self.plugin_id = plugin_id
        self.task_type = task_type


class ProcessSpawnFailed(PluginError):
    kind = "process_spawn_failed"
    status_code = 500


class InvalidDestination(PluginError):
    kind = "invalid_destination"
    status_code = 400


class DestinationExists(PluginError):
    kind = "destination_exists"
    status_code = 409


class DownloadFailed(PluginError):
    kind = "download_failed"
    status_code = 502


class ChecksumOrSizeMismatch(DownloadFailed):
    kind = "checksum_or_size_mismatch"
