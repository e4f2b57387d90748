"""Built-in: llmserver-rs — local text and TTS inference server."""

from inferhub.plugins.builtins._base import PluginDefinition

DEFINITION: PluginDefinition = {
    "id": "llmserver-rs",
    "name": "llmserver-rs",
    "description": "Manage llmserver-rs instances and download models",
    "capabilities": ["model_download", "service_start", "service_stop"],
    "launch": {
        "binary": "llmserver",
        "args": ["serve", "--model", "{model_path}", "--task", "{task_type}"],
        "env": {"RUST_LOG": "info"},
    },
}
