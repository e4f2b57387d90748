# Shared fixtures for the plugin runtime tests.
#
# Services are played by short Python scripts run with sys.executable,
# so the tests need nothing but a Python interpreter.

import sys

import pytest

from inferhub.config import Settings
from inferhub.plugins.registry import PluginRegistry

SERVE_SCRIPT = (
    "import os, sys, time\n"
    "print('serving', ' '.join(sys.argv[1:]), 'MODE=' + os.getenv('SERVE_MODE', ''), flush=True)\n"
    "time.sleep(60)\n"
)


def make_definition(plugin_id: str, capabilities=None, script: str = SERVE_SCRIPT) -> dict:
    return {
        "id": plugin_id,
        "name": plugin_id,
        "description": f"{plugin_id} test runtime",
        "capabilities": (
            capabilities
            if capabilities is not None
            else ["model_download", "service_start", "service_stop"]
        ),
        "launch": {
            "binary": sys.executable,
            "args": ["-c", script, "{model_path}", "{task_type}"],
            "env": {"SERVE_MODE": "default"},
        },
    }


@pytest.fixture
def settings(tmp_path):
    return Settings(
        data_dir=tmp_path / "data",
        stop_grace_period=3.0,
        startup_check_seconds=0.1,
        download_chunk_size=1024,
        model_repository_url="https://models.test",
    )


@pytest.fixture
def registry():
    return PluginRegistry.from_definitions(
        [
            make_definition("llmserver-rs"),
            make_definition("download-only", capabilities=["model_download"]),
        ]
    )
