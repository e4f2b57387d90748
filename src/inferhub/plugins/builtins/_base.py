"""Base shape for builtin plugin definitions.

Every module in the builtins package must expose a ``DEFINITION`` dict that
conforms to the ``PluginDefinition`` shape below.  The ``__init__`` module
auto-discovers all sibling modules and builds a registry from them.

The same shape is used for ``plugin.json`` manifests found on disk.
"""

from __future__ import annotations

from typing import TypedDict


class LaunchDefinition(TypedDict, total=False):
    """How a plugin's inference server is started.

    ``binary`` is an absolute path or a name looked up on ``PATH``.
    ``args`` may reference ``{model_path}`` and ``{task_type}``.
    """

    binary: str
    args: list[str]
    env: dict[str, str]


class PluginDefinition(TypedDict, total=False):
    id: str
    name: str
    description: str
    capabilities: list[str]
    launch: LaunchDefinition
