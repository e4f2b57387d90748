"""Built-in plugin definitions with auto-discovery.

Every Python module in this package (except ``_base``) that exposes a
``DEFINITION`` dict is auto-registered.  To add a new built-in, drop a
new ``.py`` file here — no other wiring needed.
"""

import importlib
import logging
import pkgutil
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

_DEFINITIONS: dict[str, dict[str, Any]] = {}


def _discover() -> None:
    """Import every sibling module and collect its DEFINITION."""
    if _DEFINITIONS:
        return
    package_dir = Path(__file__).resolve().parent
    for info in pkgutil.iter_modules([str(package_dir)]):
        if info.name.startswith("_"):
            continue
        try:
            mod = importlib.import_module(f"{__name__}.{info.name}")
        except Exception:
            logger.warning("Failed to load builtin plugin module '%s'", info.name, exc_info=True)
            continue
        defn = getattr(mod, "DEFINITION", None)
        if defn and isinstance(defn, dict) and "id" in defn:
            _DEFINITIONS[defn["id"]] = defn


def get_definitions() -> list[dict[str, Any]]:
    """Return every builtin definition, in discovery order."""
    _discover()
    return list(_DEFINITIONS.values())
