"""inferhub plugins — runtime plugin management.

Manages:
  - Registry of installed plugins and their capabilities
  - One supervised inference process per (plugin, task type) slot
  - Streaming model downloads from a remote model repository
"""
