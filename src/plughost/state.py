"""
Persisted plugin state.

The state file maps plugin ids to the administrator's enabled/disabled
choice and reload history. It is always rewritten in full.
"""

from pathlib import Path
from typing import Any, Dict, Optional, Union
import copy
import json
import logging
import os
import tempfile

logger = logging.getLogger(__name__)

# Python argument name -> key in the state file
FIELD_KEYS = {
    "enabled": "enabled",
    "loaded_at": "loadedAt",
    "reload_count": "reloadCount",
    "last_reload": "lastReload",
}


class PluginStateStore:
    """Durable map of plugin id -> {enabled, loadedAt, reloadCount, lastReload}."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self.state: Dict[str, Dict[str, Any]] = {}

    def load(self) -> Dict[str, Dict[str, Any]]:
        """Load the state file. Missing or corrupt files yield an empty map."""
        self.state = {}
        if not self.path.exists():
            return self.state

        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to load plugin state: {e}")
            return self.state

        if not isinstance(data, dict):
            logger.warning(f"Ignoring plugin state in {self.path}: expected a JSON object")
            return self.state

        self.state = {
            plugin_id: entry for plugin_id, entry in data.items()
            if isinstance(entry, dict)
        }
        return self.state

    def save(self) -> bool:
        """Overwrite the state file. Failures are logged, not raised."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(self.state, f, indent=2)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_name, self.path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
            return True
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Failed to save plugin state: {e}")
            return False

    def get(self, plugin_id: str) -> Dict[str, Any]:
        return dict(self.state.get(plugin_id, {}))

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        return copy.deepcopy(self.state)

    def update(self, plugin_id: str, **fields) -> bool:
        """Merge fields into a plugin's entry and save."""
        entry = self.state.setdefault(plugin_id, {})
        for name, value in fields.items():
            if name not in FIELD_KEYS:
                raise TypeError(f"Unknown plugin state field: {name}")
            entry[FIELD_KEYS[name]] = value
        return self.save()

    def remove(self, plugin_id: str) -> bool:
        self.state.pop(plugin_id, None)
        return self.save()

    def resolve_enabled(self, plugin_id: str, manifest_default: Optional[bool] = None) -> bool:
        """Explicit persisted choice wins, then the manifest default, then True."""
        enabled = self.state.get(plugin_id, {}).get("enabled")
        if isinstance(enabled, bool):
            return enabled
        if manifest_default is not None:
            return manifest_default
        return True

    def is_enabled(self, plugin_id: str) -> bool:
        return self.state.get(plugin_id, {}).get("enabled") is True

    def increment_reload(self, plugin_id: str, timestamp: str) -> int:
        """Bump the reload counter and save. Returns the new count."""
        entry = self.state.setdefault(plugin_id, {})
        count = int(entry.get("reloadCount") or 0) + 1
        entry["reloadCount"] = count
        entry["lastReload"] = timestamp
        self.save()
        return count
