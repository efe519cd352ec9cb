"""
Plugin manifest parsing and plugin directory discovery.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union
import json
import logging

from .errors import ManifestError

logger = logging.getLogger(__name__)

MANIFEST_FILENAME = "plugin.json"
REQUIRED_FIELDS = ("id", "name", "entry")
PRIVATE_PREFIXES = ("_", ".")


@dataclass(frozen=True)
class PluginManifest:
    """Declarative plugin descriptor read from ``plugin.json``."""
    id: str
    name: str
    entry: str
    version: str = "0.0.0"
    description: str = ""
    author: str = ""
    type: str = ""
    enabled: bool = True
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> "PluginManifest":
        """Create a manifest from parsed JSON, validating required fields."""
        if not isinstance(data, dict):
            raise ManifestError("manifest must be a JSON object")

        missing = [
            name for name in REQUIRED_FIELDS
            if not isinstance(data.get(name), str) or not data[name].strip()
        ]
        if missing:
            raise ManifestError(f"missing required fields: {', '.join(missing)}")

        known = {"id", "name", "entry", "version", "description", "author", "type", "enabled"}
        return cls(
            id=data["id"].strip(),
            name=data["name"],
            entry=data["entry"],
            version=str(data.get("version") or "0.0.0"),
            description=data.get("description") or "",
            author=data.get("author") or "",
            type=data.get("type") or "",
            # Only an explicit false disables by default
            enabled=data.get("enabled") is not False,
            extra={k: v for k, v in data.items() if k not in known},
        )

    def entry_path(self, directory: Union[str, Path]) -> Path:
        return Path(directory) / self.entry

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "entry": self.entry,
            "version": self.version,
            "description": self.description,
            "author": self.author,
            "type": self.type,
            "enabled": self.enabled,
            **self.extra,
        }


def discover_plugin_dirs(root: Union[str, Path]) -> List[Path]:
    """Return candidate plugin directories below ``root``.

    The root is created when missing. Files and directories whose name starts
    with ``_`` or ``.`` are ignored.
    """
    root = Path(root)
    if not root.exists():
        root.mkdir(parents=True, exist_ok=True)
        logger.info(f"Created plugins directory: {root}")

    discovered = []
    for item in sorted(root.iterdir()):
        if not item.is_dir() or item.name.startswith(PRIVATE_PREFIXES):
            continue
        discovered.append(item)

    return discovered


def read_manifest(
    directory: Union[str, Path],
    filename: str = MANIFEST_FILENAME
) -> Optional[PluginManifest]:
    """Read and validate a plugin manifest.

    Returns None (after logging a warning) when the manifest is missing or
    invalid; never raises.
    """
    manifest_path = Path(directory) / filename

    if not manifest_path.is_file():
        logger.warning(f"No {filename} found in {directory}")
        return None

    try:
        data = json.loads(manifest_path.read_text(encoding="utf-8"))
        return PluginManifest.from_dict(data)
    except (OSError, ValueError, ManifestError) as e:
        logger.warning(f"Invalid {filename} in {directory}: {e}")
        return None
