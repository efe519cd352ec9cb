"""Exceptions raised by the plugin runtime."""

from typing import Optional


class PluginError(Exception):
    """Base class for plugin runtime errors."""


class ManifestError(PluginError):
    """A plugin manifest is missing or malformed."""


class PluginLoadError(PluginError):
    """A plugin failed to import, construct or initialize.

    ``stage`` is one of ``"import"``, ``"construct"`` or ``"init"``.
    """

    def __init__(self, plugin_id: str, stage: str, cause: Optional[BaseException] = None):
        self.plugin_id = plugin_id
        self.stage = stage
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Plugin {plugin_id} {stage} failed{detail}")
