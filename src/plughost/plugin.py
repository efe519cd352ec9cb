"""
Plugin contract.

A plugin is any class constructed with a ``PluginContext``. ``init`` and
``destroy`` are optional lifecycle hooks (sync or async); a missing hook is
a no-op. Subclassing ``Plugin`` is the usual way to write one.
"""

from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .context import PluginContext


class PluginState(str, Enum):
    """Plugin lifecycle states."""
    UNLOADED = "unloaded"
    LOADING = "loading"
    ENABLED = "enabled"
    DISABLED = "disabled"
    UNLOADING = "unloading"
    ERROR = "error"


class Plugin:
    """Base plugin class."""

    def __init__(self, context: "PluginContext"):
        self.context = context

    @property
    def id(self) -> str:
        return self.context.plugin_id

    async def init(self) -> None:
        """Called once after construction. Register routes and events here."""
        pass

    async def destroy(self) -> None:
        """Called when the plugin is unloaded."""
        pass
