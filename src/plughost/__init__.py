"""
plughost - Plugin runtime for the live-event companion server

Discovers plugin directories, loads them in bounded batches, persists the
operator's enabled/disabled choices and gives every plugin a scoped
``PluginContext`` for routes, real-time events, live events, automation
actions and configuration.

Example:
    >>> from plughost import HostConfig, Plugin, PluginManager, create_app
    >>>
    >>> # plugins/soundboard/main.py
    >>> class Soundboard(Plugin):
    ...     async def init(self):
    ...         self.context.register_route("GET", "/api/soundboard/ping", self.ping)
    ...         self.context.register_external_event("gift", self.on_gift)
    ...     async def ping(self, request):
    ...         return {"pong": True}
    ...     async def on_gift(self, data):
    ...         self.context.emit("soundboard:play", data)
    >>>
    >>> manager = PluginManager(HostConfig(plugins_dir="./plugins"))
    >>> app = create_app(manager)
"""

from .actions import ActionRegistration, ActionRegistry
from .app import create_app
from .config import HostConfig
from .context import PluginContext
from .errors import ManifestError, PluginError, PluginLoadError
from .events import EventBus, EventPriority
from .manager import LoadedPlugin, LoadResult, LoadStatus, LoadSummary, PluginManager
from .manifest import PluginManifest, discover_plugin_dirs, read_manifest
from .plugin import Plugin, PluginState
from .realtime import Connection, RealtimeHub
from .router import PluginRouter, RouteRecord
from .settings import SettingsStore
from .state import PluginStateStore

__version__ = "0.1.0"
__all__ = [
    # Plugin contract
    "Plugin",
    "PluginContext",
    "PluginState",
    "PluginManifest",
    # Management
    "PluginManager",
    "LoadedPlugin",
    "LoadResult",
    "LoadStatus",
    "LoadSummary",
    "PluginStateStore",
    "HostConfig",
    "discover_plugin_dirs",
    "read_manifest",
    # Host collaborators
    "PluginRouter",
    "RouteRecord",
    "RealtimeHub",
    "Connection",
    "EventBus",
    "EventPriority",
    "ActionRegistry",
    "ActionRegistration",
    "SettingsStore",
    "create_app",
    # Errors
    "PluginError",
    "ManifestError",
    "PluginLoadError",
]
