"""
Per-plugin capability surface.

A plugin never touches the HTTP app, real-time transport, live-event source
or settings store directly. It gets a ``PluginContext`` scoped to its id and
everything it registers goes through it, tagged with that id.
"""

from pathlib import Path
from typing import Any, Callable, List, Optional, Tuple
import inspect
import json
import logging
import re

from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from .actions import ActionRegistry
from .events import EventBus
from .realtime import Connection, RealtimeHub
from .router import PluginRouter, RouteRecord
from .settings import SettingsStore

logger = logging.getLogger(__name__)

HTTP_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS")

_EXPRESS_PARAM = re.compile(r":([A-Za-z_][A-Za-z0-9_]*)")


def normalize_path(path: str) -> str:
    """Normalize a route path: leading slash, no trailing slash, ``:id`` -> ``{id}``."""
    path = path.strip()
    if not path.startswith("/"):
        path = f"/{path}"
    if len(path) > 1:
        path = path.rstrip("/") or "/"
    return _EXPRESS_PARAM.sub(r"{\1}", path)


async def _call(handler: Callable, *args) -> Any:
    if inspect.iscoroutinefunction(handler):
        return await handler(*args)
    result = handler(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


class PluginContext:
    """The bounded set of host operations available to one plugin."""

    def __init__(
        self,
        plugin_id: str,
        plugin_dir: Path,
        router: PluginRouter,
        realtime: RealtimeHub,
        live_events: EventBus,
        actions: ActionRegistry,
        settings: SettingsStore,
    ):
        self.plugin_id = plugin_id
        self.plugin_dir = Path(plugin_dir)
        self._router = router
        self._realtime = realtime
        self._live_events = live_events
        self._actions = actions
        self._settings = settings
        self.logger = logging.getLogger(f"plughost.plugins.{plugin_id}")

        self.routes: List[RouteRecord] = []
        self.realtime_handlers: List[Tuple[str, Callable]] = []
        self.external_handlers: List[Tuple[str, Callable]] = []
        self.actions: List[str] = []

    def log(self, message: str, level: str = "info") -> None:
        """Log a message prefixed with the plugin id."""
        if level == "warn":
            level = "warning"
        log = getattr(self.logger, level, self.logger.info)
        log(f"[Plugin:{self.plugin_id}] {message}")

    def public_url(self, file: str) -> str:
        """Public URL of a file shipped in the plugin directory."""
        return f"/plugins/{self.plugin_id}/{file.lstrip('/')}"

    # Registration

    def register_route(self, method: str, path: str, handler: Callable) -> bool:
        """Register an HTTP route on the shared plugin router.

        ``handler`` receives a Starlette ``Request`` and may return a
        ``Response`` or any JSON-serializable value. Errors raised by the
        handler become a JSON failure response. Returns False for an invalid
        method or path.
        """
        method = (method or "").upper()
        if method not in HTTP_METHODS:
            self.log(f"Failed to register route: Invalid HTTP method: {method}", "error")
            return False

        full_path = normalize_path(path or "")

        async def endpoint(request: Request) -> Response:
            try:
                if inspect.iscoroutinefunction(handler):
                    result = await handler(request)
                else:
                    result = await run_in_threadpool(handler, request)
                    if inspect.isawaitable(result):
                        result = await result
                if isinstance(result, Response):
                    return result
                return JSONResponse(result)
            except HTTPException as e:
                return JSONResponse(
                    {"success": False, "error": e.detail},
                    status_code=e.status_code,
                )
            except Exception as e:
                self.log(f"Route error in {full_path}: {e}", "error")
                return JSONResponse(
                    {"success": False, "error": "Plugin route error", "message": str(e)},
                    status_code=500,
                )

        try:
            record = self._router.add(self.plugin_id, method, full_path, endpoint)
        except (AssertionError, ValueError) as e:
            self.log(f"Failed to register route {method} {full_path}: {e}", "error")
            return False

        self.routes.append(record)
        self.log(f"Registered route: {method} {full_path}")
        return True

    def register_realtime_event(self, event: str, callback: Callable) -> bool:
        """Handle a real-time event from clients.

        ``callback`` is called as ``callback(connection, *args)``. Errors are
        reported back to that connection as ``plugin:error``.
        """
        async def listener(connection: Connection, *args) -> None:
            try:
                await _call(callback, connection, *args)
            except Exception as e:
                self.log(f"Socket event error in {event}: {e}", "error")
                connection.send("plugin:error", {
                    "plugin": self.plugin_id,
                    "event": event,
                    "error": str(e),
                })

        self.realtime_handlers.append((event, listener))
        for connection in list(self._realtime.connections.values()):
            connection.on(event, listener)

        self.log(f"Registered socket event: {event}")
        return True

    def register_external_event(self, event: str, callback: Callable) -> bool:
        """Subscribe to a live-event source event. Errors are only logged."""
        async def listener(data: Any = None) -> None:
            try:
                await _call(callback, data)
            except Exception as e:
                self.log(f"Live event error in {event}: {e}", "error")

        self._live_events.on(event, listener)
        self.external_handlers.append((event, listener))
        self.log(f"Registered live event: {event}")
        return True

    def register_automation_action(self, name: str, handler: Callable) -> bool:
        """Register an automation action. Errors become ``{success: False, error}``."""
        async def action(params: Any) -> Any:
            try:
                return await _call(handler, params)
            except Exception as e:
                self.log(f"Flow action error in {name}: {e}", "error")
                return {"success": False, "error": str(e)}

        self._actions.register(name, action, owner=self.plugin_id)
        self.actions.append(name)
        self.log(f"Registered flow action: {name}")
        return True

    # Configuration

    def _config_key(self, key: Optional[str]) -> str:
        return f"plugin:{self.plugin_id}:{key if key else 'config'}"

    def get_config(self, key: Optional[str] = None) -> Any:
        """Read a config value. Returns None if absent or unreadable."""
        try:
            raw = self._settings.get(self._config_key(key))
            if raw is None:
                return None
            return json.loads(raw)
        except Exception as e:
            self.log(f"Failed to get config: {e}", "error")
            return None

    def set_config(self, key: Optional[str], value: Any) -> bool:
        try:
            self._settings.set(self._config_key(key), json.dumps(value))
        except Exception as e:
            self.log(f"Failed to set config: {e}", "error")
            return False
        self.log(f"Config saved: {key or 'config'}")
        return True

    def emit(self, event: str, data: Any = None) -> bool:
        """Broadcast an event to every connected real-time client."""
        try:
            self._realtime.emit(event, data)
            return True
        except Exception as e:
            self.log(f"Failed to emit event: {e}", "error")
            return False

    # Teardown

    def attach(self, connection: Connection) -> None:
        """Attach this plugin's real-time listeners to a new connection."""
        for event, listener in self.realtime_handlers:
            connection.on(event, listener)

    def unregister_all(self) -> None:
        """Drop every registration this plugin made.

        Real-time listeners are detached from all current connections.
        Routes cannot be removed from the shared router; they are marked
        stale instead unless the router removes routes on unload.
        """
        for event, listener in self.realtime_handlers:
            for connection in list(self._realtime.connections.values()):
                connection.off(event, listener)
            self.log(f"Unregistered socket event: {event}")

        if self.routes:
            released = self._router.release(self.plugin_id)
            if self._router.remove_on_unload:
                self.log(f"Removed {len(released)} routes")
            else:
                self.log(
                    f"WARNING: {len(self.routes)} routes cannot be unregistered "
                    f"and remain reachable as stale routes",
                    "warning",
                )
                self.log(
                    "Frequent plugin reloads leak route handlers. Restart the server to clean up.",
                    "warning",
                )

        self.realtime_handlers = []
        self.external_handlers = []
        self.actions = []

        self.log("All registrations cleared")
