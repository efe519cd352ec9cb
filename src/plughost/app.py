"""
Host HTTP application.

Route order is: admin API, the shared plugin router (mounted once), then the
terminal not-found route.
"""

from contextlib import asynccontextmanager

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from .manager import PluginManager


ALL_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


def _result(ok: bool, plugin_id: str, manager: PluginManager, status_code: int = 500, **extra) -> JSONResponse:
    body = {
        "success": ok,
        "plugin": plugin_id,
        "loaded": manager.get_plugin(plugin_id) is not None,
        "enabled": manager.is_plugin_enabled(plugin_id),
        **extra,
    }
    return JSONResponse(body, status_code=200 if ok else status_code)


def create_app(manager: PluginManager, load_on_startup: bool = True) -> Starlette:
    """Build the host application around a plugin manager."""

    async def list_plugins(request: Request) -> JSONResponse:
        return JSONResponse({
            "success": True,
            "plugins": manager.list_plugins(),
            "state": manager.store.snapshot(),
        })

    async def list_routes(request: Request) -> JSONResponse:
        routes = manager.route_report()
        return JSONResponse({
            "success": True,
            "routes": routes,
            "stale": len(manager.router.stale_records()),
        })

    async def enable_plugin(request: Request) -> JSONResponse:
        plugin_id = request.path_params["plugin_id"]
        ok = await manager.enable_plugin(plugin_id)
        return _result(ok, plugin_id, manager, status_code=404)

    async def disable_plugin(request: Request) -> JSONResponse:
        plugin_id = request.path_params["plugin_id"]
        ok = await manager.disable_plugin(plugin_id)
        return _result(ok, plugin_id, manager)

    async def reload_plugin(request: Request) -> JSONResponse:
        plugin_id = request.path_params["plugin_id"]
        ok = await manager.reload_plugin(plugin_id)
        return _result(ok, plugin_id, manager, reloadCount=manager.store.get(plugin_id).get("reloadCount", 0))

    async def delete_plugin(request: Request) -> JSONResponse:
        plugin_id = request.path_params["plugin_id"]
        ok = await manager.delete_plugin(plugin_id)
        return _result(ok, plugin_id, manager)

    async def not_found(request: Request) -> JSONResponse:
        return JSONResponse(
            {"success": False, "error": "Not found", "path": request.url.path},
            status_code=404,
        )

    @asynccontextmanager
    async def lifespan(app: Starlette):
        if load_on_startup:
            await manager.load_all_plugins()
        yield
        await manager.shutdown()

    app = Starlette(
        routes=[
            Route("/api/plugins", list_plugins, methods=["GET"]),
            Route("/api/plugins/routes", list_routes, methods=["GET"]),
            Route("/api/plugins/{plugin_id}/enable", enable_plugin, methods=["POST"]),
            Route("/api/plugins/{plugin_id}/disable", disable_plugin, methods=["POST"]),
            Route("/api/plugins/{plugin_id}/reload", reload_plugin, methods=["POST"]),
            Route("/api/plugins/{plugin_id}", delete_plugin, methods=["DELETE"]),
            Route("/{path:path}", not_found, methods=ALL_METHODS),
        ],
        lifespan=lifespan,
    )
    # Mounted before any plugin loads; lands ahead of the not-found route
    manager.router.mount(app)
    app.state.plugin_manager = manager
    return app
