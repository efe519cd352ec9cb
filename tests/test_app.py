"""Tests for the host application and its admin API."""

import pytest

from plughost import create_app

from conftest import FAILING_INIT, client_for, write_plugin


@pytest.fixture
def app(manager):
    return create_app(manager)


class TestRouteReachability:
    """Plugin routes stay reachable however late they are registered."""

    @pytest.mark.asyncio
    async def test_late_enabled_plugin_is_reachable(self, app, manager, plugins_root):
        write_plugin(plugins_root, "alpha")
        write_plugin(plugins_root, "beta", enabled=False)
        await manager.load_all_plugins()

        async with client_for(app) as client:
            assert (await client.get("/api/alpha/ping")).json() == {"plugin": "alpha", "version": 1}
            assert (await client.get("/api/beta/ping")).status_code == 404

            response = await client.post("/api/plugins/beta/enable")
            assert response.status_code == 200
            assert response.json()["loaded"] is True

            assert (await client.get("/api/alpha/ping")).json() == {"plugin": "alpha", "version": 1}
            assert (await client.get("/api/beta/ping")).json() == {"plugin": "beta", "version": 1}

            missing = await client.get("/api/nowhere")
            assert missing.status_code == 404
            assert missing.json() == {"success": False, "error": "Not found", "path": "/api/nowhere"}

    def test_router_mounted_ahead_of_not_found(self, app, manager):
        assert app.router.routes.index(manager.router) == len(app.router.routes) - 2
        assert app.state.plugin_manager is manager


class TestAdminApi:
    """Tests for the /api/plugins endpoints."""

    @pytest.mark.asyncio
    async def test_list_plugins(self, app, manager, plugins_root):
        write_plugin(plugins_root, "alpha")
        await manager.load_all_plugins()

        async with client_for(app) as client:
            body = (await client.get("/api/plugins")).json()

        assert body["success"] is True
        assert [p["id"] for p in body["plugins"]] == ["alpha"]
        assert body["plugins"][0]["version"] == "1.0.0"
        assert body["state"]["alpha"]["enabled"] is True

    @pytest.mark.asyncio
    async def test_enable_unknown_plugin(self, app):
        async with client_for(app) as client:
            response = await client.post("/api/plugins/ghost/enable")
        assert response.status_code == 404
        assert response.json()["success"] is False

    @pytest.mark.asyncio
    async def test_enable_failing_plugin_keeps_flag(self, app, manager, plugins_root):
        write_plugin(plugins_root, "broken", source=FAILING_INIT, enabled=False)

        async with client_for(app) as client:
            response = await client.post("/api/plugins/broken/enable")

        body = response.json()
        assert body["success"] is True
        assert body["loaded"] is False
        assert body["enabled"] is True

    @pytest.mark.asyncio
    async def test_disable_then_reload_reports_stale_routes(self, app, manager, plugins_root):
        write_plugin(plugins_root, "alpha")
        await manager.load_all_plugins()

        async with client_for(app) as client:
            reloaded = (await client.post("/api/plugins/alpha/reload")).json()
            assert reloaded["success"] is True
            assert reloaded["reloadCount"] == 1

            disabled = (await client.post("/api/plugins/alpha/disable")).json()
            assert disabled == {
                "success": True,
                "plugin": "alpha",
                "loaded": False,
                "enabled": False,
            }

            report = (await client.get("/api/plugins/routes")).json()

        assert len(report["routes"]) == 2
        assert report["stale"] == 2
        assert {r["owner"] for r in report["routes"]} == {"alpha"}

    @pytest.mark.asyncio
    async def test_delete_plugin(self, app, manager, plugins_root):
        directory = write_plugin(plugins_root, "alpha")
        await manager.load_all_plugins()

        async with client_for(app) as client:
            response = await client.delete("/api/plugins/alpha")
            listed = (await client.get("/api/plugins")).json()

        assert response.json()["success"] is True
        assert not directory.exists()
        assert listed["plugins"] == []
        assert "alpha" not in listed["state"]
