"""Shared fixtures: plugin directories written as real source files."""

import asyncio
import json
import sys
import textwrap
import types

import httpx
import pytest
from starlette.applications import Starlette
from starlette.responses import JSONResponse
from starlette.routing import Route

from plughost import HostConfig, PluginManager


HEALTHY = '''
from plughost import Plugin


class Healthy(Plugin):
    async def init(self):
        count = self.context.get_config("inits") or 0
        self.context.set_config("inits", count + 1)
        self.context.register_route("GET", f"/api/{self.id}/ping", self.ping)
        self.context.register_realtime_event(f"{self.id}:echo", self.echo)
        self.context.register_external_event("gift", self.on_gift)
        self.context.register_automation_action(f"{self.id}.act", self.act)

    async def destroy(self):
        count = self.context.get_config("destroys") or 0
        self.context.set_config("destroys", count + 1)

    async def ping(self, request):
        return {"plugin": self.id, "version": 1}

    async def echo(self, connection, payload):
        connection.send(f"{self.id}:echoed", payload)

    async def on_gift(self, data):
        received = self.context.get_config("gifts") or []
        received.append(data)
        self.context.set_config("gifts", received)

    async def act(self, params):
        return {"success": True, "plugin": self.id, "params": params}
'''

FAILING_INIT = '''
from plughost import Plugin


class FailingInit(Plugin):
    async def init(self):
        self.context.register_route("GET", f"/api/{self.id}/ping", self.ping)
        self.context.register_realtime_event(f"{self.id}:echo", self.ping)
        self.context.register_external_event("gift", self.ping)
        self.context.register_automation_action(f"{self.id}.act", self.ping)
        raise RuntimeError("init exploded")

    async def ping(self, *args):
        return {"ok": True}
'''

FAILING_CONSTRUCTOR = '''
from plughost import Plugin


class FailingConstructor(Plugin):
    def __init__(self, context):
        super().__init__(context)
        raise ValueError("constructor exploded")
'''

SYNTAX_ERROR = '''
def broken(:
    pass
'''

NO_PLUGIN_CLASS = '''
VALUE = 42
'''

SLOW_INIT = '''
import asyncio

from plughost import Plugin


class Slow(Plugin):
    async def init(self):
        await asyncio.sleep(10)
'''

BLOCKING_SYNC_INIT = '''
import time

from plughost import Plugin


class Blocking(Plugin):
    def init(self):
        time.sleep(0.5)
'''

GATED_REALTIME_INIT = '''
import plughost_test_gate as gate
from plughost import Plugin


class Gated(Plugin):
    async def init(self):
        self.context.register_realtime_event("gated:ping", self.ping)
        gate.registered.set()
        await gate.release.wait()

    async def ping(self, connection):
        connection.send("gated:pong")
'''

FAILING_DESTROY = '''
from plughost import Plugin


class FailingDestroy(Plugin):
    async def destroy(self):
        raise RuntimeError("destroy exploded")
'''

TRACKED_INIT = '''
import asyncio

import plughost_test_tracker as tracker
from plughost import Plugin


class Tracked(Plugin):
    async def init(self):
        tracker.active += 1
        tracker.peak = max(tracker.peak, tracker.active)
        await asyncio.sleep(0.2)
        tracker.active -= 1
'''


def write_plugin(root, name, source=HEALTHY, manifest=..., entry="main.py", **fields):
    """Create ``root/name`` with a manifest and entry file.

    ``manifest=None`` skips the manifest, ``source=None`` skips the entry
    file, extra keyword arguments are merged into the manifest.
    """
    directory = root / name
    directory.mkdir(parents=True, exist_ok=True)

    if manifest is ...:
        manifest = {
            "id": name,
            "name": name.replace("-", " ").title(),
            "entry": entry,
            "version": "1.0.0",
        }
        manifest.update(fields)
    if manifest is not None:
        (directory / "plugin.json").write_text(json.dumps(manifest), encoding="utf-8")
    if source is not None:
        (directory / entry).write_text(textwrap.dedent(source), encoding="utf-8")

    return directory


@pytest.fixture
def plugins_root(tmp_path):
    root = tmp_path / "plugins"
    root.mkdir()
    return root


@pytest.fixture
def config(plugins_root):
    return HostConfig(plugins_dir=str(plugins_root), hook_timeout=2.0)


@pytest.fixture
def manager(config):
    manager = PluginManager(config)
    yield manager
    manager.settings.close()


@pytest.fixture
def tracker(monkeypatch):
    state = types.SimpleNamespace(active=0, peak=0)
    monkeypatch.setitem(sys.modules, "plughost_test_tracker", state)
    return state


@pytest.fixture
def gate(monkeypatch):
    state = types.SimpleNamespace(registered=asyncio.Event(), release=asyncio.Event())
    monkeypatch.setitem(sys.modules, "plughost_test_gate", state)
    return state


async def not_found(request):
    return JSONResponse({"success": False, "error": "Not found"}, status_code=404)


def host_app(router):
    """A bare host app: the plugin router ahead of a catch-all not-found."""
    app = Starlette(routes=[
        Route("/{path:path}", not_found, methods=["GET", "POST", "PUT", "PATCH", "DELETE"]),
    ])
    router.mount(app)
    return app


def client_for(app):
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver")
