"""
Plugin lifecycle management.

``PluginManager`` discovers plugin directories, loads them in bounded
batches, reconciles the persisted enabled/disabled state and drives each
plugin through load, unload, enable, disable, reload and delete.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set, Union
import asyncio
import importlib.machinery
import importlib.util
import inspect
import logging
import re
import shutil
import sys

from .actions import ActionRegistry
from .config import HostConfig
from .context import PluginContext
from .errors import PluginLoadError
from .events import (
    EventBus,
    PLUGIN_DELETED,
    PLUGIN_DISABLED,
    PLUGIN_ENABLED,
    PLUGIN_LOADED,
    PLUGIN_RELOADED,
    PLUGIN_UNLOADED,
)
from .manifest import PluginManifest, discover_plugin_dirs, read_manifest
from .plugin import Plugin, PluginState
from .realtime import Connection, RealtimeHub
from .router import PluginRouter
from .settings import SettingsStore
from .state import PluginStateStore

logger = logging.getLogger(__name__)

MODULE_PREFIX = "plughost_plugin_"


class LoadStatus(str, Enum):
    """Outcome of a single load attempt that did not raise."""
    LOADED = "loaded"
    ALREADY_LOADED = "already_loaded"
    SKIPPED = "skipped"
    NO_MANIFEST = "no_manifest"
    MISSING_ENTRY = "missing_entry"
    DUPLICATE = "duplicate"


@dataclass
class LoadedPlugin:
    """A plugin held in the manager's registry."""
    id: str
    manifest: PluginManifest
    instance: Any
    context: PluginContext
    directory: Path
    loaded_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.manifest.id,
            "name": self.manifest.name,
            "description": self.manifest.description,
            "version": self.manifest.version,
            "author": self.manifest.author,
            "type": self.manifest.type,
            "enabled": True,
            "loadedAt": self.loaded_at.isoformat(),
        }


@dataclass
class LoadResult:
    status: LoadStatus
    directory: Path
    plugin_id: Optional[str] = None
    record: Optional[LoadedPlugin] = None
    reason: str = ""

    @property
    def loaded(self) -> bool:
        return self.status in (LoadStatus.LOADED, LoadStatus.ALREADY_LOADED)


@dataclass
class LoadSummary:
    loaded: int = 0
    disabled: int = 0
    failed: int = 0

    def message(self) -> str:
        message = f"Plugin loading complete: {self.loaded} loaded"
        if self.disabled:
            message += f", {self.disabled} disabled"
        if self.failed:
            message += f", {self.failed} failed"
        return message


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _module_name(plugin_id: str) -> str:
    return MODULE_PREFIX + re.sub(r"\W", "_", plugin_id)


def _evict_module(module_name: str) -> None:
    """Drop a plugin module and its submodules from the import cache."""
    for name in list(sys.modules):
        if name == module_name or name.startswith(f"{module_name}."):
            del sys.modules[name]


class _EntryLoader(importlib.machinery.SourceFileLoader):
    """Source loader that always compiles from source.

    Cached bytecode is keyed on mtime and size, which can miss an edit made
    right before a reload.
    """

    def get_code(self, fullname):
        path = self.get_filename(fullname)
        return self.source_to_code(self.get_data(path), path)


def _import_entry(module_name: str, entry_path: Path):
    """Evaluate a plugin entry file as a fresh module.

    The plugin directory acts as the module's package path so the entry can
    use relative imports of sibling files.
    """
    spec = importlib.util.spec_from_file_location(
        module_name,
        entry_path,
        loader=_EntryLoader(module_name, str(entry_path)),
        submodule_search_locations=[str(entry_path.parent)],
    )
    if spec is None or spec.loader is None:
        raise ImportError(f"Cannot import {entry_path}")

    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module
    try:
        spec.loader.exec_module(module)
    except BaseException:
        _evict_module(module_name)
        raise
    return module


def _resolve_plugin_class(module) -> Callable:
    """Find the plugin class: an explicit ``__plugin__`` export, else the
    first ``Plugin`` subclass defined in the module."""
    explicit = getattr(module, "__plugin__", None)
    if explicit is not None:
        if not callable(explicit):
            raise TypeError(f"__plugin__ in {module.__name__} is not callable")
        return explicit

    for value in vars(module).values():
        if (
            isinstance(value, type) and
            issubclass(value, Plugin) and
            value is not Plugin and
            value.__module__ == module.__name__
        ):
            return value

    raise TypeError(f"No Plugin class found in {module.__name__}")


class PluginManager:
    """Discover, load and manage plugins."""

    def __init__(
        self,
        config: Optional[HostConfig] = None,
        router: Optional[PluginRouter] = None,
        realtime: Optional[RealtimeHub] = None,
        live_events: Optional[EventBus] = None,
        actions: Optional[ActionRegistry] = None,
        settings: Optional[SettingsStore] = None,
        events: Optional[EventBus] = None,
    ):
        self.config = config or HostConfig()
        self.root = self.config.plugins_root
        self.router = router or PluginRouter(remove_on_unload=self.config.remove_routes_on_unload)
        self.realtime = realtime or RealtimeHub()
        self.live_events = live_events or EventBus("live-events")
        self.actions = actions or ActionRegistry()
        self.settings = settings or SettingsStore(self.config.settings_path)
        self.events = events or EventBus("lifecycle")

        self.store = PluginStateStore(self.config.state_path)
        self.store.load()

        self.plugins: Dict[str, LoadedPlugin] = {}
        self._states: Dict[str, PluginState] = {}
        self._directories: Dict[str, Path] = {}
        self._loading: Set[str] = set()
        # Contexts with live registrations, including plugins still in init
        self._contexts: Dict[str, PluginContext] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

        self.realtime.on_connect(self.attach_connection)

    def _lock(self, plugin_id: str) -> asyncio.Lock:
        return self._locks.setdefault(plugin_id, asyncio.Lock())

    # Loading

    async def load_all_plugins(self) -> LoadSummary:
        """Load every plugin under the plugins root in bounded batches."""
        directories = await asyncio.to_thread(discover_plugin_dirs, self.root)
        logger.info(f"Found {len(directories)} plugin directories")

        summary = LoadSummary()
        size = self.config.batch_size

        for start in range(0, len(directories), size):
            batch = directories[start:start + size]
            results = await asyncio.gather(
                *(self.load_plugin(directory) for directory in batch),
                return_exceptions=True,
            )

            for directory, result in zip(batch, results):
                if isinstance(result, BaseException):
                    if not isinstance(result, Exception):
                        raise result
                    logger.warning(f"Skipping plugin {directory.name} due to errors: {result}")
                    summary.failed += 1
                elif result.loaded:
                    summary.loaded += 1
                elif result.status == LoadStatus.SKIPPED:
                    summary.disabled += 1
                else:
                    summary.failed += 1

        logger.info(summary.message())
        return summary

    async def load_plugin(self, path: Union[str, Path]) -> LoadResult:
        """Load a single plugin directory.

        Soft problems (no or invalid manifest, disabled, missing entry file)
        come back as a ``LoadResult``. Import, construction and init failures
        raise ``PluginLoadError`` after rolling back any registrations.
        """
        directory = Path(path)
        manifest = await asyncio.to_thread(
            read_manifest, directory, self.config.manifest_filename
        )
        if manifest is None:
            return LoadResult(LoadStatus.NO_MANIFEST, directory, reason="missing or invalid manifest")

        plugin_id = manifest.id
        existing = self.plugins.get(plugin_id)
        if existing is not None or plugin_id in self._loading:
            known = existing.directory if existing else self._directories.get(plugin_id)
            if known is not None and known.resolve() != directory.resolve():
                logger.warning(f"Plugin id {plugin_id} in {directory} is already provided by {known}")
                return LoadResult(LoadStatus.DUPLICATE, directory, plugin_id, reason=f"duplicate of {known}")
            return LoadResult(LoadStatus.ALREADY_LOADED, directory, plugin_id, existing)

        self._directories[plugin_id] = directory

        if not self.store.resolve_enabled(plugin_id, manifest.enabled):
            logger.info(f"Plugin {plugin_id} is disabled, skipping")
            self._states[plugin_id] = PluginState.DISABLED
            return LoadResult(LoadStatus.SKIPPED, directory, plugin_id, reason="disabled")

        entry_path = manifest.entry_path(directory)
        if not entry_path.is_file():
            logger.warning(f"Entry file not found: {entry_path}")
            return LoadResult(LoadStatus.MISSING_ENTRY, directory, plugin_id, reason=f"entry not found: {entry_path}")

        self._loading.add(plugin_id)
        self._states[plugin_id] = PluginState.LOADING
        try:
            record = await self._instantiate(manifest, directory, entry_path)
        except PluginLoadError as e:
            self._states[plugin_id] = PluginState.ERROR
            logger.error(f"Failed to load plugin from {directory}: {e}", exc_info=e.cause)
            raise
        finally:
            self._loading.discard(plugin_id)

        self.plugins[plugin_id] = record
        self._states[plugin_id] = PluginState.ENABLED
        self.store.update(plugin_id, enabled=True, loaded_at=record.loaded_at.isoformat())

        logger.info(f"Loaded plugin: {manifest.name} ({plugin_id}) v{manifest.version}")
        await self.events.emit(PLUGIN_LOADED, record)
        return LoadResult(LoadStatus.LOADED, directory, plugin_id, record)

    async def _instantiate(self, manifest: PluginManifest, directory: Path, entry_path: Path) -> LoadedPlugin:
        plugin_id = manifest.id
        module_name = _module_name(plugin_id)
        _evict_module(module_name)

        try:
            module = await asyncio.to_thread(_import_entry, module_name, entry_path)
            plugin_class = _resolve_plugin_class(module)
        except Exception as e:
            raise PluginLoadError(plugin_id, "import", e) from e

        context = self._create_context(plugin_id, directory)

        try:
            instance = plugin_class(context)
        except Exception as e:
            self._detach(context)
            raise PluginLoadError(plugin_id, "construct", e) from e

        init = getattr(instance, "init", None)
        if callable(init):
            try:
                await self._run_hook(init)
            except Exception as e:
                # Never keep a half-initialized plugin around
                self._detach(context)
                raise PluginLoadError(plugin_id, "init", e) from e

        return LoadedPlugin(
            id=plugin_id,
            manifest=manifest,
            instance=instance,
            context=context,
            directory=directory,
            loaded_at=_now(),
        )

    def _create_context(self, plugin_id: str, directory: Path) -> PluginContext:
        context = PluginContext(
            plugin_id,
            directory,
            router=self.router,
            realtime=self.realtime,
            live_events=self.live_events,
            actions=self.actions,
            settings=self.settings,
        )
        self._contexts[plugin_id] = context
        return context

    async def _run_hook(self, hook: Callable) -> None:
        """Run an init/destroy hook bounded by ``hook_timeout``.

        Sync hooks run in a worker thread so a blocking hook cannot stall
        the event loop.
        """
        if inspect.iscoroutinefunction(hook):
            pending = hook()
        else:
            pending = asyncio.to_thread(hook)

        result = await asyncio.wait_for(pending, timeout=self.config.hook_timeout)
        if inspect.isawaitable(result):
            await asyncio.wait_for(result, timeout=self.config.hook_timeout)

    def _detach(self, context: PluginContext) -> None:
        """Remove a context's registrations from every shared subsystem."""
        if self._contexts.get(context.plugin_id) is context:
            del self._contexts[context.plugin_id]
        for event, listener in context.external_handlers:
            self.live_events.off(event, listener)
        self.actions.unregister_owner(context.plugin_id)
        context.unregister_all()

    async def unload_plugin(self, plugin_id: str) -> bool:
        """Unload a plugin. Returns False if it was not loaded."""
        record = self.plugins.get(plugin_id)
        if record is None:
            return False

        self._states[plugin_id] = PluginState.UNLOADING

        destroy = getattr(record.instance, "destroy", None)
        if callable(destroy):
            try:
                await self._run_hook(destroy)
            except Exception as e:
                logger.error(f"Plugin {plugin_id} destroy() failed: {e!r}")

        self._detach(record.context)
        del self.plugins[plugin_id]
        self._states[plugin_id] = PluginState.UNLOADED

        logger.info(f"Unloaded plugin: {plugin_id}")
        await self.events.emit(PLUGIN_UNLOADED, plugin_id)
        return True

    # Operator actions

    async def enable_plugin(self, plugin_id: str) -> bool:
        """Persist enabled and load the plugin if needed.

        A failed load keeps the persisted enabled flag; the plugin is retried
        on the next start.
        """
        async with self._lock(plugin_id):
            directory = None
            if plugin_id not in self.plugins:
                directory = await self._resolve_directory(plugin_id)
                if directory is None:
                    logger.error(f"Plugin directory not found for {plugin_id}")
                    return False

            self.store.update(plugin_id, enabled=True)

            if directory is not None:
                try:
                    result = await self.load_plugin(directory)
                    loaded = result.loaded and result.plugin_id == plugin_id
                except PluginLoadError:
                    loaded = False
                if not loaded:
                    logger.warning(
                        f"Plugin {plugin_id} state set to enabled, but failed to load. "
                        f"Check logs for details."
                    )

            logger.info(f"Enabled plugin: {plugin_id}")
            await self.events.emit(PLUGIN_ENABLED, plugin_id)
            return True

    async def disable_plugin(self, plugin_id: str) -> bool:
        """Persist disabled and unload the plugin."""
        async with self._lock(plugin_id):
            self.store.update(plugin_id, enabled=False)
            await self.unload_plugin(plugin_id)
            self._states[plugin_id] = PluginState.DISABLED

            logger.info(f"Disabled plugin: {plugin_id}")
            await self.events.emit(PLUGIN_DISABLED, plugin_id)
            return True

    async def reload_plugin(self, plugin_id: str) -> bool:
        """Unload and load a plugin again. Returns True if it is loaded afterwards.

        The reload counter is persisted before the reload is attempted.
        """
        async with self._lock(plugin_id):
            count = self.store.increment_reload(plugin_id, _now().isoformat())
            if count > self.config.reload_warning_threshold:
                logger.warning(
                    f"Plugin {plugin_id} has been reloaded {count} times. Every reload leaks "
                    f"the previous route handlers; restart the server to reclaim them."
                )

            directory = await self._resolve_directory(plugin_id)
            await self.unload_plugin(plugin_id)

            if directory is None:
                logger.error(f"Plugin directory not found for {plugin_id}")
                return False

            try:
                result = await self.load_plugin(directory)
            except PluginLoadError as e:
                logger.error(f"Failed to reload plugin {plugin_id}: {e}")
                return False

            if result.plugin_id is not None and result.plugin_id != plugin_id:
                logger.error(
                    f"Plugin {plugin_id} was not reloaded: {directory} now declares id {result.plugin_id}"
                )
                return False

            if not result.loaded:
                logger.warning(f"Plugin {plugin_id} was not loaded again: {result.reason}")
                return False

            logger.info(f"Reloaded plugin: {plugin_id} (reload count: {count})")
            await self.events.emit(PLUGIN_RELOADED, plugin_id)
            return True

    async def delete_plugin(self, plugin_id: str) -> bool:
        """Unload a plugin, delete its directory and forget its state."""
        async with self._lock(plugin_id):
            directory = await self._resolve_directory(plugin_id)
            if directory is not None and not self._inside_root(directory):
                logger.error(f"Refusing to delete {directory}: outside {self.root}")
                return False

            await self.unload_plugin(plugin_id)

            if directory is not None and directory.exists():
                try:
                    await asyncio.to_thread(shutil.rmtree, directory)
                except OSError as e:
                    logger.error(f"Failed to delete plugin {plugin_id}: {e}")
                    return False

            self.store.remove(plugin_id)
            self._directories.pop(plugin_id, None)
            self._states.pop(plugin_id, None)

            logger.info(f"Deleted plugin: {plugin_id}")
            await self.events.emit(PLUGIN_DELETED, plugin_id)
            return True

    async def shutdown(self) -> None:
        """Unload every loaded plugin."""
        for plugin_id in list(self.plugins):
            await self.unload_plugin(plugin_id)

    # Directory resolution

    def _inside_root(self, directory: Path) -> bool:
        return directory.resolve().parent == self.root.resolve()

    async def _resolve_directory(self, plugin_id: str) -> Optional[Path]:
        record = self.plugins.get(plugin_id)
        if record is not None:
            return record.directory

        # A directory only counts when its manifest declares this id
        for candidate in (self._directories.get(plugin_id), self.root / plugin_id):
            if candidate is not None and await self._provides(candidate, plugin_id):
                self._directories[plugin_id] = candidate
                return candidate
        self._directories.pop(plugin_id, None)

        for directory in await asyncio.to_thread(discover_plugin_dirs, self.root):
            if await self._provides(directory, plugin_id):
                self._directories[plugin_id] = directory
                return directory

        return None

    async def _provides(self, directory: Path, plugin_id: str) -> bool:
        if not directory.is_dir():
            return False
        manifest = await asyncio.to_thread(
            read_manifest, directory, self.config.manifest_filename
        )
        return manifest is not None and manifest.id == plugin_id

    # Queries

    def get_plugin(self, plugin_id: str) -> Optional[LoadedPlugin]:
        return self.plugins.get(plugin_id)

    def get_plugin_instance(self, plugin_id: str) -> Any:
        record = self.plugins.get(plugin_id)
        return record.instance if record else None

    def list_plugins(self) -> List[Dict[str, Any]]:
        """List loaded plugins."""
        return [record.to_dict() for record in self.plugins.values()]

    def is_plugin_enabled(self, plugin_id: str) -> bool:
        return self.store.is_enabled(plugin_id)

    def get_state(self, plugin_id: str) -> PluginState:
        return self._states.get(plugin_id, PluginState.UNLOADED)

    def route_report(self) -> List[Dict[str, Any]]:
        """Every route ever registered, with stale flags."""
        return [record.to_dict() for record in self.router.records]

    def attach_connection(self, connection: Connection) -> None:
        """Attach the real-time listeners of every loaded or loading plugin to a connection."""
        for context in list(self._contexts.values()):
            context.attach(connection)
