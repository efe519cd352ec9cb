"""
Shared plugin router.

A single route collection mounted on the host application once, before any
plugin loads and ahead of the terminal not-found route. Every plugin route
is appended here, so routes added long after startup are still matched
before the catch-all. Routes are append-only: unloading a plugin marks its
routes stale unless the router was created with ``remove_on_unload``.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple
import logging

from starlette.routing import BaseRoute, Match, NoMatchFound, Route
from starlette.types import Receive, Scope, Send

logger = logging.getLogger(__name__)

SCOPE_KEY = "plughost.route"


@dataclass
class RouteRecord:
    """A plugin route registered on the shared router."""
    owner: str
    method: str
    path: str
    route: Route
    registered_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    stale: bool = False
    unregistered_at: Optional[datetime] = None
    removed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "owner": self.owner,
            "method": self.method,
            "path": self.path,
            "registeredAt": self.registered_at.isoformat(),
            "stale": self.stale,
            "unregisteredAt": self.unregistered_at.isoformat() if self.unregistered_at else None,
        }


class PluginRouter(BaseRoute):
    """Ordered, append-only collection of plugin routes."""

    def __init__(self, remove_on_unload: bool = False):
        self.records: List[RouteRecord] = []
        self.remove_on_unload = remove_on_unload
        self.mounted = False

    def mount(self, app) -> None:
        """Insert this router into ``app``'s routes, ahead of any catch-all.

        Must be called exactly once, before plugins load.
        """
        if self.mounted:
            raise RuntimeError("Plugin router is already mounted")

        routes = app.router.routes
        position = len(routes)
        for i, route in enumerate(routes):
            if getattr(route, "path", None) == "/{path:path}":
                position = i
                break
        routes.insert(position, self)
        self.mounted = True
        logger.info("Plugin router mounted - dynamic plugin routes will be matched before not-found")

    def add(self, owner: str, method: str, path: str, endpoint: Callable) -> RouteRecord:
        """Append a route. Duplicates are accepted; the first one registered wins."""
        for existing in self.active_records():
            if not existing.stale and existing.method == method and existing.path == path:
                logger.warning(
                    f"Route {method} {path} from {owner} duplicates a route from "
                    f"{existing.owner}; the route from {existing.owner} takes precedence"
                )
                break

        route = Route(path, endpoint, methods=[method], name=f"{owner}:{method}:{path}")
        record = RouteRecord(owner=owner, method=method, path=path, route=route)
        self.records.append(record)
        return record

    def mark_stale(self, owner: str) -> List[RouteRecord]:
        """Flag an owner's routes as stale. They stay reachable."""
        now = datetime.now(timezone.utc)
        flagged = []
        for record in self.records:
            if record.owner == owner and not record.stale:
                record.stale = True
                record.unregistered_at = now
                flagged.append(record)
        return flagged

    def remove(self, owner: str) -> List[RouteRecord]:
        """Stop matching an owner's routes."""
        removed = self.mark_stale(owner)
        for record in removed:
            record.removed = True
        return removed

    def release(self, owner: str) -> List[RouteRecord]:
        """Release an owner's routes according to the unload policy."""
        if self.remove_on_unload:
            return self.remove(owner)
        return self.mark_stale(owner)

    def active_records(self) -> List[RouteRecord]:
        return [r for r in self.records if not r.removed]

    def stale_records(self) -> List[RouteRecord]:
        return [r for r in self.records if r.stale]

    def _match_order(self) -> List[RouteRecord]:
        # Live routes first, so a reloaded plugin is not shadowed by its own
        # stale routes. Registration order holds within each group.
        active = self.active_records()
        return [r for r in active if not r.stale] + [r for r in active if r.stale]

    # Starlette BaseRoute interface

    def matches(self, scope: Scope) -> Tuple[Match, Scope]:
        partial = None
        for record in self._match_order():
            match, child_scope = record.route.matches(scope)
            if match == Match.FULL:
                return Match.FULL, {**child_scope, SCOPE_KEY: record.route}
            if match == Match.PARTIAL and partial is None:
                partial = {**child_scope, SCOPE_KEY: record.route}

        if partial is not None:
            return Match.PARTIAL, partial
        return Match.NONE, {}

    def url_path_for(self, name: str, /, **path_params: Any):
        for record in self.active_records():
            try:
                return record.route.url_path_for(name, **path_params)
            except NoMatchFound:
                pass
        raise NoMatchFound(name, path_params)

    async def handle(self, scope: Scope, receive: Receive, send: Send) -> None:
        route = scope[SCOPE_KEY]
        await route.handle(scope, receive, send)
