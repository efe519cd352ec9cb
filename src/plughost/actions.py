"""
Automation action registry.

Plugins contribute named actions that automation rules can execute. Every
registration is tagged with its owning plugin so all of a plugin's actions
can be removed at once.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional
import inspect
import logging
import threading

logger = logging.getLogger(__name__)


@dataclass
class ActionRegistration:
    """A registered automation action."""
    name: str
    handler: Callable
    owner: str


class ActionRegistry:
    """Manage automation action registration and execution."""

    def __init__(self):
        self.actions: Dict[str, ActionRegistration] = {}
        self._lock = threading.Lock()

    def register(self, name: str, handler: Callable, owner: str) -> ActionRegistration:
        """Register an action. A later registration of the same name replaces it."""
        registration = ActionRegistration(name=name, handler=handler, owner=owner)
        with self._lock:
            previous = self.actions.get(name)
            if previous is not None and previous.owner != owner:
                logger.warning(
                    f"Action {name} from {previous.owner} replaced by {owner}"
                )
            self.actions[name] = registration
        return registration

    def unregister_owner(self, owner: str) -> int:
        """Remove every action owned by a plugin."""
        with self._lock:
            names = [name for name, reg in self.actions.items() if reg.owner == owner]
            for name in names:
                del self.actions[name]
        return len(names)

    def get(self, name: str) -> Optional[ActionRegistration]:
        return self.actions.get(name)

    async def execute(self, name: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """Execute an action by name.

        Raises KeyError for unknown actions.
        """
        registration = self.actions.get(name)
        if registration is None:
            raise KeyError(f"Unknown action: {name}")

        result = registration.handler(params or {})
        if inspect.isawaitable(result):
            result = await result
        return result

    def list_actions(self, owner: Optional[str] = None) -> List[Dict[str, str]]:
        """List registered actions, optionally for one owner."""
        return [
            {"name": reg.name, "owner": reg.owner}
            for reg in self.actions.values()
            if owner is None or reg.owner == owner
        ]
