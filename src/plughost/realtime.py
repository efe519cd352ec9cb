"""
In-process real-time transport.

A ``Connection`` holds per-connection event listeners; ``RealtimeHub`` tracks
the current connections and broadcasts to them. A network transport adapts
its sockets to ``Connection`` by supplying a ``send`` callable and calling
``dispatch`` for inbound events.
"""

from typing import Any, Callable, Dict, List, Optional
import inspect
import itertools


_ids = itertools.count(1)


class Connection:
    """One connected real-time client."""

    def __init__(self, sid: Optional[str] = None, send: Optional[Callable[[str, Any], None]] = None):
        self.sid = sid or f"conn-{next(_ids)}"
        self.listeners: Dict[str, List[Callable]] = {}
        self.outbox: List[tuple] = []
        self._send = send

    def on(self, event: str, listener: Callable) -> None:
        """Attach a listener; it is called as ``listener(connection, *args)``."""
        self.listeners.setdefault(event, []).append(listener)

    def off(self, event: str, listener: Callable) -> bool:
        listeners = self.listeners.get(event, [])
        if listener in listeners:
            listeners.remove(listener)
            if not listeners:
                del self.listeners[event]
            return True
        return False

    def listener_count(self, event: str) -> int:
        return len(self.listeners.get(event, []))

    async def dispatch(self, event: str, *args) -> int:
        """Deliver an inbound event to this connection's listeners."""
        listeners = list(self.listeners.get(event, []))
        for listener in listeners:
            result = listener(self, *args)
            if inspect.isawaitable(result):
                await result
        return len(listeners)

    def send(self, event: str, data: Any = None) -> None:
        """Send an outbound event to the client."""
        if self._send is not None:
            self._send(event, data)
        else:
            self.outbox.append((event, data))


class RealtimeHub:
    """Registry of current connections with broadcast."""

    def __init__(self):
        self.connections: Dict[str, Connection] = {}
        self._connect_callbacks: List[Callable[[Connection], None]] = []

    def on_connect(self, callback: Callable[[Connection], None]) -> None:
        self._connect_callbacks.append(callback)

    def connect(self, connection: Connection) -> Connection:
        self.connections[connection.sid] = connection
        for callback in self._connect_callbacks:
            callback(connection)
        return connection

    def disconnect(self, sid: str) -> Optional[Connection]:
        return self.connections.pop(sid, None)

    def emit(self, event: str, data: Any = None) -> None:
        """Broadcast an event to every connection."""
        for connection in list(self.connections.values()):
            connection.send(event, data)
