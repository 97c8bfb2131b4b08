import logging
from typing import Any, Callable, Dict

from pollroom.errors import TransportError
from pollroom.services.polls.registry import Connection, ConnectionRegistry


class Fanout:
    """Best-effort delivery of room events to bound connections.

    ``broadcast`` only appends to each connection's bounded outbox, so it is
    safe to call while holding a room lock. A drain task per connection does
    the actual ``emit`` calls, in enqueue order.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        emit: Callable[..., Any],
        spawn: Callable[..., Any],
        namespace: str = '/ws',
        logger: logging.Logger = None,
    ):
        self.registry = registry
        self._emit = emit
        self._spawn = spawn
        self.namespace = namespace
        self.logger = logger or logging.getLogger(__name__)

    def broadcast(self, room_code: str, event: str, payload: Dict[str, Any]) -> int:
        """Queue ``event`` for every connection in the room. Returns accepted count."""
        delivered = 0
        for conn in self.registry.in_room(room_code):
            if self._offer(conn, event, payload):
                delivered += 1
        return delivered

    def send(self, sid: str, event: str, payload: Dict[str, Any]) -> bool:
        conn = self.registry.get(sid)
        if conn is None:
            return False
        return self._offer(conn, event, payload)

    def _offer(self, conn: Connection, event: str, payload: Dict[str, Any]) -> bool:
        start = False
        with conn.outbox_lock:
            if conn.failed:
                return False
            if len(conn.outbox) >= conn.queue_size:
                self.logger.warning(
                    f"[fanout-drop] sid={conn.sid} room={conn.room_code} event={event} queue_full={conn.queue_size}"
                )
                return False
            conn.outbox.append((event, payload))
            if not conn.draining:
                conn.draining = True
                start = True
        if start:
            self._spawn(self._drain, conn)
        return True

    def _drain(self, conn: Connection) -> None:
        while True:
            with conn.outbox_lock:
                if not conn.outbox or conn.failed:
                    conn.draining = False
                    return
                event, payload = conn.outbox.popleft()
            try:
                self._deliver(conn, event, payload)
            except TransportError as exc:
                self.logger.warning(f"[fanout-fail] sid={conn.sid} room={conn.room_code} event={event} error={exc}")
                with conn.outbox_lock:
                    conn.failed = True
                    conn.outbox.clear()
                    conn.draining = False
                return

    def _deliver(self, conn: Connection, event: str, payload: Dict[str, Any]) -> None:
        try:
            self._emit(event, payload, to=conn.sid, namespace=self.namespace)
        except Exception as exc:
            raise TransportError(str(exc)) from exc
