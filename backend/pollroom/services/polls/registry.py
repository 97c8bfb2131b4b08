import threading
from collections import deque
from typing import Dict, List, Optional, Set

from pollroom.errors import InvalidState, NotFound
from pollroom.models import normalize_code


class Connection:
    """A live Socket.IO session and its (immutable once bound) room binding."""

    def __init__(self, sid: str, queue_size: int = 64):
        self.sid = sid
        self.room_code: Optional[str] = None
        self.name: Optional[str] = None
        self.is_admin = False
        self.bound = False
        # Outbox state, owned by Fanout
        self.queue_size = queue_size
        self.outbox = deque()
        self.outbox_lock = threading.Lock()
        self.draining = False
        self.failed = False

    def __repr__(self):
        return f"<Connection sid={self.sid} room={self.room_code} name={self.name} admin={self.is_admin}>"


class ConnectionRegistry:
    def __init__(self, queue_size: int = 64):
        self.queue_size = queue_size
        self._connections: Dict[str, Connection] = {}
        self._by_room: Dict[str, Set[str]] = {}
        self._lock = threading.Lock()

    def register(self, sid: str) -> Connection:
        with self._lock:
            conn = self._connections.get(sid)
            if conn is None:
                conn = Connection(sid, self.queue_size)
                self._connections[sid] = conn
            return conn

    def get(self, sid: str) -> Optional[Connection]:
        return self._connections.get(sid)

    def bind(self, sid: str, room_code: str, name: str, is_admin: bool) -> Connection:
        """Bind a connection to a room. First bind wins."""
        code = normalize_code(room_code)
        with self._lock:
            conn = self._connections.get(sid)
            if conn is None:
                raise NotFound('Unknown connection')
            if conn.bound:
                raise InvalidState(f'Connection already joined room {conn.room_code}')
            conn.room_code = code
            conn.name = name
            conn.is_admin = bool(is_admin)
            conn.bound = True
            self._by_room.setdefault(code, set()).add(sid)
            return conn

    def unregister(self, sid: str) -> Optional[Connection]:
        with self._lock:
            conn = self._connections.pop(sid, None)
            if conn is not None and conn.room_code:
                self._discard_from_room(conn.room_code, sid)
            return conn

    def release_room(self, room_code: str) -> List[Connection]:
        """Drop the room association of every connection bound to ``room_code``."""
        code = normalize_code(room_code)
        with self._lock:
            sids = self._by_room.pop(code, set())
            released = []
            for sid in sids:
                conn = self._connections.get(sid)
                if conn is None:
                    continue
                # bound stays True: a connection binds once per lifetime
                conn.room_code = None
                released.append(conn)
            return released

    def in_room(self, room_code: str) -> List[Connection]:
        code = normalize_code(room_code)
        with self._lock:
            sids = list(self._by_room.get(code, ()))
            return [self._connections[sid] for sid in sids if sid in self._connections]

    def _discard_from_room(self, code: str, sid: str) -> None:
        members = self._by_room.get(code)
        if members is None:
            return
        members.discard(sid)
        if not members:
            del self._by_room[code]

    def __len__(self) -> int:
        return len(self._connections)
