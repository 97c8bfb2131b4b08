import threading
from typing import Dict, List

from pollroom.errors import InvalidInput, NotFound
from pollroom.models import Room, generate_room_code, normalize_code


class RoomStore:
    """In-memory mapping of room code to Room.

    The internal lock only guards the index. Room contents are serialized
    by the caller's per-room lock.
    """

    def __init__(self, code_length: int = 6):
        self.code_length = code_length
        self._rooms: Dict[str, Room] = {}
        self._lock = threading.Lock()

    def create(self, admin_name) -> Room:
        admin_name = (admin_name or '').strip() if isinstance(admin_name, str) else ''
        if not admin_name:
            raise InvalidInput('Admin name required')
        with self._lock:
            code = generate_room_code(lambda c: c in self._rooms, self.code_length)
            room = Room(code, admin_name)
            self._rooms[code] = room
        return room

    def get(self, code) -> Room:
        room = self._rooms.get(normalize_code(code))
        if room is None:
            raise NotFound('Room not found')
        return room

    def delete(self, code) -> None:
        with self._lock:
            self._rooms.pop(normalize_code(code), None)

    def codes(self) -> List[str]:
        with self._lock:
            return list(self._rooms)

    def __contains__(self, code) -> bool:
        return normalize_code(code) in self._rooms

    def __len__(self) -> int:
        return len(self._rooms)
