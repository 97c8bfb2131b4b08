import logging
import threading
import time
from contextlib import contextmanager
from functools import partial
from typing import Any, Dict, List, Optional

from pollroom import events
from pollroom.errors import DuplicateName, InvalidInput, InvalidState, NotFound
from pollroom.models import Question, Room, Student, normalize_code
from pollroom.services.polls.fanout import Fanout
from pollroom.services.polls.registry import ConnectionRegistry
from pollroom.services.polls.store import RoomStore
from pollroom.services.polls.timers import TimerEngine


def _require_name(value, label: str) -> str:
    name = value.strip() if isinstance(value, str) else ''
    if not name:
        raise InvalidInput(f'{label} required')
    return name


def _parse_timer(question) -> int:
    if not isinstance(question, dict):
        raise InvalidInput('question must be an object')
    raw = question.get('timer')
    if isinstance(raw, str):
        raw = raw.strip()
        raw = int(raw) if raw.isdecimal() else None
    elif isinstance(raw, float) and raw.is_integer():
        raw = int(raw)
    # bool is an int subclass; a flag is not a duration
    if not isinstance(raw, int) or isinstance(raw, bool):
        raise InvalidInput('question.timer must be a positive integer')
    seconds = raw
    if seconds <= 0:
        raise InvalidInput('question.timer must be a positive integer')
    return seconds


class PollService:
    """Room session state machine.

    Rooms are Idle (no current question) or Active (question accepting
    answers, countdown running). Every mutation of a room, countdown ticks
    included, runs under that room's lock; events are queued on the fan-out
    before the lock is released so each room has one total event order.
    """

    def __init__(
        self,
        store: RoomStore,
        registry: ConnectionRegistry,
        fanout: Fanout,
        timers: TimerEngine,
        logger: logging.Logger = None,
        idle_ttl: int = 0,
    ):
        self.store = store
        self.registry = registry
        self.fanout = fanout
        self.timers = timers
        self.logger = logger or logging.getLogger(__name__)
        self.idle_ttl = idle_ttl
        self._locks: Dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    # ---- locking ----

    @contextmanager
    def _room(self, code):
        code = normalize_code(code)
        if not code:
            raise InvalidInput('Room code required')
        with self._locks_guard:
            lock = self._locks.get(code)
        if lock is None:
            raise NotFound('Room not found')
        with lock:
            # The room may have ended while we waited
            yield self.store.get(code)

    def _lock_of(self, code: str):
        with self._locks_guard:
            return self._locks.get(code)

    def _broadcast(self, room: Room, event_and_payload) -> None:
        event, payload = event_and_payload
        self.fanout.broadcast(room.code, event, payload)

    # ---- request/response operations ----

    def create_room(self, admin_name) -> Room:
        room = self.store.create(admin_name)
        with self._locks_guard:
            self._locks[room.code] = threading.RLock()
        self.logger.info(f"[room-create] code={room.code} admin={room.admin_name}")
        return room

    def join_room(self, code, name) -> Room:
        name = _require_name(name, 'Student name')
        with self._room(code) as room:
            if name in room.students:
                raise DuplicateName('Student name already taken')
            room.students[name] = Student(name)
            room.touch()
            self._broadcast(room, events.room_updated(room))
            self.logger.info(f"[room-join] code={room.code} student={name} students={len(room.students)}")
            return room

    def end_room(self, code) -> None:
        with self._room(code) as room:
            self.timers.cancel(room.code)
            self.store.delete(room.code)
            self._broadcast(room, events.room_ended())
            released = self.registry.release_room(room.code)
            with self._locks_guard:
                self._locks.pop(room.code, None)
            self.logger.info(f"[room-end] code={room.code} released={len(released)}")

    def snapshot(self, code) -> Dict[str, Any]:
        with self._room(code) as room:
            return room.to_dict()

    # ---- real-time operations ----

    def bind_connection(self, sid: str, code, name, is_admin=False):
        name = _require_name(name, 'user')
        with self._room(code) as room:
            conn = self.registry.bind(sid, room.code, name, is_admin is True)
            event, payload = events.room_updated(room)
            self.fanout.send(sid, event, payload)
            self.logger.info(f"[conn-bind] sid={sid} code={room.code} user={name} admin={conn.is_admin}")
            return conn

    def push_question(self, code, question) -> Question:
        seconds = _parse_timer(question)
        with self._room(code) as room:
            q = Question(question, seconds)
            room.questions.append(q)
            room.current_question = q
            room.timer_remaining = seconds
            room.touch()
            self._broadcast(room, events.question_started(q))
            self.logger.info(f"[question-start] code={room.code} index={len(room.questions) - 1} timer={seconds}s")
            self.timers.start(
                room.code,
                seconds,
                self._lock_of(room.code),
                on_tick=partial(self._on_tick, room.code),
                on_expire=partial(self._on_expire, room.code, q),
            )
            return q

    def submit_answer(self, code, name, answer) -> Room:
        name = _require_name(name, 'user')
        with self._room(code) as room:
            if not room.is_active:
                raise InvalidState('No active question')
            student = room.students.get(name)
            if student is None:
                raise NotFound('Student not found')
            index = len(room.questions) - 1
            room.current_question.responses[name] = answer
            student.answers[index] = answer
            room.touch()
            self._broadcast(room, events.room_updated(room))
            return room

    def disconnect(self, sid: str) -> bool:
        """Drop a connection; a bound participant leaves its room."""
        conn = self.registry.unregister(sid)
        if conn is None or not conn.bound or conn.is_admin or not conn.room_code:
            return False
        try:
            with self._room(conn.room_code) as room:
                if room.students.pop(conn.name, None) is None:
                    return False
                room.touch()
                self._broadcast(room, events.room_updated(room))
                self.logger.info(f"[room-leave] code={room.code} student={conn.name}")
                return True
        except NotFound:
            return False

    # ---- countdown callbacks (run under the room lock) ----

    def _on_tick(self, code: str, remaining: int) -> bool:
        if code not in self.store:
            return False
        room = self.store.get(code)
        room.timer_remaining = remaining
        self._broadcast(room, events.tick(remaining))
        return True

    def _on_expire(self, code: str, question: Question) -> None:
        if code not in self.store:
            return
        room = self.store.get(code)
        if room.current_question is not question:
            return
        room.current_question = None
        room.timer_remaining = 0
        self._broadcast(room, events.question_closed())
        self.logger.info(f"[question-close] code={code} responses={len(question.responses)}")

    # ---- idle-room reaper ----

    def reap_idle_rooms(self, now: Optional[float] = None) -> List[str]:
        """End rooms idle for at least ``idle_ttl`` seconds. Returns ended codes."""
        if self.idle_ttl <= 0:
            return []
        now = time.time() if now is None else now
        reaped = []
        for code in self.store.codes():
            try:
                with self._room(code) as room:
                    if self.timers.is_running(code) or now - room.last_activity < self.idle_ttl:
                        continue
                    self.end_room(code)
                    reaped.append(code)
            except NotFound:
                continue
        if reaped:
            self.logger.info(f"[reaper] ended={','.join(reaped)}")
        return reaped

    def run_reaper(self, sleep, interval: float) -> None:
        while True:
            sleep(interval)
            try:
                self.reap_idle_rooms()
            except Exception:
                self.logger.exception("[reaper] sweep failed")