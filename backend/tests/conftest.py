import os
import sys
import pytest

# Ensure the backend root (containing the `pollroom` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from pollroom import create_app, socketio
from pollroom.services.polls.fanout import Fanout
from pollroom.services.polls.registry import ConnectionRegistry
from pollroom.services.polls.session import PollService
from pollroom.services.polls.store import RoomStore
from pollroom.services.polls.timers import TimerEngine


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    CORS_ORIGINS = ['http://localhost:5173']
    SOCKETIO_ASYNC_MODE = 'threading'
    SOCKETIO_NAMESPACE = '/ws'
    ROOM_CODE_LENGTH = 6
    TICK_INTERVAL_SEC = 0.01
    SEND_QUEUE_SIZE = 64
    ROOM_IDLE_TTL_SEC = 0
    LOG_LEVEL = 'DEBUG'


class RecordingEmit:
    """Stands in for ``socketio.emit``; remembers what went to which sid."""

    def __init__(self):
        self.calls = []
        self.failing = set()

    def __call__(self, event, payload, to=None, namespace=None):
        if to in self.failing:
            raise ConnectionError(f'socket {to} is gone')
        self.calls.append((to, event, payload))

    def events_for(self, sid):
        return [(event, payload) for to, event, payload in self.calls if to == sid]

    def names_for(self, sid):
        return [event for event, _ in self.events_for(sid)]


class ManualSpawn:
    """Records spawned tasks instead of running them."""

    def __init__(self):
        self.tasks = []

    def __call__(self, fn, *args, **kwargs):
        self.tasks.append((fn, args, kwargs))

    def run_all(self):
        tasks, self.tasks = self.tasks, []
        for fn, args, kwargs in tasks:
            fn(*args, **kwargs)


def run_inline(fn, *args, **kwargs):
    return fn(*args, **kwargs)


@pytest.fixture()
def recorder():
    return RecordingEmit()


@pytest.fixture()
def timer_spawn():
    return ManualSpawn()


@pytest.fixture()
def poll_service(recorder, timer_spawn):
    """A PollService wired to in-memory doubles: inline delivery, manual countdowns."""
    registry = ConnectionRegistry(queue_size=16)
    return PollService(
        store=RoomStore(),
        registry=registry,
        fanout=Fanout(registry, recorder, run_inline),
        timers=TimerEngine(timer_spawn, lambda _: None),
        idle_ttl=0,
    )


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    with application.app_context():
        yield application


@pytest.fixture()
def service(flask_app):
    return flask_app.extensions['pollroom']


@pytest.fixture()
def manual_timers(service, monkeypatch):
    """Keep countdowns from running on their own; drive them with ``tick``."""
    monkeypatch.setattr(service.timers, '_spawn', lambda fn, *args, **kwargs: None)

    def tick(code, times=1):
        for _ in range(times):
            handle = service.timers.current(code)
            if handle is None:
                return
            service.timers.tick(handle)

    return tick


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def sio_factory(flask_app):
    created = []

    def make():
        test_client = socketio.test_client(
            flask_app,
            flask_test_client=flask_app.test_client(),
            namespace='/ws'
        )
        created.append(test_client)
        return test_client

    yield make
    for test_client in created:
        try:
            if test_client.is_connected('/ws'):
                test_client.disconnect(namespace='/ws')
        except Exception:
            pass


@pytest.fixture()
def sio_client(sio_factory):
    return sio_factory()
