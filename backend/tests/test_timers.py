import threading

from conftest import ManualSpawn, run_inline
from pollroom.services.polls.timers import TimerEngine


class Listener:
    def __init__(self, alive=True):
        self.ticks = []
        self.expired = 0
        self.alive = alive

    def on_tick(self, remaining):
        self.ticks.append(remaining)
        return self.alive

    def on_expire(self):
        self.expired += 1


def _start(engine, code, seconds, listener):
    return engine.start(code, seconds, threading.RLock(), listener.on_tick, listener.on_expire)


def test_counts_down_to_zero_then_expires_once():
    engine = TimerEngine(ManualSpawn(), lambda _: None)
    listener = Listener()
    handle = _start(engine, 'ROOM01', 3, listener)
    assert engine.is_running('ROOM01')
    results = [engine.tick(handle) for _ in range(5)]
    assert results == [True, True, False, False, False]
    assert listener.ticks == [2, 1, 0]
    assert listener.expired == 1
    assert not engine.is_running('ROOM01')
    assert engine.current('ROOM01') is None


def test_background_loop_runs_to_completion():
    sleeps = []
    engine = TimerEngine(run_inline, sleeps.append, interval=1.0)
    listener = Listener()
    _start(engine, 'ROOM01', 4, listener)
    assert listener.ticks == [3, 2, 1, 0]
    assert sleeps == [1.0] * 4
    assert listener.expired == 1


def test_start_preempts_previous_countdown():
    spawn = ManualSpawn()
    engine = TimerEngine(spawn, lambda _: None)
    first, second = Listener(), Listener()
    old = _start(engine, 'ROOM01', 10, first)
    engine.tick(old)
    new = _start(engine, 'ROOM01', 2, second)
    assert old.cancelled
    assert engine.current('ROOM01') is new
    # the old tick stream is dead even if its task wakes up again
    assert engine.tick(old) is False
    engine.tick(new)
    engine.tick(new)
    assert first.ticks == [9]
    assert first.expired == 0
    assert second.ticks == [1, 0]
    assert second.expired == 1


def test_rooms_are_independent():
    engine = TimerEngine(ManualSpawn(), lambda _: None)
    a, b = Listener(), Listener()
    ha = _start(engine, 'ROOM01', 2, a)
    hb = _start(engine, 'ROOM02', 2, b)
    engine.tick(ha)
    engine.tick(hb)
    engine.tick(hb)
    assert a.ticks == [1] and a.expired == 0
    assert b.ticks == [1, 0] and b.expired == 1
    assert engine.is_running('ROOM01')


def test_cancel_stops_without_expiry():
    engine = TimerEngine(ManualSpawn(), lambda _: None)
    listener = Listener()
    handle = _start(engine, 'ROOM01', 3, listener)
    assert engine.cancel('ROOM01') is True
    assert engine.cancel('ROOM01') is False
    assert engine.tick(handle) is False
    assert listener.ticks == []
    assert listener.expired == 0


def test_gone_room_stops_silently():
    engine = TimerEngine(ManualSpawn(), lambda _: None)
    listener = Listener(alive=False)
    handle = _start(engine, 'ROOM01', 3, listener)
    assert engine.tick(handle) is False
    assert listener.ticks == [2]
    assert listener.expired == 0
    assert not engine.is_running('ROOM01')


def test_failing_callback_releases_the_room():
    engine = TimerEngine(run_inline, lambda _: None)

    def on_tick(remaining):
        raise RuntimeError('broadcast blew up')

    handle = engine.start('ROOM01', 3, threading.RLock(), on_tick, lambda: None)
    assert handle.finished
    assert not engine.is_running('ROOM01')
    assert engine.current('ROOM01') is None
    # the room can count down again afterwards
    listener = Listener()
    _start(engine, 'ROOM01', 1, listener)
    assert listener.ticks == [0]
    assert listener.expired == 1
