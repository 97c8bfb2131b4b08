import logging

from flask import Flask, current_app, jsonify
from flask_cors import CORS
from flask_socketio import SocketIO
from config import Config

from pollroom.services.polls.fanout import Fanout
from pollroom.services.polls.registry import ConnectionRegistry
from pollroom.services.polls.session import PollService
from pollroom.services.polls.store import RoomStore
from pollroom.services.polls.timers import TimerEngine

socketio = SocketIO()


def _run_inline(fn, *args, **kwargs):
    return fn(*args, **kwargs)


def get_service() -> PollService:
    """The PollService owned by the current app."""
    return current_app.extensions['pollroom']


def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)
    cfg = flask_app.config

    if not cfg.get('TESTING'):
        logging.basicConfig(
            level=cfg.get('LOG_LEVEL', 'INFO'),
            format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        )
    flask_app.logger.setLevel(cfg.get('LOG_LEVEL', 'INFO'))

    origins = cfg.get('CORS_ORIGINS') or []
    CORS(flask_app, origins=origins)
    socketio.init_app(
        flask_app,
        cors_allowed_origins=origins,
        async_mode=cfg.get('SOCKETIO_ASYNC_MODE'),
    )

    # Background delivery in production; inline in tests for deterministic ordering
    deliver_spawn = _run_inline if cfg.get('TESTING') else socketio.start_background_task
    namespace = cfg.get('SOCKETIO_NAMESPACE', '/ws')
    registry = ConnectionRegistry(queue_size=int(cfg.get('SEND_QUEUE_SIZE', 64)))
    service = PollService(
        store=RoomStore(code_length=int(cfg.get('ROOM_CODE_LENGTH', 6))),
        registry=registry,
        fanout=Fanout(registry, socketio.emit, deliver_spawn, namespace=namespace, logger=flask_app.logger),
        timers=TimerEngine(
            socketio.start_background_task,
            socketio.sleep,
            interval=float(cfg.get('TICK_INTERVAL_SEC', 1.0)),
            logger=flask_app.logger,
        ),
        logger=flask_app.logger,
        idle_ttl=int(cfg.get('ROOM_IDLE_TTL_SEC', 0)),
    )
    flask_app.extensions['pollroom'] = service

    from pollroom.main import main
    flask_app.register_blueprint(main)

    from pollroom.api.rooms import rooms
    flask_app.register_blueprint(rooms, url_prefix='/api/rooms')

    from pollroom.socketio_events import register_socketio_handlers
    register_socketio_handlers(namespace)

    @flask_app.errorhandler(Exception)
    def handle_unexpected(exc):
        # HTTP errors (404 for unknown routes etc.) keep their own status
        code = getattr(exc, 'code', None)
        if isinstance(code, int) and 400 <= code < 500:
            return jsonify({'error': getattr(exc, 'description', str(exc))}), code
        flask_app.logger.exception(f"[http-error] {exc}")
        return jsonify({'error': 'Server error'}), 500

    if service.idle_ttl > 0 and not cfg.get('TESTING'):
        interval = float(cfg.get('REAPER_INTERVAL_SEC', 60))
        socketio.start_background_task(service.run_reaper, socketio.sleep, interval)
        flask_app.logger.info(f"[reaper] enabled ttl={service.idle_ttl}s interval={interval}s")

    return flask_app
