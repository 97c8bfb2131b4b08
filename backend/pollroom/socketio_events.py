import json
from functools import wraps
from typing import Any, Dict

from flask import current_app, request
from flask_socketio import emit

from pollroom import get_service, socketio
from pollroom.errors import InvalidInput, MalformedMessage, PollError


def _get_sid() -> str:
    # request.sid exists in Socket.IO context
    return request.sid  # type: ignore


def _as_object(data) -> Dict[str, Any]:
    """Accept a JSON object or a JSON-encoded string of one."""
    if isinstance(data, (bytes, bytearray)):
        data = data.decode('utf-8', errors='replace')
    if isinstance(data, str):
        try:
            data = json.loads(data)
        except ValueError as exc:
            raise MalformedMessage(f'invalid JSON: {exc}')
    if not isinstance(data, dict):
        raise MalformedMessage('payload must be a JSON object')
    return data


def _socket_handler(fn):
    """Report domain errors to the sender; log and drop malformed payloads."""
    @wraps(fn)
    def wrapper(*args):
        try:
            return fn(*args)
        except MalformedMessage as exc:
            current_app.logger.warning(f"[ws-malformed] sid={_get_sid()} handler={fn.__name__} error={exc.message}")
        except PollError as exc:
            current_app.logger.info(f"[ws-reject] sid={_get_sid()} handler={fn.__name__} code={exc.code} error={exc.message}")
            emit('error', exc.to_dict())
    return wrapper


def _join(data):
    conn = get_service().bind_connection(
        _get_sid(), data.get('roomCode'), data.get('user'), data.get('isAdmin') is True
    )
    emit('joined', {'type': 'joined', 'roomCode': conn.room_code})


def _poll(data):
    get_service().push_question(data.get('roomCode'), data.get('question'))


def _answer(data):
    service = get_service()
    conn = service.registry.get(_get_sid())
    code = data.get('roomCode') or (conn.room_code if conn else None)
    user = data.get('user') or (conn.name if conn else None)
    if 'answer' not in data:
        raise InvalidInput('answer required')
    service.submit_answer(code, user, data['answer'])


_DISPATCH = {
    'join': _join,
    'poll': _poll,
    'answer': _answer,
}


def handle_connect(auth=None):
    get_service().registry.register(_get_sid())
    emit('connected', {'type': 'connected', 'message': f'Connected to {request.namespace}'})


def handle_disconnect(reason=None):
    get_service().disconnect(_get_sid())


@_socket_handler
def handle_join(data=None):
    _join(_as_object(data))


@_socket_handler
def handle_poll(data=None):
    _poll(_as_object(data))


@_socket_handler
def handle_answer(data=None):
    _answer(_as_object(data))


@_socket_handler
def handle_message(data=None):
    """JSON-framed form: ``{"type": "join" | "poll" | "answer", ...}``."""
    data = _as_object(data)
    handler = _DISPATCH.get(data.get('type'))
    if handler is None:
        raise MalformedMessage(f"unknown message type {data.get('type')!r}")
    handler(data)


def handle_ping(data=None):
    emit('pong', data or {})


def handle_unexpected_error(exc):
    # Last resort: one bad event must not take the server down
    current_app.logger.exception(f"[ws-error] sid={_get_sid()} event={request.event} error={exc}")


def register_socketio_handlers(namespace: str = '/ws') -> None:
    socketio.on_event('connect', handle_connect, namespace=namespace)
    socketio.on_event('disconnect', handle_disconnect, namespace=namespace)
    socketio.on_event('join', handle_join, namespace=namespace)
    socketio.on_event('poll', handle_poll, namespace=namespace)
    socketio.on_event('answer', handle_answer, namespace=namespace)
    socketio.on_event('message', handle_message, namespace=namespace)
    socketio.on_event('json', handle_message, namespace=namespace)
    socketio.on_event('ping', handle_ping, namespace=namespace)
    socketio.on_error_default(handle_unexpected_error)
