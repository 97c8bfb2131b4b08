from flask import Blueprint, current_app, jsonify, request

from pollroom import get_service
from pollroom.errors import PollError

rooms = Blueprint('rooms', __name__)


def _json_body():
    data = request.get_json(silent=True)
    # Only a JSON object carries fields; anything else reads as empty
    return data if isinstance(data, dict) else {}


@rooms.errorhandler(PollError)
def handle_poll_error(exc):
    current_app.logger.info(f"[http-reject] path={request.path} code={exc.code} error={exc.message}")
    return jsonify(exc.to_dict()), exc.status


@rooms.route('/create', methods=['POST'])
def create_room():
    data = _json_body()
    room = get_service().create_room(data.get('adminName'))
    return jsonify({'roomCode': room.code}), 201


@rooms.route('/join', methods=['POST'])
def join_room():
    data = _json_body()
    get_service().join_room(data.get('roomCode'), data.get('studentName'))
    return jsonify({'success': True})


@rooms.route('/end', methods=['POST'])
def end_room():
    data = _json_body()
    get_service().end_room(data.get('roomCode'))
    return jsonify({'success': True})


@rooms.route('/<string:room_code>', methods=['GET'])
def get_room(room_code):
    return jsonify(get_service().snapshot(room_code))
