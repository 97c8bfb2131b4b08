from flask import Blueprint, jsonify

from pollroom import get_service

main = Blueprint('main', __name__)


@main.route('/')
def index():
    return jsonify({'message': 'Welcome to the live poll server!'})


@main.route('/health')
def health():
    service = get_service()
    return jsonify({
        'status': 'ok',
        'rooms': len(service.store),
        'connections': len(service.registry),
    })
