from flask import Blueprint, current_app, jsonify

main = Blueprint('main', __name__)


@main.route('/')
def index():
    return jsonify({'message': 'Welcome to the tunequiz server!'})


@main.route('/health')
def health():
    store = current_app.extensions['tunequiz']
    with store.lock:
        room_count = len(store.rooms)
    return jsonify({'status': 'ok', 'rooms': room_count})
