from flask import Blueprint, current_app, jsonify, request

rooms = Blueprint('rooms', __name__)


@rooms.route('/<string:code>', methods=['GET'])
def check_room(code):
    """
    Reports whether a room code can be joined by the given session.

    Mid-game rooms are only visible to sessions that took part in the
    running game.
    """
    store = current_app.extensions['tunequiz']
    session_id = request.args.get('session_id')
    with store.lock:
        if not store.rooms.check_room(code, session_id):
            return jsonify({'exists': False}), 404
        room = store.rooms.get_room(code)
        return jsonify({
            'exists': True,
            'phase': room.phase,
            'playerCount': len(room.players),
        })
