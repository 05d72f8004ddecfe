import functools
from typing import Any, Dict, Optional

from flask import current_app, request
from flask_socketio import emit, join_room, leave_room

from tunequiz import socketio
from tunequiz.models import Room, songs_from_payload
from tunequiz.services.games.engine import Accepted, Rejection
from tunequiz.services.rooms import RoomError
from tunequiz.store import GameStore

NAMESPACE = '/ws'


def _store() -> GameStore:
    return current_app.extensions['tunequiz']


def _get_sid() -> str:
    # request.sid exists in Socket.IO context
    return request.sid  # type: ignore


def _channel(code: str) -> str:
    return f"room:{code}"


def _payload(data) -> Dict[str, Any]:
    return data if isinstance(data, dict) else {}


def _broadcast(event: str, payload, code: str) -> None:
    # socketio.emit works both in handlers and in timer callbacks
    socketio.emit(event, payload, to=_channel(code), namespace=NAMESPACE)


def _send(event: str, payload, sid: str) -> None:
    socketio.emit(event, payload, to=sid, namespace=NAMESPACE)


def _broadcast_state(room: Room) -> None:
    _broadcast('room:state', room.to_dict(), room.code)


def _error(error) -> Dict[str, Any]:
    message = error.value if isinstance(error, RoomError) else str(error)
    return {'ok': False, 'error': message}


def _serialized(handler):
    """Run a handler while holding the store lock, like timer callbacks do."""
    @functools.wraps(handler)
    def wrapper(*args, **kwargs):
        with _store().lock:
            return handler(*args, **kwargs)
    return wrapper


def _host_room(store: GameStore, *phases: str) -> Optional[Room]:
    """The caller's room if the caller is its host and it is in one of ``phases``."""
    sid = _get_sid()
    room = store.rooms.get_room_by_connection(sid)
    if room is None:
        return None
    if not store.rooms.is_host(sid, room):
        event = getattr(request, 'event', None) or {}
        store.logger.debug(f"[auth-drop] room={room.code} sid={sid} event={event.get('message')}")
        return None
    if phases and room.phase not in phases:
        return None
    return room


def _leave_current_room(store: GameStore, sid: str, leave_channel: bool = True) -> None:
    room = store.rooms.get_room_by_connection(sid)
    if room is None:
        return
    if leave_channel:
        leave_room(_channel(room.code))
    result = store.rooms.leave_room(sid)
    if result:
        song = store.engine.close_if_slots_full(result.room)
        _broadcast_state(result.room)
        if song is not None:
            _emit_reveal(result.room, song)


# ---- connection lifecycle ----

@_serialized
def handle_connect(auth=None):
    store = _store()
    requested = auth.get('sessionId') if isinstance(auth, dict) else None
    session_id = store.sessions.bind(_get_sid(), requested)
    emit('session:id', session_id)
    store.logger.info(f"[connect] sid={_get_sid()} session={session_id}")


@_serialized
def handle_disconnect(reason=None):
    store = _store()
    sid = _get_sid()
    store.logger.info(f"[disconnect] sid={sid}")
    _leave_current_room(store, sid, leave_channel=False)
    store.sessions.unbind(sid)


# ---- room events (request/response) ----

@_serialized
def handle_room_create(data=None):
    store = _store()
    sid = _get_sid()
    session_id = store.sessions.session_for(sid) or store.sessions.bind(sid)
    _leave_current_room(store, sid)
    room = store.rooms.create_room(sid, session_id)
    if isinstance(room, RoomError):
        return _error(room)
    join_room(_channel(room.code))
    _broadcast_state(room)
    return {'ok': True, 'code': room.code}


@_serialized
def handle_room_check(data=None):
    store = _store()
    code = _payload(data).get('code')
    session_id = store.sessions.session_for(_get_sid())
    return {'exists': store.rooms.check_room(code, session_id)}


@_serialized
def handle_room_join(data=None):
    store = _store()
    sid = _get_sid()
    code = _payload(data).get('code')
    if not isinstance(code, str) or not code.strip():
        return _error(RoomError.NOT_FOUND)
    code = code.strip()
    session_id = store.sessions.session_for(sid) or store.sessions.bind(sid)

    current = store.rooms.get_room_by_connection(sid)
    if current is not None and current.code != code:
        _leave_current_room(store, sid)

    room = store.rooms.join_room(code, sid, session_id)
    if isinstance(room, RoomError):
        return _error(room)
    join_room(_channel(room.code))
    _broadcast_state(room)

    if room.phase == 'lobby' and room.lobby_songs:
        _send('lobby:songs', {'songs': [s.to_dict() for s in room.lobby_songs]}, sid)
    # a returning participant needs the running game to catch up
    if room.round is not None:
        _send('game:songs', {'songs': [s.to_dict() for s in room.game_songs]}, sid)
        _send('game:round', room.round.to_dict(), sid)
    return {'ok': True}


@_serialized
def handle_room_leave(data=None):
    _leave_current_room(_store(), _get_sid())


@_serialized
def handle_room_nickname(data=None):
    store = _store()
    sid = _get_sid()
    room = store.rooms.get_room_by_connection(sid)
    if room is None:
        return _error('Not in a room')
    nickname = _payload(data).get('nickname')
    if not isinstance(nickname, str) or not nickname.strip():
        return _error('Nickname is required')
    nickname = nickname.strip()
    if len(nickname) > store.max_nickname_length:
        return _error(f'Nickname must be at most {store.max_nickname_length} characters')
    result = store.rooms.set_nickname(room.code, sid, nickname)
    if isinstance(result, RoomError):
        return _error(result)
    _broadcast_state(result)
    return {'ok': True}


@_serialized
def handle_room_handicap(data=None):
    store = _store()
    sid = _get_sid()
    room = store.rooms.get_room_by_connection(sid)
    if room is None:
        return _error('Not in a room')
    result = store.rooms.set_handicap(room.code, sid, _payload(data).get('seconds'))
    if isinstance(result, RoomError):
        return _error(result)
    _broadcast_state(result)
    return {'ok': True}


# ---- host-only lobby events ----

@_serialized
def handle_room_settings(data=None):
    store = _store()
    room = _host_room(store, 'lobby')
    if room is None:
        return
    result = store.rooms.update_settings(room.code, _payload(data))
    if isinstance(result, RoomError):
        return
    _broadcast_state(result)


@_serialized
def handle_lobby_songs(data=None):
    store = _store()
    room = _host_room(store, 'lobby')
    if room is None:
        return
    store.engine.set_lobby_songs(room, songs_from_payload(_payload(data).get('songs')))
    _broadcast('lobby:songs', {'songs': [s.to_dict() for s in room.lobby_songs]}, room.code)


# ---- game events ----

@_serialized
def handle_game_start(data=None):
    store = _store()
    room = _host_room(store, 'lobby')
    if room is None:
        return
    songs = songs_from_payload(_payload(data).get('songs'))
    if not songs and not room.lobby_songs:
        return
    store.rooms.save_game_participants(room.code)
    round = store.engine.start_game(room, songs)
    if round is None:
        return
    _broadcast('game:songs', {'songs': [s.to_dict() for s in room.game_songs]}, room.code)
    _broadcast_state(room)
    _broadcast('game:round', round.to_dict(), room.code)


@_serialized
def handle_game_play(data=None):
    store = _store()
    room = _host_room(store, 'playing')
    if room is None or room.round is None or not room.game_songs:
        return
    _broadcast('game:play-song', {
        'songIndex': (room.round.number - 1) % len(room.game_songs),
        'duration': store.engine.current_duration(room),
    }, room.code)


@_serialized
def handle_game_answer(data=None):
    store = _store()
    sid = _get_sid()
    room = store.rooms.get_room_by_connection(sid)
    if room is None or room.phase != 'playing' or room.round is None:
        return
    if room.find_player(sid) is None:
        return
    payload = _payload(data)
    song_id = payload.get('songId')
    song_title = payload.get('songTitle')
    if not isinstance(song_id, str):
        return
    if not isinstance(song_title, str):
        song_title = ''
    store.pending.add_pending_answer(room.code, sid, song_id, song_title)


@_serialized
def handle_game_extend(data=None):
    store = _store()
    room = _host_room(store, 'playing')
    if room is None:
        return
    duration = store.engine.extend_duration(room)
    if duration is not None:
        _broadcast('game:extended', {
            'currentStepIndex': room.round.step_index,
            'duration': duration,
        }, room.code)


@_serialized
def handle_game_close_answers(data=None):
    store = _store()
    room = _host_room(store, 'playing')
    if room is None:
        return
    song = store.engine.close_answers(room)
    if song is not None:
        _emit_reveal(room, song)


@_serialized
def handle_game_next(data=None):
    store = _store()
    room = _host_room(store, 'playing')
    if room is None or room.round is None:
        return
    if store.engine.can_advance_round(room):
        round = store.engine.start_round(room, room.round.number + 1)
        _broadcast('game:round', round.to_dict(), room.code)
    else:
        _finish_game(store, room)


@_serialized
def handle_game_end(data=None):
    store = _store()
    room = _host_room(store, 'playing')
    if room is None:
        return
    _finish_game(store, room)


@_serialized
def handle_game_back_to_lobby(data=None):
    store = _store()
    room = _host_room(store, 'finished')
    if room is None:
        return
    songs = store.engine.reset_to_lobby(room)
    _broadcast_state(room)
    if songs:
        _broadcast('lobby:songs', {'songs': [s.to_dict() for s in songs]}, room.code)


def _finish_game(store: GameStore, room: Room) -> None:
    store.engine.end_game(room)
    _broadcast('game:finished', {'players': [p.to_dict() for p in room.players]}, room.code)
    _broadcast_state(room)


def _emit_reveal(room: Room, song) -> None:
    _broadcast('game:reveal', {
        'song': song.to_dict(),
        'winners': [w.to_dict() for w in room.round.winners],
    }, room.code)


# ---- timer-driven events ----

def _apply_answer(store: GameStore, room: Room, pending) -> None:
    """Score an answer whose handicap delay elapsed and is still current."""
    result = store.engine.submit_answer(room, pending.player_id, pending.song_id, pending.song_title)
    if isinstance(result, Accepted):
        player = room.find_player(pending.player_id)
        _broadcast('game:scored', {
            'playerId': pending.player_id,
            'nickname': player.nickname if player else '',
            'points': result.points,
            'position': result.rank + 1,
        }, room.code)
        _broadcast_state(room)
        if result.slots_full:
            song = store.engine.close_answers(room)
            if song is not None:
                _emit_reveal(room, song)
    elif result.reason is Rejection.WRONG:
        _send('game:wrong-answer', {'songTitle': pending.song_title}, pending.player_id)


def _room_deleted(code: str) -> None:
    _broadcast('room:closed', {'code': code}, code)
    socketio.close_room(_channel(code), namespace=NAMESPACE)


def _connection_replaced(code: str, old_sid: str) -> None:
    # the replaced connection is no longer a member and must stop receiving room events
    leave_room(_channel(code), sid=old_sid, namespace=NAMESPACE)


def bind_store_events(store: GameStore) -> None:
    store.pending.set_resolver(functools.partial(_apply_answer, store))
    store.rooms.add_deletion_listener(_room_deleted)
    store.rooms.add_takeover_listener(_connection_replaced)


def register_socketio_handlers() -> None:
    """Register Socket.IO event handlers on namespace '/ws'."""
    socketio.on_event('connect', handle_connect, namespace=NAMESPACE)
    socketio.on_event('disconnect', handle_disconnect, namespace=NAMESPACE)
    socketio.on_event('room:create', handle_room_create, namespace=NAMESPACE)
    socketio.on_event('room:check', handle_room_check, namespace=NAMESPACE)
    socketio.on_event('room:join', handle_room_join, namespace=NAMESPACE)
    socketio.on_event('room:leave', handle_room_leave, namespace=NAMESPACE)
    socketio.on_event('room:nickname', handle_room_nickname, namespace=NAMESPACE)
    socketio.on_event('room:handicap', handle_room_handicap, namespace=NAMESPACE)
    socketio.on_event('room:settings', handle_room_settings, namespace=NAMESPACE)
    socketio.on_event('lobby:songs', handle_lobby_songs, namespace=NAMESPACE)
    socketio.on_event('game:start', handle_game_start, namespace=NAMESPACE)
    socketio.on_event('game:play', handle_game_play, namespace=NAMESPACE)
    socketio.on_event('game:answer', handle_game_answer, namespace=NAMESPACE)
    socketio.on_event('game:extend', handle_game_extend, namespace=NAMESPACE)
    socketio.on_event('game:closeAnswers', handle_game_close_answers, namespace=NAMESPACE)
    socketio.on_event('game:next', handle_game_next, namespace=NAMESPACE)
    socketio.on_event('game:end', handle_game_end, namespace=NAMESPACE)
    socketio.on_event('game:back-to-lobby', handle_game_back_to_lobby, namespace=NAMESPACE)
