import logging
from enum import Enum
from typing import Callable, Dict, List, NamedTuple, Optional, Union

from tunequiz.models import Lobby, Player, Playing, Room, Settings, generate_room_code


class RoomError(str, Enum):
    NOT_FOUND = 'Room not found'
    ALREADY_IN_ROOM = 'Already in room'
    GAME_IN_PROGRESS = 'Game already in progress'
    ROOM_FULL = 'Room is full'
    NOT_IN_ROOM = 'Not in room'
    NICKNAME_TAKEN = 'Nickname already taken'
    WRONG_PHASE = 'Can only change this in the lobby'
    OUT_OF_RANGE = 'Handicap must be between 0 and 30 seconds'
    NO_CODES = 'No room codes available'


class LeaveResult(NamedTuple):
    room: Room
    was_host: bool
    paused: bool


RoomResult = Union[Room, RoomError]


class RoomRegistry:
    """Room lifecycle: codes, membership, nicknames, handicaps, deletion.

    Departing players keep their nickname (and, mid-game, their score and
    handicap) under their session id so a reconnect resumes where it left
    off. Emptied rooms are deleted only after a grace period.
    """

    def __init__(self, sessions, timers, pending, grace_seconds=300, max_players=20,
                 max_handicap=30, default_settings=None, logger=None):
        self.sessions = sessions
        self.timers = timers
        self.pending = pending
        self.grace_seconds = grace_seconds
        self.max_players = max_players
        self.max_handicap = max_handicap
        self.default_settings = dict(default_settings or {})
        self.logger = logger or logging.getLogger(__name__)
        self._rooms: Dict[str, Room] = {}
        self._room_by_connection: Dict[str, str] = {}
        self._deletions: Dict[str, object] = {}
        self._deletion_listeners: List[Callable[[str], None]] = []
        self._takeover_listeners: List[Callable[[str, str], None]] = []

    # ---- lookups ----

    def get_room(self, code) -> Optional[Room]:
        if not isinstance(code, str):
            return None
        return self._rooms.get(code)

    def get_room_by_connection(self, connection_id: str) -> Optional[Room]:
        code = self._room_by_connection.get(connection_id)
        return self._rooms.get(code) if code else None

    def is_host(self, connection_id: str, room: Room) -> bool:
        return any(p.id == connection_id and p.is_host for p in room.players)

    def check_room(self, code, session_id) -> bool:
        room = self.get_room(code)
        if room is None:
            return False
        if room.phase == 'lobby':
            return True
        return session_id in room.participants

    def deletion_pending(self, code: str) -> bool:
        return code in self._deletions

    def __len__(self):
        return len(self._rooms)

    # ---- lifecycle ----

    def create_room(self, connection_id: str, session_id: str) -> RoomResult:
        code = generate_room_code(self._rooms)
        if code is None:
            self.logger.warning('[room-create] no free room codes')
            return RoomError.NO_CODES
        room = Room(code, Settings(**self.default_settings))
        room.host_session = session_id
        nickname = self._assign_nickname(room, session_id)
        room.players.append(Player(connection_id, nickname, is_host=True))
        self._rooms[code] = room
        self._room_by_connection[connection_id] = code
        self.logger.info(f"[room-create] code={code} sid={connection_id}")
        return room

    def join_room(self, code, connection_id: str, session_id: str) -> RoomResult:
        room = self.get_room(code)
        if room is None:
            return RoomError.NOT_FOUND
        if room.find_player(connection_id) is not None or connection_id in self._room_by_connection:
            return RoomError.ALREADY_IN_ROOM
        if room.phase != 'lobby' and session_id not in room.participants:
            return RoomError.GAME_IN_PROGRESS

        stale = self._find_by_session(room, session_id)
        if stale is None and len(room.players) >= self.max_players:
            return RoomError.ROOM_FULL

        is_returning_host = room.host_session == session_id
        # outside a game, only the host's return keeps a room alive
        if is_returning_host or (not room.players and room.phase not in ('lobby', 'finished')):
            self.cancel_scheduled_deletion(code)

        if stale is not None:
            # same browser session on a new connection: take over the old record
            self._room_by_connection.pop(stale.id, None)
            self.pending.cancel_pending_answer(code, stale.id)
            self.logger.info(f"[room-takeover] code={code} old_sid={stale.id} sid={connection_id}")
            replaced = stale.id
            stale.id = connection_id
            stale.is_host = stale.is_host or is_returning_host
            player = stale
            for listener in self._takeover_listeners:
                listener(code, replaced)
        else:
            score, handicap = room.saved_progress.get(session_id, (0, 0))
            player = Player(
                connection_id,
                self._assign_nickname(room, session_id),
                score=score,
                is_host=is_returning_host,
                handicap_seconds=handicap,
            )
            room.players.append(player)
        self._room_by_connection[connection_id] = code

        if player.is_host:
            for other in room.players:
                if other is not player:
                    other.is_host = False
        if is_returning_host and room.resume():
            self.logger.info(f"[room-resume] code={code} host returned")
        self._check_host_invariant(room)
        self.logger.info(f"[room-join] code={code} sid={connection_id} players={len(room.players)}")
        return room

    def leave_room(self, connection_id: str) -> Optional[LeaveResult]:
        code = self._room_by_connection.pop(connection_id, None)
        if not code:
            return None
        room = self._rooms.get(code)
        if room is None:
            return None

        player = room.find_player(connection_id)
        session_id = self.sessions.session_for(connection_id)
        if player is not None and session_id:
            self._save_nickname(room, session_id, player.nickname)
            if room.phase != 'lobby':
                room.saved_progress[session_id] = (player.score, player.handicap_seconds)

        self.pending.cancel_pending_answer(code, connection_id)
        was_host = bool(player and player.is_host)
        room.players = [p for p in room.players if p.id != connection_id]
        self.logger.info(f"[room-leave] code={code} sid={connection_id} host={was_host} players={len(room.players)}")

        # the host device is the only audio source, so the game waits for it
        paused = was_host and room.pause()
        if paused:
            self.logger.info(f"[room-pause] code={code} host left mid-game")

        if not room.players:
            self.schedule_deletion(code)
            return None
        if was_host and not paused and room.phase in ('lobby', 'finished'):
            self.schedule_deletion(code)
        self._check_host_invariant(room)
        return LeaveResult(room, was_host, paused)

    def set_nickname(self, code, connection_id: str, nickname: str) -> RoomResult:
        room = self.get_room(code)
        if room is None:
            return RoomError.NOT_FOUND
        player = room.find_player(connection_id)
        if player is None:
            return RoomError.NOT_IN_ROOM
        if room.nickname_in_use(nickname, exclude_id=connection_id):
            return RoomError.NICKNAME_TAKEN
        player.nickname = nickname
        session_id = self.sessions.session_for(connection_id)
        if session_id:
            self._save_nickname(room, session_id, nickname)
        return room

    def set_handicap(self, code, connection_id: str, seconds) -> RoomResult:
        room = self.get_room(code)
        if room is None:
            return RoomError.NOT_FOUND
        player = room.find_player(connection_id)
        if player is None:
            return RoomError.NOT_IN_ROOM
        if room.phase != 'lobby':
            return RoomError.WRONG_PHASE
        if (not isinstance(seconds, (int, float)) or isinstance(seconds, bool)
                or seconds != seconds or not 0 <= seconds <= self.max_handicap):
            return RoomError.OUT_OF_RANGE
        player.handicap_seconds = seconds
        return room

    def update_settings(self, code, changes) -> RoomResult:
        room = self.get_room(code)
        if room is None:
            return RoomError.NOT_FOUND
        if room.phase != 'lobby':
            return RoomError.WRONG_PHASE
        applied = room.settings.apply(changes)
        self.logger.info(f"[room-settings] code={code} applied={applied}")
        return room

    def save_game_participants(self, code) -> None:
        room = self.get_room(code)
        if room is None:
            return
        room.participants = {
            session_id
            for session_id in (self.sessions.session_for(p.id) for p in room.players)
            if session_id
        }

    # ---- deletion ----

    def add_deletion_listener(self, listener: Callable[[str], None]) -> None:
        self._deletion_listeners.append(listener)

    def add_takeover_listener(self, listener: Callable[[str, str], None]) -> None:
        """Called with (code, old connection id) when a session moves to a new connection."""
        self._takeover_listeners.append(listener)

    def schedule_deletion(self, code: str) -> None:
        self.cancel_scheduled_deletion(code)
        handle = self.timers.call_later(self.grace_seconds, self._deletion_expired, code)
        self._deletions[code] = handle
        self.logger.info(f"[room-delete-scheduled] code={code} in={self.grace_seconds}s")

    def cancel_scheduled_deletion(self, code: str) -> bool:
        handle = self._deletions.pop(code, None)
        if handle is None:
            return False
        handle.cancel()
        self.logger.info(f"[room-delete-cancelled] code={code}")
        return True

    def delete_room(self, code: str) -> None:
        self.cancel_scheduled_deletion(code)
        room = self._rooms.pop(code, None)
        if room is None:
            return
        for connection_id in [sid for sid, c in self._room_by_connection.items() if c == code]:
            del self._room_by_connection[connection_id]
        self.pending.cancel_all_pending_answers(code)
        self.logger.info(f"[room-delete] code={code}")
        for listener in self._deletion_listeners:
            listener(code)

    def _deletion_expired(self, code: str) -> None:
        self._deletions.pop(code, None)
        self.logger.info(f"[room-delete-expired] code={code}")
        self.delete_room(code)

    # ---- helpers ----

    def _find_by_session(self, room: Room, session_id: str) -> Optional[Player]:
        for player in room.players:
            if self.sessions.session_for(player.id) == session_id:
                return player
        return None

    def _save_nickname(self, room: Room, session_id: str, nickname: str) -> None:
        if nickname:
            room.saved_nicknames[session_id] = nickname

    def _assign_nickname(self, room: Room, session_id: str) -> str:
        saved = room.saved_nicknames.get(session_id)
        if saved and not room.nickname_in_use(saved):
            return saved
        while True:
            nickname = f"Player {room.next_player_number}"
            room.next_player_number += 1
            if not room.nickname_in_use(nickname):
                return nickname

    def _check_host_invariant(self, room: Room) -> None:
        hosts = room.hosts()
        if len(hosts) > 1:
            self.logger.warning(f"[host-invariant] code={room.code} hosts={[h.id for h in hosts]}")
            for extra in hosts[1:]:
                extra.is_host = False
        elif not hosts and isinstance(room.state, (Lobby, Playing)) and not self.deletion_pending(room.code):
            self.logger.warning(f"[host-invariant] code={room.code} no host present")
