import logging
from typing import Callable, Dict, List, Optional

from tunequiz.models import Room, Round


class PendingAnswer:
    def __init__(self, room_code: str, player_id: str, song_id: str, song_title: str, round: Round):
        self.room_code = room_code
        self.player_id = player_id
        self.song_id = song_id
        self.song_title = song_title
        self.round_number = round.number
        self.round = round
        self.handle = None


class PendingAnswerScheduler:
    """Delays answer resolution by each player's handicap.

    Every resolution re-reads the room and drops the answer unless the room
    still exists, its current round is the one the answer was submitted
    against, and the player is still in it. Cancellation only removes the
    timer early; the check on fire is what keeps a slow answer from scoring
    against a later round.
    """

    def __init__(self, timers, lookup_room: Callable[[str], Optional[Room]], logger=None):
        self.timers = timers
        self._lookup_room = lookup_room
        self._pending: Dict[str, Dict[str, PendingAnswer]] = {}
        self._resolver: Optional[Callable[[Room, PendingAnswer], None]] = None
        self.logger = logger or logging.getLogger(__name__)

    def set_resolver(self, resolver: Callable[[Room, PendingAnswer], None]) -> None:
        self._resolver = resolver

    def add_pending_answer(self, room_code: str, player_id: str, song_id: str, song_title: str) -> Optional[PendingAnswer]:
        room = self._lookup_room(room_code)
        if room is None or room.round is None:
            return None
        player = room.find_player(player_id)
        if player is None:
            return None

        # last submission wins
        self.cancel_pending_answer(room_code, player_id)

        pending = PendingAnswer(room_code, player_id, song_id, song_title, room.round)
        delay = player.handicap_seconds
        if delay <= 0:
            self._resolve(pending)
            return pending

        pending.handle = self.timers.call_later(delay, self._resolve, pending)
        self._pending.setdefault(room_code, {})[player_id] = pending
        self.logger.debug(f"[answer-pending] room={room_code} player={player_id} round={pending.round_number} delay={delay}s")
        return pending

    def cancel_pending_answer(self, room_code: str, player_id: str) -> bool:
        room_pending = self._pending.get(room_code)
        if not room_pending:
            return False
        pending = room_pending.pop(player_id, None)
        if not room_pending:
            del self._pending[room_code]
        if pending is None:
            return False
        pending.handle.cancel()
        return True

    def cancel_all_pending_answers(self, room_code: str) -> List[str]:
        room_pending = self._pending.pop(room_code, {})
        for pending in room_pending.values():
            pending.handle.cancel()
        if room_pending:
            self.logger.info(f"[answer-cancel-all] room={room_code} players={len(room_pending)}")
        return list(room_pending)

    def pending_answer(self, room_code: str, player_id: str) -> Optional[PendingAnswer]:
        return self._pending.get(room_code, {}).get(player_id)

    def pending_count(self, room_code: str) -> int:
        return len(self._pending.get(room_code, {}))

    def _resolve(self, pending: PendingAnswer) -> None:
        room_pending = self._pending.get(pending.room_code)
        if room_pending and room_pending.get(pending.player_id) is pending:
            del room_pending[pending.player_id]
            if not room_pending:
                del self._pending[pending.room_code]

        room = self._lookup_room(pending.room_code)
        current = room.round if room is not None else None
        if current is None or current.number != pending.round_number or current is not pending.round:
            self.logger.debug(
                f"[answer-stale] room={pending.room_code} player={pending.player_id} round={pending.round_number}"
            )
            return
        if room.find_player(pending.player_id) is None:
            self.logger.debug(f"[answer-stale] room={pending.room_code} player={pending.player_id} left")
            return
        if self._resolver is not None:
            self._resolver(room, pending)
