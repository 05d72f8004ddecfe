import logging
import random
from enum import Enum
from typing import List, NamedTuple, Optional, Union

from tunequiz.models import Finished, Lobby, Playing, Room, Round, RoundWinner, Song


class Rejection(str, Enum):
    NO_ROUND = 'no_round'
    ALREADY_SCORED = 'already_scored'
    ROUND_CLOSED = 'round_closed'
    WRONG = 'wrong'


class Accepted(NamedTuple):
    points: int
    rank: int  # 0-based arrival rank
    slots_full: bool


class Rejected(NamedTuple):
    reason: Rejection


Answer = Union[Accepted, Rejected]


class RoundEngine:
    """Round lifecycle within a room: start, scoring, extension, advance, end."""

    def __init__(self, pending, logger=None):
        self.pending = pending
        self.logger = logger or logging.getLogger(__name__)

    def set_lobby_songs(self, room: Room, songs: List[Song]) -> None:
        room.lobby_songs = list(songs)

    def start_game(self, room: Room, songs: Optional[List[Song]] = None) -> Optional[Round]:
        songs = list(songs) if songs else list(room.lobby_songs)
        if not songs:
            return None
        for player in room.players:
            player.score = 0
        room.saved_progress.clear()
        room.game_songs = songs
        self.logger.info(f"[game-start] room={room.code} players={len(room.players)} songs={len(songs)}")
        return self.start_round(room, 1)

    def start_round(self, room: Room, number: int) -> Round:
        self.pending.cancel_all_pending_answers(room.code)
        round = Round(number)
        room.state = Playing(round)
        self.logger.info(f"[round-start] room={room.code} round={number}")
        return round

    def expected_song(self, room: Room) -> Optional[Song]:
        if room.round is None or not room.game_songs:
            return None
        return room.game_songs[(room.round.number - 1) % len(room.game_songs)]

    def payable_slots(self, room: Room) -> int:
        return min(len(room.settings.scoring_scheme), len(room.players))

    def submit_answer(self, room: Room, player_id: str, song_id: str, song_title: str) -> Answer:
        round = room.round
        if round is None:
            return Rejected(Rejection.NO_ROUND)
        if round.has_won(player_id):
            return Rejected(Rejection.ALREADY_SCORED)
        slots = self.payable_slots(room)
        if round.answers_closed or len(round.winners) >= slots:
            return Rejected(Rejection.ROUND_CLOSED)

        round.answered[player_id] = song_title
        song = self.expected_song(room)
        if song is None:
            return Rejected(Rejection.NO_ROUND)
        if song_id != song.id:
            return Rejected(Rejection.WRONG)

        player = room.find_player(player_id)
        scheme = room.settings.scoring_scheme
        rank = len(round.winners)
        points = scheme[rank] if rank < len(scheme) else 0
        if player is not None:
            player.score += points
        round.winners.append(RoundWinner(player_id, player.nickname if player else '', points))
        slots_full = len(round.winners) >= slots
        if slots_full:
            round.answers_closed = True
        return Accepted(points=points, rank=rank, slots_full=slots_full)

    def extend_duration(self, room: Room) -> Optional[float]:
        round = room.round
        if round is None:
            return None
        steps = room.settings.duration_steps
        if round.step_index >= len(steps) - 1:
            return None
        round.step_index += 1
        return steps[round.step_index]

    def current_duration(self, room: Room) -> float:
        round = room.round
        steps = room.settings.duration_steps
        if round is None or not (0 <= round.step_index < len(steps)):
            return 1
        return steps[round.step_index]

    def can_advance_round(self, room: Room) -> bool:
        if room.round is None:
            return False
        total = room.settings.total_rounds
        return total == 0 or room.round.number < total

    def close_answers(self, room: Room) -> Optional[Song]:
        if room.round is None:
            return None
        self.pending.cancel_all_pending_answers(room.code)
        room.round.answers_closed = True
        return self.expected_song(room)

    def close_if_slots_full(self, room: Room) -> Optional[Song]:
        """Close answers when a departure left every payable slot taken."""
        round = room.round
        if room.phase != 'playing' or round is None or round.answers_closed or not round.winners:
            return None
        if len(round.winners) < self.payable_slots(room):
            return None
        self.logger.info(f"[answers-closed] room={room.code} round={round.number} slots filled after leave")
        return self.close_answers(room)

    def end_game(self, room: Room) -> None:
        self.pending.cancel_all_pending_answers(room.code)
        final_scores = [p.to_dict() for p in room.players]
        room.state = Finished(final_scores)
        room.game_songs = []
        self.logger.info(f"[game-end] room={room.code}")

    def reset_to_lobby(self, room: Room) -> List[Song]:
        """Back to lobby with the previous song selection reshuffled and staged."""
        self.pending.cancel_all_pending_answers(room.code)
        room.state = Lobby()
        for player in room.players:
            player.score = 0
        room.game_songs = []
        room.saved_progress.clear()
        room.participants.clear()
        songs = list(room.lobby_songs)
        random.shuffle(songs)
        room.lobby_songs = songs
        self.logger.info(f"[lobby-reset] room={room.code} songs={len(songs)}")
        return songs
