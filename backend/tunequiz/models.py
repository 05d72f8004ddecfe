import random
from typing import Dict, List, Optional, Set

ROOM_CODE_MIN = 1000
ROOM_CODE_MAX = 9999


class Song:
    """Opaque catalog entry curated by the host. Only ``id`` is matched."""

    def __init__(self, id, title='', artist='', artwork_url='', preview_url=''):
        self.id = id
        self.title = title
        self.artist = artist
        self.artwork_url = artwork_url
        self.preview_url = preview_url

    @classmethod
    def from_dict(cls, data) -> Optional['Song']:
        if not isinstance(data, dict):
            return None
        song_id = data.get('id')
        if not isinstance(song_id, str) or not song_id:
            return None
        return cls(
            id=song_id,
            title=str(data.get('title') or ''),
            artist=str(data.get('artist') or ''),
            artwork_url=str(data.get('artworkUrl') or ''),
            preview_url=str(data.get('previewUrl') or ''),
        )

    def to_dict(self):
        return {
            'id': self.id,
            'title': self.title,
            'artist': self.artist,
            'artworkUrl': self.artwork_url,
            'previewUrl': self.preview_url,
        }


def songs_from_payload(items) -> List[Song]:
    if not isinstance(items, list):
        return []
    songs = [Song.from_dict(item) for item in items]
    return [s for s in songs if s is not None]


class Settings:
    def __init__(self, total_rounds=0, duration_steps=None, scoring_scheme=None,
                 playlist_id='', playlist_name=''):
        self.total_rounds = total_rounds
        self.duration_steps = list(duration_steps or [1, 2, 4, 8, 16])
        self.scoring_scheme = list(scoring_scheme or [4, 2, 1])
        self.playlist_id = playlist_id
        self.playlist_name = playlist_name

    def apply(self, changes) -> List[str]:
        """Apply a partial update, skipping invalid fields. Returns applied keys."""
        applied = []
        if not isinstance(changes, dict):
            return applied

        total = changes.get('totalRounds')
        if isinstance(total, int) and not isinstance(total, bool) and total >= 0:
            self.total_rounds = total
            applied.append('totalRounds')

        steps = changes.get('durationSteps')
        if (isinstance(steps, list) and steps
                and all(_is_number(s) and s > 0 for s in steps)):
            self.duration_steps = list(steps)
            applied.append('durationSteps')

        scheme = changes.get('scoringScheme')
        if (isinstance(scheme, list) and scheme
                and all(isinstance(p, int) and not isinstance(p, bool) and p >= 0 for p in scheme)):
            self.scoring_scheme = list(scheme)
            applied.append('scoringScheme')

        for key, attr in (('playlistId', 'playlist_id'), ('playlistName', 'playlist_name')):
            value = changes.get(key)
            if isinstance(value, str):
                setattr(self, attr, value)
                applied.append(key)
        return applied

    def to_dict(self):
        return {
            'totalRounds': self.total_rounds,
            'durationSteps': list(self.duration_steps),
            'scoringScheme': list(self.scoring_scheme),
            'playlistId': self.playlist_id,
            'playlistName': self.playlist_name,
        }


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and value == value


class Player:
    def __init__(self, id, nickname, score=0, is_host=False, handicap_seconds=0):
        self.id = id
        self.nickname = nickname
        self.score = score
        self.is_host = is_host
        self.handicap_seconds = handicap_seconds

    def to_dict(self):
        return {
            'id': self.id,
            'nickname': self.nickname,
            'score': self.score,
            'isHost': self.is_host,
            'handicapSeconds': self.handicap_seconds,
        }


class RoundWinner:
    def __init__(self, player_id, nickname, points):
        self.player_id = player_id
        self.nickname = nickname
        self.points = points

    def to_dict(self):
        return {'playerId': self.player_id, 'nickname': self.nickname, 'points': self.points}


class Round:
    def __init__(self, number: int):
        self.number = number
        self.step_index = 0
        self.winners: List[RoundWinner] = []
        # player id -> title of their latest guess, for UI feedback only
        self.answered: Dict[str, str] = {}
        self.answers_closed = False

    def has_won(self, player_id) -> bool:
        return any(w.player_id == player_id for w in self.winners)

    def to_dict(self):
        return {
            'roundNumber': self.number,
            'currentStepIndex': self.step_index,
            'answered': dict(self.answered),
            'winners': [w.to_dict() for w in self.winners],
            'answersClosed': self.answers_closed,
        }


# Room phases. Playing and Paused always carry a round, so a room can never be
# "playing" without one.

class Phase:
    name = ''
    round: Optional[Round] = None


class Lobby(Phase):
    name = 'lobby'


class Playing(Phase):
    name = 'playing'

    def __init__(self, round: Round):
        self.round = round


class Paused(Phase):
    name = 'paused'

    def __init__(self, round: Round):
        self.round = round


class Finished(Phase):
    name = 'finished'

    def __init__(self, final_scores):
        self.final_scores = final_scores


class Room:
    def __init__(self, code: str, settings: Settings):
        self.code = code
        self.state: Phase = Lobby()
        self.players: List[Player] = []
        self.settings = settings
        self.host_session: Optional[str] = None
        self.next_player_number = 1
        # session id -> nickname, kept across leave/rejoin
        self.saved_nicknames: Dict[str, str] = {}
        # session id -> (score, handicap) for players who left mid-game
        self.saved_progress: Dict[str, tuple] = {}
        # sessions present when the running game started
        self.participants: Set[str] = set()
        self.lobby_songs: List[Song] = []
        self.game_songs: List[Song] = []

    @property
    def phase(self) -> str:
        return self.state.name

    @property
    def round(self) -> Optional[Round]:
        return self.state.round

    def find_player(self, player_id) -> Optional[Player]:
        for player in self.players:
            if player.id == player_id:
                return player
        return None

    def nickname_in_use(self, nickname, exclude_id=None) -> bool:
        return any(p.nickname == nickname and p.id != exclude_id for p in self.players)

    def hosts(self) -> List[Player]:
        return [p for p in self.players if p.is_host]

    def pause(self) -> bool:
        if not isinstance(self.state, Playing):
            return False
        self.state = Paused(self.state.round)
        return True

    def resume(self) -> bool:
        if not isinstance(self.state, Paused):
            return False
        self.state = Playing(self.state.round)
        return True

    def to_dict(self):
        return {
            'code': self.code,
            'phase': self.phase,
            'players': [p.to_dict() for p in self.players],
            'settings': self.settings.to_dict(),
            'round': self.round.to_dict() if self.round else None,
        }


def generate_room_code(taken, attempts=100) -> Optional[str]:
    """Pick a 4-digit code not in ``taken``; None when every code is in use."""
    for _ in range(attempts):
        code = str(random.randint(ROOM_CODE_MIN, ROOM_CODE_MAX))
        if code not in taken:
            return code
    free = [str(n) for n in range(ROOM_CODE_MIN, ROOM_CODE_MAX + 1) if str(n) not in taken]
    return random.choice(free) if free else None
