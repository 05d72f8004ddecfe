import logging

from tunequiz.services.games.engine import RoundEngine
from tunequiz.services.games.scheduler import PendingAnswerScheduler
from tunequiz.services.rooms import RoomRegistry
from tunequiz.sessions import SessionDirectory


class GameStore:
    """All volatile game state for one process.

    Owns the session directory, room registry, round engine and pending
    answer scheduler, plus the lock that serialises socket handlers and
    timer callbacks. The lock belongs to the timer service so that timers
    fire inside the same execution context as inbound events.
    """

    def __init__(self, timers, config=None, logger=None):
        config = config or {}
        self.logger = logger or logging.getLogger(__name__)
        self.timers = timers
        self.lock = timers.lock
        self.max_nickname_length = int(config.get('MAX_NICKNAME_LENGTH', 24))
        self.sessions = SessionDirectory()
        self.pending = PendingAnswerScheduler(timers, lambda code: self.rooms.get_room(code), logger=self.logger)
        self.rooms = RoomRegistry(
            self.sessions,
            timers,
            self.pending,
            grace_seconds=float(config.get('ROOM_DELETION_GRACE_SEC', 300)),
            max_players=int(config.get('MAX_PLAYERS_PER_ROOM', 20)),
            max_handicap=float(config.get('MAX_HANDICAP_SEC', 30)),
            default_settings={
                'total_rounds': int(config.get('DEFAULT_TOTAL_ROUNDS', 0)),
                'duration_steps': list(config.get('DEFAULT_DURATION_STEPS', [1, 2, 4, 8, 16])),
                'scoring_scheme': list(config.get('DEFAULT_SCORING_SCHEME', [4, 2, 1])),
            },
            logger=self.logger,
        )
        self.engine = RoundEngine(self.pending, logger=self.logger)
