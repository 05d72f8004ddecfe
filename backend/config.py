import os


def _int_list(name, default):
    raw = os.environ.get(name, default)
    return [int(part) for part in raw.split(',') if part.strip()]


class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'you-will-never-guess'
    CORS_ORIGINS = [
        origin.strip()
        for origin in os.environ.get(
            'CORS_ORIGINS',
            'http://localhost:5173,http://127.0.0.1:5173,http://localhost:3000,http://127.0.0.1:3000',
        ).split(',')
        if origin.strip()
    ]
    PORT = int(os.environ.get('PORT', '3000'))
    # Emptied rooms are kept this long so a dropped host can come back (seconds)
    ROOM_DELETION_GRACE_SEC = float(os.environ.get('ROOM_DELETION_GRACE_SEC', '300'))
    # Background timers wake this often to notice cancellation (seconds)
    TIMER_POLL_SEC = float(os.environ.get('TIMER_POLL_SEC', '1'))
    MAX_PLAYERS_PER_ROOM = int(os.environ.get('MAX_PLAYERS_PER_ROOM', '20'))
    MAX_HANDICAP_SEC = float(os.environ.get('MAX_HANDICAP_SEC', '30'))
    MAX_NICKNAME_LENGTH = int(os.environ.get('MAX_NICKNAME_LENGTH', '24'))
    # Defaults for a freshly created room; 0 rounds means the host ends the game
    DEFAULT_TOTAL_ROUNDS = int(os.environ.get('DEFAULT_TOTAL_ROUNDS', '0'))
    DEFAULT_DURATION_STEPS = _int_list('DEFAULT_DURATION_STEPS', '1,2,4,8,16')
    DEFAULT_SCORING_SCHEME = _int_list('DEFAULT_SCORING_SCHEME', '4,2,1')
