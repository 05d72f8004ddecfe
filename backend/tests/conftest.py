import itertools
import logging
import os
import sys
import threading

import pytest

# Ensure the backend root (containing the `tunequiz` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from tunequiz import create_app, socketio
from tunequiz.models import Song
from tunequiz.services.timers import TimerHandle
from tunequiz.store import GameStore

NAMESPACE = '/ws'

SONGS = [
    {'id': 'song-1', 'title': 'First Light', 'artist': 'A', 'artworkUrl': '', 'previewUrl': 'https://x/1'},
    {'id': 'song-2', 'title': 'Second Wind', 'artist': 'B', 'artworkUrl': '', 'previewUrl': 'https://x/2'},
    {'id': 'song-3', 'title': 'Third Time', 'artist': 'C', 'artworkUrl': '', 'previewUrl': 'https://x/3'},
]


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    CORS_ORIGINS = []
    PORT = 3000
    ROOM_DELETION_GRACE_SEC = 300
    TIMER_POLL_SEC = 1.0
    MAX_PLAYERS_PER_ROOM = 20
    MAX_HANDICAP_SEC = 30
    MAX_NICKNAME_LENGTH = 24
    DEFAULT_TOTAL_ROUNDS = 0
    DEFAULT_DURATION_STEPS = [1, 2, 4, 8, 16]
    DEFAULT_SCORING_SCHEME = [4, 2, 1]


class ManualTimers:
    """Timer service driven by an explicit clock instead of wall time."""

    def __init__(self):
        self.lock = threading.RLock()
        self.now = 0.0
        self._seq = itertools.count()
        self._scheduled = []

    def call_later(self, delay, callback, *args):
        handle = TimerHandle(delay, callback, args)
        self._scheduled.append((self.now + max(0.0, delay), next(self._seq), handle))
        return handle

    def advance(self, seconds):
        target = self.now + seconds
        while True:
            due = sorted(e for e in self._scheduled if e[0] <= target and e[2].active)
            if not due:
                break
            entry = due[0]
            self._scheduled.remove(entry)
            self.now = entry[0]
            with self.lock:
                entry[2].fire()
        self.now = target
        self._scheduled = [e for e in self._scheduled if e[2].active]

    def active_count(self):
        return sum(1 for e in self._scheduled if e[2].active)


@pytest.fixture()
def timers():
    return ManualTimers()


@pytest.fixture()
def store(timers):
    config = {k: getattr(TestConfig, k) for k in dir(TestConfig) if k.isupper()}
    return GameStore(timers, config=config, logger=logging.getLogger('tunequiz.tests'))


@pytest.fixture()
def songs():
    return [Song.from_dict(s) for s in SONGS]


@pytest.fixture()
def make_room(store):
    """Create a room with ``players`` members; returns (room, [sid, ...])."""
    counter = itertools.count(1)

    def _make(players=1):
        sids = []
        for _ in range(players):
            n = next(counter)
            sid = f'sid-{n}'
            store.sessions.bind(sid, f'session-{n}')
            sids.append(sid)
        room = store.rooms.create_room(sids[0], store.sessions.session_for(sids[0]))
        for sid in sids[1:]:
            store.rooms.join_room(room.code, sid, store.sessions.session_for(sid))
        return room, sids

    return _make


@pytest.fixture()
def flask_app(timers):
    application = create_app(TestConfig, timers=timers)
    with application.app_context():
        yield application


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def app_store(flask_app):
    return flask_app.extensions['tunequiz']


@pytest.fixture()
def connect(flask_app):
    """Factory for Socket.IO test clients presenting a given session id."""
    clients = []

    def _connect(session_id=None):
        auth = {'sessionId': session_id} if session_id else None
        test_client = socketio.test_client(
            flask_app,
            flask_test_client=flask_app.test_client(),
            namespace=NAMESPACE,
            auth=auth,
        )
        clients.append(test_client)
        return test_client

    yield _connect
    for test_client in clients:
        try:
            if test_client.is_connected(NAMESPACE):
                test_client.disconnect(namespace=NAMESPACE)
        except Exception:
            pass


def received(test_client, name=None):
    """Drain a test client's queue, optionally keeping only one event name."""
    packets = test_client.get_received(NAMESPACE)
    if name is None:
        return packets
    return [p['args'][0] if p['args'] else None for p in packets if p['name'] == name]
