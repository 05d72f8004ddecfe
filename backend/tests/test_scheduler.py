import pytest

from tunequiz.models import Playing, Round


@pytest.fixture()
def resolved(store):
    """Record every resolution that passes the staleness check and score it."""
    calls = []

    def _resolve(room, pending):
        calls.append((pending.player_id, pending.song_id, pending.round_number))
        store.engine.submit_answer(room, pending.player_id, pending.song_id, pending.song_title)

    store.pending.set_resolver(_resolve)
    return calls


def _playing_room(store, make_room, songs, players=2, handicaps=()):
    room, sids = make_room(players)
    for sid, seconds in zip(sids, handicaps):
        store.rooms.set_handicap(room.code, sid, seconds)
    store.rooms.save_game_participants(room.code)
    store.engine.start_game(room, songs)
    return room, sids


def test_zero_handicap_resolves_immediately_in_submission_order(store, make_room, songs, resolved):
    room, (p1, p2) = _playing_room(store, make_room, songs)
    store.pending.add_pending_answer(room.code, p2, 'song-1', 'x')
    store.pending.add_pending_answer(room.code, p1, 'song-1', 'x')
    assert [c[0] for c in resolved] == [p2, p1]
    assert [w.player_id for w in room.round.winners] == [p2, p1]
    assert store.pending.pending_count(room.code) == 0


def test_handicap_delays_resolution(store, timers, make_room, songs, resolved):
    room, (p1, p2) = _playing_room(store, make_room, songs, handicaps=(5, 0))
    store.pending.add_pending_answer(room.code, p1, 'song-1', 'x')
    assert store.pending.pending_count(room.code) == 1
    timers.advance(4)
    assert resolved == []
    timers.advance(1)
    assert resolved == [(p1, 'song-1', 1)]
    assert room.find_player(p1).score == 4


def test_rank_follows_resolution_not_submission(store, timers, make_room, songs, resolved):
    room, (slow, fast) = _playing_room(store, make_room, songs, handicaps=(3, 0))
    store.pending.add_pending_answer(room.code, slow, 'song-1', 'x')
    timers.advance(1)
    store.pending.add_pending_answer(room.code, fast, 'song-1', 'x')
    timers.advance(5)
    assert [w.player_id for w in room.round.winners] == [fast, slow]
    assert room.find_player(fast).score == 4
    assert room.find_player(slow).score == 2


def test_new_submission_supersedes_previous(store, timers, make_room, songs, resolved):
    room, (p1, p2) = _playing_room(store, make_room, songs, handicaps=(5,))
    first = store.pending.add_pending_answer(room.code, p1, 'song-2', 'wrong')
    timers.advance(2)
    second = store.pending.add_pending_answer(room.code, p1, 'song-1', 'right')
    assert first.handle.cancelled
    assert store.pending.pending_answer(room.code, p1) is second
    timers.advance(10)
    assert resolved == [(p1, 'song-1', 1)]


def test_cancel_pending_answer(store, timers, make_room, songs, resolved):
    room, (p1, p2) = _playing_room(store, make_room, songs, handicaps=(5,))
    assert store.pending.cancel_pending_answer(room.code, p1) is False
    store.pending.add_pending_answer(room.code, p1, 'song-1', 'x')
    assert store.pending.cancel_pending_answer(room.code, p1) is True
    assert store.pending.cancel_pending_answer(room.code, p1) is False
    timers.advance(10)
    assert resolved == []


def test_cancel_all_pending_answers(store, timers, make_room, songs, resolved):
    room, (p1, p2) = _playing_room(store, make_room, songs, handicaps=(5, 7))
    store.pending.add_pending_answer(room.code, p1, 'song-1', 'x')
    store.pending.add_pending_answer(room.code, p2, 'song-1', 'x')
    assert sorted(store.pending.cancel_all_pending_answers(room.code)) == sorted([p1, p2])
    assert store.pending.cancel_all_pending_answers(room.code) == []
    timers.advance(10)
    assert resolved == []


def test_round_advance_cancels_in_flight_answers(store, timers, make_room, songs, resolved):
    room, (p1, p2) = _playing_room(store, make_room, songs, handicaps=(5,))
    store.pending.add_pending_answer(room.code, p1, 'song-1', 'x')
    timers.advance(2)
    store.engine.start_round(room, 2)
    timers.advance(3)
    assert resolved == []
    assert room.find_player(p1).score == 0
    assert room.round.winners == []


def test_stale_round_is_dropped_even_without_cancel(store, timers, make_room, songs, resolved):
    room, (p1, p2) = _playing_room(store, make_room, songs, handicaps=(5,))
    store.pending.add_pending_answer(room.code, p1, 'song-1', 'x')
    # swap the round underneath the timer without going through the engine
    room.state = Playing(Round(2))
    timers.advance(5)
    assert resolved == []
    assert room.find_player(p1).score == 0


def test_restarted_game_does_not_accept_old_round_one_answer(store, timers, make_room, songs, resolved):
    room, (p1, p2) = _playing_room(store, make_room, songs, handicaps=(5,))
    store.pending.add_pending_answer(room.code, p1, 'song-1', 'x')
    # same round number, different round
    room.state = Playing(Round(1))
    timers.advance(5)
    assert resolved == []


def test_deleted_room_drops_answer(store, timers, make_room, songs, resolved):
    room, (p1, p2) = _playing_room(store, make_room, songs, handicaps=(5,))
    store.pending.add_pending_answer(room.code, p1, 'song-1', 'x')
    store.rooms.delete_room(room.code)
    timers.advance(5)
    assert resolved == []


def test_player_who_left_is_dropped(store, timers, make_room, songs, resolved):
    room, (p1, p2) = _playing_room(store, make_room, songs, handicaps=(0, 5))
    store.pending.add_pending_answer(room.code, p2, 'song-1', 'x')
    store.rooms.leave_room(p2)
    timers.advance(5)
    assert resolved == []


def test_no_round_means_nothing_scheduled(store, make_room, resolved):
    room, (p1,) = make_room(1)
    assert store.pending.add_pending_answer(room.code, p1, 'song-1', 'x') is None
    assert store.pending.add_pending_answer('0000', p1, 'song-1', 'x') is None


def test_cancel_after_resolution_changes_nothing(store, timers, make_room, songs, resolved):
    room, (p1, p2) = _playing_room(store, make_room, songs, handicaps=(5,))
    pending = store.pending.add_pending_answer(room.code, p1, 'song-1', 'x')
    timers.advance(6)
    assert resolved == [(p1, 'song-1', 1)]
    assert pending.handle.fired

    assert store.pending.cancel_pending_answer(room.code, p1) is False
    assert pending.handle.cancel() is False
    assert store.pending.cancel_all_pending_answers(room.code) == []
    assert room.find_player(p1).score == 4
    assert [w.player_id for w in room.round.winners] == [p1]
