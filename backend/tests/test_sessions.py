from tunequiz.sessions import SessionDirectory


def test_bind_issues_session_when_missing():
    sessions = SessionDirectory()
    issued = sessions.bind('sid-a')
    assert issued
    assert sessions.session_for('sid-a') == issued
    assert sessions.connection_for(issued) == 'sid-a'


def test_bind_keeps_client_session_and_normalizes():
    sessions = SessionDirectory()
    assert sessions.bind('sid-a', '  abc  ') == 'abc'
    assert sessions.bind('sid-b', 'x' * 100) == 'x' * 64
    # empty or non-string values are replaced
    assert sessions.bind('sid-c', '   ') != '   '
    assert sessions.bind('sid-d', 42) != 42


def test_reconnect_moves_live_connection():
    sessions = SessionDirectory()
    sessions.bind('old', 'session-1')
    sessions.bind('new', 'session-1')
    assert sessions.connection_for('session-1') == 'new'
    assert not sessions.is_live('old')
    assert sessions.is_live('new')

    # the old connection's late disconnect must not unmap the new one
    assert sessions.unbind('old') == 'session-1'
    assert sessions.connection_for('session-1') == 'new'

    sessions.unbind('new')
    assert sessions.connection_for('session-1') is None
    assert len(sessions) == 0
