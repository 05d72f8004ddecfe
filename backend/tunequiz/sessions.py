import uuid
from typing import Dict, Optional

SESSION_ID_MAX_LENGTH = 64


def normalize_session_id(value) -> Optional[str]:
    if not isinstance(value, str):
        return None
    value = value.strip()
    if not value:
        return None
    return value[:SESSION_ID_MAX_LENGTH]


class SessionDirectory:
    """Two-way map between durable session ids and live connection ids.

    A session has at most one live connection; binding a newer connection
    replaces the older one for lookups by session.
    """

    def __init__(self):
        self._session_by_connection: Dict[str, str] = {}
        self._connection_by_session: Dict[str, str] = {}

    def bind(self, connection_id: str, session_id=None) -> str:
        session_id = normalize_session_id(session_id) or uuid.uuid4().hex
        self._session_by_connection[connection_id] = session_id
        self._connection_by_session[session_id] = connection_id
        return session_id

    def unbind(self, connection_id: str) -> Optional[str]:
        session_id = self._session_by_connection.pop(connection_id, None)
        if session_id and self._connection_by_session.get(session_id) == connection_id:
            del self._connection_by_session[session_id]
        return session_id

    def session_for(self, connection_id: str) -> Optional[str]:
        return self._session_by_connection.get(connection_id)

    def connection_for(self, session_id: str) -> Optional[str]:
        return self._connection_by_session.get(session_id)

    def is_live(self, connection_id: str) -> bool:
        session_id = self._session_by_connection.get(connection_id)
        return session_id is not None and self._connection_by_session.get(session_id) == connection_id

    def __len__(self):
        return len(self._session_by_connection)
