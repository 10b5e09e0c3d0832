"""
Session-scoped key/value stores.

Each store instance is bound to a single browser session. Challenges for
different sessions never share a store, so the only race that matters is two
requests from the same session popping the same key; ``pop`` guarantees
exactly one of them receives the value.
"""

import threading
from datetime import UTC, datetime, timedelta
from typing import Protocol

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from altcha_server.models.session_entry import SessionEntry


class SessionStore(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...

    def pop(self, key: str) -> str | None: ...

    def keys(self, prefix: str = "") -> list[str]: ...


class InMemorySessionStore:
    """Process-local session store guarded by a lock."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value

    def remove(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def pop(self, key: str) -> str | None:
        with self._lock:
            return self._data.pop(key, None)

    def keys(self, prefix: str = "") -> list[str]:
        with self._lock:
            return [key for key in self._data if key.startswith(prefix)]


class SqlSessionStore:
    """Session store backed by the ``session_entries`` table."""

    def __init__(self, db: Session, session_id: str) -> None:
        self.db = db
        self.session_id = session_id

    def _query(self):
        return self.db.query(SessionEntry).filter(SessionEntry.session_id == self.session_id)

    def get(self, key: str) -> str | None:
        entry = self._query().filter(SessionEntry.key == key).first()
        return entry.value if entry else None

    def set(self, key: str, value: str) -> None:
        entry = self._query().filter(SessionEntry.key == key).first()
        if entry is not None:
            entry.value = value
            self.db.commit()
            return

        self.db.add(SessionEntry(session_id=self.session_id, key=key, value=value))
        try:
            self.db.commit()
        except IntegrityError:
            # A concurrent request inserted the same key first; overwrite it
            self.db.rollback()
            self._query().filter(SessionEntry.key == key).update(
                {"value": value, "updated_at": datetime.now(UTC).replace(tzinfo=None)},
                synchronize_session=False,
            )
            self.db.commit()

    def remove(self, key: str) -> None:
        self._query().filter(SessionEntry.key == key).delete(synchronize_session=False)
        self.db.commit()

    def pop(self, key: str) -> str | None:
        entry = self._query().filter(SessionEntry.key == key).first()
        if entry is None:
            return None

        entry_id, value = entry.id, entry.value

        # Only the request whose DELETE removes the row gets the value
        deleted = (
            self.db.query(SessionEntry)
            .filter(SessionEntry.id == entry_id)
            .delete(synchronize_session=False)
        )
        self.db.commit()
        self.db.expire_all()

        return value if deleted == 1 else None

    def keys(self, prefix: str = "") -> list[str]:
        query = self.db.query(SessionEntry.key).filter(SessionEntry.session_id == self.session_id)
        if prefix:
            query = query.filter(SessionEntry.key.startswith(prefix, autoescape=True))
        return [key for (key,) in query.all()]


def list_session_ids(db: Session) -> list[str]:
    """All session ids that currently hold at least one entry."""
    rows = db.query(SessionEntry.session_id).distinct().all()
    return [session_id for (session_id,) in rows]


def purge_stale_sessions(db: Session, older_than: timedelta) -> int:
    """Delete entries not written within ``older_than``. Returns count of deleted rows."""
    cutoff = datetime.now(UTC).replace(tzinfo=None) - older_than
    result = (
        db.query(SessionEntry)
        .filter(SessionEntry.updated_at < cutoff)
        .delete(synchronize_session=False)
    )
    db.commit()
    return result
