import json
from datetime import UTC, datetime
from urllib.parse import parse_qsl

import structlog

from altcha_server.services.session_store import SessionStore

CHALLENGE_NAMESPACE = "altcha_challenge."

logger = structlog.get_logger()


def split_salt(salt: str) -> tuple[str, dict[str, str]] | None:
    """
    Split a salt into its random part and its embedded parameters.

    "abc?keyHash=h&expires=1" -> ("abc", {"keyHash": "h", "expires": "1"}).
    Returns None when the salt carries no parameter block.
    """
    if "?" not in salt:
        return None
    base, query = salt.split("?", 1)
    return base, dict(parse_qsl(query, keep_blank_values=True))


def salt_expires_at(salt: str) -> int | None:
    """Unix expiry embedded in a salt, or None for a never-expiring challenge."""
    parts = split_salt(salt)
    if parts is None:
        return None
    value = parts[1].get("expires", "")
    try:
        return int(value)
    except ValueError:
        return None


class ChallengeStore:
    """Outstanding challenges for one session, keyed by field key hash."""

    def __init__(self, session_store: SessionStore) -> None:
        self.session_store = session_store

    @staticmethod
    def _entry_key(key: str) -> str:
        return f"{CHALLENGE_NAMESPACE}{key}"

    def put(self, key: str, serialized: str) -> None:
        self.session_store.set(self._entry_key(key), serialized)

    def take_once(self, key: str) -> str | None:
        """Remove and return the challenge stored under ``key``, if any."""
        return self.session_store.pop(self._entry_key(key))

    def sweep_expired(self, now: datetime | None = None) -> int:
        """
        Delete expired and structurally invalid challenges.

        Challenges without a parseable ``expires`` parameter never expire.
        Returns count of deleted entries.
        """
        now_ts = int((now or datetime.now(UTC)).timestamp())
        removed = 0

        for entry_key in self.session_store.keys(CHALLENGE_NAMESPACE):
            value = self.session_store.get(entry_key)
            if value is None:
                continue

            try:
                decoded = json.loads(value)
            except (ValueError, RecursionError):
                decoded = None

            salt = decoded.get("salt") if isinstance(decoded, dict) else None
            if not isinstance(salt, str) or not salt:
                self.session_store.remove(entry_key)
                removed += 1
                continue

            expires = salt_expires_at(salt)
            if expires is not None and expires < now_ts:
                self.session_store.remove(entry_key)
                removed += 1

        if removed:
            logger.info("challenges_swept", removed=removed)
        return removed
