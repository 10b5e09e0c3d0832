"""Browser session handling for the challenge store."""

import re
import secrets

from fastapi import Depends, Request, Response
from sqlalchemy.orm import Session

from altcha_server.config import settings
from altcha_server.database import get_db
from altcha_server.services.challenge_store import ChallengeStore
from altcha_server.services.session_store import SqlSessionStore

SESSION_ID_PATTERN = re.compile(r"^[a-f0-9]{64}$")


def generate_session_id() -> str:
    """Generate a 64-character session ID."""
    return secrets.token_hex(32)


def resolve_session_id(request: Request, response: Response) -> str:
    """Return the caller's session ID, issuing a cookie for new sessions."""
    session_id = request.cookies.get(settings.session_cookie_name, "")
    if SESSION_ID_PATTERN.match(session_id):
        return session_id

    session_id = generate_session_id()
    response.set_cookie(
        key=settings.session_cookie_name,
        value=session_id,
        max_age=settings.session_ttl_hours * 3600,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite="lax",
    )
    return session_id


def get_challenge_store(
    session_id: str = Depends(resolve_session_id),
    db: Session = Depends(get_db),
) -> ChallengeStore:
    """Dependency: the session's challenge store, swept of expired entries."""
    store = ChallengeStore(SqlSessionStore(db, session_id))
    store.sweep_expired()
    return store
