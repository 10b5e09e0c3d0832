"""
ALTCHA solution verification.

A solution is a base64-encoded JSON object carrying the challenge ``salt`` and
the ``number`` found by the client. The salt is only used to find the
``keyHash`` of the outstanding challenge; algorithm, salt, target hash and
signature are always taken from the stored record.

The stored challenge is consumed before any cryptographic check, so every
issued challenge gets exactly one attempt.
"""

import base64
import binascii
import json
from dataclasses import dataclass
from datetime import UTC, datetime

import structlog

from altcha_server.config import settings
from altcha_server.services.challenge_store import ChallengeStore, salt_expires_at, split_salt
from altcha_server.services.hasher import Algorithm, digests_match, hmac_hex, solution_hash

logger = structlog.get_logger()


@dataclass(frozen=True, slots=True)
class VerificationPayload:
    algorithm: Algorithm
    challenge: str
    number: int
    salt: str
    signature: str


def _reject(reason: str, **context) -> bool:
    logger.debug("challenge_rejected", reason=reason, **context)
    return False


def _decode_solution(code: str) -> dict | None:
    try:
        raw = base64.b64decode(code.strip(), validate=True)
    except (binascii.Error, ValueError):
        return None
    if not raw:
        return None

    try:
        decoded = json.loads(raw)
    except (ValueError, RecursionError):
        # ValueError covers bad UTF-8 and integers past the digit limit
        return None
    return decoded if isinstance(decoded, dict) else None


def _load_stored(value: str) -> dict | None:
    try:
        stored = json.loads(value)
    except (ValueError, RecursionError):
        return None
    if not isinstance(stored, dict):
        return None
    for field in ("algorithm", "challenge", "salt", "signature"):
        if not isinstance(stored.get(field), str) or not stored[field]:
            return None
    return stored


def verify_payload(payload: VerificationPayload, hmac_key: str, now: datetime | None = None) -> bool:
    """Check a reconstructed payload: expiry, target hash, then signature."""
    expires = salt_expires_at(payload.salt)
    now_ts = int((now or datetime.now(UTC)).timestamp())
    if expires is not None and expires < now_ts:
        return _reject("expired")

    try:
        expected_challenge = solution_hash(payload.algorithm, payload.salt, payload.number)
        expected_signature = hmac_hex(payload.algorithm, hmac_key, payload.challenge)
    except ValueError:
        return _reject("hash_unavailable", algorithm=payload.algorithm.value)

    hash_ok = digests_match(expected_challenge, payload.challenge)
    signature_ok = digests_match(expected_signature, payload.signature)

    if not hash_ok:
        return _reject("challenge_mismatch")
    if not signature_ok:
        return _reject("signature_mismatch")
    return True


def verify_solution(
    store: ChallengeStore,
    code: str | None,
    hmac_key: str | None = None,
    now: datetime | None = None,
) -> bool:
    """
    Verify a client solution against the session's outstanding challenge.

    Returns True only for a correct, signed, unexpired, first-time solution.
    Never raises for bad input.
    """
    if not code or not code.strip():
        return _reject("empty")

    solution = _decode_solution(code)
    if solution is None:
        return _reject("malformed_payload")

    salt = solution.get("salt")
    number = solution.get("number")
    if not isinstance(salt, str) or not salt:
        return _reject("missing_salt")
    if isinstance(number, bool) or not isinstance(number, int):
        return _reject("missing_number")

    parts = split_salt(salt)
    if parts is None:
        return _reject("missing_salt_params")

    field_key = parts[1].get("keyHash")
    if not field_key:
        return _reject("missing_key_hash")

    # Consumed here whatever the outcome below
    stored_value = store.take_once(field_key)
    if stored_value is None:
        return _reject("unknown_challenge", key_hash=field_key)

    stored = _load_stored(stored_value)
    if stored is None:
        return _reject("corrupt_challenge", key_hash=field_key)

    try:
        algorithm = Algorithm.parse(stored["algorithm"])
    except ValueError:
        return _reject("unsupported_algorithm", key_hash=field_key)

    payload = VerificationPayload(
        algorithm=algorithm,
        challenge=stored["challenge"],
        number=number,
        salt=stored["salt"],
        signature=stored["signature"],
    )

    hmac_key = settings.altcha_hmac_key if hmac_key is None else hmac_key
    if not verify_payload(payload, hmac_key, now=now):
        return False

    logger.info("challenge_verified", key_hash=field_key)
    return True


def check_answer(store: ChallengeStore, code: str | None) -> bool:
    """Form-validation entry point: verify with the configured server secret."""
    return verify_solution(store, code)
