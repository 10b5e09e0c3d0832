"""Tests for ALTCHA solution verification."""

import base64
import json
from datetime import timedelta

import pytest

from altcha_server.services.challenge_service import ChallengeOptions, generate_challenge
from altcha_server.services.challenge_store import CHALLENGE_NAMESPACE
from altcha_server.services.hasher import Algorithm, key_hash
from altcha_server.services.verification_service import (
    VerificationPayload,
    check_answer,
    verify_payload,
    verify_solution,
)
from tests.test_utils import TEST_HMAC_KEY, encode_solution, solve_challenge, utcnow

FIELD_KEY = key_hash("altcha_1")


def issue(store, **overrides):
    options = ChallengeOptions(**{"algorithm": Algorithm.SHA256, "max_number": 1000, **overrides})
    return generate_challenge(store, "altcha_1", options, hmac_key=TEST_HMAC_KEY)


def verify(store, code, **kwargs):
    return verify_solution(store, code, hmac_key=TEST_HMAC_KEY, **kwargs)


def corrupt_stored(store, **changes):
    entry_key = f"{CHALLENGE_NAMESPACE}{FIELD_KEY}"
    stored = json.loads(store.session_store.get(entry_key))
    stored.update(changes)
    store.session_store.set(entry_key, json.dumps(stored))


class TestRoundTrip:
    def test_worked_example_verifies_exactly_once(self, store):
        challenge = issue(store, salt="abc123", number=4821, max_number=50_000)
        code = encode_solution(challenge.salt, 4821, took=0.42)

        assert verify(store, code) is True
        assert verify(store, code) is False

    @pytest.mark.parametrize("algorithm", list(Algorithm))
    def test_solved_challenge_verifies(self, store, algorithm):
        challenge = issue(store, algorithm=algorithm)
        number = solve_challenge(challenge.to_dict(), max_number=1000)

        assert verify(store, encode_solution(challenge.salt, number)) is True

    def test_full_widget_payload_is_accepted(self, store):
        challenge = issue(store)
        number = solve_challenge(challenge.to_dict(), max_number=1000)
        code = encode_solution(
            challenge.salt,
            number,
            algorithm=challenge.algorithm.value,
            challenge=challenge.challenge,
            signature=challenge.signature,
            took=12.5,
        )

        assert verify(store, code) is True

    def test_check_answer_uses_configured_secret(self, store, monkeypatch):
        from altcha_server.config import settings

        monkeypatch.setattr(settings, "altcha_hmac_key", TEST_HMAC_KEY)
        challenge = issue(store, number=7)

        assert check_answer(store, encode_solution(challenge.salt, 7)) is True


class TestReplayAndTamper:
    def test_replay_is_rejected(self, store):
        challenge = issue(store, number=5)
        code = encode_solution(challenge.salt, 5)

        assert verify(store, code) is True
        assert verify(store, code) is False

    def test_wrong_number_is_rejected_and_consumes_challenge(self, store):
        challenge = issue(store, number=5)

        assert verify(store, encode_solution(challenge.salt, 6)) is False
        # Retrying with the right number is not allowed
        assert verify(store, encode_solution(challenge.salt, 5)) is False

    @pytest.mark.parametrize("wrong", [0, 4, 999, 10**30, -5])
    def test_any_other_number_is_rejected(self, store, wrong):
        challenge = issue(store, number=5)
        assert verify(store, encode_solution(challenge.salt, wrong)) is False

    def test_tampered_stored_signature_is_rejected(self, store):
        challenge = issue(store, number=5)
        corrupt_stored(store, signature="0" * 64)

        assert verify(store, encode_solution(challenge.salt, 5)) is False

    def test_tampered_stored_challenge_is_rejected(self, store):
        challenge = issue(store, number=5)
        corrupt_stored(store, challenge="f" * 64)

        assert verify(store, encode_solution(challenge.salt, 5)) is False

    def test_rotated_secret_is_rejected(self, store):
        challenge = issue(store, number=5)
        code = encode_solution(challenge.salt, 5)

        assert verify_solution(store, code, hmac_key="rotated") is False

    def test_client_salt_only_locates_the_challenge(self, store):
        challenge = issue(store, number=5)
        # Different random part, same keyHash: the stored salt is what gets hashed
        forged_salt = "00" + challenge.salt

        assert verify(store, encode_solution(forged_salt, 5)) is True

    def test_unknown_key_hash_is_rejected(self, store):
        issue(store, number=5)
        assert verify(store, encode_solution("abc?keyHash=unknown", 5)) is False
        # The real challenge is untouched
        assert store.session_store.keys(CHALLENGE_NAMESPACE) != []

    @pytest.mark.parametrize(
        "stored",
        [
            "{broken",
            json.dumps(["not", "an", "object"]),
            json.dumps({"algorithm": "SHA-256", "challenge": "c", "salt": "s"}),
            json.dumps({"algorithm": "", "challenge": "c", "salt": "s", "signature": "x"}),
            json.dumps({"algorithm": "MD5", "challenge": "c", "salt": "s", "signature": "x"}),
            "[" * 2900,
        ],
    )
    def test_corrupt_store_entry_is_rejected_and_consumed(self, store, stored):
        store.put(FIELD_KEY, stored)

        assert verify(store, encode_solution(f"abc?keyHash={FIELD_KEY}", 1)) is False
        assert store.take_once(FIELD_KEY) is None


class TestExpiry:
    def test_expired_challenge_is_rejected_after_sweep(self, store):
        challenge = generate_challenge(
            store,
            "altcha_1",
            ChallengeOptions(algorithm=Algorithm.SHA256, max_number=1000, number=5),
            hmac_key=TEST_HMAC_KEY,
            now=utcnow() - timedelta(hours=2),
        )

        assert store.sweep_expired() == 1
        assert verify(store, encode_solution(challenge.salt, 5)) is False

    def test_expired_challenge_is_rejected_without_sweep(self, store):
        challenge = issue(store, number=5)

        assert verify(store, encode_solution(challenge.salt, 5), now=utcnow() + timedelta(hours=2)) is False

    def test_non_expiring_challenge_verifies(self, store):
        challenge = issue(store, number=5, expires_in=None)

        assert verify(store, encode_solution(challenge.salt, 5)) is True


class TestMalformedInput:
    @pytest.mark.parametrize(
        "code",
        [
            None,
            "",
            "   ",
            "not base64!!",
            "é",
            base64.b64encode(b"").decode(),
            base64.b64encode(b"not json").decode(),
            base64.b64encode(b"\xff\xfe").decode(),
            base64.b64encode(b"[1, 2]").decode(),
            base64.b64encode(b'"string"').decode(),
            base64.b64encode(json.dumps({"number": 5}).encode()).decode(),
            base64.b64encode(json.dumps({"salt": "abc?keyHash=x"}).encode()).decode(),
            encode_solution("", 5),
            encode_solution(123, 5),
            encode_solution("abc?keyHash=x", "5"),
            encode_solution("abc?keyHash=x", 5.0),
            encode_solution("abc?keyHash=x", True),
            encode_solution("abc?keyHash=x", None),
            encode_solution("no-params", 5),
            encode_solution("abc?expires=1", 5),
            encode_solution("abc?keyHash=", 5),
            base64.b64encode(b"[" * 2900).decode(),
            base64.b64encode(
                b'{"salt": "abc?keyHash=x", "number": ' + b"9" * 5000 + b"}"
            ).decode(),
        ],
    )
    def test_malformed_solution_is_rejected_without_touching_store(self, store, code):
        issue(store, number=5)

        assert verify(store, code) is False
        assert store.session_store.keys(CHALLENGE_NAMESPACE) == [f"{CHALLENGE_NAMESPACE}{FIELD_KEY}"]


class TestVerifyPayload:
    def test_valid_payload(self, store):
        challenge = issue(store, number=9)
        payload = VerificationPayload(
            algorithm=challenge.algorithm,
            challenge=challenge.challenge,
            number=9,
            salt=challenge.salt,
            signature=challenge.signature,
        )

        assert verify_payload(payload, TEST_HMAC_KEY) is True
        assert verify_payload(payload, "other-key") is False

    def test_mismatched_algorithm(self, store):
        challenge = issue(store, number=9)
        payload = VerificationPayload(
            algorithm=Algorithm.SHA512,
            challenge=challenge.challenge,
            number=9,
            salt=challenge.salt,
            signature=challenge.signature,
        )

        assert verify_payload(payload, TEST_HMAC_KEY) is False
