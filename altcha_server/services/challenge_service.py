import json
import secrets
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from urllib.parse import urlencode

import structlog

from altcha_server.config import Settings, settings
from altcha_server.services.challenge_store import ChallengeStore
from altcha_server.services.hasher import Algorithm, hmac_hex, key_hash, solution_hash

DEFAULT_MAX_NUMBER = 50_000
DEFAULT_SALT_LENGTH = 16
DEFAULT_EXPIRES_IN = timedelta(hours=1)

logger = structlog.get_logger()


class ConfigError(ValueError):
    pass


class CryptoError(RuntimeError):
    pass


@dataclass(frozen=True, slots=True)
class ChallengeOptions:
    algorithm: Algorithm = Algorithm.SHA512
    max_number: int = DEFAULT_MAX_NUMBER
    salt_length: int = DEFAULT_SALT_LENGTH
    # None issues a challenge that never expires
    expires_in: timedelta | None = DEFAULT_EXPIRES_IN
    # Fixed salt prefix / secret number; random when omitted
    salt: str | None = None
    number: int | None = None

    def validate(self) -> None:
        if self.max_number <= 0:
            raise ConfigError("max_number must be greater than 0")
        if self.salt_length <= 0:
            raise ConfigError("salt_length must be greater than 0")
        if self.expires_in is not None and self.expires_in <= timedelta(0):
            raise ConfigError("expires_in must be a positive duration")
        if self.salt is not None and (not self.salt or "?" in self.salt):
            raise ConfigError("salt must be non-empty and must not contain '?'")
        if self.number is not None and not 0 <= self.number <= self.max_number:
            raise ConfigError(f"number must be between 0 and {self.max_number}")

    @staticmethod
    def from_settings(settings: Settings) -> "ChallengeOptions":
        try:
            algorithm = Algorithm.parse(settings.altcha_algorithm)
        except ValueError:
            logger.warning(
                "unknown_algorithm_configured",
                configured=settings.altcha_algorithm,
                fallback=Algorithm.SHA512.value,
            )
            algorithm = Algorithm.SHA512

        return ChallengeOptions(
            algorithm=algorithm,
            max_number=settings.altcha_max_number,
            salt_length=settings.altcha_salt_length,
            expires_in=settings.altcha_expires_in,
        )


@dataclass(frozen=True, slots=True)
class Challenge:
    algorithm: Algorithm
    challenge: str
    max_number: int
    salt: str
    signature: str

    def to_dict(self, include_max_number: bool = True) -> dict:
        data = {
            "algorithm": self.algorithm.value,
            "challenge": self.challenge,
            "maxnumber": self.max_number,
            "salt": self.salt,
            "signature": self.signature,
        }
        if not include_max_number:
            del data["maxnumber"]
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


def _random_salt(length: int) -> str:
    try:
        return secrets.token_hex(length)
    except (OSError, NotImplementedError) as e:
        raise CryptoError(f"Random source unavailable: {e}") from e


def _random_number(max_number: int) -> int:
    try:
        return secrets.randbelow(max_number + 1)
    except (OSError, NotImplementedError) as e:
        raise CryptoError(f"Random source unavailable: {e}") from e


def create_challenge(
    options: ChallengeOptions,
    hmac_key: str,
    params: dict[str, str] | None = None,
    now: datetime | None = None,
) -> Challenge:
    """
    Build a signed challenge without storing it.

    ``params`` are embedded in the salt's query-string block, followed by
    ``expires`` when the options carry an expiry.
    """
    options.validate()
    if not hmac_key:
        raise ConfigError("HMAC key must not be empty")

    salt_params = dict(params or {})
    if options.expires_in is not None:
        expires_at = (now or datetime.now(UTC)) + options.expires_in
        salt_params["expires"] = str(int(expires_at.timestamp()))

    salt = options.salt if options.salt is not None else _random_salt(options.salt_length)
    if salt_params:
        salt = f"{salt}?{urlencode(salt_params)}"

    number = options.number if options.number is not None else _random_number(options.max_number)

    try:
        challenge = solution_hash(options.algorithm, salt, number)
        signature = hmac_hex(options.algorithm, hmac_key, challenge)
    except ValueError as e:
        # hashlib refuses digests disabled by the platform (e.g. SHA-1 under FIPS)
        raise CryptoError(f"Hash primitive failed for {options.algorithm.value}: {e}") from e

    return Challenge(
        algorithm=options.algorithm,
        challenge=challenge,
        max_number=options.max_number,
        salt=salt,
        signature=signature,
    )


def generate_challenge(
    store: ChallengeStore,
    field_id: str,
    options: ChallengeOptions | None = None,
    hmac_key: str | None = None,
    now: datetime | None = None,
) -> Challenge:
    """Issue a challenge for a form field and remember it in the session."""
    if not field_id:
        raise ConfigError("field_id must not be empty")

    options = options or ChallengeOptions.from_settings(settings)
    hmac_key = settings.altcha_hmac_key if hmac_key is None else hmac_key

    field_key = key_hash(field_id)
    challenge = create_challenge(options, hmac_key, params={"keyHash": field_key}, now=now)
    store.put(field_key, challenge.to_json())

    logger.info(
        "challenge_created",
        key_hash=field_key,
        algorithm=challenge.algorithm.value,
        max_number=challenge.max_number,
    )

    return challenge
