import hashlib
import hmac
from enum import Enum


class Algorithm(str, Enum):
    """Hash functions a challenge can be built with (ALTCHA wire names)."""

    SHA1 = "SHA-1"
    SHA256 = "SHA-256"
    SHA512 = "SHA-512"

    @property
    def hashlib_name(self) -> str:
        return self.value.replace("-", "").lower()

    @classmethod
    def parse(cls, value: "str | Algorithm") -> "Algorithm":
        """
        Parse an algorithm name.

        Accepts the wire name ("SHA-256"), the enum member name ("SHA256")
        and lower-case variants. Raises ValueError for anything else.
        """
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            raise ValueError(f"Unsupported algorithm: {value!r}")

        normalized = value.strip().upper().replace("-", "").replace("_", "")
        for algorithm in cls:
            if algorithm.name == normalized:
                return algorithm
        raise ValueError(f"Unsupported algorithm: {value!r}")


def hash_hex(algorithm: Algorithm, data: str) -> str:
    """Hex digest of a UTF-8 string."""
    return hashlib.new(algorithm.hashlib_name, data.encode()).hexdigest()


def hmac_hex(algorithm: Algorithm, key: str, data: str) -> str:
    """Hex HMAC of a UTF-8 string keyed with the server secret."""
    return hmac.new(key.encode(), data.encode(), algorithm.hashlib_name).hexdigest()


def solution_hash(algorithm: Algorithm, salt: str, number: int) -> str:
    """The target hash a client must reproduce: hash(salt || decimal number)."""
    return hash_hex(algorithm, f"{salt}{number}")


def key_hash(field_id: str) -> str:
    """Stable lookup key for a form field's outstanding challenge."""
    return hashlib.sha256(field_id.encode()).hexdigest()


def digests_match(expected: str, actual: str) -> bool:
    """Constant-time comparison of two hex digests."""
    return hmac.compare_digest(expected.encode(), actual.encode())
