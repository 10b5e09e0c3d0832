from altcha_server.schemas.challenge import (
    ChallengeResponse,
    VerificationRequest,
    VerificationResponse,
)

__all__ = [
    "ChallengeResponse",
    "VerificationRequest",
    "VerificationResponse",
]
