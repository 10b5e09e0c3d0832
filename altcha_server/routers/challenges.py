import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request

from altcha_server.config import settings
from altcha_server.middleware.rate_limit import limiter
from altcha_server.schemas.challenge import ChallengeResponse
from altcha_server.services.challenge_service import ConfigError, CryptoError, generate_challenge
from altcha_server.services.challenge_store import ChallengeStore
from altcha_server.sessions import get_challenge_store

router = APIRouter()
logger = structlog.get_logger()


@router.get(
    "/altcha/challenge",
    response_model=ChallengeResponse,
    response_model_exclude_none=True,
)
@limiter.limit(settings.rate_limit_challenges)
async def create_challenge(
    request: Request,
    field_id: str = Query("altcha_1", alias="id", min_length=1, max_length=255),
    store: ChallengeStore = Depends(get_challenge_store),
):
    """
    Issue a proof-of-work challenge for a form field.

    Requesting a new challenge for the same field replaces the previous one.
    """
    field_id = field_id.strip()
    if not field_id:
        raise HTTPException(status_code=422, detail="Field id is required")

    try:
        challenge = generate_challenge(store, field_id)
    except ConfigError as e:
        logger.error("challenge_config_error", error=str(e))
        raise HTTPException(status_code=500, detail="Challenge generation misconfigured")
    except CryptoError as e:
        logger.error("challenge_crypto_error", error=str(e))
        raise HTTPException(status_code=503, detail="Challenge generation unavailable")

    return ChallengeResponse(
        **challenge.to_dict(include_max_number=not settings.altcha_strip_max_number)
    )
