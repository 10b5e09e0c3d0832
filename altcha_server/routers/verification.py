from fastapi import APIRouter, Depends, HTTPException, Request

from altcha_server.config import settings
from altcha_server.middleware.rate_limit import limiter
from altcha_server.schemas.challenge import VerificationRequest, VerificationResponse
from altcha_server.services.challenge_store import ChallengeStore
from altcha_server.services.verification_service import check_answer
from altcha_server.sessions import get_challenge_store

router = APIRouter()


@router.post("/altcha/verify", response_model=VerificationResponse)
@limiter.limit(settings.rate_limit_verifications)
async def verify_answer(
    request: Request,
    verification: VerificationRequest,
    store: ChallengeStore = Depends(get_challenge_store),
):
    """
    Check a solved challenge.

    Each challenge can be checked once; the reason for a failure is never
    returned to the client.
    """
    if not check_answer(store, verification.payload):
        raise HTTPException(status_code=400, detail="Verification failed")

    return VerificationResponse(verified=True)
