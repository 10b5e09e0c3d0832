from pydantic import BaseModel, Field


class ChallengeResponse(BaseModel):
    algorithm: str
    challenge: str
    maxnumber: int | None = Field(None, description="Omitted unless the server exposes its bound")
    salt: str
    signature: str


class VerificationRequest(BaseModel):
    payload: str = Field(..., min_length=1, max_length=4096, description="Base64 encoded solution")


class VerificationResponse(BaseModel):
    verified: bool
