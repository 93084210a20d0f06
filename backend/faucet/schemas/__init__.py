from faucet.schemas.challenge import (
    ChallengeRequest,
    ChallengeResponse,
    VerifyRequest,
    VerifyResponse,
)
from faucet.schemas.info import InfoResponse

__all__ = [
    "ChallengeRequest",
    "ChallengeResponse",
    "InfoResponse",
    "VerifyRequest",
    "VerifyResponse",
]
