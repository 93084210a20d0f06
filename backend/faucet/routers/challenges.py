import structlog
from fastapi import APIRouter, Depends, HTTPException, Request

from faucet.config import settings
from faucet.dependencies import get_captcha_verifier, get_session_store, get_transfer_client
from faucet.middleware.rate_limit import limiter
from faucet.schemas.challenge import (
    ChallengeRequest,
    ChallengeResponse,
    VerifyRequest,
    VerifyResponse,
)
from faucet.services.captcha_service import CaptchaUnavailableError, CaptchaVerifier
from faucet.services.challenge_service import (
    SubmissionOutcome,
    request_challenge,
    submit_solution,
)
from faucet.services.payout_service import PayoutStatus, pay_out
from faucet.services.session_store import SessionStore
from faucet.services.transfer_client import Asset, RpcTransferClient

router = APIRouter()
logger = structlog.get_logger()

_REJECTIONS = {
    SubmissionOutcome.NO_CHALLENGE: (400, "No challenge found"),
    SubmissionOutcome.INCORRECT_SOLUTION: (400, "Incorrect solution"),
    SubmissionOutcome.ALREADY_CLAIMED: (403, "PoW challenge not found"),
}

_PAYOUT_STATUS_CODES = {
    PayoutStatus.ALREADY_SUFFICIENT: 403,
    PayoutStatus.FAUCET_EXHAUSTED: 503,
    PayoutStatus.REQUEST_EXCEEDS_MAXIMUM: 400,
    PayoutStatus.ALREADY_CLAIMED: 409,
    PayoutStatus.BALANCE_TOO_LOW: 503,
}


def reject(status_code: int, code: str, message: str) -> HTTPException:
    return HTTPException(status_code=status_code, detail={"code": code, "message": message})


async def _pay_out_and_respond(
    client: RpcTransferClient, address: str, asset: Asset, amount: float | None
) -> VerifyResponse:
    result = await pay_out(client, address, asset, amount)
    if not result.sent:
        raise reject(_PAYOUT_STATUS_CODES[result.status], result.status.value, result.message)
    return VerifyResponse(status="sent", message=result.message, tx_hash=result.tx_hash)


@router.post("/challenge", response_model=ChallengeResponse)
@limiter.limit(settings.rate_limit_challenges)
async def get_challenge(
    request: Request,
    challenge_data: ChallengeRequest,
    store: SessionStore = Depends(get_session_store),
    captcha: CaptchaVerifier | None = Depends(get_captcha_verifier),
):
    """
    Return the current proof-of-work round for an address.

    Starts a new session when none exists or the requested amount changed.
    A valid captcha token lowers the number of rounds for a new session.
    """
    if settings.disable_challenges:
        return ChallengeResponse(
            status="disabled",
            message="Challenges are disabled. Use the /verify endpoint.",
        )

    captcha_used = False
    if challenge_data.captcha_token and captcha is not None:
        try:
            valid = await captcha.verify(challenge_data.captcha_token)
        except CaptchaUnavailableError:
            raise reject(502, "captcha_unavailable", "Captcha verification is unavailable")
        if not valid:
            raise reject(400, "invalid_captcha", "Invalid captcha")
        captcha_used = True

    session = request_challenge(
        store,
        address=challenge_data.address,
        amount=challenge_data.amount,
        captcha_used=captcha_used,
    )

    return ChallengeResponse(
        status="challenge",
        challenge_token=session.challenge_token,
        rounds_completed=session.rounds_completed,
        rounds_required=session.rounds_required,
        difficulty=session.difficulty,
    )


@router.post("/verify", response_model=VerifyResponse)
@limiter.limit(settings.rate_limit_verifies)
async def verify(
    request: Request,
    verify_data: VerifyRequest,
    store: SessionStore = Depends(get_session_store),
    client: RpcTransferClient = Depends(get_transfer_client),
):
    """
    Submit a solution for the current round.

    Returns the next round, or sends the asset once the final round is solved
    and the session has been consumed.
    """
    if settings.disable_challenges:
        return await _pay_out_and_respond(client, verify_data.address, verify_data.token, None)

    if verify_data.nonce is None or verify_data.solution is None:
        raise reject(400, "missing_solution", "'solution' and 'nonce' fields are required")

    result = submit_solution(
        store,
        address=verify_data.address,
        nonce=verify_data.nonce,
        solution=verify_data.solution,
    )

    if result.outcome in _REJECTIONS:
        status_code, message = _REJECTIONS[result.outcome]
        raise reject(status_code, result.outcome.value, message)

    if result.outcome is SubmissionOutcome.NEXT_ROUND:
        session = result.session
        return VerifyResponse(
            status="challenge",
            challenge_token=session.challenge_token,
            rounds_completed=session.rounds_completed,
            rounds_required=session.rounds_required,
            difficulty=session.difficulty,
        )

    return await _pay_out_and_respond(
        client, verify_data.address, verify_data.token, result.session.requested_amount
    )
