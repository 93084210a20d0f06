"""
Multi-round proof-of-work protocol for a single requester address.

NoSession -> AwaitingSolution(1) -> ... -> AwaitingSolution(n) -> Claimed

Verification and consumption are separate steps: a valid final-round solution
only grants a payout if this caller's delete is the one that removed the
session.
"""

from dataclasses import dataclass, replace
from enum import Enum

import structlog

from faucet.config import settings
from faucet.services.pow_service import create_challenge, verify_solution
from faucet.services.session_store import (
    ChallengeSession,
    SessionStore,
    SessionStoreError,
    get_challenge_key,
)

logger = structlog.get_logger()


class SubmissionOutcome(str, Enum):
    NEXT_ROUND = "next_round"
    CLAIMED = "claimed"
    NO_CHALLENGE = "challenge_not_found"
    INCORRECT_SOLUTION = "incorrect_solution"
    ALREADY_CLAIMED = "already_claimed_challenge"


@dataclass(frozen=True)
class SubmissionResult:
    outcome: SubmissionOutcome
    # NEXT_ROUND: the round to solve next. CLAIMED: the consumed session.
    session: ChallengeSession | None = None

    @property
    def payout_authorized(self) -> bool:
        return self.outcome is SubmissionOutcome.CLAIMED


def request_challenge(
    store: SessionStore, address: str, amount: float, captcha_used: bool
) -> ChallengeSession:
    """
    Return the current round for `address`, starting a session if needed.

    An existing session for the same amount is returned untouched (progress and
    TTL are kept). A different amount replaces it with a fresh session.
    """
    key = get_challenge_key(address)
    current = store.load(key)

    if current is not None and current.requested_amount == amount:
        logger.info(
            "challenge_reused",
            rounds_completed=current.rounds_completed,
            rounds_required=current.rounds_required,
        )
        return current

    challenge = create_challenge(amount, captcha_used)
    session = ChallengeSession(
        requested_amount=amount,
        challenge_token=challenge.challenge_token,
        difficulty=challenge.difficulty,
        rounds_required=challenge.rounds_required,
        rounds_completed=1,
        captcha_used=captcha_used,
    )
    store.save(key, session, settings.challenge_ttl_seconds)

    logger.info(
        "challenge_created",
        replaced=current is not None,
        amount=amount,
        captcha_used=captcha_used,
        rounds_required=session.rounds_required,
        difficulty=session.difficulty,
    )
    return session


def submit_solution(
    store: SessionStore, address: str, nonce: int | str, solution: str
) -> SubmissionResult:
    """Check one round's solution and advance, or consume, the session."""
    key = get_challenge_key(address)
    session = store.load(key)

    if session is None:
        return SubmissionResult(SubmissionOutcome.NO_CHALLENGE)

    if not verify_solution(session.challenge_token, nonce, session.difficulty, solution):
        logger.info("solution_rejected", rounds_completed=session.rounds_completed)
        return SubmissionResult(SubmissionOutcome.INCORRECT_SOLUTION)

    if not session.is_final_round:
        challenge = create_challenge(session.requested_amount, session.captcha_used)
        next_round = replace(
            session,
            challenge_token=challenge.challenge_token,
            difficulty=challenge.difficulty,
            rounds_completed=session.rounds_completed + 1,
        )
        store.save(key, next_round, settings.challenge_ttl_seconds)

        logger.info(
            "round_advanced",
            rounds_completed=next_round.rounds_completed,
            rounds_required=next_round.rounds_required,
        )
        return SubmissionResult(SubmissionOutcome.NEXT_ROUND, next_round)

    # The session must be gone before anything is paid out. If the delete
    # cannot be confirmed the claim is not granted.
    try:
        removed = store.claim(key)
    except SessionStoreError:
        logger.error("claim_not_confirmed", exc_info=True)
        raise

    if not removed:
        logger.warning("claim_rejected", reason="already_claimed")
        return SubmissionResult(SubmissionOutcome.ALREADY_CLAIMED)

    logger.info(
        "challenge_claimed",
        amount=session.requested_amount,
        rounds_required=session.rounds_required,
    )
    return SubmissionResult(SubmissionOutcome.CLAIMED, session)
