import hashlib
import math
import secrets
from dataclasses import dataclass

from faucet.config import settings


@dataclass(frozen=True)
class Challenge:
    challenge_token: str
    rounds_required: int
    difficulty: int


def determine_rounds_required(amount: float, captcha_used: bool) -> int:
    """
    Number of rounds a requester must solve for `amount`.

    Linear in the requested amount between min_amount and max_amount, scaled
    into [min_challenges, max_rounds] and rounded up. A solved captcha lowers
    the ceiling to max_challenges_with_captcha.
    """
    max_rounds = (
        settings.max_challenges_with_captcha if captcha_used else settings.max_challenges
    )

    if settings.min_amount == settings.max_amount:
        return max_rounds

    proportion = (amount - settings.min_amount) / (settings.max_amount - settings.min_amount)
    return math.ceil(
        proportion * (max_rounds - settings.min_challenges) + settings.min_challenges
    )


def generate_challenge_token(size: int | None = None) -> str:
    """Random hex token of `size` bytes (2 * size characters)."""
    return secrets.token_hex(size if size is not None else settings.challenge_size)


def create_challenge(amount: float, captcha_used: bool) -> Challenge:
    """Generate the next proof-of-work challenge. Does not persist anything."""
    return Challenge(
        challenge_token=generate_challenge_token(),
        rounds_required=determine_rounds_required(amount, captcha_used),
        difficulty=settings.difficulty,
    )


def compute_solution(challenge_token: str, nonce: int | str) -> str:
    """SHA-256 hex digest of "<challenge_token>:<nonce>"."""
    return hashlib.sha256(f"{challenge_token}:{nonce}".encode()).hexdigest()


def verify_solution(
    challenge_token: str, nonce: int | str, difficulty: int, solution: str
) -> bool:
    """
    Check a submitted (nonce, solution) pair against a challenge.

    The solution must equal the recomputed hash and start with `difficulty`
    zero hex digits. A wrong solution is a normal False, never an exception.
    """
    digest = compute_solution(challenge_token, nonce)
    return digest == solution and digest.startswith("0" * difficulty)


def solve_challenge(challenge_token: str, difficulty: int, start: int = 0) -> tuple[int, str]:
    """Brute-force the first nonce >= start satisfying the challenge."""
    prefix = "0" * difficulty
    nonce = start
    while True:
        digest = compute_solution(challenge_token, nonce)
        if digest.startswith(prefix):
            return nonce, digest
        nonce += 1
