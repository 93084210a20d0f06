import re

import base58
from pydantic import BaseModel, Field, field_validator

from faucet.config import settings
from faucet.services.transfer_client import Asset

# 3-byte prefix + 20-byte public key hash
IMPLICIT_ADDRESS_BYTES = 23


def validate_address(value: str) -> str:
    """
    Validate an implicit account address (mv1/mv2/mv3 by default).

    Checks the configured textual prefix and the base58check checksum and
    payload length; does not contact the chain.
    """
    if not any(value.startswith(prefix) for prefix in settings.address_prefixes):
        raise ValueError(f"The address '{value}' is invalid")
    try:
        decoded = base58.b58decode_check(value)
    except ValueError:
        raise ValueError(f"The address '{value}' is invalid")
    if len(decoded) != IMPLICIT_ADDRESS_BYTES:
        raise ValueError(f"The address '{value}' is invalid")
    return value


class ChallengeRequest(BaseModel):
    address: str = Field(..., min_length=1, max_length=64)
    amount: float = Field(..., gt=0)
    token: Asset
    captcha_token: str | None = Field(None, max_length=4096)

    @field_validator("address")
    @classmethod
    def check_address(cls, v: str) -> str:
        return validate_address(v)

    @field_validator("amount")
    @classmethod
    def check_amount(cls, v: float) -> float:
        if v < settings.min_amount or v > settings.max_amount:
            raise ValueError(
                f"amount must be between {settings.min_amount} and {settings.max_amount}"
            )
        return v


class ChallengeResponse(BaseModel):
    status: str  # "challenge" | "disabled"
    challenge_token: str | None = None
    rounds_completed: int | None = None
    rounds_required: int | None = None
    difficulty: int | None = None
    algorithm: str = "sha256"
    message: str | None = None


class VerifyRequest(BaseModel):
    address: str = Field(..., min_length=1, max_length=64)
    token: Asset
    nonce: int | str | None = None
    solution: str | None = Field(None, min_length=1, max_length=128)

    @field_validator("address")
    @classmethod
    def check_address(cls, v: str) -> str:
        return validate_address(v)

    @field_validator("nonce")
    @classmethod
    def check_nonce(cls, v: int | str | None) -> str | None:
        if v is None:
            return None
        if isinstance(v, bool):
            raise ValueError("'nonce' must be an integer")
        if isinstance(v, int):
            return str(v)
        if not re.fullmatch(r"-?\d+", v):
            raise ValueError("'nonce' must be an integer")
        # Hashed exactly as sent so the client and server agree on the preimage
        return v


class VerifyResponse(BaseModel):
    status: str  # "challenge" | "sent"
    message: str | None = None
    tx_hash: str | None = None
    challenge_token: str | None = None
    rounds_completed: int | None = None
    rounds_required: int | None = None
    difficulty: int | None = None
