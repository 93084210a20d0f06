from dataclasses import dataclass
from enum import Enum

import structlog

from faucet.services.discord_service import send_error_alert
from faucet.services.transfer_client import (
    Asset,
    RpcTransferClient,
    TransferFailure,
    TransferRejectedError,
)

logger = structlog.get_logger()


class PayoutStatus(str, Enum):
    SENT = "sent"
    ALREADY_SUFFICIENT = "already_sufficient"
    FAUCET_EXHAUSTED = "faucet_exhausted"
    REQUEST_EXCEEDS_MAXIMUM = "request_exceeds_maximum"
    ALREADY_CLAIMED = "already_claimed_asset"
    BALANCE_TOO_LOW = "balance_too_low"


_REJECTION_STATUS = {
    TransferFailure.FAUCET_EXHAUSTED: PayoutStatus.FAUCET_EXHAUSTED,
    TransferFailure.REQUEST_EXCEEDS_MAXIMUM: PayoutStatus.REQUEST_EXCEEDS_MAXIMUM,
    TransferFailure.ALREADY_CLAIMED: PayoutStatus.ALREADY_CLAIMED,
    TransferFailure.BALANCE_TOO_LOW: PayoutStatus.BALANCE_TOO_LOW,
}


@dataclass(frozen=True)
class PayoutResult:
    status: PayoutStatus
    message: str
    tx_hash: str | None = None

    @property
    def sent(self) -> bool:
        return self.status is PayoutStatus.SENT


def _rejection_message(status: PayoutStatus, asset: Asset) -> str:
    symbol = asset.value.upper()
    if status is PayoutStatus.FAUCET_EXHAUSTED:
        return "Faucet is low or has gone empty. Please contact the team."
    if status is PayoutStatus.REQUEST_EXCEEDS_MAXIMUM:
        return "Token request exceeds maximum allowed"
    if status is PayoutStatus.ALREADY_CLAIMED:
        return f"You have already claimed {symbol} and are unable to claim again"
    return f"{symbol} balance too low"


async def pay_out(
    client: RpcTransferClient,
    address: str,
    asset: Asset,
    amount: float | None = None,
) -> PayoutResult:
    """
    Dispatch one transfer for a consumed claim.

    Called at most once per claim and never retried. Known contract refusals
    come back as a PayoutResult; any other TransferError propagates.
    """
    try:
        tx_hash = await client.request_token(address, asset, amount)
    except TransferRejectedError as e:
        status = _REJECTION_STATUS[e.reason]
        logger.warning("payout_rejected", asset=asset.value, reason=e.reason.value)
        if status is PayoutStatus.FAUCET_EXHAUSTED:
            logger.error("faucet_exhausted", asset=asset.value)
            await send_error_alert(
                error_type="Faucet Exhausted",
                message=str(e),
                context={"asset": asset.value},
            )
        return PayoutResult(status=status, message=_rejection_message(status, asset))

    if not tx_hash:
        logger.info("payout_declined", asset=asset.value, reason="already_sufficient")
        return PayoutResult(
            status=PayoutStatus.ALREADY_SUFFICIENT,
            message=f"You already have enough {asset.value.upper()}",
        )

    logger.info("payout_sent", asset=asset.value, tx_hash=tx_hash)
    return PayoutResult(status=PayoutStatus.SENT, message="Token sent", tx_hash=tx_hash)
