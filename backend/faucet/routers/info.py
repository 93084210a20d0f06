from fastapi import APIRouter, Depends, Request

from faucet.config import settings
from faucet.dependencies import get_transfer_client
from faucet.middleware.rate_limit import limiter
from faucet.schemas.info import InfoResponse
from faucet.services.transfer_client import RpcTransferClient

router = APIRouter()


@router.get("/info", response_model=InfoResponse)
@limiter.limit(settings.rate_limit_info)
async def get_info(
    request: Request,
    client: RpcTransferClient = Depends(get_transfer_client),
):
    """Public faucet parameters for the frontend."""
    return InfoResponse(
        faucet_address=await client.faucet_address(),
        captcha_enabled=settings.enable_captcha,
        challenges_enabled=not settings.disable_challenges,
        max_balance=settings.max_balance,
        min_amount=settings.min_amount,
        max_amount=settings.max_amount,
    )
