from pydantic import BaseModel


class InfoResponse(BaseModel):
    faucet_address: str
    captcha_enabled: bool
    challenges_enabled: bool
    max_balance: float | None = None
    min_amount: float
    max_amount: float
