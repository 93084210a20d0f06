from typing import Literal

from pydantic import ConfigDict, field_validator, model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
    )

    # Session store
    session_backend: Literal["redis", "sql"] = "redis"
    redis_url: str = "redis://localhost:6379/0"
    database_url: str = "sqlite:///./faucet.db"

    # Request limits
    min_amount: float = 1
    max_amount: float = 6000
    max_balance: float | None = None

    # Proof of Work
    min_challenges: int = 1
    max_challenges: int = 550
    max_challenges_with_captcha: int = 66
    challenge_size: int = 2048  # bytes of randomness, hex encoded
    difficulty: int = 4  # leading zero hex digits
    challenge_ttl_seconds: int = 1800  # 30 minutes
    disable_challenges: bool = False

    # Captcha
    enable_captcha: bool = True
    captcha_secret: str | None = None
    captcha_verify_url: str = "https://hcaptcha.com/siteverify"

    # Transfer dispatch (wallet relay)
    rpc_url: str | None = None
    rpc_auth_token: str | None = None
    faucet_contract_address: str | None = None
    rpc_timeout_seconds: float = 60.0
    address_prefixes: list[str] | str = ["mv1", "mv2", "mv3"]

    # Rate Limiting
    rate_limit_challenges: str = "30/minute"
    rate_limit_verifies: str = "120/minute"
    rate_limit_info: str = "60/minute"

    # CORS
    cors_origins: list[str] | str = ["*"]

    # Logging
    log_level: str = "INFO"
    log_format: Literal["console", "json"] = "console"

    # Alerts
    discord_alerts_webhook_url: str | None = None

    # Expired session sweep (sql backend only)
    cleanup_interval_minutes: int = 10

    @field_validator("cors_origins", "address_prefixes", mode="before")
    @classmethod
    def parse_comma_separated(cls, v):
        """Parse comma-separated string or list."""
        if isinstance(v, str):
            return [item.strip() for item in v.split(",") if item.strip()]
        return v

    @model_validator(mode="after")
    def validate_ranges(self) -> "Settings":
        for name in (
            "challenge_size",
            "difficulty",
            "challenge_ttl_seconds",
            "min_challenges",
            "max_challenges",
            "max_challenges_with_captcha",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be greater than 0")

        if (
            self.max_challenges < self.min_challenges
            or self.max_challenges_with_captcha < self.min_challenges
        ):
            raise ValueError(
                "max_challenges and max_challenges_with_captcha must be "
                "greater than or equal to min_challenges"
            )

        if self.min_amount <= 0 or self.max_amount <= 0 or self.max_amount < self.min_amount:
            raise ValueError(
                "min_amount and max_amount must be greater than 0 and "
                "max_amount must be greater than or equal to min_amount"
            )

        if self.max_balance is not None and self.max_balance < 0:
            raise ValueError("max_balance cannot be negative")

        return self


settings = Settings()
