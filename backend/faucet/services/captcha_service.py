import httpx
import structlog

from faucet.config import Settings

logger = structlog.get_logger()


class CaptchaConfigError(RuntimeError):
    """Captcha is enabled but no secret is configured."""


class CaptchaUnavailableError(RuntimeError):
    """The captcha provider could not be reached."""


class CaptchaVerifier:
    """Checks a client captcha token against an hCaptcha-style siteverify endpoint."""

    def __init__(
        self,
        secret: str,
        verify_url: str,
        *,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.verify_url = verify_url
        self._secret = secret
        self._http = http_client or httpx.AsyncClient(timeout=10.0)

    @classmethod
    def from_settings(cls, config: Settings) -> "CaptchaVerifier | None":
        """None when captcha is disabled; raises if enabled without a secret."""
        if not config.enable_captcha:
            return None
        if not config.captcha_secret:
            raise CaptchaConfigError("ENABLE_CAPTCHA is set but no CAPTCHA_SECRET defined.")
        return cls(config.captcha_secret, config.captcha_verify_url)

    async def verify(self, token: str) -> bool:
        try:
            response = await self._http.post(
                self.verify_url,
                data={"secret": self._secret, "response": token},
            )
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("captcha_verify_failed", error=str(e))
            raise CaptchaUnavailableError("Captcha verification is unavailable") from e

        success = bool(data.get("success", False))
        if not success:
            logger.info("captcha_rejected", error_codes=data.get("error-codes"))
        return success

    async def aclose(self) -> None:
        await self._http.aclose()
