"""FastAPI dependencies for the collaborators built in the app lifespan."""

from starlette.requests import Request

from faucet.services.captcha_service import CaptchaVerifier
from faucet.services.session_store import SessionStore
from faucet.services.transfer_client import RpcTransferClient


def get_session_store(request: Request) -> SessionStore:
    return request.app.state.session_store


def get_transfer_client(request: Request) -> RpcTransferClient:
    return request.app.state.transfer_client


def get_captcha_verifier(request: Request) -> CaptchaVerifier | None:
    return request.app.state.captcha_verifier
