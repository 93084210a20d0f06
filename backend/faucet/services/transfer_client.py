"""
Client for the faucet wallet relay.

The relay holds the faucet key and submits `requestToken` operations to the
faucet contract. It speaks JSON-RPC 2.0 over HTTP:

    request_token(contract, token_address, token_id, recipient, amount) -> op hash | null
    faucet_address() -> address

A null operation hash means the contract declined because the recipient
already holds enough. Contract failures come back as JSON-RPC errors whose
message carries the Michelson failure string; they are classified here and
nowhere else.
"""

import itertools
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

import httpx
import structlog

from faucet.config import Settings

logger = structlog.get_logger()


class Asset(str, Enum):
    MVN = "mvn"
    USDT = "usdt"
    MVRK = "mvrk"


@dataclass(frozen=True)
class AssetInfo:
    token_address: str
    token_id: str
    decimals: int

    def to_base_units(self, amount: float) -> int:
        return int(Decimal(str(amount)) * (10**self.decimals))


ASSETS: dict[Asset, AssetInfo] = {
    Asset.MVN: AssetInfo("KT1PBrfUaHoe21a7J4gAUZJT4m3VJTkaEVqY", "0", 9),
    Asset.USDT: AssetInfo("KT1A5hFGc8uGQLZhkpSgTieDd1jEReZkZ65i", "0", 6),
    Asset.MVRK: AssetInfo("mv2ZZZZZZZZZZZZZZZZZZZZZZZZZZZDXMF2d", "0", 6),
}


class TransferFailure(str, Enum):
    FAUCET_EXHAUSTED = "faucet_exhausted"
    REQUEST_EXCEEDS_MAXIMUM = "request_exceeds_maximum"
    ALREADY_CLAIMED = "already_claimed_asset"
    BALANCE_TOO_LOW = "balance_too_low"


# Ordered: first marker found in the failure text wins
_FAILURE_MARKERS: tuple[tuple[str, TransferFailure], ...] = (
    ("subtraction_underflow", TransferFailure.FAUCET_EXHAUSTED),
    ("storage_exhausted", TransferFailure.FAUCET_EXHAUSTED),
    ("FA2_INSUFFICIENT_BALANCE", TransferFailure.FAUCET_EXHAUSTED),
    ("empty_implicit_contract", TransferFailure.FAUCET_EXHAUSTED),
    ("PAUSED", TransferFailure.FAUCET_EXHAUSTED),
    ("TOKEN_REQUEST_EXCEEDS_MAXIMUM_ALLOWED", TransferFailure.REQUEST_EXCEEDS_MAXIMUM),
    ("ERROR_USER_ALREADY_CLAIMED_TOKEN", TransferFailure.ALREADY_CLAIMED),
    ("ERROR_TOKEN_BALANCE_TOO_LOW", TransferFailure.BALANCE_TOO_LOW),
)


class TransferConfigError(RuntimeError):
    """Required relay settings are missing."""


class TransferError(RuntimeError):
    """The transfer failed for a reason the faucet does not distinguish."""


class TransferRejectedError(TransferError):
    """The contract refused the transfer for a known reason."""

    def __init__(self, reason: TransferFailure, message: str):
        super().__init__(message)
        self.reason = reason


def classify_transfer_failure(message: str) -> TransferFailure | None:
    for marker, failure in _FAILURE_MARKERS:
        if marker in message:
            return failure
    return None


class RpcTransferClient:
    def __init__(
        self,
        rpc_url: str,
        auth_token: str,
        contract_address: str,
        *,
        timeout: float = 60.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.rpc_url = rpc_url
        self.contract_address = contract_address
        self._http = http_client or httpx.AsyncClient(timeout=timeout)
        self._headers = {"Authorization": f"Bearer {auth_token}"}
        self._ids = itertools.count(1)

    @classmethod
    def from_settings(cls, config: Settings) -> "RpcTransferClient":
        for name in ("rpc_url", "rpc_auth_token", "faucet_contract_address"):
            if not getattr(config, name):
                raise TransferConfigError(f"No {name.upper()} defined.")
        return cls(
            config.rpc_url,
            config.rpc_auth_token,
            config.faucet_contract_address,
            timeout=config.rpc_timeout_seconds,
        )

    async def _call(self, method: str, params: dict):
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            response = await self._http.post(self.rpc_url, json=payload, headers=self._headers)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise TransferError(
                f"Relay returned HTTP {e.response.status_code} for {method}"
            ) from e
        except httpx.RequestError as e:
            raise TransferError(f"Relay request failed for {method}: {e}") from e
        except ValueError as e:
            raise TransferError(f"Relay returned invalid JSON for {method}") from e

        error = data.get("error") if isinstance(data, dict) else None
        if error:
            message = error.get("message", "") if isinstance(error, dict) else str(error)
            failure = classify_transfer_failure(message)
            if failure is not None:
                raise TransferRejectedError(failure, message)
            raise TransferError(f"Relay error for {method}: {message}")

        return data.get("result") if isinstance(data, dict) else None

    async def request_token(
        self, address: str, asset: Asset, amount: float | None = None
    ) -> str | None:
        """Send `asset` to `address`. Returns the operation hash, or None if declined."""
        info = ASSETS[asset]
        params = {
            "contract": self.contract_address,
            "token_address": info.token_address,
            "token_id": info.token_id,
            "recipient": address,
            # None lets the contract apply its default drip
            "amount": info.to_base_units(amount) if amount is not None else None,
        }
        result = await self._call("request_token", params)
        return str(result) if result else None

    async def faucet_address(self) -> str:
        result = await self._call("faucet_address", {})
        if not result:
            raise TransferError("Relay did not return a faucet address")
        return str(result)

    async def aclose(self) -> None:
        await self._http.aclose()
