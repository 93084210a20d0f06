#!/usr/bin/env python3
"""
Smoke test for faucet staging/production deployments.

This script is a deploy guardrail and never triggers a payout:
- Fast (seconds at default difficulty)
- Actionable failures (step name, HTTP status/body preview)

Flow (default):
1. Health check
2. Public faucet info
3. Challenge request for --address (skipped when challenges are disabled)
4. Re-fetch returns the same round
5. Incorrect solution is rejected and leaves the round untouched
6. Solve one round (optional via --solve-round; skipped on a final round)

Usage:
    ./scripts/smoke-test.py https://faucet.example.com --address mv1...
    ./scripts/smoke-test.py https://faucet.example.com --health-only
"""

import argparse
import hashlib
import json
import random
import sys
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

SkipCheck = Callable[["SmokeContext"], str | None]


class ApiError(RuntimeError):
    def __init__(self, status_code: int, body: str):
        super().__init__(f"API error {status_code}: {body}")
        self.status_code = status_code
        self.body = body


DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_RETRIES = 2
DEFAULT_RETRY_BACKOFF_SECONDS = 0.5
# Used when surfacing API error bodies (text) for debugging without log spam.
MAX_ERROR_BODY_CHARS = 10_000
BODY_PREVIEW_BYTES = 200
MAX_BACKOFF_SECONDS = 4.0
WRONG_SOLUTION = "f" * 64


def log(msg: str) -> None:
    """Print timestamped log message."""
    print(f"[{datetime.now().strftime('%H:%M:%S')}] {msg}", flush=True)


def _preview_bytes(value: bytes, limit: int = BODY_PREVIEW_BYTES) -> bytes:
    return value[:limit]


def _decode_limited(value: bytes, max_chars: int = MAX_ERROR_BODY_CHARS) -> str:
    decoded = value.decode("utf-8", errors="replace")
    if len(decoded) <= max_chars:
        return decoded
    return decoded[:max_chars] + "…"


def _is_retryable_status(status_code: int) -> bool:
    return status_code in {408, 425, 502, 504, 522, 524}


@dataclass
class HttpClient:
    base_url: str
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    retries: int = DEFAULT_RETRIES
    retry_backoff_seconds: float = DEFAULT_RETRY_BACKOFF_SECONDS

    def request(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        body: bytes | None = None,
        timeout_seconds: float | None = None,
    ) -> tuple[int, bytes]:
        effective_timeout = self.timeout_seconds if timeout_seconds is None else timeout_seconds
        max_attempts = max(1, self.retries + 1)

        for attempt in range(1, max_attempts + 1):
            try:
                request = Request(url, data=body, headers=headers or {}, method=method)
                try:
                    with urlopen(request, timeout=effective_timeout) as response:
                        return response.getcode(), response.read()
                except HTTPError as e:
                    error_body = e.read() if e.fp else b""
                    if attempt < max_attempts and _is_retryable_status(e.code):
                        self._sleep_backoff(attempt)
                        continue
                    return e.code, error_body
            except (URLError, TimeoutError) as e:
                if attempt < max_attempts:
                    self._sleep_backoff(attempt)
                    continue
                raise RuntimeError(f"Network error after {attempt} attempts: {e}") from e

        raise RuntimeError(f"No response from {method} {url}")

    def api_call(
        self, method: str, path: str, *, data: dict[str, Any] | None = None
    ) -> tuple[int, dict[str, Any]]:
        body_bytes = json.dumps(data).encode() if data is not None else None
        status, body = self.request(
            method,
            f"{self.base_url}/api/v1{path}",
            headers={"Content-Type": "application/json"},
            body=body_bytes,
        )
        try:
            return status, json.loads(body.decode())
        except json.JSONDecodeError as e:
            raise RuntimeError(
                f"Invalid JSON response from {method} {path} ({status}): "
                f"preview={_preview_bytes(body)!r}"
            ) from e

    def api_json(
        self, method: str, path: str, *, data: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        status, payload = self.api_call(method, path, data=data)
        if status < 200 or status >= 300:
            raise ApiError(status, _decode_limited(json.dumps(payload).encode()))
        return payload

    def _sleep_backoff(self, attempt: int) -> None:
        base = self.retry_backoff_seconds * (2 ** (attempt - 1))
        jitter = random.random() * self.retry_backoff_seconds
        time.sleep(min(MAX_BACKOFF_SECONDS, base + jitter))


def wait_for_health(client: HttpClient, max_attempts: int = 30, delay: float = 2.0) -> bool:
    """Wait for /health to return healthy status."""
    url = f"{client.base_url}/health"

    for attempt in range(1, max_attempts + 1):
        try:
            status, body = client.request("GET", url, timeout_seconds=10.0)
            if status == 200 and json.loads(body.decode()).get("status") == "healthy":
                log(f"Health check passed (attempt {attempt})")
                return True
        except (json.JSONDecodeError, RuntimeError):
            pass

        if attempt < max_attempts:
            time.sleep(delay)

    return False


def solve_pow(challenge_token: str, difficulty: int) -> tuple[int, str]:
    """Find a nonce whose sha256("<token>:<nonce>") hex digest has `difficulty` leading zeros."""
    prefix = "0" * difficulty
    start_time = time.time()
    nonce = 0

    while True:
        digest = hashlib.sha256(f"{challenge_token}:{nonce}".encode()).hexdigest()
        if digest.startswith(prefix):
            elapsed = max(time.time() - start_time, 1e-6)
            log(f"PoW solved: nonce={nonce} ({elapsed:.2f}s, {nonce/elapsed:.0f} H/s)")
            return nonce, digest
        nonce += 1

        if nonce % 1_000_000 == 0:
            elapsed = time.time() - start_time
            log(f"PoW progress: {nonce:,} attempts ({nonce/elapsed:.0f} H/s)")


@dataclass
class SmokeContext:
    client: HttpClient
    max_health_attempts: int
    address: str | None = None
    asset: str = "mvn"

    info: dict[str, Any] | None = None
    challenge: dict[str, Any] | None = None

    def require_address(self) -> str:
        if not self.address:
            raise RuntimeError("Missing --address")
        return self.address

    def require_info(self) -> dict[str, Any]:
        if self.info is None:
            raise RuntimeError("Missing info (step ordering bug)")
        return self.info

    def require_challenge(self) -> dict[str, Any]:
        if self.challenge is None:
            raise RuntimeError("Missing challenge (step ordering bug)")
        return self.challenge

    def challenge_request(self) -> dict[str, Any]:
        return {
            "address": self.require_address(),
            "amount": self.require_info()["min_amount"],
            "token": self.asset,
        }


@dataclass(frozen=True)
class Step:
    name: str
    run: Callable[[SmokeContext], None]
    # Return `None` to run the step; return a string to skip with that reason.
    skip_reason: SkipCheck | None = None


@dataclass(frozen=True)
class StepResult:
    name: str
    status: str  # passed|skipped|failed
    seconds: float
    detail: str | None = None


def _print_summary(results: list[StepResult], total_seconds: float) -> None:
    log("Summary:")
    for result in results:
        suffix = f" - {result.detail}" if result.detail else ""
        log(f"  {result.status.upper():7} {result.name} ({result.seconds:.2f}s){suffix}")
    log(f"Total: {total_seconds:.2f}s")


def run_steps(ctx: SmokeContext, steps: list[Step]) -> bool:
    results: list[StepResult] = []
    overall_start = time.time()

    for step in steps:
        reason = step.skip_reason(ctx) if step.skip_reason else None
        if reason:
            log(f"SKIP: {step.name}: {reason}")
            results.append(StepResult(step.name, "skipped", 0.0, reason))
            continue

        log(f"STEP: {step.name}")
        start = time.time()
        try:
            step.run(ctx)
        except Exception as e:
            elapsed = time.time() - start
            results.append(StepResult(step.name, "failed", elapsed, str(e)))
            _print_summary(results, time.time() - overall_start)
            return False

        elapsed = time.time() - start
        results.append(StepResult(step.name, "passed", elapsed))
        log(f"OK: {step.name} ({elapsed:.2f}s)")

    _print_summary(results, time.time() - overall_start)
    return True


def step_health(ctx: SmokeContext) -> None:
    log(f"Checking health: {ctx.client.base_url}/health")
    if not wait_for_health(ctx.client, max_attempts=ctx.max_health_attempts):
        raise RuntimeError("Health check failed")


def step_info(ctx: SmokeContext) -> None:
    info = ctx.client.api_json("GET", "/info")
    for field in ("faucet_address", "min_amount", "max_amount", "challenges_enabled"):
        if field not in info:
            raise RuntimeError(f"/info response missing {field!r}")
    ctx.info = info
    log(
        f"Faucet {info['faucet_address']}: amounts {info['min_amount']}..{info['max_amount']}, "
        f"challenges={'on' if info['challenges_enabled'] else 'off'}"
    )


def step_challenge(ctx: SmokeContext) -> None:
    challenge = ctx.client.api_json("POST", "/challenge", data=ctx.challenge_request())
    if challenge.get("status") != "challenge":
        raise RuntimeError(f"Unexpected challenge status: {challenge.get('status')!r}")
    if not challenge.get("challenge_token"):
        raise RuntimeError("Challenge response has no challenge_token")
    ctx.challenge = challenge
    log(
        f"Round {challenge['rounds_completed']}/{challenge['rounds_required']} "
        f"at difficulty {challenge['difficulty']}"
    )


def step_refetch(ctx: SmokeContext) -> None:
    again = ctx.client.api_json("POST", "/challenge", data=ctx.challenge_request())
    if again != ctx.require_challenge():
        raise RuntimeError("Re-fetching the challenge returned a different round")


def step_wrong_solution(ctx: SmokeContext) -> None:
    status, payload = ctx.client.api_call(
        "POST",
        "/verify",
        data={
            "address": ctx.require_address(),
            "token": ctx.asset,
            "nonce": 0,
            "solution": WRONG_SOLUTION,
        },
    )
    detail = payload.get("detail") if isinstance(payload, dict) else None
    code = detail.get("code") if isinstance(detail, dict) else None
    if status != 400 or code != "incorrect_solution":
        raise RuntimeError(f"Expected 400 incorrect_solution, got {status} {code!r}")

    after = ctx.client.api_json("POST", "/challenge", data=ctx.challenge_request())
    if after != ctx.require_challenge():
        raise RuntimeError("Rejected solution changed the session")


def step_solve_round(ctx: SmokeContext) -> None:
    challenge = ctx.require_challenge()
    nonce, solution = solve_pow(challenge["challenge_token"], challenge["difficulty"])
    result = ctx.client.api_json(
        "POST",
        "/verify",
        data={
            "address": ctx.require_address(),
            "token": ctx.asset,
            "nonce": nonce,
            "solution": solution,
        },
    )
    if result.get("status") != "challenge":
        raise RuntimeError(f"Expected next round, got {result.get('status')!r}")
    if result["rounds_completed"] != challenge["rounds_completed"] + 1:
        raise RuntimeError("Round counter did not advance")
    ctx.challenge = result


def skip_challenges_disabled(ctx: SmokeContext) -> str | None:
    if ctx.info is not None and not ctx.info["challenges_enabled"]:
        return "challenges are disabled on this deployment"
    if not ctx.address:
        return "no --address given"
    return None


def skip_final_round(ctx: SmokeContext) -> str | None:
    reason = skip_challenges_disabled(ctx)
    if reason:
        return reason
    challenge = ctx.require_challenge()
    if challenge["rounds_completed"] >= challenge["rounds_required"]:
        return "next solution would claim a payout"
    return None


def skip_solve_disabled(_: SmokeContext) -> str | None:
    return "enable with --solve-round"


def main() -> int:
    parser = argparse.ArgumentParser(description="Faucet smoke test")
    parser.add_argument("base_url", help="Base URL (e.g., https://faucet.example.com)")
    parser.add_argument("--address", help="Recipient address used for the challenge flow")
    parser.add_argument("--asset", default="mvn", help="Asset selector (default: mvn)")
    parser.add_argument(
        "--health-only",
        action="store_true",
        help="Only run health check, skip full flow",
    )
    parser.add_argument(
        "--solve-round",
        action="store_true",
        help="Solve one non-final round to exercise verification",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=DEFAULT_TIMEOUT_SECONDS,
        help=f"HTTP timeout seconds (default: {DEFAULT_TIMEOUT_SECONDS:g})",
    )
    parser.add_argument(
        "--retries",
        type=int,
        default=DEFAULT_RETRIES,
        help=f"Retries for transient failures (default: {DEFAULT_RETRIES})",
    )
    parser.add_argument(
        "--max-health-attempts",
        type=int,
        default=30,
        help="Max health check attempts (default: 30)",
    )
    args = parser.parse_args()

    try:
        base_url = args.base_url.rstrip("/")
        client = HttpClient(base_url=base_url, timeout_seconds=args.timeout, retries=args.retries)
        ctx = SmokeContext(
            client=client,
            max_health_attempts=args.max_health_attempts,
            address=args.address,
            asset=args.asset,
        )

        steps: list[Step] = [Step("health", step_health)]
        if args.health_only:
            log("Health-only mode: skipping full flow")
        else:
            steps.extend(
                [
                    Step("info", step_info),
                    Step("challenge", step_challenge, skip_reason=skip_challenges_disabled),
                    Step("re-fetch", step_refetch, skip_reason=skip_challenges_disabled),
                    Step(
                        "wrong solution",
                        step_wrong_solution,
                        skip_reason=skip_challenges_disabled,
                    ),
                    Step(
                        "solve round",
                        step_solve_round,
                        skip_reason=skip_final_round if args.solve_round else skip_solve_disabled,
                    ),
                ]
            )

        ok = run_steps(ctx, steps)
        return 0 if ok else 1
    except Exception as e:
        log(f"ERROR: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
