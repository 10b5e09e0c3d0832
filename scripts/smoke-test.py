#!/usr/bin/env python3
"""
Smoke test for altcha-server deployments.

Flow (default):
1. Health check
2. Challenge issuance (maxnumber must not leak unless the server exposes it)
3. Brute-force solve + POST /altcha/verify
4. Replay of the same solution is rejected
5. Garbage payload is rejected with the generic message

Usage:
    ./scripts/smoke-test.py https://staging.example.com
    ./scripts/smoke-test.py https://staging.example.com --health-only
"""

import argparse
import base64
import hashlib
import json
import random
import sys
import time
from dataclasses import dataclass, field
from datetime import datetime
from http.cookiejar import CookieJar
from typing import Any, Callable
from urllib.error import HTTPError, URLError
from urllib.request import HTTPCookieProcessor, OpenerDirector, Request, build_opener

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_RETRIES = 2
DEFAULT_RETRY_BACKOFF_SECONDS = 0.5
DEFAULT_MAX_NUMBER = 50_000
MAX_BACKOFF_SECONDS = 4.0
MAX_ERROR_BODY_CHARS = 2_000


class ApiError(RuntimeError):
    def __init__(self, status_code: int, body: str):
        super().__init__(f"API error {status_code}: {body}")
        self.status_code = status_code
        self.body = body


def log(msg: str) -> None:
    """Print timestamped log message."""
    print(f"[{datetime.now().strftime('%H:%M:%S')}] {msg}", flush=True)


def _is_retryable_status(status_code: int) -> bool:
    return status_code in {408, 425, 502, 503, 504, 522, 524}


@dataclass
class HttpClient:
    """urllib client that keeps the session cookie between requests."""

    base_url: str
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    retries: int = DEFAULT_RETRIES
    retry_backoff_seconds: float = DEFAULT_RETRY_BACKOFF_SECONDS
    cookies: CookieJar = field(default_factory=CookieJar)
    _opener: OpenerDirector | None = None

    def opener(self) -> OpenerDirector:
        if self._opener is None:
            self._opener = build_opener(HTTPCookieProcessor(self.cookies))
        return self._opener

    def request(
        self,
        method: str,
        path: str,
        *,
        data: dict[str, Any] | None = None,
    ) -> tuple[int, bytes]:
        url = f"{self.base_url}{path}"
        headers = {"Content-Type": "application/json"} if data is not None else {}
        body = json.dumps(data).encode() if data is not None else None

        max_attempts = max(1, self.retries + 1)
        for attempt in range(1, max_attempts + 1):
            request = Request(url, data=body, headers=headers, method=method)
            try:
                with self.opener().open(request, timeout=self.timeout_seconds) as response:
                    return response.getcode(), response.read()
            except HTTPError as e:
                if attempt < max_attempts and _is_retryable_status(e.code):
                    self._sleep_backoff(attempt)
                    continue
                return e.code, e.read() if e.fp else b""
            except (URLError, TimeoutError) as e:
                if attempt < max_attempts:
                    self._sleep_backoff(attempt)
                    continue
                raise RuntimeError(f"Network error after {attempt} attempts: {e}") from e

        raise RuntimeError(f"No response from {method} {path}")

    def api_json(self, method: str, path: str, data: dict[str, Any] | None = None) -> dict:
        status, body = self.request(method, f"/api/v1{path}", data=data)
        text = body.decode("utf-8", errors="replace")[:MAX_ERROR_BODY_CHARS]
        if status < 200 or status >= 300:
            raise ApiError(status, text)
        return json.loads(text)

    def _sleep_backoff(self, attempt: int) -> None:
        base = self.retry_backoff_seconds * (2 ** (attempt - 1))
        jitter = random.random() * self.retry_backoff_seconds
        time.sleep(min(MAX_BACKOFF_SECONDS, base + jitter))


def wait_for_health(client: HttpClient, max_attempts: int = 30, delay: float = 2.0) -> bool:
    """Wait for /health to return healthy status."""
    for attempt in range(1, max_attempts + 1):
        try:
            status, body = client.request("GET", "/health")
            if status == 200 and json.loads(body.decode()).get("status") == "healthy":
                log(f"Health check passed (attempt {attempt})")
                return True
        except (json.JSONDecodeError, RuntimeError):
            pass

        if attempt < max_attempts:
            time.sleep(delay)

    return False


def solve_challenge(challenge: dict[str, Any], max_number: int) -> int:
    """Find the number whose hash with the salt reproduces the challenge."""
    algorithm = challenge["algorithm"].replace("-", "").lower()
    salt = challenge["salt"]
    start_time = time.time()

    for number in range(max_number + 1):
        if hashlib.new(algorithm, f"{salt}{number}".encode()).hexdigest() == challenge["challenge"]:
            log(f"Challenge solved: number={number} ({time.time() - start_time:.2f}s)")
            return number

    raise RuntimeError(f"No solution within 0..{max_number}")


def encode_solution(salt: str, number: int, took: float) -> str:
    return base64.b64encode(json.dumps({"salt": salt, "number": number, "took": took}).encode()).decode()


@dataclass
class SmokeContext:
    client: HttpClient
    max_health_attempts: int
    max_number: int
    field_id: str

    challenge: dict[str, Any] | None = None
    payload: str | None = None

    def require_challenge(self) -> dict[str, Any]:
        if self.challenge is None:
            raise RuntimeError("Missing challenge (step ordering bug)")
        return self.challenge

    def require_payload(self) -> str:
        if self.payload is None:
            raise RuntimeError("Missing payload (step ordering bug)")
        return self.payload


@dataclass(frozen=True)
class Step:
    name: str
    run: Callable[[SmokeContext], None]


def run_steps(ctx: SmokeContext, steps: list[Step]) -> bool:
    overall_start = time.time()

    for step in steps:
        log(f"STEP: {step.name}")
        start = time.time()
        try:
            step.run(ctx)
        except Exception as e:
            log(f"FAILED: {step.name} ({time.time() - start:.2f}s) - {e}")
            log(f"Total: {time.time() - overall_start:.2f}s")
            return False
        log(f"OK: {step.name} ({time.time() - start:.2f}s)")

    log(f"Total: {time.time() - overall_start:.2f}s")
    return True


def step_health(ctx: SmokeContext) -> None:
    if not wait_for_health(ctx.client, max_attempts=ctx.max_health_attempts):
        raise RuntimeError("Health check failed")


def step_challenge(ctx: SmokeContext) -> None:
    challenge = ctx.client.api_json("GET", f"/altcha/challenge?id={ctx.field_id}")
    missing = {"algorithm", "challenge", "salt", "signature"} - set(challenge)
    if missing:
        raise RuntimeError(f"Challenge missing fields: {sorted(missing)}")
    if "keyHash=" not in challenge["salt"]:
        raise RuntimeError("Challenge salt carries no keyHash parameter")
    if "maxnumber" in challenge:
        log(f"NOTE: server exposes maxnumber={challenge['maxnumber']}")
    ctx.challenge = challenge


def step_verify(ctx: SmokeContext) -> None:
    challenge = ctx.require_challenge()
    max_number = int(challenge.get("maxnumber", ctx.max_number))
    start = time.time()
    number = solve_challenge(challenge, max_number)
    ctx.payload = encode_solution(challenge["salt"], number, time.time() - start)

    result = ctx.client.api_json("POST", "/altcha/verify", {"payload": ctx.payload})
    if result.get("verified") is not True:
        raise RuntimeError(f"Unexpected verify response: {result!r}")


def _expect_rejection(ctx: SmokeContext, payload: str) -> None:
    try:
        ctx.client.api_json("POST", "/altcha/verify", {"payload": payload})
    except ApiError as e:
        if e.status_code != 400 or "Verification failed" not in e.body:
            raise
        return
    raise RuntimeError("Server accepted a payload it should have rejected")


def step_replay(ctx: SmokeContext) -> None:
    _expect_rejection(ctx, ctx.require_payload())


def step_garbage(ctx: SmokeContext) -> None:
    ctx.client.api_json("GET", f"/altcha/challenge?id={ctx.field_id}")
    _expect_rejection(ctx, base64.b64encode(b"not json").decode())


def main() -> int:
    parser = argparse.ArgumentParser(description="altcha-server smoke test")
    parser.add_argument("base_url", help="Base URL (e.g., https://staging.example.com)")
    parser.add_argument("--health-only", action="store_true", help="Only run health check")
    parser.add_argument("--field-id", default="altcha_smoke", help="Form field id to request")
    parser.add_argument(
        "--max-number",
        type=int,
        default=DEFAULT_MAX_NUMBER,
        help=f"Search bound when the server hides maxnumber (default: {DEFAULT_MAX_NUMBER})",
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
        client = HttpClient(
            base_url=args.base_url.rstrip("/"), timeout_seconds=args.timeout, retries=args.retries
        )
        ctx = SmokeContext(
            client=client,
            max_health_attempts=args.max_health_attempts,
            max_number=args.max_number,
            field_id=args.field_id,
        )

        steps = [Step("health", step_health)]
        if args.health_only:
            log("Health-only mode: skipping full flow")
        else:
            steps.extend(
                [
                    Step("issue challenge", step_challenge),
                    Step("solve and verify", step_verify),
                    Step("replay rejected", step_replay),
                    Step("garbage rejected", step_garbage),
                ]
            )

        return 0 if run_steps(ctx, steps) else 1
    except Exception as e:
        log(f"ERROR: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
