"""HTTP helpers with retry/backoff, token rotation and a shared rate-limit budget."""

from __future__ import annotations

import logging
import os
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import requests

from .config import (
    BACKOFF_BASE_SEC,
    BASE_URL,
    MAX_RETRIES,
    MAX_WAIT_ON_403,
    RATE_LIMIT_RESERVE,
    RATE_LIMIT_TOKEN_RESET_WAIT_SEC,
    REQUEST_TIMEOUT,
    USER_AGENT,
)

logger = logging.getLogger(__name__)

IDEMPOTENT_METHODS = {"GET", "HEAD"}
TERMINAL_ERRORS = {400, 404, 409, 410, 422}


def sleep_with_jitter(base: float) -> None:
    """Pause execution with +/- 25% jitter to avoid synchronized retries."""
    jitter = base * 0.25 * (0.5 - (os.urandom(1)[0] / 255.0))
    time.sleep(max(0.0, base + jitter))


def sleep_on_rate_limit(reason: str) -> None:
    """Sleep for the configured interval when every token is still rate limited."""
    wait_sec = max(0, RATE_LIMIT_TOKEN_RESET_WAIT_SEC)
    if wait_sec <= 0:
        return
    logger.warning("%s; sleeping %ss", reason, wait_sec)
    time.sleep(wait_sec)


def log_http_error(resp: requests.Response, url: str) -> str:
    """Log and return a short, human-readable message for a GitHub error response."""
    try:
        body = resp.json()
    except ValueError:
        body = {"text": (resp.text or "")[:300]}
    if not isinstance(body, dict):
        body = {"text": str(body)[:300]}
    msg = body.get("message") or body.get("error") or body.get("text") or ""
    logger.debug("HTTP %s for %s -> %s", resp.status_code, url, msg)
    return str(msg)


def resource_for_url(url: str) -> str:
    """Name the GitHub rate-limit bucket a request is charged against.

    Matches the ``X-RateLimit-Resource`` values GitHub reports: code search has
    its own bucket, separate from the other search endpoints.
    """
    if "/search/code" in url:
        return "code_search"
    return "search" if "/search/" in url else "core"


class RateLimitBudget:
    """Remaining request budget per rate-limit resource, shared by all worker threads.

    Every response updates the budget from its ``X-RateLimit-*`` headers. Before a
    request is sent, callers block while the bucket is at or below ``reserve``
    until its reset time passes. The wait happens under the lock so that every
    worker pauses together instead of draining the last few requests.
    """

    def __init__(
        self,
        reserve: int = RATE_LIMIT_RESERVE,
        clock: Callable[[], float] = time.time,
        sleeper: Callable[[float], None] = time.sleep,
    ) -> None:
        self.reserve = reserve
        self._clock = clock
        self._sleep = sleeper
        self._lock = threading.Lock()
        self._buckets: Dict[str, Tuple[Optional[int], Optional[int]]] = {}

    def update(self, headers: Optional[Dict[str, Any]], resource: str = "core") -> None:
        """Record the budget reported for ``resource``, the bucket the request was charged to."""
        headers = headers or {}
        remaining = headers.get("X-RateLimit-Remaining")
        reset = headers.get("X-RateLimit-Reset")
        if remaining is None or not str(remaining).isdigit():
            return
        reset_at = int(reset) if reset is not None and str(reset).isdigit() else None
        with self._lock:
            self._buckets[resource] = (int(remaining), reset_at)

    def reset(self, resource: Optional[str] = None) -> None:
        """Forget what is known about one bucket, or all of them."""
        with self._lock:
            if resource is None:
                self._buckets.clear()
            else:
                self._buckets.pop(resource, None)

    def remaining(self, resource: str = "core") -> Optional[int]:
        with self._lock:
            return self._buckets.get(resource, (None, None))[0]

    def wait_if_exhausted(self, resource: str = "core") -> float:
        """Block until ``resource`` has budget again; return the seconds waited."""
        with self._lock:
            remaining, reset_at = self._buckets.get(resource, (None, None))
            if remaining is None or remaining > self.reserve:
                return 0.0
            if reset_at is not None:
                wait_sec = max(0, reset_at - int(self._clock())) + 1
            else:
                wait_sec = BACKOFF_BASE_SEC
            wait_sec = min(wait_sec, MAX_WAIT_ON_403)
            logger.warning(
                "%s rate-limit budget at %s requests; pausing %ss", resource, remaining, wait_sec
            )
            self._sleep(wait_sec)
            self._buckets.pop(resource, None)
            return float(wait_sec)


class GitHubSession:
    """A ``requests.Session`` bound to one API root, a token pool, and a budget."""

    def __init__(
        self,
        tokens: Sequence[str],
        base_url: str = BASE_URL,
        budget: Optional[RateLimitBudget] = None,
        session: Optional[requests.Session] = None,
        max_retries: int = MAX_RETRIES,
    ) -> None:
        self.tokens: List[str] = [token for token in tokens if token]
        self.token_index = 0
        self.base_url = base_url.rstrip("/")
        self.budget = budget or RateLimitBudget()
        self.max_retries = max(1, max_retries)
        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "Accept": "application/vnd.github+json",
                "User-Agent": USER_AGENT,
                "X-GitHub-Api-Version": "2022-11-28",
            }
        )
        self._token_lock = threading.Lock()

    def url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        path = path if path.startswith("/") else f"/{path}"
        return f"{self.base_url}{path}"

    def get_current_token(self) -> Optional[str]:
        with self._token_lock:
            if not self.tokens:
                return None
            return self.tokens[self.token_index % len(self.tokens)]

    def auth_headers(self) -> Dict[str, str]:
        token = self.get_current_token()
        return {"Authorization": f"Bearer {token}"} if token else {}

    def current_token_index(self) -> int:
        with self._token_lock:
            return self.token_index

    def rotate_token(self) -> Optional[int]:
        """Advance to the next token; return the index rotated away from, or None."""
        with self._token_lock:
            if len(self.tokens) <= 1:
                return None
            previous = self.token_index
            self.token_index = (previous + 1) % len(self.tokens)
            index = self.token_index
        self.budget.reset()
        if index == 0:
            logger.info("wrapped to token 1/%d", len(self.tokens))
        else:
            logger.info("switched to token %d/%d", index + 1, len(self.tokens))
        return previous

    def switch_to_next_token(self) -> bool:
        """Advance to the next token if available; return True if switched."""
        return self.rotate_token() is not None

    def request_with_backoff(self, method: str, path: str, **kwargs) -> requests.Response:
        """Perform a REST call with backoff and token cycling.

        Rate-limited responses are always waited out and retried, because GitHub
        rejected them before applying anything. Connection errors and 5xx
        responses are retried only for idempotent methods.
        """
        method = method.upper()
        url = self.url(path)
        resource = resource_for_url(url)
        timeout = kwargs.pop("timeout", REQUEST_TIMEOUT)
        extra_headers = kwargs.pop("headers", None) or {}
        idempotent = method in IDEMPOTENT_METHODS
        last_exc: Optional[Exception] = None
        last_resp: Optional[requests.Response] = None
        unauthorized = 0
        rotated_due_to_rate_limit = False
        wrapped_on_last_rotation = False

        for attempt in range(1, self.max_retries + 1):
            self.budget.wait_if_exhausted(resource)
            headers = {**self.auth_headers(), **extra_headers}
            try:
                resp = self.session.request(method, url, headers=headers, timeout=timeout, **kwargs)
            except requests.RequestException as exc:
                if not idempotent:
                    raise
                last_exc = exc
                last_resp = None
                delay = BACKOFF_BASE_SEC * (2 ** (attempt - 1))
                logger.warning("retry %d/%d %s %s: %s -> sleep %.1fs", attempt, self.max_retries, method, url, exc, delay)
                sleep_with_jitter(delay)
                continue

            self.budget.update(resp.headers, resource)
            last_exc = None
            last_resp = resp

            if 200 <= resp.status_code < 300:
                return resp

            if resp.status_code == 401:
                unauthorized += 1
                if unauthorized < len(self.tokens) and self.switch_to_next_token():
                    continue
                log_http_error(resp, url)
                return resp

            if resp.status_code in (403, 429):
                headers_resp = resp.headers or {}
                remaining = headers_resp.get("X-RateLimit-Remaining")
                reset = headers_resp.get("X-RateLimit-Reset")
                retry_after = headers_resp.get("Retry-After")
                is_rate_limited = remaining == "0" or bool(retry_after)

                if not is_rate_limited:
                    log_http_error(resp, url)
                    return resp

                if remaining == "0":
                    token_count = len(self.tokens)
                    reached_end_of_rotation = rotated_due_to_rate_limit and (
                        wrapped_on_last_rotation or self.current_token_index() == token_count - 1
                    )
                    if token_count <= 1 or reached_end_of_rotation:
                        if reset is None or not str(reset).isdigit():
                            sleep_on_rate_limit("rate limit persists for every token")
                            self.budget.reset(resource)
                            rotated_due_to_rate_limit = False
                            wrapped_on_last_rotation = False
                            continue
                    else:
                        prev_index = self.rotate_token()
                        if prev_index is not None:
                            wrapped_on_last_rotation = prev_index == token_count - 1
                            rotated_due_to_rate_limit = True
                            continue

                if retry_after and str(retry_after).isdigit():
                    wait_sec = int(retry_after)
                elif reset and str(reset).isdigit():
                    wait_sec = max(0, int(reset) - int(time.time())) + 1
                else:
                    wait_sec = BACKOFF_BASE_SEC * (2 ** (attempt - 1))
                wait_sec = min(wait_sec, MAX_WAIT_ON_403)
                logger.warning("backoff %s: waiting %ss for %s", resp.status_code, wait_sec, url)
                sleep_with_jitter(wait_sec)
                self.budget.reset(resource)
                rotated_due_to_rate_limit = False
                wrapped_on_last_rotation = False
                continue

            if resp.status_code in TERMINAL_ERRORS or not idempotent:
                log_http_error(resp, url)
                return resp

            if attempt < self.max_retries:
                delay = BACKOFF_BASE_SEC * (2 ** (attempt - 1))
                logger.warning("retry %d/%d HTTP %s for %s -> sleep %.1fs", attempt, self.max_retries, resp.status_code, url, delay)
                sleep_with_jitter(delay)
                continue

            log_http_error(resp, url)
            return resp

        if last_exc:
            raise last_exc
        # out of attempts on rate limits or server errors; callers see the status
        log_http_error(last_resp, url)
        return last_resp


__all__ = [
    "IDEMPOTENT_METHODS",
    "sleep_with_jitter",
    "sleep_on_rate_limit",
    "log_http_error",
    "resource_for_url",
    "RateLimitBudget",
    "GitHubSession",
]
