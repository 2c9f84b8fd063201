"""
JSON over HTTP with bounded retries and exponential backoff
"""

import asyncio
import json
import logging
import random
from dataclasses import dataclass

import aiohttp

from .errors import RetriesExhaustedError, SourceError, TransientSourceError

log = logging.getLogger(__name__)

RETRYABLE_STATUS = (429, 500, 502, 503, 504)


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 6
    base_delay: float = 0.3
    max_delay: float = 8.0
    jitter: float = 0.15

    def delay(self, attempt, retry_after=None):
        """Seconds to wait before retry number `attempt` (0-based)"""
        delay = min(self.max_delay, self.base_delay * (2 ** attempt))
        if retry_after:
            delay = min(self.max_delay, max(delay, float(retry_after)))
        if self.jitter and delay > 0:
            delay *= 1 + random.uniform(-self.jitter, self.jitter)
        return max(0.0, delay)


def _retry_after(headers):
    value = (headers or {}).get("Retry-After", "")
    value = str(value).strip()
    return int(value) if value.isdigit() else None


class JsonClient:
    """Thin wrapper around an aiohttp session that retries transient failures

    `check` callbacks receive the decoded body and may raise
    TransientSourceError to have the request retried, e.g. when an explorer
    answers 200 with a rate-limit message.
    """

    def __init__(self, session, policy=None, timeout=30.0, sleep=asyncio.sleep):
        self.session = session
        self.policy = policy or RetryPolicy()
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.requests = 0
        self._sleep = sleep

    async def get_json(self, url, params=None, *, label=None, check=None):
        return await self._request("GET", url, params=params, label=label, check=check)

    async def post_json(self, url, payload, *, label=None, check=None):
        return await self._request("POST", url, payload=payload, label=label, check=check)

    async def _request(self, method, url, *, params=None, payload=None, label=None, check=None):
        label = label or f"{method} {url}"
        last_error = None

        for attempt in range(self.policy.max_retries + 1):
            if attempt:
                retry_after = getattr(last_error, "retry_after", None)
                delay = self.policy.delay(attempt - 1, retry_after)
                log.warning(
                    "%s failed (%s), retry %d/%d in %.2fs",
                    label, last_error, attempt, self.policy.max_retries, delay,
                )
                await self._sleep(delay)

            try:
                self.requests += 1
                data = await self._once(method, url, params, payload, label)
                if check is not None:
                    data = check(data)
                return data
            except TransientSourceError as e:
                last_error = e

        raise RetriesExhaustedError(
            f"{label}: gave up after {self.policy.max_retries + 1} attempts: {last_error}",
            label=label,
        )

    async def _once(self, method, url, params, payload, label):
        try:
            async with self.session.request(
                method,
                url,
                params=params,
                json=payload,
                timeout=self.timeout,
                headers={"accept": "application/json"},
            ) as resp:
                body = await resp.read()
                if resp.status in RETRYABLE_STATUS:
                    raise TransientSourceError(
                        f"HTTP {resp.status}",
                        label=label,
                        retry_after=_retry_after(resp.headers),
                    )
                if resp.status >= 400:
                    text = body[:200].decode("utf-8", errors="replace")
                    raise SourceError(f"{label}: HTTP {resp.status}: {text}", label=label)
        except asyncio.TimeoutError as e:
            raise TransientSourceError("request timed out", label=label) from e
        except aiohttp.ClientError as e:
            raise TransientSourceError(f"transport error: {e}", label=label) from e

        # Truncated, HTML or mis-encoded bodies are a flaky upstream, not an empty result
        try:
            return json.loads(body.decode("utf-8"))
        except ValueError as e:
            raise TransientSourceError(f"invalid JSON body: {body[:120]!r}", label=label) from e
