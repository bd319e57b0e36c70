"""Resilient HTTP client for the checkout backend services.

Features:
  - 429 Retry-After with jitter
  - Exponential backoff on 5xx and timeouts
  - Non-idempotent calls (order creation, charges) opt out of retries
  - Configurable timeouts & limited retries
  - 4xx bodies preserved on the error (services signal reasons through them)
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Any

import httpx

from storefront.config import get_settings

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

_MAX_RETRIES = 3
_CONNECT_TIMEOUT = 10.0  # seconds
_READ_TIMEOUT = 30.0
_BACKOFF_BASE = 0.5  # seconds
_BACKOFF_CAP = 30.0  # seconds
_JITTER_MAX = 0.5  # seconds


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class BackendAPIError(Exception):
    """Raised when a backend request fails after all retries."""

    def __init__(self, status_code: int, detail: str, payload: dict | None = None):
        self.status_code = status_code
        self.detail = detail
        self.payload = payload or {}
        super().__init__(f"Backend API error {status_code}: {detail}")

    @property
    def reason(self) -> str | None:
        """Machine-readable ``reason`` the service put in its error body, if any."""
        return self.payload.get("reason")


def _json_or_empty(resp: httpx.Response) -> dict:
    try:
        data = resp.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {"data": data}


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class BackendClient:
    """Thin JSON client over ``settings.backend_base_url``."""

    def __init__(self, base_url: str | None = None):
        self.base_url = (base_url or get_settings().backend_base_url).rstrip("/")

    async def _request(
        self,
        method: str,
        path: str,
        *,
        retry: bool = True,
        **kwargs: Any,
    ) -> httpx.Response:
        """Make a request with retry logic.

        Parameters
        ----------
        method : str
            HTTP method.
        path : str
            Service path, e.g. ``/checkout-session/validate``.
        retry : bool
            ``False`` for calls that must never be sent twice; only a
            connect-level failure is then surfaced, without a second attempt.
        **kwargs
            Forwarded to ``httpx.AsyncClient.request`` (json, params, …).

        Raises
        ------
        BackendAPIError
            After exhausting retries or on a non-retryable status.
        """
        url = f"{self.base_url}{path}"
        timeout = httpx.Timeout(_READ_TIMEOUT, connect=_CONNECT_TIMEOUT)
        attempts = _MAX_RETRIES if retry else 1
        last_status = 0

        for attempt in range(attempts):
            async with httpx.AsyncClient(timeout=timeout) as client:
                try:
                    resp = await client.request(method, url, **kwargs)
                except httpx.TimeoutException:
                    logger.warning("Timeout on attempt %d for %s %s", attempt + 1, method, path)
                    if attempt + 1 < attempts:
                        await _backoff_sleep(attempt)
                    continue
                except httpx.TransportError as exc:
                    logger.warning("Transport error on %s %s: %s", method, path, exc)
                    raise BackendAPIError(0, "Service unavailable") from exc

            last_status = resp.status_code

            # ── Success ─────────────────────────────────────────────
            if resp.status_code < 400:
                return resp

            # ── 429 → Retry-After ───────────────────────────────────
            if resp.status_code == 429 and retry:
                retry_after = float(resp.headers.get("Retry-After", "1"))
                wait = retry_after + random.uniform(0, _JITTER_MAX)
                logger.warning("429 on %s %s, waiting %.1fs", method, path, wait)
                await asyncio.sleep(wait)
                continue

            # ── 5xx → exponential backoff ───────────────────────────
            if resp.status_code >= 500 and retry:
                logger.warning(
                    "Server error %d on %s %s (attempt %d)",
                    resp.status_code, method, path, attempt + 1,
                )
                await _backoff_sleep(attempt)
                continue

            # ── 4xx (other), or no retry allowed → fail ─────────────
            payload = _json_or_empty(resp)
            detail = payload.get("error") or payload.get("message") or resp.text
            raise BackendAPIError(resp.status_code, str(detail), payload)

        raise BackendAPIError(
            last_status,
            f"Max retries ({attempts}) exhausted for {method} {path}",
        )

    # ------------------------------------------------------------------
    # JSON helpers
    # ------------------------------------------------------------------

    async def get_json(self, path: str, **kwargs: Any) -> dict:
        resp = await self._request("GET", path, **kwargs)
        return _json_or_empty(resp)

    async def post_json(self, path: str, body: dict, *, retry: bool = True) -> dict:
        resp = await self._request("POST", path, json=body, retry=retry)
        return _json_or_empty(resp)


async def _backoff_sleep(attempt: int) -> None:
    """Exponential backoff with jitter, capped at ``_BACKOFF_CAP``."""
    delay = min(_BACKOFF_BASE * (2 ** attempt) + random.uniform(0, _JITTER_MAX), _BACKOFF_CAP)
    logger.debug("Backoff sleep %.2fs (attempt %d)", delay, attempt + 1)
    await asyncio.sleep(delay)
