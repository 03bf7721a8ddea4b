"""Synchronous HTTP client helpers with per-endpoint policies and status-aware error handling."""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass
from typing import Optional

import httpx

from asos_harvester.config import settings

logger = logging.getLogger(__name__)

# Retryable exceptions (transport errors)
RETRYABLE_EXC = (
    httpx.ReadTimeout,
    httpx.ConnectTimeout,
    httpx.ConnectError,
    httpx.RemoteProtocolError,
    httpx.PoolTimeout,
)


@dataclass(frozen=True)
class SitePolicy:
    """Per-endpoint HTTP request policy configuration."""

    name: str
    max_attempts: int = 3
    timeout: httpx.Timeout = None  # Will be set to default if None
    backoff_factor: float = 1.0

    def __post_init__(self):
        """Set default timeout if not provided."""
        if self.timeout is None:
            object.__setattr__(
                self,
                'timeout',
                httpx.Timeout(connect=10.0, read=30.0, write=10.0, pool=10.0)
            )

    def backoff_seconds(self, attempt: int) -> float:
        """Exponential backoff with jitter for the given 1-based attempt."""
        return self.backoff_factor * ((2 ** attempt) + random.random())


class BlockedError(RuntimeError):
    """Raised when access is blocked (403, 401, or /blocked redirect)."""
    pass


class PermanentURLError(RuntimeError):
    """Raised when URL is permanently invalid (404)."""
    pass


class TransientFetchError(RuntimeError):
    """Raised when fetch fails after retries (5xx, timeouts, etc.)."""
    pass


class RateLimitedError(RuntimeError):
    """Raised when rate limited (429)."""

    def __init__(self, retry_after: Optional[int] = None):
        super().__init__("Rate limited")
        self.retry_after = retry_after


def default_headers() -> dict[str, str]:
    """Get default browser-like headers for page requests."""
    return {
        "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
        "Accept": "text/html, application/xhtml+xml, application/xml; q=0.9, */*; q=0.8",
        "Accept-Language": "en-US, en; q=0.9",
        "Accept-Encoding": "gzip, deflate",
        "Connection": "keep-alive",
        "Cache-Control": "no-cache",
        "Pragma": "no-cache",
        "Upgrade-Insecure-Requests": "1",
    }


def api_headers() -> dict[str, str]:
    """Headers the listing page's own XHR calls send to the internal API."""
    return {
        "Accept": "application/json, text/plain, */*",
        "Accept-Language": "en-US,en;q=0.9",
        "asos-c-name": "asos-web-product-listing-page",
        "asos-cid": "web-product-listing-page",
        "Cache-Control": "no-cache",
        "Pragma": "no-cache",
        "Referer": f"{settings.site_base_url}{settings.search_path}",
        "Sec-Fetch-Dest": "empty",
        "Sec-Fetch-Mode": "cors",
        "Sec-Fetch-Site": "same-origin",
        "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    }


def fetch_with_policy(
    client: httpx.Client,
    url: str,
    policy: SitePolicy,
    headers: Optional[dict[str, str]] = None,
    params: Optional[dict[str, str]] = None,
) -> httpx.Response:
    """
    Fetch URL with a policy and status-aware error handling.

    Args:
        client: httpx Client instance
        url: URL to fetch
        policy: SitePolicy configuration
        headers: Optional additional headers (merged with defaults)
        params: Optional query parameters

    Returns:
        httpx.Response on success

    Raises:
        BlockedError: If access is blocked (403, 401, or /blocked redirect)
        PermanentURLError: If URL is permanently invalid (404)
        RateLimitedError: If still rate limited after the last attempt
        TransientFetchError: If fetch fails after retries
    """
    hdrs = default_headers()
    if headers:
        hdrs.update(headers)

    last_exc: Exception | None = None

    for attempt in range(1, policy.max_attempts + 1):
        try:
            resp = client.get(
                url,
                params=params,
                headers=hdrs,
                timeout=policy.timeout,
                follow_redirects=True,
            )

            if "/blocked" in str(resp.url).lower():
                raise BlockedError(f"{policy.name}: blocked redirect: {resp.url}")

            sc = resp.status_code

            # Handle 404 as permanent failure
            if sc == 404:
                raise PermanentURLError(f"{policy.name}: 404 for {url}")

            # Handle 401/403 as blocked
            if sc in (401, 403):
                raise BlockedError(f"{policy.name}: {sc} for {url}")

            # Handle 429 rate limiting
            if sc == 429:
                retry_after = resp.headers.get("Retry-After")
                retry_seconds = None
                if retry_after:
                    try:
                        retry_seconds = int(retry_after)
                    except (ValueError, TypeError):
                        pass
                raise RateLimitedError(retry_after=retry_seconds)

            # Success (redirects are followed by the client)
            if 200 <= sc < 300:
                return resp

            # 5xx and anything unexpected: transient, retried below
            raise TransientFetchError(f"{policy.name}: status {sc} for {url}")

        except RateLimitedError as e:
            # Use Retry-After if available, otherwise exponential
            if e.retry_after is not None:
                sleep_s = float(e.retry_after)
            else:
                sleep_s = policy.backoff_seconds(attempt)

            if attempt < policy.max_attempts:
                logger.warning(
                    f"{policy.name}: Rate limited (429), retrying in {sleep_s:.1f}s "
                    f"(attempt {attempt}/{policy.max_attempts})"
                )
                time.sleep(sleep_s)
                last_exc = e
                continue
            raise

        except RETRYABLE_EXC as e:
            if attempt < policy.max_attempts:
                sleep_s = policy.backoff_seconds(attempt)
                logger.warning(
                    f"{policy.name}: Transport error ({type(e).__name__}), "
                    f"retrying in {sleep_s:.1f}s (attempt {attempt}/{policy.max_attempts})"
                )
                time.sleep(sleep_s)
                last_exc = e
                continue
            raise TransientFetchError(
                f"{policy.name}: Transport error after {policy.max_attempts} attempts: {url}"
            ) from e

        except (BlockedError, PermanentURLError):
            # Don't retry these - re-raise immediately
            raise

        except TransientFetchError as e:
            if attempt < policy.max_attempts:
                sleep_s = policy.backoff_seconds(attempt)
                logger.warning(
                    f"{e}, retrying in {sleep_s:.1f}s "
                    f"(attempt {attempt}/{policy.max_attempts})"
                )
                time.sleep(sleep_s)
                last_exc = e
                continue
            raise TransientFetchError(
                f"{e} after {policy.max_attempts} attempts"
            ) from e

    # Only reachable with max_attempts < 1
    raise TransientFetchError(
        f"{policy.name}: failed after {policy.max_attempts} attempts: {url}"
    ) from last_exc


def _timeout(read_seconds: float) -> httpx.Timeout:
    return httpx.Timeout(connect=10.0, read=read_seconds, write=10.0, pool=10.0)


# Per-endpoint policy definitions
POLICIES: dict[str, SitePolicy] = {
    "asos_page": SitePolicy(
        name="asos_page",
        max_attempts=settings.page_max_attempts,
        timeout=_timeout(settings.page_timeout_seconds),
        backoff_factor=settings.retry_backoff_factor,
    ),
    "asos_api": SitePolicy(
        name="asos_api",
        max_attempts=settings.api_max_attempts,
        timeout=_timeout(settings.api_timeout_seconds),
        backoff_factor=settings.retry_backoff_factor,
    ),
    "asos_stock_api": SitePolicy(
        name="asos_stock_api",
        max_attempts=settings.stock_api_max_attempts,
        timeout=_timeout(settings.stock_api_timeout_seconds),
        backoff_factor=settings.retry_backoff_factor,
    ),
    # Default policy for anything else
    "default": SitePolicy(
        name="default",
        max_attempts=3,
        timeout=_timeout(30.0),
        backoff_factor=settings.retry_backoff_factor,
    ),
}


def get_policy(name: str) -> SitePolicy:
    """
    Get a request policy by name.

    Args:
        name: Policy identifier (e.g., "asos_api")

    Returns:
        SitePolicy for the name, or the default policy if not found
    """
    return POLICIES.get(name.lower(), POLICIES["default"])
