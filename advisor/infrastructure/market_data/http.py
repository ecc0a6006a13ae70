"""
Shared HTTP plumbing for JSON market data providers.

Maps HTTP failures onto ProviderError so the retry executor can tell
transient failures (429/503/504, network) from permanent ones.
"""

from __future__ import annotations

import logging
from email.utils import parsedate_to_datetime
from typing import Any, Dict, Optional

import httpx

from advisor.core.errors import ErrorCode, ProviderError
from advisor.utils.time import utc_now

logger = logging.getLogger(__name__)

TRANSIENT_STATUS_CODES = frozenset({429, 503, 504})


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Retry-After as seconds; accepts delta-seconds or an HTTP date."""
    if not value:
        return None
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    return max(0.0, (when - utc_now()).total_seconds())


def error_for_response(provider: str, response: httpx.Response) -> ProviderError:
    status = response.status_code
    if status == 429:
        return ProviderError(
            f"{provider} rate limited (HTTP 429)",
            provider=provider,
            code=ErrorCode.RATE_LIMITED,
            status_code=status,
            transient=True,
            retry_after_seconds=parse_retry_after(response.headers.get("Retry-After")),
        )
    return ProviderError(
        f"{provider} returned HTTP {status}",
        provider=provider,
        status_code=status,
        transient=status in TRANSIENT_STATUS_CODES,
    )


def invalid_response(provider: str, reason: str) -> ProviderError:
    return ProviderError(
        f"{provider} returned an invalid response: {reason}",
        provider=provider,
        code=ErrorCode.PROVIDER_INVALID_RESPONSE,
    )


class HttpJsonProvider:
    """Base for providers that speak JSON over HTTP."""

    name = "http"

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._client = client

    async def _request_json(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        url = f"{self.base_url}{path}"
        if self._client is not None:
            response = await self._client.request(
                method, url, params=params, json=json_body, headers=headers
            )
        else:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                response = await client.request(
                    method, url, params=params, json=json_body, headers=headers
                )

        if response.status_code >= 400:
            logger.debug("%s API %s: %s", self.name, response.status_code, response.text[:200])
            raise error_for_response(self.name, response)
        try:
            return response.json()
        except ValueError:
            raise invalid_response(self.name, "body is not JSON")
