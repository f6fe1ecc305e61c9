"""
Teori API Client
Signed HTTP calls to the Teori merchant API with timeout, retry and error classification
"""

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Optional

import httpx

from .errors import ProviderApiError, ProviderNetworkError, ProviderResponseError
from .settings import DEFAULT_RETRY_ATTEMPTS, ProviderSettings
from .signing import RequestSigner

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
BACKOFF_BASE = 1.0  # seconds; doubles per attempt
ORDERS_PATH = "/checkout/merchantapi/Orders"
USER_AGENT = "TrafikskolaX/1.0"


class TeoriApiClient:
    """HTTP client for the Teori checkout merchant API"""

    def __init__(
        self,
        signer: RequestSigner,
        timeout: float = DEFAULT_TIMEOUT,
        backoff_base: float = BACKOFF_BASE,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.signer = signer
        self.timeout = timeout
        self.backoff_base = backoff_base
        self.sleep = sleep
        self.transport = transport

    def _headers(self, body: Optional[str], api_key: str) -> dict[str, str]:
        return {
            "Authorization": self.signer.sign(body or ""),
            "x-api-key": api_key,
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": USER_AGENT,
        }

    async def _send(
        self, method: str, url: str, headers: dict[str, str], body: Optional[str]
    ) -> Any:
        """Single attempt: transport errors and non-2xx become ProviderApiError"""
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as http_client:
                response = await asyncio.wait_for(
                    http_client.request(method, url, headers=headers, content=body),
                    timeout=self.timeout,
                )
        except (asyncio.TimeoutError, httpx.TimeoutException):
            raise ProviderNetworkError(
                f"Request timeout: Teori API did not respond within {self.timeout:g} seconds",
                kind=ProviderNetworkError.TIMEOUT,
            ) from None
        except httpx.ConnectError as e:
            raise ProviderNetworkError(
                f"Network connectivity issue: Cannot reach Teori API ({e})",
                kind=ProviderNetworkError.CONNECTIVITY,
            ) from e
        except httpx.TransportError as e:
            raise ProviderNetworkError(f"Network error: {e}") from e

        try:
            text = response.text
        except (UnicodeDecodeError, httpx.HTTPError) as e:
            logger.error(f"❌ Failed to read Teori API response ({response.status_code}): {e}")
            raise ProviderResponseError(
                f"Response read error: {e}", status=response.status_code
            ) from e

        if not response.is_success:
            raise ProviderApiError(
                f"{method} {url} failed: {response.status_code} {response.reason_phrase}",
                status=response.status_code,
                status_text=response.reason_phrase,
                body=text,
            )

        try:
            return json.loads(text)
        except ValueError as e:
            logger.error(f"❌ Malformed JSON from Teori API: {text[:500]}")
            raise ProviderResponseError(
                f"Invalid JSON in Teori response: {e}",
                status=response.status_code,
                status_text=response.reason_phrase,
                body=text,
            ) from e

    async def call(
        self,
        method: str,
        url: str,
        *,
        api_key: str,
        body: Optional[str] = None,
        max_retries: int = DEFAULT_RETRY_ATTEMPTS,
    ) -> Any:
        """
        Send a signed request, retrying transient failures with exponential backoff.

        Headers are rebuilt on every attempt; the signed payload itself does not change.
        Raises the last attempt's ProviderApiError when retries are exhausted.
        """
        max_retries = max(1, max_retries)
        for attempt in range(max_retries):
            logger.debug(f"Teori {method} {url} (attempt {attempt + 1}/{max_retries})")
            try:
                return await self._send(method, url, self._headers(body, api_key), body)
            except ProviderApiError as e:
                if not e.retryable:
                    logger.error(
                        f"❌ Teori API call failed (attempt {attempt + 1}/{max_retries}, "
                        f"not retryable): {e}"
                    )
                    raise
                if attempt == max_retries - 1:
                    logger.error(f"❌ Teori API call failed after {max_retries} attempts: {e}")
                    raise
                delay = self.backoff_base * (2**attempt)
                logger.warning(
                    f"🔄 Teori API call failed (attempt {attempt + 1}/{max_retries}), "
                    f"retrying in {delay:g}s: {e}"
                )
                await self.sleep(delay)

    async def get_order(self, settings: ProviderSettings, order_id: str) -> dict:
        url = f"{settings.api_url}{ORDERS_PATH}/{order_id}"
        return await self.call(
            "GET", url, api_key=settings.api_key, max_retries=settings.retry_attempts
        )

    async def create_order(self, settings: ProviderSettings, order: dict) -> dict:
        url = f"{settings.api_url}{ORDERS_PATH}"
        return await self.call(
            "POST",
            url,
            api_key=settings.api_key,
            body=json.dumps(order),
            max_retries=settings.retry_attempts,
        )
