import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple
from urllib.parse import urljoin, urlparse

import aiohttp

from pmpulse.core.config import Settings, settings as default_settings
from pmpulse.core.error_handler import (
    ConnectionNotConfiguredError,
    PermanentApiError,
    TransientApiError,
)
from pmpulse.core.retry import RetryConfig, SlidingWindowRateLimiter, call_with_retry
from pmpulse.core.security import CredentialDecryptionError, EncryptionKeyError, decrypt_secret
from pmpulse.models.appfolio_connection import AppfolioConnection

logger = logging.getLogger(__name__)

# Resource type -> Reports API V2 report name
RESOURCE_ENDPOINTS = {
    "properties": "property_directory",
    "units": "unit_directory",
    "vendors": "vendor_directory",
    "work_orders": "work_order",
    "expenses": "expense_register",
}


@dataclass
class ApiPage:
    """One page of an AppFolio report"""
    records: List[Dict[str, Any]] = field(default_factory=list)
    next_page_url: Optional[str] = None
    page_url: Optional[str] = None

    @property
    def has_more(self) -> bool:
        return bool(self.next_page_url)


class AppfolioClient:
    """Client for the AppFolio Reports API V2"""

    def __init__(
        self,
        connection: AppfolioConnection,
        settings: Settings = None,
        rate_limiter: Optional[SlidingWindowRateLimiter] = None,
        retry_config: Optional[RetryConfig] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.connection = connection
        self.settings = settings or default_settings
        self.rate_limiter = rate_limiter or SlidingWindowRateLimiter(
            max_requests=self.settings.RATE_LIMIT_REQUESTS_PER_MINUTE,
            window_seconds=60.0,
        )
        self.retry_config = retry_config or RetryConfig.from_settings(self.settings)
        self._sleep = sleep
        self._session: Optional[aiohttp.ClientSession] = None

    @property
    def base_url(self) -> str:
        return f"https://{self.connection.database}.{self.settings.APPFOLIO_HOST_SUFFIX}"

    def is_configured(self) -> bool:
        return self.connection is not None and self.connection.is_configured()

    def endpoint_url(self, resource_type: str) -> str:
        try:
            report = RESOURCE_ENDPOINTS[resource_type]
        except KeyError:
            raise ValueError(f"Unknown resource type: {resource_type}")
        return f"{self.base_url}/api/v2/reports/{report}.json"

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()
        return False

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.settings.APPFOLIO_REQUEST_TIMEOUT_SECONDS)
            self._session = aiohttp.ClientSession(
                timeout=timeout,
                headers={
                    "Accept": "application/json",
                    "User-Agent": self.settings.APPFOLIO_USER_AGENT,
                },
            )
        return self._session

    def _basic_auth(self) -> aiohttp.BasicAuth:
        # Decrypted only for this call; never stored on the client or logged
        try:
            secret = decrypt_secret(self.connection.client_secret_encrypted)
        except (CredentialDecryptionError, EncryptionKeyError) as e:
            raise ConnectionNotConfiguredError(f"AppFolio credentials are unusable: {str(e)}") from e
        return aiohttp.BasicAuth(self.connection.client_id, secret or "")

    def resolve_page_url(self, page_url: str) -> str:
        """Absolute URL for a next_page_url; only the connection's own host is followed"""
        url = urljoin(self.base_url, page_url)
        base = urlparse(self.base_url)
        target = urlparse(url)
        if (target.scheme, target.netloc) != (base.scheme, base.netloc):
            raise PermanentApiError(f"Refusing to follow next_page_url to {target.scheme}://{target.netloc}")
        return url

    async def _post(self, url: str, payload: Dict[str, Any]) -> Tuple[int, Dict[str, str], str]:
        """Issue one POST and return (status, headers, body text)"""
        auth = self._basic_auth()
        session = self._get_session()
        async with session.post(url, json=payload, auth=auth) as response:
            body = await response.text()
            return response.status, dict(response.headers), body

    async def _request(self, url: str, payload: Dict[str, Any]) -> Any:
        """Single attempt: classify the response into data or a typed error"""
        start_time = time.time()
        try:
            status, headers, body = await self._post(url, payload)
        except asyncio.TimeoutError as e:
            raise TransientApiError(f"Request to {url} timed out") from e
        except aiohttp.ClientError as e:
            raise TransientApiError(f"Connection error for {url}: {str(e)}") from e

        duration = int((time.time() - start_time) * 1000)
        logger.debug(f"POST {url} -> {status} ({duration}ms)")

        if status == 429:
            raise TransientApiError(
                "AppFolio rate limit exceeded",
                status_code=429,
                retry_after=_parse_retry_after(headers),
            )
        if status >= 500:
            raise TransientApiError(f"AppFolio server error: {status}", status_code=status)
        if status >= 400:
            raise PermanentApiError(
                f"AppFolio request failed: {status} - {body[:200]}",
                status_code=status,
            )

        try:
            return json.loads(body) if body else {}
        except ValueError as e:
            raise PermanentApiError(f"Malformed JSON from AppFolio ({url})", status_code=status) from e

    async def fetch_page(
        self,
        resource_type: str,
        params: Optional[Dict[str, Any]] = None,
        page_url: Optional[str] = None,
    ) -> ApiPage:
        """
        Fetch one page of a report.

        The first page is requested with the report parameters; later pages follow
        next_page_url with an empty body.
        """
        if not self.is_configured():
            raise ConnectionNotConfiguredError("AppFolio connection is not configured")

        if page_url:
            url = self.resolve_page_url(page_url)
            payload: Dict[str, Any] = {}
        else:
            url = self.endpoint_url(resource_type)
            payload = {
                "paginate_results": True,
                "per_page": self.settings.SYNC_BATCH_SIZE,
            }
            payload.update(params or {})

        data = await call_with_retry(
            self._request,
            url,
            payload,
            config=self.retry_config,
            rate_limiter=self.rate_limiter,
            sleep=self._sleep,
            operation=f"fetch {resource_type}",
        )

        if isinstance(data, list):
            return ApiPage(records=data, next_page_url=None, page_url=url)
        if not isinstance(data, dict):
            raise PermanentApiError(f"Unexpected response shape for {resource_type}")

        records = data.get("results") or []
        return ApiPage(records=records, next_page_url=data.get("next_page_url") or None, page_url=url)

    async def test_connection(self) -> Tuple[bool, str]:
        """Minimal property directory request to validate credentials"""
        try:
            await self.fetch_page("properties", {"per_page": 1})
            return True, "Connection successful"
        except PermanentApiError as e:
            logger.error(f"AppFolio connection test failed: {str(e)}")
            return False, str(e)


def _parse_retry_after(headers: Dict[str, str]) -> Optional[float]:
    for key, value in headers.items():
        if key.lower() == "retry-after":
            try:
                return float(value)
            except (TypeError, ValueError):
                return None
    return None
