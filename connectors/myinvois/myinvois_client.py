"""MyInvois HTTP Client.

Low-level HTTP client for the MyInvois e-invoice API.
Handles authentication headers, retries and error handling.
"""

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import aiohttp

from core.observability.logging import get_logger

from connectors.myinvois.myinvois_auth import MyInvoisAuthProvider
from connectors.myinvois.myinvois_errors import (
    MyInvoisApiError,
    MyInvoisAuthenticationError,
    MyInvoisNotFoundError,
    MyInvoisRateLimitError,
    MyInvoisValidationError,
)

logger = get_logger(__name__)


SUBMISSIONS_PATH = "/api/v1.0/documentsubmissions"
DOCUMENT_DETAILS_PATH = "/api/v1.0/documents/{uuid}/details"
DOCUMENT_STATE_PATH = "/api/v1.0/documents/state/{uuid}/state"


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    max_retries: int = 3
    base_delay: float = 1.0  # seconds
    max_delay: float = 60.0  # seconds
    exponential_base: float = 2.0
    retry_on_status: Tuple[int, ...] = (429, 500, 502, 503, 504)

    def get_delay(self, attempt: int) -> float:
        """Calculate delay for retry attempt (exponential backoff)."""
        delay = self.base_delay * (self.exponential_base ** attempt)
        return min(delay, self.max_delay)


@dataclass
class MyInvoisApiConfig:
    """Configuration for the MyInvois API client."""
    base_url: str = "https://preprod-api.myinvois.hasil.gov.my"
    retry_config: RetryConfig = field(default_factory=RetryConfig)
    timeout_seconds: int = 30

    def url(self, path: str) -> str:
        return f"{self.base_url.rstrip('/')}{path}"


class MyInvoisApiClient:
    """HTTP client for the MyInvois API.

    Provides:
    - Authenticated API calls
    - Error handling and retries

    Usage:
        client = MyInvoisApiClient(auth_provider, api_config)
        await client.connect()
        response = await client.submit_documents([document])
    """

    def __init__(self, auth_provider: MyInvoisAuthProvider, api_config: MyInvoisApiConfig):
        self.auth_provider = auth_provider
        self.api_config = api_config
        self._session: Optional[aiohttp.ClientSession] = None

    async def connect(self) -> None:
        """Initialize HTTP session and authenticate."""
        if self._session is None:
            self._session = aiohttp.ClientSession()
        await self.auth_provider.ensure_valid_token()

    async def disconnect(self) -> None:
        """Close HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None

    async def _get_headers(self, force_refresh: bool = False) -> Dict[str, str]:
        token = await self.auth_provider.ensure_valid_token(force=force_refresh)
        return {
            "Authorization": token.authorization_header,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def _request(
        self,
        method: str,
        path: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Make an authenticated API request with automatic retries.

        Raises:
            MyInvoisAuthenticationError: Authentication failed
            MyInvoisNotFoundError: Resource not found
            MyInvoisRateLimitError: Rate limit exceeded
            MyInvoisValidationError: Validation error
            MyInvoisApiError: Other API errors
        """
        if self._session is None:
            await self.connect()

        url = self.api_config.url(path)
        retry_config = self.api_config.retry_config
        timeout = aiohttp.ClientTimeout(total=self.api_config.timeout_seconds)
        force_refresh = False

        for attempt in range(retry_config.max_retries + 1):
            headers = await self._get_headers(force_refresh)
            force_refresh = False

            try:
                async with self._session.request(
                    method,
                    url,
                    headers=headers,
                    json=data,
                    timeout=timeout,
                ) as response:
                    response_text = await response.text()
                    status = response.status
                    retry_after_header = response.headers.get("Retry-After")
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                if attempt < retry_config.max_retries:
                    delay = retry_config.get_delay(attempt)
                    logger.warning(
                        f"Request failed with {type(e).__name__}: {e}, retrying in {delay:.1f}s"
                    )
                    await asyncio.sleep(delay)
                    continue
                raise MyInvoisApiError(
                    f"Request failed after {retry_config.max_retries} retries: {e}"
                ) from e

            if status < 400:
                if status == 204 or not response_text:
                    return {}
                return json.loads(response_text)

            if status in (401, 403):
                if attempt == 0:
                    logger.warning("Got 401/403, attempting token refresh...")
                    force_refresh = True
                    continue
                raise MyInvoisAuthenticationError(
                    f"Authentication failed: {response_text}", status, response_text
                )

            if status == 404:
                raise MyInvoisNotFoundError(f"Resource not found: {url}", status, response_text)

            if status == 429:
                retry_after = int(retry_after_header or 60)
                if attempt < retry_config.max_retries:
                    logger.warning(f"Rate limited, waiting {retry_after}s...")
                    await asyncio.sleep(retry_after)
                    continue
                raise MyInvoisRateLimitError("Rate limit exceeded", retry_after)

            if status in (400, 422):
                raise MyInvoisValidationError(
                    f"Validation error: {response_text}", status, response_text
                )

            if status in retry_config.retry_on_status and attempt < retry_config.max_retries:
                delay = retry_config.get_delay(attempt)
                logger.warning(
                    f"Request failed with {status}, "
                    f"retrying in {delay:.1f}s (attempt {attempt + 1}/{retry_config.max_retries})"
                )
                await asyncio.sleep(delay)
                continue

            raise MyInvoisApiError(f"API error {status}: {response_text}", status, response_text)

        raise MyInvoisApiError(f"Request to {url} failed after {retry_config.max_retries} retries")

    # =========================================================================
    # Endpoints
    # =========================================================================

    async def submit_documents(self, documents: List[Dict[str, Any]]) -> Dict[str, Any]:
        """POST a batch of encoded documents."""
        return await self._request("POST", SUBMISSIONS_PATH, data={"documents": documents})

    async def get_submission(self, submission_uid: str) -> Dict[str, Any]:
        """GET the processing summary of a submission."""
        return await self._request("GET", f"{SUBMISSIONS_PATH}/{submission_uid}")

    async def get_document_details(self, document_uuid: str) -> Dict[str, Any]:
        """GET validation details of one document."""
        return await self._request("GET", DOCUMENT_DETAILS_PATH.format(uuid=document_uuid))

    async def cancel_document(self, document_uuid: str, reason: str) -> Dict[str, Any]:
        """PUT the cancelled state on a document."""
        return await self._request(
            "PUT",
            DOCUMENT_STATE_PATH.format(uuid=document_uuid),
            data={"status": "cancelled", "reason": reason},
        )
