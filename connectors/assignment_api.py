"""COA Assignment API Client.

HTTP client for the external assignment persistence API:

    GET  {base_url}/api/v1/coa/assignment/{organization_id}
    GET  {base_url}/api/v1/coa/assignment/{organization_id}/history
    POST {base_url}/api/v1/coa/assignment

Handles bearer auth headers, retries with exponential backoff, and maps
failures to AssignmentApiError. A 404 on a read means "nothing stored".
"""

from typing import Any, Dict, List, Optional, Tuple
from dataclasses import dataclass, field
from urllib.parse import quote
import json
import asyncio

import aiohttp
from pydantic import ValidationError

from core.audit.history import AssignmentPersistenceError, AssignmentRepository
from core.models.assignment import CoaAssignmentHistory, OrganizationCoaConfig
from core.observability.logging import get_logger

logger = get_logger(__name__)


class AssignmentApiError(AssignmentPersistenceError):
    """The assignment API failed or returned an unusable response."""
    def __init__(
        self,
        message: str,
        status_code: int = 0,
        response_body: str = "",
        organization_id: Optional[str] = None,
    ):
        super().__init__(message, organization_id)
        self.status_code = status_code
        self.response_body = response_body


class AssignmentNotFound(AssignmentApiError):
    """Resource not found (404)."""
    pass


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    max_retries: int = 3
    base_delay: float = 0.5  # seconds
    max_delay: float = 10.0  # seconds
    exponential_base: float = 2.0
    retry_on_status: Tuple[int, ...] = (429, 500, 502, 503, 504)

    def get_delay(self, attempt: int) -> float:
        """Calculate delay for retry attempt (exponential backoff)."""
        delay = self.base_delay * (self.exponential_base ** attempt)
        return min(delay, self.max_delay)


@dataclass
class AssignmentApiConfig:
    """Configuration for the assignment API client."""
    base_url: str
    api_prefix: str = "/api/v1/coa"
    token: Optional[str] = None
    timeout_seconds: float = 15.0
    retry_config: RetryConfig = field(default_factory=RetryConfig)

    def url(self, *parts: str) -> str:
        path = "/".join(quote(p, safe="") for p in parts)
        return f"{self.base_url.rstrip('/')}{self.api_prefix}/{path}"


def _unwrap(body: Any) -> Any:
    """Accept both bare payloads and {"data": payload} envelopes."""
    if isinstance(body, dict) and "data" in body:
        return body["data"]
    return body


class AssignmentApiClient(AssignmentRepository):
    """Assignment repository backed by the HTTP persistence API.

    Usage:
        client = AssignmentApiClient(AssignmentApiConfig(base_url="https://erp.example"))
        config = await client.get_assignment("org-1")
        await client.close()
    """

    def __init__(self, config: AssignmentApiConfig, session: Optional[aiohttp.ClientSession] = None):
        """Initialize API client.

        Args:
            config: API configuration
            session: Existing session to reuse (not closed by close())
        """
        self.config = config
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        """Close HTTP session."""
        if self._session and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    def _get_headers(self) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if self.config.token:
            headers["Authorization"] = f"Bearer {self.config.token}"
        return headers

    async def _request(
        self,
        method: str,
        url: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """Make an API request with automatic retries.

        Returns:
            Parsed response JSON (None for an empty body)

        Raises:
            AssignmentNotFound: 404
            AssignmentApiError: Any other failure
        """
        session = await self._get_session()
        retry_config = self.config.retry_config
        timeout = aiohttp.ClientTimeout(total=self.config.timeout_seconds)
        last_error: Optional[Exception] = None

        for attempt in range(retry_config.max_retries + 1):
            try:
                async with session.request(
                    method,
                    url,
                    headers=self._get_headers(),
                    json=data,
                    timeout=timeout,
                ) as response:
                    response_text = await response.text()

                    if response.status < 400:
                        if response.status == 204 or not response_text:
                            return None
                        try:
                            return json.loads(response_text)
                        except json.JSONDecodeError as e:
                            raise AssignmentApiError(
                                f"Invalid JSON from {url}: {e}", response.status, response_text
                            ) from e

                    if response.status == 404:
                        raise AssignmentNotFound(f"Resource not found: {url}", 404, response_text)

                    if response.status in retry_config.retry_on_status and attempt < retry_config.max_retries:
                        delay = retry_config.get_delay(attempt)
                        if response.status == 429 and "Retry-After" in response.headers:
                            try:
                                delay = min(float(response.headers["Retry-After"]), retry_config.max_delay)
                            except ValueError:
                                pass
                        logger.warning(
                            f"Request failed with {response.status}, "
                            f"retrying in {delay:.1f}s (attempt {attempt + 1}/{retry_config.max_retries})"
                        )
                        await asyncio.sleep(delay)
                        continue

                    raise AssignmentApiError(
                        f"API error {response.status}: {response_text}",
                        response.status,
                        response_text,
                    )

            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                last_error = e
                if attempt < retry_config.max_retries:
                    delay = retry_config.get_delay(attempt)
                    logger.warning(
                        f"Request failed with {type(e).__name__}: {e}, "
                        f"retrying in {delay:.1f}s"
                    )
                    await asyncio.sleep(delay)
                    continue
                raise AssignmentApiError(
                    f"Request failed after {retry_config.max_retries} retries: {e}"
                ) from e

        raise AssignmentApiError(f"Request failed: {last_error}")

    # -------------------------------------------------------------------------
    # Repository interface
    # -------------------------------------------------------------------------

    async def get_assignment(self, organization_id: str) -> Optional[OrganizationCoaConfig]:
        url = self.config.url("assignment", organization_id)
        try:
            body = _unwrap(await self._request("GET", url))
        except AssignmentNotFound:
            return None

        if not body:
            return None
        try:
            return OrganizationCoaConfig.model_validate(body)
        except ValidationError as e:
            raise AssignmentApiError(
                f"Unexpected assignment payload: {e}", organization_id=organization_id
            ) from e

    async def get_history(self, organization_id: str) -> List[CoaAssignmentHistory]:
        url = self.config.url("assignment", organization_id, "history")
        try:
            body = _unwrap(await self._request("GET", url))
        except AssignmentNotFound:
            return []

        if not body:
            return []
        if not isinstance(body, list):
            raise AssignmentApiError("History payload must be a list", organization_id=organization_id)
        try:
            return [CoaAssignmentHistory.model_validate(item) for item in body]
        except ValidationError as e:
            raise AssignmentApiError(
                f"Unexpected history payload: {e}", organization_id=organization_id
            ) from e

    async def save_assignment(
        self,
        config: OrganizationCoaConfig,
        history: CoaAssignmentHistory,
    ) -> OrganizationCoaConfig:
        url = self.config.url("assignment")
        payload = {
            "config": config.model_dump(mode="json"),
            "history": history.model_dump(mode="json"),
        }
        try:
            body = _unwrap(await self._request("POST", url, payload))
        except AssignmentApiError as e:
            e.organization_id = config.organization_id
            raise

        if not body:
            return config
        try:
            return OrganizationCoaConfig.model_validate(body)
        except ValidationError as e:
            raise AssignmentApiError(
                f"Unexpected assignment payload: {e}", organization_id=config.organization_id
            ) from e
