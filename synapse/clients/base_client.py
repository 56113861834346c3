"""
Shared plumbing for the Anthropic and Jira clients.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx

from synapse.core.exceptions import ExternalServiceError, RequestTimeoutError
from synapse.core.logging import get_logger
from synapse.core.retry import RetryPredicate, retry_async

logger = get_logger(__name__)


class BaseAPIClient(ABC):
    """
    Abstract base class for outbound API clients.
    Provides a lazily created httpx client, retries and error translation.
    """

    def __init__(
        self,
        base_url: str,
        timeout: int = 30,
        max_retries: int = 3,
        base_delay: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            base_url: Base URL of the service
            timeout: Request timeout in seconds
            max_retries: Maximum number of attempts per request
            base_delay: Delay before the first retry in seconds
            transport: Optional transport (used to fake the service in tests)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self.base_delay = base_delay
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    @abstractmethod
    def service_name(self) -> str:
        """Return the service name used in errors and logs."""
        ...

    @abstractmethod
    def _service_error(
        self, message: str, details: Optional[dict[str, Any]] = None
    ) -> ExternalServiceError:
        """Build the error raised when a request fails."""
        ...

    def _default_headers(self) -> dict[str, str]:
        return {"Content-Type": "application/json", "Accept": "application/json"}

    def _auth(self) -> Optional[httpx.Auth]:
        return None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout),
                headers=self._default_headers(),
                auth=self._auth(),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def _send(
        self,
        method: str,
        endpoint: str,
        data: Optional[dict[str, Any]] = None,
        params: Optional[dict[str, Any]] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> Any:
        client = await self._get_client()
        response = await client.request(
            method=method,
            url=endpoint,
            json=data,
            params=params,
            headers=headers,
        )
        response.raise_for_status()
        if not response.content:
            return {}
        return response.json()

    async def _request(
        self,
        method: str,
        endpoint: str,
        data: Optional[dict[str, Any]] = None,
        params: Optional[dict[str, Any]] = None,
        headers: Optional[dict[str, str]] = None,
        retry_on: Optional[RetryPredicate] = None,
    ) -> Any:
        """
        Send a JSON request, retrying 5xx, 429 and transport failures.

        Requests that are not safe to repeat pass a narrower retry_on.

        Raises:
            ExternalServiceError: If the request fails after retries
            RequestTimeoutError: If the request timed out
        """
        try:
            return await retry_async(
                self._send,
                method,
                endpoint,
                data=data,
                params=params,
                headers=headers,
                max_attempts=self.max_retries,
                base_delay=self.base_delay,
                retry_on=retry_on,
            )

        except httpx.HTTPStatusError as e:
            logger.error(
                "API request failed",
                service=self.service_name,
                endpoint=endpoint,
                status_code=e.response.status_code,
                response_text=e.response.text,
            )
            raise self._service_error(
                f"HTTP {e.response.status_code}: {e.response.text}",
                details={"endpoint": endpoint, "status_code": e.response.status_code},
            ) from e

        except httpx.TimeoutException as e:
            logger.error("API request timed out", service=self.service_name, endpoint=endpoint)
            raise RequestTimeoutError(
                f"{self.service_name} request timeout",
                details={"endpoint": endpoint},
            ) from e

        except httpx.RequestError as e:
            logger.error(
                "API request error",
                service=self.service_name,
                endpoint=endpoint,
                error=str(e),
            )
            raise self._service_error(
                f"Request failed: {str(e)}",
                details={"endpoint": endpoint},
            ) from e

    async def _get(
        self,
        endpoint: str,
        params: Optional[dict[str, Any]] = None,
    ) -> Any:
        return await self._request("GET", endpoint, params=params)

    async def _post(
        self,
        endpoint: str,
        data: Optional[dict[str, Any]] = None,
        headers: Optional[dict[str, str]] = None,
        retry_on: Optional[RetryPredicate] = None,
    ) -> Any:
        return await self._request("POST", endpoint, data=data, headers=headers, retry_on=retry_on)

    async def __aenter__(self) -> "BaseAPIClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()
