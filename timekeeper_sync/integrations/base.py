"""Base provider adapter and error types."""

from abc import ABC, abstractmethod
from typing import Optional, Dict, Any, List, AsyncIterator
from enum import Enum
from urllib.parse import urlparse
import logging
import httpx

from timekeeper_sync.core.config import Settings, get_settings, PROVIDER_CONFIGS
from timekeeper_sync.models import ProviderCredentials, RemoteWorkItem


logger = logging.getLogger(__name__)


class IntegrationError(Exception):
    """Base integration error."""
    pass


class ConfigurationError(IntegrationError):
    """Missing or invalid integration configuration. Needs operator correction."""
    pass


class MappingError(IntegrationError):
    """A remote work item could not be mapped to a local task."""
    pass


class IntegrationNotFoundError(IntegrationError):
    """No integration with the requested id."""
    pass


class IntegrationBusyError(IntegrationError):
    """The integration has a sync pass running."""
    pass


class ProviderErrorKind(str, Enum):
    """Failure categories reported by provider adapters."""
    AUTH = "auth"
    NETWORK = "network"
    RATE_LIMITED = "rate_limited"
    UNKNOWN = "unknown"


class ProviderError(IntegrationError):
    """A provider call failed."""

    def __init__(self, kind: ProviderErrorKind, message: str):
        super().__init__(message)
        self.kind = kind
        self.message = message

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.message}"


class ProviderTimeoutError(ProviderError):
    """The HTTP client gave up waiting on the provider."""

    def __init__(self, message: str):
        super().__init__(ProviderErrorKind.NETWORK, message)


class BaseProviderAdapter(ABC):
    """Base class for all provider adapters.

    Adapters hold no credentials of their own; every call receives the
    credential bundle of the integration being served.
    """

    provider: str = ""

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.config: Dict[str, Any] = PROVIDER_CONFIGS.get(self.provider, {})
        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(
            timeout=self.settings.http_timeout_seconds,
            headers={"User-Agent": f"{self.settings.service_name}/1.0"},
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self.http_client.aclose()

    # Abstract methods that must be implemented

    @abstractmethod
    async def test_connection(self, credentials: ProviderCredentials) -> bool:
        """Check that the credentials authenticate against the provider."""
        pass

    @abstractmethod
    def fetch_work_items(
        self,
        credentials: ProviderCredentials,
        project_filter: Optional[str] = None,
    ) -> AsyncIterator[RemoteWorkItem]:
        """Yield the provider's work items, normalized."""
        pass

    @abstractmethod
    async def fetch_projects(self, credentials: ProviderCredentials) -> List[str]:
        """List project (or repository) names visible to the credentials."""
        pass

    @abstractmethod
    def auth_headers(self, credentials: ProviderCredentials) -> Dict[str, str]:
        """Headers that authenticate a request."""
        pass

    # Common utility methods

    def validate_credentials(self, credentials: ProviderCredentials) -> None:
        """Reject credential bundles that cannot possibly work.

        Raises:
            ConfigurationError: empty token or unusable organization URL
        """
        if not credentials.token.strip():
            raise ConfigurationError(f"{self.provider} personal access token is empty")
        if not credentials.organization_url.strip():
            raise ConfigurationError(f"{self.provider} organization URL is empty")

    @staticmethod
    def require_http_url(url: str, provider: str) -> str:
        parsed = urlparse(url.strip())
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ConfigurationError(f"{provider} organization URL must be an http(s) URL: {url!r}")
        return url.strip().rstrip("/")

    def check_response(self, response: httpx.Response) -> None:
        """Translate an HTTP response into a ProviderError when it failed."""
        status = response.status_code
        if status < 400:
            return
        if status == 429:
            retry_after = response.headers.get("Retry-After")
            suffix = f" (retry after {retry_after}s)" if retry_after else ""
            raise ProviderError(ProviderErrorKind.RATE_LIMITED, f"Rate limit exceeded{suffix}")
        if status in (401, 403):
            raise ProviderError(ProviderErrorKind.AUTH, f"Authentication failed with HTTP {status}")
        raise ProviderError(
            ProviderErrorKind.UNKNOWN,
            f"{response.request.method} {response.request.url} failed with HTTP {status}",
        )

    async def make_api_request(
        self,
        method: str,
        url: str,
        credentials: ProviderCredentials,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Any] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        """Make an authenticated API request and classify failures."""
        request_headers = {"Accept": "application/json"}
        request_headers.update(self.auth_headers(credentials))
        if headers:
            request_headers.update(headers)

        try:
            response = await self.http_client.request(
                method=method,
                url=url,
                headers=request_headers,
                params=params,
                json=json,
            )
        except httpx.TimeoutException as e:
            raise ProviderTimeoutError(f"{method} {url} timed out: {e}") from e
        except httpx.HTTPError as e:
            logger.warning(f"{self.provider} request {method} {url} failed: {e}")
            raise ProviderError(ProviderErrorKind.NETWORK, f"{method} {url} failed: {e}") from e

        self.check_response(response)
        return response

    async def probe(self, url: str, credentials: ProviderCredentials) -> bool:
        """GET ``url`` and report whether the credentials were accepted.

        Rejected credentials are an answer, not an error; anything else that
        goes wrong still raises.
        """
        try:
            await self.make_api_request("GET", url, credentials)
        except ProviderError as e:
            if e.kind == ProviderErrorKind.AUTH:
                logger.info(f"{self.provider} rejected credentials for {credentials.organization_url}")
                return False
            raise
        return True

    @staticmethod
    def decode_json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise ProviderError(
                ProviderErrorKind.UNKNOWN,
                f"Invalid JSON from {response.request.url}: {e}",
            ) from e
