"""GitHub adapter implementation."""

from typing import Dict, Any, List, Optional, AsyncIterator
from urllib.parse import urlparse
import logging

import httpx

from timekeeper_sync.integrations.base import (
    BaseProviderAdapter,
    ConfigurationError,
    ProviderError,
    ProviderErrorKind,
)
from timekeeper_sync.integrations.registry import AdapterRegistry
from timekeeper_sync.models import ProviderCredentials, ProviderType, RemoteWorkItem

logger = logging.getLogger(__name__)


@AdapterRegistry.register(ProviderType.GITHUB.value)
class GitHubAdapter(BaseProviderAdapter):
    """GitHub issues via the REST API, authenticated with a personal access token."""

    provider = ProviderType.GITHUB.value

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.api_base_url = self.config.get("api_base_url", "https://api.github.com").rstrip("/")
        self.page_size = self.config.get("page_size", 100)

    def auth_headers(self, credentials: ProviderCredentials) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {credentials.token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }

    def check_response(self, response: httpx.Response) -> None:
        # GitHub signals an exhausted primary rate limit with 403, not 429
        if response.status_code == 403 and response.headers.get("X-RateLimit-Remaining") == "0":
            reset = response.headers.get("X-RateLimit-Reset")
            raise ProviderError(
                ProviderErrorKind.RATE_LIMITED,
                f"GitHub rate limit exhausted (resets at {reset})" if reset else "GitHub rate limit exhausted",
            )
        super().check_response(response)

    @staticmethod
    def owner_from_url(organization_url: str) -> str:
        """Extract the account name from ``https://github.com/<owner>`` or a bare ``<owner>``."""
        value = organization_url.strip().rstrip("/")
        if "://" in value:
            path = urlparse(value).path.strip("/")
            value = path.split("/")[0] if path else ""
        if not value or "/" in value:
            raise ConfigurationError(f"Cannot determine GitHub owner from {organization_url!r}")
        return value

    def validate_credentials(self, credentials: ProviderCredentials) -> None:
        super().validate_credentials(credentials)
        self.owner_from_url(credentials.organization_url)

    async def test_connection(self, credentials: ProviderCredentials) -> bool:
        """Test GitHub connection."""
        self.validate_credentials(credentials)
        return await self.probe(f"{self.api_base_url}/user", credentials)

    async def fetch_projects(self, credentials: ProviderCredentials) -> List[str]:
        """List repositories owned by the configured account."""
        self.validate_credentials(credentials)
        owner = self.owner_from_url(credentials.organization_url).lower()

        names = []
        async for repo in self._paginate(f"{self.api_base_url}/user/repos", credentials, {"sort": "updated"}):
            repo_owner = (repo.get("owner") or {}).get("login", "")
            if repo_owner.lower() == owner and repo.get("name"):
                names.append(repo["name"])
        return names

    async def fetch_work_items(
        self,
        credentials: ProviderCredentials,
        project_filter: Optional[str] = None,
    ) -> AsyncIterator[RemoteWorkItem]:
        """Yield issues for one repository, or issues assigned to the user across repositories."""
        self.validate_credentials(credentials)
        repository = project_filter or credentials.project_name

        if repository:
            owner = self.owner_from_url(credentials.organization_url)
            url = f"{self.api_base_url}/repos/{owner}/{repository}/issues"
            params = {"state": "all", "sort": "updated", "direction": "desc"}
        else:
            url = f"{self.api_base_url}/issues"
            params = {"filter": "assigned", "state": "all", "sort": "updated", "direction": "desc"}

        count = 0
        async for issue in self._paginate(url, credentials, params):
            # Pull requests appear in the issues endpoint too
            if "pull_request" in issue:
                continue

            yield self.to_work_item(issue)

            count += 1
            if count >= self.settings.max_work_items:
                logger.info(f"Stopped after {count} GitHub issues for {url}")
                break

    @staticmethod
    def to_work_item(issue: Dict[str, Any]) -> RemoteWorkItem:
        issue_id = issue.get("id")
        return RemoteWorkItem(
            external_id=str(issue_id) if issue_id is not None else None,
            title=issue.get("title"),
            description=issue.get("body"),
            state=issue.get("state"),
            url=issue.get("html_url"),
            work_item_type="Issue",
        )

    async def _paginate(
        self,
        url: str,
        credentials: ProviderCredentials,
        params: Optional[Dict[str, Any]] = None,
    ) -> AsyncIterator[Dict[str, Any]]:
        """Follow GitHub page numbers until the Link header has no next page."""
        page = 1
        while True:
            request_params = dict(params or {})
            request_params.update({"page": page, "per_page": self.page_size})

            response = await self.make_api_request("GET", url, credentials, params=request_params)
            data = self.decode_json(response)
            if not isinstance(data, list):
                raise ProviderError(ProviderErrorKind.UNKNOWN, f"Expected a list from {url}")

            for entry in data:
                yield entry if isinstance(entry, dict) else {}

            if "next" not in response.links or not data:
                break
            page += 1
