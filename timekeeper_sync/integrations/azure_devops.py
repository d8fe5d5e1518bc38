"""Azure DevOps adapter implementation."""

from typing import Dict, Any, List, Optional, AsyncIterator
from urllib.parse import quote
import base64
import logging

import httpx

from timekeeper_sync.integrations.base import (
    BaseProviderAdapter,
    ProviderError,
    ProviderErrorKind,
)
from timekeeper_sync.integrations.registry import AdapterRegistry
from timekeeper_sync.models import ProviderCredentials, ProviderType, RemoteWorkItem

logger = logging.getLogger(__name__)

WORK_ITEM_FIELDS = [
    "System.Id",
    "System.Title",
    "System.Description",
    "System.State",
    "System.WorkItemType",
]


@AdapterRegistry.register(ProviderType.AZURE_DEVOPS.value)
class AzureDevOpsAdapter(BaseProviderAdapter):
    """Azure Boards work items via the REST API, authenticated with a personal access token."""

    provider = ProviderType.AZURE_DEVOPS.value

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.api_version = self.config.get("api_version", "7.0")
        self.batch_size = self.config.get("batch_size", 200)
        self.excluded_states = self.config.get("excluded_states", ["Removed"])

    def auth_headers(self, credentials: ProviderCredentials) -> Dict[str, str]:
        # PATs go in the password half of basic auth with an empty user name
        encoded = base64.b64encode(f":{credentials.token}".encode()).decode()
        return {"Authorization": f"Basic {encoded}"}

    def check_response(self, response: httpx.Response) -> None:
        # A rejected PAT is answered with a sign-in page instead of a 401
        if response.status_code in (203, 302):
            raise ProviderError(
                ProviderErrorKind.AUTH,
                f"Authentication failed (HTTP {response.status_code} sign-in redirect)",
            )
        super().check_response(response)

    def validate_credentials(self, credentials: ProviderCredentials) -> None:
        super().validate_credentials(credentials)
        self.require_http_url(credentials.organization_url, self.provider)

    def _org_url(self, credentials: ProviderCredentials) -> str:
        return self.require_http_url(credentials.organization_url, self.provider)

    async def test_connection(self, credentials: ProviderCredentials) -> bool:
        """Test the connection by listing a single project."""
        self.validate_credentials(credentials)
        url = f"{self._org_url(credentials)}/_apis/projects?api-version={self.api_version}&$top=1"
        return await self.probe(url, credentials)

    async def fetch_projects(self, credentials: ProviderCredentials) -> List[str]:
        """List project names, following continuation tokens."""
        self.validate_credentials(credentials)
        url = f"{self._org_url(credentials)}/_apis/projects"

        names: List[str] = []
        continuation: Optional[str] = None
        while True:
            params: Dict[str, Any] = {"api-version": self.api_version}
            if continuation:
                params["continuationToken"] = continuation

            response = await self.make_api_request("GET", url, credentials, params=params)
            data = self.decode_json(response)
            names.extend(p["name"] for p in data.get("value", []) if p.get("name"))

            continuation = response.headers.get("x-ms-continuationtoken")
            if not continuation:
                break
        return names

    def build_wiql(self, project: Optional[str]) -> str:
        conditions = [f"[System.State] <> '{state}'" for state in self.excluded_states]
        if project:
            escaped = project.replace("'", "''")
            conditions.append(f"[System.TeamProject] = '{escaped}'")
        return (
            "SELECT [System.Id] FROM WorkItems "
            f"WHERE {' AND '.join(conditions)} "
            "ORDER BY [System.ChangedDate] DESC"
        )

    async def fetch_work_items(
        self,
        credentials: ProviderCredentials,
        project_filter: Optional[str] = None,
    ) -> AsyncIterator[RemoteWorkItem]:
        """Run a WIQL query, then fetch the matching work items in batches."""
        self.validate_credentials(credentials)
        org_url = self._org_url(credentials)
        project = project_filter or credentials.project_name

        scope = f"{org_url}/{quote(project)}" if project else org_url
        response = await self.make_api_request(
            "POST",
            f"{scope}/_apis/wit/wiql",
            credentials,
            params={"api-version": self.api_version, "$top": self.settings.max_work_items},
            json={"query": self.build_wiql(project)},
        )
        data = self.decode_json(response)
        ids = [ref["id"] for ref in data.get("workItems", []) if "id" in ref]
        ids = ids[: self.settings.max_work_items]

        for start in range(0, len(ids), self.batch_size):
            chunk = ids[start:start + self.batch_size]
            batch_response = await self.make_api_request(
                "POST",
                f"{org_url}/_apis/wit/workitemsbatch",
                credentials,
                params={"api-version": self.api_version},
                json={"ids": chunk, "fields": WORK_ITEM_FIELDS},
            )
            batch = self.decode_json(batch_response)
            for item in batch.get("value", []):
                yield self.to_work_item(item, org_url)

    @staticmethod
    def to_work_item(item: Dict[str, Any], org_url: str) -> RemoteWorkItem:
        fields = item.get("fields") or {}
        item_id = item.get("id", fields.get("System.Id"))
        return RemoteWorkItem(
            external_id=str(item_id) if item_id is not None else None,
            title=fields.get("System.Title"),
            description=fields.get("System.Description"),
            state=fields.get("System.State"),
            url=f"{org_url}/_workitems/edit/{item_id}" if item_id is not None else None,
            work_item_type=fields.get("System.WorkItemType"),
        )
