"""Mapping of remote work items onto local task fields."""

from typing import Dict, Iterable, Optional, Tuple

from timekeeper_sync.core.config import PROVIDER_CONFIGS
from timekeeper_sync.integrations.base import MappingError
from timekeeper_sync.models import Priority, RemoteWorkItem, Task, TaskFields, TaskStatus

# Work item type -> (priority, estimated minutes) for newly created tasks
WORK_ITEM_DEFAULTS: Dict[str, Tuple[Priority, int]] = {
    "bug": (Priority.HIGH, 120),
    "task": (Priority.MEDIUM, 240),
    "user story": (Priority.MEDIUM, 480),
    "feature": (Priority.LOW, 960),
}
DEFAULT_WORK_ITEM = (Priority.MEDIUM, 240)


def is_closed(state: Optional[str], closed_states: Iterable[str]) -> bool:
    if not state:
        return False
    return state.strip().lower() in {s.strip().lower() for s in closed_states}


def derive_status(
    state: Optional[str],
    existing: Optional[Task],
    closed_states: Iterable[str],
) -> Optional[TaskStatus]:
    """Local status for a remote state, or None to leave the status alone.

    Only closed versus not closed is distinguished. The status of an
    existing task is re-derived only when the remote state has changed
    since the last sync, so local edits survive unchanged remote data.
    """
    closed = is_closed(state, closed_states)
    if existing is None:
        return TaskStatus.COMPLETED if closed else TaskStatus.PENDING

    if existing.external_state == state:
        return None
    if closed:
        return TaskStatus.COMPLETED
    if existing.status == TaskStatus.COMPLETED:
        return None
    return TaskStatus.IN_PROGRESS


def map_work_item(
    provider: str,
    item: RemoteWorkItem,
    existing: Optional[Task],
    closed_states: Iterable[str],
) -> TaskFields:
    """Build the upsert fields for one remote work item.

    Raises:
        MappingError: the item has no identity or no title
    """
    if not item.external_id or not item.external_id.strip():
        raise MappingError(f"{provider} work item without an id")
    title = (item.title or "").strip()
    if not title:
        raise MappingError(f"{provider} work item {item.external_id} has no title")

    fields = TaskFields(
        title=title,
        description=item.description,
        status=derive_status(item.state, existing, closed_states),
        external_url=item.url,
        external_state=item.state,
    )

    if existing is None:
        work_item_type = (item.work_item_type or "").strip()
        priority, estimate = WORK_ITEM_DEFAULTS.get(work_item_type.lower(), DEFAULT_WORK_ITEM)
        provider_name = PROVIDER_CONFIGS.get(provider, {}).get("name", provider)

        fields.priority = priority
        fields.estimated_time_minutes = estimate
        fields.category = f"{provider_name} Integration"
        fields.tags = ",".join(tag for tag in (f"{provider}:{item.external_id}", work_item_type) if tag)

    return fields
