"""Local task store that receives synced work items."""

from typing import List, Optional
import logging

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, OperationalError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from timekeeper_sync.core.database import Database
from timekeeper_sync.models import Task, TaskFields, TaskUpsert, UpsertResult
from timekeeper_sync.models.tables import TaskRow

logger = logging.getLogger(__name__)


class TaskRepository:
    """Tasks keyed by their (provider, external id) reference."""

    def __init__(self, db: Database):
        self.db = db

    @staticmethod
    def _column_values(fields: TaskFields) -> dict:
        """Fields to write, as column values. None means leave the column alone."""
        values = fields.model_dump(exclude_none=True)
        for key in ("status", "priority"):
            if key in values:
                values[key] = values[key].value
        return values

    # A concurrent insert of the same reference loses on the unique constraint;
    # the retry then finds the row and updates it
    @retry(
        retry=retry_if_exception_type((OperationalError, IntegrityError)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
        reraise=True,
    )
    async def upsert_by_external_reference(
        self,
        provider: str,
        external_id: str,
        fields: TaskFields,
    ) -> TaskUpsert:
        """Create or update the task mirroring one remote work item.

        Writing is skipped entirely when every provided field already
        matches, so repeated calls with identical fields are no-ops.
        """
        values = self._column_values(fields)

        async with self.db.session() as session:
            result = await session.execute(
                select(TaskRow).where(
                    TaskRow.external_provider == provider,
                    TaskRow.external_id == external_id,
                )
            )
            row = result.scalar_one_or_none()

            if row is None:
                row = TaskRow(external_provider=provider, external_id=external_id, **values)
                session.add(row)
                await session.flush()
                logger.debug(f"Created task {row.id} for {provider}:{external_id}")
                return TaskUpsert(task_id=row.id, result=UpsertResult.CREATED)

            changed = {key: value for key, value in values.items() if getattr(row, key) != value}
            if not changed:
                return TaskUpsert(task_id=row.id, result=UpsertResult.UNCHANGED)

            for key, value in changed.items():
                setattr(row, key, value)
            await session.flush()
            logger.debug(f"Updated task {row.id} for {provider}:{external_id}: {sorted(changed)}")
            return TaskUpsert(task_id=row.id, result=UpsertResult.UPDATED)

    async def get_by_external_reference(self, provider: str, external_id: str) -> Optional[Task]:
        async with self.db.session() as session:
            result = await session.execute(
                select(TaskRow).where(
                    TaskRow.external_provider == provider,
                    TaskRow.external_id == external_id,
                )
            )
            row = result.scalar_one_or_none()
            return Task.model_validate(row) if row else None

    async def list_tasks(self, provider: Optional[str] = None) -> List[Task]:
        """List tasks, optionally only those mirrored from one provider."""
        statement = select(TaskRow)
        if provider:
            statement = statement.where(TaskRow.external_provider == provider)

        async with self.db.session() as session:
            result = await session.execute(statement.order_by(TaskRow.created_at, TaskRow.id))
            return [Task.model_validate(row) for row in result.scalars().all()]

    async def count(self, provider: Optional[str] = None) -> int:
        statement = select(func.count()).select_from(TaskRow)
        if provider:
            statement = statement.where(TaskRow.external_provider == provider)

        async with self.db.session() as session:
            result = await session.execute(statement)
            return result.scalar_one()
