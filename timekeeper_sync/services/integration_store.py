"""Persistence for provider integration records."""

from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Union
import logging

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import OperationalError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from timekeeper_sync.core.config import Settings, get_settings
from timekeeper_sync.core.database import Database
from timekeeper_sync.integrations.base import ConfigurationError
from timekeeper_sync.models import FailureKind, ProviderIntegration
from timekeeper_sync.models.tables import ProviderIntegrationRow
from timekeeper_sync.utils.crypto import InvalidToken, decrypt_token, encrypt_token
from timekeeper_sync.utils.time import utcnow

logger = logging.getLogger(__name__)

ENCRYPTED_PREFIX = "fernet:"

# sqlite reports "database is locked" as an OperationalError
write_retry = retry(
    retry=retry_if_exception_type(OperationalError),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
    reraise=True,
)


class IntegrationRepository:
    """CRUD and scheduling queries over ``provider_integrations``.

    Pure storage: no policy beyond the query semantics. Tokens are Fernet
    encrypted at rest when an encryption key is configured.
    """

    def __init__(self, db: Database, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or get_settings()
        if not self.settings.encryption_key:
            logger.info("No encryption key configured; personal access tokens are stored in plain text")

    # Token handling

    def _encode_token(self, token: str) -> str:
        if not self.settings.encryption_key:
            return token
        return ENCRYPTED_PREFIX + encrypt_token(
            token, self.settings.encryption_key, self.settings.encryption_salt
        )

    def _decode_token(self, stored: str, integration_id: str) -> str:
        if not stored.startswith(ENCRYPTED_PREFIX):
            return stored
        if not self.settings.encryption_key:
            raise ConfigurationError(
                f"Token of integration {integration_id} is encrypted but no encryption key is configured"
            )
        try:
            return decrypt_token(
                stored[len(ENCRYPTED_PREFIX):],
                self.settings.encryption_key,
                self.settings.encryption_salt,
            )
        except InvalidToken as e:
            raise ConfigurationError(
                f"Token of integration {integration_id} cannot be decrypted with the configured key"
            ) from e

    def _to_model(self, row: ProviderIntegrationRow) -> ProviderIntegration:
        return ProviderIntegration(
            id=row.id,
            provider=row.provider,
            organization_url=row.organization_url,
            personal_access_token=self._decode_token(row.personal_access_token, row.id),
            project_name=row.project_name,
            is_active=row.is_active,
            last_sync_at=row.last_sync_at,
            last_failure_at=row.last_failure_at,
            last_failure_kind=row.last_failure_kind,
            last_failure_reason=row.last_failure_reason,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    async def _fetch(self, statement) -> List[ProviderIntegration]:
        async with self.db.session() as session:
            result = await session.execute(statement)
            return [self._to_model(row) for row in result.scalars().all()]

    # CRUD

    async def get_by_id(self, integration_id: str) -> Optional[ProviderIntegration]:
        """Get an integration by id, or None when it does not exist."""
        async with self.db.session() as session:
            row = await session.get(ProviderIntegrationRow, integration_id)
            return self._to_model(row) if row else None

    async def get_all(self) -> List[ProviderIntegration]:
        return await self._fetch(
            select(ProviderIntegrationRow).order_by(ProviderIntegrationRow.created_at)
        )

    @write_retry
    async def add(self, integration: ProviderIntegration) -> ProviderIntegration:
        """Insert a new integration and return it with its generated id."""
        row = ProviderIntegrationRow(
            provider=integration.provider,
            organization_url=integration.organization_url,
            personal_access_token=self._encode_token(integration.personal_access_token.get_secret_value()),
            project_name=integration.project_name,
            is_active=integration.is_active,
            last_sync_at=integration.last_sync_at,
        )
        if integration.id:
            row.id = integration.id

        async with self.db.session() as session:
            session.add(row)
            await session.flush()
            await session.refresh(row)
            created = self._to_model(row)

        logger.info(f"Created integration {created.id} for provider {created.provider}")
        return created

    @write_retry
    async def update(self, integration: ProviderIntegration) -> Optional[ProviderIntegration]:
        """Overwrite the mutable fields of an existing integration."""
        async with self.db.session() as session:
            row = await session.get(ProviderIntegrationRow, integration.id)
            if row is None:
                return None

            row.provider = integration.provider
            row.organization_url = integration.organization_url
            row.personal_access_token = self._encode_token(integration.personal_access_token.get_secret_value())
            row.project_name = integration.project_name
            row.is_active = integration.is_active
            row.last_sync_at = integration.last_sync_at
            row.last_failure_at = integration.last_failure_at
            row.last_failure_kind = integration.last_failure_kind
            row.last_failure_reason = integration.last_failure_reason

            await session.flush()
            await session.refresh(row)
            return self._to_model(row)

    @write_retry
    async def delete(self, integration_id: str) -> bool:
        async with self.db.session() as session:
            result = await session.execute(
                delete(ProviderIntegrationRow).where(ProviderIntegrationRow.id == integration_id)
            )
        if result.rowcount:
            logger.info(f"Deleted integration {integration_id}")
            return True
        return False

    # Provider-scoped queries

    async def get_by_provider(self, provider: str) -> List[ProviderIntegration]:
        return await self._fetch(
            select(ProviderIntegrationRow)
            .where(ProviderIntegrationRow.provider == provider)
            .order_by(ProviderIntegrationRow.created_at)
        )

    async def get_active_by_provider(self, provider: str) -> List[ProviderIntegration]:
        return await self.get_all_active(provider)

    async def get_all_active(self, provider: Optional[str] = None) -> List[ProviderIntegration]:
        statement = select(ProviderIntegrationRow).where(ProviderIntegrationRow.is_active.is_(True))
        if provider:
            statement = statement.where(ProviderIntegrationRow.provider == provider)
        return await self._fetch(statement.order_by(ProviderIntegrationRow.created_at))

    async def get_active_count_by_provider(self, provider: str) -> int:
        async with self.db.session() as session:
            result = await session.execute(
                select(func.count())
                .select_from(ProviderIntegrationRow)
                .where(
                    ProviderIntegrationRow.is_active.is_(True),
                    ProviderIntegrationRow.provider == provider,
                )
            )
            return result.scalar_one()

    async def get_active_count_by_all_providers(self) -> Dict[str, int]:
        async with self.db.session() as session:
            result = await session.execute(
                select(ProviderIntegrationRow.provider, func.count())
                .where(ProviderIntegrationRow.is_active.is_(True))
                .group_by(ProviderIntegrationRow.provider)
            )
            return {provider: count for provider, count in result.all()}

    # Administrative state changes

    async def _set_active(self, condition, is_active: bool) -> int:
        async with self.db.session() as session:
            result = await session.execute(
                update(ProviderIntegrationRow)
                .where(condition)
                .values(is_active=is_active, updated_at=utcnow())
            )
            return result.rowcount

    @write_retry
    async def activate(self, integration_id: str) -> bool:
        return await self._set_active(ProviderIntegrationRow.id == integration_id, True) > 0

    @write_retry
    async def deactivate(self, integration_id: str) -> bool:
        return await self._set_active(ProviderIntegrationRow.id == integration_id, False) > 0

    @write_retry
    async def deactivate_by_provider(self, provider: str) -> int:
        count = await self._set_active(
            (ProviderIntegrationRow.provider == provider) & ProviderIntegrationRow.is_active.is_(True),
            False,
        )
        logger.info(f"Deactivated {count} {provider} integrations")
        return count

    @write_retry
    async def deactivate_all(self) -> int:
        count = await self._set_active(ProviderIntegrationRow.is_active.is_(True), False)
        logger.info(f"Deactivated {count} integrations")
        return count

    # Sync bookkeeping

    async def update_last_sync(self, integration_id: str, synced_at: datetime) -> bool:
        """Stamp one successful sync and clear any recorded failure."""
        return await self.update_last_sync_bulk([integration_id], synced_at) > 0

    @write_retry
    async def update_last_sync_bulk(self, integration_ids: Iterable[str], synced_at: datetime) -> int:
        """Stamp many successful syncs in a single UPDATE statement."""
        ids = list(dict.fromkeys(integration_ids))
        if not ids:
            return 0

        async with self.db.session() as session:
            result = await session.execute(
                update(ProviderIntegrationRow)
                .where(ProviderIntegrationRow.id.in_(ids))
                .values(
                    last_sync_at=synced_at,
                    last_failure_at=None,
                    last_failure_kind=None,
                    last_failure_reason=None,
                    updated_at=utcnow(),
                )
            )
            return result.rowcount

    @write_retry
    async def record_failure(
        self,
        integration_id: str,
        failed_at: datetime,
        kind: Union[FailureKind, str],
        reason: str,
    ) -> bool:
        kind_value = kind.value if isinstance(kind, FailureKind) else kind
        async with self.db.session() as session:
            result = await session.execute(
                update(ProviderIntegrationRow)
                .where(ProviderIntegrationRow.id == integration_id)
                .values(
                    last_failure_at=failed_at,
                    last_failure_kind=kind_value,
                    last_failure_reason=reason,
                    updated_at=utcnow(),
                )
            )
            return result.rowcount > 0

    async def get_due_for_sync(
        self,
        max_age: Optional[timedelta] = None,
        provider: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> List[ProviderIntegration]:
        """Active integrations never synced or last synced before ``now - max_age``.

        Integrations whose last failure was a configuration error are left
        out until their credentials are updated. Never-synced integrations
        come first, then the oldest sync.
        """
        if max_age is None:
            max_age = timedelta(seconds=self.settings.default_max_age_seconds)
        cutoff = (now or utcnow()) - max_age

        column = ProviderIntegrationRow.last_sync_at
        failure_kind = ProviderIntegrationRow.last_failure_kind
        statement = select(ProviderIntegrationRow).where(
            ProviderIntegrationRow.is_active.is_(True),
            or_(failure_kind.is_(None), failure_kind != FailureKind.CONFIGURATION.value),
            or_(column.is_(None), column < cutoff),
        )
        if provider:
            statement = statement.where(ProviderIntegrationRow.provider == provider)

        return await self._fetch(
            statement.order_by(column.is_not(None), column, ProviderIntegrationRow.created_at)
        )

    async def get_recently_failed(
        self,
        window: Optional[timedelta] = None,
        now: Optional[datetime] = None,
    ) -> List[ProviderIntegration]:
        """Integrations whose last failure is inside ``window`` and was not followed by a success."""
        if window is None:
            window = timedelta(seconds=self.settings.recently_failed_window_seconds)
        since = (now or utcnow()) - window

        row = ProviderIntegrationRow
        return await self._fetch(
            select(row)
            .where(
                row.last_failure_at.is_not(None),
                row.last_failure_at >= since,
                or_(row.last_sync_at.is_(None), row.last_sync_at < row.last_failure_at),
            )
            .order_by(row.last_failure_at.desc())
        )
