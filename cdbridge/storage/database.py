"""
Database manager for persistent storage.
"""
import asyncio
from datetime import datetime
from pathlib import Path
from typing import Optional, List
from sqlalchemy import select, delete
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from ..errors import MappingNotFound, SetupIntentNotFound, SetupIntentExpired
from ..logger import get_logger
from .models import Base, InstallationMapping, SetupIntent, utcnow, valid_installation_id


logger = get_logger("storage")


def provider_key(provider) -> str:
    """Column value for a provider given as a GitProvider or a plain string."""
    return str(getattr(provider, "value", provider)).strip().lower()


class DatabaseManager:
    """Manages installation mappings and setup intents."""

    def __init__(self, database_url: str = "sqlite+aiosqlite:///./data/cdbridge.db"):
        """
        Initialize database manager.

        Args:
            database_url: SQLAlchemy database URL
        """
        self.database_url = database_url
        self.engine = create_async_engine(database_url, echo=False)
        self.session_factory = async_sessionmaker(
            self.engine, class_=AsyncSession, expire_on_commit=False
        )
        # Serializes promotions within this process; the rowcount check covers the rest.
        self._promote_lock = asyncio.Lock()

    async def init_db(self):
        """Initialize database tables and drop setup intents that already expired."""
        database = make_url(self.database_url).database
        if database and database != ":memory:":
            Path(database).parent.mkdir(parents=True, exist_ok=True)

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        purged = await self.purge_expired_intents()
        if purged:
            logger.info(f"Removed {purged} expired setup intents")

    async def close(self):
        """Close database connections."""
        await self.engine.dispose()

    # Setup intent operations

    async def create_setup_intent(self, intent: SetupIntent) -> SetupIntent:
        """Store a new setup intent."""
        async with self.session_factory() as session:
            session.add(intent)
            await session.commit()
            return intent

    async def get_setup_intent(self, state: str) -> Optional[SetupIntent]:
        """Get setup intent by state token."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(SetupIntent).where(SetupIntent.state == state.strip())
            )
            return result.scalar_one_or_none()

    async def delete_setup_intent(self, state: str) -> bool:
        """Delete setup intent. Returns False if nothing was deleted."""
        async with self.session_factory() as session:
            result = await session.execute(
                delete(SetupIntent).where(SetupIntent.state == state.strip())
            )
            await session.commit()
            return result.rowcount > 0

    async def purge_expired_intents(self, now: Optional[datetime] = None) -> int:
        """Delete every setup intent whose expiry has passed."""
        now = now or utcnow()
        async with self.session_factory() as session:
            result = await session.execute(
                delete(SetupIntent).where(SetupIntent.expires_at <= now)
            )
            await session.commit()
            return result.rowcount

    async def promote_setup_intent(
        self,
        state: str,
        installation_id: int,
        now: Optional[datetime] = None,
    ) -> InstallationMapping:
        """
        Consume a setup intent and turn it into an enabled installation mapping.

        The intent is deleted and the mapping upserted in one transaction; the
        delete must remove exactly one row, so a concurrent duplicate callback
        for the same state sees SetupIntentNotFound. The mapping is keyed by
        the provider recorded on the intent.

        Args:
            state: Setup state token
            installation_id: Provider installation/project id
            now: Current UTC time (naive)

        Returns:
            The stored mapping

        Raises:
            SetupIntentNotFound: If the state is unknown or already consumed
            SetupIntentExpired: If the intent expired (it is deleted)
        """
        now = now or utcnow()
        state = state.strip()
        expired = False

        async with self._promote_lock, self.session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    select(SetupIntent).where(SetupIntent.state == state)
                )
                intent = result.scalar_one_or_none()
                if intent is None:
                    raise SetupIntentNotFound(f"unknown setup state {state!r}")
                provider = provider_key(intent.provider or "github")

                deleted = await session.execute(
                    delete(SetupIntent)
                    .where(SetupIntent.state == state)
                    .execution_options(synchronize_session=False)
                )
                if deleted.rowcount != 1:
                    raise SetupIntentNotFound(f"setup state {state!r} already consumed")

                if intent.is_expired(now):
                    expired = True
                else:
                    await session.execute(self._upsert_statement(
                        provider=provider,
                        installation_id=installation_id,
                        organization_id=intent.organization_id,
                        organization_label=intent.organization_label,
                        endpoint=intent.endpoint,
                        auth_token=intent.auth_token,
                        webhook_secret=intent.webhook_secret,
                        default_environment=intent.default_environment,
                        enabled=True,
                    ))

        if expired:
            raise SetupIntentExpired(f"setup state {state!r} expired")

        mapping = await self.get_mapping(installation_id, provider)
        if mapping is None:
            raise MappingNotFound(f"{provider} installation {installation_id} not stored")
        return mapping

    # Installation mapping operations

    @staticmethod
    def _upsert_statement(**values):
        stmt = sqlite_insert(InstallationMapping).values(
            created_at=utcnow(), updated_at=utcnow(), **values
        )
        keys = ("provider", "installation_id")
        updated = {key: stmt.excluded[key] for key in values if key not in keys}
        updated["updated_at"] = stmt.excluded.updated_at
        return stmt.on_conflict_do_update(
            index_elements=[InstallationMapping.provider, InstallationMapping.installation_id],
            set_=updated,
        )

    async def upsert_mapping(
        self,
        installation_id: int,
        endpoint: str,
        auth_token: str,
        webhook_secret: str,
        organization_id: int = 0,
        organization_label: str = "",
        default_environment: str = "",
        enabled: bool = True,
        provider: str = "github",
    ) -> InstallationMapping:
        """Create or update an installation mapping."""
        if not valid_installation_id(installation_id):
            raise ValueError(f"invalid installation id {installation_id!r}")

        provider = provider_key(provider)
        async with self.session_factory() as session:
            await session.execute(self._upsert_statement(
                provider=provider,
                installation_id=installation_id,
                organization_id=organization_id,
                organization_label=organization_label,
                endpoint=endpoint,
                auth_token=auth_token,
                webhook_secret=webhook_secret,
                default_environment=default_environment,
                enabled=enabled,
            ))
            await session.commit()

        return await self.get_mapping(installation_id, provider)

    async def get_mapping(self, installation_id: int, provider: str = "github") -> Optional[InstallationMapping]:
        """Get installation mapping by provider and installation id."""
        if not valid_installation_id(installation_id):
            return None

        async with self.session_factory() as session:
            result = await session.execute(
                select(InstallationMapping).where(
                    InstallationMapping.provider == provider_key(provider),
                    InstallationMapping.installation_id == installation_id,
                )
            )
            return result.scalar_one_or_none()

    async def list_mappings(
        self,
        organization_id: Optional[int] = None,
        provider: Optional[str] = None,
    ) -> List[InstallationMapping]:
        """List mappings ordered by installation id, optionally for one organization or provider."""
        async with self.session_factory() as session:
            query = select(InstallationMapping)
            if organization_id and organization_id > 0:
                query = query.where(InstallationMapping.organization_id == organization_id)
            if provider:
                query = query.where(InstallationMapping.provider == provider_key(provider))

            result = await session.execute(query.order_by(
                InstallationMapping.installation_id.asc(),
                InstallationMapping.provider.asc(),
            ))
            return list(result.scalars().all())

    async def delete_mapping(
        self,
        installation_id: int,
        organization_id: Optional[int] = None,
        provider: str = "github",
    ):
        """
        Delete an installation mapping.

        Args:
            installation_id: Installation/project id
            organization_id: When set, only delete if the mapping belongs to it
            provider: Provider the id belongs to

        Raises:
            MappingNotFound: If no row was deleted
        """
        if not valid_installation_id(installation_id):
            raise MappingNotFound("invalid installation id")

        async with self.session_factory() as session:
            query = delete(InstallationMapping).where(
                InstallationMapping.provider == provider_key(provider),
                InstallationMapping.installation_id == installation_id,
            )
            if organization_id and organization_id > 0:
                query = query.where(InstallationMapping.organization_id == organization_id)

            result = await session.execute(query)
            await session.commit()

            if result.rowcount == 0:
                raise MappingNotFound(f"{provider_key(provider)} installation {installation_id} not found")
