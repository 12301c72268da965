"""
Provider and provider account repositories.
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select, text
from sqlalchemy.orm import Session

from chatuniverse.db.repositories.base import BaseRepository
from chatuniverse.models.db import Provider, ProviderAccount


class ProviderRepository(BaseRepository[Provider]):
    """Repository for Provider model."""

    def __init__(self, session: Session):
        super().__init__(Provider, session)

    def get_by_provider_id(self, provider_id: str) -> Optional[Provider]:
        """
        Get provider by its provider id (e.g. ``"claude"``).

        Args:
            provider_id: Provider id string

        Returns:
            Provider instance or None
        """
        return self.session.execute(
            select(Provider).where(Provider.provider_id == provider_id)
        ).scalar_one_or_none()

    def upsert(
        self, provider_id: str, display_name: str, metadata: Optional[dict]
    ) -> Provider:
        """
        Insert a provider or refresh its display name and metadata (race-safe).

        Args:
            provider_id: Provider id string
            display_name: Human readable name
            metadata: Provider metadata replacing the stored value; None
                keeps the stored value

        Returns:
            Provider instance
        """
        now = datetime.now(timezone.utc)
        stmt = self._insert().values(
            id=uuid.uuid4(),
            provider_id=provider_id,
            display_name=display_name,
            metadata=metadata or {},
            created_at=now,
            updated_at=now,
        )
        set_ = {"display_name": stmt.excluded.display_name, "updated_at": now}
        if metadata is not None:
            set_["metadata"] = stmt.excluded["metadata"]
        stmt = stmt.on_conflict_do_update(index_elements=["provider_id"], set_=set_)
        self.session.execute(stmt)
        self.session.flush()

        provider = self.get_by_provider_id(provider_id)
        self.session.refresh(provider)
        return provider

    def list_page(self, limit: int, offset: int) -> list[Provider]:
        """List providers ordered by provider id."""
        return list(
            self.session.execute(
                select(Provider)
                .order_by(Provider.provider_id.asc())
                .limit(limit)
                .offset(offset)
            ).scalars()
        )


class ProviderAccountRepository(BaseRepository[ProviderAccount]):
    """Repository for ProviderAccount model.

    Each provider has at most one *default account* (``external_account_id``
    NULL); every other account is keyed by its external id.
    """

    def __init__(self, session: Session):
        super().__init__(ProviderAccount, session)

    def get_for_provider(
        self, provider_ref_id: uuid.UUID, external_account_id: Optional[str]
    ) -> Optional[ProviderAccount]:
        """
        Get an account by external id, or the provider's default account.

        Args:
            provider_ref_id: Provider UUID
            external_account_id: External account id; None selects the
                default account

        Returns:
            ProviderAccount instance or None
        """
        stmt = select(ProviderAccount).where(
            ProviderAccount.provider_ref_id == provider_ref_id
        )
        if external_account_id is None:
            stmt = stmt.where(ProviderAccount.external_account_id.is_(None))
        else:
            stmt = stmt.where(
                ProviderAccount.external_account_id == external_account_id
            )
        return self.session.execute(stmt).scalar_one_or_none()

    def upsert(
        self,
        provider_ref_id: uuid.UUID,
        external_account_id: Optional[str],
        display_name: Optional[str],
        email: Optional[str],
        metadata: Optional[dict],
    ) -> ProviderAccount:
        """
        Insert an account or refresh its profile fields (race-safe).

        The conflict target is whichever partial unique index applies: the
        external-id index, or the one-default-account-per-provider index.
        A None ``metadata`` keeps the stored value.

        Returns:
            ProviderAccount instance
        """
        now = datetime.now(timezone.utc)
        stmt = self._insert().values(
            id=uuid.uuid4(),
            provider_ref_id=provider_ref_id,
            external_account_id=external_account_id,
            display_name=display_name,
            email=email,
            metadata=metadata or {},
            created_at=now,
            updated_at=now,
        )
        if external_account_id is None:
            index_elements = ["provider_ref_id"]
            index_where = text("external_account_id IS NULL")
        else:
            index_elements = ["provider_ref_id", "external_account_id"]
            index_where = text("external_account_id IS NOT NULL")

        set_ = {
            "display_name": stmt.excluded.display_name,
            "email": stmt.excluded.email,
            "updated_at": now,
        }
        if metadata is not None:
            set_["metadata"] = stmt.excluded["metadata"]
        stmt = stmt.on_conflict_do_update(
            index_elements=index_elements, index_where=index_where, set_=set_
        )
        self.session.execute(stmt)
        self.session.flush()

        account = self.get_for_provider(provider_ref_id, external_account_id)
        self.session.refresh(account)
        return account
