"""Ledger reader: loads ownership entries and the share class registry from
the database and converts them into the plain dataclasses the engines take."""
from dataclasses import dataclass
from datetime import date
from typing import List, Optional, Union

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from equity_ledger.constants import ShareClassType, ShareholderType
from equity_ledger.models.ownership_entry import OwnershipEntry
from equity_ledger.models.share_class import ShareClass
from equity_ledger.services.ownership import (
    LedgerEntry,
    OwnershipSummary,
    ShareClassTerms,
    calculate_ownership,
)

logger = structlog.get_logger()


def entry_from_row(row: OwnershipEntry) -> LedgerEntry:
    return LedgerEntry(
        shareholder_id=row.shareholder_id,
        shareholder_name=row.shareholder_name,
        shareholder_type=row.shareholder_type,
        share_class=row.share_class,
        entry_type=row.entry_type,
        shares=row.shares,
        effective_date=row.effective_date,
        price_per_share=row.price_per_share,
        total_value=row.total_value,
        entry_id=row.id,
        round_id=row.round_id,
        grant_id=row.grant_id,
    )


def terms_from_row(row: ShareClass) -> ShareClassTerms:
    return ShareClassTerms(
        share_class=row.share_class,
        name=row.name,
        authorized_shares=row.authorized_shares or 0,
        seniority=row.seniority or 0,
        liquidation_preference=row.liquidation_preference,
        participating=bool(row.participating),
        conversion_ratio=row.conversion_ratio,
        votes_per_share=row.votes_per_share if row.votes_per_share is not None else 1.0,
        is_active=bool(row.is_active),
    )


@dataclass
class LedgerSnapshot:
    """Entries, registry and the summary computed from them"""
    organization_id: int
    as_of: Optional[date]
    entries: List[LedgerEntry]
    share_classes: List[ShareClassTerms]
    summary: OwnershipSummary


class LedgerReader:
    """Read-only access to an organization's ownership ledger"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_entry_rows(
        self,
        organization_id: int,
        as_of: Optional[date] = None,
        shareholder_type: Optional[Union[ShareholderType, str]] = None,
        share_class: Optional[Union[ShareClassType, str]] = None,
    ) -> List[OwnershipEntry]:
        """ORM rows ordered by effective date, then insertion order"""
        query = select(OwnershipEntry).where(OwnershipEntry.organization_id == organization_id)
        if as_of is not None:
            query = query.where(OwnershipEntry.effective_date <= as_of)
        if shareholder_type is not None:
            query = query.where(OwnershipEntry.shareholder_type == ShareholderType(shareholder_type).value)
        if share_class is not None:
            query = query.where(OwnershipEntry.share_class == ShareClassType(share_class).value)
        query = query.order_by(OwnershipEntry.effective_date, OwnershipEntry.id)

        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def list_entries(
        self,
        organization_id: int,
        as_of: Optional[date] = None,
        shareholder_type: Optional[Union[ShareholderType, str]] = None,
        share_class: Optional[Union[ShareClassType, str]] = None,
    ) -> List[LedgerEntry]:
        rows = await self.list_entry_rows(organization_id, as_of, shareholder_type, share_class)
        return [entry_from_row(row) for row in rows]

    async def list_share_class_rows(self, organization_id: int) -> List[ShareClass]:
        result = await self.db.execute(
            select(ShareClass)
            .where(ShareClass.organization_id == organization_id)
            .order_by(ShareClass.seniority.desc(), ShareClass.id)
        )
        return list(result.scalars().all())

    async def list_share_classes(self, organization_id: int) -> List[ShareClassTerms]:
        rows = await self.list_share_class_rows(organization_id)
        return [terms_from_row(row) for row in rows]

    async def load_snapshot(self, organization_id: int, as_of: Optional[date] = None) -> LedgerSnapshot:
        """Load entries and registry and aggregate them as of a date"""
        entries = await self.list_entries(organization_id, as_of=as_of)
        share_classes = await self.list_share_classes(organization_id)
        summary = calculate_ownership(entries, share_classes, as_of=as_of)

        logger.debug(
            "Loaded ledger snapshot",
            organization_id=organization_id,
            as_of=as_of.isoformat() if as_of else None,
            entries=len(entries),
            share_classes=len(share_classes),
            total_issued=summary.total_issued,
        )

        return LedgerSnapshot(
            organization_id=organization_id,
            as_of=as_of,
            entries=entries,
            share_classes=share_classes,
            summary=summary,
        )
