"""
Cap Table Service

Share class registry, ownership ledger writes and the read models built on
top of the ledger (summary, waterfall, round simulation). Every write
recomputes the derived fields (class issued counts, cached entry
percentages) in the caller's session; nothing here commits.
"""
from datetime import date
from typing import Dict, List, Optional, Tuple

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from equity_ledger.config import get_settings
from equity_ledger.constants import EntryType, ShareClassType, share_class_display_name
from equity_ledger.exceptions import InsufficientCapacityError, InvalidInputError, NotFoundError
from equity_ledger.models.ownership_entry import OwnershipEntry
from equity_ledger.models.share_class import ShareClass
from equity_ledger.schemas.captable import (
    CreateEntryRequest,
    CreateShareClassRequest,
    EntryQuery,
    SimulateRoundRequest,
    TransferSharesRequest,
    UpdateEntryRequest,
    UpdateShareClassRequest,
)
from equity_ledger.services.dilution import ProposedRound, RoundSimulation, simulate_round
from equity_ledger.services.ledger import LedgerReader
from equity_ledger.services.ownership import OwnershipSummary
from equity_ledger.services.waterfall import (
    WaterfallResult,
    calculate_waterfall,
    calculate_waterfall_scenarios,
)

logger = structlog.get_logger()


class CapTableService:
    """Share classes, ownership entries and the computations over them"""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.reader = LedgerReader(db)

    # =========================================================================
    # Share classes
    # =========================================================================

    async def create_share_class(self, organization_id: int, request: CreateShareClassRequest) -> ShareClass:
        tag = ShareClassType(request.share_class).value
        existing = await self.find_share_class(organization_id, tag)
        if existing is not None:
            raise InvalidInputError(
                f"Share class {tag} already exists",
                organization_id=organization_id,
                share_class=tag,
            )

        share_class = ShareClass(
            organization_id=organization_id,
            name=request.name or share_class_display_name(tag),
            share_class=tag,
            authorized_shares=request.authorized_shares,
            issued_shares=0,
            outstanding_shares=0,
            par_value=request.par_value,
            votes_per_share=request.votes_per_share,
            seniority=request.seniority,
            liquidation_preference=request.liquidation_preference,
            participating=request.participating,
            conversion_ratio=request.conversion_ratio,
            dividend_rate=request.dividend_rate,
            is_active=True,
        )
        self.db.add(share_class)
        await self.db.flush()

        logger.info(
            "Created share class",
            organization_id=organization_id,
            share_class=tag,
            authorized_shares=request.authorized_shares,
            seniority=request.seniority,
        )
        return share_class

    async def get_share_classes(self, organization_id: int) -> List[ShareClass]:
        """Registry ordered by seniority (highest first)"""
        return await self.reader.list_share_class_rows(organization_id)

    async def get_share_class(self, organization_id: int, share_class_id: int) -> ShareClass:
        result = await self.db.execute(
            select(ShareClass).where(
                ShareClass.id == share_class_id,
                ShareClass.organization_id == organization_id,
            )
        )
        share_class = result.scalar_one_or_none()
        if share_class is None:
            raise NotFoundError("Share class", share_class_id, organization_id=organization_id)
        return share_class

    async def update_share_class(
        self,
        organization_id: int,
        share_class_id: int,
        request: UpdateShareClassRequest,
    ) -> ShareClass:
        share_class = await self.get_share_class(organization_id, share_class_id)
        changes = request.model_dump(exclude_unset=True)

        if changes.get("authorized_shares") is not None:
            issued = await self._issued_in_class(organization_id, share_class.share_class)
            if changes["authorized_shares"] < issued:
                raise InsufficientCapacityError(
                    f"Authorized shares cannot be less than issued shares ({issued})",
                    requested=changes["authorized_shares"],
                    available=issued,
                    share_class=share_class.share_class,
                )

        for key, value in changes.items():
            setattr(share_class, key, value)
        await self.db.flush()

        logger.info(
            "Updated share class",
            organization_id=organization_id,
            share_class=share_class.share_class,
            fields=sorted(changes),
        )
        return share_class

    # =========================================================================
    # Ledger entries
    # =========================================================================

    async def create_entry(self, organization_id: int, request: CreateEntryRequest) -> OwnershipEntry:
        """
        Append an ownership entry.

        Raises:
            NotFoundError: the share class is not registered
            InsufficientCapacityError: an issuance exceeds authorized - issued
        """
        tag = ShareClassType(request.share_class).value
        share_class = await self.find_share_class(organization_id, tag)
        if share_class is None:
            raise NotFoundError("Share class", tag, organization_id=organization_id)

        if request.entry_type == EntryType.ISSUANCE and request.shares > 0:
            issued = await self._issued_in_class(organization_id, tag)
            available = (share_class.authorized_shares or 0) - issued
            if request.shares > available:
                raise InsufficientCapacityError(
                    f"Not enough authorized shares. Available: {available}, Requested: {request.shares}",
                    requested=request.shares,
                    available=available,
                    share_class=tag,
                )

        entry = OwnershipEntry(
            organization_id=organization_id,
            shareholder_id=request.shareholder_id,
            shareholder_name=request.shareholder_name,
            shareholder_type=request.shareholder_type.value,
            share_class=tag,
            entry_type=request.entry_type.value,
            shares=request.shares,
            price_per_share=request.price_per_share,
            round_id=request.round_id,
            grant_id=request.grant_id,
            effective_date=request.effective_date,
            certificate_number=request.certificate_number,
            notes=request.notes,
        )
        entry.compute_total_value()
        self.db.add(entry)
        await self.db.flush()

        await self.refresh_derived(organization_id)

        logger.info(
            "Recorded ownership entry",
            organization_id=organization_id,
            entry_id=entry.id,
            entry_type=entry.entry_type,
            shareholder_id=entry.shareholder_id,
            share_class=tag,
            shares=entry.shares,
        )
        return entry

    async def record_transfer(
        self,
        organization_id: int,
        request: TransferSharesRequest,
    ) -> Tuple[OwnershipEntry, OwnershipEntry]:
        """
        Move shares between holders as a pair of TRANSFER entries: a negative
        leg for the seller and a positive leg for the buyer.

        Raises:
            NotFoundError: the share class is not registered
            InsufficientCapacityError: the seller holds fewer shares on the effective date
        """
        tag = ShareClassType(request.share_class).value
        if await self.find_share_class(organization_id, tag) is None:
            raise NotFoundError("Share class", tag, organization_id=organization_id)
        if request.from_shareholder_id == request.to_shareholder_id:
            raise InvalidInputError(
                "Cannot transfer shares to the same shareholder",
                shareholder_id=request.from_shareholder_id,
            )

        snapshot = await self.reader.load_snapshot(organization_id, as_of=request.effective_date)
        seller = snapshot.summary.holder(request.from_shareholder_id)
        position = seller.position(tag) if seller is not None else None
        held = position.shares if position is not None else 0
        if request.shares > held:
            raise InsufficientCapacityError(
                f"Shareholder holds {held} {tag} shares, cannot transfer {request.shares}",
                requested=request.shares,
                available=held,
                shareholder_id=request.from_shareholder_id,
            )

        legs = []
        for holder_id, name, holder_type, shares in (
            (seller.shareholder_id, seller.name, seller.type, -request.shares),
            (request.to_shareholder_id, request.to_shareholder_name, request.to_shareholder_type.value, request.shares),
        ):
            leg = OwnershipEntry(
                organization_id=organization_id,
                shareholder_id=holder_id,
                shareholder_name=name,
                shareholder_type=holder_type,
                share_class=tag,
                entry_type=EntryType.TRANSFER.value,
                shares=shares,
                price_per_share=request.price_per_share,
                effective_date=request.effective_date,
                notes=request.notes,
            )
            leg.compute_total_value()
            self.db.add(leg)
            legs.append(leg)
        await self.db.flush()

        await self.refresh_derived(organization_id)

        logger.info(
            "Recorded share transfer",
            organization_id=organization_id,
            from_shareholder_id=request.from_shareholder_id,
            to_shareholder_id=request.to_shareholder_id,
            share_class=tag,
            shares=request.shares,
        )
        return legs[0], legs[1]

    async def get_entries(self, organization_id: int, query: Optional[EntryQuery] = None) -> List[OwnershipEntry]:
        """Entries newest first, optionally filtered"""
        query = query or EntryQuery()
        rows = await self.reader.list_entry_rows(
            organization_id,
            as_of=query.as_of_date,
            shareholder_type=query.shareholder_type,
            share_class=query.share_class,
        )
        rows.reverse()
        return rows

    async def get_entry(self, organization_id: int, entry_id: int) -> OwnershipEntry:
        result = await self.db.execute(
            select(OwnershipEntry).where(
                OwnershipEntry.id == entry_id,
                OwnershipEntry.organization_id == organization_id,
            )
        )
        entry = result.scalar_one_or_none()
        if entry is None:
            raise NotFoundError("Ownership entry", entry_id, organization_id=organization_id)
        return entry

    async def update_entry(self, organization_id: int, entry_id: int, request: UpdateEntryRequest) -> OwnershipEntry:
        entry = await self.get_entry(organization_id, entry_id)
        changes = request.model_dump(exclude_unset=True)

        for key, value in changes.items():
            setattr(entry, key, value)
        if "price_per_share" in changes:
            entry.compute_total_value()
        await self.db.flush()

        if "effective_date" in changes:
            await self.refresh_derived(organization_id)

        logger.info(
            "Updated ownership entry",
            organization_id=organization_id,
            entry_id=entry_id,
            fields=sorted(changes),
        )
        return entry

    async def delete_entry(self, organization_id: int, entry_id: int) -> None:
        entry = await self.get_entry(organization_id, entry_id)
        await self.db.delete(entry)
        await self.db.flush()

        await self.refresh_derived(organization_id)

        logger.info("Deleted ownership entry", organization_id=organization_id, entry_id=entry_id)

    # =========================================================================
    # Read models
    # =========================================================================

    async def get_summary(self, organization_id: int, as_of: Optional[date] = None) -> OwnershipSummary:
        snapshot = await self.reader.load_snapshot(organization_id, as_of=as_of)
        return snapshot.summary

    async def get_waterfall(
        self,
        organization_id: int,
        exit_valuation: float,
        as_of: Optional[date] = None,
        participation_aware: Optional[bool] = None,
    ) -> WaterfallResult:
        if participation_aware is None:
            participation_aware = get_settings().waterfall_participation_aware

        snapshot = await self.reader.load_snapshot(organization_id, as_of=as_of)
        result = calculate_waterfall(
            snapshot.summary,
            snapshot.share_classes,
            exit_valuation,
            participation_aware=participation_aware,
        )

        logger.info(
            "Calculated waterfall",
            organization_id=organization_id,
            exit_valuation=exit_valuation,
            total_distributed=result.total_distributed,
            participation_aware=participation_aware,
        )
        return result

    async def get_waterfall_scenarios(
        self,
        organization_id: int,
        exit_valuations: List[float],
        as_of: Optional[date] = None,
        participation_aware: Optional[bool] = None,
    ) -> List[WaterfallResult]:
        if participation_aware is None:
            participation_aware = get_settings().waterfall_participation_aware

        snapshot = await self.reader.load_snapshot(organization_id, as_of=as_of)
        return calculate_waterfall_scenarios(
            snapshot.summary,
            snapshot.share_classes,
            exit_valuations,
            participation_aware=participation_aware,
        )

    async def simulate_round(self, organization_id: int, request: SimulateRoundRequest) -> RoundSimulation:
        """Project a round against the current ledger; writes nothing"""
        snapshot = await self.reader.load_snapshot(organization_id, as_of=request.as_of_date)
        simulation = simulate_round(
            snapshot.summary,
            ProposedRound(
                name=request.round_name,
                investment_amount=request.investment_amount,
                pre_money_valuation=request.pre_money_valuation,
                share_class=request.share_class.value if request.share_class else None,
                option_pool_increase=request.option_pool_increase,
            ),
        )

        logger.info(
            "Simulated funding round",
            organization_id=organization_id,
            round_name=request.round_name,
            price_per_share=simulation.price_per_share,
            new_shares=simulation.new_shares,
            option_pool_shares=simulation.option_pool_shares,
        )
        return simulation

    # =========================================================================
    # Derived state
    # =========================================================================

    async def refresh_derived(self, organization_id: int) -> OwnershipSummary:
        """
        Rewrite share class issued/outstanding counts and cached entry
        percentages from the full ledger. Idempotent.
        """
        rows = await self.reader.list_entry_rows(organization_id)
        share_classes = await self.reader.list_share_class_rows(organization_id)

        class_totals: Dict[str, int] = {}
        for row in rows:
            class_totals[row.share_class] = class_totals.get(row.share_class, 0) + row.shares
        for share_class in share_classes:
            issued = class_totals.get(share_class.share_class, 0)
            share_class.issued_shares = issued
            share_class.outstanding_shares = issued

        summary = await self.get_summary(organization_id)
        percents = {h.shareholder_id: h.percent_ownership for h in summary.by_shareholder}
        for row in rows:
            row.percent_ownership = percents.get(row.shareholder_id, 0.0)

        await self.db.flush()

        logger.debug(
            "Refreshed derived cap table fields",
            organization_id=organization_id,
            entries=len(rows),
            total_issued=summary.total_issued,
        )
        return summary

    async def find_share_class(self, organization_id: int, tag: str) -> Optional[ShareClass]:
        result = await self.db.execute(
            select(ShareClass).where(
                ShareClass.organization_id == organization_id,
                ShareClass.share_class == tag,
            )
        )
        return result.scalar_one_or_none()

    async def _issued_in_class(self, organization_id: int, tag: str) -> int:
        """Net shares booked against a class across the whole ledger"""
        result = await self.db.execute(
            select(func.coalesce(func.sum(OwnershipEntry.shares), 0)).where(
                OwnershipEntry.organization_id == organization_id,
                OwnershipEntry.share_class == tag,
            )
        )
        return int(result.scalar_one())
