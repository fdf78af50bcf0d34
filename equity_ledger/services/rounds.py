"""
Funding Round Service

Round records and their lifecycle (planning -> active -> closed, or
cancelled). Closing a round does not touch the ledger; investments are
recorded as ISSUANCE entries that reference the round id.
"""
from datetime import date
from typing import List, Optional, Tuple

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from equity_ledger.constants import RoundStatus, round_type_display_name
from equity_ledger.exceptions import InvalidInputError, InvalidStateError, NotFoundError
from equity_ledger.models.funding_round import FundingRound
from equity_ledger.schemas.rounds import (
    CloseRoundRequest,
    CreateRoundRequest,
    OpenRoundRequest,
    RoundQuery,
    UpdateRoundRequest,
)
from equity_ledger.services.dilution import ProposedRound, RoundSimulation, simulate_round
from equity_ledger.services.ledger import LedgerReader
from equity_ledger.services.lifecycle import RoundEvent, transition_round

logger = structlog.get_logger()

OPEN_ROUND_STATUSES = (RoundStatus.PLANNING.value, RoundStatus.ACTIVE.value)


class RoundService:
    """Funding round records and lifecycle"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(self, organization_id: int, request: CreateRoundRequest) -> FundingRound:
        """
        Create a round in planning.

        Raises:
            InvalidStateError: a planning or active round of the same type exists
        """
        existing = await self.db.execute(
            select(FundingRound.id).where(
                FundingRound.organization_id == organization_id,
                FundingRound.round_type == request.round_type.value,
                FundingRound.status.in_(OPEN_ROUND_STATUSES),
            )
        )
        if existing.first() is not None:
            raise InvalidStateError(
                f"An active or planning {round_type_display_name(request.round_type)} round already exists",
                organization_id=organization_id,
                round_type=request.round_type.value,
            )

        funding_round = FundingRound(
            organization_id=organization_id,
            name=request.name,
            round_type=request.round_type.value,
            status=RoundStatus.PLANNING.value,
            target_amount=request.target_amount,
            raised_amount=0.0,
            minimum_investment=request.minimum_investment,
            pre_money_valuation=request.pre_money_valuation,
            share_class=request.share_class.value if request.share_class else None,
            lead_investor_id=request.lead_investor_id,
            target_close_date=request.target_close_date,
            terms=request.terms.model_dump() if request.terms else None,
            notes=request.notes,
        )
        self.db.add(funding_round)
        await self.db.flush()

        logger.info(
            "Created funding round",
            organization_id=organization_id,
            round_id=funding_round.id,
            round_type=funding_round.round_type,
            target_amount=funding_round.target_amount,
        )
        return funding_round

    async def get(self, organization_id: int, round_id: int) -> FundingRound:
        result = await self.db.execute(
            select(FundingRound).where(
                FundingRound.id == round_id,
                FundingRound.organization_id == organization_id,
            )
        )
        funding_round = result.scalar_one_or_none()
        if funding_round is None:
            raise NotFoundError("Round", round_id, organization_id=organization_id)
        return funding_round

    async def list(self, organization_id: int, query: Optional[RoundQuery] = None) -> Tuple[List[FundingRound], int]:
        """One page of rounds, newest first, and the total match count"""
        query = query or RoundQuery()
        conditions = [FundingRound.organization_id == organization_id]
        if query.status is not None:
            conditions.append(FundingRound.status == query.status.value)
        if query.round_type is not None:
            conditions.append(FundingRound.round_type == query.round_type.value)

        total = await self.db.scalar(select(func.count(FundingRound.id)).where(*conditions))
        result = await self.db.execute(
            select(FundingRound)
            .where(*conditions)
            .order_by(FundingRound.created_at.desc(), FundingRound.id.desc())
            .offset((query.page - 1) * query.limit)
            .limit(query.limit)
        )
        return list(result.scalars().all()), total or 0

    async def update(self, organization_id: int, round_id: int, request: UpdateRoundRequest) -> FundingRound:
        funding_round = await self.get(organization_id, round_id)
        if funding_round.status == RoundStatus.CLOSED.value:
            raise InvalidStateError("Cannot update a closed round", round_id=round_id)

        changes = request.model_dump(exclude_unset=True)
        for key, value in changes.items():
            if key == "share_class" and value is not None:
                value = value.value
            setattr(funding_round, key, value)
        if "pre_money_valuation" in changes:
            self._refresh_post_money(funding_round)
        await self.db.flush()

        logger.info("Updated funding round", organization_id=organization_id, round_id=round_id, fields=sorted(changes))
        return funding_round

    async def open_round(
        self,
        organization_id: int,
        round_id: int,
        request: Optional[OpenRoundRequest] = None,
    ) -> FundingRound:
        funding_round = await self.get(organization_id, round_id)
        funding_round.status = transition_round(funding_round.status, RoundEvent.OPEN).value
        funding_round.open_date = request.open_date if request and request.open_date else date.today()
        await self.db.flush()

        logger.info("Opened funding round", organization_id=organization_id, round_id=round_id)
        return funding_round

    async def close_round(
        self,
        organization_id: int,
        round_id: int,
        request: Optional[CloseRoundRequest] = None,
    ) -> FundingRound:
        funding_round = await self.get(organization_id, round_id)
        funding_round.status = transition_round(funding_round.status, RoundEvent.CLOSE).value
        funding_round.close_date = request.close_date if request and request.close_date else date.today()
        if request and request.final_raised_amount is not None:
            funding_round.raised_amount = request.final_raised_amount
            self._refresh_post_money(funding_round)
        await self.db.flush()

        logger.info(
            "Closed funding round",
            organization_id=organization_id,
            round_id=round_id,
            raised_amount=funding_round.raised_amount,
        )
        return funding_round

    async def cancel_round(self, organization_id: int, round_id: int) -> FundingRound:
        funding_round = await self.get(organization_id, round_id)
        funding_round.status = transition_round(funding_round.status, RoundEvent.CANCEL).value
        await self.db.flush()

        logger.info("Cancelled funding round", organization_id=organization_id, round_id=round_id)
        return funding_round

    async def delete(self, organization_id: int, round_id: int) -> None:
        funding_round = await self.get(organization_id, round_id)
        if funding_round.status != RoundStatus.PLANNING.value:
            raise InvalidStateError("Only planning rounds can be deleted", round_id=round_id)
        if funding_round.raised_amount:
            raise InvalidStateError("Cannot delete a round with recorded investments", round_id=round_id)

        await self.db.delete(funding_round)
        await self.db.flush()

        logger.info("Deleted funding round", organization_id=organization_id, round_id=round_id)

    async def update_raised_amount(self, organization_id: int, round_id: int, amount: float) -> FundingRound:
        """Set the raised amount; post-money follows as pre-money + raised"""
        if amount < 0:
            raise InvalidInputError("Raised amount must be non-negative", amount=amount)

        funding_round = await self.get(organization_id, round_id)
        funding_round.raised_amount = amount
        self._refresh_post_money(funding_round)
        await self.db.flush()
        return funding_round

    async def simulate(
        self,
        organization_id: int,
        round_id: int,
        investment_amount: Optional[float] = None,
        as_of: Optional[date] = None,
    ) -> RoundSimulation:
        """
        Project the stored round against the current ledger, using its
        pre-money valuation, its target (or the given) investment and its
        option_pool_increase term.
        """
        funding_round = await self.get(organization_id, round_id)
        if not funding_round.pre_money_valuation:
            raise InvalidInputError("Round has no pre-money valuation to simulate", round_id=round_id)

        snapshot = await LedgerReader(self.db).load_snapshot(organization_id, as_of=as_of)
        return simulate_round(
            snapshot.summary,
            ProposedRound(
                name=funding_round.name,
                investment_amount=funding_round.target_amount if investment_amount is None else investment_amount,
                pre_money_valuation=funding_round.pre_money_valuation,
                share_class=funding_round.share_class,
                option_pool_increase=funding_round.term("option_pool_increase", 0.0) or 0.0,
            ),
        )

    @staticmethod
    def _refresh_post_money(funding_round: FundingRound) -> None:
        if funding_round.pre_money_valuation:
            funding_round.post_money_valuation = funding_round.pre_money_valuation + (funding_round.raised_amount or 0)

