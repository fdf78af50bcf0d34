"""
ESOP Service

Option pool and grant management. Grant status changes go through the
lifecycle transition table; vested amounts come from the vesting engine.
Pool allocation is always recomputed from the pool's grants and written in
the same session as the grant mutation that changed it.
"""
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from equity_ledger.config import get_settings
from equity_ledger.constants import (
    EntryType,
    GrantStatus,
    RELEASED_GRANT_STATUSES,
    ShareClassType,
    ShareholderType,
    VESTING_STATUSES,
)
from equity_ledger.exceptions import (
    InsufficientCapacityError,
    InvalidInputError,
    InvalidStateError,
    NotFoundError,
)
from equity_ledger.models.esop import ESOPGrant, ESOPPool, GrantExerciseEvent, GrantVestingEvent
from equity_ledger.schemas.captable import CreateEntryRequest
from equity_ledger.schemas.esop import (
    POST_DRAFT_EDITABLE_FIELDS,
    ApproveGrantRequest,
    CreateGrantRequest,
    CreatePoolRequest,
    ExerciseGrantRequest,
    GrantQuery,
    UpdateGrantRequest,
    UpdatePoolRequest,
)
from equity_ledger.services.cap_table import CapTableService
from equity_ledger.services.lifecycle import GrantEvent, can_transition_grant, transition_grant
from equity_ledger.services.vesting import (
    ScheduledVesting,
    calculate_vested_shares,
    generate_vesting_schedule,
    next_vesting_event,
    validate_vesting_terms,
)

logger = structlog.get_logger()

ACTIVE_GRANT_STATUSES = (GrantStatus.ACTIVE, GrantStatus.PARTIALLY_VESTED, GrantStatus.FULLY_VESTED)
RECENT_GRANT_LIMIT = 5


def pool_allocation(grants: List[ESOPGrant]) -> int:
    """Shares a pool has committed: the full grant for live and exercised
    grants, only the exercised part for cancelled/expired/forfeited ones"""
    allocated = 0
    for grant in grants:
        if GrantStatus(grant.status) in RELEASED_GRANT_STATUSES:
            allocated += grant.exercised_shares or 0
        else:
            allocated += grant.total_shares
    return allocated


@dataclass
class GrantVestingSummary:
    """Projected schedule and current totals for one grant"""
    grant: ESOPGrant
    projected_vesting: List[ScheduledVesting]
    total_vested: int
    total_unvested: int
    total_exercised: int
    total_exercisable: int
    next_vesting_date: Optional[date] = None
    next_vesting_amount: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "grant_id": self.grant.id,
            "status": self.grant.status,
            "projected_vesting": [event.to_dict() for event in self.projected_vesting],
            "total_vested": self.total_vested,
            "total_unvested": self.total_unvested,
            "total_exercised": self.total_exercised,
            "total_exercisable": self.total_exercisable,
            "next_vesting_date": self.next_vesting_date.isoformat() if self.next_vesting_date else None,
            "next_vesting_amount": self.next_vesting_amount,
        }


@dataclass
class DepartmentTotals:
    department: str
    grant_count: int = 0
    total_shares: int = 0
    vested_shares: int = 0
    exercised_shares: int = 0


@dataclass
class ESOPSummary:
    """Organization-wide ESOP totals"""
    pool: Optional[ESOPPool]
    total_grants: int
    active_grants: int
    total_allocated: int
    total_vested: int
    total_exercised: int
    total_available: int
    utilization_percent: float
    by_department: List[DepartmentTotals] = field(default_factory=list)
    recent_grants: List[ESOPGrant] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pool_id": self.pool.id if self.pool else None,
            "total_grants": self.total_grants,
            "active_grants": self.active_grants,
            "total_allocated": self.total_allocated,
            "total_vested": self.total_vested,
            "total_exercised": self.total_exercised,
            "total_available": self.total_available,
            "utilization_percent": self.utilization_percent,
            "by_department": [
                {
                    "department": d.department,
                    "grant_count": d.grant_count,
                    "total_shares": d.total_shares,
                    "vested_shares": d.vested_shares,
                    "exercised_shares": d.exercised_shares,
                }
                for d in self.by_department
            ],
            "recent_grant_ids": [g.id for g in self.recent_grants],
        }


class ESOPService:
    """Option pool, grant lifecycle, vesting and exercise"""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.settings = get_settings()

    # =========================================================================
    # Pool
    # =========================================================================

    async def create_pool(self, organization_id: int, request: CreatePoolRequest) -> ESOPPool:
        if await self.get_pool(organization_id) is not None:
            raise InvalidStateError(
                "ESOP pool already exists, update it instead",
                organization_id=organization_id,
            )
        if request.percent_of_company is not None and request.percent_of_company > self.settings.max_esop_pool_percent:
            raise InvalidInputError(
                f"Pool cannot exceed {self.settings.max_esop_pool_percent}% of the company",
                percent_of_company=request.percent_of_company,
            )

        pool = ESOPPool(
            organization_id=organization_id,
            name=request.name,
            share_class=request.share_class.value,
            total_shares=request.total_shares,
            allocated_shares=0,
            available_shares=request.total_shares,
            percent_of_company=request.percent_of_company,
            created_from_round_id=request.created_from_round_id,
            is_active=True,
            notes=request.notes,
        )
        self.db.add(pool)
        await self.db.flush()

        logger.info(
            "Created ESOP pool",
            organization_id=organization_id,
            pool_id=pool.id,
            total_shares=pool.total_shares,
        )
        return pool

    async def get_pool(self, organization_id: int) -> Optional[ESOPPool]:
        """The organization's active pool, or None"""
        result = await self.db.execute(
            select(ESOPPool).where(
                ESOPPool.organization_id == organization_id,
                ESOPPool.is_active.is_(True),
            )
        )
        return result.scalars().first()

    async def update_pool(self, organization_id: int, request: UpdatePoolRequest) -> ESOPPool:
        pool = await self.get_pool(organization_id)
        if pool is None:
            raise NotFoundError("ESOP pool", organization_id=organization_id)

        changes = request.model_dump(exclude_unset=True)
        allocated = await self.recalculate_pool(pool)
        if changes.get("total_shares") is not None and changes["total_shares"] < allocated:
            raise InsufficientCapacityError(
                f"Total shares cannot be less than allocated shares ({allocated})",
                requested=changes["total_shares"],
                available=allocated,
                pool_id=pool.id,
            )

        for key, value in changes.items():
            setattr(pool, key, value)
        pool.set_allocated(allocated)
        await self.db.flush()

        logger.info("Updated ESOP pool", organization_id=organization_id, pool_id=pool.id, fields=sorted(changes))
        return pool

    async def recalculate_pool(self, pool: ESOPPool) -> int:
        """Recompute and store the pool's allocated and available shares"""
        result = await self.db.execute(select(ESOPGrant).where(ESOPGrant.pool_id == pool.id))
        allocated = pool_allocation(list(result.scalars().all()))
        pool.set_allocated(allocated)
        await self.db.flush()
        return allocated

    # =========================================================================
    # Grants
    # =========================================================================

    async def create_grant(self, organization_id: int, request: CreateGrantRequest) -> ESOPGrant:
        """
        Create a draft grant and reserve its shares in the pool.

        Raises:
            NotFoundError: the pool does not exist in the organization
            InsufficientCapacityError: the pool has fewer available shares than requested
            InvalidInputError: vesting terms are out of range
        """
        pool = await self._get_pool_by_id(organization_id, request.pool_id)
        self._validate_terms(request.total_shares, request.vesting_months, request.cliff_months)

        await self.recalculate_pool(pool)
        if request.total_shares > pool.available_shares:
            raise InsufficientCapacityError(
                f"Not enough shares available. Available: {pool.available_shares}, Requested: {request.total_shares}",
                requested=request.total_shares,
                available=pool.available_shares,
                pool_id=pool.id,
            )

        grant = ESOPGrant(
            organization_id=organization_id,
            pool_id=pool.id,
            grantee_id=request.grantee_id,
            grantee_name=request.grantee_name,
            grantee_email=request.grantee_email,
            employee_id=request.employee_id,
            department=request.department,
            grant_type=request.grant_type.value,
            status=GrantStatus.DRAFT.value,
            total_shares=request.total_shares,
            vested_shares=0,
            unvested_shares=request.total_shares,
            exercised_shares=0,
            exercise_price=request.exercise_price,
            fair_market_value=request.fair_market_value,
            grant_date=request.grant_date,
            vesting_schedule_type=request.vesting_schedule_type.value,
            vesting_start_date=request.vesting_start_date,
            vesting_months=request.vesting_months,
            cliff_months=request.cliff_months,
            expiration_date=request.expiration_date,
            acceleration_clause=request.acceleration_clause.model_dump() if request.acceleration_clause else None,
            board_approval_date=request.board_approval_date,
            grant_agreement_url=request.grant_agreement_url,
            notes=request.notes,
            vesting_events=[],
            exercise_events=[],
        )
        self.db.add(grant)
        await self.db.flush()
        await self.recalculate_pool(pool)

        logger.info(
            "Created ESOP grant",
            organization_id=organization_id,
            grant_id=grant.id,
            grantee_id=grant.grantee_id,
            total_shares=grant.total_shares,
            pool_available=pool.available_shares,
        )
        return grant

    async def get_grants(self, organization_id: int, query: Optional[GrantQuery] = None) -> Tuple[List[ESOPGrant], int]:
        """One page of grants (newest first) and the total match count"""
        query = query or GrantQuery()
        conditions = [ESOPGrant.organization_id == organization_id]
        if query.status is not None:
            conditions.append(ESOPGrant.status == query.status.value)
        if query.grant_type is not None:
            conditions.append(ESOPGrant.grant_type == query.grant_type.value)
        if query.department is not None:
            conditions.append(ESOPGrant.department == query.department)
        if query.grantee_id is not None:
            conditions.append(ESOPGrant.grantee_id == query.grantee_id)

        total = await self.db.scalar(select(func.count(ESOPGrant.id)).where(*conditions))
        result = await self.db.execute(
            select(ESOPGrant)
            .where(*conditions)
            .order_by(ESOPGrant.grant_date.desc(), ESOPGrant.id.desc())
            .offset((query.page - 1) * query.limit)
            .limit(query.limit)
        )
        return list(result.scalars().all()), total or 0

    async def get_grant(self, organization_id: int, grant_id: int) -> ESOPGrant:
        result = await self.db.execute(
            select(ESOPGrant).where(
                ESOPGrant.id == grant_id,
                ESOPGrant.organization_id == organization_id,
            )
        )
        grant = result.scalar_one_or_none()
        if grant is None:
            raise NotFoundError("Grant", grant_id, organization_id=organization_id)
        return grant

    async def update_grant(self, organization_id: int, grant_id: int, request: UpdateGrantRequest) -> ESOPGrant:
        grant = await self.get_grant(organization_id, grant_id)
        changes = request.model_dump(exclude_unset=True)

        if grant.status != GrantStatus.DRAFT.value:
            locked = sorted(set(changes) - POST_DRAFT_EDITABLE_FIELDS)
            if locked:
                raise InvalidStateError(
                    f"Only {', '.join(sorted(POST_DRAFT_EDITABLE_FIELDS))} can change once a grant leaves draft",
                    grant_id=grant_id,
                    status=grant.status,
                    fields=locked,
                )

        for key, value in changes.items():
            setattr(grant, key, value)
        await self.db.flush()

        logger.info("Updated ESOP grant", organization_id=organization_id, grant_id=grant_id, fields=sorted(changes))
        return grant

    async def approve_grant(
        self,
        organization_id: int,
        grant_id: int,
        request: Optional[ApproveGrantRequest] = None,
        as_of: Optional[date] = None,
    ) -> ESOPGrant:
        """Approve a draft grant and store its full vesting schedule"""
        grant = await self.get_grant(organization_id, grant_id)
        grant.status = transition_grant(grant.status, GrantEvent.APPROVE).value
        grant.board_approval_date = (
            request.board_approval_date if request and request.board_approval_date else date.today()
        )

        schedule = generate_vesting_schedule(
            grant.total_shares,
            grant.vesting_start_date,
            grant.vesting_months,
            grant.cliff_months,
        )
        grant.vesting_events = [
            GrantVestingEvent(
                vest_date=event.date,
                shares_vested=event.shares_vested,
                cumulative_vested=event.cumulative_vested,
                percent_vested=event.percent_vested,
            )
            for event in schedule
        ]
        await self.update_vesting(grant, as_of=as_of)

        logger.info(
            "Approved ESOP grant",
            organization_id=organization_id,
            grant_id=grant_id,
            vesting_events=len(schedule),
        )
        return grant

    async def activate_grant(self, organization_id: int, grant_id: int, as_of: Optional[date] = None) -> ESOPGrant:
        grant = await self.get_grant(organization_id, grant_id)
        grant.status = transition_grant(grant.status, GrantEvent.ACTIVATE).value
        await self.update_vesting(grant, as_of=as_of)

        logger.info("Activated ESOP grant", organization_id=organization_id, grant_id=grant_id, status=grant.status)
        return grant

    async def update_vesting(self, grant: ESOPGrant, as_of: Optional[date] = None) -> ESOPGrant:
        """
        Recompute vested/unvested shares as of a date and promote the status
        of an active grant once something (or everything) has vested.
        Idempotent; grants outside the vesting states are left alone.
        """
        status = GrantStatus(grant.status)
        if status not in VESTING_STATUSES:
            return grant

        vested = calculate_vested_shares(
            grant.total_shares,
            grant.vesting_start_date,
            grant.vesting_months,
            grant.cliff_months,
            as_of=as_of,
        )
        # Exercised shares stay vested even when evaluated at an earlier date
        vested_shares = max(vested.vested_shares, grant.exercised_shares or 0)
        grant.vested_shares = vested_shares
        grant.unvested_shares = grant.total_shares - vested_shares

        if status in (GrantStatus.ACTIVE, GrantStatus.PARTIALLY_VESTED):
            if vested_shares >= grant.total_shares:
                grant.status = transition_grant(status, GrantEvent.VEST_FULL).value
            elif vested_shares > 0:
                grant.status = transition_grant(status, GrantEvent.VEST_PARTIAL).value

        await self.db.flush()
        return grant

    async def exercise_shares(
        self,
        organization_id: int,
        grant_id: int,
        request: ExerciseGrantRequest,
        record_in_ledger: Optional[bool] = None,
    ) -> ESOPGrant:
        """
        Exercise vested options.

        The exercise date defaults to today and may not lie in the future.
        Vested shares are computed as of that date, and the request may not
        exceed vested - exercised. Every check runs before the grant is
        touched, so a rejected exercise leaves it exactly as it was. When
        ledger recording is on, an EXERCISE ownership entry in common stock
        is appended and linked to the exercise event.

        Raises:
            InvalidStateError: the grant is not in a vesting state
            InvalidInputError: the exercise date is in the future
            InsufficientCapacityError: more shares than are exercisable
            NotFoundError: ledger recording is on and common stock is not registered
        """
        grant = await self.get_grant(organization_id, grant_id)
        if not can_transition_grant(grant.status, GrantEvent.EXERCISE):
            raise InvalidStateError(
                f"Cannot exercise a grant in status {grant.status}",
                grant_id=grant_id,
                status=grant.status,
            )

        today = date.today()
        exercise_date = request.exercise_date or today
        if exercise_date > today:
            raise InvalidInputError(
                "Exercise date cannot be in the future",
                grant_id=grant_id,
                exercise_date=exercise_date.isoformat(),
            )

        exercised = grant.exercised_shares or 0
        vested = calculate_vested_shares(
            grant.total_shares,
            grant.vesting_start_date,
            grant.vesting_months,
            grant.cliff_months,
            as_of=exercise_date,
        )
        if GrantStatus(grant.status) == GrantStatus.FULLY_VESTED:
            vested_shares = grant.total_shares
        else:
            vested_shares = max(vested.vested_shares, exercised)
        exercisable = vested_shares - exercised
        if request.shares_exercised > exercisable:
            raise InsufficientCapacityError(
                f"Cannot exercise more than vested shares. Exercisable: {exercisable}",
                requested=request.shares_exercised,
                available=exercisable,
                grant_id=grant_id,
            )

        if record_in_ledger is None:
            record_in_ledger = self.settings.record_exercise_in_ledger

        cap_table = CapTableService(self.db)
        if record_in_ledger and await cap_table.find_share_class(organization_id, ShareClassType.COMMON.value) is None:
            raise NotFoundError("Share class", ShareClassType.COMMON.value, organization_id=organization_id)

        await self.update_vesting(grant, as_of=exercise_date)

        ownership_entry_id = None
        if record_in_ledger:
            entry = await cap_table.create_entry(
                organization_id,
                CreateEntryRequest(
                    shareholder_id=grant.grantee_id,
                    shareholder_name=grant.grantee_name,
                    shareholder_type=ShareholderType.EMPLOYEE,
                    share_class=ShareClassType.COMMON,
                    entry_type=EntryType.EXERCISE,
                    shares=request.shares_exercised,
                    price_per_share=grant.exercise_price,
                    effective_date=exercise_date,
                    grant_id=grant.id,
                    notes=request.notes,
                ),
            )
            ownership_entry_id = entry.id

        price = grant.exercise_price or 0.0
        grant.exercise_events.append(GrantExerciseEvent(
            exercise_date=exercise_date,
            shares_exercised=request.shares_exercised,
            price_per_share=price,
            total_cost=request.shares_exercised * price,
            payment_method=request.payment_method,
            ownership_entry_id=ownership_entry_id,
            notes=request.notes,
        ))
        grant.exercised_shares = exercised + request.shares_exercised

        fully_vested = grant.vested_shares >= grant.total_shares
        if fully_vested and grant.exercised_shares >= grant.vested_shares:
            grant.status = transition_grant(grant.status, GrantEvent.EXERCISE_ALL).value
        else:
            grant.status = transition_grant(grant.status, GrantEvent.EXERCISE).value

        await self.db.flush()

        logger.info(
            "Exercised ESOP shares",
            organization_id=organization_id,
            grant_id=grant_id,
            shares_exercised=request.shares_exercised,
            total_exercised=grant.exercised_shares,
            status=grant.status,
            ownership_entry_id=ownership_entry_id,
        )
        return grant

    async def cancel_grant(self, organization_id: int, grant_id: int, reason: Optional[str] = None) -> ESOPGrant:
        return await self._release_grant(organization_id, grant_id, GrantEvent.CANCEL, reason)

    async def expire_grant(self, organization_id: int, grant_id: int, reason: Optional[str] = None) -> ESOPGrant:
        return await self._release_grant(organization_id, grant_id, GrantEvent.EXPIRE, reason)

    async def forfeit_grant(self, organization_id: int, grant_id: int, reason: Optional[str] = None) -> ESOPGrant:
        return await self._release_grant(organization_id, grant_id, GrantEvent.FORFEIT, reason)

    async def process_expirations(self, organization_id: int, as_of: Optional[date] = None) -> List[ESOPGrant]:
        """Expire every live grant whose expiration date is before as_of"""
        as_of = as_of or date.today()
        result = await self.db.execute(
            select(ESOPGrant).where(
                ESOPGrant.organization_id == organization_id,
                ESOPGrant.expiration_date.is_not(None),
                ESOPGrant.expiration_date < as_of,
            )
        )
        expired = []
        for grant in result.scalars().all():
            if can_transition_grant(grant.status, GrantEvent.EXPIRE):
                expired.append(await self.expire_grant(organization_id, grant.id, reason="Expiration date passed"))

        if expired:
            logger.info(
                "Processed grant expirations",
                organization_id=organization_id,
                as_of=as_of.isoformat(),
                expired=len(expired),
            )
        return expired

    async def delete_grant(self, organization_id: int, grant_id: int) -> None:
        grant = await self.get_grant(organization_id, grant_id)
        if grant.status != GrantStatus.DRAFT.value:
            raise InvalidStateError(
                "Only draft grants can be deleted",
                grant_id=grant_id,
                status=grant.status,
            )

        pool = await self._get_pool_by_id(organization_id, grant.pool_id)
        await self.db.delete(grant)
        await self.db.flush()
        await self.recalculate_pool(pool)

        logger.info("Deleted ESOP grant", organization_id=organization_id, grant_id=grant_id)

    # =========================================================================
    # Reporting
    # =========================================================================

    async def get_vesting_schedule(
        self,
        organization_id: int,
        grant_id: int,
        as_of: Optional[date] = None,
    ) -> GrantVestingSummary:
        as_of = as_of or date.today()
        grant = await self.get_grant(organization_id, grant_id)
        await self.update_vesting(grant, as_of=as_of)

        schedule = generate_vesting_schedule(
            grant.total_shares,
            grant.vesting_start_date,
            grant.vesting_months,
            grant.cliff_months,
        )
        upcoming = next_vesting_event(schedule, as_of=as_of)

        return GrantVestingSummary(
            grant=grant,
            projected_vesting=schedule,
            total_vested=grant.vested_shares,
            total_unvested=grant.total_shares - grant.vested_shares,
            total_exercised=grant.exercised_shares,
            total_exercisable=grant.exercisable_shares,
            next_vesting_date=upcoming.date if upcoming else None,
            next_vesting_amount=upcoming.shares_vested if upcoming else None,
        )

    async def get_summary(self, organization_id: int) -> ESOPSummary:
        pool = await self.get_pool(organization_id)

        result = await self.db.execute(
            select(ESOPGrant)
            .where(ESOPGrant.organization_id == organization_id)
            .order_by(ESOPGrant.created_at.desc(), ESOPGrant.id.desc())
        )
        all_grants = list(result.scalars().all())
        live = [g for g in all_grants if GrantStatus(g.status) not in RELEASED_GRANT_STATUSES]

        departments: Dict[str, DepartmentTotals] = {}
        for grant in live:
            name = grant.department or "Unassigned"
            totals = departments.setdefault(name, DepartmentTotals(department=name))
            totals.grant_count += 1
            totals.total_shares += grant.total_shares
            totals.vested_shares += grant.vested_shares or 0
            totals.exercised_shares += grant.exercised_shares or 0

        total_allocated = pool_allocation(all_grants)
        return ESOPSummary(
            pool=pool,
            total_grants=len(live),
            active_grants=sum(1 for g in live if GrantStatus(g.status) in ACTIVE_GRANT_STATUSES),
            total_allocated=total_allocated,
            total_vested=sum(g.vested_shares or 0 for g in live),
            total_exercised=sum(g.exercised_shares or 0 for g in all_grants),
            total_available=pool.total_shares - total_allocated if pool else 0,
            utilization_percent=total_allocated / pool.total_shares * 100 if pool and pool.total_shares else 0.0,
            by_department=list(departments.values()),
            recent_grants=all_grants[:RECENT_GRANT_LIMIT],
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _release_grant(
        self,
        organization_id: int,
        grant_id: int,
        event: GrantEvent,
        reason: Optional[str],
    ) -> ESOPGrant:
        """Move a grant to cancelled/expired/forfeited and return its unexercised shares to the pool"""
        grant = await self.get_grant(organization_id, grant_id)
        grant.status = transition_grant(grant.status, event).value
        if reason:
            grant.notes = f"{grant.notes}\n{reason}" if grant.notes else reason
        await self.db.flush()

        pool = await self._get_pool_by_id(organization_id, grant.pool_id)
        await self.recalculate_pool(pool)

        logger.info(
            "Released ESOP grant",
            organization_id=organization_id,
            grant_id=grant_id,
            status=grant.status,
            returned_shares=grant.total_shares - (grant.exercised_shares or 0),
            pool_available=pool.available_shares,
        )
        return grant

    async def _get_pool_by_id(self, organization_id: int, pool_id: int) -> ESOPPool:
        result = await self.db.execute(
            select(ESOPPool).where(
                ESOPPool.id == pool_id,
                ESOPPool.organization_id == organization_id,
            )
        )
        pool = result.scalar_one_or_none()
        if pool is None:
            raise NotFoundError("ESOP pool", pool_id, organization_id=organization_id)
        return pool

    def _validate_terms(self, total_shares: int, vesting_months: int, cliff_months: int) -> None:
        validate_vesting_terms(total_shares, vesting_months, cliff_months)
        if not self.settings.min_vesting_months <= vesting_months <= self.settings.max_vesting_months:
            raise InvalidInputError(
                f"Vesting period must be between {self.settings.min_vesting_months} "
                f"and {self.settings.max_vesting_months} months",
                vesting_months=vesting_months,
            )
