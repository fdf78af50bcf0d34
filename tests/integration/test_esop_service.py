"""Integration tests for the ESOP service against SQLite"""
from datetime import date

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession

from equity_ledger.constants import GrantStatus, ShareClassType
from equity_ledger.exceptions import InsufficientCapacityError, InvalidInputError, InvalidStateError, NotFoundError
from equity_ledger.schemas.captable import CreateShareClassRequest
from equity_ledger.schemas.esop import (
    CreateGrantRequest,
    CreatePoolRequest,
    ExerciseGrantRequest,
    GrantQuery,
    UpdateGrantRequest,
    UpdatePoolRequest,
)
from equity_ledger.services.cap_table import CapTableService
from equity_ledger.services.esop import ESOPService

ORG_ID = 1
VESTING_START = date(2024, 1, 1)


class TestESOPService:
    """Tests for pool accounting and the grant lifecycle"""

    @pytest_asyncio.fixture
    async def service(self, db_session: AsyncSession):
        return ESOPService(db_session)

    @pytest_asyncio.fixture
    async def pool(self, service):
        return await service.create_pool(ORG_ID, CreatePoolRequest(total_shares=100_000))

    def grant_request(self, pool, total_shares=48_000, **overrides):
        fields = dict(
            pool_id=pool.id,
            grantee_id="emp-1",
            grantee_name="Erin Employee",
            department="Engineering",
            total_shares=total_shares,
            exercise_price=0.5,
            grant_date=VESTING_START,
            vesting_start_date=VESTING_START,
            vesting_months=48,
            cliff_months=12,
        )
        fields.update(overrides)
        return CreateGrantRequest(**fields)

    async def active_grant(self, service, pool, total_shares=48_000, as_of=date(2024, 2, 1), **overrides):
        grant = await service.create_grant(ORG_ID, self.grant_request(pool, total_shares, **overrides))
        await service.approve_grant(ORG_ID, grant.id, as_of=as_of)
        return await service.activate_grant(ORG_ID, grant.id, as_of=as_of)

    @pytest.mark.asyncio
    async def test_only_one_pool(self, service, pool):
        with pytest.raises(InvalidStateError):
            await service.create_pool(ORG_ID, CreatePoolRequest(total_shares=1_000))

    @pytest.mark.asyncio
    async def test_create_grant_reserves_shares(self, service, pool):
        grant = await service.create_grant(ORG_ID, self.grant_request(pool))

        assert grant.status == GrantStatus.DRAFT.value
        assert grant.unvested_shares == 48_000
        assert pool.allocated_shares == 48_000
        assert pool.available_shares == 52_000

    @pytest.mark.asyncio
    async def test_grant_over_available_rejected(self, service, pool):
        await service.create_grant(ORG_ID, self.grant_request(pool, 60_000))

        with pytest.raises(InsufficientCapacityError) as exc_info:
            await service.create_grant(ORG_ID, self.grant_request(pool, 40_001))

        assert exc_info.value.available == 40_000
        assert pool.allocated_shares == 60_000

    @pytest.mark.asyncio
    async def test_grant_needs_existing_pool(self, service, pool):
        request = self.grant_request(pool)
        request.pool_id = 9999

        with pytest.raises(NotFoundError):
            await service.create_grant(ORG_ID, request)

    @pytest.mark.asyncio
    async def test_pool_total_cannot_drop_below_allocated(self, service, pool):
        await service.create_grant(ORG_ID, self.grant_request(pool, 48_000))

        with pytest.raises(InsufficientCapacityError):
            await service.update_pool(ORG_ID, UpdatePoolRequest(total_shares=47_999))

        updated = await service.update_pool(ORG_ID, UpdatePoolRequest(total_shares=60_000))
        assert updated.available_shares == 12_000

    @pytest.mark.asyncio
    async def test_approve_generates_schedule(self, service, pool):
        grant = await service.create_grant(ORG_ID, self.grant_request(pool))
        approved = await service.approve_grant(ORG_ID, grant.id, as_of=date(2024, 6, 1))

        assert approved.status == GrantStatus.APPROVED.value
        assert len(approved.vesting_events) == 37
        assert approved.vesting_events[0].shares_vested == 12_000
        assert approved.vesting_events[-1].cumulative_vested == 48_000

    @pytest.mark.asyncio
    async def test_approve_twice_rejected(self, service, pool):
        grant = await service.create_grant(ORG_ID, self.grant_request(pool))
        await service.approve_grant(ORG_ID, grant.id)

        with pytest.raises(InvalidStateError):
            await service.approve_grant(ORG_ID, grant.id)

    @pytest.mark.asyncio
    async def test_vesting_promotes_status(self, service, pool):
        grant = await self.active_grant(service, pool)
        assert grant.status == GrantStatus.ACTIVE.value
        assert grant.vested_shares == 0

        await service.update_vesting(grant, as_of=date(2025, 1, 2))
        assert grant.vested_shares == 12_000
        assert grant.status == GrantStatus.PARTIALLY_VESTED.value

        await service.update_vesting(grant, as_of=date(2026, 1, 1))
        await service.update_vesting(grant, as_of=date(2026, 1, 1))
        assert grant.vested_shares == 24_000

        await service.update_vesting(grant, as_of=date(2028, 1, 1))
        assert grant.status == GrantStatus.FULLY_VESTED.value
        assert grant.unvested_shares == 0

    @pytest.mark.asyncio
    async def test_exercise_vested_shares(self, service, pool):
        grant = await self.active_grant(service, pool)

        grant = await service.exercise_shares(ORG_ID, grant.id, ExerciseGrantRequest(
            shares_exercised=10_000,
            exercise_date=date(2025, 1, 2),
            payment_method="cash",
        ))

        assert grant.exercised_shares == 10_000
        assert grant.exercisable_shares == 2_000
        assert grant.exercise_events[0].total_cost == pytest.approx(5_000.0)
        assert grant.status == GrantStatus.PARTIALLY_VESTED.value

    @pytest.mark.asyncio
    async def test_exercise_over_vested_leaves_grant_untouched(self, service, pool):
        grant = await self.active_grant(service, pool)

        with pytest.raises(InsufficientCapacityError):
            await service.exercise_shares(ORG_ID, grant.id, ExerciseGrantRequest(
                shares_exercised=12_001,
                exercise_date=date(2025, 1, 2),
            ))

        assert grant.exercised_shares == 0
        assert grant.exercise_events == []
        assert grant.status == GrantStatus.ACTIVE.value
        assert grant.vested_shares == 0
        assert grant.unvested_shares == 48_000

    @pytest.mark.asyncio
    async def test_exercise_dated_in_the_future_rejected(self, service, pool):
        today = date.today()
        grant = await self.active_grant(
            service,
            pool,
            as_of=today,
            grant_date=today,
            vesting_start_date=today,
        )
        assert grant.vested_shares == 0

        with pytest.raises(InvalidInputError):
            await service.exercise_shares(ORG_ID, grant.id, ExerciseGrantRequest(
                shares_exercised=48_000,
                exercise_date=date(today.year + 75, 1, 1),
            ))
        with pytest.raises(InsufficientCapacityError):
            await service.exercise_shares(ORG_ID, grant.id, ExerciseGrantRequest(shares_exercised=1))

        assert grant.exercised_shares == 0
        assert grant.vested_shares == 0
        assert grant.status == GrantStatus.ACTIVE.value

    @pytest.mark.asyncio
    async def test_exercise_without_common_class_leaves_grant_untouched(self, service, pool):
        grant = await self.active_grant(service, pool)

        with pytest.raises(NotFoundError):
            await service.exercise_shares(
                ORG_ID,
                grant.id,
                ExerciseGrantRequest(shares_exercised=5_000, exercise_date=date(2025, 3, 1)),
                record_in_ledger=True,
            )

        assert grant.exercised_shares == 0
        assert grant.exercise_events == []
        assert grant.status == GrantStatus.ACTIVE.value
        assert grant.vested_shares == 0

    @pytest.mark.asyncio
    async def test_exercise_draft_rejected(self, service, pool):
        grant = await service.create_grant(ORG_ID, self.grant_request(pool))

        with pytest.raises(InvalidStateError):
            await service.exercise_shares(ORG_ID, grant.id, ExerciseGrantRequest(shares_exercised=1))

    @pytest.mark.asyncio
    async def test_exercise_everything_completes_grant(self, service, pool):
        grant = await self.active_grant(
            service,
            pool,
            as_of=date(2020, 2, 1),
            grant_date=date(2020, 1, 1),
            vesting_start_date=date(2020, 1, 1),
        )

        grant = await service.exercise_shares(ORG_ID, grant.id, ExerciseGrantRequest(
            shares_exercised=48_000,
            exercise_date=date(2024, 2, 1),
        ))

        assert grant.status == GrantStatus.EXERCISED.value
        assert pool.allocated_shares == 48_000

    @pytest.mark.asyncio
    async def test_exercise_recorded_in_ledger(self, service, pool, db_session):
        cap_table = CapTableService(db_session)
        await cap_table.create_share_class(ORG_ID, CreateShareClassRequest(
            name="Common Stock",
            share_class=ShareClassType.COMMON,
            authorized_shares=1_000_000,
        ))
        grant = await self.active_grant(service, pool)

        grant = await service.exercise_shares(
            ORG_ID,
            grant.id,
            ExerciseGrantRequest(shares_exercised=5_000, exercise_date=date(2025, 3, 1)),
            record_in_ledger=True,
        )

        entries = await cap_table.get_entries(ORG_ID)
        assert len(entries) == 1
        assert entries[0].entry_type == "exercise"
        assert entries[0].grant_id == grant.id
        assert grant.exercise_events[0].ownership_entry_id == entries[0].id

    @pytest.mark.asyncio
    async def test_cancel_returns_unexercised_shares(self, service, pool):
        grant = await self.active_grant(service, pool, total_shares=10_000)
        await service.exercise_shares(ORG_ID, grant.id, ExerciseGrantRequest(
            shares_exercised=2_000,
            exercise_date=date(2026, 1, 1),
        ))
        assert pool.available_shares == 90_000

        cancelled = await service.cancel_grant(ORG_ID, grant.id, reason="Left the company")

        assert cancelled.status == GrantStatus.CANCELLED.value
        assert pool.available_shares == 98_000
        assert pool.allocated_shares == 2_000

    @pytest.mark.asyncio
    async def test_cancelled_grant_is_terminal(self, service, pool):
        grant = await service.create_grant(ORG_ID, self.grant_request(pool))
        await service.cancel_grant(ORG_ID, grant.id)

        with pytest.raises(InvalidStateError):
            await service.cancel_grant(ORG_ID, grant.id)
        with pytest.raises(InvalidStateError):
            await service.approve_grant(ORG_ID, grant.id)

    @pytest.mark.asyncio
    async def test_forfeit_returns_shares(self, service, pool):
        grant = await self.active_grant(service, pool)
        await service.forfeit_grant(ORG_ID, grant.id)

        assert pool.available_shares == 100_000

    @pytest.mark.asyncio
    async def test_process_expirations(self, service, pool):
        expiring = await service.create_grant(ORG_ID, self.grant_request(pool, 10_000, expiration_date=date(2025, 1, 1)))
        await service.approve_grant(ORG_ID, expiring.id)
        draft = await service.create_grant(ORG_ID, self.grant_request(pool, 10_000, expiration_date=date(2025, 1, 1)))

        expired = await service.process_expirations(ORG_ID, as_of=date(2025, 6, 1))

        assert [g.id for g in expired] == [expiring.id]
        assert expiring.status == GrantStatus.EXPIRED.value
        assert draft.status == GrantStatus.DRAFT.value
        assert pool.allocated_shares == 10_000

    @pytest.mark.asyncio
    async def test_delete_only_drafts(self, service, pool):
        draft = await service.create_grant(ORG_ID, self.grant_request(pool, 10_000))
        approved = await service.create_grant(ORG_ID, self.grant_request(pool, 10_000))
        await service.approve_grant(ORG_ID, approved.id)

        with pytest.raises(InvalidStateError):
            await service.delete_grant(ORG_ID, approved.id)

        await service.delete_grant(ORG_ID, draft.id)
        assert pool.allocated_shares == 10_000
        with pytest.raises(NotFoundError):
            await service.get_grant(ORG_ID, draft.id)

    @pytest.mark.asyncio
    async def test_update_after_draft_limited(self, service, pool):
        grant = await service.create_grant(ORG_ID, self.grant_request(pool))
        await service.update_grant(ORG_ID, grant.id, UpdateGrantRequest(exercise_price=0.75))
        await service.approve_grant(ORG_ID, grant.id)

        with pytest.raises(InvalidStateError):
            await service.update_grant(ORG_ID, grant.id, UpdateGrantRequest(exercise_price=1.0))

        updated = await service.update_grant(ORG_ID, grant.id, UpdateGrantRequest(notes="Board signed"))
        assert updated.notes == "Board signed"
        assert updated.exercise_price == pytest.approx(0.75)

    @pytest.mark.asyncio
    async def test_vesting_schedule_report(self, service, pool):
        grant = await self.active_grant(service, pool)
        report = await service.get_vesting_schedule(ORG_ID, grant.id, as_of=date(2025, 1, 2))

        assert report.total_vested == 12_000
        assert report.total_unvested == 36_000
        assert report.total_exercisable == 12_000
        assert report.next_vesting_date == date(2025, 2, 1)
        assert report.next_vesting_amount == 1_000
        assert len(report.to_dict()["projected_vesting"]) == 37

    @pytest.mark.asyncio
    async def test_summary_and_listing(self, service, pool):
        await self.active_grant(service, pool, total_shares=20_000)
        other = await service.create_grant(ORG_ID, self.grant_request(pool, 10_000, department=None, grantee_id="emp-2"))
        await service.cancel_grant(ORG_ID, other.id)

        summary = await service.get_summary(ORG_ID)
        assert summary.total_grants == 1
        assert summary.active_grants == 1
        assert summary.total_allocated == 20_000
        assert summary.utilization_percent == pytest.approx(20.0)
        assert summary.by_department[0].department == "Engineering"

        grants, total = await service.get_grants(ORG_ID, GrantQuery(status=GrantStatus.CANCELLED))
        assert total == 1
        assert grants[0].id == other.id
