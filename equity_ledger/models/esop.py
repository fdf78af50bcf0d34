"""ESOP pool and grant models"""
from sqlalchemy import (
    Column, Integer, String, Float, BigInteger, Boolean, Date, DateTime, Text, JSON,
    ForeignKey, Index,
)
from sqlalchemy.orm import relationship

from equity_ledger.constants import GrantStatus
from equity_ledger.models.database import Base, utcnow


class ESOPPool(Base):
    """Option pool reserved for employee grants; one active pool per organization"""
    __tablename__ = "esop_pools"

    id = Column(Integer, primary_key=True, autoincrement=True)
    organization_id = Column(Integer, nullable=False, index=True)

    name = Column(String(100), nullable=False, default="Employee Option Pool")
    share_class = Column(String(20), nullable=False, default="options")
    total_shares = Column(BigInteger, nullable=False)
    # Derived from the pool's grants; rewritten by ESOPService on every grant mutation
    allocated_shares = Column(BigInteger, nullable=False, default=0)
    available_shares = Column(BigInteger, nullable=False, default=0)
    percent_of_company = Column(Float, nullable=True)

    created_from_round_id = Column(Integer, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("ix_esop_pool_org_active", "organization_id", "is_active"),
    )

    @property
    def utilization_percent(self) -> float:
        if not self.total_shares:
            return 0.0
        return (self.allocated_shares or 0) / self.total_shares * 100

    def set_allocated(self, allocated: int) -> None:
        self.allocated_shares = allocated
        self.available_shares = self.total_shares - allocated

    def __repr__(self):
        return f"<ESOPPool org={self.organization_id} ({self.allocated_shares}/{self.total_shares})>"


class ESOPGrant(Base):
    """Equity grant to an employee, advisor or other service provider"""
    __tablename__ = "esop_grants"

    id = Column(Integer, primary_key=True, autoincrement=True)
    organization_id = Column(Integer, nullable=False, index=True)
    pool_id = Column(Integer, ForeignKey("esop_pools.id"), nullable=False, index=True)

    # Grantee
    grantee_id = Column(String(64), nullable=False, index=True)
    grantee_name = Column(String(200), nullable=False)
    grantee_email = Column(String(200), nullable=True)
    employee_id = Column(String(50), nullable=True)
    department = Column(String(100), nullable=True)

    grant_type = Column(String(10), nullable=False)
    status = Column(String(20), nullable=False, default=GrantStatus.DRAFT.value)

    # Shares; 0 <= exercised <= vested <= total
    total_shares = Column(BigInteger, nullable=False)
    vested_shares = Column(BigInteger, nullable=False, default=0)
    unvested_shares = Column(BigInteger, nullable=False, default=0)
    exercised_shares = Column(BigInteger, nullable=False, default=0)

    exercise_price = Column(Float, nullable=False, default=0.0)
    fair_market_value = Column(Float, nullable=True)

    # Vesting terms
    grant_date = Column(Date, nullable=False)
    vesting_schedule_type = Column(String(30), nullable=False, default="standard_4y_1y_cliff")
    vesting_start_date = Column(Date, nullable=False)
    vesting_months = Column(Integer, nullable=False, default=48)
    cliff_months = Column(Integer, nullable=False, default=12)

    expiration_date = Column(Date, nullable=True)
    # {"single_trigger": bool, "double_trigger": bool, "acceleration_percent": float}
    acceleration_clause = Column(JSON, nullable=True)
    board_approval_date = Column(Date, nullable=True)
    grant_agreement_url = Column(String(500), nullable=True)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Pool is looked up by pool_id, not held as a relationship
    vesting_events = relationship(
        "GrantVestingEvent",
        back_populates="grant",
        order_by="GrantVestingEvent.vest_date",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    exercise_events = relationship(
        "GrantExerciseEvent",
        back_populates="grant",
        order_by="GrantExerciseEvent.id",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __table_args__ = (
        Index("ix_esop_grant_org_status", "organization_id", "status"),
    )

    @property
    def exercisable_shares(self) -> int:
        return (self.vested_shares or 0) - (self.exercised_shares or 0)

    def __repr__(self):
        return f"<ESOPGrant {self.grantee_name} {self.status} ({self.vested_shares}/{self.total_shares} vested)>"


class GrantVestingEvent(Base):
    """Scheduled vesting event generated when a grant is approved"""
    __tablename__ = "esop_vesting_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    grant_id = Column(Integer, ForeignKey("esop_grants.id", ondelete="CASCADE"), nullable=False, index=True)

    vest_date = Column(Date, nullable=False)
    shares_vested = Column(BigInteger, nullable=False)
    cumulative_vested = Column(BigInteger, nullable=False)
    percent_vested = Column(Float, nullable=False)

    grant = relationship("ESOPGrant", back_populates="vesting_events")


class GrantExerciseEvent(Base):
    """Exercise of vested options"""
    __tablename__ = "esop_exercise_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    grant_id = Column(Integer, ForeignKey("esop_grants.id", ondelete="CASCADE"), nullable=False, index=True)

    exercise_date = Column(Date, nullable=False)
    shares_exercised = Column(BigInteger, nullable=False)
    price_per_share = Column(Float, nullable=False)
    total_cost = Column(Float, nullable=False)
    payment_method = Column(String(30), nullable=True)
    ownership_entry_id = Column(Integer, nullable=True)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime, default=utcnow)

    grant = relationship("ESOPGrant", back_populates="exercise_events")
