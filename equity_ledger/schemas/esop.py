"""Schemas for ESOP pool and grant requests"""
from datetime import date
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from equity_ledger.constants import GrantStatus, GrantType, ShareClassType, VestingScheduleType, DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE


class CreatePoolRequest(BaseModel):
    """Request to create the organization's option pool"""
    name: str = "Employee Option Pool"
    total_shares: int = Field(gt=0)
    share_class: ShareClassType = ShareClassType.OPTIONS
    percent_of_company: Optional[float] = Field(default=None, ge=0, le=100)
    created_from_round_id: Optional[int] = None
    notes: Optional[str] = None


class UpdatePoolRequest(BaseModel):
    name: Optional[str] = None
    total_shares: Optional[int] = Field(default=None, gt=0)
    percent_of_company: Optional[float] = Field(default=None, ge=0, le=100)
    notes: Optional[str] = None


class AccelerationClause(BaseModel):
    single_trigger: bool = False
    double_trigger: bool = False
    acceleration_percent: float = Field(default=100.0, ge=0, le=100)


class CreateGrantRequest(BaseModel):
    """Request to create a draft grant against the pool"""
    pool_id: int
    grantee_id: str
    grantee_name: str
    grantee_email: Optional[str] = None
    employee_id: Optional[str] = None
    department: Optional[str] = None
    grant_type: GrantType = GrantType.ISO
    total_shares: int = Field(gt=0)
    exercise_price: float = Field(default=0.0, ge=0)
    fair_market_value: Optional[float] = Field(default=None, ge=0)
    grant_date: date
    vesting_schedule_type: VestingScheduleType = VestingScheduleType.STANDARD_4Y_1Y_CLIFF
    vesting_start_date: date
    vesting_months: int = Field(default=48, ge=1, le=120)
    cliff_months: int = Field(default=12, ge=0)
    expiration_date: Optional[date] = None
    acceleration_clause: Optional[AccelerationClause] = None
    board_approval_date: Optional[date] = None
    grant_agreement_url: Optional[str] = None
    notes: Optional[str] = None

    @model_validator(mode="after")
    def check_cliff(self):
        if self.cliff_months > self.vesting_months:
            raise ValueError("cliff_months cannot exceed vesting_months")
        return self


class UpdateGrantRequest(BaseModel):
    """Grant edits; once a grant leaves draft only the annotation fields may change"""
    grantee_name: Optional[str] = None
    grantee_email: Optional[str] = None
    department: Optional[str] = None
    exercise_price: Optional[float] = Field(default=None, ge=0)
    fair_market_value: Optional[float] = Field(default=None, ge=0)
    vesting_start_date: Optional[date] = None
    expiration_date: Optional[date] = None
    board_approval_date: Optional[date] = None
    acceleration_clause: Optional[AccelerationClause] = None
    grant_agreement_url: Optional[str] = None
    notes: Optional[str] = None


# Fields a non-draft grant may still change
POST_DRAFT_EDITABLE_FIELDS = frozenset({"notes", "grant_agreement_url", "acceleration_clause"})


class ApproveGrantRequest(BaseModel):
    board_approval_date: Optional[date] = None


class ExerciseGrantRequest(BaseModel):
    shares_exercised: int = Field(gt=0)
    exercise_date: Optional[date] = None  # Defaults to today; future dates are rejected
    payment_method: Optional[str] = None  # cash, cashless, net_exercise
    notes: Optional[str] = None


class GrantQuery(BaseModel):
    status: Optional[GrantStatus] = None
    grant_type: Optional[GrantType] = None
    department: Optional[str] = None
    grantee_id: Optional[str] = None
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE)
