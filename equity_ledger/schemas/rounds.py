"""Schemas for funding round requests"""
from datetime import date
from typing import Optional

from pydantic import BaseModel, Field

from equity_ledger.constants import RoundStatus, RoundType, ShareClassType, DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE


class RoundTerms(BaseModel):
    """Term sheet fields carried with a round"""
    liquidation_preference: Optional[float] = Field(default=None, ge=0)
    participating: bool = False
    anti_dilution: Optional[str] = None  # none, broad_based, narrow_based, full_ratchet
    board_seats: Optional[int] = Field(default=None, ge=0)
    pro_rata_rights: bool = False
    option_pool_increase: float = Field(default=0.0, ge=0, lt=100)  # Percent, post-money


class CreateRoundRequest(BaseModel):
    name: str  # "Seed Round", "Series A"
    round_type: RoundType
    target_amount: float = Field(ge=0)
    minimum_investment: Optional[float] = Field(default=None, ge=0)
    pre_money_valuation: Optional[float] = Field(default=None, gt=0)
    share_class: Optional[ShareClassType] = None
    lead_investor_id: Optional[str] = None
    target_close_date: Optional[date] = None
    terms: Optional[RoundTerms] = None
    notes: Optional[str] = None


class UpdateRoundRequest(BaseModel):
    name: Optional[str] = None
    target_amount: Optional[float] = Field(default=None, ge=0)
    minimum_investment: Optional[float] = Field(default=None, ge=0)
    pre_money_valuation: Optional[float] = Field(default=None, gt=0)
    share_class: Optional[ShareClassType] = None
    lead_investor_id: Optional[str] = None
    target_close_date: Optional[date] = None
    terms: Optional[RoundTerms] = None
    notes: Optional[str] = None


class OpenRoundRequest(BaseModel):
    open_date: Optional[date] = None


class CloseRoundRequest(BaseModel):
    close_date: Optional[date] = None
    final_raised_amount: Optional[float] = Field(default=None, ge=0)


class RoundQuery(BaseModel):
    status: Optional[RoundStatus] = None
    round_type: Optional[RoundType] = None
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE)
