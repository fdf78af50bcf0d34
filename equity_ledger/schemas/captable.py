"""Schemas for cap table requests"""
from datetime import date
from typing import List, Optional

from pydantic import BaseModel, Field

from equity_ledger.constants import EntryType, ShareClassType, ShareholderType


# =============================================================================
# Share Class Schemas
# =============================================================================

class CreateShareClassRequest(BaseModel):
    """Request to register a share class"""
    name: str  # "Common Stock", "Series A Preferred"
    share_class: ShareClassType
    authorized_shares: int = Field(ge=0)
    par_value: Optional[float] = Field(default=None, ge=0)
    votes_per_share: float = Field(default=1.0, ge=0)
    liquidation_preference: Optional[float] = Field(default=None, ge=0)  # 1x, 1.5x, 2x
    participating: bool = False
    conversion_ratio: Optional[float] = Field(default=None, ge=0)
    dividend_rate: Optional[float] = Field(default=None, ge=0)
    seniority: int = 0  # Higher is paid first


class UpdateShareClassRequest(BaseModel):
    """Partial update of a share class; None leaves a field unchanged"""
    name: Optional[str] = None
    authorized_shares: Optional[int] = Field(default=None, ge=0)
    par_value: Optional[float] = Field(default=None, ge=0)
    votes_per_share: Optional[float] = Field(default=None, ge=0)
    liquidation_preference: Optional[float] = Field(default=None, ge=0)
    participating: Optional[bool] = None
    conversion_ratio: Optional[float] = Field(default=None, ge=0)
    dividend_rate: Optional[float] = Field(default=None, ge=0)
    seniority: Optional[int] = None
    is_active: Optional[bool] = None


# =============================================================================
# Ledger Entry Schemas
# =============================================================================

class CreateEntryRequest(BaseModel):
    """Request to append an ownership entry"""
    shareholder_id: str
    shareholder_name: str
    shareholder_type: ShareholderType
    share_class: ShareClassType
    entry_type: EntryType
    shares: int  # Signed
    price_per_share: Optional[float] = Field(default=None, ge=0)
    effective_date: date
    round_id: Optional[int] = None
    grant_id: Optional[int] = None
    certificate_number: Optional[str] = None
    notes: Optional[str] = None


class UpdateEntryRequest(BaseModel):
    """Corrections to an entry's descriptive fields"""
    shareholder_name: Optional[str] = None
    price_per_share: Optional[float] = Field(default=None, ge=0)
    effective_date: Optional[date] = None
    certificate_number: Optional[str] = None
    notes: Optional[str] = None


class TransferSharesRequest(BaseModel):
    """Move shares between two holders; recorded as two signed entries"""
    from_shareholder_id: str
    to_shareholder_id: str
    to_shareholder_name: str
    to_shareholder_type: ShareholderType
    share_class: ShareClassType
    shares: int = Field(gt=0)
    price_per_share: Optional[float] = Field(default=None, ge=0)
    effective_date: date
    notes: Optional[str] = None


class EntryQuery(BaseModel):
    """Filters for listing ledger entries"""
    shareholder_type: Optional[ShareholderType] = None
    share_class: Optional[ShareClassType] = None
    as_of_date: Optional[date] = None


# =============================================================================
# Simulator Schemas
# =============================================================================

class WaterfallRequest(BaseModel):
    """Request to simulate a liquidation waterfall"""
    exit_valuation: float = Field(ge=0)
    as_of_date: Optional[date] = None
    participation_aware: Optional[bool] = None  # None uses the configured default


class WaterfallScenariosRequest(BaseModel):
    """Request to simulate the waterfall for several exit valuations"""
    exit_valuations: List[float] = Field(min_length=1)
    as_of_date: Optional[date] = None
    participation_aware: Optional[bool] = None


class SimulateRoundRequest(BaseModel):
    """Request to project a new funding round"""
    round_name: str
    investment_amount: float = Field(ge=0)
    pre_money_valuation: float = Field(gt=0)
    share_class: Optional[ShareClassType] = None
    option_pool_increase: float = Field(default=0.0, ge=0, lt=100)  # Percent
    as_of_date: Optional[date] = None
