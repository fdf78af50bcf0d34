"""Domain enums, limits and small calculation helpers shared by the engines"""
from datetime import date, datetime
from enum import Enum
from typing import Union


# =============================================================================
# Rounds
# =============================================================================

class RoundType(str, Enum):
    """Types of funding rounds"""
    PRE_SEED = "pre_seed"
    SEED = "seed"
    SERIES_A = "series_a"
    SERIES_B = "series_b"
    SERIES_C = "series_c"
    SERIES_D = "series_d"
    BRIDGE = "bridge"
    CONVERTIBLE_NOTE = "convertible_note"
    SAFE = "safe"
    OTHER = "other"


class RoundStatus(str, Enum):
    """Funding round lifecycle"""
    PLANNING = "planning"
    ACTIVE = "active"
    CLOSED = "closed"
    CANCELLED = "cancelled"


# =============================================================================
# Cap table
# =============================================================================

class ShareClassType(str, Enum):
    """Share class tags; one registry entry per tag per organization"""
    COMMON = "common"
    PREFERRED = "preferred"
    SERIES_SEED = "series_seed"
    SERIES_A = "series_a"
    SERIES_B = "series_b"
    SERIES_C = "series_c"
    SERIES_D = "series_d"
    OPTIONS = "options"
    WARRANTS = "warrants"
    CONVERTIBLE = "convertible"


class ShareholderType(str, Enum):
    FOUNDER = "founder"
    INVESTOR = "investor"
    EMPLOYEE = "employee"
    ADVISOR = "advisor"
    COMPANY = "company"  # Treasury shares
    OTHER = "other"


class EntryType(str, Enum):
    """Kinds of ownership-affecting ledger entries"""
    ISSUANCE = "issuance"
    TRANSFER = "transfer"
    EXERCISE = "exercise"
    CONVERSION = "conversion"
    BUYBACK = "buyback"
    CANCELLATION = "cancellation"


# =============================================================================
# ESOP
# =============================================================================

class GrantStatus(str, Enum):
    DRAFT = "draft"
    APPROVED = "approved"
    ACTIVE = "active"
    PARTIALLY_VESTED = "partially_vested"
    FULLY_VESTED = "fully_vested"
    EXERCISED = "exercised"
    EXPIRED = "expired"
    CANCELLED = "cancelled"
    FORFEITED = "forfeited"


class GrantType(str, Enum):
    ISO = "iso"  # Incentive Stock Option
    NSO = "nso"  # Non-Qualified Stock Option
    RSU = "rsu"  # Restricted Stock Unit
    RSA = "rsa"  # Restricted Stock Award
    SAR = "sar"  # Stock Appreciation Right
    PHANTOM = "phantom"


class VestingScheduleType(str, Enum):
    STANDARD_4Y_1Y_CLIFF = "standard_4y_1y_cliff"
    STANDARD_4Y_NO_CLIFF = "standard_4y_no_cliff"
    IMMEDIATE = "immediate"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ANNUAL = "annual"
    MILESTONE_BASED = "milestone_based"
    CUSTOM = "custom"


# Grants in these states no longer hold their unexercised shares in the pool
RELEASED_GRANT_STATUSES = frozenset({
    GrantStatus.CANCELLED,
    GrantStatus.EXPIRED,
    GrantStatus.FORFEITED,
})

TERMINAL_GRANT_STATUSES = RELEASED_GRANT_STATUSES | {GrantStatus.EXERCISED}

# Statuses whose vested amount is refreshed from the clock
VESTING_STATUSES = frozenset({
    GrantStatus.APPROVED,
    GrantStatus.ACTIVE,
    GrantStatus.PARTIALLY_VESTED,
})


# =============================================================================
# Limits
# =============================================================================

MIN_SHARES = 1
MAX_SHARES_PER_TRANSACTION = 1_000_000_000
MAX_PRICE_PER_SHARE = 1_000_000
SIGNIFICANT_DILUTION_THRESHOLD = 0.10  # 10%
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100

ROUND_TYPE_DISPLAY_NAMES = {
    RoundType.PRE_SEED: "Pre-Seed",
    RoundType.SEED: "Seed",
    RoundType.SERIES_A: "Series A",
    RoundType.SERIES_B: "Series B",
    RoundType.SERIES_C: "Series C",
    RoundType.SERIES_D: "Series D",
    RoundType.BRIDGE: "Bridge",
    RoundType.CONVERTIBLE_NOTE: "Convertible Note",
    RoundType.SAFE: "SAFE",
    RoundType.OTHER: "Other",
}

SHARE_CLASS_DISPLAY_NAMES = {
    ShareClassType.COMMON: "Common Stock",
    ShareClassType.PREFERRED: "Preferred Stock",
    ShareClassType.SERIES_SEED: "Series Seed Preferred",
    ShareClassType.SERIES_A: "Series A Preferred",
    ShareClassType.SERIES_B: "Series B Preferred",
    ShareClassType.SERIES_C: "Series C Preferred",
    ShareClassType.SERIES_D: "Series D Preferred",
    ShareClassType.OPTIONS: "Stock Options",
    ShareClassType.WARRANTS: "Warrants",
    ShareClassType.CONVERTIBLE: "Convertible Securities",
}


# =============================================================================
# Helpers
# =============================================================================

def ownership_percent(shares: float, total_shares: float) -> float:
    """Percentage of total_shares held; 0 when there is nothing issued"""
    if total_shares == 0:
        return 0.0
    return shares / total_shares * 100


def months_between(start: Union[date, datetime], end: Union[date, datetime]) -> int:
    """Whole calendar months from start to end, ignoring the day of month.

    2024-01-31 -> 2024-02-01 is one month; 2024-01-01 -> 2024-01-31 is zero.
    """
    return (end.year - start.year) * 12 + (end.month - start.month)


def round_type_display_name(round_type: Union[RoundType, str]) -> str:
    try:
        return ROUND_TYPE_DISPLAY_NAMES[RoundType(round_type)]
    except ValueError:
        return str(round_type)


def share_class_display_name(share_class: Union[ShareClassType, str]) -> str:
    try:
        return SHARE_CLASS_DISPLAY_NAMES[ShareClassType(share_class)]
    except ValueError:
        return str(share_class)
