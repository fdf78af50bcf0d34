"""Database models"""
from equity_ledger.models.database import Base, get_db, init_db, close_db

from equity_ledger.models.share_class import ShareClass
from equity_ledger.models.ownership_entry import OwnershipEntry
from equity_ledger.models.esop import ESOPPool, ESOPGrant, GrantVestingEvent, GrantExerciseEvent
from equity_ledger.models.funding_round import FundingRound

__all__ = [
    "Base",
    "get_db",
    "init_db",
    "close_db",
    # Cap table
    "ShareClass",
    "OwnershipEntry",
    # ESOP
    "ESOPPool",
    "ESOPGrant",
    "GrantVestingEvent",
    "GrantExerciseEvent",
    # Rounds
    "FundingRound",
]
