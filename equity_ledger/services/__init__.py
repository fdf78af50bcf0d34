"""Equity Ledger services"""
from .ownership import calculate_ownership, LedgerEntry, ShareClassTerms, OwnershipSummary
from .waterfall import calculate_waterfall, calculate_waterfall_scenarios, WaterfallResult
from .dilution import simulate_round, simulate_rounds, ProposedRound, RoundSimulation
from .vesting import calculate_vested_shares, generate_vesting_schedule, next_vesting_event
from .lifecycle import GrantEvent, RoundEvent, transition_grant, transition_round

# Database-backed services
from .ledger import LedgerReader
from .cap_table import CapTableService
from .esop import ESOPService
from .rounds import RoundService

__all__ = [
    # Ownership aggregator
    "calculate_ownership",
    "LedgerEntry",
    "ShareClassTerms",
    "OwnershipSummary",
    # Waterfall calculator
    "calculate_waterfall",
    "calculate_waterfall_scenarios",
    "WaterfallResult",
    # Round simulator
    "simulate_round",
    "simulate_rounds",
    "ProposedRound",
    "RoundSimulation",
    # Vesting and lifecycle
    "calculate_vested_shares",
    "generate_vesting_schedule",
    "next_vesting_event",
    "GrantEvent",
    "RoundEvent",
    "transition_grant",
    "transition_round",
    # Services
    "LedgerReader",
    "CapTableService",
    "ESOPService",
    "RoundService",
]
