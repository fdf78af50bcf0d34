"""
Dilution Calculator Service

Projects the impact of a proposed funding round (and optional option pool
top-up) on existing shareholders. Pure projection: nothing is written to the
ledger; executing a round means appending issuance entries elsewhere.
"""
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import structlog

from equity_ledger.constants import ShareholderType, ownership_percent
from equity_ledger.exceptions import InvalidInputError, InvalidStateError
from equity_ledger.services.ownership import (
    OwnershipSummary,
    ShareholderOwnership,
    ShareholderTypeTotal,
)

logger = structlog.get_logger()

ESOP_POOL_HOLDER_ID = "esop-pool"
ESOP_POOL_HOLDER_NAME = "ESOP Pool"


def new_investor_holder_id(round_name: str) -> str:
    """Synthetic shareholder id used for a simulated round's investors"""
    slug = "-".join(round_name.lower().split())
    return f"round:{slug}"


@dataclass
class ProposedRound:
    """A hypothetical funding round"""
    name: str
    investment_amount: float
    pre_money_valuation: float
    share_class: Optional[str] = None
    option_pool_increase: float = 0.0  # Percent of post-round shares

    @property
    def post_money_valuation(self) -> float:
        return self.pre_money_valuation + self.investment_amount


@dataclass
class DilutedPosition:
    """An existing holder's position before and after the round"""
    shareholder_id: str
    name: str
    shares_before: int
    shares_after: int  # Existing holders keep their shares
    percent_before: float
    percent_after: float

    @property
    def dilution_percent(self) -> float:
        """Percentage points lost"""
        return self.percent_before - self.percent_after


@dataclass
class ProjectedHolder:
    """A row of the projected post-round cap table"""
    shareholder_id: str
    name: str
    type: str
    total_shares: int
    percent_ownership: float
    is_synthetic: bool = False


@dataclass
class RoundSimulation:
    """Complete single-round projection"""
    round_name: str
    share_class: Optional[str]
    investment_amount: float
    pre_money_valuation: float
    post_money_valuation: float
    price_per_share: float
    new_shares: int
    option_pool_shares: int
    total_shares_before: int
    total_shares_after: int
    dilution: List[DilutedPosition]
    new_cap_table: List[ProjectedHolder]

    def to_summary(self) -> OwnershipSummary:
        """Projected cap table as an ownership summary, for chaining rounds"""
        holders = [
            ShareholderOwnership(
                shareholder_id=h.shareholder_id,
                name=h.name,
                type=h.type,
                total_shares=h.total_shares,
                percent_ownership=h.percent_ownership,
            )
            for h in self.new_cap_table
        ]
        by_type: Dict[str, List[int]] = {}
        for h in holders:
            counts = by_type.setdefault(h.type, [0, 0])
            counts[0] += 1
            counts[1] += h.total_shares
        return OwnershipSummary(
            as_of=None,
            total_authorized=0,
            total_issued=self.total_shares_after,
            total_outstanding=self.total_shares_after,
            by_share_class=[],
            by_shareholder=holders,
            by_shareholder_type=[
                ShareholderTypeTotal(
                    type=t,
                    holder_count=count,
                    total_shares=shares,
                    percent_ownership=ownership_percent(shares, self.total_shares_after),
                )
                for t, (count, shares) in by_type.items()
            ],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "round_name": self.round_name,
            "share_class": self.share_class,
            "investment_amount": self.investment_amount,
            "pre_money_valuation": self.pre_money_valuation,
            "post_money_valuation": self.post_money_valuation,
            "price_per_share": self.price_per_share,
            "new_shares": self.new_shares,
            "option_pool_shares": self.option_pool_shares,
            "total_shares_before": self.total_shares_before,
            "total_shares_after": self.total_shares_after,
            "dilution": [
                {
                    "shareholder_id": d.shareholder_id,
                    "name": d.name,
                    "shares_before": d.shares_before,
                    "shares_after": d.shares_after,
                    "percent_before": d.percent_before,
                    "percent_after": d.percent_after,
                    "dilution_percent": d.dilution_percent,
                }
                for d in self.dilution
            ],
            "new_cap_table": [
                {
                    "shareholder_id": h.shareholder_id,
                    "name": h.name,
                    "type": h.type,
                    "total_shares": h.total_shares,
                    "percent_ownership": h.percent_ownership,
                }
                for h in self.new_cap_table
            ],
        }


@dataclass
class MultiRoundSimulation:
    """Sequence of projected rounds, each applied to the previous projection"""
    rounds: List[RoundSimulation] = field(default_factory=list)
    cumulative_dilution: List[DilutedPosition] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rounds": [r.to_dict() for r in self.rounds],
            "cumulative_dilution": [
                {
                    "shareholder_id": d.shareholder_id,
                    "name": d.name,
                    "shares_before": d.shares_before,
                    "shares_after": d.shares_after,
                    "percent_before": d.percent_before,
                    "percent_after": d.percent_after,
                    "dilution_percent": d.dilution_percent,
                }
                for d in self.cumulative_dilution
            ],
        }


def simulate_round(summary: OwnershipSummary, proposed: ProposedRound) -> RoundSimulation:
    """
    Project the cap table after a proposed round.

    Algorithm:
    1. price_per_share = pre_money_valuation / current total shares
    2. new_shares = floor(investment / price_per_share)
    3. pool top-up = floor((current + new) * top_up% ) on the post-money share count
    4. total_after = current + new + pool
    5. Each existing holder keeps its shares; only the denominator grows

    Raises:
        InvalidStateError: there are no issued shares to price the round against
        InvalidInputError: non-positive pre-money, negative investment, bad top-up
    """
    current_total = summary.total_issued
    if current_total <= 0:
        raise InvalidStateError(
            "Cannot simulate a round without issued shares",
            total_issued=current_total,
        )
    if proposed.pre_money_valuation <= 0:
        raise InvalidInputError(
            "Pre-money valuation must be positive",
            pre_money_valuation=proposed.pre_money_valuation,
        )
    if proposed.investment_amount < 0:
        raise InvalidInputError(
            "Investment amount must be non-negative",
            investment_amount=proposed.investment_amount,
        )
    if not 0 <= proposed.option_pool_increase < 100:
        raise InvalidInputError(
            "Option pool increase must be between 0 and 100 percent",
            option_pool_increase=proposed.option_pool_increase,
        )

    price_per_share = proposed.pre_money_valuation / current_total
    # Same as investment / price_per_share without rounding through the price
    new_shares = math.floor(proposed.investment_amount * current_total / proposed.pre_money_valuation)

    option_pool_shares = 0
    if proposed.option_pool_increase > 0:
        option_pool_shares = math.floor((current_total + new_shares) * proposed.option_pool_increase / 100)

    total_after = current_total + new_shares + option_pool_shares

    dilution = [
        DilutedPosition(
            shareholder_id=h.shareholder_id,
            name=h.name,
            shares_before=h.total_shares,
            shares_after=h.total_shares,
            percent_before=h.percent_ownership,
            percent_after=ownership_percent(h.total_shares, total_after),
        )
        for h in summary.by_shareholder
    ]

    new_cap_table = [
        ProjectedHolder(
            shareholder_id=h.shareholder_id,
            name=h.name,
            type=h.type,
            total_shares=h.total_shares,
            percent_ownership=ownership_percent(h.total_shares, total_after),
        )
        for h in summary.by_shareholder
    ]
    new_cap_table.append(ProjectedHolder(
        shareholder_id=new_investor_holder_id(proposed.name),
        name=f"{proposed.name} Investors",
        type=ShareholderType.INVESTOR.value,
        total_shares=new_shares,
        percent_ownership=ownership_percent(new_shares, total_after),
        is_synthetic=True,
    ))

    if option_pool_shares > 0:
        pool_holder = next(
            (h for h in new_cap_table if h.type == ShareholderType.COMPANY.value),
            None,
        )
        if pool_holder is not None:
            pool_holder.total_shares += option_pool_shares
            pool_holder.percent_ownership = ownership_percent(pool_holder.total_shares, total_after)
        else:
            new_cap_table.append(ProjectedHolder(
                shareholder_id=ESOP_POOL_HOLDER_ID,
                name=ESOP_POOL_HOLDER_NAME,
                type=ShareholderType.COMPANY.value,
                total_shares=option_pool_shares,
                percent_ownership=ownership_percent(option_pool_shares, total_after),
                is_synthetic=True,
            ))

    new_cap_table.sort(key=lambda h: h.total_shares, reverse=True)

    logger.debug(
        "Simulated round",
        round_name=proposed.name,
        price_per_share=price_per_share,
        new_shares=new_shares,
        option_pool_shares=option_pool_shares,
        total_shares_after=total_after,
    )

    return RoundSimulation(
        round_name=proposed.name,
        share_class=proposed.share_class,
        investment_amount=proposed.investment_amount,
        pre_money_valuation=proposed.pre_money_valuation,
        post_money_valuation=proposed.post_money_valuation,
        price_per_share=price_per_share,
        new_shares=new_shares,
        option_pool_shares=option_pool_shares,
        total_shares_before=current_total,
        total_shares_after=total_after,
        dilution=dilution,
        new_cap_table=new_cap_table,
    )


def simulate_rounds(summary: OwnershipSummary, rounds: List[ProposedRound]) -> MultiRoundSimulation:
    """
    Apply several proposed rounds in order, each priced against the
    projection left by the previous one.
    """
    result = MultiRoundSimulation()
    current = summary
    for proposed in rounds:
        simulation = simulate_round(current, proposed)
        result.rounds.append(simulation)
        current = simulation.to_summary()

    final = {h.shareholder_id: h for h in current.by_shareholder}
    for holder in summary.by_shareholder:
        after = final.get(holder.shareholder_id)
        result.cumulative_dilution.append(DilutedPosition(
            shareholder_id=holder.shareholder_id,
            name=holder.name,
            shares_before=holder.total_shares,
            shares_after=after.total_shares if after else holder.total_shares,
            percent_before=holder.percent_ownership,
            percent_after=after.percent_ownership if after else holder.percent_ownership,
        ))
    return result
