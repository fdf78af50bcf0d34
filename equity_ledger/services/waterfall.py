"""
Waterfall Calculator Service

Calculates how exit proceeds are distributed across shareholders based on
share class seniority and liquidation preference multiples.

Default (two-pass) behaviour:
1. Pay liquidation preferences class by class, highest seniority first
2. Distribute whatever remains pro-rata across ALL issued shares, including
   shares that already received a preference

Participation-aware behaviour (opt-in):
- Non-participating preferred takes the GREATER of its preference or the
  residual it would actually receive as converted, after every preference
  that is still paid; it is left out of the residual pass when it keeps the
  preference
- Participating preferred takes its preference and also shares in the residual
"""
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

import structlog

from equity_ledger.exceptions import InvalidInputError
from equity_ledger.services.ownership import OwnershipSummary, ShareClassTerms

logger = structlog.get_logger()


@dataclass
class WaterfallPayout:
    """Proceeds for a single shareholder"""
    shareholder_id: str
    name: str
    type: str
    shares: int
    percent_ownership: float
    invested_capital: float = 0.0
    preference_proceeds: float = 0.0
    residual_proceeds: float = 0.0
    converted_classes: List[str] = field(default_factory=list)

    @property
    def proceeds(self) -> float:
        return self.preference_proceeds + self.residual_proceeds

    @property
    def multiple(self) -> Optional[float]:
        """Return multiple on invested capital, None when nothing was invested"""
        if self.invested_capital > 0:
            return self.proceeds / self.invested_capital
        return None


@dataclass
class WaterfallStep:
    """Preference payments for a single share class"""
    share_class: str
    seniority: int
    preference_multiple: float
    total_claim: float
    amount_available: float
    amount_distributed: float
    fully_satisfied: bool


@dataclass
class WaterfallResult:
    """Complete waterfall calculation result"""
    exit_valuation: float
    total_shares: int
    distribution: List[WaterfallPayout]
    steps: List[WaterfallStep]
    residual_price_per_share: float
    remaining: float
    participation_aware: bool = False

    @property
    def total_distributed(self) -> float:
        return sum(p.proceeds for p in self.distribution)

    def get_payout_by_holder(self) -> Dict[str, float]:
        """Get total proceeds for each shareholder"""
        payouts: Dict[str, float] = defaultdict(float)
        for payout in self.distribution:
            payouts[payout.shareholder_id] += payout.proceeds
        return dict(payouts)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for callers"""
        distribution = []
        for p in self.distribution:
            row = {
                "shareholder_id": p.shareholder_id,
                "name": p.name,
                "type": p.type,
                "shares": p.shares,
                "percent_ownership": p.percent_ownership,
                "preference_proceeds": p.preference_proceeds,
                "residual_proceeds": p.residual_proceeds,
                "proceeds": p.proceeds,
                "invested_capital": p.invested_capital,
            }
            if p.multiple is not None:
                row["multiple"] = p.multiple
            if p.converted_classes:
                row["converted_classes"] = list(p.converted_classes)
            distribution.append(row)

        return {
            "exit_valuation": self.exit_valuation,
            "total_shares": self.total_shares,
            "participation_aware": self.participation_aware,
            "residual_price_per_share": self.residual_price_per_share,
            "remaining": self.remaining,
            "total_distributed": self.total_distributed,
            "steps": [
                {
                    "share_class": s.share_class,
                    "seniority": s.seniority,
                    "preference_multiple": s.preference_multiple,
                    "total_claim": s.total_claim,
                    "amount_available": s.amount_available,
                    "amount_distributed": s.amount_distributed,
                    "fully_satisfied": s.fully_satisfied,
                }
                for s in self.steps
            ],
            "distribution": distribution,
        }


# (holder id, share class) pair
Position = Tuple[str, str]


@dataclass
class _Distribution:
    """One run of the preference and residual passes"""
    payouts: Dict[str, WaterfallPayout]
    steps: List[WaterfallStep]
    residual_price: float
    remaining: float
    preference_paid: Dict[Position, float]


def _distribute(
    summary: OwnershipSummary,
    sorted_classes: List[ShareClassTerms],
    exit_valuation: float,
    participation_aware: bool,
    converted: Set[Position],
) -> _Distribution:
    holders = summary.by_shareholder
    total_shares = summary.total_issued

    payouts = {
        h.shareholder_id: WaterfallPayout(
            shareholder_id=h.shareholder_id,
            name=h.name,
            type=h.type,
            shares=h.total_shares,
            percent_ownership=h.percent_ownership,
        )
        for h in holders
    }
    preference_paid: Dict[Position, float] = {}
    # Positions that kept a non-participating preference
    excluded: Set[Position] = set()

    remaining = exit_valuation
    steps: List[WaterfallStep] = []

    # First pass: liquidation preferences
    for share_class in sorted_classes:
        if not share_class.liquidation_preference:
            continue

        amount_available = remaining
        total_claim = 0.0
        distributed = 0.0

        for holder in holders:
            position = holder.position(share_class.share_class)
            if position is None or position.shares <= 0:
                continue

            key = (holder.shareholder_id, share_class.share_class)
            payout = payouts[holder.shareholder_id]
            claim = position.invested_capital * share_class.liquidation_preference
            payout.invested_capital += position.invested_capital

            if participation_aware and not share_class.participating:
                if key in converted:
                    payout.converted_classes.append(share_class.share_class)
                    continue
                excluded.add(key)

            paid = min(claim, remaining)
            remaining -= paid
            total_claim += claim
            distributed += paid
            payout.preference_proceeds += paid
            preference_paid[key] = paid

        steps.append(WaterfallStep(
            share_class=share_class.share_class,
            seniority=share_class.seniority,
            preference_multiple=share_class.liquidation_preference,
            total_claim=total_claim,
            amount_available=amount_available,
            amount_distributed=distributed,
            fully_satisfied=distributed >= total_claim,
        ))

    # Second pass: residual pro-rata
    residual_price = 0.0
    if remaining > 0 and total_shares > 0:
        excluded_shares: Dict[str, int] = defaultdict(int)
        for holder_id, class_name in excluded:
            excluded_shares[holder_id] += summary.holder(holder_id).position(class_name).shares

        eligible_shares = total_shares - sum(excluded_shares.values())
        if eligible_shares > 0:
            residual_price = remaining / eligible_shares
            for holder in holders:
                holder_shares = holder.total_shares - excluded_shares.get(holder.shareholder_id, 0)
                payouts[holder.shareholder_id].residual_proceeds += holder_shares * residual_price
            remaining = 0.0

    return _Distribution(
        payouts=payouts,
        steps=steps,
        residual_price=residual_price,
        remaining=remaining,
        preference_paid=preference_paid,
    )


def _settle_conversions(
    summary: OwnershipSummary,
    sorted_classes: List[ShareClassTerms],
    exit_valuation: float,
) -> _Distribution:
    """
    Decide which non-participating positions convert to common.

    Everyone starts on their preference. Positions are then tried cheapest
    preference per share first: a position converts when the residual it
    would receive in a full re-run beats the preference it is currently
    paid. Conversions only accumulate, so the loop ends once a pass
    converts nothing.
    """
    candidates: List[Tuple[float, Position, int]] = []
    for share_class in sorted_classes:
        if not share_class.liquidation_preference or share_class.participating:
            continue
        for holder in summary.by_shareholder:
            position = holder.position(share_class.share_class)
            if position is None or position.shares <= 0:
                continue
            claim = position.invested_capital * share_class.liquidation_preference
            candidates.append((claim / position.shares, (holder.shareholder_id, share_class.share_class), position.shares))
    candidates.sort(key=lambda c: c[0])

    converted: Set[Position] = set()
    outcome = _distribute(summary, sorted_classes, exit_valuation, True, converted)

    changed = True
    while changed:
        changed = False
        for _, key, shares in candidates:
            if key in converted:
                continue
            trial = _distribute(summary, sorted_classes, exit_valuation, True, converted | {key})
            if shares * trial.residual_price > outcome.preference_paid.get(key, 0.0):
                converted.add(key)
                outcome = trial
                changed = True

    if converted:
        logger.debug("Settled preferred conversions", converted=sorted(converted))
    return outcome


def calculate_waterfall(
    summary: OwnershipSummary,
    share_classes: Iterable[ShareClassTerms],
    exit_valuation: float,
    participation_aware: bool = False,
) -> WaterfallResult:
    """
    Calculate the liquidation waterfall for an exit.

    Args:
        summary: Current ownership summary (carries invested capital per class)
        share_classes: Share class registry with seniority and preference terms
        exit_valuation: Total exit proceeds, must be non-negative
        participation_aware: Apply participating / non-participating rules

    Returns:
        WaterfallResult with holders sorted by proceeds descending

    Raises:
        InvalidInputError: exit_valuation is negative
    """
    if exit_valuation < 0:
        raise InvalidInputError("Exit valuation must be non-negative", exit_valuation=exit_valuation)

    if not summary.by_shareholder:
        return WaterfallResult(
            exit_valuation=exit_valuation,
            total_shares=0,
            distribution=[],
            steps=[],
            residual_price_per_share=0.0,
            remaining=exit_valuation,
            participation_aware=participation_aware,
        )

    # Highest seniority first; sorted() keeps registry order within a rank
    sorted_classes = sorted(share_classes, key=lambda sc: sc.seniority, reverse=True)

    if participation_aware:
        outcome = _settle_conversions(summary, sorted_classes, exit_valuation)
    else:
        outcome = _distribute(summary, sorted_classes, exit_valuation, False, set())

    distribution = sorted(outcome.payouts.values(), key=lambda p: p.proceeds, reverse=True)

    logger.debug(
        "Calculated waterfall",
        exit_valuation=exit_valuation,
        holders=len(distribution),
        preference_steps=len(outcome.steps),
        residual_price_per_share=outcome.residual_price,
        participation_aware=participation_aware,
    )

    return WaterfallResult(
        exit_valuation=exit_valuation,
        total_shares=summary.total_issued,
        distribution=distribution,
        steps=outcome.steps,
        residual_price_per_share=outcome.residual_price,
        remaining=outcome.remaining,
        participation_aware=participation_aware,
    )


def calculate_waterfall_scenarios(
    summary: OwnershipSummary,
    share_classes: Iterable[ShareClassTerms],
    exit_valuations: List[float],
    participation_aware: bool = False,
) -> List[WaterfallResult]:
    """
    Calculate the waterfall for several exit valuations.

    Useful for charting how proceeds change with the exit value.
    """
    share_classes = list(share_classes)
    return [
        calculate_waterfall(summary, share_classes, exit_valuation, participation_aware)
        for exit_valuation in exit_valuations
    ]
