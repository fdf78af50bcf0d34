"""
Ownership Aggregator

Folds ownership ledger entries into per-shareholder, per-share-class and
per-shareholder-type summaries. Ownership at a point in time is the
date-filtered sum of signed share counts grouped by (shareholder, share class).
"""
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Iterable, List, Optional

from equity_ledger.constants import EntryType, ownership_percent


@dataclass
class LedgerEntry:
    """Immutable snapshot of one ownership-affecting ledger line"""
    shareholder_id: str
    shareholder_name: str
    shareholder_type: str
    share_class: str
    entry_type: str
    shares: int  # Signed: positive adds, negative reduces
    effective_date: date
    price_per_share: Optional[float] = None
    total_value: Optional[float] = None
    entry_id: Optional[int] = None
    round_id: Optional[int] = None
    grant_id: Optional[int] = None

    @property
    def value(self) -> float:
        """Total value of the entry (price * |shares|)"""
        if self.total_value is not None:
            return self.total_value
        if self.price_per_share:
            return self.price_per_share * abs(self.shares)
        return 0.0


@dataclass
class ShareClassTerms:
    """Registry entry for a share class with its economic terms"""
    share_class: str
    name: str
    authorized_shares: int
    seniority: int = 0  # Higher is paid first
    liquidation_preference: Optional[float] = None  # Multiplier on invested capital
    participating: bool = False
    conversion_ratio: Optional[float] = None
    votes_per_share: float = 1.0
    is_active: bool = True


@dataclass
class ClassPosition:
    """A holder's shares in one class"""
    share_class: str
    shares: int = 0
    invested_capital: float = 0.0  # Sum of ISSUANCE entry values


@dataclass
class ShareholderOwnership:
    shareholder_id: str
    name: str
    type: str
    total_shares: int
    percent_ownership: float
    by_class: List[ClassPosition] = field(default_factory=list)

    def position(self, share_class: str) -> Optional[ClassPosition]:
        for pos in self.by_class:
            if pos.share_class == share_class:
                return pos
        return None

    @property
    def invested_capital(self) -> float:
        return sum(pos.invested_capital for pos in self.by_class)


@dataclass
class ShareClassTotal:
    share_class: str
    authorized: int
    issued: int
    outstanding: int
    percent_of_total: float


@dataclass
class ShareholderTypeTotal:
    type: str
    holder_count: int
    total_shares: int
    percent_ownership: float


@dataclass
class OwnershipSummary:
    """Capitalization summary as of a date"""
    as_of: Optional[date]
    total_authorized: int
    total_issued: int
    total_outstanding: int
    by_share_class: List[ShareClassTotal]
    by_shareholder: List[ShareholderOwnership]
    by_shareholder_type: List[ShareholderTypeTotal]

    def holder(self, shareholder_id: str) -> Optional[ShareholderOwnership]:
        for holder in self.by_shareholder:
            if holder.shareholder_id == shareholder_id:
                return holder
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "as_of": self.as_of.isoformat() if self.as_of else None,
            "total_authorized": self.total_authorized,
            "total_issued": self.total_issued,
            "total_outstanding": self.total_outstanding,
            "by_share_class": [
                {
                    "share_class": c.share_class,
                    "authorized": c.authorized,
                    "issued": c.issued,
                    "outstanding": c.outstanding,
                    "percent_of_total": c.percent_of_total,
                }
                for c in self.by_share_class
            ],
            "by_shareholder": [
                {
                    "shareholder_id": h.shareholder_id,
                    "name": h.name,
                    "type": h.type,
                    "total_shares": h.total_shares,
                    "percent_ownership": h.percent_ownership,
                    "by_class": [
                        {
                            "share_class": p.share_class,
                            "shares": p.shares,
                            "invested_capital": p.invested_capital,
                        }
                        for p in h.by_class
                    ],
                }
                for h in self.by_shareholder
            ],
            "by_shareholder_type": [
                {
                    "type": t.type,
                    "holder_count": t.holder_count,
                    "total_shares": t.total_shares,
                    "percent_ownership": t.percent_ownership,
                }
                for t in self.by_shareholder_type
            ],
        }


def calculate_ownership(
    entries: Iterable[LedgerEntry],
    share_classes: Iterable[ShareClassTerms],
    as_of: Optional[date] = None,
) -> OwnershipSummary:
    """
    Aggregate ledger entries into an ownership summary.

    Algorithm:
    1. Keep entries with effective_date <= as_of (all entries when as_of is None)
    2. Group by shareholder, summing signed shares per share class
    3. Holder total = sum across classes; total issued = sum of holder totals
    4. Percentages are relative to total issued, and 0 when nothing is issued

    Args:
        entries: Ledger entries for one organization
        share_classes: Share class registry for the same organization
        as_of: Optional cut-off date (inclusive)

    Returns:
        OwnershipSummary with shareholders sorted by total shares descending
    """
    # Active classes only, in registry order
    registry = [sc for sc in share_classes if sc.is_active]

    holders: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
    for entry in entries:
        if as_of is not None and entry.effective_date > as_of:
            continue

        holder = holders.get(entry.shareholder_id)
        if holder is None:
            holder = {
                "name": entry.shareholder_name,
                "type": entry.shareholder_type,
                "positions": OrderedDict(),
            }
            holders[entry.shareholder_id] = holder

        position = holder["positions"].get(entry.share_class)
        if position is None:
            position = ClassPosition(share_class=entry.share_class)
            holder["positions"][entry.share_class] = position

        position.shares += entry.shares
        if entry.entry_type == EntryType.ISSUANCE.value:
            position.invested_capital += entry.value

    # Totals
    total_issued = 0
    class_totals: "OrderedDict[str, int]" = OrderedDict()
    for holder in holders.values():
        for position in holder["positions"].values():
            total_issued += position.shares
            class_totals[position.share_class] = class_totals.get(position.share_class, 0) + position.shares

    total_authorized = sum(sc.authorized_shares for sc in registry)

    by_share_class = [
        ShareClassTotal(
            share_class=sc.share_class,
            authorized=sc.authorized_shares,
            issued=class_totals.get(sc.share_class, 0),
            outstanding=class_totals.get(sc.share_class, 0),
            percent_of_total=ownership_percent(class_totals.get(sc.share_class, 0), total_issued),
        )
        for sc in registry
    ]
    # Shares booked against a class missing from the registry still count
    registered = {sc.share_class for sc in registry}
    for share_class, issued in class_totals.items():
        if share_class not in registered:
            by_share_class.append(ShareClassTotal(
                share_class=share_class,
                authorized=0,
                issued=issued,
                outstanding=issued,
                percent_of_total=ownership_percent(issued, total_issued),
            ))

    by_shareholder = []
    for shareholder_id, holder in holders.items():
        positions = list(holder["positions"].values())
        total_shares = sum(p.shares for p in positions)
        by_shareholder.append(ShareholderOwnership(
            shareholder_id=shareholder_id,
            name=holder["name"],
            type=holder["type"],
            total_shares=total_shares,
            percent_ownership=ownership_percent(total_shares, total_issued),
            by_class=positions,
        ))
    by_shareholder.sort(key=lambda h: h.total_shares, reverse=True)

    type_totals: "OrderedDict[str, List[int]]" = OrderedDict()
    for holder in by_shareholder:
        counts = type_totals.setdefault(holder.type, [0, 0])
        counts[0] += 1
        counts[1] += holder.total_shares

    by_shareholder_type = [
        ShareholderTypeTotal(
            type=holder_type,
            holder_count=count,
            total_shares=shares,
            percent_ownership=ownership_percent(shares, total_issued),
        )
        for holder_type, (count, shares) in type_totals.items()
    ]

    return OwnershipSummary(
        as_of=as_of,
        total_authorized=total_authorized,
        total_issued=total_issued,
        total_outstanding=total_issued,
        by_share_class=by_share_class,
        by_shareholder=by_shareholder,
        by_shareholder_type=by_shareholder_type,
    )
