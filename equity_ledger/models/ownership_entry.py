"""Ownership ledger model"""
from sqlalchemy import Column, Integer, String, Float, BigInteger, Date, DateTime, Text, Index

from equity_ledger.models.database import Base, utcnow


class OwnershipEntry(Base):
    """
    One ownership-affecting event.

    Entries are append-only by convention. Ownership at a date is the sum of
    signed `shares` up to that date grouped by (shareholder, share class).
    """
    __tablename__ = "ownership_entries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    organization_id = Column(Integer, nullable=False, index=True)

    # Shareholder (resolved elsewhere; only its id, name and kind live here)
    shareholder_id = Column(String(64), nullable=False)
    shareholder_name = Column(String(200), nullable=False)
    shareholder_type = Column(String(20), nullable=False)

    share_class = Column(String(20), nullable=False)
    entry_type = Column(String(20), nullable=False)

    # Signed: positive adds shares, negative removes them
    shares = Column(BigInteger, nullable=False)
    price_per_share = Column(Float, nullable=True)
    total_value = Column(Float, nullable=True)  # price_per_share * |shares|

    # Cache only; recomputed from the ledger, never read as ground truth
    percent_ownership = Column(Float, nullable=False, default=0.0)

    round_id = Column(Integer, nullable=True)
    grant_id = Column(Integer, nullable=True)

    effective_date = Column(Date, nullable=False)
    certificate_number = Column(String(50), nullable=True)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("ix_ownership_org_shareholder", "organization_id", "shareholder_id"),
        Index("ix_ownership_org_class", "organization_id", "share_class"),
        Index("ix_ownership_org_date", "organization_id", "effective_date"),
        Index("ix_ownership_org_round", "organization_id", "round_id"),
    )

    def compute_total_value(self) -> None:
        """Derive total_value from price and share count"""
        if self.price_per_share is not None and self.shares:
            self.total_value = self.price_per_share * abs(self.shares)
        else:
            self.total_value = None

    def __repr__(self):
        return f"<OwnershipEntry {self.entry_type} {self.shareholder_id} {self.shares:+d} {self.share_class}>"
