from sqlalchemy import Column, Integer, String, Float, Date, DateTime, Text, JSON, Index

from equity_ledger.constants import RoundStatus
from equity_ledger.models.database import Base, utcnow


class FundingRound(Base):
    """Funding round and its proposed terms.

    Closing a round does not issue shares; issuance is recorded as ownership
    entries that reference the round by id.
    """
    __tablename__ = "funding_rounds"

    id = Column(Integer, primary_key=True, autoincrement=True)
    organization_id = Column(Integer, nullable=False, index=True)

    # Round identity
    name = Column(String(100), nullable=False)  # "Seed", "Series A", etc.
    round_type = Column(String(20), nullable=False)  # seed, series_a, bridge, etc.
    status = Column(String(20), nullable=False, default=RoundStatus.PLANNING.value)

    # Amounts
    target_amount = Column(Float, nullable=False, default=0.0)
    raised_amount = Column(Float, nullable=False, default=0.0)
    minimum_investment = Column(Float, nullable=True)

    # Valuation
    pre_money_valuation = Column(Float, nullable=True)
    post_money_valuation = Column(Float, nullable=True)  # pre + raised
    price_per_share = Column(Float, nullable=True)

    share_class = Column(String(20), nullable=True)
    lead_investor_id = Column(String(64), nullable=True)

    # Dates
    open_date = Column(Date, nullable=True)
    target_close_date = Column(Date, nullable=True)
    close_date = Column(Date, nullable=True)

    # Term sheet: liquidation_preference, participating, anti_dilution,
    # board_seats, pro_rata_rights, option_pool_increase
    terms = Column(JSON, nullable=True)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("ix_funding_round_org_status", "organization_id", "status"),
    )

    @property
    def percent_raised(self) -> float:
        if not self.target_amount:
            return 0.0
        return (self.raised_amount or 0) / self.target_amount * 100

    def term(self, key: str, default=None):
        return (self.terms or {}).get(key, default)

    def __repr__(self):
        return f"<FundingRound {self.name} {self.status}>"
