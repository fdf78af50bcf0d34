from sqlalchemy import Column, Integer, String, Float, Boolean, DateTime, BigInteger, UniqueConstraint, Index

from equity_ledger.models.database import Base, utcnow


class ShareClass(Base):
    """Share class registry entry with liquidation terms"""
    __tablename__ = "share_classes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    organization_id = Column(Integer, nullable=False, index=True)

    # Identity
    name = Column(String(100), nullable=False)  # "Common Stock", "Series A Preferred"
    share_class = Column(String(20), nullable=False)  # ShareClassType tag

    # Share counts
    authorized_shares = Column(BigInteger, nullable=False, default=0)
    # Derived from the ledger; rewritten by CapTableService.refresh_derived
    issued_shares = Column(BigInteger, nullable=False, default=0)
    outstanding_shares = Column(BigInteger, nullable=False, default=0)

    par_value = Column(Float, nullable=True)
    votes_per_share = Column(Float, nullable=False, default=1.0)

    # Liquidation terms
    # Seniority: higher is paid first in a waterfall
    seniority = Column(Integer, nullable=False, default=0)
    # Multiplier on invested capital, None when the class carries no preference
    liquidation_preference = Column(Float, nullable=True)
    participating = Column(Boolean, nullable=False, default=False)
    conversion_ratio = Column(Float, nullable=True)
    dividend_rate = Column(Float, nullable=True)

    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("organization_id", "share_class", name="uq_share_class_org_class"),
        Index("ix_share_class_org_seniority", "organization_id", "seniority"),
    )

    @property
    def available_shares(self) -> int:
        return (self.authorized_shares or 0) - (self.issued_shares or 0)

    @property
    def percent_issued(self) -> float:
        if not self.authorized_shares:
            return 0.0
        return (self.issued_shares or 0) / self.authorized_shares * 100

    def __repr__(self):
        return f"<ShareClass {self.share_class} org={self.organization_id} ({self.issued_shares}/{self.authorized_shares})>"
