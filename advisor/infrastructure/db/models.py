"""
Database Models (SQLAlchemy ORM)
Insert-only tables - rates are never updated in place
"""

from sqlalchemy import Column, Date, DateTime, Index, Integer, Numeric, String

from advisor.infrastructure.db.database import Base
from advisor.utils.time import utc_now


class ExchangeRateModel(Base):
    """One fetched exchange rate. A refresh appends a new row."""
    __tablename__ = "exchange_rates"

    id = Column(Integer, primary_key=True, autoincrement=True)
    base_currency = Column(String(3), nullable=False)
    target_currency = Column(String(3), nullable=False)
    rate = Column(Numeric(24, 12), nullable=False)
    rate_date = Column(Date, nullable=False)
    fetched_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    source = Column(String(50), nullable=False)

    __table_args__ = (
        Index("ix_exchange_rates_pair_date", "base_currency", "target_currency", "rate_date"),
    )
