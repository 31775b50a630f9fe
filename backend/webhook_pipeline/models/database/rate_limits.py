"""
Rate limit window database model.
"""
from sqlalchemy import Column, Integer, String, DateTime, UniqueConstraint

from webhook_pipeline.core.clock import utcnow
from webhook_pipeline.core.database import Base


class RateLimitWindow(Base):
    """Fixed-window request counter for one (endpoint, identifier) pair."""

    __tablename__ = "rate_limit_windows"
    __table_args__ = (
        UniqueConstraint("endpoint", "identifier", name="uq_rate_limit_windows_endpoint_identifier"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    endpoint = Column(String(100), nullable=False)
    identifier = Column(String(255), nullable=False)
    window_start = Column(DateTime(timezone=True), nullable=False, index=True)
    request_count = Column(Integer, default=0, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
