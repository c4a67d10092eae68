"""AI usage accounting model."""

from sqlalchemy import Column, Float, Integer, String

from app.db.base import Base


class AiUsageLog(Base):
    """One row per uncached AI call."""

    __tablename__ = "ai_usage_logs"

    user_id = Column(String(64), index=True)
    role = Column(String(20))
    feature = Column(String(100), index=True)
    model = Column(String(100))
    input_tokens = Column(Integer, default=0)
    output_tokens = Column(Integer, default=0)
    cost_usd = Column(Float, default=0.0)
