from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, UniqueConstraint

from permission_engine.core.db import Base
from permission_engine.core.time import utcnow
from permission_engine.models.mixins import TimestampMixin


class Usage(TimestampMixin, Base):
    __tablename__ = "usage"
    __table_args__ = (
        UniqueConstraint("user_id", "feature_slug", name="uq_usage_user_feature"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    feature_slug = Column(String, nullable=False, index=True)
    current_usage = Column(Integer, nullable=False, default=0)
    period_start = Column(DateTime, nullable=False, default=utcnow)
    period_end = Column(DateTime, nullable=True)
