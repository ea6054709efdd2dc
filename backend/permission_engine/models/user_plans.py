from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, UniqueConstraint

from permission_engine.core.db import Base
from permission_engine.core.time import utcnow
from permission_engine.models.mixins import TimestampMixin


class UserPlan(TimestampMixin, Base):
    __tablename__ = "user_plans"
    __table_args__ = (
        # One plan per user per organization; reassignment updates the row.
        UniqueConstraint("user_id", "organization_id", name="uq_user_plan_org"),
        Index("ix_user_plans_plan_org", "plan_id", "organization_id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    plan_id = Column(Integer, ForeignKey("plans.id", ondelete="RESTRICT"), nullable=False)
    organization_id = Column(
        Integer,
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )
    is_active = Column(Boolean, default=True, nullable=False)
    assigned_at = Column(DateTime, default=utcnow, nullable=False)
    assigned_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
