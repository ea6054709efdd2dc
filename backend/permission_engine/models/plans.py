from sqlalchemy import Boolean, Column, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from permission_engine.core.db import Base
from permission_engine.models.mixins import TimestampMixin


class Plan(TimestampMixin, Base):
    __tablename__ = "plans"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    slug = Column(String, nullable=False, unique=True, index=True)
    description = Column(Text, nullable=True)
    # Null for catalog plans shared by every organization.
    organization_id = Column(
        Integer,
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    is_active = Column(Boolean, default=True, nullable=False, index=True)

    plan_features = relationship(
        "PlanFeature",
        back_populates="plan",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    plan_limits = relationship(
        "PlanLimit",
        back_populates="plan",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class PlanFeature(Base):
    __tablename__ = "plan_features"
    __table_args__ = (
        UniqueConstraint("plan_id", "feature_id", name="uq_plan_feature"),
    )

    id = Column(Integer, primary_key=True, index=True)
    plan_id = Column(Integer, ForeignKey("plans.id", ondelete="CASCADE"), nullable=False, index=True)
    feature_id = Column(
        Integer,
        ForeignKey("features.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    enabled = Column(Boolean, default=True, nullable=False)

    plan = relationship("Plan", back_populates="plan_features")
    feature = relationship("Feature", lazy="selectin")


class PlanLimit(TimestampMixin, Base):
    __tablename__ = "plan_limits"
    __table_args__ = (
        UniqueConstraint("plan_id", "feature_slug", name="uq_plan_limit"),
    )

    id = Column(Integer, primary_key=True, index=True)
    plan_id = Column(Integer, ForeignKey("plans.id", ondelete="CASCADE"), nullable=False, index=True)
    feature_slug = Column(String, nullable=False, index=True)
    max_limit = Column(Integer, nullable=False)

    plan = relationship("Plan", back_populates="plan_limits")
