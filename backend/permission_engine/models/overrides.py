from sqlalchemy import Column, Enum, ForeignKey, Index, Integer

from permission_engine.core.db import Base
from permission_engine.models.enums import OverrideTypeEnum
from permission_engine.models.mixins import OverrideMixin


def _override_type_column() -> Column:
    return Column(
        Enum(
            OverrideTypeEnum,
            name="override_type_enum",
            native_enum=False,
            validate_strings=True,
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
    )


class Override(OverrideMixin, Base):
    __tablename__ = "overrides"
    __table_args__ = (
        Index("ix_overrides_user_feature", "user_id", "feature_slug"),
    )

    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    override_type = _override_type_column()
    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)


class OrganizationOverride(OverrideMixin, Base):
    __tablename__ = "organization_overrides"
    __table_args__ = (
        Index("ix_org_overrides_org_feature", "organization_id", "feature_slug"),
    )

    organization_id = Column(
        Integer,
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )
    override_type = _override_type_column()
    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
