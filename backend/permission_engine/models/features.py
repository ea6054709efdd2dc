from sqlalchemy import Column, Integer, String, Text

from permission_engine.core.db import Base
from permission_engine.models.mixins import TimestampMixin


class Feature(TimestampMixin, Base):
    __tablename__ = "features"

    id = Column(Integer, primary_key=True, index=True)
    # Immutable once created; plans, roles and overrides reference it.
    slug = Column(String, nullable=False, unique=True, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
