from sqlalchemy import Column, Integer, String

from permission_engine.core.db import Base
from permission_engine.models.mixins import TimestampMixin


class Organization(TimestampMixin, Base):
    __tablename__ = "organizations"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    slug = Column(String, unique=True, nullable=False, index=True)
    # Identifier of the organization at the external identity provider.
    external_id = Column(String, nullable=True, unique=True)
