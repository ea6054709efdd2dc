from datetime import datetime

from sqlalchemy import Column, DateTime, Integer, String, Text

from permission_engine.core.time import utcnow


class TimestampMixin:
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class OverrideMixin(TimestampMixin):
    """Columns shared by user and organization overrides. Subclasses add
    the owner column and ``override_type``."""

    id = Column(Integer, primary_key=True, index=True)
    feature_slug = Column(String, nullable=False, index=True)
    # String-encoded integer; only meaningful for limit_increase.
    value = Column(String, nullable=True)
    expires_at = Column(DateTime, nullable=True, index=True)
    reason = Column(Text, nullable=True)

    def is_active(self, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return True
        return self.expires_at > (now or utcnow())
