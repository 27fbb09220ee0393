"""
Base model class and common mixins for all database models.
"""

from datetime import datetime, timezone
from sqlalchemy import Column, Integer, DateTime, ForeignKey
from sqlalchemy.orm import declarative_base, declared_attr

Base = declarative_base()


def get_utc_now():
    """Get current time in UTC (as naive datetime)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class TimestampMixin:
    """Mixin for created_at and updated_at timestamps."""

    created_at = Column(DateTime, default=get_utc_now, nullable=False)
    updated_at = Column(DateTime, default=get_utc_now, onupdate=get_utc_now, nullable=False)


class TenantMixin:
    """
    Mixin that adds tenant_id to any model.
    All tenant-scoped models MUST use this mixin.
    """

    @declared_attr
    def tenant_id(cls):
        return Column(
            Integer,
            ForeignKey('tenants.id', ondelete='CASCADE'),
            nullable=False,
            index=True
        )


class BaseModel(Base, TimestampMixin):
    """Abstract base model for global (non tenant-scoped) tables."""

    __abstract__ = True

    id = Column(Integer, primary_key=True, autoincrement=True)

    def __repr__(self):
        return f"<{self.__class__.__name__}(id={self.id})>"


class TenantBaseModel(Base, TimestampMixin, TenantMixin):
    """
    Abstract base model for tenant-scoped tables.

    Includes:
    - id (PK)
    - tenant_id (FK -> tenants.id) with index
    - created_at, updated_at timestamps
    """

    __abstract__ = True

    id = Column(Integer, primary_key=True, autoincrement=True)

    def __repr__(self):
        return f"<{self.__class__.__name__}(id={self.id}, tenant_id={self.tenant_id})>"
