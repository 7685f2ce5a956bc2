"""
Base mixins and column types for database models.

Provides common functionality:
- UTCDateTime: timezone-aware timestamps that always come back in UTC
- TimestampMixin: created_at, updated_at timestamps
- TenantScopedMixin: tenant_id foreign key for multi-tenant isolation
- generate_uuid: UUID generation for primary keys
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, String, DateTime, ForeignKey, func, TypeDecorator
from sqlalchemy.orm import declared_attr

from shift_billing.db_base import Base  # noqa: F401


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware datetime stored in UTC.

    PostgreSQL keeps the offset natively; SQLite drops it and returns naive
    values. Binding normalizes to UTC and loading re-attaches UTC, so
    comparisons against datetime.now(timezone.utc) work on both.
    """
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if value.tzinfo is None:
            raise ValueError("naive datetime bound to a UTCDateTime column")
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def generate_uuid() -> str:
    """Generate a UUID4 string for use as a primary key default."""
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TimestampMixin:
    """Mixin that adds created_at and updated_at timestamp columns."""

    created_at = Column(
        UTCDateTime,
        nullable=False,
        default=utcnow,
        server_default=func.now(),
        comment="Timestamp when record was created"
    )

    updated_at = Column(
        UTCDateTime,
        nullable=False,
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
        comment="Timestamp when record was last updated"
    )


class TenantScopedMixin:
    """
    Mixin that adds a tenant_id column for multi-tenant isolation.

    SECURITY: tenant_id is resolved server-side (webhook lookup or request
    context). Never accept it from client input.
    """

    @declared_attr
    def tenant_id(cls):
        return Column(
            String(255),
            ForeignKey("tenants.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
            comment="Owning tenant"
        )
