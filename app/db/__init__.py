"""Database module."""

from app.db.base import TimestampMixin, UUIDPrimaryKeyMixin

__all__ = ["TimestampMixin", "UUIDPrimaryKeyMixin"]
