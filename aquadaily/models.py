"""Database models for AquaDaily."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy.sql import func

from .extensions import db


class KeyValueEntry(db.Model):
    """One top-level storage key and its JSON value.

    Mirrors the browser-storage layout: each hydration collection (users,
    goals, logs, stats, session) is a single row holding a JSON document.
    """

    __tablename__ = "kv_entries"

    key = db.Column(db.String(255), primary_key=True)
    value = db.Column(db.JSON, nullable=True)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    def touch(self) -> None:
        """Update the in-memory timestamp before commit."""

        self.updated_at = datetime.now(timezone.utc)
