"""Database-agnostic type definitions for SQLAlchemy models.

This module provides type definitions that work with both SQLite and PostgreSQL.
"""
from sqlalchemy import DateTime, Uuid

# Native UUID on PostgreSQL, CHAR(32) on SQLite
UUIDType = Uuid

# Timezone-aware timestamps; SQLite hands them back naive, see ensure_utc()
TZDateTime = DateTime(timezone=True)
