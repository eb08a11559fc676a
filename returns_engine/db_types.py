"""Portable column types for the returns engine models.

Production runs on PostgreSQL, local setups and tests on SQLite; both
types below map to native types on each.
"""
from sqlalchemy import JSON, Uuid

# JSON rather than JSONB so the same models run on SQLite
JSONType = JSON

# Native UUID on PostgreSQL, CHAR(32) on SQLite
UUIDType = Uuid(as_uuid=True)
