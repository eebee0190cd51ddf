"""
SQLAlchemy ORM models for the sink tables.

Models:
    base: Base declarative class
    user_connection: Login analytics sink tables (history and log)

Database Schema:
    Both sink tables share one column set and a unique constraint on
    (dealer_id, logon_logoff_time, entry_sequence), the conflict target of
    the loader's upserts. scripts/init_db.py creates them.

Usage:
    from models.base import Base
    from models.user_connection import UserConnectionHistory, UserConnectionLog
"""

__all__ = [
    "Base",
    "UserConnectionHistory",
    "UserConnectionLog",
]
