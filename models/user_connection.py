from sqlalchemy import (
    Column, String, Integer, SmallInteger, BigInteger, DateTime, Text, UniqueConstraint, Index
)
from sqlalchemy.orm import declared_attr
from models.base import Base


class UserConnectionMixin:
    """
    Columns shared by the connection history and log sink tables.

    Upserts conflict on (dealer_id, logon_logoff_time, entry_sequence), so
    re-running the pipeline over the same window updates rows in place.
    """

    id = Column(BigInteger, primary_key=True, autoincrement=True)

    # Natural key
    dealer_id = Column(String(50), nullable=False)
    logon_logoff_time = Column(BigInteger, nullable=False)  # Unix seconds
    entry_sequence = Column(Integer, nullable=False)

    group_id = Column(String(50), nullable=True)
    dealer_code = Column(String(50), nullable=True)
    login_allowed = Column(Integer, nullable=True)
    success_failure = Column(SmallInteger, nullable=True)
    logon_logoff_flag = Column(String(10), nullable=True)
    details = Column(Text, nullable=True)
    mode_of_connection = Column(Integer, nullable=True)
    connection_number = Column(Integer, nullable=True)
    oms_sequence_no = Column(BigInteger, nullable=True)
    session_id = Column(String(100), nullable=True)

    processed_at = Column(DateTime(timezone=True), nullable=False)

    @declared_attr
    def __table_args__(cls):
        return (
            UniqueConstraint(
                "dealer_id", "logon_logoff_time", "entry_sequence",
                name=f"uq_{cls.__tablename__}_natural_key"
            ),
            Index(f"idx_{cls.__tablename__}_time", "logon_logoff_time"),
        )


class UserConnectionHistory(UserConnectionMixin, Base):
    """Rows extracted from dbo.tbl_UserConnectionHistory on every shard"""
    __tablename__ = "user_connection_history"


class UserConnectionLog(UserConnectionMixin, Base):
    """Rows extracted from dbo.tbl_UserConnectionLog on every shard"""
    __tablename__ = "user_connection_log"
