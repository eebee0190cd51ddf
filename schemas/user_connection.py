"""
Pydantic schema for dealer login/logout connection events
"""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field, field_validator


class UserConnection(BaseModel):
    """
    One row of the connection history/log tables.

    Source column mapping (SQL Server -> field):
    - sDealerId -> dealer_id
    - sGroupId -> group_id
    - sDealerCode -> dealer_code
    - nLogonLogoffTime -> logon_logoff_time (unix seconds)
    - nLoginAllowed -> login_allowed
    - nSuccessFailure -> success_failure
    - cLogonLogoffFlag -> logon_logoff_flag
    - sDetails -> details
    - nModeOfConnection -> mode_of_connection
    - nConnectioNumber -> connection_number
    - nEntrySequence -> entry_sequence
    - nOMSSequenceNo -> oms_sequence_no
    - sSessionId -> session_id

    Natural key: (dealer_id, logon_logoff_time, entry_sequence)
    """

    dealer_id: str = Field(..., min_length=1, max_length=50)
    group_id: Optional[str] = Field(None, max_length=50)
    dealer_code: Optional[str] = Field(None, max_length=50)
    logon_logoff_time: int
    login_allowed: Optional[int] = None
    success_failure: Optional[int] = None
    logon_logoff_flag: Optional[str] = Field(None, max_length=10)
    details: Optional[str] = None
    mode_of_connection: Optional[int] = None
    connection_number: Optional[int] = None
    entry_sequence: int
    oms_sequence_no: Optional[int] = None
    session_id: Optional[str] = Field(None, max_length=100)
    processed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("dealer_id", "group_id", "dealer_code", "logon_logoff_flag", "session_id")
    @classmethod
    def strip_padding(cls, v):
        """SQL Server CHAR columns come back space-padded"""
        if isinstance(v, str):
            v = v.strip()
        return v

    @field_validator("dealer_id")
    @classmethod
    def dealer_required(cls, v):
        if not v:
            raise ValueError("dealer_id cannot be empty after stripping")
        return v
