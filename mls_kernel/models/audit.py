"""Audit Log Entry — one record per query attempt."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel


class DenialReason(str, Enum):
    BUDGET_EXHAUSTED = "BUDGET_EXHAUSTED"
    K_ANONYMITY = "K_ANONYMITY"


class AuditLogEntry(BaseModel):
    """
    Append-only record of a query attempt. Written for every attempt that
    touched the budget check, including denials; never mutated afterwards.
    """

    id: str
    user_id: str
    query_text: str
    query_type: str = "NL_QUERY"
    result_count: int = 0
    access_granted: bool
    denial_reason: Optional[DenialReason] = None
    created_at: datetime

    # INTEGRITY
    signature: str = ""
    prior_record_hash: Optional[str] = None
