"""Clearance levels and users, the subject side of the access policy."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class ClearanceLevel(str, Enum):
    """Ordered MLS levels. Also used as the classification of nodes and edges."""
    UNCLASSIFIED = "UNCLASSIFIED"
    CONFIDENTIAL = "CONFIDENTIAL"
    SECRET = "SECRET"


LEVEL_SEQUENCE: List[ClearanceLevel] = [
    ClearanceLevel.UNCLASSIFIED,
    ClearanceLevel.CONFIDENTIAL,
    ClearanceLevel.SECRET,
]

_LEVEL_RANK = {level.value: rank for rank, level in enumerate(LEVEL_SEQUENCE)}

_LEVEL_ALIASES = {
    "SECRET": ClearanceLevel.SECRET,
    "S": ClearanceLevel.SECRET,
    "H": ClearanceLevel.SECRET,
    "CONFIDENTIAL": ClearanceLevel.CONFIDENTIAL,
    "C": ClearanceLevel.CONFIDENTIAL,
    "M": ClearanceLevel.CONFIDENTIAL,
}


def level_rank(level) -> int:
    """Ordinal rank of a level; unknown levels rank 0."""
    if isinstance(level, ClearanceLevel):
        level = level.value
    if not isinstance(level, str):
        return 0
    return _LEVEL_RANK.get(level.upper(), 0)


def normalize_level(level) -> ClearanceLevel:
    """Map a level name or one-letter alias onto a ClearanceLevel."""
    if isinstance(level, ClearanceLevel):
        return level
    return _LEVEL_ALIASES.get(str(level or "").strip().upper(), ClearanceLevel.UNCLASSIFIED)


class User(BaseModel):
    """
    An analyst or commander querying the graph.

    `attributes` is an open map. The policy reads `sector` (single-letter
    sector code) and `role`; `sectors` may list every sector for display.
    """

    id: str
    username: str
    clearance_level: ClearanceLevel
    attributes: dict = {}
    query_budget: int = Field(ge=0, default=0)
    budget_reset_at: datetime

    @property
    def sector(self) -> Optional[str]:
        value = self.attributes.get("sector")
        return str(value) if value else None

    @property
    def role(self) -> Optional[str]:
        return self.attributes.get("role")
