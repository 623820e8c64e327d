"""
Repository contracts consumed by the query pipeline and the view reconciler.

The kernel assumes nothing about storage beyond these reads and writes.
`GraphStore`, `UserStore` and `AuditLogStore` are the in-process
implementations shipped with the kernel.
"""

from __future__ import annotations

from contextlib import AbstractContextManager
from datetime import datetime
from typing import List, Optional, Protocol

from mls_kernel.models.audit import AuditLogEntry
from mls_kernel.models.graph import GraphEdge, GraphNode
from mls_kernel.models.access import User


class GraphRepository(Protocol):
    """Full snapshot reads of the classified graph."""

    def get_all_nodes(self) -> List[GraphNode]: ...

    def get_all_edges(self) -> List[GraphEdge]: ...


class UserRepository(Protocol):
    """
    User lookups and budget updates.

    Lookups apply the lazy budget reset as a side effect, under the same
    re-entrant `budget_lock` that serialises the read-check-modify of one
    user's budget.
    """

    def find_by_id(
        self, user_id: str, current_time: Optional[datetime] = None
    ) -> Optional[User]: ...

    def find_by_username(
        self, username: str, current_time: Optional[datetime] = None
    ) -> Optional[User]: ...

    def update_budget(
        self, user_id: str, budget: int, reset_at: datetime
    ) -> Optional[User]: ...

    def budget_lock(self, user_id: str) -> AbstractContextManager: ...


class AuditRepository(Protocol):
    """Append-only audit sink."""

    def append(self, entry: AuditLogEntry) -> AuditLogEntry: ...
