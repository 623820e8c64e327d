"""
Access Policy Evaluator — the MLS + ABAC decision functions.

Behavioral Contract:
- Pure functions. No I/O, no mutation of the inputs.
- Clearance (MLS): a subject reads an item iff its rank is at least the item's.
- Sector (ABAC): commanders are sector-blind; everybody else needs a sector
  and sees sector-less items plus items of exactly their own sector.
- Every denial is decided here; nothing defaults to allow on missing data
  except sector-agnostic items.
"""

from typing import List, Union

from mls_kernel.models.access import LEVEL_SEQUENCE, ClearanceLevel, User, level_rank
from mls_kernel.models.graph import GraphEdge, GraphNode

COMMANDER_ROLE = "commander"
DEFAULT_MIN_K = 2


def clearance_sufficient(user_level, data_level) -> bool:
    """True iff the user's clearance rank dominates the data's classification rank."""
    return level_rank(user_level) >= level_rank(data_level)


def sector_allowed(user: User, data: Union[GraphNode, GraphEdge]) -> bool:
    """Attribute check on the `sector` attribute of the user and the item."""
    if user.role == COMMANDER_ROLE:
        return True

    user_sector = user.sector
    if not user_sector:
        return False

    data_sector = (data.attributes or {}).get("sector")
    if not data_sector:
        return True

    return user_sector == str(data_sector)


def _accessible(user: User, item: Union[GraphNode, GraphEdge]) -> bool:
    if not clearance_sufficient(user.clearance_level, item.classification_level):
        return False
    return sector_allowed(user, item)


def filter_accessible_nodes(user: User, nodes: List[GraphNode]) -> List[GraphNode]:
    """Nodes the user may see, in their original order."""
    return [node for node in nodes if _accessible(user, node)]


def filter_accessible_edges(user: User, edges: List[GraphEdge]) -> List[GraphEdge]:
    """Edges the user may see, in their original order."""
    return [edge for edge in edges if _accessible(user, edge)]


def k_anonymity_sufficient(result_count: int, min_k: int = DEFAULT_MIN_K) -> bool:
    """Whether a result set is large enough to disclose record by record."""
    return result_count >= min_k


def budget_sufficient(user: User) -> bool:
    """Caller is expected to have applied the lazy budget reset first."""
    return user.query_budget > 0


def accessible_levels(user: User) -> List[ClearanceLevel]:
    """Levels at or below the user's clearance, lowest first."""
    ceiling = level_rank(user.clearance_level)
    return [level for level in LEVEL_SEQUENCE if level_rank(level) <= ceiling]
