"""
MLS Graph Kernel API — FastAPI endpoints.

Exposes the kernel's functionality via a REST API for:
- Natural-language queries
- Graph views (virtual / level / overlay)
- User and budget inspection
- Audit trail queries
- Graph editing and level export/import
"""

from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from mls_kernel.audit.store import AuditLogStore
from mls_kernel.errors import GraphValidationError
from mls_kernel.graph_store.store import GraphStore
from mls_kernel.models.access import ClearanceLevel, User
from mls_kernel.models.engine import EngineConfig
from mls_kernel.models.graph import LevelExport
from mls_kernel.models.views import GraphViewRequest, ViewMode
from mls_kernel.query.pipeline import QueryPipeline
from mls_kernel.seed import seed_graph, seed_users
from mls_kernel.users.store import UserStore
from mls_kernel.views.reconciler import GraphViewReconciler


# --- Request Models ---

class QueryRequest(BaseModel):
    username: str
    query: str


class NodeCreateRequest(BaseModel):
    name: str
    entity_type: str
    classification_level: str
    attributes: dict = {}
    logical_id: Optional[str] = None


class EdgeCreateRequest(BaseModel):
    source_node_id: str
    target_node_id: str
    relation_type: str
    classification_level: str
    attributes: dict = {}
    logical_id: Optional[str] = None


# --- Application Factory ---

def create_app(
    graph_store: Optional[GraphStore] = None,
    user_store: Optional[UserStore] = None,
    audit_store: Optional[AuditLogStore] = None,
    config: Optional[EngineConfig] = None,
) -> FastAPI:
    """Create and configure the FastAPI application. Missing stores are seeded."""

    app = FastAPI(
        title="MLS Graph Kernel API",
        description="Multi-level secure graph query kernel",
        version="0.1.0-alpha",
    )

    config = config or EngineConfig()
    if graph_store is None:
        nodes, edges = seed_graph()
        graph_store = GraphStore(nodes, edges)
    if user_store is None:
        user_store = UserStore(config, seed_users(config))
    audit_store = audit_store or AuditLogStore()

    pipeline = QueryPipeline(graph_store, user_store, audit_store, config)
    reconciler = GraphViewReconciler(graph_store, user_store)

    # Store components on app state for access in endpoints
    app.state.config = config
    app.state.graph_store = graph_store
    app.state.user_store = user_store
    app.state.audit_store = audit_store
    app.state.pipeline = pipeline
    app.state.reconciler = reconciler

    def _require_user(username: str) -> User:
        user = user_store.find_by_username(username)
        if user is None:
            raise HTTPException(404, "User not found")
        return user

    # === QUERIES ===

    @app.post("/query")
    def run_query(req: QueryRequest):
        """Run a natural-language query as the named user."""
        user = _require_user(req.username)
        result = pipeline.execute(user, req.query)
        return result.model_dump(mode="json")

    # === GRAPH VIEWS ===

    @app.get("/graph")
    def get_graph(
        username: str,
        mode: ViewMode = ViewMode.VIRTUAL,
        level: Optional[str] = None,
        overlay_levels: Optional[str] = None,
    ):
        """The projection of the graph the user may see. `overlay_levels` is comma-separated."""
        user = _require_user(username)
        requested = [
            part.strip() for part in (overlay_levels or "").split(",") if part.strip()
        ]
        view = reconciler.build_view(
            user,
            GraphViewRequest(mode=mode, level=level, overlay_levels=requested),
        )
        return view.model_dump(mode="json")

    # === USERS ===

    @app.get("/users/{username}")
    def get_user(username: str):
        """User record with the current (possibly just reset) budget."""
        return _require_user(username).model_dump(mode="json")

    # === AUDIT ===

    @app.get("/audit/verify")
    def verify_audit():
        """Verify chain integrity."""
        return {
            "integrity_valid": audit_store.verify_chain_integrity(),
            "total_records": audit_store.count(),
        }

    @app.get("/audit/{user_id}")
    def get_audit_for_user(user_id: str, limit: int = 20):
        """A user's recent query attempts, newest first."""
        records = audit_store.query_for_user(user_id, limit=limit)
        return [r.model_dump(mode="json") for r in records]

    # === GRAPH EDITING ===

    @app.post("/nodes")
    def create_node(req: NodeCreateRequest):
        try:
            node = graph_store.create_node(
                name=req.name,
                entity_type=req.entity_type,
                classification_level=req.classification_level,
                attributes=req.attributes,
                logical_id=req.logical_id,
            )
        except GraphValidationError as e:
            raise HTTPException(400, str(e))
        return node.model_dump(mode="json")

    @app.delete("/nodes/{logical_id}/{level}")
    def delete_node(logical_id: str, level: str):
        try:
            graph_store.delete_node(logical_id, level)
        except GraphValidationError as e:
            raise HTTPException(400, str(e))
        return {"status": "deleted", "logical_id": logical_id, "level": level}

    @app.post("/edges")
    def create_edge(req: EdgeCreateRequest):
        try:
            edge = graph_store.create_edge(
                source_node_id=req.source_node_id,
                target_node_id=req.target_node_id,
                relation_type=req.relation_type,
                classification_level=req.classification_level,
                attributes=req.attributes,
                logical_id=req.logical_id,
            )
        except GraphValidationError as e:
            raise HTTPException(400, str(e))
        return edge.model_dump(mode="json")

    @app.delete("/edges/{edge_id}")
    def delete_edge(edge_id: str):
        try:
            graph_store.delete_edge(edge_id)
        except GraphValidationError as e:
            raise HTTPException(400, str(e))
        return {"status": "deleted", "edge_id": edge_id}

    # === LEVEL TRANSFER ===

    @app.get("/levels/{level}/export")
    def export_level(level: ClearanceLevel):
        return graph_store.export_level(level).model_dump(mode="json")

    @app.post("/levels/{level}/import")
    def import_level(level: ClearanceLevel, payload: LevelExport):
        try:
            stored = graph_store.import_level(level, payload)
        except GraphValidationError as e:
            raise HTTPException(400, str(e))
        return stored.model_dump(mode="json")

    @app.get("/health")
    def health():
        return {
            "status": "ok",
            "graph": graph_store.count(),
            "audit_records": audit_store.count(),
            "users": len(user_store.list_users()),
            "time": datetime.now(timezone.utc).isoformat(),
        }

    return app


# Default application instance
app = create_app()
