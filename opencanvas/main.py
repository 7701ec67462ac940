import base64
import binascii
import logging
import mimetypes
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, List, Optional, Union

import uvicorn
from fastapi import FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

import config

from .archive import ArchiveCodec
from .assets import asset_uri
from .connections import connect, connection_error, reconcile
from .errors import CanvasError, NotFound, ValidationError
from .node_registry import registry
from .propagation import propagate
from .schemas import (
    ConnectRequest,
    CreateNodeRequest,
    CreateWorkflowRequest,
    GraphRequest,
    HandlesRequest,
    NodeMetadata,
    PropagateRequest,
    RenameWorkflowRequest,
    SaveWorkflowRequest,
)
from .workflow_store import WorkflowStore

# Setup Logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


# Log Buffer
log_buffer: List[str] = []


class ListHandler(logging.Handler):
    def emit(self, record):
        log_buffer.append(self.format(record))
        if len(log_buffer) > 100:
            log_buffer.pop(0)


handler = ListHandler()
handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
logging.getLogger().addHandler(handler)


def ok(data: Any = None) -> dict:
    return {"success": True, "data": data}


def _decode_thumbnail(value: Optional[str]) -> Optional[bytes]:
    if not value:
        return None
    # Canvas snapshots arrive as data URLs
    if value.startswith("data:") and "," in value:
        value = value.split(",", 1)[1]
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValidationError(f"Thumbnail is not valid base64: {e}") from e


def create_app(storage_root: Optional[Union[str, Path]] = None, **store_options) -> FastAPI:
    store = WorkflowStore(storage_root, **store_options)
    archive = ArchiveCodec(store)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        # Pending autosaves are written before the process goes away
        await store.flush_autosaves()

    app = FastAPI(title="OpenCanvas Graph Backend", lifespan=lifespan)
    app.state.store = store
    app.state.archive = archive

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(CanvasError)
    async def canvas_error_handler(request: Request, exc: CanvasError):
        logger.warning(f"{request.method} {request.url.path} failed: {exc}")
        return JSONResponse(status_code=exc.status_code, content={"success": False, "error": str(exc)})

    @app.get("/")
    def read_root():
        return {"message": "OpenCanvas Graph Backend API"}

    # --- NODE ENDPOINTS ---

    @app.get("/api/nodes", response_model=List[NodeMetadata])
    def get_nodes():
        return registry.get_all_metadata()

    @app.post("/api/nodes")
    def create_node(request: CreateNodeRequest):
        return ok(registry.create_node(request.type, request.position))

    # --- GRAPH ENDPOINTS ---

    @app.post("/api/graph/handles")
    def get_handles(request: HandlesRequest):
        return ok(registry.handles_for(request.type, request.data))

    @app.post("/api/graph/validate")
    def validate(request: ConnectRequest):
        error = connection_error(request.nodes, request.edges, request.connection)
        return ok({"valid": error is None, "reason": error})

    @app.post("/api/graph/connect")
    def connect_nodes(request: ConnectRequest):
        edges = connect(request.nodes, request.edges, request.connection, animated=request.animated)
        return ok({"edges": edges})

    @app.post("/api/graph/propagate")
    def propagate_values(request: PropagateRequest):
        result = propagate(request.nodes, request.edges, clear_on_disconnect=request.clearOnDisconnect)
        return ok({"nodes": result.nodes, "changed": result.changed})

    @app.post("/api/graph/reconcile")
    def reconcile_graph(request: GraphRequest):
        result = reconcile(request.nodes, request.edges)
        return ok({"nodes": result.nodes, "edges": result.edges, "prunedEdgeIds": result.prunedEdgeIds})

    # --- WORKFLOW ENDPOINTS ---

    @app.get("/api/workflows")
    async def list_workflows():
        return ok(await store.list_workflows())

    @app.post("/api/workflows")
    async def create_workflow(request: Optional[CreateWorkflowRequest] = None):
        name = request.name if request else None
        return ok(await store.create(name))

    # Registered before the /{workflow_id} routes
    @app.post("/api/workflows/import")
    async def import_workflow(request: Request, filename: Optional[str] = Query(None)):
        content = await request.body()
        if not content:
            raise ValidationError("Import payload is empty")
        return ok(await archive.import_bytes(content, filename))

    @app.get("/api/workflows/{workflow_id}")
    async def load_workflow(workflow_id: str):
        workflow = await store.load(workflow_id)
        if workflow is None:
            raise NotFound(f"Workflow {workflow_id} not found")
        return ok(workflow)

    @app.put("/api/workflows/{workflow_id}")
    async def save_workflow(workflow_id: str, request: SaveWorkflowRequest):
        workflow = await store.save(
            workflow_id,
            request.nodes,
            request.edges,
            request.viewport,
            thumbnail=_decode_thumbnail(request.thumbnail),
        )
        return ok(workflow)

    @app.delete("/api/workflows/{workflow_id}")
    async def delete_workflow(workflow_id: str):
        await store.delete(workflow_id)
        return ok({"id": workflow_id})

    @app.post("/api/workflows/{workflow_id}/autosave")
    async def autosave_workflow(workflow_id: str, request: SaveWorkflowRequest):
        if not store.exists(workflow_id):
            raise NotFound(f"Workflow {workflow_id} not found")
        store.schedule_save(workflow_id, request.nodes, request.edges, request.viewport)
        return ok({"id": workflow_id, "delay": store.autosave_delay})

    @app.post("/api/workflows/{workflow_id}/rename")
    async def rename_workflow(workflow_id: str, request: RenameWorkflowRequest):
        return ok(await store.rename(workflow_id, request.name))

    @app.post("/api/workflows/{workflow_id}/duplicate")
    async def duplicate_workflow(workflow_id: str):
        return ok(await store.duplicate(workflow_id))

    @app.post("/api/workflows/{workflow_id}/assets")
    async def upload_asset(
        workflow_id: str,
        request: Request,
        nodeId: str = Query(...),
        fileName: str = Query(""),
        assetType: str = Query("image"),
    ):
        content = await request.body()
        path = await store.assets.save(workflow_id, nodeId, content, fileName, assetType)
        return ok({"path": path, "uri": asset_uri(workflow_id, path)})

    @app.get("/api/workflows/{workflow_id}/export")
    async def export_workflow(workflow_id: str, format: str = Query("zip")):
        content = await archive.export(workflow_id, format)
        workflow = await store.load(workflow_id)
        base_name = (workflow.name if workflow else workflow_id).replace('"', "")
        if format == "json":
            media_type, file_name = "application/json", f"{base_name}.json"
        else:
            media_type, file_name = "application/zip", f"{base_name}.zip"
        return Response(
            content,
            media_type=media_type,
            headers={"Content-Disposition": f'attachment; filename="{file_name}"'},
        )

    # --- ASSET PROTOCOL ---

    @app.get("/api/canvas/{workflow_id}/assets/{asset_path:path}")
    async def serve_asset(workflow_id: str, asset_path: str):
        content = await store.assets.load(workflow_id, f"assets/{asset_path}")
        media_type = mimetypes.guess_type(asset_path)[0] or "application/octet-stream"
        return Response(content, media_type=media_type)

    @app.get("/api/canvas/{workflow_id}/thumbnail")
    async def serve_thumbnail(workflow_id: str):
        return Response(await store.assets.load_thumbnail(workflow_id), media_type="image/png")

    @app.get("/api/logs")
    def get_logs():
        return log_buffer

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run("opencanvas.main:app", host=config.API_HOST, port=config.API_PORT, reload=True, timeout_keep_alive=300)
