from __future__ import annotations

import os
from datetime import date
from typing import Any, Dict, List, Optional

from starlette.applications import Starlette
from starlette.exceptions import HTTPException
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from ...config import load_db_path, load_recognition
from ...domain.errors import (
    AnalysisFailed,
    DuplicateSerial,
    InsufficientStock,
    InvalidInput,
    ItemNotFound,
    LedgerError,
)
from ...domain.models import CapturedImage, ItemDraft
from ...logging import get_logger
from ...paths import find_project_root
from ...recognition.pipeline import RecognitionPipeline
from ..export import BOM, render_csv, report_filename
from ..ledger import InventoryLedger
from ..store import SqliteKeyValueStore


LOG = get_logger("stock-frontend")

MAX_SCAN_BYTES = 15 * 1024 * 1024


def _parse_int(value: Optional[str], *, default: int, minimum: int, maximum: int) -> int:
    try:
        parsed = int(value) if value is not None else default
    except (TypeError, ValueError):
        parsed = default
    if parsed < minimum:
        return minimum
    if parsed > maximum:
        return maximum
    return parsed


def _status_for(exc: LedgerError) -> int:
    if isinstance(exc, ItemNotFound):
        return 404
    if isinstance(exc, (InsufficientStock, DuplicateSerial)):
        return 409
    if isinstance(exc, InvalidInput):
        return 400
    return 422


async def _json_body(request: Request) -> Dict[str, Any]:
    try:
        body = await request.json()
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Request body must be JSON") from exc
    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail="Request body must be a JSON object")
    return body


def _build_default_ledger(project_root: str) -> InventoryLedger:
    store = SqliteKeyValueStore(load_db_path(project_root), root_dir=project_root)
    return InventoryLedger(store)


def _build_default_pipeline(project_root: str) -> Optional[RecognitionPipeline]:
    config = load_recognition(project_root)
    if config is None:
        LOG.warning("No OPENROUTER_API_KEY configured; /api/scan is disabled.")
        return None
    from ...recognition.service import OpenRouterRecognitionService

    return RecognitionPipeline(OpenRouterRecognitionService(config))


def create_app(
    root_dir: Optional[str] = None,
    *,
    ledger: Optional[InventoryLedger] = None,
    pipeline: Optional[RecognitionPipeline] = None,
    enable_scan: bool = True,
    allow_origins: Optional[List[str]] = None,
) -> Starlette:
    """Create a Starlette app exposing the stock ledger as a local JSON API."""

    project_root = find_project_root(root_dir)
    if ledger is None:
        ledger = _build_default_ledger(project_root)
    if pipeline is None and enable_scan:
        pipeline = _build_default_pipeline(project_root)

    async def health(_: Request) -> JSONResponse:
        return JSONResponse(
            {
                "status": "ok",
                "items": len(ledger.items),
                "transactions": len(ledger.transactions),
                "scan_enabled": pipeline is not None,
            }
        )

    async def list_items(request: Request) -> JSONResponse:
        query = request.query_params.get("search") or ""
        items = [it.as_dict() for it in ledger.search(query)]
        return JSONResponse({"total": len(items), "items": items})

    async def add_item(request: Request) -> JSONResponse:
        body = await _json_body(request)
        item = ledger.add_item(ItemDraft.from_dict(body))
        return JSONResponse(item.as_dict(), status_code=201)

    async def item_detail(request: Request) -> JSONResponse:
        item_id = request.path_params["item_id"]
        item = ledger.get_item(item_id)
        if item is None:
            raise ItemNotFound(item_id)
        return JSONResponse(item.as_dict())

    async def item_by_serial(request: Request) -> JSONResponse:
        serial = request.path_params["serial"]
        item = ledger.find_by_serial(serial)
        if item is None:
            raise ItemNotFound(serial)
        return JSONResponse(item.as_dict())

    async def adjust(request: Request) -> JSONResponse:
        body = await _json_body(request)
        item = ledger.adjust_quantity(request.path_params["item_id"], body.get("delta"))
        return JSONResponse(item.as_dict())

    async def decommission(request: Request) -> JSONResponse:
        tx = ledger.decommission_item(request.path_params["item_id"])
        return JSONResponse(tx.as_dict())

    async def decommission_by_serial(request: Request) -> JSONResponse:
        body = await _json_body(request)
        tx = ledger.decommission_by_serial(str(body.get("serialNumber") or ""))
        return JSONResponse(tx.as_dict())

    async def transactions(request: Request) -> JSONResponse:
        qp = request.query_params
        limit = _parse_int(qp.get("limit"), default=100, minimum=1, maximum=1000)
        offset = _parse_int(qp.get("offset"), default=0, minimum=0, maximum=1_000_000)
        log = ledger.transactions
        rows = [tx.as_dict() for tx in log[offset : offset + limit]]
        return JSONResponse({"total": len(log), "items": rows, "limit": limit, "offset": offset})

    async def export_csv(request: Request) -> Response:
        items = ledger.search(request.query_params.get("search") or "")
        if not items:
            raise InvalidInput("There are no items to include in the report")
        filename = report_filename(date.today())
        return Response(
            BOM + render_csv(items),
            media_type="text/csv; charset=utf-8",
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )

    async def scan(request: Request) -> JSONResponse:
        if pipeline is None:
            raise HTTPException(status_code=503, detail="Label scanning is not configured")
        mime = (request.headers.get("content-type") or "image/jpeg").split(";")[0].strip().lower()
        if not mime.startswith("image/"):
            raise HTTPException(status_code=415, detail="Upload the label photo as an image/* body")
        data = await request.body()
        if not data:
            raise HTTPException(status_code=400, detail="Empty image")
        if len(data) > MAX_SCAN_BYTES:
            raise HTTPException(status_code=413, detail="Image too large")
        candidate = await pipeline.analyze(CapturedImage(data=data, width=0, height=0, mime_type=mime))
        return JSONResponse(candidate.as_dict())

    async def ledger_error(_: Request, exc: LedgerError) -> JSONResponse:
        return JSONResponse({"detail": str(exc), "error": type(exc).__name__}, status_code=_status_for(exc))

    async def analysis_error(_: Request, exc: AnalysisFailed) -> JSONResponse:
        return JSONResponse({"detail": exc.user_message, "error": "AnalysisFailed"}, status_code=502)

    async def api_only(_: Request) -> JSONResponse:
        return JSONResponse({"detail": "Equipment stock API is running. See /api/items."})

    routes = [
        Route("/api/health", health, methods=["GET"]),
        Route("/api/items", list_items, methods=["GET"]),
        Route("/api/items", add_item, methods=["POST"]),
        Route("/api/items/by-serial/{serial:str}", item_by_serial, methods=["GET"]),
        Route("/api/items/{item_id:str}", item_detail, methods=["GET"]),
        Route("/api/items/{item_id:str}", decommission, methods=["DELETE"]),
        Route("/api/items/{item_id:str}/adjust", adjust, methods=["POST"]),
        Route("/api/decommission", decommission_by_serial, methods=["POST"]),
        Route("/api/transactions", transactions, methods=["GET"]),
        Route("/api/export.csv", export_csv, methods=["GET"]),
        Route("/api/scan", scan, methods=["POST"]),
        Route("/", api_only, methods=["GET"]),
    ]

    app = Starlette(
        debug=False,
        routes=routes,
        exception_handlers={LedgerError: ledger_error, AnalysisFailed: analysis_error},
    )

    origins = allow_origins or ["http://localhost:5173", "http://127.0.0.1:5173"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if "*" in origins else origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    LOG.info("Stock API ready (root=%s, scan=%s)", os.path.abspath(project_root), "on" if pipeline else "off")
    return app


__all__ = ["create_app"]
