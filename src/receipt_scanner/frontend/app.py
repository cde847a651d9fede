from __future__ import annotations

import math
import mimetypes
import os
from typing import Any, Dict, List, Optional

from starlette.applications import Starlette
from starlette.background import BackgroundTask
from starlette.datastructures import UploadFile
from starlette.exceptions import HTTPException
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route
from starlette.staticfiles import StaticFiles

from ..config import load_config
from ..domain.export import CSV_MEDIA_TYPE, NothingToExportError, build_csv_bytes, export_filename
from ..domain.models import ExtractedData, Provider, ReceiptItem, ReceiptStatus, SourceFile
from ..domain.stats import compute_stats
from ..logging import get_logger
from ..orchestrator.lifecycle import ReceiptManager
from ..paths import find_project_root
from ..preferences import PreferencesError, PreferencesStore


LOG = get_logger("frontend")

DEFAULT_STATIC_SUBDIR = os.path.join("frontend", "dist")
CREDENTIAL_REQUIRED_MESSAGE = "Add an API key in settings before uploading receipts."


def _item_payload(item: ReceiptItem) -> Dict[str, Any]:
    payload = item.to_dict()
    payload["previewUrl"] = f"/api/receipts/{item.id}/preview"
    return payload


def _media_type_for(upload: UploadFile) -> str:
    declared = (upload.content_type or "").strip().lower()
    if declared and declared != "application/octet-stream":
        return declared
    guessed, _ = mimetypes.guess_type(upload.filename or "")
    if guessed:
        return guessed
    if (upload.filename or "").lower().endswith((".heic", ".heif")):
        return "image/heic"
    return declared or "application/octet-stream"


def _parse_edit(body: Any) -> ExtractedData:
    """Shape check for a user edit; values are stored as given."""
    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail="Body must be a JSON object")
    missing = [k for k in ("shopName", "purchaseDate", "totalAmount", "moms") if k not in body]
    if missing:
        raise HTTPException(status_code=400, detail=f"Missing field(s): {', '.join(missing)}")
    amounts = {}
    for key in ("totalAmount", "moms"):
        value = body[key]
        if isinstance(value, bool):
            raise HTTPException(status_code=400, detail=f"{key} must be a number")
        try:
            amounts[key] = float(value)
        except (TypeError, ValueError) as exc:
            raise HTTPException(status_code=400, detail=f"{key} must be a number") from exc
        if not math.isfinite(amounts[key]):
            raise HTTPException(status_code=400, detail=f"{key} must be a finite number")
    return ExtractedData(
        shop_name=str(body["shopName"]),
        purchase_date=str(body["purchaseDate"]),
        total_amount=amounts["totalAmount"],
        moms=amounts["moms"],
    )


async def _json_body(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid JSON body") from exc


async def _http_error(_: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse({"detail": exc.detail}, status_code=exc.status_code)


def create_app(
    root_dir: Optional[str] = None,
    *,
    manager: Optional[ReceiptManager] = None,
    preferences: Optional[PreferencesStore] = None,
    static_dir: Optional[str] = None,
    allow_origins: Optional[List[str]] = None,
    serve_static: bool = True,
) -> Starlette:
    """Create a Starlette app exposing the receipt API and optional frontend."""

    project_root = find_project_root(root_dir)
    if preferences is None:
        preferences = PreferencesStore.for_project(load_config(project_root), root_dir=project_root)
    if manager is None:
        manager = ReceiptManager(preferences.extraction_settings)

    resolved_static_dir: Optional[str] = None
    if serve_static:
        candidate = os.path.abspath(os.path.join(project_root, static_dir or DEFAULT_STATIC_SUBDIR))
        if os.path.isdir(candidate):
            resolved_static_dir = candidate
            LOG.info("Serving static frontend from %s", resolved_static_dir)
        else:
            LOG.warning("Frontend build not found at %s; API will run without static assets.", candidate)
    else:
        LOG.info("Static frontend serving disabled (API only mode).")

    def _require_item(request: Request) -> ReceiptItem:
        item = manager.get(request.path_params["receipt_id"])
        if item is None:
            raise HTTPException(status_code=404, detail="Receipt not found")
        return item

    async def health(_: Request) -> JSONResponse:
        return JSONResponse({"status": "ok", "receipts": len(manager.items())})

    async def get_settings(_: Request) -> JSONResponse:
        prefs = preferences.load()
        return JSONResponse({"provider": prefs.provider.value, "hasApiKey": prefs.has_api_key})

    async def put_settings(request: Request) -> JSONResponse:
        body = await _json_body(request)
        if not isinstance(body, dict):
            raise HTTPException(status_code=400, detail="Body must be a JSON object")
        api_key = body.get("apiKey")
        if api_key is not None and not isinstance(api_key, str):
            raise HTTPException(status_code=400, detail="apiKey must be a string")
        provider = None
        if body.get("provider") is not None:
            try:
                provider = Provider.parse(body["provider"])
            except ValueError as exc:
                raise HTTPException(status_code=400, detail=str(exc)) from exc
        try:
            prefs = preferences.save(api_key=api_key, provider=provider)
        except PreferencesError as exc:
            LOG.error("%s", exc)
            raise HTTPException(status_code=500, detail="Could not save settings") from exc
        return JSONResponse({"provider": prefs.provider.value, "hasApiKey": prefs.has_api_key})

    async def delete_settings(_: Request) -> JSONResponse:
        try:
            prefs = preferences.clear_api_key()
        except PreferencesError as exc:
            LOG.error("%s", exc)
            raise HTTPException(status_code=500, detail="Could not save settings") from exc
        removed = manager.clear()
        return JSONResponse({"provider": prefs.provider.value, "hasApiKey": prefs.has_api_key, "cleared": removed})

    async def list_receipts(_: Request) -> JSONResponse:
        return JSONResponse({"items": [_item_payload(i) for i in manager.items()]})

    async def upload_receipts(request: Request) -> JSONResponse:
        if not preferences.load().has_api_key:
            raise HTTPException(status_code=409, detail=CREDENTIAL_REQUIRED_MESSAGE)
        form = await request.form()
        sources: List[SourceFile] = []
        for upload in form.getlist("files"):
            if not isinstance(upload, UploadFile):
                continue
            content = await upload.read()
            sources.append(
                SourceFile(
                    filename=upload.filename or "receipt",
                    content=content,
                    media_type=_media_type_for(upload),
                )
            )
        if not sources:
            return JSONResponse({"items": []})
        items = await manager.intake(sources)
        return JSONResponse(
            {"items": [_item_payload(i) for i in items]},
            status_code=202,
            background=BackgroundTask(manager.dispatch, items),
        )

    async def clear_receipts(_: Request) -> JSONResponse:
        return JSONResponse({"cleared": manager.clear()})

    async def receipt_detail(request: Request) -> JSONResponse:
        return JSONResponse(_item_payload(_require_item(request)))

    async def edit_receipt(request: Request) -> JSONResponse:
        item = _require_item(request)
        data = _parse_edit(await _json_body(request))
        if item.status is not ReceiptStatus.COMPLETED or not manager.edit_result(item.id, data):
            raise HTTPException(status_code=409, detail="Only completed receipts can be edited")
        return JSONResponse(_item_payload(manager.get(item.id) or item))

    async def delete_receipt(request: Request) -> Response:
        manager.delete(request.path_params["receipt_id"])
        return Response(status_code=204)

    async def receipt_preview(request: Request) -> Response:
        item = _require_item(request)
        return Response(item.source.content, media_type=item.source.media_type)

    async def stats(_: Request) -> JSONResponse:
        return JSONResponse(compute_stats(manager.items()).to_dict())

    async def export_csv(_: Request) -> Response:
        try:
            content = build_csv_bytes(manager.items())
        except NothingToExportError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        headers = {"Content-Disposition": f'attachment; filename="{export_filename()}"'}
        return Response(content, media_type=CSV_MEDIA_TYPE, headers=headers)

    routes = [
        Route("/api/health", health, methods=["GET"]),
        Route("/api/settings", get_settings, methods=["GET"]),
        Route("/api/settings", put_settings, methods=["PUT"]),
        Route("/api/settings", delete_settings, methods=["DELETE"]),
        Route("/api/receipts", list_receipts, methods=["GET"]),
        Route("/api/receipts", upload_receipts, methods=["POST"]),
        Route("/api/receipts", clear_receipts, methods=["DELETE"]),
        Route("/api/receipts/{receipt_id:str}", receipt_detail, methods=["GET"]),
        Route("/api/receipts/{receipt_id:str}", edit_receipt, methods=["PATCH"]),
        Route("/api/receipts/{receipt_id:str}", delete_receipt, methods=["DELETE"]),
        Route("/api/receipts/{receipt_id:str}/preview", receipt_preview, methods=["GET"]),
        Route("/api/stats", stats, methods=["GET"]),
        Route("/api/export.csv", export_csv, methods=["GET"]),
    ]

    app = Starlette(debug=False, routes=routes, exception_handlers={HTTPException: _http_error})
    app.state.manager = manager
    app.state.preferences = preferences

    origins = allow_origins or ["http://localhost:5173", "http://127.0.0.1:5173"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if "*" in origins else origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    if resolved_static_dir:
        app.mount("/", StaticFiles(directory=resolved_static_dir, html=True), name="frontend")
    elif serve_static:
        async def missing_frontend(_: Request) -> JSONResponse:
            return JSONResponse(
                {"detail": "Frontend build missing. Build the UI into frontend/dist/ or use --api-only."},
                status_code=503,
            )

        app.add_route("/", missing_frontend, methods=["GET"])
    else:
        async def api_only(_: Request) -> JSONResponse:
            return JSONResponse({"detail": "Receipt scanner API is running. Static frontend disabled."})

        app.add_route("/", api_only, methods=["GET"])

    return app


__all__ = ["create_app"]
