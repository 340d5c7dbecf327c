"""FastAPI application exposing editing sessions to the admin front-end."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional

from fastapi import FastAPI, File, Form, HTTPException, Query, Response, UploadFile, status
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from ..config import AppConfig
from ..editing.bulk import BulkAction
from ..editing.errors import (
    EmptySelection,
    IndexOutOfRange,
    InvalidBulkAction,
    InvalidFileType,
    SelectionError,
)
from ..editing.session import EditingSession
from ..editing.store import SlotState
from ..editing.uploads import LocalFile
from ..services.api_client import AdminApiClient, ApiError
from ..services.events import emit_structured_event
from ..services.export import EXPORT_FORMATS, ExportError, media_type_for
from ..services.naming import build_export_name
from ..services.progress import format_progress_message

LOGGER = logging.getLogger(__name__)

SessionFactory = Callable[[str], EditingSession]


class InsertPayload(BaseModel):
    record: Dict[str, Any] = Field(default_factory=dict)
    position: Optional[int] = None


class FieldUpdatePayload(BaseModel):
    field: str
    value: Any = None


class MovePayload(BaseModel):
    source: int
    target: int


class SelectionPayload(BaseModel):
    ids: List[str] = Field(default_factory=list)


class BulkPayload(BaseModel):
    action: str
    value: Optional[str] = None
    ids: Optional[List[str]] = None


def _log_event(message: str, **context: Any) -> None:
    emit_structured_event("APP_EVENT", message, context=context)


def _serialize_slot(slot: SlotState) -> Dict[str, Any]:
    file_info = None
    if isinstance(slot.file, LocalFile):
        file_info = {
            "name": slot.file.name,
            "content_type": slot.file.content_type,
            "size": slot.file.size,
        }
    message = ""
    if slot.error:
        message = slot.error
    elif slot.progress is not None and file_info is not None:
        message = format_progress_message(f"Uploading {file_info['name']}", slot.progress, 100)
    return {
        "file": file_info,
        "preview": slot.preview,
        "progress": slot.progress,
        "error": slot.error,
        "message": message,
    }


def _serialize_session(session: EditingSession) -> Dict[str, Any]:
    slots = session.store.slots()
    return {
        "collection": session.name,
        "total": session.total,
        "records": [
            {
                "position": index,
                "id": session.store.record_id(index),
                "record": record,
                "slot": _serialize_slot(slots[index]),
            }
            for index, record in enumerate(session.store.records())
        ],
        "selection": session.selection,
    }


def _client_session_factory(client: AdminApiClient, config: AppConfig) -> SessionFactory:
    uploads = client.uploads(chunk_size=config.upload_chunk_size)

    def _factory(name: str) -> EditingSession:
        return EditingSession(
            client.resource(name),
            uploads,
            name=name,
            slug_policy=config.slug_policy,
            max_upload_bytes=config.max_upload_bytes,
        )

    return _factory


def create_app(
    *,
    config: AppConfig,
    session_factory: Optional[SessionFactory] = None,
    root_path: str | None = None,
) -> FastAPI:
    """Return a configured FastAPI application."""

    app = FastAPI(
        title="Admin Console",
        description="Collection editing for the admin console",
        root_path=root_path or "",
    )
    app.state.server = None
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    client: Optional[AdminApiClient] = None
    if session_factory is None:
        client = AdminApiClient.from_config(config)
        session_factory = _client_session_factory(client, config)
    factory = session_factory
    sessions: Dict[str, EditingSession] = {}
    app.state.sessions = sessions

    if client is not None:
        app.add_event_handler("shutdown", client.aclose)

    def _session(name: str) -> EditingSession:
        session = sessions.get(name)
        if session is None:
            session = factory(name)
            sessions[name] = session
        return session

    def _require_session(name: str) -> EditingSession:
        session = sessions.get(name)
        if session is None:
            raise HTTPException(status_code=404, detail="Collection has not been loaded")
        return session

    def _api_failure(error: ApiError) -> HTTPException:
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(error))

    @app.get("/api/collections/{name}")
    async def load_collection(
        name: str,
        page: int = Query(1, ge=1),
        limit: int = Query(config.page_size, ge=1),
        search: Optional[str] = None,
    ) -> Dict[str, Any]:
        _log_event("Loading collection", collection=name, page=page, search=search)
        session = _session(name)
        try:
            await session.load(page=page, limit=limit, search=search)
        except ApiError as error:
            raise _api_failure(error) from error
        return _serialize_session(session)

    @app.get("/api/collections/{name}/state")
    async def collection_state(name: str) -> Dict[str, Any]:
        return _serialize_session(_require_session(name))

    @app.post("/api/collections/{name}/records", status_code=status.HTTP_201_CREATED)
    async def insert_record(name: str, payload: InsertPayload) -> Dict[str, Any]:
        session = _require_session(name)
        position = len(session.store) if payload.position is None else payload.position
        try:
            session.store.insert_at(position, payload.record)
        except IndexOutOfRange as error:
            raise HTTPException(status_code=404, detail=str(error)) from error
        return _serialize_session(session)

    @app.patch("/api/collections/{name}/records/{position}")
    async def update_record_field(
        name: str, position: int, payload: FieldUpdatePayload
    ) -> Dict[str, Any]:
        session = _require_session(name)
        try:
            record = session.store.update_field(position, payload.field, payload.value)
        except IndexOutOfRange as error:
            raise HTTPException(status_code=404, detail=str(error)) from error
        except ValueError as error:
            raise HTTPException(status_code=400, detail=str(error)) from error
        return {"position": position, "record": record}

    @app.delete("/api/collections/{name}/records/{position}")
    async def remove_record(name: str, position: int) -> Dict[str, Any]:
        session = _require_session(name)
        try:
            session.store.remove_at(position)
        except IndexOutOfRange as error:
            raise HTTPException(status_code=404, detail=str(error)) from error
        return _serialize_session(session)

    @app.post("/api/collections/{name}/records/move")
    async def move_record(name: str, payload: MovePayload) -> Dict[str, Any]:
        session = _require_session(name)
        try:
            session.store.move(payload.source, payload.target)
        except IndexOutOfRange as error:
            raise HTTPException(status_code=404, detail=str(error)) from error
        return _serialize_session(session)

    @app.post("/api/collections/{name}/records/{position}/upload", status_code=status.HTTP_202_ACCEPTED)
    async def start_upload(
        name: str,
        position: int,
        kind: str = Form(...),
        field: Optional[str] = Form(None),
        file: UploadFile = File(...),
    ) -> Dict[str, Any]:
        session = _require_session(name)
        data = await file.read()
        local_file = LocalFile(
            name=file.filename or "upload",
            content_type=file.content_type or "application/octet-stream",
            data=data,
        )
        try:
            token = session.uploads.start_upload(position, local_file, kind, field=field)
        except InvalidFileType as error:
            raise HTTPException(
                status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE, detail=str(error)
            ) from error
        except IndexOutOfRange as error:
            raise HTTPException(status_code=404, detail=str(error)) from error
        _log_event("Upload accepted", collection=name, position=position, token=token)
        return {"token": token, "position": position, "slot": _serialize_slot(session.store.slot(position))}

    @app.delete("/api/collections/{name}/uploads/{token}")
    async def cancel_upload(name: str, token: str) -> Dict[str, Any]:
        session = _require_session(name)
        return {"token": token, "cancelled": session.uploads.cancel_upload(token)}

    @app.get("/api/collections/{name}/uploads/{token}")
    async def upload_status(name: str, token: str) -> Dict[str, Any]:
        session = _require_session(name)
        outcome = session.uploads.outcome(token)
        progress = session.uploads.progress(token)
        if outcome is None and progress is None:
            raise HTTPException(status_code=404, detail="Upload not found")
        return {
            "token": token,
            "progress": progress,
            "status": outcome.status if outcome else "running",
            "url": outcome.url if outcome else None,
            "reason": outcome.reason if outcome else None,
        }

    @app.put("/api/collections/{name}/selection")
    async def replace_selection(name: str, payload: SelectionPayload) -> Dict[str, Any]:
        session = _require_session(name)
        session.clear_selection()
        try:
            for record_id in payload.ids:
                session.select(record_id)
        except SelectionError as error:
            session.clear_selection()
            raise HTTPException(status_code=400, detail=str(error)) from error
        return {"selection": session.selection}

    @app.post("/api/collections/{name}/bulk")
    async def run_bulk(name: str, payload: BulkPayload) -> Dict[str, Any]:
        session = _require_session(name)
        try:
            action = BulkAction.parse(payload.action, payload.value)
            result = await session.run_bulk(action, payload.ids)
        except (InvalidBulkAction, EmptySelection) as error:
            raise HTTPException(status_code=400, detail=str(error)) from error
        except RuntimeError as error:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(error)) from error
        _log_event("Bulk action settled", collection=name, summary=result.summary())
        return result.to_dict()

    @app.post("/api/collections/{name}/submit")
    async def submit_collection(name: str) -> Dict[str, Any]:
        session = _require_session(name)
        try:
            saved = await session.submit()
        except ApiError as error:
            raise _api_failure(error) from error
        return {"saved": len(saved), **_serialize_session(session)}

    @app.post("/api/collections/{name}/reset")
    async def reset_collection(name: str) -> Dict[str, Any]:
        session = _require_session(name)
        try:
            await session.reset()
        except ApiError as error:
            raise _api_failure(error) from error
        return _serialize_session(session)

    @app.get("/api/collections/{name}/export")
    async def export_collection(
        name: str,
        format: str = Query("json"),
        selected: bool = Query(False),
    ) -> Response:
        session = _require_session(name)
        fmt = format.lower()
        if fmt not in EXPORT_FORMATS:
            raise HTTPException(status_code=400, detail="Unsupported export format")
        try:
            content = session.export(fmt, selected_only=selected)
        except ExportError as error:
            raise HTTPException(status_code=500, detail=str(error)) from error
        filename = build_export_name(f"{name}-export", extension=fmt)
        return Response(
            content=content,
            media_type=media_type_for(fmt),
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )

    return app


__all__ = ["create_app"]
