"""HTTP API for the tagnotes service."""

import logging
from typing import Any, Dict, Optional

from fastapi import (
    APIRouter,
    BackgroundTasks,
    Body,
    Depends,
    FastAPI,
    File,
    Path,
    Query,
    Request,
    UploadFile,
)
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import FileResponse, JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from tagnotes.config import config
from tagnotes.exceptions import ErrorCode, TagNotesError, ValidationError
from tagnotes.models.schema import MAX_ROW_ID
from tagnotes.observability import metrics
from tagnotes.services.auth_gateway import AuthGateway
from tagnotes.services.note_service import NoteService
from tagnotes.storage.user_repository import UserRepository
from tagnotes.utils import run_sync

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)

UPLOADS_PATH = "/uploads"


def get_service(request: Request) -> NoteService:
    return request.app.state.service


def get_auth(request: Request) -> AuthGateway:
    return request.app.state.auth


def current_user_id(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    auth: AuthGateway = Depends(get_auth),
) -> int:
    """Resolve the bearer token to the caller's user id (401 missing, 403 invalid)."""
    token = creds.credentials.strip() if creds else None
    return auth.verify(token)


# ============================================================================
# Auth
# ============================================================================

auth_router = APIRouter(prefix="/auth", tags=["auth"])


@auth_router.post("/register", status_code=201)
async def register(
    payload: Dict[str, Any] = Body(...),
    auth: AuthGateway = Depends(get_auth),
):
    result = await run_sync(auth.register, payload)
    return result.to_dict()


@auth_router.post("/login")
async def login(
    payload: Dict[str, Any] = Body(...),
    auth: AuthGateway = Depends(get_auth),
):
    result = await run_sync(auth.login, payload)
    return result.to_dict()


# ============================================================================
# Notes
# ============================================================================

notes_router = APIRouter(prefix="/notes", tags=["notes"])


@notes_router.post("", status_code=201)
async def create_note(
    payload: Dict[str, Any] = Body(...),
    user_id: int = Depends(current_user_id),
    service: NoteService = Depends(get_service),
):
    view = await run_sync(service.create_note, user_id=user_id, payload=payload)
    return view.model_dump(by_alias=True, mode="json")


@notes_router.get("")
async def list_notes(
    offset: int = Query(0),
    limit: Optional[int] = Query(None),
    user_id: int = Depends(current_user_id),
    service: NoteService = Depends(get_service),
):
    """One page of the caller's notes, in manual order, with hashtags and attachments."""
    page = await run_sync(service.list_notes, user_id, offset=offset, limit=limit)
    return page.model_dump(by_alias=True, mode="json")


# Declared before /{note_id} so "reorder" is never parsed as a note id
@notes_router.put("/reorder")
async def reorder_notes(
    payload: Dict[str, Any] = Body(...),
    user_id: int = Depends(current_user_id),
    service: NoteService = Depends(get_service),
):
    result = await run_sync(service.reorder, user_id, payload)
    return {"message": "Order updated", **result.to_dict()}


@notes_router.get("/{note_id}")
async def get_note(
    note_id: int = Path(..., ge=1, le=MAX_ROW_ID),
    user_id: int = Depends(current_user_id),
    service: NoteService = Depends(get_service),
):
    view = await run_sync(service.get_note, user_id, note_id)
    return view.model_dump(by_alias=True, mode="json")


@notes_router.put("/{note_id}")
async def update_note(
    note_id: int = Path(..., ge=1, le=MAX_ROW_ID),
    payload: Dict[str, Any] = Body(...),
    user_id: int = Depends(current_user_id),
    service: NoteService = Depends(get_service),
):
    await run_sync(service.update_note, user_id=user_id, note_id=note_id, payload=payload)
    return {"message": "Note updated"}


@notes_router.delete("/{note_id}")
async def delete_note(
    background_tasks: BackgroundTasks,
    note_id: int = Path(..., ge=1, le=MAX_ROW_ID),
    user_id: int = Depends(current_user_id),
    service: NoteService = Depends(get_service),
):
    """Delete a note. Its blobs are removed after the response is sent."""
    await run_sync(
        service.delete_note,
        user_id=user_id,
        note_id=note_id,
        schedule=background_tasks.add_task,
    )
    return {"message": "Note deleted"}


@notes_router.post("/{note_id}/attachments", status_code=201)
async def upload_attachment(
    note_id: int = Path(..., ge=1, le=MAX_ROW_ID),
    file: Optional[UploadFile] = File(None),
    user_id: int = Depends(current_user_id),
    service: NoteService = Depends(get_service),
):
    if file is None:
        raise ValidationError("No file uploaded", field="file")

    # One byte past the ceiling is enough to know the upload is too large
    limit = service.blobs.max_blob_bytes
    data = await file.read(limit + 1)
    view = await run_sync(
        service.upload_attachment,
        user_id,
        note_id,
        data,
        file.filename or "",
        file.content_type,
    )
    return view.model_dump(by_alias=True, mode="json")


@notes_router.delete("/{note_id}/attachments/{attachment_id}")
async def delete_attachment(
    note_id: int = Path(..., ge=1, le=MAX_ROW_ID),
    attachment_id: int = Path(..., ge=1, le=MAX_ROW_ID),
    user_id: int = Depends(current_user_id),
    service: NoteService = Depends(get_service),
):
    await run_sync(service.remove_attachment, user_id, note_id, attachment_id)
    return {"message": "Attachment deleted"}


# ============================================================================
# Blobs and health (no auth)
# ============================================================================

public_router = APIRouter(tags=["public"])


@public_router.get(UPLOADS_PATH + "/{key}")
async def download_blob(key: str, service: NoteService = Depends(get_service)):
    path = await run_sync(service.blobs.path_for, key)
    return FileResponse(path)


@public_router.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "version": config.server_version,
        "metrics": metrics.get_summary(),
    }


# ============================================================================
# Error handling
# ============================================================================

def _error_response(status_code: int, message: str, code: str, details: Dict[str, Any]) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "error": message,
            "code": code,
            "details": jsonable_encoder(details),
        },
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Map TagNotesError subclasses (and request parsing errors) to JSON responses."""

    @app.exception_handler(TagNotesError)
    async def tagnotes_error_handler(request: Request, exc: TagNotesError) -> JSONResponse:
        if exc.http_status >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        else:
            logger.info(f"{request.method} {request.url.path} -> {exc.http_status}: {exc}")
        # Driver messages can carry SQL text; they stay in the log line above
        details = {k: v for k, v in exc.details.items() if k != "original_error"}
        return _error_response(exc.http_status, exc.message, exc.code.name, details)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        return _error_response(
            400,
            "Invalid request",
            ErrorCode.VALIDATION_FAILED.name,
            {"errors": [
                {k: v for k, v in error.items() if k != "ctx"}
                for error in exc.errors()
            ]},
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(
            f"Unhandled exception on {request.method} {request.url.path}: "
            f"{type(exc).__name__}: {exc}"
        )
        return _error_response(500, "Internal server error", "INTERNAL_ERROR", {})


def create_app(
    service: Optional[NoteService] = None,
    auth: Optional[AuthGateway] = None,
    api_prefix: Optional[str] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        service: Note service to serve. Built from config when None.
        auth: Auth gateway. Built over a UserRepository sharing the
            service's engine when None.
        api_prefix: Prefix for the auth and notes routes.
    """
    service = service or NoteService()
    auth = auth or AuthGateway(UserRepository(engine=service.store.engine))
    prefix = config.api_prefix if api_prefix is None else api_prefix

    app = FastAPI(
        title="tagnotes",
        description="Notes with hashtags, attachments and manual ordering",
        version=config.server_version,
    )
    app.state.service = service
    app.state.auth = auth

    app.include_router(auth_router, prefix=prefix)
    app.include_router(notes_router, prefix=prefix)
    app.include_router(public_router)

    register_exception_handlers(app)
    return app
