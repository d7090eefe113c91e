import logging
import mimetypes
import uuid
from pathlib import PurePosixPath

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, Response, UploadFile, status

from app.api.session_auth import require_session_user
from app.dependencies import get_app_settings, get_storage_backend
from app.domain.users.schemas import SessionUser
from app.infra.storage import UPLOAD_ROUTE_PREFIX, StorageBackend

router = APIRouter(prefix="/v1/uploads", tags=["uploads"])
logger = logging.getLogger(__name__)

UPLOAD_FOLDERS = {"receipts", "worklogs", "imports"}
_CHUNK_SIZE = 64 * 1024


def _extension(filename: str | None, content_type: str) -> str:
    suffix = PurePosixPath(filename or "").suffix.lower()
    if suffix and suffix[1:].isalnum() and len(suffix) <= 6:
        return suffix
    return mimetypes.guess_extension(content_type) or ""


@router.post("", status_code=status.HTTP_201_CREATED)
async def upload_blob(
    request: Request,
    file: UploadFile = File(...),
    folder: str = Form("receipts"),
    user: SessionUser = Depends(require_session_user),
    storage: StorageBackend = Depends(get_storage_backend),
) -> dict:
    app_settings = get_app_settings(request)
    if folder not in UPLOAD_FOLDERS:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Unknown upload folder")
    content_type = (file.content_type or "").split(";")[0].strip().lower()
    if content_type not in app_settings.upload_allowed_mime_types:
        raise HTTPException(
            status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE, detail="Unsupported file type"
        )

    key = f"{folder}/{uuid.uuid4().hex}{_extension(file.filename, content_type)}"
    max_bytes = app_settings.upload_max_bytes
    size = 0

    async def _stream():
        nonlocal size
        while True:
            chunk = await file.read(_CHUNK_SIZE)
            if not chunk:
                break
            size += len(chunk)
            if size > max_bytes:
                raise HTTPException(
                    status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, detail="File too large"
                )
            yield chunk

    try:
        stored = await storage.put(key=key, body=_stream(), content_type=content_type)
    except HTTPException:
        await storage.delete(key=key)
        raise
    logger.info(
        "upload_stored",
        extra={"extra": {"key": stored.key, "size": stored.size, "uploaded_by": user.username}},
    )
    return {"url": f"{UPLOAD_ROUTE_PREFIX}{stored.key}", "key": stored.key, "size": stored.size}


@router.get("/{key:path}")
async def read_blob(
    key: str,
    _user: SessionUser = Depends(require_session_user),
    storage: StorageBackend = Depends(get_storage_backend),
) -> Response:
    try:
        payload = await storage.read(key=key)
    except (FileNotFoundError, ValueError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Upload not found") from None
    media_type = mimetypes.guess_type(key)[0] or "application/octet-stream"
    return Response(content=payload, media_type=media_type)
