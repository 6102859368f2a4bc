from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, File, Form, Response, UploadFile, status

from video_engine.api import deps
from video_engine.core.errors import NotFoundError, ValidationError
from video_engine.core.logging import get_logger
from video_engine.domain.models import IngestRequest, UploadedFile

from . import schemas


router = APIRouter(prefix="/videos", tags=["videos"])
logger = get_logger(component="videos_api")

CHUNK_SIZE = 1024 * 1024


async def _spool_upload(file: UploadFile, limit: int) -> tuple[Path, int]:
    """Copy the multipart body to a temp file, stopping as soon as ``limit`` is crossed."""
    suffix = Path(file.filename or "").suffix or ".bin"
    size = 0
    with tempfile.NamedTemporaryFile(delete=False, suffix=suffix) as tmp:
        tmp_path = Path(tmp.name)
        while True:
            chunk = await file.read(CHUNK_SIZE)
            if not chunk:
                break
            size += len(chunk)
            if size > limit:
                break
            tmp.write(chunk)
    await file.close()
    return tmp_path, size


@router.post(
    "",
    response_model=schemas.VideoResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Upload a video and start processing",
)
async def upload_video(
    engine: deps.EngineDependency,
    settings: deps.SettingsDependency,
    file: UploadFile = File(...),
    title: Optional[str] = Form(default=None),
    description: Optional[str] = Form(default=None),
    output_profile: Optional[str] = Form(default=None),
) -> schemas.VideoResponse:
    if not file.filename:
        raise ValidationError("Uploaded file must include a filename.", field="file")

    tmp_path: Optional[Path] = None
    try:
        tmp_path, size = await _spool_upload(file, settings.max_upload_size_bytes)
        logger.info("upload_spooled", filename=file.filename, size_bytes=size)
        upload = UploadedFile(
            path=tmp_path,
            filename=file.filename,
            content_type=file.content_type,
            size_bytes=size,
        )
        request = IngestRequest(title=title, description=description, output_profile=output_profile)
        asset = await engine.ingest(upload, request)
        return schemas.VideoResponse.from_asset(asset)
    finally:
        if tmp_path and tmp_path.exists():
            try:
                os.remove(tmp_path)
            except OSError as cleanup_error:
                logger.warning("upload_tempfile_cleanup_failed", path=str(tmp_path), error=str(cleanup_error))


@router.get("", response_model=schemas.VideoListResponse, summary="List videos, newest first")
async def list_videos(engine: deps.EngineDependency) -> schemas.VideoListResponse:
    items = [schemas.VideoResponse.from_asset(asset) for asset in await engine.list_assets()]
    return schemas.VideoListResponse(items=items, count=len(items))


@router.get("/{asset_id}", response_model=schemas.VideoResponse)
async def get_video(asset_id: str, engine: deps.EngineDependency) -> schemas.VideoResponse:
    return schemas.VideoResponse.from_asset(await engine.get_asset(asset_id))


@router.delete("/{asset_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_video(asset_id: str, engine: deps.EngineDependency) -> Response:
    await engine.delete_asset(asset_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{asset_id}/refresh", response_model=schemas.VideoResponse, summary="Reconcile with the remote job now")
async def refresh_video(asset_id: str, engine: deps.EngineDependency) -> schemas.VideoResponse:
    return schemas.VideoResponse.from_asset(await engine.refresh_asset(asset_id))


@router.get("/{asset_id}/proxy", response_model=schemas.ProxyResponse)
async def get_proxy(asset_id: str, engine: deps.EngineDependency) -> schemas.ProxyResponse:
    asset = await engine.get_asset(asset_id)
    if not asset.output_files:
        raise NotFoundError(asset_id)
    outputs = [schemas.OutputFileResponse(**item.as_dict()) for item in asset.output_files]
    return schemas.ProxyResponse(asset_id=asset.id, proxy=outputs[0], outputs=outputs)


@router.get("/{asset_id}/logs", response_model=schemas.LogListResponse)
async def video_logs(asset_id: str, engine: deps.EngineDependency) -> schemas.LogListResponse:
    return schemas.LogListResponse.from_entries(engine.logs_for(asset_id))


__all__ = ["router"]
