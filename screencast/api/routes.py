from fastapi import APIRouter, HTTPException, Request, Depends, File, Form, UploadFile
from fastapi.responses import JSONResponse
from screencast.api.deps import get_base_url, get_persistence, get_upload_service
from screencast.errors import NotFoundError, ScreenCastError, UploadError
from screencast.playback.formatting import format_time
from screencast.playback.player import PlaybackSession
from screencast.services.persistence import Persistence
from screencast.services.uploads import UploadService, build_share_url
import logging

router = APIRouter()
page_router = APIRouter()
logger = logging.getLogger(__name__)


def _video_payload(video, base_url: str) -> dict:
    payload = video.model_dump()
    payload["share_url"] = build_share_url(base_url, video.share_id)
    payload["duration_display"] = format_time(video.duration)
    return payload


@router.get("/")
def read_root():
    return {"status": "ok", "message": "ScreenCast Server Running"}


@router.get("/config")
def get_server_config(request: Request, base_url: str = Depends(get_base_url)):
    """Public configuration the recorder UI needs."""
    config = request.app.state.config
    return {
        "base_url": base_url,
        "storage_backend": config.STORAGE_BACKEND,
        "persistence": config.PERSISTENCE,
        "max_upload_bytes": config.MAX_UPLOAD_BYTES,
    }


@router.get("/videos")
def list_videos(
    persistence: Persistence = Depends(get_persistence),
    base_url: str = Depends(get_base_url),
):
    """Dashboard listing, newest first."""
    try:
        videos = persistence.list_videos()
    except ScreenCastError as e:
        logger.exception(f"[Dashboard] Listing failed: {e}")
        raise HTTPException(status_code=502, detail=str(e))
    return [_video_payload(v, base_url) for v in videos]


@router.post("/videos", status_code=201)
def upload_video(
    request: Request,
    file: UploadFile = File(...),
    title: str = Form(""),
    client: str = Form(""),
    duration: int = Form(0),
    uploads: UploadService = Depends(get_upload_service),
):
    """
    Upload a finished recording and return its share link.
    """
    max_bytes = request.app.state.config.MAX_UPLOAD_BYTES
    data = file.file.read(max_bytes + 1)
    if not data:
        raise HTTPException(status_code=400, detail="Recording is empty")
    if len(data) > max_bytes:
        raise HTTPException(status_code=413, detail="Recording is too large")
    if duration < 0:
        raise HTTPException(status_code=400, detail="Duration must be positive")

    try:
        result = uploads.upload(
            data,
            title=title,
            client=client,
            duration=duration,
            content_type=file.content_type or "video/webm",
        )
    except UploadError as e:
        raise HTTPException(status_code=502, detail=str(e))

    return {
        "share_id": result.share_id,
        "share_url": result.share_url,
        "video": result.video.model_dump(),
    }


@router.get("/videos/{share_id}")
def get_video(
    share_id: str,
    persistence: Persistence = Depends(get_persistence),
    base_url: str = Depends(get_base_url),
):
    try:
        video = persistence.get_video(share_id)
    except ScreenCastError as e:
        logger.exception(f"[Dashboard] Lookup failed for {share_id}: {e}")
        raise HTTPException(status_code=502, detail=str(e))
    if not video:
        raise HTTPException(status_code=404, detail="Recording not found")
    return _video_payload(video, base_url)


@router.delete("/videos/{share_id}")
def delete_video(share_id: str, persistence: Persistence = Depends(get_persistence)):
    """Delete a recording together with its thumbnail, metadata and comments."""
    try:
        deleted = persistence.delete_video(share_id)
    except ScreenCastError as e:
        logger.exception(f"[Dashboard] Delete failed for {share_id}: {e}")
        raise HTTPException(status_code=502, detail=str(e))
    if not deleted:
        raise HTTPException(status_code=404, detail="Recording not found")
    return {"status": "deleted", "share_id": share_id}


@router.post("/videos/{share_id}/views")
def increment_views(share_id: str, persistence: Persistence = Depends(get_persistence)):
    try:
        views = persistence.increment_views(share_id)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Recording not found")
    except ScreenCastError as e:
        logger.exception(f"[Playback] View count failed for {share_id}: {e}")
        raise HTTPException(status_code=502, detail=str(e))
    return {"share_id": share_id, "views": views}


@page_router.get("/v/{share_id}")
def playback_page(share_id: str, persistence: Persistence = Depends(get_persistence)):
    """
    Share page model: metadata, comment thread and progress-bar markers.
    Unknown or deleted ids get a distinct not-found state.
    """
    session = PlaybackSession.load(persistence, share_id)
    page = session.page()
    if page["status"] == "not_found":
        return JSONResponse(status_code=404, content=page)
    return page
