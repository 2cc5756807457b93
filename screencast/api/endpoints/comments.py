from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field, field_validator
from typing import Literal, Optional
import logging
import math

from screencast.api.deps import get_persistence
from screencast.errors import NotFoundError, ScreenCastError
from screencast.services.persistence import Persistence

router = APIRouter()
logger = logging.getLogger(__name__)


class CommentRequest(BaseModel):
    author: str = Field(min_length=1, max_length=100)
    text: str = Field(min_length=1, max_length=5000)
    timestamp: Optional[float] = Field(default=None, ge=0)
    category: Literal["comment", "issue", "win", "action_item"] = "comment"

    @field_validator("timestamp")
    @classmethod
    def whole_second(cls, v: Optional[float]) -> Optional[int]:
        # Anchors are whole seconds, rounded down
        return int(math.floor(v)) if v is not None else None


def _require_video(persistence: Persistence, share_id: str):
    try:
        video = persistence.get_video(share_id)
    except ScreenCastError as e:
        logger.exception(f"[Comments] Could not load {share_id}: {e}")
        raise HTTPException(status_code=502, detail=str(e))
    if video is None:
        raise HTTPException(status_code=404, detail="Recording not found")
    return video


@router.get("/videos/{share_id}/comments")
def list_comments(share_id: str, persistence: Persistence = Depends(get_persistence)):
    _require_video(persistence, share_id)
    try:
        comments = persistence.list_comments(share_id)
    except ScreenCastError as e:
        logger.exception(f"[Comments] Listing failed for {share_id}: {e}")
        raise HTTPException(status_code=502, detail=str(e))
    return [c.model_dump() for c in comments]


@router.post("/videos/{share_id}/comments", status_code=201)
def add_comment(share_id: str, request: CommentRequest, persistence: Persistence = Depends(get_persistence)):
    video = _require_video(persistence, share_id)
    if request.timestamp is not None and video.duration > 0 and request.timestamp > video.duration:
        raise HTTPException(status_code=400, detail="Timestamp is past the end of the video")
    if not request.author.strip() or not request.text.strip():
        raise HTTPException(status_code=400, detail="Name and comment text are required")

    try:
        comment = persistence.add_comment(
            share_id,
            request.author.strip(),
            request.text.strip(),
            request.timestamp,
            request.category,
        )
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Recording not found")
    except ScreenCastError as e:
        logger.exception(f"[Comments] Failed to save comment on {share_id}: {e}")
        raise HTTPException(status_code=502, detail=str(e))
    return comment.model_dump()


@router.delete("/videos/{share_id}/comments/{comment_id}")
def delete_comment(share_id: str, comment_id: str, persistence: Persistence = Depends(get_persistence)):
    try:
        deleted = persistence.delete_comment(share_id, comment_id)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Recording not found")
    except ScreenCastError as e:
        logger.exception(f"[Comments] Failed to delete {comment_id} on {share_id}: {e}")
        raise HTTPException(status_code=502, detail=str(e))
    if not deleted:
        raise HTTPException(status_code=404, detail="Comment not found")
    return {"status": "deleted", "id": comment_id}
