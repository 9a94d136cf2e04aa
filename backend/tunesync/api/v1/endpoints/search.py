"""
YouTube search endpoint.
"""
from typing import Any, List
from fastapi import APIRouter, Depends, HTTPException, Query

from tunesync.api import deps
from tunesync.models.user import Identity
from tunesync.schemas.song import SearchResultResponse
from tunesync.services.yt_service import yt_service, ExtractionError

router = APIRouter()


@router.get("/", response_model=List[SearchResultResponse])
async def search_youtube(
    q: str = Query(..., min_length=1, max_length=200, description="Search query"),
    current_user: Identity = Depends(deps.get_current_user),
) -> Any:
    """Search YouTube for videos to queue."""
    try:
        results = await yt_service.search(q)
    except ExtractionError as e:
        raise HTTPException(status_code=502, detail=f"YouTube search failed: {str(e)}")

    return [
        SearchResultResponse(
            video_id=r.video_id,
            title=r.title,
            channel_title=r.channel_title,
            thumbnail_url=r.thumbnail_url,
            duration=r.duration,
        )
        for r in results
    ]
