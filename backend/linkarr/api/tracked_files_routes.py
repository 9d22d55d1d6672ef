"""
Tracked Files API Routes

Inspection and operator actions on tracked files.

Endpoints:
- GET /api/tracked-files: List tracked files (filters, sorting, pagination)
- GET /api/tracked-files/stats: Counts per status and media type
- GET /api/tracked-files/{id}: Get one tracked file
- PATCH /api/tracked-files/{id}: Manual match (provider ids), relinks the file
- POST /api/tracked-files/redetect: Schedule re-detection on the next pass
- PATCH /api/tracked-files/{id}/recreate-link: Rebuild one link from stored ids
- POST /api/tracked-files/recreate-links: Rebuild every Success link
- DELETE /api/tracked-files/{id}: Delete a tracked file and its link
- DELETE /api/tracked-files: Bulk delete (body: {"ids": [...]})
- POST /api/symlinks/cleanup: Sweep dead links from every destination folder
"""

import asyncio
import logging
import math
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from linkarr.models.tracked_file import FileStatus, MediaType
from linkarr.schemas.responses import (
    PaginatedResponse,
    TrackedFileResponse,
    TrackedFileStatsResponse,
    ManualMatchRequest,
    RedetectResponse,
    DeleteTrackedFilesRequest,
    DeleteResponse,
    RecreateLinksResponse,
    LinkCleanupResponse,
)
from linkarr.services.tracking_store import TrackingStore, get_tracking_store
from linkarr.workers.reconciler import Reconciler, get_reconciler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/tracked-files", tags=["tracked-files"])
symlinks_router = APIRouter(prefix="/api/symlinks", tags=["symlinks"])


@router.get("", response_model=PaginatedResponse[TrackedFileResponse])
async def list_tracked_files(
    status: Optional[FileStatus] = Query(None, description="Filter by status"),
    media_type: Optional[MediaType] = Query(None, description="Filter by media type"),
    search: Optional[str] = Query(None, max_length=200, description="Substring of source, destination or title"),
    sort_by: str = Query("created_at", pattern="^(created_at|updated_at|source_file|title)$", description="Sort column"),
    sort_order: str = Query("desc", pattern="^(asc|desc)$", description="Sort direction"),
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(20, ge=1, le=200, description="Items per page"),
    store: TrackingStore = Depends(get_tracking_store)
):
    """List tracked files, newest first by default."""
    try:
        rows, total = await asyncio.to_thread(
            store.list_files, status, media_type, search, sort_by, sort_order, page, page_size
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {
        "items": [row.to_dict() for row in rows],
        "total": total,
        "page": page,
        "page_size": page_size,
        "total_pages": math.ceil(total / page_size) if total else 0,
    }


@router.get("/stats", response_model=TrackedFileStatsResponse)
async def tracked_file_stats(store: TrackingStore = Depends(get_tracking_store)):
    """Totals per status and per media type."""
    return await asyncio.to_thread(store.get_stats)


@router.post("/redetect", response_model=RedetectResponse)
async def request_redetection(
    scope: str = Query("failed", pattern="^(failed|all)$", description="failed = Failed and Duplicate, all = every finished file"),
    store: TrackingStore = Depends(get_tracking_store)
):
    """
    Schedule re-detection.

    Raises the target detection version of every file in scope by one; the next
    reconciliation pass identifies them again.
    """
    scheduled = await asyncio.to_thread(store.reset_for_redetection, scope)
    logger.info(f"Re-detection requested (scope={scope}): {scheduled} file(s) scheduled")
    return {"scope": scope, "scheduled": scheduled}


@router.post("/recreate-links", response_model=RecreateLinksResponse)
async def recreate_all_links(reconciler: Reconciler = Depends(get_reconciler)):
    """Rebuild the link of every Success file from its stored provider ids."""
    success_count = await reconciler.recreate_all_links()
    return {"success_count": success_count}


@router.delete("", response_model=DeleteResponse)
async def delete_tracked_files(
    request: DeleteTrackedFilesRequest,
    reconciler: Reconciler = Depends(get_reconciler)
):
    """
    Delete tracked files and their links.

    Source files are left alone; any that still exist are picked up again as
    new files on the next pass.
    """
    deleted = await reconciler.delete_tracked_files(request.ids)
    return {"deleted": deleted}


@router.get("/{tracked_file_id}", response_model=TrackedFileResponse)
async def get_tracked_file(tracked_file_id: int, store: TrackingStore = Depends(get_tracking_store)):
    """Get one tracked file."""
    row = await asyncio.to_thread(store.get_by_id, tracked_file_id)
    if row is None:
        raise HTTPException(status_code=404, detail=f"Tracked file {tracked_file_id} not found")
    return row.to_dict()


@router.patch("/{tracked_file_id}", response_model=TrackedFileResponse)
async def manual_match(
    tracked_file_id: int,
    request: ManualMatchRequest,
    reconciler: Reconciler = Depends(get_reconciler)
):
    """
    Identify a file from provider ids and relink it.

    Supplying season_number and episode_number matches a TV episode of show
    tmdb_id, otherwise tmdb_id is a movie. The file ends up Success, or Failed
    (with the reason in error_message) when the lookup or the link fails.
    """
    if (request.season_number is None) != (request.episode_number is None):
        raise HTTPException(status_code=400, detail="season_number and episode_number go together")

    try:
        row = await reconciler.apply_manual_match(
            tracked_file_id,
            request.tmdb_id,
            season_number=request.season_number,
            episode_number=request.episode_number,
            episode_number2=request.episode_number2
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if row is None:
        raise HTTPException(status_code=404, detail=f"Tracked file {tracked_file_id} not found")
    return row.to_dict()


@router.patch("/{tracked_file_id}/recreate-link", response_model=TrackedFileResponse)
async def recreate_link(tracked_file_id: int, reconciler: Reconciler = Depends(get_reconciler)):
    """Rebuild one file's link from its stored provider ids."""
    try:
        row = await reconciler.recreate_link(tracked_file_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if row is None:
        raise HTTPException(status_code=404, detail=f"Tracked file {tracked_file_id} not found")
    return row.to_dict()


@router.delete("/{tracked_file_id}", response_model=DeleteResponse)
async def delete_tracked_file(tracked_file_id: int, reconciler: Reconciler = Depends(get_reconciler)):
    """Delete one tracked file and its link."""
    deleted = await reconciler.delete_tracked_files([tracked_file_id])
    if not deleted:
        raise HTTPException(status_code=404, detail=f"Tracked file {tracked_file_id} not found")
    return {"deleted": deleted}


@symlinks_router.post("/cleanup", response_model=LinkCleanupResponse)
async def cleanup_dead_links(reconciler: Reconciler = Depends(get_reconciler)):
    """Remove dead links and empty directories from every destination folder."""
    removed = await reconciler.cleanup_dead_links()
    logger.info(f"Dead link cleanup requested: {removed} link(s) removed")
    return {"removed": removed, "message": f"Removed {removed} dead link(s)"}
