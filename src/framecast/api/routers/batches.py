"""Batches router — submit, inspect, cancel and delete batch generation jobs."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from framecast.api.auth import get_current_user
from framecast.config import get_settings
from framecast.core import batch as batch_service
from framecast.core.errors import (
    BatchStateError,
    ConfigurationError,
    FramecastError,
    NotFoundError,
)
from framecast.core.store import JobStore, SqlJobStore
from framecast.models.batch import BatchJob, BatchJobItem
from framecast.models.user import User

router = APIRouter()


def get_job_store() -> JobStore:
    return SqlJobStore()


# ------------------------------------------------------------------
# Pydantic schemas
# ------------------------------------------------------------------


class BatchCreate(BaseModel):
    prompts: list[str]
    name: str | None = Field(default=None, max_length=255)
    size: str = Field(default="1024x1024", max_length=20)
    style_preset: str | None = Field(default=None, max_length=50)
    auto_sync_device: bool = False


class BatchAction(BaseModel):
    action: Literal["cancel"]


class BatchItemOut(BaseModel):
    id: str
    position: int
    prompt: str
    status: str
    image_id: str | None
    error_message: str | None
    attempt_count: int
    synced_to_device: bool
    completed_at: datetime | None


class BatchOut(BaseModel):
    id: str
    user_id: str
    name: str | None
    status: str
    total_count: int
    completed_count: int
    failed_count: int
    size: str
    style_preset: str | None
    auto_sync_device: bool
    started_at: datetime | None
    completed_at: datetime | None
    created_at: datetime | None


class BatchDetailOut(BatchOut):
    items: list[BatchItemOut]


class BatchStatusOut(BaseModel):
    id: str
    status: str
    total: int
    completed: int
    failed: int
    progress: int


def _item_out(item: BatchJobItem) -> BatchItemOut:
    return BatchItemOut(
        id=item.id,
        position=item.position,
        prompt=item.prompt,
        status=item.status,
        image_id=item.image_id,
        error_message=item.error_message,
        attempt_count=item.attempt_count or 0,
        synced_to_device=bool(item.synced_to_device),
        completed_at=item.completed_at,
    )


def _summary(batch: BatchJob) -> dict:
    return {
        "id": batch.id,
        "user_id": batch.user_id,
        "name": batch.name,
        "status": batch.status,
        "total_count": batch.total_count,
        "completed_count": batch.completed_count,
        "failed_count": batch.failed_count,
        "size": batch.size or "1024x1024",
        "style_preset": batch.style_preset,
        "auto_sync_device": bool(batch.auto_sync_device),
        "started_at": batch.started_at,
        "completed_at": batch.completed_at,
        "created_at": batch.created_at,
    }


def _detail(batch: BatchJob) -> BatchDetailOut:
    return BatchDetailOut(**_summary(batch), items=[_item_out(i) for i in batch.items])


def _http_error(exc: FramecastError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, BatchStateError):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, ConfigurationError):
        return HTTPException(status_code=422, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


# ------------------------------------------------------------------
# Endpoints
# ------------------------------------------------------------------


@router.post("/", response_model=BatchDetailOut, status_code=status.HTTP_201_CREATED)
async def create_batch(
    body: BatchCreate,
    user: User = Depends(get_current_user),
    store: JobStore = Depends(get_job_store),
):
    try:
        batch = await batch_service.create_batch(
            store,
            user_id=user.id,
            prompts=body.prompts,
            name=body.name,
            size=body.size,
            style_preset=body.style_preset,
            auto_sync_device=body.auto_sync_device,
            max_size=get_settings().max_batch_size,
        )
    except FramecastError as exc:
        raise _http_error(exc) from exc
    return _detail(batch)


@router.get("/", response_model=list[BatchOut])
async def list_batches(
    user: User = Depends(get_current_user),
    store: JobStore = Depends(get_job_store),
):
    batches = await batch_service.list_user_batches(store, user.id)
    return [BatchOut(**_summary(b)) for b in batches]


@router.get("/{batch_id}", response_model=BatchDetailOut)
async def get_batch(
    batch_id: str,
    user: User = Depends(get_current_user),
    store: JobStore = Depends(get_job_store),
):
    try:
        batch = await batch_service.get_batch_with_items(store, batch_id, user.id)
    except FramecastError as exc:
        raise _http_error(exc) from exc
    return _detail(batch)


@router.get("/{batch_id}/status", response_model=BatchStatusOut)
async def get_batch_status(
    batch_id: str,
    user: User = Depends(get_current_user),
    store: JobStore = Depends(get_job_store),
):
    """Lightweight progress view for polling clients."""
    try:
        batch = await batch_service.get_batch_with_items(store, batch_id, user.id)
    except FramecastError as exc:
        raise _http_error(exc) from exc
    done = batch.completed_count + batch.failed_count
    return BatchStatusOut(
        id=batch.id,
        status=batch.status,
        total=batch.total_count,
        completed=batch.completed_count,
        failed=batch.failed_count,
        progress=round(done / batch.total_count * 100) if batch.total_count else 0,
    )


@router.patch("/{batch_id}", response_model=BatchOut)
async def update_batch(
    batch_id: str,
    body: BatchAction,
    user: User = Depends(get_current_user),
    store: JobStore = Depends(get_job_store),
):
    try:
        batch = await batch_service.cancel_batch(store, batch_id, user.id)
    except FramecastError as exc:
        raise _http_error(exc) from exc
    return BatchOut(**_summary(batch))


@router.delete("/{batch_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_batch(
    batch_id: str,
    user: User = Depends(get_current_user),
    store: JobStore = Depends(get_job_store),
):
    try:
        await batch_service.delete_batch(store, batch_id, user.id)
    except FramecastError as exc:
        raise _http_error(exc) from exc
