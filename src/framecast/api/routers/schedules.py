"""Schedules router — CRUD for a user's recurring image generation jobs."""

from __future__ import annotations

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from framecast.api.auth import get_current_user
from framecast.config import get_settings
from framecast.core.clock import TimeZoneClock, ensure_utc
from framecast.core.errors import ConfigurationError
from framecast.core.recurrence import (
    describe_schedule,
    next_run_at,
    normalize_days,
    schedule_fields,
    validate_schedule,
)
from framecast.db.session import get_session
from framecast.models.schedule import ScheduledJob
from framecast.models.user import User

router = APIRouter()
logger = logging.getLogger(__name__)

clock = TimeZoneClock()

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 50


# ------------------------------------------------------------------
# Pydantic schemas
# ------------------------------------------------------------------


class ScheduleCreate(BaseModel):
    prompt: str = Field(max_length=4000)
    size: str = Field(default="1024x1024", max_length=20)
    style_preset: str | None = Field(default=None, max_length=50)
    schedule_type: str = "daily"
    schedule_time: str | None = None
    schedule_days: list[int] | None = None
    scheduled_at: str | None = None
    timezone: str = "UTC"
    is_enabled: bool = True
    auto_sync_device: bool = False


class ScheduleUpdate(BaseModel):
    prompt: str | None = Field(default=None, max_length=4000)
    size: str | None = Field(default=None, max_length=20)
    style_preset: str | None = Field(default=None, max_length=50)
    schedule_type: str | None = None
    schedule_time: str | None = None
    schedule_days: list[int] | None = None
    scheduled_at: str | None = None
    timezone: str | None = None
    is_enabled: bool | None = None
    auto_sync_device: bool | None = None


class ScheduleOut(BaseModel):
    id: str
    user_id: str
    prompt: str
    size: str
    style_preset: str | None
    schedule_type: str
    schedule_time: str | None
    schedule_days: list[int] | None
    # Local wall-clock time in ``timezone``, returned as stored
    scheduled_at: str | None
    timezone: str
    description: str
    is_enabled: bool
    auto_sync_device: bool
    last_run_at: datetime | None
    next_run_at: datetime | None
    run_count: int
    last_error: str | None
    created_at: datetime | None
    updated_at: datetime | None


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int
    has_more: bool


class ScheduleList(BaseModel):
    jobs: list[ScheduleOut]
    pagination: Pagination
    max_jobs_allowed: int


class DebugJob(BaseModel):
    id: str
    prompt: str
    schedule_type: str
    is_enabled: bool
    next_run_at: datetime | None
    timezone: str
    is_due: bool


class ScheduleDebug(BaseModel):
    server_time_utc: datetime
    jobs: list[DebugJob]


def _to_out(job: ScheduledJob) -> ScheduleOut:
    return ScheduleOut(
        id=job.id,
        user_id=job.user_id,
        prompt=job.prompt,
        size=job.size or "1024x1024",
        style_preset=job.style_preset,
        schedule_type=job.schedule_type,
        schedule_time=job.schedule_time,
        schedule_days=job.schedule_days,
        scheduled_at=job.scheduled_at,
        timezone=job.timezone,
        description=describe_schedule(*schedule_fields(job)),
        is_enabled=bool(job.is_enabled),
        auto_sync_device=bool(job.auto_sync_device),
        last_run_at=ensure_utc(job.last_run_at),
        next_run_at=ensure_utc(job.next_run_at),
        run_count=job.run_count or 0,
        last_error=job.last_error,
        created_at=job.created_at,
        updated_at=job.updated_at,
    )


def _validate(values: dict) -> datetime | None:
    """Validate a full set of schedule fields and return its next run instant."""
    now = clock.utcnow()
    try:
        validate_schedule(
            prompt=values["prompt"],
            schedule_type=values["schedule_type"],
            schedule_time=values["schedule_time"],
            schedule_days=values["schedule_days"],
            scheduled_at=values["scheduled_at"],
            timezone=values["timezone"],
            reference_now=now,
        )
        return next_run_at(
            values["schedule_type"],
            values["schedule_time"],
            values["schedule_days"],
            values["scheduled_at"],
            values["timezone"],
            reference_now=now,
        )
    except ConfigurationError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc


async def _get_owned(session: AsyncSession, schedule_id: str, user: User) -> ScheduledJob:
    job = await session.get(ScheduledJob, schedule_id)
    if not job or job.user_id != user.id:
        raise HTTPException(status_code=404, detail="Scheduled job not found")
    return job


# ------------------------------------------------------------------
# Endpoints
# ------------------------------------------------------------------


@router.get("/", response_model=ScheduleList)
async def list_schedules(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    total = (
        await session.scalar(
            select(func.count(ScheduledJob.id)).where(ScheduledJob.user_id == user.id)
        )
        or 0
    )
    result = await session.execute(
        select(ScheduledJob)
        .where(ScheduledJob.user_id == user.id)
        .order_by(ScheduledJob.created_at.desc())
        .limit(limit)
        .offset((page - 1) * limit)
    )
    total_pages = -(-total // limit)
    return ScheduleList(
        jobs=[_to_out(j) for j in result.scalars().all()],
        pagination=Pagination(
            page=page,
            limit=limit,
            total=total,
            total_pages=total_pages,
            has_more=page < total_pages,
        ),
        max_jobs_allowed=get_settings().max_scheduled_jobs_per_user,
    )


@router.post("/", response_model=ScheduleOut, status_code=status.HTTP_201_CREATED)
async def create_schedule(
    body: ScheduleCreate,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    max_jobs = get_settings().max_scheduled_jobs_per_user
    count = await session.scalar(
        select(func.count(ScheduledJob.id)).where(ScheduledJob.user_id == user.id)
    )
    if (count or 0) >= max_jobs:
        raise HTTPException(
            status_code=400, detail=f"Maximum of {max_jobs} scheduled jobs allowed"
        )

    values = body.model_dump()
    upcoming = _validate(values)
    try:
        days = normalize_days(body.schedule_days) if body.schedule_days else None
    except ConfigurationError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    job = ScheduledJob(
        user_id=user.id,
        prompt=body.prompt.strip(),
        size=body.size,
        style_preset=body.style_preset or None,
        schedule_type=body.schedule_type,
        schedule_time=body.schedule_time,
        schedule_days=days,
        scheduled_at=body.scheduled_at,
        timezone=body.timezone,
        is_enabled=body.is_enabled,
        auto_sync_device=body.auto_sync_device,
        next_run_at=upcoming,
        run_count=0,
    )
    session.add(job)
    await session.flush()
    await session.refresh(job)
    logger.info("Scheduled job created id=%s user=%s next=%s", job.id, user.id, upcoming)
    return _to_out(job)


@router.get("/debug", response_model=ScheduleDebug)
async def debug_schedules(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    """Server time and whether each of the user's jobs is currently due."""
    now = clock.utcnow()
    result = await session.execute(
        select(ScheduledJob)
        .where(ScheduledJob.user_id == user.id)
        .order_by(ScheduledJob.next_run_at)
    )
    jobs = [
        DebugJob(
            id=job.id,
            prompt=job.prompt[:50],
            schedule_type=job.schedule_type,
            is_enabled=bool(job.is_enabled),
            next_run_at=ensure_utc(job.next_run_at),
            timezone=job.timezone,
            is_due=bool(
                job.is_enabled and job.next_run_at and ensure_utc(job.next_run_at) <= now
            ),
        )
        for job in result.scalars().all()
    ]
    return ScheduleDebug(server_time_utc=now, jobs=jobs)


@router.get("/{schedule_id}", response_model=ScheduleOut)
async def get_schedule(
    schedule_id: str,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    return _to_out(await _get_owned(session, schedule_id, user))


@router.patch("/{schedule_id}", response_model=ScheduleOut)
async def update_schedule(
    schedule_id: str,
    body: ScheduleUpdate,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    job = await _get_owned(session, schedule_id, user)

    updates = body.model_dump(exclude_unset=True)
    values = {
        "prompt": job.prompt,
        "schedule_type": job.schedule_type,
        "schedule_time": job.schedule_time,
        "schedule_days": job.schedule_days,
        "scheduled_at": job.scheduled_at,
        "timezone": job.timezone,
    }
    values.update({k: v for k, v in updates.items() if k in values})
    upcoming = _validate(values)

    if "prompt" in updates:
        updates["prompt"] = updates["prompt"].strip()
    if updates.get("schedule_days"):
        try:
            updates["schedule_days"] = normalize_days(updates["schedule_days"])
        except ConfigurationError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
    for k, v in updates.items():
        setattr(job, k, v)
    job.next_run_at = upcoming

    await session.flush()
    await session.refresh(job)
    logger.info("Scheduled job updated id=%s user=%s next=%s", job.id, user.id, upcoming)
    return _to_out(job)


@router.delete("/{schedule_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_schedule(
    schedule_id: str,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    job = await _get_owned(session, schedule_id, user)
    await session.delete(job)
    logger.info("Scheduled job deleted id=%s user=%s", schedule_id, user.id)


@router.post("/{schedule_id}/toggle", response_model=ScheduleOut)
async def toggle_schedule(
    schedule_id: str,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    """Flip is_enabled. Re-enabling recomputes next_run_at from now."""
    job = await _get_owned(session, schedule_id, user)
    if job.is_enabled:
        job.is_enabled = False
    else:
        try:
            upcoming = next_run_at(*schedule_fields(job), reference_now=clock.utcnow())
        except ConfigurationError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        if upcoming is None:
            raise HTTPException(status_code=422, detail="Schedule has no future runs")
        job.is_enabled = True
        job.next_run_at = upcoming
    await session.flush()
    await session.refresh(job)
    logger.info("Scheduled job toggled id=%s enabled=%s", job.id, job.is_enabled)
    return _to_out(job)
