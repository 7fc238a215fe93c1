"""Tests for model __repr__ methods, enums and table metadata."""

from __future__ import annotations

import os

os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("DB_PASSWORD", "test-password")


def test_new_uuid_returns_string():
    from framecast.models.base import new_uuid

    result = new_uuid()
    assert isinstance(result, str)
    assert len(result) == 36
    assert result != new_uuid()


def test_every_table_uses_client_side_uuid_key():
    import framecast.models  # noqa: F401
    from framecast.db.session import Base
    from framecast.models.base import UUID_LENGTH

    for table in Base.metadata.sorted_tables:
        (pk,) = table.primary_key.columns
        assert pk.name == "id"
        assert pk.type.length == UUID_LENGTH
        assert pk.default is not None and pk.default.is_callable, table.name


def test_model_reprs():
    from framecast.models import (
        BatchJob,
        BatchJobItem,
        BatchStatus,
        GeneratedImage,
        ScheduledJob,
        User,
        UserDevice,
    )

    assert repr(User(username="ada")) == "<User 'ada'>"
    assert "weekly" in repr(ScheduledJob(id="j-1", schedule_type="weekly"))
    assert "pending" in repr(BatchJob(id="b-1", status=BatchStatus.PENDING))
    assert "i-1" in repr(BatchJobItem(id="i-1", status="failed"))
    assert "kitchen" in repr(UserDevice(id="d-1", name="kitchen"))
    assert "scheduled" in repr(GeneratedImage(id="g-1", source="scheduled"))


def test_status_enums_compare_as_strings():
    from framecast.models import BatchItemStatus, BatchStatus

    assert BatchStatus.CANCELLED == "cancelled"
    assert {s.value for s in BatchItemStatus} == {"pending", "processing", "completed", "failed"}


def test_metadata_registers_all_tables():
    from framecast.db.session import Base

    assert {
        "users",
        "user_devices",
        "generated_images",
        "scheduled_jobs",
        "batch_jobs",
        "batch_job_items",
        "revoked_tokens",
        "refresh_tokens",
    } <= set(Base.metadata.tables)
