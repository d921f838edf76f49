from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def _utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class TimeWindow(BaseModel):
    """
    Window of the stream an aggregate was computed over.
    Naive datetimes are taken as UTC.
    """
    model_config = ConfigDict(frozen=True)

    start: datetime
    end: datetime

    @field_validator("start", "end")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        return _utc(value)

    @model_validator(mode="after")
    def _ordered(self) -> "TimeWindow":
        if self.end < self.start:
            raise ValueError("window end is before window start")
        return self

    @property
    def width_seconds(self) -> int:
        return int((self.end - self.start).total_seconds())


PublishStatus = Literal["ok", "config_error", "remote_error"]


class PublishResult(BaseModel):
    """
    Outcome of one publish call.

    Truthy only for ``ok`` so callers written against the plain boolean
    contract keep working.
    """
    model_config = ConfigDict(extra="ignore")

    status: PublishStatus
    reason: Optional[str] = None
    container: Optional[str] = None
    resource_count: int = 0
    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def __bool__(self) -> bool:
        return self.status == "ok"

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    @classmethod
    def success(cls, container: str, resource_count: int) -> "PublishResult":
        return cls(status="ok", container=container, resource_count=resource_count)

    @classmethod
    def config_error(cls, reason: str) -> "PublishResult":
        return cls(status="config_error", reason=reason)

    @classmethod
    def remote_error(cls, cause: BaseException, container: Optional[str] = None) -> "PublishResult":
        return cls(status="remote_error", reason=f"{type(cause).__name__}: {cause}", container=container)


SyncStatus = Literal["patched", "no_inbox", "failed"]


class InboxSyncResult(BaseModel):
    model_config = ConfigDict(extra="ignore")

    status: SyncStatus
    container: str
    inbox: Optional[str] = None
    candidates: int = 0
    detail: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status != "failed"


class PublishRequest(BaseModel):
    """Body of ``POST /ldes/publish``: Turtle documents plus the window they cover."""
    model_config = ConfigDict(extra="ignore")

    resources: list[str] = Field(default_factory=list, description="Turtle serialized resources")
    start: datetime
    end: datetime
