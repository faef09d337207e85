"""Queued notification payload."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class Notification(BaseModel):
    """A validated video notification travelling through the queue."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    video_id: str
    title: str
    channel_id: str | None = None
    channel_name: str | None = None
    published: str | None = None
    updated: str | None = None
    received_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    status: str = "pending"

    @field_validator("video_id", "title")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("must not be blank")
        return value

    def to_message(self) -> bytes:
        return self.model_dump_json(by_alias=True).encode()

    @classmethod
    def from_message(cls, body: bytes | str) -> Notification:
        return cls.model_validate_json(body)
