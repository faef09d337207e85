"""Pydantic schemas for the subscription management API."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

SubscriptionStatus = Literal["active", "inactive", "pending"]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SubscriptionRecord(CamelModel):
    """Stored state of a hub subscription for one channel."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: int | None = None
    channel_id: str
    topic: str
    callback_url: str
    lease_seconds: int
    expires_at: datetime
    status: SubscriptionStatus = "active"
    created_at: datetime
    updated_at: datetime


class SubscriptionRequest(CamelModel):
    """Inbound payload for creating or updating a subscription.

    `topic` falls back to the channel's feed URL and `callbackUrl` is only
    checked for blankness: the stored callback is always the configured one.
    """

    channel_id: str = ""
    topic: str | None = None
    callback_url: str | None = None
    lease_seconds: int = Field(default=3600, description="Requested lease in seconds")


class StatusRequest(CamelModel):
    status: str = ""


class SubscriptionPendingResponse(CamelModel):
    """Returned when the record was stored but the hub request failed."""

    subscription: SubscriptionRecord
    hub_status: str = "failed"
    message: str


class MessageResponse(CamelModel):
    message: str
