"""Pydantic schemas shared across the timeline API."""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field


class ItemKind(str, Enum):
    ACTIVITY = "activity"
    MILESTONE = "milestone"
    CHAT = "chat"


ALL_ITEM_KINDS: Tuple[ItemKind, ...] = (ItemKind.ACTIVITY, ItemKind.MILESTONE, ItemKind.CHAT)

# Ordering among items that share a timestamp.
KIND_RANK = {kind: index for index, kind in enumerate(ALL_ITEM_KINDS)}


class StoreRecord(BaseModel):
    """Row as returned by PostgREST; timestamps stay raw until normalization."""

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")


class ActorProfile(StoreRecord):
    id: str
    first_name: Optional[str] = Field(default=None, alias="firstName")
    last_name: Optional[str] = Field(default=None, alias="lastName")
    avatar_url: Optional[str] = Field(default=None, alias="avatarUrl")
    email: Optional[str] = None


class ActivityRecord(StoreRecord):
    id: str
    baby_id: str = Field(..., alias="babyId")
    user_id: Optional[str] = Field(default=None, alias="userId")
    type: str
    start_time: Optional[str] = Field(default=None, alias="startTime")
    end_time: Optional[str] = Field(default=None, alias="endTime")
    is_scheduled: bool = Field(default=False, alias="isScheduled")
    details: Optional[Dict[str, Any]] = None
    notes: Optional[str] = None
    user: Optional[ActorProfile] = None


class MilestoneRecord(StoreRecord):
    id: str
    baby_id: str = Field(..., alias="babyId")
    title: str
    type: Optional[str] = None
    description: Optional[str] = None
    achieved_date: Optional[str] = Field(default=None, alias="achievedDate")


class ChatRecord(StoreRecord):
    id: str
    baby_id: str = Field(..., alias="babyId")
    title: Optional[str] = None
    created_at: Optional[str] = Field(default=None, alias="createdAt")


class ChatMessageRecord(StoreRecord):
    id: str
    chat_id: str = Field(..., alias="chatId")
    role: Optional[str] = None
    content: str = ""
    user_id: Optional[str] = Field(default=None, alias="userId")
    created_at: Optional[str] = Field(default=None, alias="createdAt")


class _TimelineItemBase(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    timestamp: datetime


class ActivityItem(_TimelineItemBase):
    kind: Literal["activity"] = "activity"
    data: ActivityRecord


class MilestoneItem(_TimelineItemBase):
    kind: Literal["milestone"] = "milestone"
    data: MilestoneRecord


class ChatItem(_TimelineItemBase):
    kind: Literal["chat"] = "chat"
    data: ChatMessageRecord
    chat: ChatRecord


TimelineItem = Annotated[
    Union[ActivityItem, MilestoneItem, ChatItem],
    Field(discriminator="kind"),
]


class TimelineResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    items: List[TimelineItem] = Field(default_factory=list)
    next_cursor: Optional[str] = Field(default=None, alias="nextCursor")


class ActivityFilters(BaseModel):
    model_config = ConfigDict(frozen=True)

    sub_types: Tuple[str, ...] = ()
    actor_ids: Tuple[str, ...] = ()


class TimelineQuery(BaseModel):
    """Normalized, bounded request produced by the validator."""

    model_config = ConfigDict(frozen=True)

    child_id: str
    cursor: Optional[datetime] = None
    limit: int
    item_kinds: Tuple[ItemKind, ...] = ALL_ITEM_KINDS
    activity_filters: ActivityFilters = Field(default_factory=ActivityFilters)
