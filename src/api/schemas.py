"""Request and response bodies of the HTTP API."""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from models import CategoryAssignment, Column, DataEntryStatus
from services import BulkItemType


class HealthOut(BaseModel):
    status: str = "ok"
    version: str


class ErrorOut(BaseModel):
    error: str
    message: str
    details: Any = None


# Data entry
class CategoryOut(BaseModel):
    """A category as a school sees it: columns, current status and what it may do next."""
    id: UUID
    name: str
    description: Optional[str] = None
    assignment: CategoryAssignment
    deadline: Optional[datetime] = None
    status: DataEntryStatus
    completion_rate: int = 0
    available_actions: List[DataEntryStatus] = []
    columns: List[Column] = []


class SaveEntriesIn(BaseModel):
    """Column id → value."""
    values: Dict[str, Any] = Field(..., min_length=1)


class ProxyEntriesIn(SaveEntriesIn):
    reason: str
    auto_approve: bool = False


class SaveEntriesOut(BaseModel):
    success: bool
    saved_count: int
    message: str


class SectorValueIn(BaseModel):
    value: Any = None


# Transitions
class CommentIn(BaseModel):
    comment: Optional[str] = None


class RejectIn(BaseModel):
    reason: str


class TransitionOut(BaseModel):
    success: bool
    status: Optional[DataEntryStatus] = None
    message: str
    affected: int = 0


# Approvals
class BulkItemIn(BaseModel):
    category_id: UUID
    entity_id: UUID
    type: BulkItemType = BulkItemType.SCHOOL


class BulkApprovalIn(BaseModel):
    action: Literal["approve", "reject"]
    items: List[BulkItemIn] = Field(..., min_length=1)
    comment: Optional[str] = None
    reason: Optional[str] = None


# Notifications
class MarkReadOut(BaseModel):
    updated: int


class NotificationCountOut(BaseModel):
    unread: int


# Columns
class DeleteColumnIn(BaseModel):
    """Must read "DELETE <column name>"."""
    confirmation: str
