"""
Database models mapping to the İnfoLine Supabase tables.

These Pydantic models map to the existing schema:
- public.regions / public.sectors / public.schools
- public.categories / public.columns
- public.data_entries / public.sector_data_entries
- public.user_roles / public.profiles
- public.notifications / public.notification_templates
- public.user_notification_preferences
- public.status_transition_log / public.audit_logs

Handles JSONB fields and fills defaults for columns that are nullable in the
database so callers never have to special-case missing values.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utcnow() -> datetime:
    """Timezone-aware current time, used for every timestamp we write."""
    return datetime.now(timezone.utc)


class AppRole(str, Enum):
    """Roles stored in public.user_roles.role."""
    SUPERADMIN = "superadmin"
    REGIONADMIN = "regionadmin"
    SECTORADMIN = "sectoradmin"
    SCHOOLADMIN = "schooladmin"


class CategoryAssignment(str, Enum):
    """Who fills in a category."""
    ALL = "all"
    SECTORS = "sectors"
    SCHOOLS = "schools"


class ColumnType(str, Enum):
    """Supported column (form field) types."""
    TEXT = "text"
    TEXTAREA = "textarea"
    NUMBER = "number"
    EMAIL = "email"
    PHONE = "phone"
    URL = "url"
    PASSWORD = "password"
    SELECT = "select"
    CHECKBOX = "checkbox"
    RADIO = "radio"
    DATE = "date"
    FILE = "file"
    TIME = "time"
    DATETIME = "datetime"
    MULTISELECT = "multiselect"


class DataEntryStatus(str, Enum):
    """Review status of a data entry."""
    DRAFT = "draft"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class Region(BaseModel):
    """Maps to public.regions table."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(default_factory=uuid4)
    name: str
    description: Optional[str] = None
    status: str = "active"
    admin_id: Optional[UUID] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: Optional[datetime] = None


class Sector(BaseModel):
    """Maps to public.sectors table."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(default_factory=uuid4)
    name: str
    region_id: UUID
    description: Optional[str] = None
    status: str = "active"
    admin_id: Optional[UUID] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: Optional[datetime] = None


class School(BaseModel):
    """Maps to public.schools table."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(default_factory=uuid4)
    name: str
    region_id: UUID
    sector_id: UUID
    status: str = "active"
    principal_name: Optional[str] = None
    admin_id: Optional[UUID] = None
    student_count: Optional[int] = None
    teacher_count: Optional[int] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: Optional[datetime] = None


class Category(BaseModel):
    """Maps to public.categories table."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(default_factory=uuid4)
    name: str
    description: Optional[str] = None
    assignment: CategoryAssignment = CategoryAssignment.ALL
    deadline: Optional[datetime] = None
    status: str = "active"
    priority: int = 0
    order_index: int = 0
    archived: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: Optional[datetime] = None

    @field_validator("assignment", mode="before")
    @classmethod
    def default_assignment(cls, v):
        """NULL assignment in the database means the category is for everyone."""
        return v or CategoryAssignment.ALL

    @field_validator("priority", "order_index", mode="before")
    @classmethod
    def default_ordering(cls, v):
        return 0 if v is None else v

    @field_validator("archived", mode="before")
    @classmethod
    def default_archived(cls, v):
        return bool(v)

    @property
    def is_active(self) -> bool:
        return self.status == "active" and not self.archived

    @property
    def for_schools(self) -> bool:
        return self.assignment in (CategoryAssignment.ALL, CategoryAssignment.SCHOOLS)

    @property
    def for_sectors(self) -> bool:
        return self.assignment == CategoryAssignment.SECTORS


class ColumnOption(BaseModel):
    """One choice of a select/radio/multiselect column."""
    label: str
    value: str
    description: Optional[str] = None
    disabled: bool = False


class Column(BaseModel):
    """Maps to public.columns table."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(default_factory=uuid4)
    category_id: UUID
    name: str
    type: ColumnType = ColumnType.TEXT
    is_required: bool = False
    placeholder: Optional[str] = None
    help_text: Optional[str] = None
    default_value: Optional[str] = None
    options: List[ColumnOption] = []
    validation: Dict[str, Any] = {}  # JSONB field
    order_index: int = 0
    status: str = "active"
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: Optional[datetime] = None

    @field_validator("is_required", mode="before")
    @classmethod
    def default_required(cls, v):
        return bool(v)

    @field_validator("order_index", mode="before")
    @classmethod
    def default_order(cls, v):
        return 0 if v is None else v

    @field_validator("options", mode="before")
    @classmethod
    def parse_options(cls, v):
        """Options are stored either as [{label, value}] or as plain strings."""
        if not v:
            return []
        if not isinstance(v, list):
            raise ValueError("options must be a list")
        parsed = []
        for option in v:
            if isinstance(option, str):
                parsed.append({"label": option, "value": option})
            else:
                parsed.append(option)
        return parsed

    @field_validator("validation", mode="before")
    @classmethod
    def parse_validation(cls, v):
        if v is None:
            return {}
        if not isinstance(v, dict):
            raise ValueError("validation must be a dictionary")
        return v

    @property
    def option_values(self) -> List[str]:
        return [option.value for option in self.options if not option.disabled]


class DataEntry(BaseModel):
    """Maps to public.data_entries table: one value of one column for one school."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(default_factory=uuid4)
    school_id: UUID
    category_id: UUID
    column_id: UUID
    value: Optional[str] = None
    status: DataEntryStatus = DataEntryStatus.DRAFT
    created_by: Optional[UUID] = None

    approved_by: Optional[UUID] = None
    approved_at: Optional[datetime] = None
    approval_comment: Optional[str] = None
    rejected_by: Optional[UUID] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None

    # Set when a sector/region admin entered the value on the school's behalf
    proxy_created_by: Optional[UUID] = None
    proxy_reason: Optional[str] = None
    proxy_original_entity: Optional[str] = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    deleted_at: Optional[datetime] = None

    @field_validator("status", mode="before")
    @classmethod
    def default_status(cls, v):
        return v or DataEntryStatus.DRAFT

    @property
    def is_proxy(self) -> bool:
        return self.proxy_created_by is not None


class SectorDataEntry(BaseModel):
    """Maps to public.sector_data_entries table: a value entered for a whole sector."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(default_factory=uuid4)
    sector_id: UUID
    category_id: UUID
    column_id: UUID
    value: Optional[str] = None
    status: DataEntryStatus = DataEntryStatus.APPROVED
    created_by: Optional[UUID] = None
    approved_by: Optional[UUID] = None
    approved_at: Optional[datetime] = None
    rejected_by: Optional[UUID] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("status", mode="before")
    @classmethod
    def default_status(cls, v):
        return v or DataEntryStatus.APPROVED


class UserRole(BaseModel):
    """Maps to public.user_roles table."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: UUID
    role: AppRole
    region_id: Optional[UUID] = None
    sector_id: Optional[UUID] = None
    school_id: Optional[UUID] = None
    created_at: datetime = Field(default_factory=utcnow)


class Profile(BaseModel):
    """Maps to public.profiles table."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    full_name: str = ""
    email: Optional[str] = None
    phone: Optional[str] = None
    language: Optional[str] = None
    status: str = "active"


class Notification(BaseModel):
    """Maps to public.notifications table."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: UUID
    type: str
    title: str
    message: Optional[str] = None
    priority: str = "normal"
    related_entity_id: Optional[str] = None
    related_entity_type: Optional[str] = None
    is_read: bool = False
    template_id: Optional[UUID] = None
    template_data: Optional[Dict[str, Any]] = None
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator("is_read", mode="before")
    @classmethod
    def default_is_read(cls, v):
        return bool(v)

    @field_validator("priority", mode="before")
    @classmethod
    def default_priority(cls, v):
        return v or "normal"


class NotificationTemplate(BaseModel):
    """Maps to public.notification_templates table."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(default_factory=uuid4)
    name: str
    title_template: str
    message_template: str
    type: str = "info"
    priority: str = "normal"
    is_active: bool = True
    variables: List[str] = []


class NotificationPreferences(BaseModel):
    """Maps to public.user_notification_preferences table."""
    model_config = ConfigDict(from_attributes=True)

    user_id: UUID
    in_app_enabled: bool = True
    email_enabled: bool = True
    approval_notifications: bool = True
    deadline_notifications: bool = True
    data_entry_notifications: bool = True
    priority_filter: List[str] = []

    @field_validator(
        "in_app_enabled",
        "email_enabled",
        "approval_notifications",
        "deadline_notifications",
        "data_entry_notifications",
        mode="before",
    )
    @classmethod
    def default_enabled(cls, v):
        """NULL flags mean the user never changed the default (enabled)."""
        return True if v is None else v

    @field_validator("priority_filter", mode="before")
    @classmethod
    def default_priority_filter(cls, v):
        return v or []


class StatusHistoryEntry(BaseModel):
    """Maps to public.status_transition_log table."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(default_factory=uuid4)
    data_entry_id: str  # "{school_id}-{category_id}" for category-level transitions
    old_status: DataEntryStatus
    new_status: DataEntryStatus
    comment: Optional[str] = None
    changed_by: Optional[UUID] = None
    changed_at: datetime = Field(default_factory=utcnow)
    metadata: Dict[str, Any] = {}

    @field_validator("metadata", mode="before")
    @classmethod
    def default_metadata(cls, v):
        return v or {}


class AuditLog(BaseModel):
    """Maps to public.audit_logs table."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: Optional[UUID] = None
    action: str
    entity_type: str
    entity_id: Optional[str] = None
    old_value: Optional[Dict[str, Any]] = None
    new_value: Optional[Dict[str, Any]] = None
    proxy_info: Optional[Dict[str, Any]] = None
    created_at: datetime = Field(default_factory=utcnow)
