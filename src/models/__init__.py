"""
Core data models for İnfoLine.

This package contains:
- Database models mapping to Supabase tables
- Status workflow rules
- Permission and role models
"""

from .database import (
    AppRole,
    AuditLog,
    Category,
    CategoryAssignment,
    Column,
    ColumnOption,
    ColumnType,
    DataEntry,
    DataEntryStatus,
    Notification,
    NotificationPreferences,
    NotificationTemplate,
    Profile,
    Region,
    School,
    Sector,
    SectorDataEntry,
    StatusHistoryEntry,
    UserRole,
    utcnow,
)
from .status import (
    APPROVER_ROLES,
    STATUS_TRANSITIONS,
    StatusTransition,
    TransitionCondition,
    aggregate_status,
    can_edit_with_status,
    find_transition,
    available_actions,
)
from .permissions import PermissionScope, UserScope
from . import utils

__all__ = [
    # Database models
    "AppRole",
    "AuditLog",
    "Category",
    "CategoryAssignment",
    "Column",
    "ColumnOption",
    "ColumnType",
    "DataEntry",
    "DataEntryStatus",
    "Notification",
    "NotificationPreferences",
    "NotificationTemplate",
    "Profile",
    "Region",
    "School",
    "Sector",
    "SectorDataEntry",
    "StatusHistoryEntry",
    "UserRole",
    "utcnow",

    # Status workflow
    "APPROVER_ROLES",
    "STATUS_TRANSITIONS",
    "StatusTransition",
    "TransitionCondition",
    "aggregate_status",
    "can_edit_with_status",
    "find_transition",
    "available_actions",

    # Permission models
    "PermissionScope",
    "UserScope",

    # Utilities
    "utils"
]
