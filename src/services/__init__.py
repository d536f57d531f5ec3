"""
Workflow services for İnfoLine.

This package contains:
- Status transitions and the approval workflow
- School, proxy and sector data entry
- Completion statistics, dashboards and reports
- Column deletion
- Notifications and deadline monitoring
"""

from .errors import (
    AuthenticationError,
    InfoLineError,
    NotFoundError,
    PermissionDeniedError,
    TransitionError,
    ValidationError,
)
from .access import (
    get_accessible_school,
    get_manageable_sector,
    list_accessible_schools,
    load_user_scope,
)
from .notifications import (
    NotificationRequest,
    NotificationService,
    load_default_templates,
    render_template,
    should_notify,
)
from .transitions import (
    ServiceResponse,
    StatusTransitionService,
    TransitionCode,
    TransitionContext,
    TransitionResult,
    history_entry_id,
)
from .completion import (
    AggregateCompletion,
    CategoryCompletion,
    CompletionService,
    CompletionStats,
    SchoolCompletion,
    calculate_completion,
)
from .data_entry import CategoryWithColumns, DataEntryService, SaveResult
from .approval import (
    ApprovalService,
    BulkItem,
    BulkItemResult,
    BulkItemType,
    BulkOperationSummary,
    PendingApproval,
)
from .deadlines import DeadlineCheckResult, DeadlineChecker, days_until
from .statistics import (
    DailyActivity,
    DashboardSummary,
    EntryStats,
    FormsByStatus,
    RegionPerformance,
    SchoolPerformance,
    SectorPerformance,
    Statistics,
    StatisticsFilters,
    StatisticsService,
)
from .reports import ReportCell, ReportService, SchoolColumnReport, SchoolColumnRow
from .columns import ColumnDeletion, ColumnService, confirmation_phrase
from .container import Services, build_services

__all__ = [
    # Errors
    "AuthenticationError",
    "InfoLineError",
    "NotFoundError",
    "PermissionDeniedError",
    "TransitionError",
    "ValidationError",

    # Access
    "get_accessible_school",
    "get_manageable_sector",
    "list_accessible_schools",
    "load_user_scope",

    # Notifications
    "NotificationRequest",
    "NotificationService",
    "load_default_templates",
    "render_template",
    "should_notify",

    # Transitions
    "ServiceResponse",
    "StatusTransitionService",
    "TransitionCode",
    "TransitionContext",
    "TransitionResult",
    "history_entry_id",

    # Completion
    "AggregateCompletion",
    "CategoryCompletion",
    "CompletionService",
    "CompletionStats",
    "SchoolCompletion",
    "calculate_completion",

    # Data entry and approval
    "CategoryWithColumns",
    "DataEntryService",
    "SaveResult",
    "ApprovalService",
    "BulkItem",
    "BulkItemResult",
    "BulkItemType",
    "BulkOperationSummary",
    "PendingApproval",

    # Deadlines
    "DeadlineCheckResult",
    "DeadlineChecker",
    "days_until",

    # Statistics, reports and columns
    "DailyActivity",
    "DashboardSummary",
    "EntryStats",
    "FormsByStatus",
    "RegionPerformance",
    "SchoolPerformance",
    "SectorPerformance",
    "Statistics",
    "StatisticsFilters",
    "StatisticsService",
    "ReportCell",
    "ReportService",
    "SchoolColumnReport",
    "SchoolColumnRow",
    "ColumnDeletion",
    "ColumnService",
    "confirmation_phrase",

    # Wiring
    "Services",
    "build_services",
]
