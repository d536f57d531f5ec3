"""
Status transitions for a school's category data.

Validates a requested move against the workflow table in models.status,
applies it to every affected entry and records history, audit and
notifications. Only the entry update is essential: a failing side effect is
logged and the transition stands.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID

from database import DataStore, InfoLineCache
from models import (
    AuditLog,
    Category,
    DataEntry,
    DataEntryStatus,
    School,
    StatusHistoryEntry,
    TransitionCondition,
    UserScope,
    aggregate_status,
    find_transition,
    available_actions,
    utcnow,
)
from models.utils import is_empty_value

from .notifications import NotificationService


logger = logging.getLogger(__name__)


class TransitionCode(str, Enum):
    INVALID_TRANSITION = "INVALID_TRANSITION"
    INSUFFICIENT_ROLE = "INSUFFICIENT_ROLE"
    CONDITIONS_NOT_MET = "CONDITIONS_NOT_MET"
    VALIDATION_ERROR = "VALIDATION_ERROR"


@dataclass
class TransitionContext:
    """Who is moving which school/category, and why."""
    school_id: UUID
    category_id: UUID
    user: UserScope
    comment: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def user_id(self) -> UUID:
        return self.user.user_id


@dataclass
class TransitionResult:
    allowed: bool
    reason: Optional[str] = None
    code: Optional[TransitionCode] = None
    required_conditions: List[TransitionCondition] = field(default_factory=list)


@dataclass
class ServiceResponse:
    success: bool
    status: Optional[DataEntryStatus] = None
    message: str = ""
    error: Optional[str] = None
    code: Optional[str] = None
    affected: int = 0


def history_entry_id(school_id: UUID, category_id: UUID) -> str:
    """Identifier used for category-level history, audit and notification rows."""
    return f"{school_id}-{category_id}"


def status_changes(
    new_status: DataEntryStatus,
    actor_id: Optional[UUID],
    comment: Optional[str] = None,
) -> Dict[str, Any]:
    """Field updates that go with a move to new_status."""
    changes: Dict[str, Any] = {"status": new_status}
    now = utcnow()

    if new_status == DataEntryStatus.APPROVED:
        changes.update(
            approved_by=actor_id,
            approved_at=now,
            approval_comment=comment,
            rejected_by=None,
            rejected_at=None,
            rejection_reason=None,
        )
    elif new_status == DataEntryStatus.REJECTED:
        changes.update(
            rejected_by=actor_id,
            rejected_at=now,
            rejection_reason=comment,
            approved_by=None,
            approved_at=None,
        )
    return changes


def movable_entries(
    entries: List[DataEntry],
    current_status: DataEntryStatus,
    new_status: DataEntryStatus,
) -> List[DataEntry]:
    """
    Entries a category-level move applies to.

    Entries already in the target status are left alone, as are entries whose
    own status has no edge to the target (an approved value is not dragged
    back to pending when the rest of the category is submitted).
    """
    return [
        entry for entry in entries
        if entry.status != new_status
        and (entry.status == current_status or find_transition(entry.status, new_status) is not None)
    ]


class StatusTransitionService:
    """Validates and executes status transitions for a school/category."""

    def __init__(
        self,
        store: DataStore,
        notifications: Optional[NotificationService] = None,
        cache: Optional[InfoLineCache] = None,
    ):
        self.store = store
        self.notifications = notifications
        self.cache = cache

    async def can_transition(
        self,
        current_status: DataEntryStatus,
        new_status: DataEntryStatus,
        context: TransitionContext,
    ) -> TransitionResult:
        """Check whether context.user may move the category from current to new status."""
        current_status = DataEntryStatus(current_status)
        new_status = DataEntryStatus(new_status)

        if current_status == new_status:
            return TransitionResult(allowed=True, reason="No status change")

        transition = find_transition(current_status, new_status)
        if transition is None:
            return TransitionResult(
                allowed=False,
                reason=f"Transition from {current_status.value} to {new_status.value} is not allowed",
                code=TransitionCode.INVALID_TRANSITION,
            )

        try:
            school = await self.store.get_school(context.school_id)
            if school is None:
                return TransitionResult(
                    allowed=False,
                    reason=f"School {context.school_id} not found",
                    code=TransitionCode.VALIDATION_ERROR,
                )

            role = context.user.role_for_school(school)
            if role not in transition.required_roles:
                required = ", ".join(r.value for r in transition.required_roles)
                return TransitionResult(
                    allowed=False,
                    reason=f"Insufficient role. Required: {required}",
                    code=TransitionCode.INSUFFICIENT_ROLE,
                    required_conditions=list(transition.conditions),
                )

            for condition in transition.conditions:
                failure = await self._check_condition(condition, school, context)
                if failure:
                    return TransitionResult(
                        allowed=False,
                        reason=failure,
                        code=TransitionCode.CONDITIONS_NOT_MET,
                        required_conditions=list(transition.conditions),
                    )

        except Exception as e:
            logger.error(f"Error validating transition for {history_entry_id(context.school_id, context.category_id)}: {e}")
            return TransitionResult(
                allowed=False,
                reason=f"Error validating transition: {e}",
                code=TransitionCode.VALIDATION_ERROR,
            )

        return TransitionResult(allowed=True, required_conditions=list(transition.conditions))

    async def _check_condition(
        self,
        condition: TransitionCondition,
        school: School,
        context: TransitionContext,
    ) -> Optional[str]:
        """Return a failure message, or None when the condition holds."""
        if condition == TransitionCondition.REQUIRED_FIELDS_FILLED:
            missing = await self.missing_required_columns(context.school_id, context.category_id)
            if missing:
                return f"Required fields are not filled: {', '.join(missing)}"

        elif condition == TransitionCondition.IS_ENTRY_OWNER:
            if not context.user.owns_school(school.id):
                return "Only the school's own administrator can do this"

        elif condition == TransitionCondition.APPROVAL_PERMISSION:
            if not context.user.can_approve_school(school):
                return "No approval permission for this school"

        elif condition == TransitionCondition.REJECTION_REASON:
            if not context.comment or not context.comment.strip():
                return "Rejection reason is required"

        return None

    async def missing_required_columns(self, school_id: UUID, category_id: UUID) -> List[str]:
        """Names of required columns without a non-empty value."""
        columns = await self.store.list_columns(category_id)
        entries = await self.store.list_entries(school_id=school_id, category_id=category_id)
        filled = {e.column_id for e in entries if not is_empty_value(e.value)}
        return [c.name for c in columns if c.is_required and c.id not in filled]

    async def execute_transition(
        self,
        current_status: DataEntryStatus,
        new_status: DataEntryStatus,
        context: TransitionContext,
        only_status: Optional[DataEntryStatus] = None,
    ) -> ServiceResponse:
        """
        Validate and apply a transition.

        Args:
            current_status: Status the caller believes the category is in
            new_status: Target status
            context: Actor, school, category and comment
            only_status: Restrict the update to entries in this status

        Returns:
            ServiceResponse; success is False when the move was refused or
            the entry update failed
        """
        current_status = DataEntryStatus(current_status)
        new_status = DataEntryStatus(new_status)

        check = await self.can_transition(current_status, new_status, context)
        if not check.allowed:
            return ServiceResponse(
                success=False,
                error=check.reason,
                code=check.code.value if check.code else None,
                message="Status transition not allowed",
            )

        if current_status == new_status:
            return ServiceResponse(success=True, status=new_status, message="Status unchanged")

        entry_key = history_entry_id(context.school_id, context.category_id)
        try:
            entries = await self.store.list_entries(
                school_id=context.school_id,
                category_id=context.category_id,
                status=only_status,
            )
            targets = movable_entries(entries, current_status, new_status)
            changes = status_changes(new_status, context.user_id, context.comment)
            updated = await self.store.update_entries([e.id for e in targets], changes)
        except Exception as e:
            logger.error(f"Error executing status transition for {entry_key}: {e}")
            return ServiceResponse(
                success=False,
                error=str(e) or "Unknown error during status transition",
                message="Failed to change status",
            )

        logger.info(
            f"Status of {entry_key} changed from {current_status.value} to {new_status.value} "
            f"by {context.user_id} ({len(updated)} entries)"
        )

        await self._log_history(entry_key, current_status, new_status, context, len(updated))
        await self._log_audit(entry_key, current_status, new_status, context)
        await self._invalidate(context.school_id)
        await self._notify(current_status, new_status, context)

        return ServiceResponse(
            success=True,
            status=new_status,
            message=f"Status successfully changed from {current_status.value} to {new_status.value}",
            affected=len(updated),
        )

    async def _log_history(
        self,
        entry_key: str,
        old_status: DataEntryStatus,
        new_status: DataEntryStatus,
        context: TransitionContext,
        entry_count: int,
    ) -> None:
        try:
            await self.store.add_status_history(StatusHistoryEntry(
                data_entry_id=entry_key,
                old_status=old_status,
                new_status=new_status,
                comment=context.comment,
                changed_by=context.user_id,
                metadata={
                    "school_id": str(context.school_id),
                    "category_id": str(context.category_id),
                    "entry_count": entry_count,
                    **context.metadata,
                },
            ))
        except Exception as e:
            logger.error(f"Error logging status history for {entry_key}: {e}")

    async def _log_audit(
        self,
        entry_key: str,
        old_status: DataEntryStatus,
        new_status: DataEntryStatus,
        context: TransitionContext,
    ) -> None:
        try:
            await self.store.add_audit_log(AuditLog(
                user_id=context.user_id,
                action="status_transition",
                entity_type="data_entry",
                entity_id=entry_key,
                old_value={"status": old_status.value},
                new_value={"status": new_status.value, "comment": context.comment},
            ))
        except Exception as e:
            logger.error(f"Error writing audit log for {entry_key}: {e}")

    async def _invalidate(self, school_id: UUID) -> None:
        if self.cache is None:
            return
        try:
            await self.cache.invalidate_school(school_id)
        except Exception as e:
            logger.warning(f"Error invalidating cache for school {school_id}: {e}")

    async def _notify(
        self,
        old_status: DataEntryStatus,
        new_status: DataEntryStatus,
        context: TransitionContext,
    ) -> None:
        if self.notifications is None:
            return
        try:
            school = await self.store.get_school(context.school_id)
            category = await self.store.get_category(context.category_id)
            if school is None or category is None:
                return
            await self.notifications.notify_status_change(
                school, category, old_status, new_status,
                actor_id=context.user_id,
                comment=context.comment,
            )
        except Exception as e:
            logger.error(f"Error sending status change notification: {e}")

    async def get_current_status(self, school_id: UUID, category_id: UUID) -> DataEntryStatus:
        """Aggregate status of a school's entries in a category (draft if none)."""
        entries = await self.store.list_entries(school_id=school_id, category_id=category_id)
        return aggregate_status(e.status for e in entries)

    async def get_status_history(
        self, school_id: UUID, category_id: UUID, limit: int = 50
    ) -> List[StatusHistoryEntry]:
        """Transition history of a school/category, newest first."""
        return await self.store.list_status_history(history_entry_id(school_id, category_id), limit=limit)

    async def get_available_transitions(
        self, school: School, category: Category, user: UserScope
    ) -> List[DataEntryStatus]:
        """Statuses the user can move this school/category to right now."""
        role = user.role_for_school(school)
        if role is None:
            return []
        current = await self.get_current_status(school.id, category.id)
        return available_actions(current, role)
