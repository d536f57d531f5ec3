"""
Approval and rejection of submitted data.

Works at three granularities: a whole school/category, individual entries,
and batches of school or sector categories. Batch operations process each
item on its own and report per-item results; one failure never stops the
rest of the batch.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Tuple
from uuid import UUID

from database import DataStore, InfoLineCache
from models import (
    AuditLog,
    DataEntryStatus,
    School,
    UserScope,
)

from .access import get_category_or_404, get_school_or_404, list_accessible_schools
from .completion import CompletionService
from .errors import PermissionDeniedError, ValidationError
from .notifications import NotificationService
from .transitions import (
    ServiceResponse,
    StatusTransitionService,
    TransitionContext,
    status_changes,
)


logger = logging.getLogger(__name__)


class BulkItemType(str, Enum):
    SCHOOL = "school"
    SECTOR = "sector"


@dataclass
class BulkItem:
    """One school or sector category in a batch operation."""
    category_id: UUID
    entity_id: UUID
    type: BulkItemType = BulkItemType.SCHOOL


@dataclass
class BulkItemResult:
    entity_id: UUID
    category_id: Optional[UUID]
    success: bool
    affected: int = 0
    error: Optional[str] = None


@dataclass
class BulkOperationSummary:
    total: int = 0
    successful: int = 0
    failed: int = 0
    results: List[BulkItemResult] = field(default_factory=list)

    def add(self, result: BulkItemResult) -> None:
        self.total += 1
        if result.success:
            self.successful += 1
        else:
            self.failed += 1
        self.results.append(result)


@dataclass
class PendingApproval:
    """A school/category waiting for review."""
    school_id: UUID
    school_name: str
    sector_id: UUID
    category_id: UUID
    category_name: str
    entry_count: int
    submitted_at: datetime
    completion_rate: int = 0


class ApprovalService:
    """Approve and reject data within the actor's scope."""

    def __init__(
        self,
        store: DataStore,
        transitions: StatusTransitionService,
        completion: Optional[CompletionService] = None,
        notifications: Optional[NotificationService] = None,
        cache: Optional[InfoLineCache] = None,
    ):
        self.store = store
        self.transitions = transitions
        self.completion = completion or CompletionService(store, cache)
        self.notifications = notifications
        self.cache = cache

    # School/category level
    async def approve(
        self,
        actor: UserScope,
        school_id: UUID,
        category_id: UUID,
        comment: Optional[str] = None,
    ) -> ServiceResponse:
        await get_school_or_404(self.store, school_id)
        await get_category_or_404(self.store, category_id)

        current = await self.transitions.get_current_status(school_id, category_id)
        context = TransitionContext(school_id=school_id, category_id=category_id, user=actor, comment=comment)
        return await self.transitions.execute_transition(current, DataEntryStatus.APPROVED, context)

    async def reject(self, actor: UserScope, school_id: UUID, category_id: UUID, reason: str) -> ServiceResponse:
        if not reason or not reason.strip():
            raise ValidationError("Rejection reason is required")

        await get_school_or_404(self.store, school_id)
        await get_category_or_404(self.store, category_id)

        current = await self.transitions.get_current_status(school_id, category_id)
        context = TransitionContext(school_id=school_id, category_id=category_id, user=actor, comment=reason)
        return await self.transitions.execute_transition(current, DataEntryStatus.REJECTED, context)

    # Entry level
    async def approve_entries(
        self, actor: UserScope, entry_ids: List[UUID], comment: Optional[str] = None
    ) -> BulkOperationSummary:
        return await self._review_entries(actor, entry_ids, DataEntryStatus.APPROVED, comment)

    async def reject_entries(self, actor: UserScope, entry_ids: List[UUID], reason: str) -> BulkOperationSummary:
        if not reason or not reason.strip():
            raise ValidationError("Rejection reason is required")
        return await self._review_entries(actor, entry_ids, DataEntryStatus.REJECTED, reason)

    async def _review_entries(
        self,
        actor: UserScope,
        entry_ids: List[UUID],
        new_status: DataEntryStatus,
        comment: Optional[str],
    ) -> BulkOperationSummary:
        summary = BulkOperationSummary()
        schools: Dict[UUID, Optional[School]] = {}
        touched: Dict[Tuple[UUID, UUID], int] = {}

        for entry_id in entry_ids:
            entry = await self.store.get_entry(entry_id)
            if entry is None:
                summary.add(BulkItemResult(entry_id, None, False, error="Entry not found"))
                continue

            if entry.school_id not in schools:
                schools[entry.school_id] = await self.store.get_school(entry.school_id)
            school = schools[entry.school_id]

            if school is None or not actor.can_approve_school(school):
                summary.add(BulkItemResult(entry_id, entry.category_id, False, error="No approval permission"))
                continue

            if entry.status != DataEntryStatus.PENDING:
                summary.add(BulkItemResult(
                    entry_id, entry.category_id, False,
                    error=f"Entry is {entry.status.value}, not pending",
                ))
                continue

            try:
                await self.store.update_entries([entry.id], status_changes(new_status, actor.user_id, comment))
            except Exception as e:
                logger.error(f"Error reviewing entry {entry_id}: {e}")
                summary.add(BulkItemResult(entry_id, entry.category_id, False, error=str(e)))
                continue

            summary.add(BulkItemResult(entry_id, entry.category_id, True, affected=1))
            key = (entry.school_id, entry.category_id)
            touched[key] = touched.get(key, 0) + 1

        for (school_id, category_id), count in touched.items():
            await self._after_review(actor, schools[school_id], category_id, new_status, comment, count)

        logger.info(
            f"Entry review ({new_status.value}) by {actor.user_id}: "
            f"{summary.successful} succeeded, {summary.failed} failed"
        )
        return summary

    async def _after_review(
        self,
        actor: UserScope,
        school: School,
        category_id: UUID,
        new_status: DataEntryStatus,
        comment: Optional[str],
        count: int,
    ) -> None:
        action = "approve_entries" if new_status == DataEntryStatus.APPROVED else "reject_entries"
        try:
            await self.store.add_audit_log(AuditLog(
                user_id=actor.user_id,
                action=action,
                entity_type="category",
                entity_id=str(category_id),
                old_value={"status": DataEntryStatus.PENDING.value},
                new_value={"status": new_status.value, "school_id": str(school.id), "entry_count": count, "comment": comment},
            ))
        except Exception as e:
            logger.error(f"Error writing audit log for {action}: {e}")

        if self.cache is not None:
            await self.cache.invalidate_school(school.id)

        if self.notifications is not None:
            try:
                category = await self.store.get_category(category_id)
                if category is not None:
                    await self.notifications.notify_status_change(
                        school, category, DataEntryStatus.PENDING, new_status,
                        actor_id=actor.user_id, comment=comment,
                    )
            except Exception as e:
                logger.error(f"Error sending review notification: {e}")

    # Batches
    async def bulk_approve(
        self, actor: UserScope, items: List[BulkItem], comment: Optional[str] = None
    ) -> BulkOperationSummary:
        return await self._bulk(actor, items, DataEntryStatus.APPROVED, comment)

    async def bulk_reject(self, actor: UserScope, items: List[BulkItem], reason: str) -> BulkOperationSummary:
        if not reason or not reason.strip():
            raise ValidationError("Rejection reason is required")
        return await self._bulk(actor, items, DataEntryStatus.REJECTED, reason)

    async def _bulk(
        self,
        actor: UserScope,
        items: List[BulkItem],
        new_status: DataEntryStatus,
        comment: Optional[str],
    ) -> BulkOperationSummary:
        if not actor.is_approver:
            raise PermissionDeniedError("Only sector, region and super administrators can review data")

        summary = BulkOperationSummary()
        for item in items:
            try:
                if BulkItemType(item.type) == BulkItemType.SECTOR:
                    result = await self._bulk_sector_item(actor, item, new_status, comment)
                else:
                    result = await self._bulk_school_item(actor, item, new_status, comment)
            except Exception as e:
                logger.error(f"Bulk {new_status.value} failed for {item.type} {item.entity_id}: {e}")
                result = BulkItemResult(item.entity_id, item.category_id, False, error=str(e))
            summary.add(result)

        logger.info(
            f"Bulk {new_status.value} by {actor.user_id}: "
            f"{summary.successful}/{summary.total} succeeded"
        )
        return summary

    async def _bulk_school_item(
        self,
        actor: UserScope,
        item: BulkItem,
        new_status: DataEntryStatus,
        comment: Optional[str],
    ) -> BulkItemResult:
        pending = await self.store.list_entries(
            school_id=item.entity_id,
            category_id=item.category_id,
            status=DataEntryStatus.PENDING,
        )
        if not pending:
            return BulkItemResult(item.entity_id, item.category_id, False, error="No pending entries")

        context = TransitionContext(
            school_id=item.entity_id,
            category_id=item.category_id,
            user=actor,
            comment=comment,
            metadata={"bulk": True},
        )
        response = await self.transitions.execute_transition(
            DataEntryStatus.PENDING, new_status, context, only_status=DataEntryStatus.PENDING
        )
        return BulkItemResult(
            item.entity_id,
            item.category_id,
            response.success,
            affected=response.affected,
            error=response.error,
        )

    async def _bulk_sector_item(
        self,
        actor: UserScope,
        item: BulkItem,
        new_status: DataEntryStatus,
        comment: Optional[str],
    ) -> BulkItemResult:
        sector = await self.store.get_sector(item.entity_id)
        if sector is None:
            return BulkItemResult(item.entity_id, item.category_id, False, error="Sector not found")
        if not actor.can_manage_sector(sector.id, sector.region_id):
            return BulkItemResult(item.entity_id, item.category_id, False, error="No approval permission")

        pending = await self.store.list_sector_entries(
            sector_id=sector.id,
            category_id=item.category_id,
            status=DataEntryStatus.PENDING,
        )
        if not pending:
            return BulkItemResult(item.entity_id, item.category_id, False, error="No pending entries")

        changes = status_changes(new_status, actor.user_id, comment)
        changes.pop("approval_comment", None)
        updated = await self.store.update_sector_entries([e.id for e in pending], changes)
        return BulkItemResult(item.entity_id, item.category_id, True, affected=len(updated))

    # Review queue
    async def _approvable_schools(self, actor: UserScope, sector_id: Optional[UUID] = None) -> List[School]:
        schools = await list_accessible_schools(self.store, actor, sector_id=sector_id)
        return [s for s in schools if actor.can_approve_school(s)]

    async def get_pending_approvals(
        self,
        actor: UserScope,
        category_id: Optional[UUID] = None,
        sector_id: Optional[UUID] = None,
    ) -> List[PendingApproval]:
        """School/categories with pending entries the actor can review, oldest first."""
        if not actor.is_approver:
            return []

        schools = {s.id: s for s in await self._approvable_schools(actor, sector_id)}
        if not schools:
            return []

        entries = await self.store.list_entries(
            status=DataEntryStatus.PENDING,
            category_id=category_id,
            school_ids=list(schools),
        )

        groups: Dict[Tuple[UUID, UUID], List] = {}
        for entry in entries:
            groups.setdefault((entry.school_id, entry.category_id), []).append(entry)

        categories = {}
        approvals = []
        for (school_id, group_category_id), group in groups.items():
            if group_category_id not in categories:
                categories[group_category_id] = await self.store.get_category(group_category_id)
            category = categories[group_category_id]
            if category is None:
                continue

            school = schools[school_id]
            stats = await self.completion.category_completion(school_id, group_category_id)
            approvals.append(PendingApproval(
                school_id=school_id,
                school_name=school.name,
                sector_id=school.sector_id,
                category_id=group_category_id,
                category_name=category.name,
                entry_count=len(group),
                submitted_at=min(e.updated_at for e in group),
                completion_rate=stats.completion_rate,
            ))

        approvals.sort(key=lambda a: a.submitted_at)
        return approvals
