"""
Deadline monitoring for categories.

Run periodically (CLI `check-deadlines` or POST /api/deadlines/check). Sends
3-day and 1-day warnings, at most once per category per day, and when a
deadline has passed notifies recipients and approves whatever is still
pending.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, time, timezone
from typing import Dict, List, Optional
from uuid import UUID

from database import DataStore, InfoLineCache
from models import (
    AppRole,
    AuditLog,
    Category,
    CategoryAssignment,
    DataEntryStatus,
    StatusHistoryEntry,
    utcnow,
)

from .notifications import KIND_DEADLINE, NotificationRequest, NotificationService
from .transitions import history_entry_id


logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400

# audit action marking a category deadline as handled
EXPIRY_ACTION = "deadline_expired"

WARNING_TEMPLATES = {
    3: "deadline_warning_3_days",
    1: "deadline_warning_1_day",
}


@dataclass
class DeadlineCheckResult:
    processed: int = 0
    warnings_3_days: int = 0
    warnings_1_day: int = 0
    expired: int = 0
    auto_approved: int = 0
    errors: List[str] = field(default_factory=list)


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def days_until(deadline: datetime, now: datetime) -> int:
    """Whole days left, rounded up; 0 or less once the deadline has passed."""
    remaining = (_aware(deadline) - _aware(now)).total_seconds()
    return math.ceil(remaining / SECONDS_PER_DAY)


class DeadlineChecker:
    """Checks category deadlines and acts on them."""

    def __init__(
        self,
        store: DataStore,
        notifications: NotificationService,
        cache: Optional[InfoLineCache] = None,
        frontend_url: str = "https://infoline.edu.az",
    ):
        self.store = store
        self.notifications = notifications
        self.cache = cache
        self.frontend_url = frontend_url.rstrip("/")

    async def run(self, now: Optional[datetime] = None) -> DeadlineCheckResult:
        now = _aware(now or utcnow())
        result = DeadlineCheckResult()

        try:
            categories = [c for c in await self.store.list_categories() if c.deadline is not None]
        except Exception as e:
            logger.error(f"Error fetching categories for deadline check: {e}")
            result.errors.append(f"Categories fetch error: {e}")
            return result

        for category in categories:
            result.processed += 1
            try:
                days_left = days_until(category.deadline, now)
                if days_left in WARNING_TEMPLATES:
                    if await self._send_warning(category, days_left, now, result):
                        if days_left == 3:
                            result.warnings_3_days += 1
                        else:
                            result.warnings_1_day += 1
                elif days_left <= 0:
                    await self._handle_expired(category, now, result)
            except Exception as e:
                logger.error(f"Error processing category {category.name}: {e}")
                result.errors.append(f"Error processing category {category.name}: {e}")

        logger.info(
            f"Deadline check completed. Processed: {result.processed}, "
            f"3-day warnings: {result.warnings_3_days}, 1-day warnings: {result.warnings_1_day}, "
            f"expired: {result.expired}, auto-approved: {result.auto_approved}, errors: {len(result.errors)}"
        )
        return result

    async def get_recipients(self, category: Category) -> List[UUID]:
        """School admins for school categories, sector and region admins for sector ones."""
        if category.assignment == CategoryAssignment.SECTORS:
            roles = await self.store.list_user_roles(role=AppRole.SECTORADMIN)
            roles += await self.store.list_user_roles(role=AppRole.REGIONADMIN)
        else:
            roles = await self.store.list_user_roles(role=AppRole.SCHOOLADMIN)

        recipients: List[UUID] = []
        for row in roles:
            if row.user_id not in recipients:
                recipients.append(row.user_id)
        return recipients

    def _template_data(self, category: Category) -> Dict[str, object]:
        return {
            "category_id": str(category.id),
            "category_name": category.name,
            "deadline_date": _aware(category.deadline).strftime("%d.%m.%Y"),
            "data_entry_url": f"{self.frontend_url}/data-entry/{category.id}",
        }

    async def _personalize(self, user_id: UUID) -> Dict[str, object]:
        profile = await self.store.get_profile(user_id)
        if profile is None:
            return {}
        return {"full_name": profile.full_name, "email": profile.email}

    async def _send_warning(
        self,
        category: Category,
        days_left: int,
        now: datetime,
        result: DeadlineCheckResult,
    ) -> bool:
        start_of_day = datetime.combine(now.astimezone(timezone.utc).date(), time.min, tzinfo=timezone.utc)
        if await self.store.notification_exists(str(category.id), "warning", start_of_day):
            logger.debug(f"Warning already sent today for category {category.name}")
            return False

        recipients = await self.get_recipients(category)
        if not recipients:
            result.errors.append(f"No recipients found for category {category.name}")
            return False

        template_name = WARNING_TEMPLATES[days_left]
        template = await self.notifications.get_template(template_name)
        if template is None:
            result.errors.append(f"Template not found: {template_name}")
            return False

        data = self._template_data(category)
        data["days_left"] = days_left
        await self.notifications.notify_users(
            recipients,
            NotificationRequest(
                type="warning",
                title=template.title_template,
                priority=template.priority,
                related_entity_id=str(category.id),
                related_entity_type="category",
                kind=KIND_DEADLINE,
                template=template,
                template_data=data,
            ),
            personalize=self._personalize,
        )
        logger.info(f"Sent {days_left}-day deadline warning for category {category.name} to {len(recipients)} recipients")
        return True

    async def _handle_expired(self, category: Category, now: datetime, result: DeadlineCheckResult) -> None:
        deadline = _aware(category.deadline)
        if await self.store.audit_log_exists(str(category.id), EXPIRY_ACTION, deadline):
            logger.debug(f"Expiration already handled for category {category.name}")
            return

        recipients = await self.get_recipients(category)
        template = await self.notifications.get_template("deadline_expired")
        if recipients and template is not None:
            await self.notifications.notify_users(
                recipients,
                NotificationRequest(
                    type="error",
                    title=template.title_template,
                    priority=template.priority,
                    related_entity_id=str(category.id),
                    related_entity_type="category",
                    kind=KIND_DEADLINE,
                    template=template,
                    template_data=self._template_data(category),
                ),
                personalize=self._personalize,
            )
        else:
            logger.warning(f"No expiry notification sent for category {category.name}")

        approved = await self.auto_approve_pending(category, now)
        await self.store.add_audit_log(AuditLog(
            action=EXPIRY_ACTION,
            entity_type="category",
            entity_id=str(category.id),
            new_value={"deadline": deadline.isoformat(), "auto_approved": approved},
            created_at=now,
        ))

        result.expired += 1
        result.auto_approved += approved
        logger.info(f"Handled expired deadline for category {category.name}")

    async def auto_approve_pending(self, category: Category, now: Optional[datetime] = None) -> int:
        """System-approve every pending school entry of a category."""
        pending = await self.store.list_entries(category_id=category.id, status=DataEntryStatus.PENDING)
        if not pending:
            return 0

        comment = "Automatically approved after the deadline"
        updated = await self.store.update_entries([e.id for e in pending], {
            "status": DataEntryStatus.APPROVED,
            "approved_by": None,
            "approved_at": now or utcnow(),
            "approval_comment": comment,
        })

        per_school: Dict[UUID, int] = {}
        for entry in updated:
            per_school[entry.school_id] = per_school.get(entry.school_id, 0) + 1

        for school_id, count in per_school.items():
            try:
                await self.store.add_status_history(StatusHistoryEntry(
                    data_entry_id=history_entry_id(school_id, category.id),
                    old_status=DataEntryStatus.PENDING,
                    new_status=DataEntryStatus.APPROVED,
                    comment=comment,
                    changed_by=None,
                    metadata={"reason": "deadline_expired", "entry_count": count},
                ))
            except Exception as e:
                logger.error(f"Error logging auto-approval history for school {school_id}: {e}")
            if self.cache is not None:
                await self.cache.invalidate_school(school_id)

        logger.info(f"Auto-approved {len(updated)} pending entries for category {category.id}")
        return len(updated)
