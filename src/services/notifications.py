"""
Notification fan-out, templates and the user inbox.

Notifications are created for status transitions (approvers on submission,
school admins on approval/rejection) and by the deadline checker. Each
recipient's preferences decide whether a notification is stored; an optional
e-mail hook receives notifications for users with e-mail enabled.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional
from uuid import UUID

import yaml

from database import DataStore
from models import (
    AppRole,
    Category,
    DataEntryStatus,
    Notification,
    NotificationPreferences,
    NotificationTemplate,
    School,
    utcnow,
)


logger = logging.getLogger(__name__)

DEFAULT_TEMPLATES_PATH = Path(__file__).parent / "templates.yaml"

TEMPLATE_VAR_RE = re.compile(r"\{\{(\w+)\}\}")

# Preference groups a notification can belong to
KIND_APPROVAL = "approval"
KIND_DEADLINE = "deadline"
KIND_DATA_ENTRY = "data_entry"

STATUS_TITLES = {
    DataEntryStatus.PENDING: "Submitted for approval",
    DataEntryStatus.APPROVED: "Data approved",
    DataEntryStatus.REJECTED: "Data rejected",
    DataEntryStatus.DRAFT: "Data returned to draft",
}

STATUS_PRIORITIES = {
    DataEntryStatus.PENDING: "medium",
    DataEntryStatus.APPROVED: "normal",
    DataEntryStatus.REJECTED: "high",
    DataEntryStatus.DRAFT: "normal",
}

STATUS_TEMPLATES = {
    DataEntryStatus.PENDING: "data_submitted",
    DataEntryStatus.APPROVED: "data_approved",
    DataEntryStatus.REJECTED: "data_rejected",
}

EmailHook = Callable[[Notification], Awaitable[None]]


def render_template(template: str, data: Dict[str, Any]) -> str:
    """Substitute {{name}} placeholders; unknown names stay in the text."""
    def replace(match: "re.Match") -> str:
        key = match.group(1)
        return str(data[key]) if data.get(key) is not None else match.group(0)

    return TEMPLATE_VAR_RE.sub(replace, template)


def load_default_templates(path: Path = DEFAULT_TEMPLATES_PATH) -> Dict[str, NotificationTemplate]:
    """Load the bundled templates keyed by name."""
    with open(path, 'r', encoding='utf-8') as f:
        data = yaml.safe_load(f) or {}

    return {
        name: NotificationTemplate(name=name, **fields)
        for name, fields in data.items()
    }


def should_notify(
    preferences: Optional[NotificationPreferences],
    kind: Optional[str],
    priority: str,
) -> bool:
    """Apply a user's in-app preferences; missing preferences mean everything is on."""
    if preferences is None:
        return True
    if not preferences.in_app_enabled:
        return False
    if kind == KIND_APPROVAL and not preferences.approval_notifications:
        return False
    if kind == KIND_DEADLINE and not preferences.deadline_notifications:
        return False
    if kind == KIND_DATA_ENTRY and not preferences.data_entry_notifications:
        return False
    if preferences.priority_filter and priority not in preferences.priority_filter:
        return False
    return True


@dataclass
class NotificationRequest:
    """A notification to fan out to several users."""
    type: str
    title: str
    message: Optional[str] = None
    priority: str = "normal"
    related_entity_id: Optional[str] = None
    related_entity_type: Optional[str] = None
    kind: Optional[str] = None
    template: Optional[NotificationTemplate] = None
    template_data: Dict[str, Any] = field(default_factory=dict)


class NotificationService:
    """Creates notifications and serves the per-user inbox."""

    def __init__(
        self,
        store: DataStore,
        retention_days: int = 90,
        email_hook: Optional[EmailHook] = None,
        default_templates: Optional[Dict[str, NotificationTemplate]] = None,
    ):
        self.store = store
        self.retention_days = retention_days
        self.email_hook = email_hook
        self._default_templates = default_templates

    @property
    def default_templates(self) -> Dict[str, NotificationTemplate]:
        if self._default_templates is None:
            self._default_templates = load_default_templates()
        return self._default_templates

    async def get_template(self, name: str) -> Optional[NotificationTemplate]:
        """Active database template, falling back to the bundled default."""
        template = await self.store.get_notification_template(name)
        if template is not None:
            return template
        return self.default_templates.get(name)

    async def notify_users(
        self,
        user_ids: Iterable[UUID],
        request: NotificationRequest,
        personalize: Optional[Callable[[UUID], Awaitable[Dict[str, Any]]]] = None,
    ) -> List[Notification]:
        """
        Create one notification per distinct user, honouring preferences.

        Args:
            user_ids: Recipients; duplicates are dropped
            request: What to send
            personalize: Optional coroutine returning extra template data per user

        Returns:
            The notifications that were stored
        """
        notifications: List[Notification] = []
        email_queue: List[Notification] = []
        seen = set()

        for user_id in user_ids:
            if user_id in seen:
                continue
            seen.add(user_id)

            preferences = await self.store.get_notification_preferences(user_id)
            if not should_notify(preferences, request.kind, request.priority):
                logger.debug(f"Skipping {request.type} notification for {user_id} (preferences)")
                continue

            data = dict(request.template_data)
            if personalize is not None:
                data.update(await personalize(user_id))

            title, message = request.title, request.message
            if request.template is not None:
                title = render_template(request.template.title_template, data)
                message = render_template(request.template.message_template, data)

            notification = Notification(
                user_id=user_id,
                type=request.type,
                title=title,
                message=message,
                priority=request.priority,
                related_entity_id=request.related_entity_id,
                related_entity_type=request.related_entity_type,
                template_id=self._stored_template_id(request.template),
                template_data=data or None,
            )
            notifications.append(notification)
            if preferences is None or preferences.email_enabled:
                email_queue.append(notification)

        if notifications:
            await self.store.insert_notifications(notifications)
            logger.info(f"Created {len(notifications)} {request.type} notifications")

        await self._send_emails(email_queue)
        return notifications

    def _stored_template_id(self, template: Optional[NotificationTemplate]) -> Optional[UUID]:
        """Bundled defaults have no database row to reference."""
        if template is None:
            return None
        default = self._default_templates.get(template.name) if self._default_templates else None
        return None if default is template else template.id

    async def _send_emails(self, notifications: List[Notification]) -> None:
        if self.email_hook is None:
            return
        for notification in notifications:
            try:
                await self.email_hook(notification)
            except Exception as e:
                logger.error(f"Failed to send e-mail for notification {notification.id}: {e}")

    async def notification_targets(
        self,
        school: School,
        new_status: DataEntryStatus,
        actor_id: Optional[UUID] = None,
    ) -> List[UUID]:
        """Users to notify when a school's category moves to new_status."""
        roles = []
        if new_status == DataEntryStatus.PENDING:
            roles.extend(await self.store.list_user_roles(role=AppRole.SECTORADMIN, sector_id=school.sector_id))
            roles.extend(await self.store.list_user_roles(role=AppRole.REGIONADMIN, region_id=school.region_id))
            roles.extend(await self.store.list_user_roles(role=AppRole.SUPERADMIN))
        elif new_status in (DataEntryStatus.APPROVED, DataEntryStatus.REJECTED):
            roles.extend(await self.store.list_user_roles(role=AppRole.SCHOOLADMIN, school_id=school.id))

        targets: List[UUID] = []
        for row in roles:
            if row.user_id != actor_id and row.user_id not in targets:
                targets.append(row.user_id)
        return targets

    async def notify_status_change(
        self,
        school: School,
        category: Category,
        old_status: DataEntryStatus,
        new_status: DataEntryStatus,
        actor_id: Optional[UUID] = None,
        comment: Optional[str] = None,
    ) -> List[Notification]:
        """Fan out a school/category status change."""
        targets = await self.notification_targets(school, new_status, actor_id)
        if not targets:
            return []

        template_data = {
            "school_name": school.name,
            "category_name": category.name,
            "old_status": old_status.value,
            "new_status": new_status.value,
        }
        if comment:
            template_data["comment"] = comment
            if new_status == DataEntryStatus.REJECTED:
                template_data["reason"] = comment

        message = (
            f'"{category.name}" data of {school.name} changed from '
            f'{old_status.value} to {new_status.value}'
        )
        if new_status == DataEntryStatus.REJECTED and comment:
            message += f". Reason: {comment}"

        template = None
        template_name = STATUS_TEMPLATES.get(new_status)
        if template_name:
            template = await self.get_template(template_name)

        request = NotificationRequest(
            type="status_change",
            title=STATUS_TITLES.get(new_status, "Status change"),
            message=message,
            priority=STATUS_PRIORITIES.get(new_status, "normal"),
            related_entity_id=f"{school.id}-{category.id}",
            related_entity_type="data_entry",
            kind=KIND_APPROVAL,
            template_data=template_data,
        )
        if template is not None:
            request.message = render_template(template.message_template, template_data)

        return await self.notify_users(targets, request)

    # Inbox
    async def list_notifications(
        self, user_id: UUID, unread_only: bool = False, limit: int = 50
    ) -> List[Notification]:
        return await self.store.list_notifications(user_id, unread_only=unread_only, limit=limit)

    async def mark_read(self, user_id: UUID, notification_ids: List[UUID]) -> int:
        if not notification_ids:
            return 0
        return await self.store.mark_notifications_read(user_id, notification_ids)

    async def mark_all_read(self, user_id: UUID) -> int:
        return await self.store.mark_notifications_read(user_id)

    async def unread_count(self, user_id: UUID) -> int:
        return await self.store.count_unread(user_id)

    async def cleanup_old_notifications(self, days: Optional[int] = None, read_only: bool = True) -> int:
        """Delete notifications older than days (default: retention setting)."""
        days = self.retention_days if days is None else days
        cutoff = utcnow() - timedelta(days=days)
        deleted = await self.store.delete_notifications_before(cutoff, read_only=read_only)
        logger.info(f"Deleted {deleted} notifications older than {days} days")
        return deleted
