"""
Data entry for schools and sectors.

School values are stored per column in data_entries and go through review;
sector values live in sector_data_entries and are approved on save. Sector
and region admins may also enter school data on the school's behalf (proxy
entries), which are stored as pending and can be approved right away.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from database import DataStore, InfoLineCache
from models import (
    AppRole,
    AuditLog,
    Category,
    Column,
    DataEntry,
    DataEntryStatus,
    School,
    SectorDataEntry,
    StatusHistoryEntry,
    UserScope,
    can_edit_with_status,
    utcnow,
)
from models.utils import ColumnValidationError, format_value_by_type, validate_column_value

from .access import get_accessible_school, get_category_or_404, get_school_or_404, get_sector_or_404
from .errors import NotFoundError, PermissionDeniedError, ValidationError
from .notifications import KIND_DATA_ENTRY, NotificationRequest, NotificationService
from .transitions import (
    ServiceResponse,
    StatusTransitionService,
    TransitionContext,
    history_entry_id,
)


logger = logging.getLogger(__name__)


@dataclass
class CategoryWithColumns:
    category: Category
    columns: List[Column] = field(default_factory=list)


@dataclass
class SaveResult:
    success: bool
    saved_count: int = 0
    errors: List[ColumnValidationError] = field(default_factory=list)
    message: str = ""


class DataEntryService:
    """Reads and writes school and sector data entries."""

    def __init__(
        self,
        store: DataStore,
        transitions: StatusTransitionService,
        notifications: Optional[NotificationService] = None,
        cache: Optional[InfoLineCache] = None,
    ):
        self.store = store
        self.transitions = transitions
        self.notifications = notifications
        self.cache = cache

    async def get_categories_with_columns(self, school_id: UUID) -> List[CategoryWithColumns]:
        """Active categories filled in by schools, each with its active columns."""
        if self.cache is not None:
            cached = await self.cache.get_categories(school_id)
            if cached is not None:
                return cached

        await get_school_or_404(self.store, school_id)

        result = []
        for category in await self.store.list_categories():
            if not category.for_schools:
                continue
            columns = await self.store.list_columns(category.id)
            result.append(CategoryWithColumns(category=category, columns=columns))

        if self.cache is not None:
            await self.cache.set_categories(school_id, result)
        return result

    async def get_entries(
        self,
        school_id: UUID,
        category_id: UUID,
        actor: Optional[UserScope] = None,
    ) -> List[DataEntry]:
        if actor is not None:
            await get_accessible_school(self.store, actor, school_id)
        return await self.store.list_entries(school_id=school_id, category_id=category_id)

    async def _prepare_values(
        self,
        category: Category,
        school_id: UUID,
        values: Dict[Any, Any],
        role: AppRole,
    ) -> Tuple[List[Tuple[Column, Optional[DataEntry], str]], List[ColumnValidationError]]:
        """
        Validate values for a school/category.

        Returns the (column, existing entry, stored value) triples to write and
        every error found; nothing should be written when errors is non-empty.
        """
        columns = {c.id: c for c in await self.store.list_columns(category.id)}
        existing = {
            e.column_id: e
            for e in await self.store.list_entries(school_id=school_id, category_id=category.id)
        }

        writes = []
        errors: List[ColumnValidationError] = []
        for raw_column_id, value in values.items():
            try:
                column_id = UUID(str(raw_column_id))
            except ValueError:
                column_id = None

            column = columns.get(column_id)
            if column is None:
                errors.append(ColumnValidationError(
                    column_id=str(raw_column_id),
                    message="Unknown column for this category",
                ))
                continue

            entry = existing.get(column.id)
            if entry is not None:
                can_edit, reason = can_edit_with_status(entry.status, role)
                if not can_edit:
                    errors.append(ColumnValidationError(
                        column_id=str(column.id),
                        message=reason,
                        column_name=column.name,
                    ))
                    continue

            error = validate_column_value(column, value)
            if error is not None:
                errors.append(error)
                continue

            writes.append((column, entry, format_value_by_type(column, value)))

        return writes, errors

    async def save_entries(
        self,
        actor: UserScope,
        school_id: UUID,
        category_id: UUID,
        values: Dict[Any, Any],
    ) -> SaveResult:
        """
        Upsert a school's values for a category.

        New values are stored as draft. A rejected value that is saved again
        returns to draft and loses its rejection details.
        """
        school = await get_accessible_school(self.store, actor, school_id)
        category = await get_category_or_404(self.store, category_id)
        if not category.for_schools:
            raise ValidationError(f"Category {category.name} is not filled in by schools")

        role = actor.role_for_school(school)
        writes, errors = await self._prepare_values(category, school.id, values, role)
        if errors:
            logger.info(f"Rejected save for school {school_id}, category {category_id}: {len(errors)} errors")
            return SaveResult(success=False, errors=errors, message="Validation failed")

        new_entries: List[DataEntry] = []
        updates: List[Tuple[UUID, Dict[str, Any]]] = []
        for column, entry, value in writes:
            if entry is None:
                new_entries.append(DataEntry(
                    school_id=school.id,
                    category_id=category.id,
                    column_id=column.id,
                    value=value,
                    status=DataEntryStatus.DRAFT,
                    created_by=actor.user_id,
                ))
            else:
                changes: Dict[str, Any] = {"value": value}
                if entry.status == DataEntryStatus.REJECTED:
                    changes.update(
                        status=DataEntryStatus.DRAFT,
                        rejected_by=None,
                        rejected_at=None,
                        rejection_reason=None,
                    )
                updates.append((entry.id, changes))

        await self.store.upsert_entries(new_entries, updates)
        saved = len(writes)

        await self._invalidate(school.id)
        logger.info(f"Saved {saved} entries for school {school_id}, category {category_id}")
        return SaveResult(success=True, saved_count=saved, message=f"Saved {saved} entries")

    async def submit_category(self, actor: UserScope, school_id: UUID, category_id: UUID) -> ServiceResponse:
        """Send a school's category for approval (rejected data goes via draft)."""
        await get_accessible_school(self.store, actor, school_id)
        await get_category_or_404(self.store, category_id)

        context = TransitionContext(school_id=school_id, category_id=category_id, user=actor)
        current = await self.transitions.get_current_status(school_id, category_id)

        if current == DataEntryStatus.REJECTED:
            response = await self.transitions.execute_transition(current, DataEntryStatus.DRAFT, context)
            if not response.success:
                return response
            current = DataEntryStatus.DRAFT

        return await self.transitions.execute_transition(current, DataEntryStatus.PENDING, context)

    # Proxy entries
    async def save_proxy_entries(
        self,
        actor: UserScope,
        school_id: UUID,
        category_id: UUID,
        values: Dict[Any, Any],
        reason: str,
    ) -> SaveResult:
        """
        Enter a school's data on its behalf.

        Only users who can approve the school may do this; values are stored as
        pending with the proxy details and the school's admins are notified.
        """
        school = await get_school_or_404(self.store, school_id)
        if not actor.can_approve_school(school):
            raise PermissionDeniedError(f"No permission to enter data for school {school_id}")
        if not reason or not reason.strip():
            raise ValidationError("A reason is required for proxy data entry")

        category = await get_category_or_404(self.store, category_id)
        if not category.for_schools:
            raise ValidationError(f"Category {category.name} is not filled in by schools")

        role = actor.role_for_school(school)
        writes, errors = await self._prepare_values(category, school.id, values, role)
        if errors:
            return SaveResult(success=False, errors=errors, message="Validation failed")

        proxy_fields = {
            "status": DataEntryStatus.PENDING,
            "proxy_created_by": actor.user_id,
            "proxy_reason": reason,
            "proxy_original_entity": school.name,
        }
        new_entries = [
            DataEntry(
                school_id=school.id,
                category_id=category.id,
                column_id=column.id,
                value=value,
                created_by=actor.user_id,
                **proxy_fields,
            )
            for column, entry, value in writes
            if entry is None
        ]
        updates = [
            (entry.id, {"value": value, **proxy_fields})
            for column, entry, value in writes
            if entry is not None
        ]
        await self.store.upsert_entries(new_entries, updates)
        saved = len(writes)

        await self._audit_proxy(actor, school, category, "proxy_data_entry", saved, reason)
        await self._invalidate(school.id)
        await self._notify_proxy(actor, school, category, reason)

        return SaveResult(success=True, saved_count=saved, message=f"Saved {saved} entries on behalf of {school.name}")

    async def auto_approve_proxy(self, actor: UserScope, school_id: UUID, category_id: UUID) -> ServiceResponse:
        """Approve the actor's own pending proxy entries for a school/category."""
        school = await get_school_or_404(self.store, school_id)
        if not actor.can_approve_school(school):
            raise PermissionDeniedError(f"No permission to approve data for school {school_id}")
        category = await get_category_or_404(self.store, category_id)

        entries = await self.store.list_entries(
            school_id=school_id,
            category_id=category_id,
            status=DataEntryStatus.PENDING,
            proxy_created_by=actor.user_id,
        )
        if not entries:
            return ServiceResponse(success=True, status=DataEntryStatus.APPROVED, message="No proxy entries to approve")

        comment = "Automatically approved proxy entry"
        updated = await self.store.update_entries([e.id for e in entries], {
            "status": DataEntryStatus.APPROVED,
            "approved_by": actor.user_id,
            "approved_at": utcnow(),
            "approval_comment": comment,
        })

        try:
            await self.store.add_status_history(StatusHistoryEntry(
                data_entry_id=history_entry_id(school_id, category_id),
                old_status=DataEntryStatus.PENDING,
                new_status=DataEntryStatus.APPROVED,
                comment=comment,
                changed_by=actor.user_id,
                metadata={"proxy": True, "entry_count": len(updated)},
            ))
        except Exception as e:
            logger.error(f"Error logging proxy approval history: {e}")

        await self._audit_proxy(actor, school, category, "proxy_auto_approve", len(updated), entries[0].proxy_reason)
        await self._invalidate(school_id)

        return ServiceResponse(
            success=True,
            status=DataEntryStatus.APPROVED,
            message=f"Approved {len(updated)} proxy entries",
            affected=len(updated),
        )

    async def _audit_proxy(
        self,
        actor: UserScope,
        school: School,
        category: Category,
        action: str,
        count: int,
        reason: Optional[str],
    ) -> None:
        try:
            await self.store.add_audit_log(AuditLog(
                user_id=actor.user_id,
                action=action,
                entity_type="data_entry",
                entity_id=history_entry_id(school.id, category.id),
                new_value={"entry_count": count},
                proxy_info={
                    "proxy_created_by": str(actor.user_id),
                    "proxy_reason": reason,
                    "proxy_original_entity": school.name,
                },
            ))
        except Exception as e:
            logger.error(f"Error writing proxy audit log: {e}")

    async def _notify_proxy(self, actor: UserScope, school: School, category: Category, reason: str) -> None:
        if self.notifications is None:
            return
        try:
            admins = await self.store.list_user_roles(role=AppRole.SCHOOLADMIN, school_id=school.id)
            await self.notifications.notify_users(
                [a.user_id for a in admins if a.user_id != actor.user_id],
                NotificationRequest(
                    type="proxy_data_entry",
                    title="Data entered on your behalf",
                    message=f'"{category.name}" data was entered for {school.name}. Reason: {reason}',
                    priority="normal",
                    related_entity_id=history_entry_id(school.id, category.id),
                    related_entity_type="data_entry",
                    kind=KIND_DATA_ENTRY,
                ),
            )
        except Exception as e:
            logger.error(f"Error sending proxy entry notification: {e}")

    # Sector entries
    async def save_sector_entry(
        self,
        actor: UserScope,
        sector_id: UUID,
        category_id: UUID,
        column_id: UUID,
        value: Any,
    ) -> SectorDataEntry:
        """Store a sector-level value; it is approved immediately."""
        sector = await get_sector_or_404(self.store, sector_id)
        if not actor.can_manage_sector(sector.id, sector.region_id):
            raise PermissionDeniedError(f"No permission to enter data for sector {sector_id}")

        category = await get_category_or_404(self.store, category_id)
        if not category.for_sectors:
            raise ValidationError(f"Category {category.name} is not filled in by sectors")

        column = await self.store.get_column(column_id)
        if column is None or column.category_id != category.id:
            raise NotFoundError(f"Column {column_id} not found in category {category_id}")

        error = validate_column_value(column, value)
        if error is not None:
            raise ValidationError(error.message, errors=[error])

        stored_value = format_value_by_type(column, value)
        now = utcnow()
        approval = {
            "value": stored_value,
            "status": DataEntryStatus.APPROVED,
            "approved_by": actor.user_id,
            "approved_at": now,
        }

        existing = await self.store.get_sector_entry(sector.id, category.id, column.id)
        if existing is not None:
            updated = await self.store.update_sector_entries([existing.id], approval)
            entry = updated[0]
        else:
            entry = await self.store.insert_sector_entry(SectorDataEntry(
                sector_id=sector.id,
                category_id=category.id,
                column_id=column.id,
                created_by=actor.user_id,
                **approval,
            ))

        logger.info(f"Saved sector entry for sector {sector_id}, column {column_id}")
        return entry

    async def get_sector_entries(self, sector_id: UUID, category_id: Optional[UUID] = None) -> List[SectorDataEntry]:
        return await self.store.list_sector_entries(sector_id=sector_id, category_id=category_id)

    async def _invalidate(self, school_id: UUID) -> None:
        if self.cache is not None:
            await self.cache.invalidate_school(school_id)
