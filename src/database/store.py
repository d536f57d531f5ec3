"""
Storage interface for İnfoLine services.

DataStore is the single seam between the workflow services and persistence.
PostgresDataStore (database.queries) talks to Supabase through asyncpg;
InMemoryDataStore below keeps everything in dictionaries and backs the test
suite, the CLI demo and local development without a database.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple
from uuid import UUID

from models import (
    AppRole,
    AuditLog,
    Category,
    Column,
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


logger = logging.getLogger(__name__)

# Fields callers may change through update_entries / update_sector_entries
ENTRY_UPDATE_FIELDS = {
    "value",
    "status",
    "approved_by",
    "approved_at",
    "approval_comment",
    "rejected_by",
    "rejected_at",
    "rejection_reason",
    "proxy_created_by",
    "proxy_reason",
    "proxy_original_entity",
    "deleted_at",
}

SECTOR_ENTRY_UPDATE_FIELDS = {
    "value",
    "status",
    "approved_by",
    "approved_at",
    "rejected_by",
    "rejected_at",
    "rejection_reason",
}


class StoreError(Exception):
    """Raised when a storage operation fails."""
    pass


def check_update_fields(changes: Dict[str, Any], allowed: Iterable[str]) -> None:
    unknown = set(changes) - set(allowed)
    if unknown:
        raise StoreError(f"Cannot update fields: {sorted(unknown)}")


class DataStore(ABC):
    """Abstract interface for İnfoLine persistence."""

    # Hierarchy
    @abstractmethod
    async def get_region(self, region_id: UUID) -> Optional[Region]:
        pass

    @abstractmethod
    async def list_regions(self) -> List[Region]:
        """Active regions ordered by name."""
        pass

    @abstractmethod
    async def get_sector(self, sector_id: UUID) -> Optional[Sector]:
        pass

    @abstractmethod
    async def list_sectors(self, region_id: Optional[UUID] = None) -> List[Sector]:
        pass

    @abstractmethod
    async def get_school(self, school_id: UUID) -> Optional[School]:
        pass

    @abstractmethod
    async def list_schools(
        self,
        region_id: Optional[UUID] = None,
        sector_id: Optional[UUID] = None,
        school_ids: Optional[List[UUID]] = None,
    ) -> List[School]:
        """Active schools, optionally filtered; ordered by name."""
        pass

    # Form schema
    @abstractmethod
    async def get_category(self, category_id: UUID) -> Optional[Category]:
        pass

    @abstractmethod
    async def list_categories(self, active_only: bool = True) -> List[Category]:
        """Categories ordered by priority, order_index, name."""
        pass

    @abstractmethod
    async def get_column(self, column_id: UUID) -> Optional[Column]:
        pass

    @abstractmethod
    async def list_columns(self, category_id: UUID, active_only: bool = True) -> List[Column]:
        """Columns of a category ordered by order_index."""
        pass

    @abstractmethod
    async def soft_delete_column(self, column_id: UUID, deleted_at: datetime) -> int:
        """
        Mark a column deleted and soft-delete its school entries as one unit.

        Returns the number of entries deleted.
        """
        pass

    # Users
    @abstractmethod
    async def get_user_roles(self, user_id: UUID) -> List[UserRole]:
        pass

    @abstractmethod
    async def list_user_roles(
        self,
        role: Optional[AppRole] = None,
        region_id: Optional[UUID] = None,
        sector_id: Optional[UUID] = None,
        school_id: Optional[UUID] = None,
    ) -> List[UserRole]:
        pass

    @abstractmethod
    async def get_profile(self, user_id: UUID) -> Optional[Profile]:
        pass

    # School data entries
    @abstractmethod
    async def get_entry(self, entry_id: UUID) -> Optional[DataEntry]:
        pass

    @abstractmethod
    async def list_entries(
        self,
        school_id: Optional[UUID] = None,
        category_id: Optional[UUID] = None,
        column_id: Optional[UUID] = None,
        status: Optional[DataEntryStatus] = None,
        school_ids: Optional[List[UUID]] = None,
        proxy_created_by: Optional[UUID] = None,
    ) -> List[DataEntry]:
        """Non-deleted entries matching every given filter."""
        pass

    @abstractmethod
    async def insert_entry(self, entry: DataEntry) -> DataEntry:
        pass

    @abstractmethod
    async def update_entries(self, entry_ids: List[UUID], changes: Dict[str, Any]) -> List[DataEntry]:
        """Apply changes to the given entries and bump updated_at; returns updated rows."""
        pass

    @abstractmethod
    async def upsert_entries(
        self,
        new_entries: List[DataEntry],
        updates: List[Tuple[UUID, Dict[str, Any]]],
    ) -> List[DataEntry]:
        """
        Insert new_entries and apply each (entry_id, changes) pair as one unit.

        Either every row is written or, when any fails, none is and the
        StoreError propagates. Returns the written rows.
        """
        pass

    # Sector data entries
    @abstractmethod
    async def get_sector_entry(
        self, sector_id: UUID, category_id: UUID, column_id: UUID
    ) -> Optional[SectorDataEntry]:
        pass

    @abstractmethod
    async def list_sector_entries(
        self,
        sector_id: Optional[UUID] = None,
        category_id: Optional[UUID] = None,
        status: Optional[DataEntryStatus] = None,
    ) -> List[SectorDataEntry]:
        pass

    @abstractmethod
    async def insert_sector_entry(self, entry: SectorDataEntry) -> SectorDataEntry:
        pass

    @abstractmethod
    async def update_sector_entries(
        self, entry_ids: List[UUID], changes: Dict[str, Any]
    ) -> List[SectorDataEntry]:
        pass

    # History and audit
    @abstractmethod
    async def add_status_history(self, entry: StatusHistoryEntry) -> StatusHistoryEntry:
        pass

    @abstractmethod
    async def list_status_history(
        self, data_entry_id: Optional[str] = None, limit: int = 50
    ) -> List[StatusHistoryEntry]:
        """Newest first."""
        pass

    @abstractmethod
    async def add_audit_log(self, log: AuditLog) -> AuditLog:
        pass

    @abstractmethod
    async def list_audit_logs(self, entity_id: Optional[str] = None, limit: int = 100) -> List[AuditLog]:
        pass

    @abstractmethod
    async def audit_log_exists(self, entity_id: str, action: str, since: datetime) -> bool:
        pass

    # Notifications
    @abstractmethod
    async def insert_notifications(self, notifications: List[Notification]) -> int:
        pass

    @abstractmethod
    async def list_notifications(
        self, user_id: UUID, unread_only: bool = False, limit: int = 50
    ) -> List[Notification]:
        """Newest first."""
        pass

    @abstractmethod
    async def count_unread(self, user_id: UUID) -> int:
        pass

    @abstractmethod
    async def mark_notifications_read(
        self, user_id: UUID, notification_ids: Optional[List[UUID]] = None
    ) -> int:
        """Mark the given (or all) unread notifications of a user read; returns count."""
        pass

    @abstractmethod
    async def notification_exists(
        self, related_entity_id: str, notification_type: str, since: datetime
    ) -> bool:
        pass

    @abstractmethod
    async def delete_notifications_before(self, cutoff: datetime, read_only: bool = True) -> int:
        pass

    @abstractmethod
    async def get_notification_template(self, name: str) -> Optional[NotificationTemplate]:
        """Active template by name."""
        pass

    @abstractmethod
    async def get_notification_preferences(self, user_id: UUID) -> Optional[NotificationPreferences]:
        pass


class InMemoryDataStore(DataStore):
    """
    Dictionary-backed DataStore.

    Features:
    - Same filtering and ordering semantics as the PostgreSQL store
    - Returns copies so callers cannot mutate stored rows
    - Seeding helpers (add_*) for tests and demos
    """

    def __init__(self):
        self.regions: Dict[UUID, Region] = {}
        self.sectors: Dict[UUID, Sector] = {}
        self.schools: Dict[UUID, School] = {}
        self.categories: Dict[UUID, Category] = {}
        self.columns: Dict[UUID, Column] = {}
        self.user_roles: Dict[UUID, UserRole] = {}
        self.profiles: Dict[UUID, Profile] = {}
        self.entries: Dict[UUID, DataEntry] = {}
        self.sector_entries: Dict[UUID, SectorDataEntry] = {}
        self.status_history: List[StatusHistoryEntry] = []
        self.audit_logs: List[AuditLog] = []
        self.notifications: Dict[UUID, Notification] = {}
        self.templates: Dict[str, NotificationTemplate] = {}
        self.preferences: Dict[UUID, NotificationPreferences] = {}
        self._lock = asyncio.Lock()

    # Seeding helpers
    def add_region(self, region: Region) -> Region:
        self.regions[region.id] = region
        return region

    def add_sector(self, sector: Sector) -> Sector:
        self.sectors[sector.id] = sector
        return sector

    def add_school(self, school: School) -> School:
        self.schools[school.id] = school
        return school

    def add_category(self, category: Category) -> Category:
        self.categories[category.id] = category
        return category

    def add_column(self, column: Column) -> Column:
        self.columns[column.id] = column
        return column

    def add_user_role(self, user_role: UserRole) -> UserRole:
        self.user_roles[user_role.id] = user_role
        return user_role

    def add_profile(self, profile: Profile) -> Profile:
        self.profiles[profile.id] = profile
        return profile

    def add_template(self, template: NotificationTemplate) -> NotificationTemplate:
        self.templates[template.name] = template
        return template

    def set_preferences(self, preferences: NotificationPreferences) -> NotificationPreferences:
        self.preferences[preferences.user_id] = preferences
        return preferences

    @staticmethod
    def _copy(item):
        return item.model_copy(deep=True) if item is not None else None

    # Hierarchy
    async def get_region(self, region_id: UUID) -> Optional[Region]:
        return self._copy(self.regions.get(region_id))

    async def list_regions(self) -> List[Region]:
        regions = [r for r in self.regions.values() if r.status == "active"]
        return [self._copy(r) for r in sorted(regions, key=lambda r: r.name)]

    async def get_sector(self, sector_id: UUID) -> Optional[Sector]:
        return self._copy(self.sectors.get(sector_id))

    async def list_sectors(self, region_id: Optional[UUID] = None) -> List[Sector]:
        sectors = [
            s for s in self.sectors.values()
            if s.status == "active" and (region_id is None or s.region_id == region_id)
        ]
        return [self._copy(s) for s in sorted(sectors, key=lambda s: s.name)]

    async def get_school(self, school_id: UUID) -> Optional[School]:
        return self._copy(self.schools.get(school_id))

    async def list_schools(
        self,
        region_id: Optional[UUID] = None,
        sector_id: Optional[UUID] = None,
        school_ids: Optional[List[UUID]] = None,
    ) -> List[School]:
        wanted = set(school_ids) if school_ids is not None else None
        schools = [
            s for s in self.schools.values()
            if s.status == "active"
            and (region_id is None or s.region_id == region_id)
            and (sector_id is None or s.sector_id == sector_id)
            and (wanted is None or s.id in wanted)
        ]
        return [self._copy(s) for s in sorted(schools, key=lambda s: s.name)]

    # Form schema
    async def get_category(self, category_id: UUID) -> Optional[Category]:
        return self._copy(self.categories.get(category_id))

    async def list_categories(self, active_only: bool = True) -> List[Category]:
        categories = [c for c in self.categories.values() if not active_only or c.is_active]
        categories.sort(key=lambda c: (c.priority, c.order_index, c.name))
        return [self._copy(c) for c in categories]

    async def get_column(self, column_id: UUID) -> Optional[Column]:
        return self._copy(self.columns.get(column_id))

    async def list_columns(self, category_id: UUID, active_only: bool = True) -> List[Column]:
        columns = [
            c for c in self.columns.values()
            if c.category_id == category_id and (not active_only or c.status == "active")
        ]
        columns.sort(key=lambda c: (c.order_index, c.name))
        return [self._copy(c) for c in columns]

    async def soft_delete_column(self, column_id: UUID, deleted_at: datetime) -> int:
        async with self._lock:
            column = self.columns.get(column_id)
            if column is None:
                return 0
            self.columns[column_id] = column.model_copy(update={"status": "deleted", "updated_at": deleted_at})
            doomed = [
                e.id for e in self.entries.values()
                if e.column_id == column_id and e.deleted_at is None
            ]
            for entry_id in doomed:
                self.entries[entry_id] = self.entries[entry_id].model_copy(update={"deleted_at": deleted_at})
        return len(doomed)

    # Users
    async def get_user_roles(self, user_id: UUID) -> List[UserRole]:
        return [self._copy(r) for r in self.user_roles.values() if r.user_id == user_id]

    async def list_user_roles(
        self,
        role: Optional[AppRole] = None,
        region_id: Optional[UUID] = None,
        sector_id: Optional[UUID] = None,
        school_id: Optional[UUID] = None,
    ) -> List[UserRole]:
        return [
            self._copy(r) for r in self.user_roles.values()
            if (role is None or r.role == role)
            and (region_id is None or r.region_id == region_id)
            and (sector_id is None or r.sector_id == sector_id)
            and (school_id is None or r.school_id == school_id)
        ]

    async def get_profile(self, user_id: UUID) -> Optional[Profile]:
        return self._copy(self.profiles.get(user_id))

    # School data entries
    async def get_entry(self, entry_id: UUID) -> Optional[DataEntry]:
        entry = self.entries.get(entry_id)
        if entry is None or entry.deleted_at is not None:
            return None
        return self._copy(entry)

    async def list_entries(
        self,
        school_id: Optional[UUID] = None,
        category_id: Optional[UUID] = None,
        column_id: Optional[UUID] = None,
        status: Optional[DataEntryStatus] = None,
        school_ids: Optional[List[UUID]] = None,
        proxy_created_by: Optional[UUID] = None,
    ) -> List[DataEntry]:
        wanted = set(school_ids) if school_ids is not None else None
        entries = [
            e for e in self.entries.values()
            if e.deleted_at is None
            and (school_id is None or e.school_id == school_id)
            and (category_id is None or e.category_id == category_id)
            and (column_id is None or e.column_id == column_id)
            and (status is None or e.status == status)
            and (wanted is None or e.school_id in wanted)
            and (proxy_created_by is None or e.proxy_created_by == proxy_created_by)
        ]
        entries.sort(key=lambda e: e.created_at)
        return [self._copy(e) for e in entries]

    @staticmethod
    def _entry_key(entry: DataEntry):
        return entry.school_id, entry.category_id, entry.column_id

    def _live_entry_keys(self) -> set:
        return {self._entry_key(e) for e in self.entries.values() if e.deleted_at is None}

    def _apply_entry_changes(self, entry_id: UUID, changes: Dict[str, Any], now: datetime) -> Optional[DataEntry]:
        entry = self.entries.get(entry_id)
        if entry is None or entry.deleted_at is not None:
            return None
        new_entry = entry.model_copy(update={**changes, "updated_at": now})
        self.entries[entry_id] = new_entry
        return self._copy(new_entry)

    async def insert_entry(self, entry: DataEntry) -> DataEntry:
        async with self._lock:
            if self._entry_key(entry) in self._live_entry_keys():
                raise StoreError(
                    f"Entry already exists for school {entry.school_id}, column {entry.column_id}"
                )
            self.entries[entry.id] = self._copy(entry)
            return self._copy(entry)

    async def update_entries(self, entry_ids: List[UUID], changes: Dict[str, Any]) -> List[DataEntry]:
        check_update_fields(changes, ENTRY_UPDATE_FIELDS)
        async with self._lock:
            now = utcnow()
            updated = [self._apply_entry_changes(entry_id, changes, now) for entry_id in entry_ids]
        return [e for e in updated if e is not None]

    async def upsert_entries(
        self,
        new_entries: List[DataEntry],
        updates: List[Tuple[UUID, Dict[str, Any]]],
    ) -> List[DataEntry]:
        for _, changes in updates:
            check_update_fields(changes, ENTRY_UPDATE_FIELDS)

        async with self._lock:
            # all checks run before the first write
            taken = self._live_entry_keys()
            for entry in new_entries:
                key = self._entry_key(entry)
                if key in taken:
                    raise StoreError(
                        f"Entry already exists for school {entry.school_id}, column {entry.column_id}"
                    )
                taken.add(key)

            written = []
            for entry in new_entries:
                self.entries[entry.id] = self._copy(entry)
                written.append(self._copy(entry))
            now = utcnow()
            for entry_id, changes in updates:
                updated = self._apply_entry_changes(entry_id, changes, now)
                if updated is not None:
                    written.append(updated)
        return written

    # Sector data entries
    async def get_sector_entry(
        self, sector_id: UUID, category_id: UUID, column_id: UUID
    ) -> Optional[SectorDataEntry]:
        for entry in self.sector_entries.values():
            if (
                entry.sector_id == sector_id
                and entry.category_id == category_id
                and entry.column_id == column_id
            ):
                return self._copy(entry)
        return None

    async def list_sector_entries(
        self,
        sector_id: Optional[UUID] = None,
        category_id: Optional[UUID] = None,
        status: Optional[DataEntryStatus] = None,
    ) -> List[SectorDataEntry]:
        entries = [
            e for e in self.sector_entries.values()
            if (sector_id is None or e.sector_id == sector_id)
            and (category_id is None or e.category_id == category_id)
            and (status is None or e.status == status)
        ]
        entries.sort(key=lambda e: e.created_at)
        return [self._copy(e) for e in entries]

    async def insert_sector_entry(self, entry: SectorDataEntry) -> SectorDataEntry:
        async with self._lock:
            for existing in self.sector_entries.values():
                if (
                    existing.sector_id == entry.sector_id
                    and existing.category_id == entry.category_id
                    and existing.column_id == entry.column_id
                ):
                    raise StoreError(
                        f"Sector entry already exists for sector {entry.sector_id}, column {entry.column_id}"
                    )
            self.sector_entries[entry.id] = self._copy(entry)
            return self._copy(entry)

    async def update_sector_entries(
        self, entry_ids: List[UUID], changes: Dict[str, Any]
    ) -> List[SectorDataEntry]:
        check_update_fields(changes, SECTOR_ENTRY_UPDATE_FIELDS)
        updated = []
        async with self._lock:
            now = utcnow()
            for entry_id in entry_ids:
                entry = self.sector_entries.get(entry_id)
                if entry is None:
                    continue
                new_entry = entry.model_copy(update={**changes, "updated_at": now})
                self.sector_entries[entry_id] = new_entry
                updated.append(self._copy(new_entry))
        return updated

    # History and audit
    async def add_status_history(self, entry: StatusHistoryEntry) -> StatusHistoryEntry:
        self.status_history.append(self._copy(entry))
        return entry

    async def list_status_history(
        self, data_entry_id: Optional[str] = None, limit: int = 50
    ) -> List[StatusHistoryEntry]:
        history = [
            h for h in self.status_history
            if data_entry_id is None or h.data_entry_id == data_entry_id
        ]
        # stable sort keeps insertion order for equal timestamps, so reverse first
        history = sorted(reversed(history), key=lambda h: h.changed_at, reverse=True)
        return [self._copy(h) for h in history[:limit]]

    async def add_audit_log(self, log: AuditLog) -> AuditLog:
        self.audit_logs.append(self._copy(log))
        return log

    async def list_audit_logs(self, entity_id: Optional[str] = None, limit: int = 100) -> List[AuditLog]:
        logs = [l for l in self.audit_logs if entity_id is None or l.entity_id == entity_id]
        logs = sorted(reversed(logs), key=lambda l: l.created_at, reverse=True)
        return [self._copy(l) for l in logs[:limit]]

    async def audit_log_exists(self, entity_id: str, action: str, since: datetime) -> bool:
        return any(
            l.entity_id == entity_id and l.action == action and l.created_at >= since
            for l in self.audit_logs
        )

    # Notifications
    async def insert_notifications(self, notifications: List[Notification]) -> int:
        async with self._lock:
            for notification in notifications:
                self.notifications[notification.id] = self._copy(notification)
        return len(notifications)

    async def list_notifications(
        self, user_id: UUID, unread_only: bool = False, limit: int = 50
    ) -> List[Notification]:
        notifications = [
            n for n in self.notifications.values()
            if n.user_id == user_id and (not unread_only or not n.is_read)
        ]
        notifications = sorted(reversed(notifications), key=lambda n: n.created_at, reverse=True)
        return [self._copy(n) for n in notifications[:limit]]

    async def count_unread(self, user_id: UUID) -> int:
        return sum(1 for n in self.notifications.values() if n.user_id == user_id and not n.is_read)

    async def mark_notifications_read(
        self, user_id: UUID, notification_ids: Optional[List[UUID]] = None
    ) -> int:
        wanted = set(notification_ids) if notification_ids is not None else None
        count = 0
        async with self._lock:
            for notification in self.notifications.values():
                if notification.user_id != user_id or notification.is_read:
                    continue
                if wanted is not None and notification.id not in wanted:
                    continue
                notification.is_read = True
                count += 1
        return count

    async def notification_exists(
        self, related_entity_id: str, notification_type: str, since: datetime
    ) -> bool:
        return any(
            n.related_entity_id == related_entity_id
            and n.type == notification_type
            and n.created_at >= since
            for n in self.notifications.values()
        )

    async def delete_notifications_before(self, cutoff: datetime, read_only: bool = True) -> int:
        async with self._lock:
            doomed = [
                n.id for n in self.notifications.values()
                if n.created_at < cutoff and (n.is_read or not read_only)
            ]
            for notification_id in doomed:
                del self.notifications[notification_id]
        return len(doomed)

    async def get_notification_template(self, name: str) -> Optional[NotificationTemplate]:
        template = self.templates.get(name)
        if template is None or not template.is_active:
            return None
        return self._copy(template)

    async def get_notification_preferences(self, user_id: UUID) -> Optional[NotificationPreferences]:
        return self._copy(self.preferences.get(user_id))
