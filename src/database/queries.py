"""
PostgreSQL implementation of the DataStore interface.

Runs parameterised queries against the Supabase tables through the shared
asyncpg pool. JSONB columns are decoded on read and encoded on write.
"""

import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple, Type, TypeVar
from uuid import UUID

import asyncpg
from pydantic import BaseModel

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
)

from .connection import DatabasePool, get_database_pool
from .store import (
    ENTRY_UPDATE_FIELDS,
    SECTOR_ENTRY_UPDATE_FIELDS,
    DataStore,
    StoreError,
    check_update_fields,
)


logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

JSON_FIELDS = {
    "options",
    "validation",
    "template_data",
    "metadata",
    "old_value",
    "new_value",
    "proxy_info",
    "variables",
}

DATA_ENTRY_COLUMNS = (
    "id, school_id, category_id, column_id, value, status, created_by, "
    "approved_by, approved_at, approval_comment, rejected_by, rejected_at, rejection_reason, "
    "proxy_created_by, proxy_reason, proxy_original_entity, created_at, updated_at, deleted_at"
)

SECTOR_ENTRY_COLUMNS = (
    "id, sector_id, category_id, column_id, value, status, created_by, "
    "approved_by, approved_at, rejected_by, rejected_at, rejection_reason, created_at, updated_at"
)


def _decode_json(value: Any) -> Any:
    if isinstance(value, str):
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            logger.warning(f"Could not parse JSON value: {value[:100]}")
            return None
    return value


def _to_model(model: Type[M], row: Optional[asyncpg.Record]) -> Optional[M]:
    if row is None:
        return None
    data = dict(row)
    for key in JSON_FIELDS.intersection(data):
        data[key] = _decode_json(data[key])
    return model.model_validate(data)


def _to_models(model: Type[M], rows: Sequence[asyncpg.Record]) -> List[M]:
    return [_to_model(model, row) for row in rows]


def _db_value(key: str, value: Any) -> Any:
    if key in JSON_FIELDS and value is not None:
        return json.dumps(value, default=str)
    if isinstance(value, (DataEntryStatus, AppRole)):
        return value.value
    return value


class QueryBuilder:
    """Collects WHERE conditions with positional $n parameters."""

    def __init__(self):
        self.conditions: List[str] = []
        self.params: List[Any] = []

    def add(self, condition: str, value: Any) -> "QueryBuilder":
        """condition uses {} where the placeholder goes, e.g. 'school_id = {}'."""
        self.params.append(value)
        self.conditions.append(condition.format(f"${len(self.params)}"))
        return self

    def add_if(self, condition: str, value: Any) -> "QueryBuilder":
        if value is not None:
            self.add(condition, value)
        return self

    def raw(self, condition: str) -> "QueryBuilder":
        self.conditions.append(condition)
        return self

    def param(self, value: Any) -> str:
        self.params.append(value)
        return f"${len(self.params)}"

    @property
    def where(self) -> str:
        return f"WHERE {' AND '.join(self.conditions)}" if self.conditions else ""


def _insert_statement(table: str, data: Dict[str, Any]) -> Tuple[str, List[Any]]:
    keys = list(data)
    placeholders = []
    for i, key in enumerate(keys, start=1):
        placeholders.append(f"${i}::jsonb" if key in JSON_FIELDS else f"${i}")
    query = f"INSERT INTO public.{table} ({', '.join(keys)}) VALUES ({', '.join(placeholders)}) RETURNING *"
    return query, [_db_value(key, data[key]) for key in keys]


def _update_statement(table: str, entry_ids: List[UUID], changes: Dict[str, Any]) -> Tuple[str, List[Any]]:
    params: List[Any] = []
    assignments = []
    for key, value in changes.items():
        params.append(_db_value(key, value))
        assignments.append(f"{key} = ${len(params)}")
    assignments.append("updated_at = now()")
    params.append(list(entry_ids))
    query = (
        f"UPDATE public.{table} SET {', '.join(assignments)} "
        f"WHERE id = ANY(${len(params)}::uuid[]) RETURNING *"
    )
    return query, params


def _entry_update_statement(entry_ids: List[UUID], changes: Dict[str, Any]) -> Tuple[str, List[Any]]:
    query, params = _update_statement("data_entries", entry_ids, changes)
    return query.replace("RETURNING *", "AND deleted_at IS NULL RETURNING *"), params


class PostgresDataStore(DataStore):
    """DataStore backed by the Supabase PostgreSQL database."""

    def __init__(self, pool: Optional[DatabasePool] = None):
        self._pool = pool

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()

    async def _get_pool(self) -> DatabasePool:
        if self._pool is None:
            self._pool = await get_database_pool()
        return self._pool

    async def _fetch(self, query: str, *args) -> List[asyncpg.Record]:
        pool = await self._get_pool()
        return await pool.execute_query(query, *args)

    async def _fetch_one(self, query: str, *args) -> Optional[asyncpg.Record]:
        pool = await self._get_pool()
        return await pool.execute_query_one(query, *args)

    async def _execute(self, command: str, *args) -> str:
        pool = await self._get_pool()
        return await pool.execute_command(command, *args)

    @staticmethod
    def _affected(status: str) -> int:
        """Row count from an asyncpg command status such as 'UPDATE 3'."""
        try:
            return int(status.split()[-1])
        except (AttributeError, ValueError, IndexError):
            return 0

    # Hierarchy
    async def get_region(self, region_id: UUID) -> Optional[Region]:
        row = await self._fetch_one("SELECT * FROM public.regions WHERE id = $1", region_id)
        return _to_model(Region, row)

    async def list_regions(self) -> List[Region]:
        rows = await self._fetch("SELECT * FROM public.regions WHERE status = 'active' ORDER BY name")
        return _to_models(Region, rows)

    async def get_sector(self, sector_id: UUID) -> Optional[Sector]:
        row = await self._fetch_one("SELECT * FROM public.sectors WHERE id = $1", sector_id)
        return _to_model(Sector, row)

    async def list_sectors(self, region_id: Optional[UUID] = None) -> List[Sector]:
        q = QueryBuilder().raw("status = 'active'").add_if("region_id = {}", region_id)
        rows = await self._fetch(f"SELECT * FROM public.sectors {q.where} ORDER BY name", *q.params)
        return _to_models(Sector, rows)

    async def get_school(self, school_id: UUID) -> Optional[School]:
        row = await self._fetch_one("SELECT * FROM public.schools WHERE id = $1", school_id)
        return _to_model(School, row)

    async def list_schools(
        self,
        region_id: Optional[UUID] = None,
        sector_id: Optional[UUID] = None,
        school_ids: Optional[List[UUID]] = None,
    ) -> List[School]:
        q = (
            QueryBuilder()
            .raw("status = 'active'")
            .add_if("region_id = {}", region_id)
            .add_if("sector_id = {}", sector_id)
        )
        if school_ids is not None:
            q.add("id = ANY({}::uuid[])", list(school_ids))
        rows = await self._fetch(f"SELECT * FROM public.schools {q.where} ORDER BY name", *q.params)
        return _to_models(School, rows)

    # Form schema
    async def get_category(self, category_id: UUID) -> Optional[Category]:
        row = await self._fetch_one("SELECT * FROM public.categories WHERE id = $1", category_id)
        return _to_model(Category, row)

    async def list_categories(self, active_only: bool = True) -> List[Category]:
        where = "WHERE status = 'active' AND COALESCE(archived, false) = false" if active_only else ""
        rows = await self._fetch(
            f"SELECT * FROM public.categories {where} "
            "ORDER BY COALESCE(priority, 0), COALESCE(order_index, 0), name"
        )
        return _to_models(Category, rows)

    async def get_column(self, column_id: UUID) -> Optional[Column]:
        row = await self._fetch_one("SELECT * FROM public.columns WHERE id = $1", column_id)
        return _to_model(Column, row)

    async def list_columns(self, category_id: UUID, active_only: bool = True) -> List[Column]:
        q = QueryBuilder().add("category_id = {}", category_id)
        if active_only:
            q.raw("status = 'active'")
        rows = await self._fetch(
            f"SELECT * FROM public.columns {q.where} ORDER BY COALESCE(order_index, 0), name",
            *q.params,
        )
        return _to_models(Column, rows)

    async def soft_delete_column(self, column_id: UUID, deleted_at: datetime) -> int:
        pool = await self._get_pool()
        async with pool.transaction() as conn:
            found = await conn.execute(
                "UPDATE public.columns SET status = 'deleted', updated_at = $2 WHERE id = $1",
                column_id, deleted_at,
            )
            if not self._affected(found):
                return 0
            status = await conn.execute(
                "UPDATE public.data_entries SET deleted_at = $2, updated_at = $2 "
                "WHERE column_id = $1 AND deleted_at IS NULL",
                column_id, deleted_at,
            )
        return self._affected(status)

    # Users
    async def get_user_roles(self, user_id: UUID) -> List[UserRole]:
        rows = await self._fetch("SELECT * FROM public.user_roles WHERE user_id = $1", user_id)
        return _to_models(UserRole, rows)

    async def list_user_roles(
        self,
        role: Optional[AppRole] = None,
        region_id: Optional[UUID] = None,
        sector_id: Optional[UUID] = None,
        school_id: Optional[UUID] = None,
    ) -> List[UserRole]:
        q = (
            QueryBuilder()
            .add_if("role = {}", role.value if role else None)
            .add_if("region_id = {}", region_id)
            .add_if("sector_id = {}", sector_id)
            .add_if("school_id = {}", school_id)
        )
        rows = await self._fetch(f"SELECT * FROM public.user_roles {q.where}", *q.params)
        return _to_models(UserRole, rows)

    async def get_profile(self, user_id: UUID) -> Optional[Profile]:
        row = await self._fetch_one("SELECT * FROM public.profiles WHERE id = $1", user_id)
        return _to_model(Profile, row)

    # School data entries
    async def get_entry(self, entry_id: UUID) -> Optional[DataEntry]:
        row = await self._fetch_one(
            f"SELECT {DATA_ENTRY_COLUMNS} FROM public.data_entries WHERE id = $1 AND deleted_at IS NULL",
            entry_id,
        )
        return _to_model(DataEntry, row)

    async def list_entries(
        self,
        school_id: Optional[UUID] = None,
        category_id: Optional[UUID] = None,
        column_id: Optional[UUID] = None,
        status: Optional[DataEntryStatus] = None,
        school_ids: Optional[List[UUID]] = None,
        proxy_created_by: Optional[UUID] = None,
    ) -> List[DataEntry]:
        q = (
            QueryBuilder()
            .raw("deleted_at IS NULL")
            .add_if("school_id = {}", school_id)
            .add_if("category_id = {}", category_id)
            .add_if("column_id = {}", column_id)
            .add_if("status = {}", status.value if status else None)
            .add_if("proxy_created_by = {}", proxy_created_by)
        )
        if school_ids is not None:
            q.add("school_id = ANY({}::uuid[])", list(school_ids))
        rows = await self._fetch(
            f"SELECT {DATA_ENTRY_COLUMNS} FROM public.data_entries {q.where} ORDER BY created_at",
            *q.params,
        )
        return _to_models(DataEntry, rows)

    async def insert_entry(self, entry: DataEntry) -> DataEntry:
        query, params = _insert_statement("data_entries", entry.model_dump())
        try:
            row = await self._fetch_one(query, *params)
        except asyncpg.UniqueViolationError as e:
            raise StoreError(
                f"Entry already exists for school {entry.school_id}, column {entry.column_id}"
            ) from e
        return _to_model(DataEntry, row)

    async def update_entries(self, entry_ids: List[UUID], changes: Dict[str, Any]) -> List[DataEntry]:
        check_update_fields(changes, ENTRY_UPDATE_FIELDS)
        if not entry_ids:
            return []
        query, params = _entry_update_statement(entry_ids, changes)
        rows = await self._fetch(query, *params)
        return _to_models(DataEntry, rows)

    async def upsert_entries(
        self,
        new_entries: List[DataEntry],
        updates: List[Tuple[UUID, Dict[str, Any]]],
    ) -> List[DataEntry]:
        for _, changes in updates:
            check_update_fields(changes, ENTRY_UPDATE_FIELDS)
        if not new_entries and not updates:
            return []

        rows: List[asyncpg.Record] = []
        pool = await self._get_pool()
        async with pool.transaction() as conn:
            for entry in new_entries:
                query, params = _insert_statement("data_entries", entry.model_dump())
                try:
                    rows.append(await conn.fetchrow(query, *params))
                except asyncpg.UniqueViolationError as e:
                    raise StoreError(
                        f"Entry already exists for school {entry.school_id}, column {entry.column_id}"
                    ) from e
            for entry_id, changes in updates:
                query, params = _entry_update_statement([entry_id], changes)
                rows.extend(await conn.fetch(query, *params))

        logger.debug(f"Wrote {len(new_entries)} new and {len(updates)} changed entries in one transaction")
        return _to_models(DataEntry, rows)

    # Sector data entries
    async def get_sector_entry(
        self, sector_id: UUID, category_id: UUID, column_id: UUID
    ) -> Optional[SectorDataEntry]:
        row = await self._fetch_one(
            f"SELECT {SECTOR_ENTRY_COLUMNS} FROM public.sector_data_entries "
            "WHERE sector_id = $1 AND category_id = $2 AND column_id = $3",
            sector_id, category_id, column_id,
        )
        return _to_model(SectorDataEntry, row)

    async def list_sector_entries(
        self,
        sector_id: Optional[UUID] = None,
        category_id: Optional[UUID] = None,
        status: Optional[DataEntryStatus] = None,
    ) -> List[SectorDataEntry]:
        q = (
            QueryBuilder()
            .add_if("sector_id = {}", sector_id)
            .add_if("category_id = {}", category_id)
            .add_if("status = {}", status.value if status else None)
        )
        rows = await self._fetch(
            f"SELECT {SECTOR_ENTRY_COLUMNS} FROM public.sector_data_entries {q.where} ORDER BY created_at",
            *q.params,
        )
        return _to_models(SectorDataEntry, rows)

    async def insert_sector_entry(self, entry: SectorDataEntry) -> SectorDataEntry:
        query, params = _insert_statement("sector_data_entries", entry.model_dump())
        try:
            row = await self._fetch_one(query, *params)
        except asyncpg.UniqueViolationError as e:
            raise StoreError(
                f"Sector entry already exists for sector {entry.sector_id}, column {entry.column_id}"
            ) from e
        return _to_model(SectorDataEntry, row)

    async def update_sector_entries(
        self, entry_ids: List[UUID], changes: Dict[str, Any]
    ) -> List[SectorDataEntry]:
        check_update_fields(changes, SECTOR_ENTRY_UPDATE_FIELDS)
        if not entry_ids:
            return []
        query, params = _update_statement("sector_data_entries", entry_ids, changes)
        rows = await self._fetch(query, *params)
        return _to_models(SectorDataEntry, rows)

    # History and audit
    async def add_status_history(self, entry: StatusHistoryEntry) -> StatusHistoryEntry:
        query, params = _insert_statement("status_transition_log", entry.model_dump())
        row = await self._fetch_one(query, *params)
        return _to_model(StatusHistoryEntry, row)

    async def list_status_history(
        self, data_entry_id: Optional[str] = None, limit: int = 50
    ) -> List[StatusHistoryEntry]:
        q = QueryBuilder().add_if("data_entry_id = {}", data_entry_id)
        limit_param = q.param(limit)
        rows = await self._fetch(
            f"SELECT * FROM public.status_transition_log {q.where} "
            f"ORDER BY changed_at DESC LIMIT {limit_param}",
            *q.params,
        )
        return _to_models(StatusHistoryEntry, rows)

    async def add_audit_log(self, log: AuditLog) -> AuditLog:
        query, params = _insert_statement("audit_logs", log.model_dump())
        row = await self._fetch_one(query, *params)
        return _to_model(AuditLog, row)

    async def list_audit_logs(self, entity_id: Optional[str] = None, limit: int = 100) -> List[AuditLog]:
        q = QueryBuilder().add_if("entity_id = {}", entity_id)
        limit_param = q.param(limit)
        rows = await self._fetch(
            f"SELECT * FROM public.audit_logs {q.where} ORDER BY created_at DESC LIMIT {limit_param}",
            *q.params,
        )
        return _to_models(AuditLog, rows)

    async def audit_log_exists(self, entity_id: str, action: str, since: datetime) -> bool:
        row = await self._fetch_one(
            "SELECT 1 FROM public.audit_logs "
            "WHERE entity_id = $1 AND action = $2 AND created_at >= $3 LIMIT 1",
            entity_id, action, since,
        )
        return row is not None

    # Notifications
    async def insert_notifications(self, notifications: List[Notification]) -> int:
        if not notifications:
            return 0
        pool = await self._get_pool()
        async with pool.transaction() as conn:
            for notification in notifications:
                query, params = _insert_statement("notifications", notification.model_dump())
                await conn.execute(query.replace(" RETURNING *", ""), *params)
        return len(notifications)

    async def list_notifications(
        self, user_id: UUID, unread_only: bool = False, limit: int = 50
    ) -> List[Notification]:
        q = QueryBuilder().add("user_id = {}", user_id)
        if unread_only:
            q.raw("is_read = false")
        limit_param = q.param(limit)
        rows = await self._fetch(
            f"SELECT * FROM public.notifications {q.where} ORDER BY created_at DESC LIMIT {limit_param}",
            *q.params,
        )
        return _to_models(Notification, rows)

    async def count_unread(self, user_id: UUID) -> int:
        row = await self._fetch_one(
            "SELECT COUNT(*) AS unread FROM public.notifications WHERE user_id = $1 AND is_read = false",
            user_id,
        )
        return row['unread'] if row else 0

    async def mark_notifications_read(
        self, user_id: UUID, notification_ids: Optional[List[UUID]] = None
    ) -> int:
        q = QueryBuilder().add("user_id = {}", user_id).raw("is_read = false")
        if notification_ids is not None:
            q.add("id = ANY({}::uuid[])", list(notification_ids))
        status = await self._execute(f"UPDATE public.notifications SET is_read = true {q.where}", *q.params)
        return self._affected(status)

    async def notification_exists(
        self, related_entity_id: str, notification_type: str, since: datetime
    ) -> bool:
        row = await self._fetch_one(
            "SELECT 1 FROM public.notifications "
            "WHERE related_entity_id = $1 AND type = $2 AND created_at >= $3 LIMIT 1",
            related_entity_id, notification_type, since,
        )
        return row is not None

    async def delete_notifications_before(self, cutoff: datetime, read_only: bool = True) -> int:
        q = QueryBuilder().add("created_at < {}", cutoff)
        if read_only:
            q.raw("is_read = true")
        status = await self._execute(f"DELETE FROM public.notifications {q.where}", *q.params)
        return self._affected(status)

    async def get_notification_template(self, name: str) -> Optional[NotificationTemplate]:
        row = await self._fetch_one(
            "SELECT * FROM public.notification_templates WHERE name = $1 AND is_active = true",
            name,
        )
        return _to_model(NotificationTemplate, row)

    async def get_notification_preferences(self, user_id: UUID) -> Optional[NotificationPreferences]:
        row = await self._fetch_one(
            "SELECT * FROM public.user_notification_preferences WHERE user_id = $1",
            user_id,
        )
        return _to_model(NotificationPreferences, row)
