"""Deleting form columns."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

from database import DataStore, InfoLineCache
from models import AppRole, AuditLog, UserScope, utcnow

from .errors import NotFoundError, PermissionDeniedError, ValidationError


logger = logging.getLogger(__name__)

RESTORATION_DAYS = 30
DELETE_ACTION = "SOFT_DELETE_COLUMN"


@dataclass
class ColumnDeletion:
    column_id: UUID
    column_name: str
    deleted_at: datetime
    restoration_deadline: datetime
    deleted_entries: int
    sector_entries: int


def confirmation_phrase(column_name: str) -> str:
    return f"DELETE {column_name}"


class ColumnService:

    def __init__(self, store: DataStore, cache: Optional[InfoLineCache] = None):
        self.store = store
        self.cache = cache

    async def delete_column(self, actor: UserScope, column_id: UUID, confirmation: str) -> ColumnDeletion:
        """
        Soft-delete a column together with the schools' entries for it.

        The caller confirms by typing "DELETE <column name>". Sector entries
        of the column are counted and kept.

        Raises:
            PermissionDeniedError: unless the actor is a super or region admin
            NotFoundError: if the column does not exist
            ValidationError: on a wrong confirmation or an already deleted column
        """
        if not (actor.has_role(AppRole.SUPERADMIN) or actor.has_role(AppRole.REGIONADMIN)):
            raise PermissionDeniedError("Only super and region administrators can delete columns")

        column = await self.store.get_column(column_id)
        if column is None:
            raise NotFoundError(f"Column {column_id} not found")
        if column.status == "deleted":
            raise ValidationError(f"Column {column.name} is already deleted")

        expected = confirmation_phrase(column.name)
        if confirmation != expected:
            raise ValidationError(
                "Confirmation does not match",
                errors=[{"field": "confirmation", "expected": expected}],
                code="CONFIRMATION_MISMATCH",
            )

        sector_entries = [
            e for e in await self.store.list_sector_entries(category_id=column.category_id)
            if e.column_id == column.id
        ]
        now = utcnow()
        deleted = await self.store.soft_delete_column(column.id, now)
        result = ColumnDeletion(
            column_id=column.id,
            column_name=column.name,
            deleted_at=now,
            restoration_deadline=now + timedelta(days=RESTORATION_DAYS),
            deleted_entries=deleted,
            sector_entries=len(sector_entries),
        )
        logger.info(f"Column {column.name} ({column.id}) deleted by {actor.user_id}: {deleted} entries")

        try:
            await self.store.add_audit_log(AuditLog(
                user_id=actor.user_id,
                action=DELETE_ACTION,
                entity_type="column",
                entity_id=str(column.id),
                old_value={"name": column.name, "status": column.status, "category_id": str(column.category_id)},
                new_value={
                    "status": "deleted",
                    "deleted_entries": deleted,
                    "sector_entries": len(sector_entries),
                    "restoration_deadline": result.restoration_deadline.isoformat(),
                },
                created_at=now,
            ))
        except Exception as e:
            logger.error(f"Error writing audit log for {DELETE_ACTION}: {e}")

        if self.cache is not None:
            await self.cache.invalidate_category(column.category_id)
        return result
