"""
School × column report.

One row per school the user may read, one cell per selected column holding
the school's entry for it. Rows are ordered by school name unless a column
to sort by is given.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from database import DataStore
from models import Column, DataEntryStatus, UserScope
from models.utils import is_empty_value

from .access import get_category_or_404, list_accessible_schools
from .errors import NotFoundError, PermissionDeniedError, ValidationError


logger = logging.getLogger(__name__)


@dataclass
class ReportCell:
    value: Optional[str] = None
    status: Optional[DataEntryStatus] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class SchoolColumnRow:
    school_id: UUID
    school_name: str
    region_name: str
    sector_name: str
    cells: Dict[UUID, ReportCell] = field(default_factory=dict)


@dataclass
class SchoolColumnReport:
    columns: List[Column] = field(default_factory=list)
    rows: List[SchoolColumnRow] = field(default_factory=list)


def _sort_key(value: Optional[str]) -> Tuple[int, Any]:
    """Empty values last, numbers before text and compared as numbers."""
    if is_empty_value(value):
        return (2, "")
    try:
        return (0, float(value))
    except ValueError:
        return (1, value.casefold())


def sort_rows(rows: List[SchoolColumnRow], column_id: UUID, descending: bool = False) -> List[SchoolColumnRow]:
    filled = [r for r in rows if not is_empty_value(r.cells[column_id].value)]
    empty = [r for r in rows if is_empty_value(r.cells[column_id].value)]
    filled.sort(key=lambda r: _sort_key(r.cells[column_id].value), reverse=descending)
    return filled + empty


class ReportService:

    def __init__(self, store: DataStore):
        self.store = store

    async def _columns(self, column_ids: Optional[List[UUID]], category_id: Optional[UUID]) -> List[Column]:
        if category_id is not None:
            await get_category_or_404(self.store, category_id)
            columns = await self.store.list_columns(category_id)
            if column_ids:
                columns = [c for c in columns if c.id in set(column_ids)]
            return columns

        if not column_ids:
            raise ValidationError("Choose a category or at least one column")
        columns = []
        for column_id in column_ids:
            column = await self.store.get_column(column_id)
            if column is None or column.status != "active":
                raise NotFoundError(f"Column {column_id} not found")
            columns.append(column)
        return columns

    async def school_column_report(
        self,
        actor: UserScope,
        column_ids: Optional[List[UUID]] = None,
        category_id: Optional[UUID] = None,
        region_id: Optional[UUID] = None,
        sector_id: Optional[UUID] = None,
        search: Optional[str] = None,
        sort_column_id: Optional[UUID] = None,
        descending: bool = False,
    ) -> SchoolColumnReport:
        """
        Values of the selected columns for every school in the actor's scope.

        Columns are column_ids, or the active columns of category_id (narrowed
        to column_ids when both are given). search matches school names
        case-insensitively.

        Raises:
            PermissionDeniedError: for school admins
            ValidationError: if no column is selected or sort_column_id is not one of them
        """
        if not actor.is_approver:
            raise PermissionDeniedError("Reports are available to administrators only")

        columns = await self._columns(column_ids, category_id)
        if sort_column_id is not None and sort_column_id not in {c.id for c in columns}:
            raise ValidationError(f"Cannot sort by column {sort_column_id}: it is not in the report")

        schools = await list_accessible_schools(self.store, actor, region_id=region_id, sector_id=sector_id)
        if search and search.strip():
            needle = search.strip().casefold()
            schools = [s for s in schools if needle in s.name.casefold()]

        region_names = {r.id: r.name for r in await self.store.list_regions()}
        sector_names = {s.id: s.name for s in await self.store.list_sectors()}

        entries = {}
        if schools:
            school_ids = [s.id for s in schools]
            for column in columns:
                for entry in await self.store.list_entries(column_id=column.id, school_ids=school_ids):
                    entries[(entry.school_id, entry.column_id)] = entry

        rows = []
        for school in schools:
            row = SchoolColumnRow(
                school_id=school.id,
                school_name=school.name,
                region_name=region_names.get(school.region_id, ""),
                sector_name=sector_names.get(school.sector_id, ""),
            )
            for column in columns:
                entry = entries.get((school.id, column.id))
                if entry is None:
                    row.cells[column.id] = ReportCell()
                else:
                    row.cells[column.id] = ReportCell(
                        value=entry.value,
                        status=entry.status,
                        created_at=entry.created_at,
                        updated_at=entry.updated_at,
                    )
            rows.append(row)

        if sort_column_id is not None:
            rows = sort_rows(rows, sort_column_id, descending=descending)
        elif descending:
            rows.reverse()

        logger.debug(f"School column report for {actor.user_id}: {len(rows)} schools x {len(columns)} columns")
        return SchoolColumnReport(columns=columns, rows=rows)
