"""
Completion statistics for schools, sectors and regions.

A column counts as filled when its entry holds a non-empty value; rates are
integer percentages. Sector and region rates are the mean of their schools'
rates.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional
from uuid import UUID

from database import DataStore, InfoLineCache
from models import Column, DataEntry, DataEntryStatus, aggregate_status
from models.utils import calculate_percentage, is_empty_value

from .errors import NotFoundError


logger = logging.getLogger(__name__)


@dataclass
class CompletionStats:
    """Completion of one set of columns."""
    total_columns: int = 0
    required_columns: int = 0
    filled_columns: int = 0
    filled_required: int = 0
    completion_rate: int = 0
    required_completion_rate: int = 0
    status_counts: Dict[str, int] = field(default_factory=dict)
    status: DataEntryStatus = DataEntryStatus.DRAFT

    @property
    def is_complete(self) -> bool:
        return self.total_columns > 0 and self.filled_columns == self.total_columns


@dataclass
class CategoryCompletion:
    category_id: UUID
    category_name: str
    deadline: Optional[datetime]
    stats: CompletionStats


@dataclass
class SchoolCompletion:
    school_id: UUID
    school_name: str
    completion_rate: int
    total_columns: int
    filled_columns: int
    categories: List[CategoryCompletion] = field(default_factory=list)
    status_counts: Dict[str, int] = field(default_factory=dict)


@dataclass
class AggregateCompletion:
    """Completion of a sector or region."""
    entity_id: UUID
    entity_type: str
    school_count: int
    completion_rate: int
    approved: int = 0
    pending: int = 0
    rejected: int = 0
    draft: int = 0
    schools: List[SchoolCompletion] = field(default_factory=list)


def _empty_status_counts() -> Dict[str, int]:
    return {status.value: 0 for status in DataEntryStatus}


def calculate_completion(columns: Iterable[Column], entries: Iterable[DataEntry]) -> CompletionStats:
    """
    Compute completion of columns from their entries.

    Entries of columns not in columns are ignored.
    """
    columns = list(columns)
    column_ids = {c.id for c in columns}
    relevant = [e for e in entries if e.column_id in column_ids]

    filled_ids = {e.column_id for e in relevant if not is_empty_value(e.value)}
    required = [c for c in columns if c.is_required]
    filled_required = sum(1 for c in required if c.id in filled_ids)

    counts = _empty_status_counts()
    for entry in relevant:
        counts[DataEntryStatus(entry.status).value] += 1

    return CompletionStats(
        total_columns=len(columns),
        required_columns=len(required),
        filled_columns=len(filled_ids),
        filled_required=filled_required,
        completion_rate=calculate_percentage(len(filled_ids), len(columns)),
        required_completion_rate=calculate_percentage(filled_required, len(required)),
        status_counts=counts,
        status=aggregate_status(e.status for e in relevant),
    )


class CompletionService:
    """Computes and caches completion for the hierarchy."""

    def __init__(self, store: DataStore, cache: Optional[InfoLineCache] = None):
        self.store = store
        self.cache = cache

    async def category_completion(self, school_id: UUID, category_id: UUID) -> CompletionStats:
        if self.cache is not None:
            cached = await self.cache.get_category_completion(school_id, category_id)
            if cached is not None:
                return cached

        columns = await self.store.list_columns(category_id)
        entries = await self.store.list_entries(school_id=school_id, category_id=category_id)
        stats = calculate_completion(columns, entries)

        if self.cache is not None:
            await self.cache.set_category_completion(school_id, category_id, stats)
        return stats

    async def school_completion(self, school_id: UUID) -> SchoolCompletion:
        """Completion across every active category filled in by schools."""
        if self.cache is not None:
            cached = await self.cache.get_school_completion(school_id)
            if cached is not None:
                return cached

        school = await self.store.get_school(school_id)
        if school is None:
            raise NotFoundError(f"School {school_id} not found")

        categories = [c for c in await self.store.list_categories() if c.for_schools]
        result = SchoolCompletion(
            school_id=school.id,
            school_name=school.name,
            completion_rate=0,
            total_columns=0,
            filled_columns=0,
            status_counts=_empty_status_counts(),
        )

        for category in categories:
            stats = await self.category_completion(school.id, category.id)
            result.categories.append(CategoryCompletion(
                category_id=category.id,
                category_name=category.name,
                deadline=category.deadline,
                stats=stats,
            ))
            result.total_columns += stats.total_columns
            result.filled_columns += stats.filled_columns
            for status, count in stats.status_counts.items():
                result.status_counts[status] += count

        result.completion_rate = calculate_percentage(result.filled_columns, result.total_columns)

        if self.cache is not None:
            await self.cache.set_school_completion(school_id, result)
        return result

    async def _aggregate(self, entity_id: UUID, entity_type: str, schools) -> AggregateCompletion:
        aggregate = AggregateCompletion(
            entity_id=entity_id,
            entity_type=entity_type,
            school_count=len(schools),
            completion_rate=0,
        )
        for school in schools:
            completion = await self.school_completion(school.id)
            aggregate.schools.append(completion)
            aggregate.approved += completion.status_counts[DataEntryStatus.APPROVED.value]
            aggregate.pending += completion.status_counts[DataEntryStatus.PENDING.value]
            aggregate.rejected += completion.status_counts[DataEntryStatus.REJECTED.value]
            aggregate.draft += completion.status_counts[DataEntryStatus.DRAFT.value]

        rates = sum(s.completion_rate for s in aggregate.schools)
        aggregate.completion_rate = calculate_percentage(rates, 100 * len(schools))
        return aggregate

    async def sector_completion(self, sector_id: UUID) -> AggregateCompletion:
        if await self.store.get_sector(sector_id) is None:
            raise NotFoundError(f"Sector {sector_id} not found")
        schools = await self.store.list_schools(sector_id=sector_id)
        return await self._aggregate(sector_id, "sector", schools)

    async def region_completion(self, region_id: UUID) -> AggregateCompletion:
        if await self.store.get_region(region_id) is None:
            raise NotFoundError(f"Region {region_id} not found")
        schools = await self.store.list_schools(region_id=region_id)
        return await self._aggregate(region_id, "region", schools)
