"""
Role-scoped statistics and dashboard summaries.

Both count the data entries of the schools a user may read: a super admin
sees every school, a region or sector admin the schools of their region or
sector, a school admin only their own school (dashboard only). Rates are
integer percentages; a school's rate is its share of approved entries.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Dict, List, Optional
from uuid import UUID

from database import DataStore
from models import AppRole, DataEntry, DataEntryStatus, School, UserScope, utcnow
from models.utils import calculate_percentage

from .access import get_sector_or_404, list_accessible_schools
from .errors import PermissionDeniedError


logger = logging.getLogger(__name__)

TIME_SERIES_DAYS = 30


@dataclass
class StatisticsFilters:
    region_id: Optional[UUID] = None
    sector_id: Optional[UUID] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


@dataclass
class FormsByStatus:
    draft: int = 0
    pending: int = 0
    approved: int = 0
    rejected: int = 0
    total: int = 0


@dataclass
class SchoolPerformance:
    id: UUID
    name: str
    completion_rate: int
    total_forms: int
    completed_forms: int


@dataclass
class SectorPerformance:
    id: UUID
    name: str
    school_count: int
    average_completion: int


@dataclass
class RegionPerformance:
    id: UUID
    name: str
    sector_count: int
    school_count: int
    average_completion: int


@dataclass
class DailyActivity:
    date: date
    submissions: int = 0
    approvals: int = 0


@dataclass
class Statistics:
    total_schools: int = 0
    total_sectors: int = 0
    total_regions: int = 0
    completion_rate: int = 0
    approval_rate: int = 0
    forms_by_status: FormsByStatus = field(default_factory=FormsByStatus)
    school_performance: List[SchoolPerformance] = field(default_factory=list)
    sector_performance: List[SectorPerformance] = field(default_factory=list)
    region_performance: List[RegionPerformance] = field(default_factory=list)
    time_series: List[DailyActivity] = field(default_factory=list)


@dataclass
class EntryStats:
    total_entries: int = 0
    approved_entries: int = 0
    pending_entries: int = 0
    rejected_entries: int = 0
    draft_entries: int = 0
    completion_rate: int = 0
    approval_rate: int = 0
    pending_schools: int = 0


@dataclass
class DashboardSummary:
    role: AppRole
    total_regions: int = 0
    total_sectors: int = 0
    total_schools: int = 0
    total_categories: Optional[int] = None
    stats: EntryStats = field(default_factory=EntryStats)


def count_by_status(entries: List[DataEntry]) -> FormsByStatus:
    counts = FormsByStatus(total=len(entries))
    for entry in entries:
        status = DataEntryStatus(entry.status).value
        setattr(counts, status, getattr(counts, status) + 1)
    return counts


def approval_rate(counts: FormsByStatus) -> int:
    """Approved share of the reviewed (approved or rejected) entries."""
    return calculate_percentage(counts.approved, counts.approved + counts.rejected)


def daily_activity(entries: List[DataEntry], start: datetime, end: datetime) -> List[DailyActivity]:
    """Entries created per day between start and end, and how many of them are approved."""
    days: Dict[date, DailyActivity] = {}
    for entry in entries:
        if not start <= entry.created_at <= end:
            continue
        day = entry.created_at.date()
        activity = days.setdefault(day, DailyActivity(date=day))
        activity.submissions += 1
        if entry.status == DataEntryStatus.APPROVED:
            activity.approvals += 1
    return [days[day] for day in sorted(days)]


def _mean(rates: List[int]) -> int:
    return calculate_percentage(sum(rates), 100 * len(rates))


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class StatisticsService:
    """Statistics for approvers and dashboard summaries for every role."""

    def __init__(self, store: DataStore):
        self.store = store

    async def _check_filters(self, actor: UserScope, filters: StatisticsFilters) -> None:
        perms = actor.permissions
        if filters.region_id is not None and not perms.is_superadmin and filters.region_id not in perms.region_ids:
            raise PermissionDeniedError(f"No access to region {filters.region_id}")
        if filters.sector_id is not None:
            sector = await get_sector_or_404(self.store, filters.sector_id)
            if not actor.can_manage_sector(sector.id, sector.region_id):
                raise PermissionDeniedError(f"No access to sector {filters.sector_id}")

    async def _entries_of(self, schools: List[School]) -> List[DataEntry]:
        if not schools:
            return []
        return await self.store.list_entries(school_ids=[s.id for s in schools])

    async def get_statistics(
        self,
        actor: UserScope,
        filters: Optional[StatisticsFilters] = None,
    ) -> Statistics:
        """
        Counts, rates and per-school/sector/region performance over the actor's scope.

        start_date/end_date narrow the entries by creation time; the daily
        series covers the last 30 days when no range is given.

        Raises:
            PermissionDeniedError: for school admins and out-of-scope filters
        """
        filters = filters or StatisticsFilters()
        filters.start_date, filters.end_date = _aware(filters.start_date), _aware(filters.end_date)
        if not actor.is_approver:
            raise PermissionDeniedError("Statistics are available to administrators only")
        await self._check_filters(actor, filters)

        schools = await list_accessible_schools(
            self.store, actor, region_id=filters.region_id, sector_id=filters.sector_id
        )
        entries = [
            e for e in await self._entries_of(schools)
            if (filters.start_date is None or e.created_at >= filters.start_date)
            and (filters.end_date is None or e.created_at <= filters.end_date)
        ]

        by_school: Dict[UUID, List[DataEntry]] = defaultdict(list)
        for entry in entries:
            by_school[entry.school_id].append(entry)

        school_performance = []
        for school in schools:
            counts = count_by_status(by_school[school.id])
            school_performance.append(SchoolPerformance(
                id=school.id,
                name=school.name,
                completion_rate=calculate_percentage(counts.approved, counts.total),
                total_forms=counts.total,
                completed_forms=counts.approved,
            ))
        rate_of = {p.id: p.completion_rate for p in school_performance}

        sector_ids = {s.sector_id for s in schools}
        region_ids = {s.region_id for s in schools}
        sectors = [s for s in await self.store.list_sectors() if s.id in sector_ids]
        regions = [r for r in await self.store.list_regions() if r.id in region_ids]

        sector_performance = []
        for sector in sectors:
            rates = [rate_of[s.id] for s in schools if s.sector_id == sector.id]
            sector_performance.append(SectorPerformance(
                id=sector.id,
                name=sector.name,
                school_count=len(rates),
                average_completion=_mean(rates),
            ))

        region_performance = []
        for region in regions:
            rates = [rate_of[s.id] for s in schools if s.region_id == region.id]
            region_performance.append(RegionPerformance(
                id=region.id,
                name=region.name,
                sector_count=sum(1 for s in sectors if s.region_id == region.id),
                school_count=len(rates),
                average_completion=_mean(rates),
            ))

        end = filters.end_date or utcnow()
        start = filters.start_date or end - timedelta(days=TIME_SERIES_DAYS)
        counts = count_by_status(entries)

        logger.debug(f"Statistics for {actor.user_id}: {len(schools)} schools, {counts.total} entries")
        return Statistics(
            total_schools=len(schools),
            total_sectors=len(sectors),
            total_regions=len(regions),
            completion_rate=calculate_percentage(counts.approved, counts.total),
            approval_rate=approval_rate(counts),
            forms_by_status=counts,
            school_performance=school_performance,
            sector_performance=sector_performance,
            region_performance=region_performance,
            time_series=daily_activity(entries, start, end),
        )

    async def get_dashboard(self, actor: UserScope) -> DashboardSummary:
        """Summary for the actor's primary role; school admins see their own school."""
        role = actor.primary_role
        if role is None:
            raise PermissionDeniedError("User has no roles")

        schools = await list_accessible_schools(self.store, actor)
        entries = await self._entries_of(schools)
        counts = count_by_status(entries)

        summary = DashboardSummary(
            role=role,
            total_regions=len({s.region_id for s in schools}),
            total_sectors=len({s.sector_id for s in schools}),
            total_schools=len(schools),
            stats=EntryStats(
                total_entries=counts.total,
                approved_entries=counts.approved,
                pending_entries=counts.pending,
                rejected_entries=counts.rejected,
                draft_entries=counts.draft,
                completion_rate=calculate_percentage(counts.approved, counts.total),
                approval_rate=approval_rate(counts),
                pending_schools=len({e.school_id for e in entries if e.status == DataEntryStatus.PENDING}),
            ),
        )
        if role == AppRole.SUPERADMIN:
            summary.total_regions = len(await self.store.list_regions())
            summary.total_sectors = len(await self.store.list_sectors())
        elif role == AppRole.SCHOOLADMIN:
            summary.total_categories = sum(1 for c in await self.store.list_categories() if c.for_schools)
        return summary
