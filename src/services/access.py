"""Loading users' scopes and the entities they act on."""

import logging
from typing import Dict, List, Optional
from uuid import UUID

from database import DataStore, InfoLineCache
from models import Category, School, Sector, UserScope

from .errors import NotFoundError, PermissionDeniedError


logger = logging.getLogger(__name__)


async def load_user_scope(
    store: DataStore,
    user_id: UUID,
    cache: Optional[InfoLineCache] = None,
) -> UserScope:
    """Build a UserScope from the user's role rows (cached under user_roles:{id})."""
    roles = None
    if cache is not None:
        roles = await cache.get_user_roles(user_id)

    if roles is None:
        roles = await store.get_user_roles(user_id)
        if cache is not None:
            await cache.set_user_roles(user_id, roles)

    return UserScope.from_roles(user_id, roles)


async def get_school_or_404(store: DataStore, school_id: UUID) -> School:
    school = await store.get_school(school_id)
    if school is None:
        raise NotFoundError(f"School {school_id} not found")
    return school


async def get_sector_or_404(store: DataStore, sector_id: UUID) -> Sector:
    sector = await store.get_sector(sector_id)
    if sector is None:
        raise NotFoundError(f"Sector {sector_id} not found")
    return sector


async def get_category_or_404(store: DataStore, category_id: UUID) -> Category:
    category = await store.get_category(category_id)
    if category is None:
        raise NotFoundError(f"Category {category_id} not found")
    return category


async def get_accessible_school(store: DataStore, user: UserScope, school_id: UUID) -> School:
    """Load a school and check the user may read it."""
    school = await get_school_or_404(store, school_id)
    if not user.can_access_school(school):
        logger.warning(f"User {user.user_id} denied access to school {school_id}")
        raise PermissionDeniedError(f"No access to school {school_id}")
    return school


async def get_manageable_sector(store: DataStore, user: UserScope, sector_id: UUID) -> Sector:
    sector = await get_sector_or_404(store, sector_id)
    if not user.can_manage_sector(sector.id, sector.region_id):
        logger.warning(f"User {user.user_id} denied access to sector {sector_id}")
        raise PermissionDeniedError(f"No access to sector {sector_id}")
    return sector


async def list_accessible_schools(
    store: DataStore,
    user: UserScope,
    region_id: Optional[UUID] = None,
    sector_id: Optional[UUID] = None,
) -> List[School]:
    """Active schools the user may read, optionally narrowed to a region or sector; ordered by name."""
    perms = user.permissions
    if perms.is_superadmin:
        return await store.list_schools(region_id=region_id, sector_id=sector_id)

    by_id: Dict[UUID, School] = {}
    for scoped_region_id in perms.region_ids:
        for school in await store.list_schools(region_id=scoped_region_id, sector_id=sector_id):
            by_id[school.id] = school
    for scoped_sector_id in perms.sector_ids:
        if sector_id is not None and scoped_sector_id != sector_id:
            continue
        for school in await store.list_schools(sector_id=scoped_sector_id):
            by_id[school.id] = school
    if perms.school_ids:
        for school in await store.list_schools(school_ids=list(perms.school_ids)):
            by_id[school.id] = school

    schools = [
        s for s in by_id.values()
        if (region_id is None or s.region_id == region_id)
        and (sector_id is None or s.sector_id == sector_id)
    ]
    return sorted(schools, key=lambda s: s.name)
