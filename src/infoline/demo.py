"""Demo hierarchy for the in-memory store."""

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Dict, List
from uuid import UUID, uuid4

from database import InMemoryDataStore
from models import (
    AppRole,
    Category,
    CategoryAssignment,
    Column,
    ColumnType,
    Profile,
    Region,
    School,
    Sector,
    UserRole,
    utcnow,
)


@dataclass
class DemoData:
    region_id: UUID
    sector_id: UUID
    school_ids: List[UUID]
    category_id: UUID
    sector_category_id: UUID
    column_ids: Dict[str, UUID] = field(default_factory=dict)
    users: Dict[str, UUID] = field(default_factory=dict)


def _user(store: InMemoryDataStore, name: str, email: str, role: AppRole, **scope) -> UUID:
    profile = store.add_profile(Profile(id=uuid4(), full_name=name, email=email))
    store.add_user_role(UserRole(user_id=profile.id, role=role, **scope))
    return profile.id


def seed_demo_data(store: InMemoryDataStore) -> DemoData:
    """Seed one region, sector, two schools, a school category and a sector category."""
    region = store.add_region(Region(name="Baku"))
    sector = store.add_sector(Sector(name="Yasamal", region_id=region.id))
    schools = [
        store.add_school(School(name=f"School No. {n}", region_id=region.id, sector_id=sector.id))
        for n in (6, 23)
    ]

    category = store.add_category(Category(
        name="General information",
        assignment=CategoryAssignment.ALL,
        deadline=utcnow() + timedelta(days=3),
        priority=1,
    ))
    columns = {
        "students": store.add_column(Column(
            category_id=category.id,
            name="Number of students",
            type=ColumnType.NUMBER,
            is_required=True,
            validation={"min": 0, "max": 5000},
            order_index=1,
        )),
        "teachers": store.add_column(Column(
            category_id=category.id,
            name="Number of teachers",
            type=ColumnType.NUMBER,
            is_required=True,
            validation={"min": 0},
            order_index=2,
        )),
        "email": store.add_column(Column(
            category_id=category.id,
            name="Contact e-mail",
            type=ColumnType.EMAIL,
            order_index=3,
        )),
        "language": store.add_column(Column(
            category_id=category.id,
            name="Language of instruction",
            type=ColumnType.SELECT,
            options=["Azerbaijani", "Russian", "English"],
            order_index=4,
        )),
    }

    sector_category = store.add_category(Category(
        name="Sector resources",
        assignment=CategoryAssignment.SECTORS,
        priority=2,
    ))
    columns["methodists"] = store.add_column(Column(
        category_id=sector_category.id,
        name="Number of methodists",
        type=ColumnType.NUMBER,
        is_required=True,
        order_index=1,
    ))

    users = {
        "superadmin": _user(store, "Super Admin", "superadmin@infoline.edu.az", AppRole.SUPERADMIN),
        "regionadmin": _user(
            store, "Region Admin", "region@infoline.edu.az", AppRole.REGIONADMIN, region_id=region.id
        ),
        "sectoradmin": _user(
            store, "Sector Admin", "sector@infoline.edu.az", AppRole.SECTORADMIN,
            region_id=region.id, sector_id=sector.id,
        ),
    }
    for i, school in enumerate(schools, start=1):
        users[f"schooladmin{i}"] = _user(
            store, f"School Admin {i}", f"school{i}@infoline.edu.az", AppRole.SCHOOLADMIN,
            region_id=region.id, sector_id=sector.id, school_id=school.id,
        )

    return DemoData(
        region_id=region.id,
        sector_id=sector.id,
        school_ids=[s.id for s in schools],
        category_id=category.id,
        sector_category_id=sector_category.id,
        column_ids={key: column.id for key, column in columns.items()},
        users=users,
    )
