"""Shared fixtures: an in-memory store with the demo hierarchy and users of every role."""

import sys
from pathlib import Path
from uuid import uuid4

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from database import InMemoryDataStore
from infoline.demo import seed_demo_data
from models import Profile, School, Sector, UserScope
from services import build_services


@pytest.fixture
def store():
    return InMemoryDataStore()


@pytest.fixture
def demo(store):
    """Region Baku, sector Yasamal, two schools, a school and a sector category."""
    return seed_demo_data(store)


@pytest.fixture
def services(store, demo):
    return build_services(store)


@pytest.fixture
def other_sector(store, demo):
    """A second sector of the same region, outside the sector admin's scope."""
    return store.add_sector(Sector(name="Nasimi", region_id=demo.region_id))


@pytest.fixture
def other_school(store, demo, other_sector):
    return store.add_school(School(name="School No. 189", region_id=demo.region_id, sector_id=other_sector.id))


@pytest.fixture
def school_id(demo):
    return demo.school_ids[0]


@pytest.fixture
def columns(demo):
    return demo.column_ids


def scope_for(store, user_id) -> UserScope:
    roles = [r for r in store.user_roles.values() if r.user_id == user_id]
    return UserScope.from_roles(user_id, roles)


@pytest.fixture
def superadmin(store, demo):
    return scope_for(store, demo.users["superadmin"])


@pytest.fixture
def regionadmin(store, demo):
    return scope_for(store, demo.users["regionadmin"])


@pytest.fixture
def sectoradmin(store, demo):
    return scope_for(store, demo.users["sectoradmin"])


@pytest.fixture
def schooladmin(store, demo):
    """School admin of demo.school_ids[0]."""
    return scope_for(store, demo.users["schooladmin1"])


@pytest.fixture
def other_schooladmin(store, demo):
    """School admin of demo.school_ids[1]."""
    return scope_for(store, demo.users["schooladmin2"])


@pytest.fixture
def no_role_user(store):
    profile = store.add_profile(Profile(id=uuid4(), full_name="Guest"))
    return UserScope(user_id=profile.id)


@pytest.fixture
def complete_values(columns):
    """A valid full set of values for the demo school category."""
    return {
        columns["students"]: 640,
        columns["teachers"]: 52,
        columns["email"]: "school6@edu.az",
        columns["language"]: "Azerbaijani",
    }


@pytest.fixture
def admin_of(store, demo):
    """School admin scope per demo school id."""
    return {
        demo.school_ids[0]: scope_for(store, demo.users["schooladmin1"]),
        demo.school_ids[1]: scope_for(store, demo.users["schooladmin2"]),
    }
