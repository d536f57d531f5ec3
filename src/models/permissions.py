"""
Role-based permission models for data access control.

Handles scope definition for superadmins, region, sector and school admins
and determines which schools/sectors each user can read, edit and approve.
"""

from typing import Dict, List, Optional, Set
from uuid import UUID

from pydantic import BaseModel, Field

from .database import AppRole, School, UserRole
from .status import APPROVER_ROLES


# Higher rank wins when a user holds several roles
ROLE_RANK = {
    AppRole.SUPERADMIN: 4,
    AppRole.REGIONADMIN: 3,
    AppRole.SECTORADMIN: 2,
    AppRole.SCHOOLADMIN: 1,
}


class PermissionScope(BaseModel):
    """Defines which part of the hierarchy a user can access."""

    is_superadmin: bool = False
    region_ids: Set[UUID] = Field(default_factory=set)
    sector_ids: Set[UUID] = Field(default_factory=set)
    school_ids: Set[UUID] = Field(default_factory=set)


class UserScope(BaseModel):
    """Complete scope and permissions for a specific user."""

    user_id: UUID
    roles: List[AppRole] = []
    permissions: PermissionScope = Field(default_factory=PermissionScope)

    @classmethod
    def from_roles(cls, user_id: UUID, user_roles: List[UserRole]) -> "UserScope":
        """Create UserScope from the user's public.user_roles rows."""
        permissions = PermissionScope()
        roles: List[AppRole] = []

        for row in user_roles:
            if row.role not in roles:
                roles.append(row.role)

            if row.role == AppRole.SUPERADMIN:
                permissions.is_superadmin = True
            elif row.role == AppRole.REGIONADMIN and row.region_id:
                permissions.region_ids.add(row.region_id)
            elif row.role == AppRole.SECTORADMIN and row.sector_id:
                permissions.sector_ids.add(row.sector_id)
            elif row.role == AppRole.SCHOOLADMIN and row.school_id:
                permissions.school_ids.add(row.school_id)

        roles.sort(key=lambda r: ROLE_RANK[r], reverse=True)
        return cls(user_id=user_id, roles=roles, permissions=permissions)

    @property
    def primary_role(self) -> Optional[AppRole]:
        """Highest-ranked role, None for users without any role."""
        return self.roles[0] if self.roles else None

    @property
    def is_approver(self) -> bool:
        return any(role in APPROVER_ROLES for role in self.roles)

    def has_role(self, role: AppRole) -> bool:
        return role in self.roles

    def can_access_school(self, school: School) -> bool:
        """Check if user can read a school's data."""
        perms = self.permissions
        if perms.is_superadmin:
            return True
        return (
            school.region_id in perms.region_ids
            or school.sector_id in perms.sector_ids
            or school.id in perms.school_ids
        )

    def can_approve_school(self, school: School) -> bool:
        """Check if user may approve or reject data of a school."""
        perms = self.permissions
        if perms.is_superadmin:
            return True
        return school.region_id in perms.region_ids or school.sector_id in perms.sector_ids

    def owns_school(self, school_id: UUID) -> bool:
        """True for the school's own school admin."""
        return school_id in self.permissions.school_ids

    def can_manage_sector(self, sector_id: UUID, region_id: Optional[UUID] = None) -> bool:
        """Check if user may enter sector-level data for a sector."""
        perms = self.permissions
        if perms.is_superadmin:
            return True
        if sector_id in perms.sector_ids:
            return True
        return region_id is not None and region_id in perms.region_ids

    def role_for_school(self, school: School) -> Optional[AppRole]:
        """
        The role the user acts in for a given school.

        A user holding a school role and an admin role elsewhere acts as
        school admin on their own school and as approver on schools in scope.
        """
        perms = self.permissions
        if perms.is_superadmin:
            return AppRole.SUPERADMIN
        if school.region_id in perms.region_ids:
            return AppRole.REGIONADMIN
        if school.sector_id in perms.sector_ids:
            return AppRole.SECTORADMIN
        if school.id in perms.school_ids:
            return AppRole.SCHOOLADMIN
        return None

    def accessible_school_filter(self) -> Dict[str, List[UUID]]:
        """
        Get filter parameters restricting school queries to this user's scope.

        An empty dict means no restriction (superadmin).
        """
        perms = self.permissions
        if perms.is_superadmin:
            return {}
        return {
            "region_ids": sorted(perms.region_ids, key=str),
            "sector_ids": sorted(perms.sector_ids, key=str),
            "school_ids": sorted(perms.school_ids, key=str),
        }
