"""
Status workflow rules for data entries.

    DRAFT ──────► PENDING ──────► APPROVED
      │              │               ▲
      │              ▼               │
      │          REJECTED ───────────┘
      │              │
      └──────────────┘ (rejected → draft)

Admins may also approve or reject a draft directly. The table below is pure
data; condition checks that need the database live in
services.transitions.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

from .database import AppRole, DataEntryStatus


APPROVER_ROLES = (AppRole.SECTORADMIN, AppRole.REGIONADMIN, AppRole.SUPERADMIN)
EDITOR_ROLES = (AppRole.SCHOOLADMIN,) + APPROVER_ROLES


class TransitionCondition(str, Enum):
    """Conditions a transition may require."""
    REQUIRED_FIELDS_FILLED = "all_required_fields_filled"
    IS_ENTRY_OWNER = "is_entry_owner"
    APPROVAL_PERMISSION = "valid_approval_permission"
    REJECTION_REASON = "rejection_reason_provided"


@dataclass(frozen=True)
class StatusTransition:
    """One allowed edge of the workflow graph."""
    from_status: DataEntryStatus
    to_status: DataEntryStatus
    required_roles: Tuple[AppRole, ...]
    conditions: Tuple[TransitionCondition, ...] = field(default_factory=tuple)
    description: str = ""


STATUS_TRANSITIONS: List[StatusTransition] = [
    StatusTransition(
        DataEntryStatus.DRAFT,
        DataEntryStatus.PENDING,
        (AppRole.SCHOOLADMIN,),
        (TransitionCondition.REQUIRED_FIELDS_FILLED, TransitionCondition.IS_ENTRY_OWNER),
        "Submit data for approval",
    ),
    StatusTransition(
        DataEntryStatus.DRAFT,
        DataEntryStatus.APPROVED,
        APPROVER_ROLES,
        (TransitionCondition.APPROVAL_PERMISSION,),
        "Approve data directly (admin)",
    ),
    StatusTransition(
        DataEntryStatus.DRAFT,
        DataEntryStatus.REJECTED,
        APPROVER_ROLES,
        (TransitionCondition.APPROVAL_PERMISSION, TransitionCondition.REJECTION_REASON),
        "Reject data directly (admin)",
    ),
    StatusTransition(
        DataEntryStatus.PENDING,
        DataEntryStatus.APPROVED,
        APPROVER_ROLES,
        (TransitionCondition.APPROVAL_PERMISSION,),
        "Approve submitted data",
    ),
    StatusTransition(
        DataEntryStatus.PENDING,
        DataEntryStatus.REJECTED,
        APPROVER_ROLES,
        (TransitionCondition.APPROVAL_PERMISSION, TransitionCondition.REJECTION_REASON),
        "Reject submitted data",
    ),
    StatusTransition(
        DataEntryStatus.REJECTED,
        DataEntryStatus.APPROVED,
        APPROVER_ROLES,
        (TransitionCondition.APPROVAL_PERMISSION,),
        "Approve previously rejected data",
    ),
    StatusTransition(
        DataEntryStatus.REJECTED,
        DataEntryStatus.DRAFT,
        (AppRole.SCHOOLADMIN,),
        (TransitionCondition.IS_ENTRY_OWNER,),
        "Return rejected data to draft for rework",
    ),
]

_TRANSITION_INDEX: Dict[Tuple[DataEntryStatus, DataEntryStatus], StatusTransition] = {
    (t.from_status, t.to_status): t for t in STATUS_TRANSITIONS
}

STATUS_COLORS = {
    DataEntryStatus.DRAFT: "gray",
    DataEntryStatus.PENDING: "blue",
    DataEntryStatus.APPROVED: "green",
    DataEntryStatus.REJECTED: "red",
}

STATUS_LABELS = {
    DataEntryStatus.DRAFT: "Draft",
    DataEntryStatus.PENDING: "Pending approval",
    DataEntryStatus.APPROVED: "Approved",
    DataEntryStatus.REJECTED: "Rejected",
}


def find_transition(
    from_status: DataEntryStatus,
    to_status: DataEntryStatus,
) -> Optional[StatusTransition]:
    """Look up the rule for a status pair, None if the move is not allowed."""
    return _TRANSITION_INDEX.get((DataEntryStatus(from_status), DataEntryStatus(to_status)))


def available_actions(current_status: DataEntryStatus, role: AppRole) -> List[DataEntryStatus]:
    """Target statuses the given role can move an entry to from current_status."""
    return [
        t.to_status
        for t in STATUS_TRANSITIONS
        if t.from_status == current_status and role in t.required_roles
    ]


def can_edit_with_status(
    current_status: Optional[DataEntryStatus],
    role: AppRole,
) -> Tuple[bool, Optional[str]]:
    """
    Check whether a value in the given status may be edited by role.

    Returns:
        (can_edit, reason) - reason is set when editing is refused
    """
    if current_status == DataEntryStatus.APPROVED:
        return False, "Approved data cannot be modified"

    if current_status == DataEntryStatus.PENDING and role not in APPROVER_ROLES:
        return False, "Pending data can only be modified by sector/region administrators"

    if role not in EDITOR_ROLES:
        return False, "Insufficient permissions to edit data"

    return True, None


def aggregate_status(statuses: Iterable[DataEntryStatus]) -> DataEntryStatus:
    """
    Collapse the statuses of a school's column entries into one category status.

    Rejected wins over pending, pending over draft; approved only when every
    entry is approved.
    """
    seen = {DataEntryStatus(s) for s in statuses}
    if not seen:
        return DataEntryStatus.DRAFT
    if DataEntryStatus.REJECTED in seen:
        return DataEntryStatus.REJECTED
    if DataEntryStatus.PENDING in seen:
        return DataEntryStatus.PENDING
    if seen == {DataEntryStatus.APPROVED}:
        return DataEntryStatus.APPROVED
    return DataEntryStatus.DRAFT


def get_status_color(status: DataEntryStatus) -> str:
    return STATUS_COLORS.get(status, "gray")
