"""
API route handlers.

Every route except /health acts on behalf of the user named in the X-User-Id
header. Services raise InfoLineError subclasses; the handlers registered in
app.py turn them into HTTP errors.
"""

import logging
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from infoline import __version__
from models import (
    AppRole,
    DataEntry,
    Notification,
    SectorDataEntry,
    StatusHistoryEntry,
    UserScope,
)
from services import (
    BulkItem,
    InfoLineError,
    PermissionDeniedError,
    ServiceResponse,
    Services,
    StatisticsFilters,
    TransitionError,
    ValidationError,
    get_accessible_school,
    get_manageable_sector,
)

from .dependencies import get_current_user, get_services
from .schemas import (
    BulkApprovalIn,
    CategoryOut,
    CommentIn,
    DeleteColumnIn,
    HealthOut,
    MarkReadOut,
    NotificationCountOut,
    ProxyEntriesIn,
    RejectIn,
    SaveEntriesIn,
    SaveEntriesOut,
    SectorValueIn,
    TransitionOut,
)


logger = logging.getLogger(__name__)

router = APIRouter()


def _transition_out(response: ServiceResponse) -> TransitionOut:
    """Raise for a refused or failed transition, otherwise wrap the response."""
    if not response.success:
        if response.code is None:
            raise InfoLineError(response.error or response.message, code="STATUS_UPDATE_FAILED")
        raise TransitionError(response.error or response.message, code=response.code)
    return TransitionOut(
        success=True,
        status=response.status,
        message=response.message,
        affected=response.affected,
    )


@router.get("/health", response_model=HealthOut)
async def health_check() -> HealthOut:
    return HealthOut(version=__version__)


# Schools
@router.get("/schools/{school_id}/categories", response_model=List[CategoryOut])
async def list_school_categories(
    school_id: UUID,
    user: UserScope = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    """Categories the school fills in, with status, completion and next actions."""
    school = await get_accessible_school(services.store, user, school_id)

    result = []
    for item in await services.data_entry.get_categories_with_columns(school.id):
        category = item.category
        stats = await services.completion.category_completion(school.id, category.id)
        actions = await services.transitions.get_available_transitions(school, category, user)
        result.append(CategoryOut(
            id=category.id,
            name=category.name,
            description=category.description,
            assignment=category.assignment,
            deadline=category.deadline,
            status=stats.status,
            completion_rate=stats.completion_rate,
            available_actions=actions,
            columns=item.columns,
        ))
    return result


@router.get("/schools/{school_id}/categories/{category_id}/entries", response_model=List[DataEntry])
async def get_entries(
    school_id: UUID,
    category_id: UUID,
    user: UserScope = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return await services.data_entry.get_entries(school_id, category_id, actor=user)


@router.put("/schools/{school_id}/categories/{category_id}/entries", response_model=SaveEntriesOut)
async def save_entries(
    school_id: UUID,
    category_id: UUID,
    body: SaveEntriesIn,
    user: UserScope = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    result = await services.data_entry.save_entries(user, school_id, category_id, body.values)
    if not result.success:
        raise ValidationError(result.message, errors=result.errors)
    return SaveEntriesOut(success=True, saved_count=result.saved_count, message=result.message)


@router.put("/schools/{school_id}/categories/{category_id}/proxy-entries", response_model=SaveEntriesOut)
async def save_proxy_entries(
    school_id: UUID,
    category_id: UUID,
    body: ProxyEntriesIn,
    user: UserScope = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    """Enter a school's data on its behalf, optionally approving it right away."""
    result = await services.data_entry.save_proxy_entries(
        user, school_id, category_id, body.values, body.reason
    )
    if not result.success:
        raise ValidationError(result.message, errors=result.errors)

    message = result.message
    if body.auto_approve:
        approval = await services.data_entry.auto_approve_proxy(user, school_id, category_id)
        message = f"{message}; {approval.message}"
    return SaveEntriesOut(success=True, saved_count=result.saved_count, message=message)


@router.post("/schools/{school_id}/categories/{category_id}/submit", response_model=TransitionOut)
async def submit_category(
    school_id: UUID,
    category_id: UUID,
    user: UserScope = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    response = await services.data_entry.submit_category(user, school_id, category_id)
    return _transition_out(response)


@router.post("/schools/{school_id}/categories/{category_id}/approve", response_model=TransitionOut)
async def approve_category(
    school_id: UUID,
    category_id: UUID,
    body: Optional[CommentIn] = None,
    user: UserScope = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    comment = body.comment if body else None
    response = await services.approval.approve(user, school_id, category_id, comment=comment)
    return _transition_out(response)


@router.post("/schools/{school_id}/categories/{category_id}/reject", response_model=TransitionOut)
async def reject_category(
    school_id: UUID,
    category_id: UUID,
    body: RejectIn,
    user: UserScope = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    response = await services.approval.reject(user, school_id, category_id, body.reason)
    return _transition_out(response)


@router.get(
    "/schools/{school_id}/categories/{category_id}/history",
    response_model=List[StatusHistoryEntry],
)
async def get_history(
    school_id: UUID,
    category_id: UUID,
    limit: int = Query(50, ge=1, le=500),
    user: UserScope = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    await get_accessible_school(services.store, user, school_id)
    return await services.transitions.get_status_history(school_id, category_id, limit=limit)


@router.get("/schools/{school_id}/completion")
async def get_school_completion(
    school_id: UUID,
    user: UserScope = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    await get_accessible_school(services.store, user, school_id)
    return await services.completion.school_completion(school_id)


# Sectors and regions
@router.get("/sectors/{sector_id}/completion")
async def get_sector_completion(
    sector_id: UUID,
    user: UserScope = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    await get_manageable_sector(services.store, user, sector_id)
    return await services.completion.sector_completion(sector_id)


@router.get("/regions/{region_id}/completion")
async def get_region_completion(
    region_id: UUID,
    user: UserScope = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    perms = user.permissions
    if not perms.is_superadmin and region_id not in perms.region_ids:
        raise PermissionDeniedError(f"No access to region {region_id}")
    return await services.completion.region_completion(region_id)


@router.put(
    "/sectors/{sector_id}/categories/{category_id}/columns/{column_id}",
    response_model=SectorDataEntry,
)
async def save_sector_value(
    sector_id: UUID,
    category_id: UUID,
    column_id: UUID,
    body: SectorValueIn,
    user: UserScope = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return await services.data_entry.save_sector_entry(user, sector_id, category_id, column_id, body.value)


@router.get("/sectors/{sector_id}/entries", response_model=List[SectorDataEntry])
async def get_sector_entries(
    sector_id: UUID,
    category_id: Optional[UUID] = None,
    user: UserScope = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    await get_manageable_sector(services.store, user, sector_id)
    return await services.data_entry.get_sector_entries(sector_id, category_id)


# Approvals
@router.post("/approvals/bulk")
async def bulk_review(
    body: BulkApprovalIn,
    user: UserScope = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    """Approve or reject many school/sector categories; each item succeeds or fails on its own."""
    items = [BulkItem(category_id=i.category_id, entity_id=i.entity_id, type=i.type) for i in body.items]
    if body.action == "approve":
        return await services.approval.bulk_approve(user, items, comment=body.comment)
    return await services.approval.bulk_reject(user, items, body.reason or "")


@router.get("/approvals/pending")
async def pending_approvals(
    category_id: Optional[UUID] = None,
    sector_id: Optional[UUID] = None,
    user: UserScope = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return await services.approval.get_pending_approvals(user, category_id=category_id, sector_id=sector_id)


# Notifications
@router.get("/notifications", response_model=List[Notification])
async def list_notifications(
    unread_only: bool = False,
    limit: int = Query(50, ge=1, le=200),
    user: UserScope = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return await services.notifications.list_notifications(user.user_id, unread_only=unread_only, limit=limit)


@router.get("/notifications/unread-count", response_model=NotificationCountOut)
async def unread_count(
    user: UserScope = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return NotificationCountOut(unread=await services.notifications.unread_count(user.user_id))


@router.post("/notifications/read-all", response_model=MarkReadOut)
async def mark_all_read(
    user: UserScope = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return MarkReadOut(updated=await services.notifications.mark_all_read(user.user_id))


@router.post("/notifications/{notification_id}/read", response_model=MarkReadOut)
async def mark_read(
    notification_id: UUID,
    user: UserScope = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    updated = await services.notifications.mark_read(user.user_id, [notification_id])
    return MarkReadOut(updated=updated)


# Deadlines
@router.post("/deadlines/check")
async def check_deadlines(
    user: UserScope = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    if not user.has_role(AppRole.SUPERADMIN):
        raise PermissionDeniedError("Only super administrators can run the deadline check")
    return await services.deadlines.run()



# Statistics and reports
@router.get("/statistics")
async def get_statistics(
    region_id: Optional[UUID] = None,
    sector_id: Optional[UUID] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    user: UserScope = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    filters = StatisticsFilters(region_id=region_id, sector_id=sector_id, start_date=start_date, end_date=end_date)
    return await services.statistics.get_statistics(user, filters)


@router.get("/dashboard")
async def get_dashboard(
    user: UserScope = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return await services.statistics.get_dashboard(user)


@router.get("/reports/school-columns")
async def school_column_report(
    column_id: Optional[List[UUID]] = Query(None),
    category_id: Optional[UUID] = None,
    region_id: Optional[UUID] = None,
    sector_id: Optional[UUID] = None,
    search: Optional[str] = None,
    sort_column_id: Optional[UUID] = None,
    descending: bool = False,
    user: UserScope = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    """Repeat column_id to pick columns, or pass category_id for all of a category's columns."""
    return await services.reports.school_column_report(
        user,
        column_ids=column_id,
        category_id=category_id,
        region_id=region_id,
        sector_id=sector_id,
        search=search,
        sort_column_id=sort_column_id,
        descending=descending,
    )


# Columns
@router.delete("/columns/{column_id}")
async def delete_column(
    column_id: UUID,
    body: DeleteColumnIn,
    user: UserScope = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return await services.columns.delete_column(user, column_id, body.confirmation)
