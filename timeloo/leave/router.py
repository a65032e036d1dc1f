"""Leave router — catalog, balances, selector, applications, reviews.

All endpoints require authentication. Catalog maintenance, balance
allocation and reviews are restricted to admins.
"""


import uuid
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from timeloo.auth.dependencies import get_current_user, get_query_cache, require_admin
from timeloo.auth.models import Profile
from timeloo.common.cache import QueryCache
from timeloo.common.constants import LeaveStatus, UserRole
from timeloo.common.exceptions import ForbiddenException
from timeloo.common.pagination import PaginationParams
from timeloo.database import get_db, run_after_commit
from timeloo.leave.balance_query import BalanceQuery
from timeloo.leave.presentation import build_balance_card
from timeloo.leave.schemas import (
    AdditionalWFHBalanceOut,
    BalanceCard,
    BalanceOut,
    BalanceUpsertRequest,
    LeaveApplicationCreate,
    LeaveApplicationListOut,
    LeaveApplicationOut,
    LeaveReviewRequest,
    LeaveTypeCreate,
    LeaveTypeOut,
    LeaveTypeUpdate,
    MonthlyBalanceOut,
    SelectorOut,
)
from timeloo.leave.selector import LeaveTypeSelector
from timeloo.leave.service import LeaveService
from timeloo.notifications.feed import ChangeFeed, LeaveApplicationChange, get_change_feed
from timeloo.roles.service import RoleService

router = APIRouter(prefix="", tags=["leave"])


# ═════════════════════════════════════════════════════════════════════
# Catalog
# ═════════════════════════════════════════════════════════════════════


@router.get("/types", response_model=list[LeaveTypeOut])
async def list_leave_types(
    include_inactive: bool = Query(False),
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    cache: QueryCache = Depends(get_query_cache),
):
    """Leave types in catalog order."""
    return await LeaveService.get_leave_types(db, cache, include_inactive=include_inactive)


@router.post("/types", response_model=LeaveTypeOut, status_code=status.HTTP_201_CREATED)
async def create_leave_type(
    body: LeaveTypeCreate,
    admin: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    cache: QueryCache = Depends(get_query_cache),
):
    return await LeaveService.create_leave_type(db, body, admin.id, cache)


# NOTE: registered before /types/{leave_type_id} so "seed" is not parsed as an id.
@router.post("/types/seed", response_model=list[LeaveTypeOut])
async def seed_leave_types(
    admin: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    cache: QueryCache = Depends(get_query_cache),
):
    """Insert the default leave catalog. Safe to call repeatedly."""
    return await LeaveService.seed_leave_types(db, cache)


@router.put("/types/{leave_type_id}", response_model=LeaveTypeOut)
async def update_leave_type(
    leave_type_id: uuid.UUID,
    body: LeaveTypeUpdate,
    admin: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    cache: QueryCache = Depends(get_query_cache),
):
    return await LeaveService.update_leave_type(db, leave_type_id, body, admin.id, cache)


# ═════════════════════════════════════════════════════════════════════
# Balances
# ═════════════════════════════════════════════════════════════════════


@router.get("/selector", response_model=SelectorOut)
async def leave_type_selector(
    selected: Optional[uuid.UUID] = Query(None),
    year: Optional[int] = Query(None, ge=2000, le=2100),
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    cache: QueryCache = Depends(get_query_cache),
):
    """Catalog options for the caller with availability and selection."""
    leave_types = await LeaveService.get_leave_types(db, cache)
    balances = await LeaveService.get_balances(db, user.id, leave_types, year)
    return LeaveTypeSelector(leave_types, balances, selected).to_out()


@router.get("/balances/{leave_type_id}", response_model=BalanceCard)
async def balance_card(
    leave_type_id: uuid.UUID,
    year: Optional[int] = Query(None, ge=2000, le=2100),
    refresh: Optional[str] = Query(None, description="Change to force a re-fetch"),
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    cache: QueryCache = Depends(get_query_cache),
):
    """Balance card for one leave type (may be ``hidden``)."""
    leave_type = await LeaveService.get_leave_type(db, leave_type_id)
    query = BalanceQuery(
        cache,
        user.id,
        lambda lt_id, yr: LeaveService.get_effective_balance(db, user.id, lt_id, yr),
        year=year,
    )
    state = await query.load(leave_type_id, refresh)

    monthly = None
    if state.balance is not None and leave_type.monthly_allowance is not None:
        monthly = await LeaveService.get_monthly_balance(db, user.id, leave_type_id)
    return build_balance_card(state, leave_type, monthly=monthly)


@router.get("/balances/{leave_type_id}/monthly", response_model=MonthlyBalanceOut)
async def monthly_balance(
    leave_type_id: uuid.UUID,
    month: Optional[int] = Query(None, ge=1, le=12),
    year: Optional[int] = Query(None, ge=2000, le=2100),
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveService.get_monthly_balance(
        db, user.id, leave_type_id, month=month, year=year,
    )


@router.get("/additional-wfh/{leave_type_id}", response_model=AdditionalWFHBalanceOut)
async def additional_wfh_balance(
    leave_type_id: uuid.UUID,
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveService.get_additional_wfh_balance(db, user.id, leave_type_id)


@router.put("/balances", response_model=BalanceOut)
async def upsert_balance(
    body: BalanceUpsertRequest,
    admin: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    cache: QueryCache = Depends(get_query_cache),
):
    """Set a user's allocation for one leave type and year."""
    return await LeaveService.upsert_balance(db, body, admin.id, cache)


# ═════════════════════════════════════════════════════════════════════
# Applications
# ═════════════════════════════════════════════════════════════════════


@router.post(
    "/applications",
    response_model=LeaveApplicationOut,
    status_code=status.HTTP_201_CREATED,
)
async def submit_application(
    body: LeaveApplicationCreate,
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    cache: QueryCache = Depends(get_query_cache),
):
    """Apply for leave. Checks the balance that applies to the leave type."""
    return await LeaveService.submit_application(db, user.id, body, cache)


@router.get("/applications", response_model=LeaveApplicationListOut)
async def list_applications(
    scope: Literal["my", "all"] = Query("my"),
    status_filter: Optional[LeaveStatus] = Query(None, alias="status"),
    pagination: PaginationParams = Depends(),
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    cache: QueryCache = Depends(get_query_cache),
):
    """The caller's applications, or everyone's (``scope=all``, admins only)."""
    user_id: Optional[str] = user.id
    if scope == "all":
        role = await RoleService.get_current_role(db, user.id, cache)
        if role != UserRole.admin:
            raise ForbiddenException(detail="Only administrators can list all applications.")
        user_id = None

    data, meta = await LeaveService.list_applications(
        db, pagination, user_id=user_id, status=status_filter,
    )
    return LeaveApplicationListOut(data=data, meta=meta)


@router.put("/applications/{application_id}/review", response_model=LeaveApplicationOut)
async def review_application(
    application_id: uuid.UUID,
    body: LeaveReviewRequest,
    admin: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    cache: QueryCache = Depends(get_query_cache),
    feed: ChangeFeed = Depends(get_change_feed),
):
    """Approve or reject a pending application and notify the requester."""
    outcome = await LeaveService.review_application(
        db, application_id, admin.id, body.status, cache,
    )
    change = LeaveApplicationChange(old=outcome.old, new=outcome.new)
    run_after_commit(db, lambda: feed.publish(change))
    # Committed before returning; the change is published only once it sticks
    await db.commit()
    return outcome.new
