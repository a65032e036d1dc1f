"""Leave service layer — catalog, balances, applications, reviews.

Business logic:
  - Leave-type catalog reads (catalog order) and admin maintenance
  - Yearly balance derivation: available = allocated - used
  - Monthly accrual view with capped carry-forward
  - Additional WFH unlocked only after the regular WFH quota runs out
  - Application submission with eligibility check and approver review
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from timeloo.common.audit import create_audit_entry
from timeloo.common.cache import QueryCache
from timeloo.common.constants import (
    ADDITIONAL_WORK_FROM_HOME,
    COMBINED_WFH_ANNUAL_CAP,
    FALLBACK_LEAVE_LABEL,
    LEAVE_TYPES,
    WORK_FROM_HOME,
    DurationType,
    LeaveStatus,
)
from timeloo.common.exceptions import (
    ConflictError,
    NotFoundException,
    QueryFailedException,
    ValidationException,
)
from timeloo.common.pagination import PaginationMeta, PaginationParams, paginate
from timeloo.leave.catalog import DEFAULT_LEAVE_TYPES
from timeloo.leave.models import LeaveApplication, LeaveBalance, LeaveType
from timeloo.leave.schemas import (
    AdditionalWFHBalanceOut,
    BalanceOut,
    BalanceUpsertRequest,
    LeaveApplicationCreate,
    LeaveApplicationOut,
    LeaveTypeCreate,
    LeaveTypeOut,
    LeaveTypeUpdate,
    MonthlyBalanceOut,
)
from timeloo.notifications.service import NotificationService

logger = logging.getLogger(__name__)

# Statuses that consume a monthly quota
_COUNTED_STATUSES = (LeaveStatus.approved, LeaveStatus.pending)

_ZERO = Decimal("0")


@dataclass(frozen=True)
class ReviewOutcome:
    """Before/after snapshots of a reviewed application."""

    old: LeaveApplicationOut
    new: LeaveApplicationOut
    leave_type_label: str


def _month_bounds(year: int, month: int) -> tuple[date, date]:
    start = date(year, month, 1)
    end = date(year + 1, 1, 1) if month == 12 else date(year, month + 1, 1)
    return start, end


def _audit_value(value: object) -> object:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return str(value)
    return value


def _application_amount(app: LeaveApplication, duration_type: DurationType) -> Decimal:
    """Quota consumed by one application, in the type's unit."""
    if duration_type == DurationType.hours:
        return Decimal(app.hours_requested) if app.hours_requested else Decimal("1")
    if app.is_half_day:
        return Decimal("0.5")
    return Decimal((app.end_date - app.start_date).days + 1)


# ═════════════════════════════════════════════════════════════════════
# LeaveService
# ═════════════════════════════════════════════════════════════════════


class LeaveService:
    """Async leave operations: catalog, balances, applications, reviews."""

    # ─────────────────────────────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def _get_leave_type(db: AsyncSession, leave_type_id: uuid.UUID) -> LeaveType:
        leave_type = await db.get(LeaveType, leave_type_id)
        if leave_type is None:
            raise NotFoundException("LeaveType", leave_type_id)
        return leave_type

    @staticmethod
    async def _get_leave_type_by_label(
        db: AsyncSession,
        label: str,
    ) -> Optional[LeaveType]:
        result = await db.execute(select(LeaveType).where(LeaveType.label == label))
        return result.scalars().first()

    @staticmethod
    async def _counted_applications(
        db: AsyncSession,
        user_id: str,
        leave_type_id: uuid.UUID,
        start: date,
        end: date,
    ) -> Sequence[LeaveApplication]:
        """Approved and pending applications starting in [start, end)."""
        result = await db.execute(
            select(LeaveApplication).where(
                LeaveApplication.user_id == user_id,
                LeaveApplication.leave_type_id == leave_type_id,
                LeaveApplication.status.in_(_COUNTED_STATUSES),
                LeaveApplication.start_date >= start,
                LeaveApplication.start_date < end,
            )
        )
        return result.scalars().all()

    @staticmethod
    async def _used_between(
        db: AsyncSession,
        user_id: str,
        leave_type: LeaveType,
        start: date,
        end: date,
    ) -> Decimal:
        apps = await LeaveService._counted_applications(
            db, user_id, leave_type.id, start, end,
        )
        return sum(
            (_application_amount(a, leave_type.duration_type) for a in apps),
            _ZERO,
        )

    # ─────────────────────────────────────────────────────────────────
    # Leave Types
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def get_leave_types(
        db: AsyncSession,
        cache: Optional[QueryCache] = None,
        *,
        include_inactive: bool = False,
    ) -> list[LeaveTypeOut]:
        """List leave types in catalog order (sort_order, then creation)."""

        async def _load() -> list[LeaveTypeOut]:
            query = select(LeaveType).order_by(
                LeaveType.sort_order, LeaveType.created_at, LeaveType.label,
            )
            if not include_inactive:
                query = query.where(LeaveType.is_active.is_(True))
            try:
                result = await db.execute(query)
            except SQLAlchemyError as exc:
                logger.error("Error fetching leave types: %s", exc)
                raise QueryFailedException("Could not load leave types.") from exc
            return [LeaveTypeOut.model_validate(lt) for lt in result.scalars().all()]

        if cache is None:
            return await _load()
        return await cache.fetch((LEAVE_TYPES, include_inactive), _load)

    @staticmethod
    async def get_leave_type(db: AsyncSession, leave_type_id: uuid.UUID) -> LeaveTypeOut:
        return LeaveTypeOut.model_validate(
            await LeaveService._get_leave_type(db, leave_type_id)
        )

    @staticmethod
    async def get_leave_type_label(
        db: AsyncSession,
        leave_type_id: uuid.UUID,
    ) -> str:
        """Display label for a leave type, ``"Leave"`` when it cannot be found."""
        try:
            result = await db.execute(
                select(LeaveType.label).where(LeaveType.id == leave_type_id)
            )
            label = result.scalar_one_or_none()
        except SQLAlchemyError as exc:
            logger.warning("Could not resolve leave type %s: %s", leave_type_id, exc)
            return FALLBACK_LEAVE_LABEL
        return label or FALLBACK_LEAVE_LABEL

    @staticmethod
    async def create_leave_type(
        db: AsyncSession,
        data: LeaveTypeCreate,
        actor_id: str,
        cache: QueryCache,
    ) -> LeaveTypeOut:
        """Add a leave type; appended to the end of the catalog by default."""
        if await LeaveService._get_leave_type_by_label(db, data.label):
            raise ConflictError("label", data.label)

        payload = data.model_dump()
        if payload["sort_order"] is None:
            max_order = (
                await db.execute(select(func.max(LeaveType.sort_order)))
            ).scalar()
            payload["sort_order"] = (max_order or 0) + 1

        leave_type = LeaveType(**payload)
        db.add(leave_type)
        try:
            await db.flush()
        except IntegrityError as exc:
            raise ConflictError("label", data.label) from exc
        await db.refresh(leave_type)

        await create_audit_entry(
            db,
            action="create",
            entity_type="leave_type",
            entity_id=str(leave_type.id),
            actor_id=actor_id,
            new_values=data.model_dump(mode="json"),
        )
        cache.invalidate_after_commit(db, "upsert-leave-type")
        return LeaveTypeOut.model_validate(leave_type)

    @staticmethod
    async def update_leave_type(
        db: AsyncSession,
        leave_type_id: uuid.UUID,
        data: LeaveTypeUpdate,
        actor_id: str,
        cache: QueryCache,
    ) -> LeaveTypeOut:
        """Partially update a leave type."""
        leave_type = await LeaveService._get_leave_type(db, leave_type_id)
        changes = data.model_dump(exclude_unset=True)

        if "label" in changes and changes["label"] != leave_type.label:
            if await LeaveService._get_leave_type_by_label(db, changes["label"]):
                raise ConflictError("label", changes["label"])

        old_values = {
            field: _audit_value(getattr(leave_type, field)) for field in changes
        }
        for field, value in changes.items():
            setattr(leave_type, field, value)
        leave_type.updated_at = datetime.now(timezone.utc)
        await db.flush()
        await db.refresh(leave_type)

        await create_audit_entry(
            db,
            action="update",
            entity_type="leave_type",
            entity_id=str(leave_type.id),
            actor_id=actor_id,
            old_values=old_values,
            new_values=data.model_dump(mode="json", exclude_unset=True),
        )
        cache.invalidate_after_commit(db, "upsert-leave-type")
        return LeaveTypeOut.model_validate(leave_type)

    @staticmethod
    async def seed_leave_types(
        db: AsyncSession,
        cache: QueryCache,
    ) -> list[LeaveTypeOut]:
        """Insert the default catalog; existing labels are left untouched."""
        existing = set(
            (await db.execute(select(LeaveType.label))).scalars().all()
        )
        created = 0
        for order, entry in enumerate(DEFAULT_LEAVE_TYPES, start=1):
            if entry["label"] in existing:
                continue
            db.add(LeaveType(sort_order=order, **entry))
            created += 1
        if created:
            await db.flush()
            cache.invalidate_after_commit(db, "upsert-leave-type")
            logger.info("Seeded %d default leave types", created)
        return await LeaveService.get_leave_types(db)

    # ─────────────────────────────────────────────────────────────────
    # Balance
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def get_balance(
        db: AsyncSession,
        user_id: str,
        leave_type_id: uuid.UUID,
        year: Optional[int] = None,
    ) -> BalanceOut:
        """Yearly balance for one leave type.

        A missing row means the type was never allocated to the user, which
        reads as ``allocated = used = 0`` rather than an error.
        """
        year = year or date.today().year
        try:
            leave_type = await LeaveService._get_leave_type(db, leave_type_id)
            result = await db.execute(
                select(LeaveBalance).where(
                    LeaveBalance.user_id == user_id,
                    LeaveBalance.leave_type_id == leave_type_id,
                    LeaveBalance.year == year,
                )
            )
            row = result.scalars().first()
        except SQLAlchemyError as exc:
            logger.error("Error fetching leave balance: %s", exc)
            raise QueryFailedException("Failed to load balance") from exc

        allocated = Decimal(row.allocated) if row else _ZERO
        used = Decimal(row.used) if row else _ZERO
        available = allocated - used

        return BalanceOut(
            user_id=user_id,
            leave_type_id=leave_type_id,
            year=year,
            allocated=allocated,
            used=used,
            available=available,
            can_apply=available > 0 or leave_type.is_unlimited,
            is_unlimited=leave_type.is_unlimited,
        )

    @staticmethod
    async def get_effective_balance(
        db: AsyncSession,
        user_id: str,
        leave_type_id: uuid.UUID,
        year: Optional[int] = None,
    ) -> BalanceOut:
        """Balance as shown to the user.

        Additional WFH has no allocation of its own: it is measured against
        the combined WFH cap and only applicable while unlocked.
        """
        leave_type = await LeaveService._get_leave_type(db, leave_type_id)
        if leave_type.label != ADDITIONAL_WORK_FROM_HOME:
            return await LeaveService.get_balance(db, user_id, leave_type_id, year)

        year = year or date.today().year
        awfh = await LeaveService.get_additional_wfh_balance(
            db, user_id, leave_type_id, year=year,
        )
        allocated = Decimal(COMBINED_WFH_ANNUAL_CAP)
        return BalanceOut(
            user_id=user_id,
            leave_type_id=leave_type_id,
            year=year,
            allocated=allocated,
            used=awfh.combined_used_this_year,
            available=allocated - awfh.combined_used_this_year,
            can_apply=awfh.can_apply,
        )

    @staticmethod
    async def get_balances(
        db: AsyncSession,
        user_id: str,
        leave_types: Sequence[LeaveTypeOut],
        year: Optional[int] = None,
    ) -> dict[uuid.UUID, BalanceOut]:
        """Effective balances for every type of the catalog, keyed by type id."""
        return {
            lt.id: await LeaveService.get_effective_balance(db, user_id, lt.id, year)
            for lt in leave_types
        }

    @staticmethod
    async def upsert_balance(
        db: AsyncSession,
        data: BalanceUpsertRequest,
        actor_id: str,
        cache: QueryCache,
    ) -> BalanceOut:
        """Insert or overwrite the allocation row for (user, type, year)."""
        year = data.year or date.today().year
        await LeaveService._get_leave_type(db, data.leave_type_id)

        result = await db.execute(
            select(LeaveBalance).where(
                LeaveBalance.user_id == data.user_id,
                LeaveBalance.leave_type_id == data.leave_type_id,
                LeaveBalance.year == year,
            )
        )
        row = result.scalars().first()
        old_values = (
            {"allocated": str(row.allocated), "used": str(row.used)} if row else None
        )

        if row is None:
            row = LeaveBalance(
                user_id=data.user_id,
                leave_type_id=data.leave_type_id,
                year=year,
                allocated=data.allocated,
                used=data.used,
            )
            db.add(row)
        else:
            row.allocated = data.allocated
            row.used = data.used
            row.updated_at = datetime.now(timezone.utc)
        await db.flush()

        await create_audit_entry(
            db,
            action="upsert_balance",
            entity_type="leave_balance",
            entity_id=f"{data.user_id}:{data.leave_type_id}:{year}",
            actor_id=actor_id,
            old_values=old_values,
            new_values={"allocated": str(data.allocated), "used": str(data.used)},
        )
        cache.invalidate_after_commit(
            db, "upsert-balance", user_id=data.user_id, leave_type_id=data.leave_type_id,
        )
        return await LeaveService.get_balance(db, data.user_id, data.leave_type_id, year)

    @staticmethod
    async def get_monthly_balance(
        db: AsyncSession,
        user_id: str,
        leave_type_id: uuid.UUID,
        *,
        month: Optional[int] = None,
        year: Optional[int] = None,
    ) -> MonthlyBalanceOut:
        """Month-scoped balance.

        Usage counts approved and pending applications starting in the month.
        Types with a monthly allowance carry unused allowance from earlier
        months of the year forward, capped at ``carry_forward_limit``.  Types
        without one are measured against the annual allowance instead.
        """
        today = date.today()
        month = month or today.month
        year = year or today.year

        leave_type = await LeaveService._get_leave_type(db, leave_type_id)

        try:
            if leave_type.monthly_allowance is None:
                start, end = date(year, 1, 1), date(year + 1, 1, 1)
                used = await LeaveService._used_between(db, user_id, leave_type, start, end)
                allowance = Decimal(leave_type.annual_allowance)
                carried = _ZERO
            else:
                allowance = Decimal(leave_type.monthly_allowance)
                start, end = _month_bounds(year, month)
                used = await LeaveService._used_between(db, user_id, leave_type, start, end)

                carried = _ZERO
                if leave_type.carry_forward_limit > 0:
                    for earlier in range(1, month):
                        m_start, m_end = _month_bounds(year, earlier)
                        m_used = await LeaveService._used_between(
                            db, user_id, leave_type, m_start, m_end,
                        )
                        carried += max(allowance - m_used, _ZERO)
                    carried = min(carried, Decimal(leave_type.carry_forward_limit))
        except SQLAlchemyError as exc:
            logger.error("Error computing monthly balance: %s", exc)
            raise QueryFailedException("Failed to load balance") from exc

        return MonthlyBalanceOut(
            leave_type=leave_type.label,
            duration_type=leave_type.duration_type,
            monthly_allowance=allowance,
            used_this_month=used,
            remaining_this_month=max(allowance + carried - used, _ZERO),
            carried_forward=carried,
            annual_allowance=leave_type.annual_allowance,
        )

    @staticmethod
    async def get_additional_wfh_balance(
        db: AsyncSession,
        user_id: str,
        leave_type_id: uuid.UUID,
        *,
        month: Optional[int] = None,
        year: Optional[int] = None,
    ) -> AdditionalWFHBalanceOut:
        """Additional WFH opens once regular WFH is used up for the month,
        as long as WFH + Additional WFH stay under the annual cap."""
        today = date.today()
        month = month or today.month
        year = year or today.year

        awfh = await LeaveService._get_leave_type(db, leave_type_id)
        wfh = await LeaveService._get_leave_type_by_label(db, WORK_FROM_HOME)
        if wfh is None:
            logger.warning("No '%s' leave type configured", WORK_FROM_HOME)
            return AdditionalWFHBalanceOut()

        wfh_balance = await LeaveService.get_monthly_balance(
            db, user_id, wfh.id, month=month, year=year,
        )
        try:
            m_start, m_end = _month_bounds(year, month)
            used_this_month = await LeaveService._used_between(
                db, user_id, awfh, m_start, m_end,
            )
            y_start, y_end = date(year, 1, 1), date(year + 1, 1, 1)
            combined = (
                await LeaveService._used_between(db, user_id, wfh, y_start, y_end)
                + await LeaveService._used_between(db, user_id, awfh, y_start, y_end)
            )
        except SQLAlchemyError as exc:
            logger.error("Error checking WFH status: %s", exc)
            raise QueryFailedException("Failed to load balance") from exc

        wfh_remaining = wfh_balance.remaining_this_month
        return AdditionalWFHBalanceOut(
            used_this_month=used_this_month,
            can_apply=wfh_remaining <= 0 and combined < COMBINED_WFH_ANNUAL_CAP,
            wfh_remaining=wfh_remaining,
            combined_used_this_year=combined,
        )

    # ─────────────────────────────────────────────────────────────────
    # Applications
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def submit_application(
        db: AsyncSession,
        user_id: str,
        data: LeaveApplicationCreate,
        cache: QueryCache,
    ) -> LeaveApplicationOut:
        """Apply for leave after checking the applicable balance."""
        leave_type = await LeaveService._get_leave_type(db, data.leave_type_id)
        if not leave_type.is_active:
            raise ValidationException(
                {"leave_type_id": [f"{leave_type.label} is no longer offered."]}
            )

        draft = LeaveApplication(
            user_id=user_id,
            leave_type_id=leave_type.id,
            start_date=data.start_date,
            end_date=data.end_date,
            reason=data.reason,
            is_half_day=data.is_half_day,
            hours_requested=data.hours_requested,
        )
        requested = _application_amount(draft, leave_type.duration_type)
        month, year = data.start_date.month, data.start_date.year

        if leave_type.label == ADDITIONAL_WORK_FROM_HOME:
            awfh = await LeaveService.get_additional_wfh_balance(
                db, user_id, leave_type.id, month=month, year=year,
            )
            if not awfh.can_apply:
                raise ValidationException(
                    {"leave_type_id": [
                        "Additional Work From Home is available only after "
                        "regular Work From Home is used up for the month."
                    ]}
                )
            if awfh.combined_used_this_year + requested > COMBINED_WFH_ANNUAL_CAP:
                raise ValidationException(
                    {"end_date": [
                        f"WFH and Additional WFH together may not exceed "
                        f"{COMBINED_WFH_ANNUAL_CAP} days per year."
                    ]}
                )
        elif leave_type.monthly_allowance is not None:
            monthly = await LeaveService.get_monthly_balance(
                db, user_id, leave_type.id, month=month, year=year,
            )
            if requested > monthly.remaining_this_month:
                raise ValidationException(
                    {"leave_type_id": [
                        f"Insufficient {leave_type.label} balance: "
                        f"{monthly.remaining_this_month} {leave_type.duration_type.value} "
                        f"remaining this month."
                    ]}
                )
        elif not leave_type.is_unlimited:
            balance = await LeaveService.get_balance(db, user_id, leave_type.id, year)
            if requested > balance.available:
                raise ValidationException(
                    {"leave_type_id": [
                        f"Insufficient {leave_type.label} balance: "
                        f"{balance.available} available."
                    ]}
                )

        db.add(draft)
        await db.flush()
        await db.refresh(draft)

        cache.invalidate_after_commit(db, "submit-application", user_id=user_id)
        logger.info("Leave application %s submitted by %s", draft.id, user_id)
        return LeaveApplicationOut.model_validate(draft)

    @staticmethod
    async def list_applications(
        db: AsyncSession,
        pagination: PaginationParams,
        *,
        user_id: Optional[str] = None,
        status: Optional[LeaveStatus] = None,
    ) -> tuple[list[LeaveApplicationOut], PaginationMeta]:
        """Applications newest first, optionally for one user / status."""
        query = select(LeaveApplication).order_by(
            LeaveApplication.applied_at.desc(), LeaveApplication.start_date.desc(),
        )
        if user_id is not None:
            query = query.where(LeaveApplication.user_id == user_id)
        if status is not None:
            query = query.where(LeaveApplication.status == status)

        rows, meta = await paginate(db, query, pagination)
        return [LeaveApplicationOut.model_validate(r) for r in rows], meta

    @staticmethod
    async def review_application(
        db: AsyncSession,
        application_id: uuid.UUID,
        reviewer_id: str,
        status: LeaveStatus,
        cache: QueryCache,
    ) -> ReviewOutcome:
        """Approve or reject a pending application.

        Persists an in-app notification for the requester and an audit entry,
        and drops the requester's cached balances.  Publishing the change to
        live sessions is left to the caller.
        """
        application = await db.get(LeaveApplication, application_id)
        if application is None:
            raise NotFoundException("LeaveApplication", application_id)

        if application.status != LeaveStatus.pending:
            raise ValidationException(
                {"status": [f"Leave application is already {application.status.value}."]}
            )

        old = LeaveApplicationOut.model_validate(application)
        now = datetime.now(timezone.utc)

        application.status = status
        application.approved_by = reviewer_id
        application.approved_at = now

        if status == LeaveStatus.approved:
            result = await db.execute(
                select(LeaveBalance).where(
                    LeaveBalance.user_id == application.user_id,
                    LeaveBalance.leave_type_id == application.leave_type_id,
                    LeaveBalance.year == application.start_date.year,
                )
            )
            balance = result.scalars().first()
            if balance is not None:
                leave_type = await LeaveService._get_leave_type(db, application.leave_type_id)
                balance.used = Decimal(balance.used) + _application_amount(
                    application, leave_type.duration_type,
                )
                balance.updated_at = now

        await db.flush()
        new = LeaveApplicationOut.model_validate(application)

        await create_audit_entry(
            db,
            action="review",
            entity_type="leave_application",
            entity_id=str(application.id),
            actor_id=reviewer_id,
            old_values={"status": old.status.value},
            new_values={"status": status.value},
        )

        label = await LeaveService.get_leave_type_label(db, application.leave_type_id)
        await NotificationService.notify_leave_reviewed(db, new, label)

        cache.invalidate_after_commit(
            db, "review-application", user_id=application.user_id,
        )
        logger.info(
            "Leave application %s %s by %s", application.id, status.value, reviewer_id,
        )
        return ReviewOutcome(old=old, new=new, leave_type_label=label)
