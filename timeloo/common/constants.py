"""Enums and constants for Timeloo — matching the database ENUM types."""

from __future__ import annotations

import enum


# ── Roles ───────────────────────────────────────────────────────────

class UserRole(str, enum.Enum):
    admin = "admin"
    user = "user"


# ── Leave ───────────────────────────────────────────────────────────

class LeaveStatus(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"


class DurationType(str, enum.Enum):
    days = "days"
    hours = "hours"


# Sentinel annual allowance meaning "no quota"
UNLIMITED_ALLOWANCE = 999
UNLIMITED_LABEL = "Unlimited"

# Leave types with behaviour tied to their label
PAID_LEAVE = "Paid Leave"
ANNUAL_LEAVE = "Annual Leave"
SHORT_LEAVE = "Short Leave"
WORK_FROM_HOME = "Work From Home"
ADDITIONAL_WORK_FROM_HOME = "Additional Work From Home"

# WFH + Additional WFH may not exceed this many days per year
COMBINED_WFH_ANNUAL_CAP = 24


# ── Notifications ───────────────────────────────────────────────────

class NotificationVariant(str, enum.Enum):
    default = "default"
    destructive = "destructive"


FALLBACK_LEAVE_LABEL = "Leave"
TOAST_DURATION_MS = 10_000


# ── Query cache keys ────────────────────────────────────────────────

CURRENT_USER_ROLE = "current-user-role"
ALL_USERS_WITH_ROLES = "all-users-with-roles"
LEAVE_BALANCE = "leave-balance"
LEAVE_TYPES = "leave-types"


# ── Misc constants ──────────────────────────────────────────────────

MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 50
