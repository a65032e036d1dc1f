"""Common module — shared utilities for Timeloo."""

from timeloo.common.audit import AuditTrail, create_audit_entry
from timeloo.common.cache import INVALIDATION_GRAPH, QueryCache
from timeloo.common.constants import (
    DEFAULT_PAGE_SIZE,
    FALLBACK_LEAVE_LABEL,
    MAX_PAGE_SIZE,
    UNLIMITED_ALLOWANCE,
    DurationType,
    LeaveStatus,
    NotificationVariant,
    UserRole,
)
from timeloo.common.exceptions import (
    AppException,
    AuthenticationRequiredException,
    ConflictError,
    ForbiddenException,
    MalformedRequestException,
    NotFoundException,
    QueryFailedException,
    ValidationException,
    register_exception_handlers,
)
from timeloo.common.pagination import PaginationMeta, PaginationParams, paginate

__all__ = [
    # Audit
    "AuditTrail",
    "create_audit_entry",
    # Cache
    "INVALIDATION_GRAPH",
    "QueryCache",
    # Constants / Enums
    "DurationType",
    "LeaveStatus",
    "NotificationVariant",
    "UserRole",
    "DEFAULT_PAGE_SIZE",
    "FALLBACK_LEAVE_LABEL",
    "MAX_PAGE_SIZE",
    "UNLIMITED_ALLOWANCE",
    # Exceptions
    "AppException",
    "AuthenticationRequiredException",
    "ConflictError",
    "ForbiddenException",
    "MalformedRequestException",
    "NotFoundException",
    "QueryFailedException",
    "ValidationException",
    "register_exception_handlers",
    # Pagination
    "PaginationMeta",
    "PaginationParams",
    "paginate",
]
