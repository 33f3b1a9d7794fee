"""Common module — shared utilities for the mess leave service."""

from mess_backend.common.audit import (
    ENTITY_LEAVE_REQUEST,
    ENTITY_OFF_DAY,
    AuditTrail,
    create_audit_entry,
    entity_history,
)
from mess_backend.common.clock import Clock, FixedClock, SystemClock, get_clock
from mess_backend.common.constants import (
    ALL_MEAL_TYPES,
    DATE_FORMAT,
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    LeaveStatus,
    MealType,
    MembershipStatus,
    OffDayKind,
    OffDayStatus,
    UserRole,
)
from mess_backend.common.exceptions import (
    AppException,
    ConflictError,
    ForbiddenException,
    InvalidTransitionError,
    LedgerError,
    NotFoundException,
    ValidationException,
    register_exception_handlers,
)
from mess_backend.common.pagination import (
    PaginatedResponse,
    PaginationMeta,
    PaginationParams,
    paginate,
)
from mess_backend.common.unit_of_work import UnitOfWork

__all__ = [
    # Audit
    "ENTITY_LEAVE_REQUEST",
    "ENTITY_OFF_DAY",
    "AuditTrail",
    "create_audit_entry",
    "entity_history",
    # Clock
    "Clock",
    "FixedClock",
    "SystemClock",
    "get_clock",
    # Constants / Enums
    "ALL_MEAL_TYPES",
    "LeaveStatus",
    "MealType",
    "MembershipStatus",
    "OffDayKind",
    "OffDayStatus",
    "UserRole",
    "DATE_FORMAT",
    "DEFAULT_PAGE_SIZE",
    "MAX_PAGE_SIZE",
    # Exceptions
    "AppException",
    "ConflictError",
    "ForbiddenException",
    "InvalidTransitionError",
    "LedgerError",
    "NotFoundException",
    "ValidationException",
    "register_exception_handlers",
    # Pagination
    "PaginatedResponse",
    "PaginationMeta",
    "PaginationParams",
    "paginate",
    # Unit of work
    "UnitOfWork",
]
