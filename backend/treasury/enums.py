"""
String enumerations shared by models, schemas and services.

Columns store the plain ``.value``; ``str`` mixins keep comparisons against
values loaded from the database working.
"""

from __future__ import annotations

from enum import Enum


class MovementType(str, Enum):
    INCOME = "INCOME"
    EXPENSE = "EXPENSE"
    TRANSFER = "TRANSFER"
    DISTRIBUTION = "DISTRIBUTION"


class MovementStatus(str, Enum):
    """Lifecycle states. ``CANCELLED`` is reserved: nothing transitions into it."""

    DRAFT = "DRAFT"
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


class HistoryAction(str, Enum):
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    EDITED = "EDITED"
    COMMENT = "COMMENT"
    CATEGORIZED = "CATEGORIZED"
    SPLIT = "SPLIT"
    UNSPLIT = "UNSPLIT"


class AreaRole(str, Enum):
    MEMBER = "MEMBER"
    MANAGER = "MANAGER"
    ADMIN = "ADMIN"


MANAGER_ROLES = (AreaRole.MANAGER.value, AreaRole.ADMIN.value)
