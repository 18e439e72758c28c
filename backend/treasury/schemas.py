from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator

from treasury import settings
from treasury.enums import AreaRole, HistoryAction, MovementStatus, MovementType


def _to_naive_utc(value: datetime) -> datetime:
    # Columns hold naive UTC, like datetime.utcnow() defaults
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


# Summaries embedded in movement payloads
class AreaSummary(BaseModel):
    id: int
    name: str
    code: str
    currency: str

    class Config:
        from_attributes = True


class DepartmentSummary(BaseModel):
    id: int
    name: str
    code: str

    class Config:
        from_attributes = True


class UserSummary(BaseModel):
    id: int
    name: str
    email: str

    class Config:
        from_attributes = True


class MovementOut(BaseModel):
    id: int
    area_id: int
    department_id: Optional[int] = None
    user_id: int
    type: MovementType
    status: MovementStatus
    amount: int  # minor units
    currency: str
    description: str
    category: Optional[str] = None
    reference: Optional[str] = None
    transaction_date: datetime
    source_bank_account_id: Optional[int] = None
    destination_bank_account_id: Optional[int] = None
    is_internal_transfer: bool = False
    parent_id: Optional[int] = None
    is_split_parent: bool = False
    import_job_id: Optional[int] = None
    approved_by_user_id: Optional[int] = None
    approved_at: Optional[datetime] = None
    rejected_by_user_id: Optional[int] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    needs_categorization: bool
    created_at: datetime
    updated_at: Optional[datetime] = None
    area: Optional[AreaSummary] = None
    department: Optional[DepartmentSummary] = None

    class Config:
        from_attributes = True


class MovementCreate(BaseModel):
    area_id: int
    department_id: Optional[int] = None
    source_bank_account_id: Optional[int] = None
    destination_bank_account_id: Optional[int] = None
    type: MovementType
    amount: int = Field(gt=0, le=settings.MAX_AMOUNT, strict=True)  # minor units, floats rejected
    currency: str = Field(default=settings.DEFAULT_CURRENCY, min_length=3, max_length=3)
    description: str = Field(min_length=1, max_length=500)
    category: Optional[str] = Field(default=None, max_length=100)
    reference: Optional[str] = Field(default=None, max_length=200)
    transaction_date: datetime

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, value: str) -> str:
        return value.upper()

    @field_validator("transaction_date")
    @classmethod
    def _naive_date(cls, value: datetime) -> datetime:
        return _to_naive_utc(value)


class MovementUpdate(BaseModel):
    """Partial update; only fields present in the request body are applied."""

    description: Optional[str] = Field(default=None, min_length=1, max_length=500)
    category: Optional[str] = Field(default=None, max_length=100)
    reference: Optional[str] = Field(default=None, max_length=200)
    amount: Optional[int] = Field(default=None, gt=0, le=settings.MAX_AMOUNT, strict=True)
    type: Optional[MovementType] = None
    transaction_date: Optional[datetime] = None
    area_id: Optional[int] = None
    department_id: Optional[int] = None  # explicit null removes the department

    @field_validator("transaction_date")
    @classmethod
    def _naive_date(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _to_naive_utc(value) if value is not None else None


class ApproveRequest(BaseModel):
    comment: Optional[str] = Field(default=None, max_length=1000)


class RejectRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=1000)
    comment: Optional[str] = Field(default=None, max_length=1000)


class BulkApproveRequest(BaseModel):
    ids: list[int] = Field(min_length=1, max_length=settings.MAX_BULK_REVIEW_IDS)
    comment: Optional[str] = Field(default=None, max_length=1000)


class BulkRejectRequest(BaseModel):
    ids: list[int] = Field(min_length=1, max_length=settings.MAX_BULK_REVIEW_IDS)
    reason: Optional[str] = Field(default=None, max_length=1000)
    comment: Optional[str] = Field(default=None, max_length=1000)


class CommentRequest(BaseModel):
    comment: str = Field(min_length=1, max_length=1000)


class HistoryEntryOut(BaseModel):
    id: int
    movement_id: int
    action: HistoryAction
    comment: Optional[str] = None
    metadata: Optional[dict] = None
    created_at: datetime
    user: Optional[UserSummary] = None


class SplitAllocation(BaseModel):
    area_id: int
    department_id: Optional[int] = None
    amount: int = Field(gt=0, le=settings.MAX_AMOUNT, strict=True)
    description: Optional[str] = Field(default=None, max_length=500)


class SplitRequest(BaseModel):
    allocations: list[SplitAllocation] = Field(min_length=2, max_length=20)


class SplitOut(BaseModel):
    parent: MovementOut
    children: list[MovementOut]


class MovementPage(BaseModel):
    items: list[MovementOut]
    next_cursor: Optional[int] = None


class BulkResult(BaseModel):
    count: int


# Draft schemas
class DraftUpdate(BaseModel):
    area_id: Optional[int] = None
    department_id: Optional[int] = None
    category: Optional[str] = Field(default=None, max_length=100)


class DraftBulkUpdate(DraftUpdate):
    ids: list[int] = Field(min_length=1, max_length=settings.MAX_BULK_DRAFT_IDS)


class DraftIdsRequest(BaseModel):
    ids: list[int] = Field(min_length=1, max_length=settings.MAX_BULK_DRAFT_IDS)


class DraftAreaCount(BaseModel):
    area: AreaSummary
    count: int


class DraftStatsOut(BaseModel):
    total: int
    needs_categorization: int
    by_area: list[DraftAreaCount]


class DraftPage(BaseModel):
    items: list[MovementOut]
    next_cursor: Optional[int] = None
    total: int


# Imports
class ImportRowError(BaseModel):
    row: int
    message: str


class ImportResultOut(BaseModel):
    import_job_id: int
    imported: int
    errors: list[ImportRowError]


class ImportJobOut(BaseModel):
    id: int
    file_name: str
    source_format: str
    status: str
    area_id: Optional[int] = None
    total_rows: Optional[int] = None
    imported_rows: Optional[int] = None
    error_count: Optional[int] = None
    initiated_by_user_id: Optional[int] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# Attachments
class AttachmentOut(BaseModel):
    id: int
    movement_id: int
    filename: str
    mime_type: str
    size: int
    uploaded_by_user_id: Optional[int] = None
    created_at: datetime

    class Config:
        from_attributes = True


# Areas, departments, memberships, bank accounts
class AreaOut(BaseModel):
    id: int
    name: str
    code: str
    currency: str
    description: Optional[str] = None
    role: Optional[AreaRole] = None  # caller's role; None for admins without membership

    class Config:
        from_attributes = True


class AreaCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    code: str = Field(min_length=1, max_length=50)
    currency: str = Field(default=settings.DEFAULT_CURRENCY, min_length=3, max_length=3)
    description: Optional[str] = Field(default=None, max_length=500)


class DepartmentOut(BaseModel):
    id: int
    area_id: int
    name: str
    code: str
    description: Optional[str] = None

    class Config:
        from_attributes = True


class DepartmentCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    code: str = Field(min_length=1, max_length=50)
    description: Optional[str] = Field(default=None, max_length=500)


class MembershipRequest(BaseModel):
    user_id: int
    area_role: AreaRole = AreaRole.MEMBER


class MembershipOut(BaseModel):
    user_id: int
    area_id: int
    area_role: AreaRole

    class Config:
        from_attributes = True


class CapabilitiesOut(BaseModel):
    area_id: int
    is_admin: bool
    is_manager: bool
    is_member: bool


class BankAccountOut(BaseModel):
    id: int
    name: str
    account_number: str
    bank_name: Optional[str] = None
    currency: str

    class Config:
        from_attributes = True


class BankAccountCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    account_number: str = Field(min_length=1, max_length=100)
    bank_name: Optional[str] = Field(default=None, max_length=200)
    currency: str = Field(default=settings.DEFAULT_CURRENCY, min_length=3, max_length=3)


# Dashboard
class OverviewOut(BaseModel):
    total_income: int
    total_expenses: int
    balance: int
    draft_count: int
    pending_count: int
    areas_count: int


class AreaBalanceOut(BaseModel):
    area: AreaSummary
    income: int
    expenses: int
    balance: int


class CategoryShare(BaseModel):
    category: str
    amount: int
    percentage: float


class ExpenseBreakdownOut(BaseModel):
    breakdown: list[CategoryShare]
    total: int


class MonthlyTotals(BaseModel):
    month: str  # YYYY-MM
    income: int
    expenses: int


class AreaExpenseShare(BaseModel):
    area: AreaSummary
    amount: int
    percentage: float


class ExpensesByAreaOut(BaseModel):
    breakdown: list[AreaExpenseShare]
    total: int


class DepartmentExpenseShare(BaseModel):
    department: DepartmentSummary
    area: AreaSummary
    amount: int
    percentage: float


class ExpensesByDepartmentOut(BaseModel):
    breakdown: list[DepartmentExpenseShare]
    total: int


# Report schemas
class MonthlySummaryRow(BaseModel):
    month: str  # YYYY-MM
    income: int
    expenses: int
    net: int
    count: int


class CategoryTotal(BaseModel):
    category: str
    amount: int
    count: int
    percentage: float


class CategoryBreakdownOut(BaseModel):
    breakdown: list[CategoryTotal]
    total: int


SortBy = Literal["date", "amount", "status", "type"]
SortOrder = Literal["asc", "desc"]
