"""
Core Finance Models for Expense Bot

These models define the strict schemas for every financial record that
crosses a collaborator boundary: projects, categories, receipts extracted
by the vision model, and the transactions committed by guided dialogs.

DESIGN DECISION: Amounts are Decimal, never float.
Values typed by the user or returned by the model are quantized to two
decimal places before they are stored, so totals add up exactly.
"""

from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


MAX_AMOUNT = Decimal("999999")
CENTS = Decimal("0.01")


def quantize_amount(value: Decimal) -> Decimal:
    """Round an amount to cents."""
    return Decimal(value).quantize(CENTS, rounding=ROUND_HALF_UP)


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class TransactionType(str, Enum):
    """Direction of money for a transaction and its categories."""
    EXPENSE = "expense"
    INCOME = "income"


class ProjectStatus(str, Enum):
    """
    Project lifecycle status.

    Only OPEN projects are offered when a transaction is assigned to a project.
    """
    OPEN = "open"
    CLOSED = "closed"


class TransactionSource(str, Enum):
    """Where a transaction came from."""
    MANUAL = "manual"    # typed through a guided dialog
    RECEIPT = "receipt"  # extracted from a receipt photo


# =============================================================================
# PROJECTS & CATEGORIES
# =============================================================================

class Project(BaseModel):
    """
    A user-defined bucket for grouping transactions (a trip, a renovation...).

    Transactions without a project are "general" transactions.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(
        default_factory=uuid4,
        description="Unique project identifier"
    )
    user_id: str = Field(
        ...,
        min_length=1,
        description="Owner of the project"
    )
    name: str = Field(
        ...,
        min_length=1,
        max_length=255,
        description="Project name"
    )
    currency: str = Field(
        ...,
        min_length=1,
        max_length=20,
        description="Currency label shown with project amounts"
    )
    status: ProjectStatus = Field(
        default=ProjectStatus.OPEN,
        description="Whether the project accepts new transactions"
    )
    created_at: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the project was created (UTC)"
    )


class Category(BaseModel):
    """A user category for expenses or income."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(
        ...,
        min_length=1,
        description="Category identifier"
    )
    name: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Display name (e.g., 'groceries', 'Salary')"
    )
    type: TransactionType = Field(
        ...,
        description="Whether this category applies to expenses or income"
    )
    emoji: str = Field(
        default="",
        max_length=8,
        description="Optional emoji shown in prompts"
    )

    @property
    def label(self) -> str:
        """Name with emoji prefix, as shown in option lists."""
        return f"{self.emoji} {self.name}" if self.emoji else self.name


# =============================================================================
# RECEIPTS - Output of the extraction collaborator
# =============================================================================

class ReceiptItem(BaseModel):
    """A single line item on a receipt."""
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(
        default="",
        max_length=200,
        description="Item description"
    )
    total: Decimal = Field(
        default=Decimal("0"),
        description="Line total (not unit price)"
    )
    quantity: Decimal = Field(
        default=Decimal("1"),
        ge=0,
        description="Quantity purchased"
    )
    category: str = Field(
        default="other",
        description="Item category as suggested by the model"
    )


class StructuredReceipt(BaseModel):
    """
    Receipt data returned by the extraction collaborator.

    CRITICAL: This is untrusted model output. It is validated here and the
    date is normalised by the extractor before the receipt reaches a dialog.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    store_name: str = Field(
        ...,
        min_length=1,
        max_length=255,
        description="Store or merchant name"
    )
    receipt_date: date = Field(
        ...,
        description="Purchase date"
    )
    total: Decimal = Field(
        ...,
        ge=0,
        description="Receipt grand total"
    )
    service_charge: Decimal = Field(
        default=Decimal("0"),
        description="Service charge, 0 if none"
    )
    tax: Decimal = Field(
        default=Decimal("0"),
        description="Tax, 0 if none"
    )
    discount: Decimal = Field(
        default=Decimal("0"),
        le=0,
        description="Discount as a negative number, 0 if none"
    )
    items: list[ReceiptItem] = Field(
        default_factory=list,
        description="Line items"
    )
    category: Optional[str] = Field(
        default=None,
        description="Overall receipt category, derived from items and store"
    )

    @field_validator('total', 'service_charge', 'tax', 'discount')
    @classmethod
    def round_to_cents(cls, v: Decimal) -> Decimal:
        return quantize_amount(v)


# =============================================================================
# TRANSACTIONS - What guided dialogs commit
# =============================================================================

class TransactionRecord(BaseModel):
    """
    The payload of a commit: one expense or one income entry.

    For expenses `description` is the store name; for income it is the
    free-text description typed by the user.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    type: TransactionType = Field(
        ...,
        description="Expense or income"
    )
    transaction_date: date = Field(
        ...,
        description="Transaction date"
    )
    description: str = Field(
        ...,
        min_length=1,
        max_length=255,
        description="Store name (expense) or description (income)"
    )
    category: str = Field(
        ...,
        min_length=1,
        description="Category name"
    )
    category_id: Optional[str] = Field(
        default=None,
        description="Category identifier when chosen from the user's list"
    )
    amount: Decimal = Field(
        ...,
        gt=0,
        lt=MAX_AMOUNT,
        description="Amount, positive, two decimal places"
    )
    source: TransactionSource = Field(
        default=TransactionSource.MANUAL,
        description="Where the transaction came from"
    )
    items_count: int = Field(
        default=0,
        ge=0,
        description="Number of receipt line items (receipts only)"
    )

    @field_validator('amount')
    @classmethod
    def round_amount(cls, v: Decimal) -> Decimal:
        return quantize_amount(v)


class Transaction(BaseModel):
    """A persisted transaction."""

    id: UUID = Field(
        default_factory=uuid4,
        description="Unique transaction identifier"
    )
    user_id: str = Field(
        ...,
        min_length=1,
        description="Owner of the transaction"
    )
    project_id: Optional[UUID] = Field(
        default=None,
        description="Project the transaction belongs to; None for general"
    )
    record: TransactionRecord
    created_at: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the transaction was stored (UTC)"
    )


class DateRange(BaseModel):
    """Inclusive date range used by summaries."""

    start: date
    end: date
    label: str = Field(
        default="",
        description="Human-readable period name (e.g., 'This Week')"
    )

    @model_validator(mode='after')
    def validate_order(self) -> 'DateRange':
        if self.end < self.start:
            raise ValueError("Range end cannot be before range start")
        return self

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end
