"""
Core Ledger Models

These models define the strict schemas for everything flowing through the
ledger pipeline:
1. Accounts ("parties") whose balances we track
2. Entries parsed from shorthand text (proposed, not yet persisted)
3. Ledger entries as they live in storage

DESIGN DECISION: Amounts are always positive Decimals at currency scale.
The signed effect on a balance is decided by the entry kind, never by a
negative amount.
"""

from datetime import date, datetime, timezone
from datetime import date as date_type
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


CENT = Decimal("0.01")
DEFAULT_GST_RATE = Decimal("0.03")
OPENING_BALANCE_DESCRIPTION = "[OPENING BALANCE] Initial balance entry"

# Field limits shared by parsed and stored entries
MAX_BILL_NUMBER = 50
MAX_REFERENCE = 50
MAX_DESCRIPTION = 1000


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_amount(value: Any) -> Decimal:
    """Coerce to a currency-scale Decimal (half-up rounding)."""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def gst_split(amount: Decimal, rate: Decimal = DEFAULT_GST_RATE) -> tuple[Decimal, Decimal]:
    """
    Split a GST-inclusive amount into (base, gst).

    base = round(amount / (1 + rate), 2); gst = amount - base
    """
    base = (amount / (Decimal("1") + rate)).quantize(CENT, rounding=ROUND_HALF_UP)
    return base, amount - base


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class EntryKind(str, Enum):
    """
    Kinds of entries the pipeline produces.

    Only BILL and PAYMENT rows can belong to an account. SALE and EXPENSE
    rows are day-book rows with no account.
    """
    BILL = "bill"
    PAYMENT = "payment"
    SALE = "sale"
    EXPENSE = "expense"

    @property
    def affects_account(self) -> bool:
        return self in (EntryKind.BILL, EntryKind.PAYMENT)


class PaymentMode(str, Enum):
    """How a sale was settled."""
    CASH = "cash"
    DIGITAL = "digital"
    CREDIT = "credit"


class ExpenseCategory(str, Enum):
    """
    Expense categories.

    PARTY_PAYMENT is reserved: every PAYMENT entry is recorded under it.
    """
    GOODS_PURCHASE = "goods_purchase"
    SALARY = "salary"
    ADVANCE = "advance"
    HOME = "home"
    RENT = "rent"
    PARTY_PAYMENT = "party_payment"
    PETTY = "petty"
    POLY = "poly"
    FOOD = "food"


# =============================================================================
# ACCOUNT
# =============================================================================

class Account(BaseModel):
    """
    A counterparty ledger (e.g. a manufacturer).

    current_balance is a cache. It is only ever written by the balance
    recalculator (plus the confirmed opening-balance edit that is
    immediately followed by a recalculation).
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    seq: Optional[int] = Field(
        default=None,
        description="Creation sequence assigned by the store"
    )
    name: str = Field(
        ...,
        min_length=1,
        max_length=200,
        description="Display name, unique case-insensitively"
    )
    credit_limit: Decimal = Field(default=Decimal("0"), ge=0)
    current_balance: Decimal = Field(default=Decimal("0"))

    contact_person: Optional[str] = Field(default=None, max_length=200)
    phone: Optional[str] = Field(default=None, max_length=50)
    address: Optional[str] = Field(default=None, max_length=500)
    gst_number: Optional[str] = Field(default=None, max_length=20)

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("credit_limit", "current_balance", mode="before")
    @classmethod
    def quantize_money(cls, v: Any) -> Decimal:
        return to_amount(v)

    def to_row(self) -> dict:
        return self.model_dump(mode="json")

    @classmethod
    def from_row(cls, row: dict) -> "Account":
        return cls.model_validate(row)


# =============================================================================
# PARSED ENTRY (proposed, not persisted)
# =============================================================================

class ParsedEntry(BaseModel):
    """
    A typed entry produced from one line of shorthand.

    CRITICAL: This is PROPOSED data. Account names here are text; they are
    resolved to account ids only when the entry is applied.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    kind: EntryKind
    date: date
    amount: Decimal = Field(..., gt=0)

    account_name: Optional[str] = None
    is_valid_account: Optional[bool] = Field(
        default=None,
        description="Advisory result of the account lookup (bill forms only)"
    )
    bill_number: Optional[str] = Field(default=None, max_length=MAX_BILL_NUMBER)
    reference: Optional[str] = Field(default=None, max_length=MAX_REFERENCE)
    gr_number: Optional[str] = None
    description: Optional[str] = Field(default=None, max_length=MAX_DESCRIPTION)
    staff_name: Optional[str] = None
    has_gst: bool = False
    payment_mode: Optional[PaymentMode] = None
    expense_category: Optional[ExpenseCategory] = None

    # Source text, kept for reporting but not part of the entry's identity
    line: Optional[str] = Field(default=None, exclude=True)

    @field_validator("amount", mode="before")
    @classmethod
    def quantize_amount(cls, v: Any) -> Decimal:
        return to_amount(v)

    @model_validator(mode="after")
    def reserve_payment_category(self) -> "ParsedEntry":
        if self.kind is EntryKind.PAYMENT:
            self.expense_category = ExpenseCategory.PARTY_PAYMENT
        return self

    def same_as(self, other: "ParsedEntry") -> bool:
        """Structural equality, ignoring the source line."""
        return self.model_dump() == other.model_dump()


# =============================================================================
# LEDGER ENTRY (persisted)
# =============================================================================

class LedgerEntry(BaseModel):
    """
    One persisted row.

    running_balance is derived and written only by the recalculator.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    seq: Optional[int] = Field(
        default=None,
        description="Creation sequence assigned by the store; tie-break for same-day entries"
    )
    date: date
    kind: EntryKind
    amount: Decimal = Field(..., gt=0)
    has_gst: bool = False

    bill_number: Optional[str] = Field(default=None, max_length=MAX_BILL_NUMBER)
    reference: Optional[str] = Field(default=None, max_length=MAX_REFERENCE)
    description: Optional[str] = Field(default=None, max_length=MAX_DESCRIPTION)

    account_id: Optional[UUID] = None
    counterparty: Optional[str] = Field(
        default=None,
        description="Credit-sale account reference kept as text"
    )
    staff_name: Optional[str] = None
    payment_mode: Optional[PaymentMode] = None
    expense_category: Optional[ExpenseCategory] = None

    running_balance: Optional[Decimal] = None
    is_permanent: bool = False

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("amount", mode="before")
    @classmethod
    def quantize_amount(cls, v: Any) -> Decimal:
        return to_amount(v)

    @model_validator(mode="after")
    def validate_kind(self) -> "LedgerEntry":
        """Only bills and payments live on an account."""
        if self.account_id is not None and not self.kind.affects_account:
            raise ValueError(f"A {self.kind.value} entry cannot belong to an account")
        if self.kind is EntryKind.PAYMENT:
            self.expense_category = ExpenseCategory.PARTY_PAYMENT
        return self

    @property
    def base_amount(self) -> Optional[Decimal]:
        return gst_split(self.amount)[0] if self.has_gst else None

    @property
    def gst_amount(self) -> Optional[Decimal]:
        return gst_split(self.amount)[1] if self.has_gst else None

    def to_row(self) -> dict:
        return self.model_dump(mode="json")

    @classmethod
    def from_row(cls, row: dict) -> "LedgerEntry":
        return cls.model_validate(row)

    @classmethod
    def from_parsed(
        cls,
        parsed: ParsedEntry,
        account_id: Optional[UUID] = None,
    ) -> "LedgerEntry":
        """Build a row from a parsed entry. Day-book kinds never carry an account."""
        if not parsed.kind.affects_account:
            account_id = None
        return cls(
            date=parsed.date,
            kind=parsed.kind,
            amount=parsed.amount,
            has_gst=parsed.has_gst,
            bill_number=parsed.bill_number,
            reference=parsed.reference,
            description=parsed.description,
            account_id=account_id,
            counterparty=parsed.account_name if account_id is None else None,
            staff_name=parsed.staff_name,
            payment_mode=parsed.payment_mode,
            expense_category=parsed.expense_category,
        )


class EntryChanges(BaseModel):
    """Field changes accepted by the edit path. Unset fields are left alone."""
    model_config = ConfigDict(str_strip_whitespace=True)

    date: Optional[date_type] = None
    amount: Optional[Decimal] = Field(default=None, gt=0)
    bill_number: Optional[str] = None
    reference: Optional[str] = None
    description: Optional[str] = None
    has_gst: Optional[bool] = None

    @field_validator("amount", mode="before")
    @classmethod
    def quantize_amount(cls, v: Any) -> Optional[Decimal]:
        return None if v is None else to_amount(v)

    def changed_fields(self) -> dict:
        return self.model_dump(exclude_unset=True, exclude_none=True)
