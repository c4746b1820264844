"""
Result Models

What the pipeline hands back to its callers: duplicate matches, batch
results, validation findings and account summaries.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, Field

from partyledger.models.ledger import (
    EntryKind,
    LedgerEntry,
    ParsedEntry,
    utcnow,
)


# =============================================================================
# DUPLICATE DETECTION
# =============================================================================

class DuplicateReason(str, Enum):
    """Why two entries are considered the same. Ordered most specific first."""
    EXACT_MATCH = "EXACT_MATCH"
    AMOUNT_DATE_ACCOUNT = "AMOUNT_DATE_ACCOUNT"
    BILL_NUMBER = "BILL_NUMBER"


class EntrySnapshot(BaseModel):
    """The fields shown side by side when comparing a candidate to an existing entry."""

    date: date
    amount: Decimal
    kind: EntryKind
    bill_number: Optional[str] = None
    account_name: Optional[str] = None
    description: Optional[str] = None

    @classmethod
    def of_entry(cls, entry: LedgerEntry, account_name: Optional[str] = None) -> "EntrySnapshot":
        return cls(
            date=entry.date,
            amount=entry.amount,
            kind=entry.kind,
            bill_number=entry.bill_number,
            account_name=account_name,
            description=entry.description,
        )

    @classmethod
    def of_parsed(cls, parsed: ParsedEntry) -> "EntrySnapshot":
        return cls(
            date=parsed.date,
            amount=parsed.amount,
            kind=parsed.kind,
            bill_number=parsed.bill_number,
            account_name=parsed.account_name,
            description=parsed.description,
        )


class DuplicateMatch(BaseModel):
    """An existing entry that the candidate duplicates, and why."""

    reason: DuplicateReason
    existing_id: UUID
    existing: EntrySnapshot
    candidate: EntrySnapshot


# =============================================================================
# BATCH RESULTS
# =============================================================================

class Inserted(BaseModel):
    status: Literal["inserted"] = "inserted"
    line_index: int
    entry: LedgerEntry


class SkippedDuplicate(BaseModel):
    """Not an error: bulk import skips entries that already exist."""
    status: Literal["skipped_duplicate"] = "skipped_duplicate"
    line_index: int
    candidate: EntrySnapshot
    existing: EntrySnapshot
    reason: DuplicateReason


class ParseFailed(BaseModel):
    status: Literal["parse_failed"] = "parse_failed"
    line_index: int
    line: str
    message: str


BatchItem = Annotated[
    Union[Inserted, SkippedDuplicate, ParseFailed],
    Field(discriminator="status"),
]


class BatchSummary(BaseModel):
    inserted: int = 0
    skipped: int = 0
    failed: int = 0
    final_balance: Optional[Decimal] = Field(
        default=None,
        description="Balance of the batch's account, when the batch targeted one"
    )
    balances: dict[str, Decimal] = Field(
        default_factory=dict,
        description="Final balance of every account the batch touched, by name"
    )


class BatchResult(BaseModel):
    """Ordered items parallel to the input lines, plus a summary."""

    items: list[BatchItem] = Field(default_factory=list)
    summary: BatchSummary = Field(default_factory=BatchSummary)

    @property
    def inserted_entries(self) -> list[LedgerEntry]:
        return [item.entry for item in self.items if isinstance(item, Inserted)]


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single validation issue found on one line."""

    line_index: int = Field(..., ge=0)
    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'unknown_account', 'suspicious_value')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        ...,
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )
    suggested_fix: Optional[str] = None


class ValidationResult(BaseModel):
    """
    Result of the two-stage validation of a parsed block.

    Stage 1: Structural validation (required references present)
    Stage 2: Semantic validation (dates, amounts, advisory lookups)
    """

    validated_at: datetime = Field(default_factory=utcnow)
    structural_valid: bool
    semantic_valid: bool
    issues: list[ValidationIssue] = Field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return self.structural_valid and self.semantic_valid

    @property
    def has_errors(self) -> bool:
        """Check if there are any error-level issues."""
        return any(issue.severity == "error" for issue in self.issues)

    @property
    def error_count(self) -> int:
        """Count error-level issues."""
        return sum(1 for issue in self.issues if issue.severity == "error")

    @property
    def warnings(self) -> list[str]:
        return [issue.message for issue in self.issues if issue.severity == "warning"]

    def issues_for_line(self, line_index: int) -> list[ValidationIssue]:
        return [issue for issue in self.issues if issue.line_index == line_index]


# =============================================================================
# ACCOUNT SUMMARY
# =============================================================================

class AccountSummary(BaseModel):
    """What callers (UI, reports) read about one account."""

    account_id: UUID
    name: str
    current_balance: Decimal
    total_bills: Decimal
    total_payments: Decimal
    entry_count: int = Field(ge=0)
    last_entry_date: Optional[date] = None
    credit_limit: Decimal
    available_credit: Optional[Decimal] = Field(
        default=None,
        description="credit_limit - current_balance; None when no limit is set"
    )

    @property
    def over_limit(self) -> bool:
        return self.available_credit is not None and self.available_credit < 0
