"""
Two-Stage Validation Pipeline

DESIGN DECISION: Parsed entries are validated in two distinct stages before
anything is written:

STAGE 1 - STRUCTURAL VALIDATION:
- Bills and payments name an account (unless the block is bound to one)
- Credit sales name the account they are on credit to
- Salary expenses name the staff member
- This catches lines the mutator could never book

STAGE 2 - SEMANTIC VALIDATION:
- Future date detection
- Absurd amount detection
- Unknown accounts on bills (advisory only)
- Bill numbers repeated within the block
- Possible duplicates of entries already on the books
- This catches suspicious but bookable data

IMPORTANT: Validation NEVER silently fixes issues.
It reports them, per line, for human review.
"""

from datetime import date, timedelta
from decimal import Decimal
from typing import Optional, Sequence
from uuid import UUID

import structlog

from partyledger.config import LedgerSettings, get_settings
from partyledger.errors import LedgerError
from partyledger.ledger.duplicates import DuplicateDetector
from partyledger.models import (
    EntryKind,
    ExpenseCategory,
    ParsedEntry,
    PaymentMode,
    ValidationIssue,
    ValidationResult,
)
from partyledger.parsing.directory import KnownAccounts


logger = structlog.get_logger()

IndexedEntry = tuple[int, ParsedEntry]


class EntryValidator:
    """
    Validates parsed entries through a two-stage pipeline.

    Stage 1: Structural validation (no storage needed)
    Stage 2: Semantic validation (duplicate checks need a detector)
    """

    def __init__(
        self,
        detector: Optional[DuplicateDetector] = None,
        settings: Optional[LedgerSettings] = None,
    ):
        """
        Initialize validator.

        Args:
            detector: Used for duplicate checks. If None, they are skipped.
            settings: Thresholds; defaults to the environment's settings.
        """
        self._detector = detector
        self._settings = settings or get_settings().ledger

    def _validate_structure(
        self,
        entries: Sequence[IndexedEntry],
        account_bound: bool,
    ) -> tuple[bool, list[ValidationIssue]]:
        """
        Stage 1: Structural validation.

        Returns: (is_valid, list_of_issues)
        """
        issues = []

        for index, entry in entries:
            if entry.kind.affects_account and not account_bound and not entry.account_name:
                issues.append(ValidationIssue(
                    line_index=index,
                    field="account_name",
                    issue_type="missing",
                    message=f"A {entry.kind.value} needs an account name",
                    severity="error",
                    suggested_fix="Start the line with the account name",
                ))

            if entry.kind is EntryKind.SALE and entry.payment_mode is PaymentMode.CREDIT:
                if not entry.account_name:
                    issues.append(ValidationIssue(
                        line_index=index,
                        field="account_name",
                        issue_type="missing",
                        message="A credit sale needs the account it is on credit to",
                        severity="error",
                        suggested_fix="Add the account name in brackets after the amount",
                    ))

            if entry.expense_category is ExpenseCategory.SALARY and not entry.staff_name:
                issues.append(ValidationIssue(
                    line_index=index,
                    field="staff_name",
                    issue_type="missing",
                    message="A salary expense needs a staff name",
                    severity="error",
                    suggested_fix="Write it as: <name> sal <amount>",
                ))

        is_valid = not any(issue.severity == "error" for issue in issues)
        return is_valid, issues

    def _validate_semantic(
        self,
        entries: Sequence[IndexedEntry],
        known: KnownAccounts,
        account_bound: bool,
        today: date,
    ) -> tuple[bool, list[ValidationIssue]]:
        """
        Stage 2: Semantic validation.

        Returns: (is_valid, list_of_issues)
        """
        issues = []
        max_future_date = today + timedelta(days=self._settings.future_date_tolerance_days)
        min_reasonable_date = today - timedelta(days=365 * 2)
        max_amount = self._settings.max_entry_amount
        seen_bill_numbers: dict[tuple[str, str], int] = {}

        for index, entry in entries:
            if entry.date > max_future_date:
                issues.append(ValidationIssue(
                    line_index=index,
                    field="date",
                    issue_type="future_date",
                    message=f"Entry date ({entry.date}) is in the future",
                    severity="warning",
                    suggested_fix="Please verify the date is correct",
                ))
            elif entry.date < min_reasonable_date:
                issues.append(ValidationIssue(
                    line_index=index,
                    field="date",
                    issue_type="suspicious_date",
                    message=f"Entry date ({entry.date}) seems unusually old",
                    severity="warning",
                    suggested_fix="Check the year: dates are read as D/M/YY",
                ))

            if entry.amount > max_amount:
                issues.append(ValidationIssue(
                    line_index=index,
                    field="amount",
                    issue_type="suspicious_value",
                    message=f"Amount (₹{entry.amount:,.2f}) seems unusually high",
                    severity="warning",
                    suggested_fix="Please verify this amount is correct",
                ))
            elif entry.amount < Decimal("1"):
                issues.append(ValidationIssue(
                    line_index=index,
                    field="amount",
                    issue_type="suspicious_value",
                    message=f"Amount (₹{entry.amount}) seems unusually low",
                    severity="warning",
                    suggested_fix="Please verify this amount is correct",
                ))

            if (
                entry.kind is EntryKind.BILL
                and not account_bound
                and entry.account_name
                and entry.account_name not in known
            ):
                issues.append(ValidationIssue(
                    line_index=index,
                    field="account_name",
                    issue_type="unknown_account",
                    message=f"Account '{entry.account_name}' doesn't exist yet",
                    severity="warning",
                    suggested_fix="Create the account or correct the name before importing",
                ))

            if entry.kind is EntryKind.BILL and entry.bill_number:
                key = ((entry.account_name or "").casefold(), entry.bill_number)
                if key in seen_bill_numbers:
                    issues.append(ValidationIssue(
                        line_index=index,
                        field="bill_number",
                        issue_type="repeated_bill_number",
                        message=(
                            f"Bill number {entry.bill_number} already appears "
                            f"on line {seen_bill_numbers[key] + 1}"
                        ),
                        severity="warning",
                        suggested_fix="Only the first of the two will be imported",
                    ))
                else:
                    seen_bill_numbers[key] = index

        is_valid = not any(issue.severity == "error" for issue in issues)
        return is_valid, issues

    async def _check_duplicates(
        self,
        entries: Sequence[IndexedEntry],
        known: KnownAccounts,
        account_id: Optional[UUID],
    ) -> list[ValidationIssue]:
        """
        Check for entries that are already on the books.

        This requires storage access.
        """
        issues = []

        if self._detector is None:
            return issues

        for index, entry in entries:
            target = None
            if entry.kind.affects_account:
                target = account_id or known.resolve(entry.account_name)
                if target is None:
                    continue
            try:
                match = await self._detector.find_duplicate(target, entry)
            except LedgerError as e:
                # Don't fail validation due to storage errors
                logger.warning("duplicate_check_failed", line_index=index, error=str(e))
                continue

            if match is not None:
                issues.append(ValidationIssue(
                    line_index=index,
                    field="duplicate",
                    issue_type="potential_duplicate",
                    message=(
                        f"A {match.existing.kind.value} of {match.existing.amount} "
                        f"dated {match.existing.date} already exists ({match.reason.value})"
                    ),
                    severity="warning",
                    suggested_fix="It will be skipped on import",
                ))

        return issues

    async def validate(
        self,
        entries: Sequence[IndexedEntry],
        known: Optional[KnownAccounts] = None,
        account_id: Optional[UUID] = None,
        check_duplicates: bool = True,
        today: Optional[date] = None,
    ) -> ValidationResult:
        """
        Run full two-stage validation pipeline.

        Args:
            entries: (line index, parsed entry) pairs
            known: Account snapshot for advisory lookups
            account_id: Account the block is bound to, if any
            check_duplicates: Whether to check for duplicates (requires detector)
            today: Reference date for date checks (defaults to today)

        Returns:
            ValidationResult with all issues found
        """
        known = known or KnownAccounts()
        account_bound = account_id is not None
        all_issues = []

        # Stage 1: Structural validation
        structural_valid, structural_issues = self._validate_structure(entries, account_bound)
        all_issues.extend(structural_issues)

        # Only run stage 2 if stage 1 passes
        semantic_valid = False
        if structural_valid:
            semantic_valid, semantic_issues = self._validate_semantic(
                entries, known, account_bound, today or date.today()
            )
            all_issues.extend(semantic_issues)

            if check_duplicates:
                all_issues.extend(await self._check_duplicates(entries, known, account_id))

        all_issues.sort(key=lambda issue: issue.line_index)
        return ValidationResult(
            structural_valid=structural_valid,
            semantic_valid=semantic_valid,
            issues=all_issues,
        )

    def get_user_friendly_summary(self, result: ValidationResult) -> str:
        """
        Generate a user-friendly summary of validation results.

        This is what we show next to the preview of a pasted block.
        """
        if result.is_valid and not result.warnings:
            return "✅ All lines look good."

        lines = []

        if result.has_errors:
            lines.append("❌ Some lines cannot be imported:")
            for issue in result.issues:
                if issue.severity == "error":
                    lines.append(f"   • Line {issue.line_index + 1}: {issue.message}")
                    if issue.suggested_fix:
                        lines.append(f"     💡 {issue.suggested_fix}")

        if result.warnings:
            lines.append("")
            lines.append("⚠️ Please verify the following:")
            for issue in result.issues:
                if issue.severity == "warning":
                    lines.append(f"   • Line {issue.line_index + 1}: {issue.message}")

        return "\n".join(lines).strip()
