"""
Shorthand Parser

Turns one line of terse day-book shorthand into a typed ParsedEntry.

Day-book forms, first match wins:
1. Bill with reference:  Santosh Tops (25/1/25) SV2029 73173 GR 302 GST
2. Simple bill:          Santosh Tops (date: 13/12/24) 33201
3. Numbered sale:        1. 23500 | 7. 21506 net | 20. 9300 (Maa)
4. Staff payroll:        Alok sal 30493 | Alok adv 2000
5. Party payment:        PBK 20000 party GST
6. Category expense:     Home 23988 | GP 94100 GST
7. Fallback:             <label> <amount> -> payment if the label is a
                         known account, petty expense otherwise

The account-ledger screens use two narrower contexts where the account is
already known:
- payments:  13/12/24 20000 [K|GST] [1234]
- bills:     13/12/24 25000 [BILL123] [GR 302]

DESIGN DECISION: The parser is pure and synchronous. Account lookups go
through an immutable KnownAccounts snapshot that the caller loads up front.
"""

import re
from datetime import date
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Callable, Optional, Union

from pydantic import BaseModel, ValidationError

from partyledger.errors import ParseError, UnknownAccountError
from partyledger.models import (
    EntryKind,
    ExpenseCategory,
    ParsedEntry,
    PaymentMode,
    to_amount,
)
from partyledger.parsing.directory import KnownAccounts


DATE_FORMAT = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{2})$")
# Any parenthesised date-looking token; shape is validated by parse_date
DATE_TOKEN = re.compile(r"\(\s*(?:date:\s*)?(\d+/[\d/]*)\s*\)", re.IGNORECASE)
AMOUNT_TOKEN = re.compile(r"^\d[\d,]*(?:\.\d+)?$")
SALE_NUMBER = re.compile(r"^\d+\.$")
REFERENCE_ID = re.compile(r"^\d{4}$")

_AMOUNT = r"(\d[\d,]*(?:\.\d+)?)"
FULL_BILL = re.compile(
    r"^(.+?)\s*\((\d{1,2}/\d{1,2}/\d{2})\)\s*([A-Z0-9]+)\s+" + _AMOUNT
    + r"(?:\s+(?i:GR)\s+(\d+))?\s*(?:(?i:GST))?$"
)
SIMPLE_BILL = re.compile(
    r"^(.+?)\s*\(date:\s*(\d{1,2}/\d{1,2}/\d{2})\)\s*" + _AMOUNT + r"$",
    re.IGNORECASE,
)

STAFF_TYPES = {"sal", "adv"}
PARTY_KEYWORD = "party"
DIGITAL_KEYWORD = "net"

# Category keyword (lower-cased) -> expense category
CATEGORY_KEYWORDS = {
    "home": ExpenseCategory.HOME,
    "rent": ExpenseCategory.RENT,
    "petty": ExpenseCategory.PETTY,
    "poly": ExpenseCategory.POLY,
    "food": ExpenseCategory.FOOD,
    "gp": ExpenseCategory.GOODS_PURCHASE,
    "repair": ExpenseCategory.PETTY,
    "labour": ExpenseCategory.PETTY,
    "transport": ExpenseCategory.PETTY,
}


class ParseContext(str, Enum):
    """Which input surface a line came from."""
    DAYBOOK = "daybook"
    PAYMENTS = "payments"
    BILLS = "bills"


class LineError(BaseModel):
    """A line that could not be parsed, reported in place of its entry."""

    line_index: int
    line: str
    message: str


ParseOutcome = Union[ParsedEntry, LineError]


# =============================================================================
# TOKEN HELPERS
# =============================================================================

def parse_date(token: str) -> date:
    """
    Parse a day-first D/M/YY token. Two-digit years map to 20YY.

    Raises:
        ParseError: naming the token when it is malformed or not a real date
    """
    match = DATE_FORMAT.match(token.strip())
    if not match:
        raise ParseError(f"Invalid date '{token}': use D/M/YY")

    day, month, year = (int(part) for part in match.groups())
    if not 1 <= month <= 12:
        raise ParseError(f"Invalid date '{token}': month must be 1-12")
    if not 1 <= day <= 31:
        raise ParseError(f"Invalid date '{token}': day must be 1-31")

    try:
        return date(2000 + year, month, day)
    except ValueError as e:
        raise ParseError(f"Invalid date '{token}': {e}") from e


def is_amount(token: str) -> bool:
    return bool(AMOUNT_TOKEN.match(token))


def parse_amount(token: str, what: str = "entry") -> Decimal:
    """Parse a positive amount token (thousands separators allowed), at currency scale."""
    if not is_amount(token):
        raise ParseError(f"Invalid amount in {what}: {token}")
    try:
        amount = to_amount(token.replace(",", ""))
    except InvalidOperation as e:
        raise ParseError(f"Invalid amount in {what}: {token}") from e
    if amount <= 0:
        raise ParseError(f"Amount must be greater than zero: {token}")
    return amount


def has_gst(text: str) -> bool:
    return "GST" in text.upper()


class ShorthandLine:
    """
    One trimmed line, pre-split for the token-based forms.

    A parenthesised date token is stripped from the text and becomes the
    entry date; otherwise the context date applies.
    """

    def __init__(self, raw: str, context_date: date):
        self.raw = " ".join(raw.split())
        self.date = context_date

        match = DATE_TOKEN.search(self.raw)
        text = self.raw
        if match:
            self.date = parse_date(match.group(1))
            text = (text[:match.start()] + " " + text[match.end():]).strip()

        self.text = " ".join(text.split())
        self.parts = self.text.split()
        self.has_gst = has_gst(self.raw)


Matcher = Callable[[ShorthandLine], Optional[ParsedEntry]]


# =============================================================================
# PARSER
# =============================================================================

class ShorthandParser:
    """
    Parses shorthand lines against a snapshot of known account names.

    Each grammar form is a matcher returning a ParsedEntry, None when the
    form doesn't apply, or raising ParseError when the form applies but the
    line is invalid.
    """

    def __init__(self, accounts: Optional[KnownAccounts] = None):
        self.accounts = accounts or KnownAccounts()
        self._matchers: dict[ParseContext, list[Matcher]] = {
            ParseContext.DAYBOOK: [
                self._match_full_bill,
                self._match_simple_bill,
                self._match_sale,
                self._match_staff,
                self._match_party_payment,
                self._match_category_expense,
                self._match_fallback,
            ],
            ParseContext.PAYMENTS: [self._match_ledger_payment],
            ParseContext.BILLS: [self._match_ledger_bill],
        }

    def parse(
        self,
        line: str,
        context_date: date,
        context: ParseContext = ParseContext.DAYBOOK,
    ) -> ParsedEntry:
        """
        Parse one non-blank line.

        Raises:
            ParseError: If no form accepts the line (UnknownAccountError when
                a form that requires a known account names an unknown one),
                or if the entry breaks a field limit
        """
        if not line or not line.strip():
            raise ParseError("Empty line", line)

        try:
            shorthand = ShorthandLine(line, context_date)
            for matcher in self._matchers[context]:
                entry = matcher(shorthand)
                if entry is not None:
                    return entry.model_copy(update={"line": shorthand.raw})
        except ParseError as e:
            e.line = line.strip()
            raise
        except ValidationError as e:
            raise ParseError(describe_validation_error(e), line.strip()) from e

        raise ParseError("Unrecognized entry format", line.strip())

    def parse_block(
        self,
        text: str,
        context_date: date,
        context: ParseContext = ParseContext.DAYBOOK,
    ) -> list[ParseOutcome]:
        """
        Parse a multi-line block, one outcome per non-blank line.

        A line that fails becomes a LineError; it never stops later lines.
        """
        outcomes: list[ParseOutcome] = []
        for index, line in enumerate(split_lines(text)):
            try:
                outcomes.append(self.parse(line, context_date, context))
            except ParseError as e:
                outcomes.append(LineError(line_index=index, line=line, message=e.message))
        return outcomes

    # -------------------------------------------------------------------------
    # Day-book forms
    # -------------------------------------------------------------------------

    def _match_full_bill(self, line: ShorthandLine) -> Optional[ParsedEntry]:
        match = FULL_BILL.match(line.raw)
        if not match:
            return None

        name, date_token, bill_number, amount, gr_number = match.groups()
        name = name.strip()
        return ParsedEntry(
            kind=EntryKind.BILL,
            date=parse_date(date_token),
            amount=parse_amount(amount, "bill"),
            account_name=name,
            is_valid_account=name in self.accounts,
            bill_number=bill_number,
            gr_number=gr_number,
            description=f"GR: {gr_number}" if gr_number else None,
            has_gst=line.has_gst,
        )

    def _match_simple_bill(self, line: ShorthandLine) -> Optional[ParsedEntry]:
        match = SIMPLE_BILL.match(line.raw)
        if not match:
            return None

        name, date_token, amount = match.groups()
        name = name.strip()
        return ParsedEntry(
            kind=EntryKind.BILL,
            date=parse_date(date_token),
            amount=parse_amount(amount, "bill"),
            account_name=name,
            is_valid_account=name in self.accounts,
            has_gst=line.has_gst,
        )

    def _match_sale(self, line: ShorthandLine) -> Optional[ParsedEntry]:
        parts = line.parts
        if not parts or not SALE_NUMBER.match(parts[0]):
            return None
        if len(parts) < 2:
            raise ParseError(f"Invalid sale entry format: {line.text}")

        amount = parse_amount(parts[1], "sale entry")
        mode = PaymentMode.CASH
        account_name = None
        note = None

        if len(parts) > 2:
            if parts[2].lower() == DIGITAL_KEYWORD:
                mode = PaymentMode.DIGITAL
                note = " ".join(parts[3:]) or None
            else:
                account_name = " ".join(parts[2:]).strip("()").strip() or None
                if account_name:
                    if account_name not in self.accounts:
                        raise UnknownAccountError(account_name)
                    mode = PaymentMode.CREDIT

        return ParsedEntry(
            kind=EntryKind.SALE,
            date=line.date,
            amount=amount,
            account_name=account_name,
            description=note,
            payment_mode=mode,
        )

    def _match_staff(self, line: ShorthandLine) -> Optional[ParsedEntry]:
        parts = line.parts
        if len(parts) <= 2 or parts[1].lower() not in STAFF_TYPES:
            return None

        staff_name = parts[0]
        pay_type = parts[1].lower()
        return ParsedEntry(
            kind=EntryKind.EXPENSE,
            date=line.date,
            amount=parse_amount(parts[2], "staff expense"),
            description=f"{staff_name} {pay_type}",
            staff_name=staff_name,
            expense_category=ExpenseCategory.SALARY,
        )

    def _match_party_payment(self, line: ShorthandLine) -> Optional[ParsedEntry]:
        parts = line.parts
        if len(parts) < 3 or parts[2].lower() != PARTY_KEYWORD:
            return None

        account_name = parts[0]
        amount = parse_amount(parts[1], "party payment")
        if account_name not in self.accounts:
            raise UnknownAccountError(account_name)

        return ParsedEntry(
            kind=EntryKind.PAYMENT,
            date=line.date,
            amount=amount,
            account_name=account_name,
            has_gst=line.has_gst,
        )

    def _match_category_expense(self, line: ShorthandLine) -> Optional[ParsedEntry]:
        parts = line.parts
        if len(parts) < 2 or parts[0].lower() not in CATEGORY_KEYWORDS:
            return None

        keyword = parts[0].lower()
        return ParsedEntry(
            kind=EntryKind.EXPENSE,
            date=line.date,
            amount=parse_amount(parts[1], "expense entry"),
            description=keyword,
            expense_category=CATEGORY_KEYWORDS[keyword],
            has_gst=line.has_gst,
        )

    def _match_fallback(self, line: ShorthandLine) -> Optional[ParsedEntry]:
        parts = line.parts
        amount_index = next(
            (i for i, part in enumerate(parts) if is_amount(part) and parse_positive(part)),
            None,
        )
        if amount_index is None:
            raise ParseError("Invalid format - no amount found")

        label = " ".join(parts[:amount_index])
        amount = parse_amount(parts[amount_index])

        if label and label in self.accounts:
            return ParsedEntry(
                kind=EntryKind.PAYMENT,
                date=line.date,
                amount=amount,
                account_name=label,
                has_gst=line.has_gst,
            )

        return ParsedEntry(
            kind=EntryKind.EXPENSE,
            date=line.date,
            amount=amount,
            description=label or None,
            expense_category=ExpenseCategory.PETTY,
            has_gst=line.has_gst,
        )

    # -------------------------------------------------------------------------
    # Account-ledger forms
    # -------------------------------------------------------------------------

    def _match_ledger_payment(self, line: ShorthandLine) -> Optional[ParsedEntry]:
        parts = line.raw.split()
        if len(parts) < 2:
            raise ParseError("Expected: D/M/YY AMOUNT [K|GST] [REF]")

        reference = None
        if len(parts) > 2 and REFERENCE_ID.match(parts[-1]):
            reference = parts[-1]
            parts = parts[:-1]
        marker = parts[2].upper() if len(parts) > 2 else None

        return ParsedEntry(
            kind=EntryKind.PAYMENT,
            date=parse_date(parts[0]),
            amount=parse_amount(parts[1], "payment"),
            reference=reference,
            description="K" if marker == "K" else None,
            has_gst=marker == "GST",
        )

    def _match_ledger_bill(self, line: ShorthandLine) -> Optional[ParsedEntry]:
        parts = line.raw.split()
        if len(parts) < 2:
            raise ParseError("Expected: D/M/YY AMOUNT [BILL_NUMBER] [GR NUMBER]")

        rest = parts[2:]
        gr_number = None
        upper = [part.upper() for part in rest]
        if "GR" in upper:
            gr_index = upper.index("GR")
            gr_number = " ".join(rest[gr_index + 1:]) or None
            rest = rest[:gr_index]

        return ParsedEntry(
            kind=EntryKind.BILL,
            date=parse_date(parts[0]),
            amount=parse_amount(parts[1], "bill"),
            bill_number=rest[0] if rest else None,
            gr_number=gr_number,
            description=f"GR: {gr_number}" if gr_number else None,
            has_gst=has_gst(line.raw),
        )


def parse_positive(token: str) -> bool:
    try:
        return to_amount(token.replace(",", "")) > 0
    except InvalidOperation:
        return False


def split_lines(text: str) -> list[str]:
    """Non-blank, trimmed lines of a block."""
    return [line.strip() for line in text.splitlines() if line.strip()]


def describe_validation_error(error: ValidationError) -> str:
    """One-line message for an entry the models rejected."""
    first = error.errors()[0]
    field = ".".join(str(part) for part in first["loc"]) or "entry"
    return f"Invalid {field}: {first['msg']}"
