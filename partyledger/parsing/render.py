"""
Shorthand Renderer

Writes a ParsedEntry back as canonical shorthand. Parsing the output with
the same known accounts yields an equal entry.
"""

from datetime import date
from decimal import Decimal

from partyledger.models import EntryKind, ExpenseCategory, ParsedEntry, PaymentMode
from partyledger.parsing.shorthand import ParseContext


def format_date(value: date) -> str:
    if not 2000 <= value.year <= 2099:
        raise ValueError(f"Year {value.year} cannot be written as D/M/YY")
    return f"{value.day}/{value.month}/{value.year % 100:02d}"


def format_amount(value: Decimal) -> str:
    if value == value.to_integral_value():
        return str(value.quantize(Decimal("1")))
    return str(value)


def _with_gst(text: str, entry: ParsedEntry) -> str:
    if entry.has_gst and "GST" not in text.upper():
        return f"{text} GST"
    return text


def render(entry: ParsedEntry, context: ParseContext = ParseContext.DAYBOOK) -> str:
    """Render an entry in the shorthand of the given input context."""
    if context is ParseContext.PAYMENTS:
        return _render_ledger_payment(entry)
    if context is ParseContext.BILLS:
        return _render_ledger_bill(entry)

    when = format_date(entry.date)
    amount = format_amount(entry.amount)

    if entry.kind is EntryKind.BILL:
        if entry.bill_number:
            text = f"{entry.account_name} ({when}) {entry.bill_number} {amount}"
            if entry.gr_number:
                text += f" GR {entry.gr_number}"
            return _with_gst(text, entry)
        return f"{entry.account_name} (date: {when}) {amount}"

    if entry.kind is EntryKind.SALE:
        text = f"1. {amount}"
        if entry.payment_mode is PaymentMode.DIGITAL:
            text += " net"
            if entry.description:
                text += f" {entry.description}"
        elif entry.payment_mode is PaymentMode.CREDIT and entry.account_name:
            text += f" ({entry.account_name})"
        return f"{text} ({when})"

    if entry.kind is EntryKind.PAYMENT:
        name = entry.account_name or ""
        if len(name.split()) == 1:
            text = f"{name} {amount} party"
        else:
            text = f"{name} {amount}"
        return f"{_with_gst(text, entry)} ({when})"

    if entry.kind is EntryKind.EXPENSE:
        if entry.expense_category is ExpenseCategory.SALARY and entry.staff_name:
            pay_type = (entry.description or "").split()[-1:] or ["sal"]
            return f"{entry.staff_name} {pay_type[0]} {amount} ({when})"
        text = f"{entry.description} {amount}" if entry.description else amount
        return f"{_with_gst(text, entry)} ({when})"

    raise ValueError(f"Unhandled entry kind: {entry.kind}")


def _render_ledger_payment(entry: ParsedEntry) -> str:
    text = f"{format_date(entry.date)} {format_amount(entry.amount)}"
    if entry.has_gst:
        text += " GST"
    elif entry.description == "K":
        text += " K"
    if entry.reference:
        text += f" {entry.reference}"
    return text


def _render_ledger_bill(entry: ParsedEntry) -> str:
    text = f"{format_date(entry.date)} {format_amount(entry.amount)}"
    if entry.bill_number:
        text += f" {entry.bill_number}"
    if entry.gr_number:
        text += f" GR {entry.gr_number}"
    return text
