"""Validation package."""

from partyledger.validation.validator import EntryValidator

__all__ = ["EntryValidator"]
