"""Shorthand parsing package."""

from partyledger.parsing.directory import KnownAccounts, PartyDirectory
from partyledger.parsing.render import render
from partyledger.parsing.shorthand import (
    LineError,
    ParseContext,
    ParseOutcome,
    ShorthandParser,
    parse_date,
    split_lines,
)

__all__ = [
    "KnownAccounts",
    "LineError",
    "ParseContext",
    "ParseOutcome",
    "PartyDirectory",
    "ShorthandParser",
    "parse_date",
    "render",
    "split_lines",
]
