"""Error taxonomy for the seasonality pipeline.

- ParseError: a single row could not be turned into a bar; the row is skippable.
- ValidationError: the whole batch is rejected before anything is written.
- ComputationError: one symbol cannot be aggregated; other symbols continue.
- PersistenceError: the store failed; propagated to the caller.
"""
from typing import List, Optional


class SeasonalityError(Exception):
    """Base class for all pipeline errors."""


class ParseError(SeasonalityError):
    def __init__(self, message: str, row: Optional[int] = None):
        self.row = row
        self.message = message
        prefix = f"Row {row}: " if row is not None else ""
        super().__init__(f"{prefix}{message}")


class ValidationError(SeasonalityError):
    def __init__(self, message: str, errors: Optional[List[str]] = None):
        self.errors = list(errors or [])
        super().__init__(message)


class ComputationError(SeasonalityError):
    def __init__(self, message: str, symbol: Optional[str] = None):
        self.symbol = symbol
        super().__init__(message)


class PersistenceError(SeasonalityError):
    pass
