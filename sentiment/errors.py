"""
Error Taxonomy
==============

Exceptions raised by the sentiment pipeline.

Every error derives from SentimentError, which is itself a ValueError, so
callers that already guard pipeline steps with ``except ValueError`` keep
working. All errors are raised immediately and never retried: the inputs are
static files and a retry cannot fix a malformed one.
"""


class SentimentError(ValueError):
    """Base class for all pipeline errors."""


class InvalidDateError(SentimentError):
    """Raised when a year/month pair or a raw date cannot be aligned."""


class ColumnNotFoundError(SentimentError):
    """Raised when a table does not contain a required column."""

    def __init__(self, missing, table_name: str = "table", available=None):
        self.missing = list(missing)
        self.table_name = table_name
        self.available = list(available) if available is not None else None
        message = f"Column(s) {self.missing} not found in {table_name}"
        if self.available is not None:
            message += f". Available columns: {self.available}"
        super().__init__(message)


class LengthMismatchError(SentimentError):
    """Raised when columns that must be aligned by position differ in length."""


class DuplicateKeyError(SentimentError):
    """Raised when a join key is not unique within a table."""


class EmptyGroupError(SentimentError):
    """Raised when a group has no rows with a usable value."""


class DegenerateColumnError(SentimentError):
    """Raised when a correlation is undefined (zero variance or too few pairs)."""


class InsufficientDataError(SentimentError):
    """Raised when there are not enough aligned rows to fit a model."""


class CollinearPredictorsError(SentimentError):
    """Raised when the predictor matrix does not have full column rank."""


class SchemaMismatchError(SentimentError):
    """Raised when prediction inputs do not match the trained predictor schema."""
