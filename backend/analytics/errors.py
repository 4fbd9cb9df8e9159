"""Error taxonomy for trade ingestion and analytics.

Row-level errors never leave the parser: they are collected as rejections.
Everything else propagates to the caller as a typed exception.
"""


class TradeInsightsError(Exception):
    """Base class for every error raised by the analytics package."""


class RowError(TradeInsightsError, ValueError):
    """A single CSV row could not become a Trade."""

    def __init__(self, message: str, raw_time=None):
        super().__init__(message)
        self.raw_time = raw_time


class DateResolutionFailure(RowError):
    def __init__(self, value):
        super().__init__(f"Invalid date format: {value!r}", raw_time=value)
        self.value = value


class NumericFieldInvalid(RowError):
    def __init__(self, field: str, value, raw_time=None):
        super().__init__(f"Invalid number in '{field}': {value!r}", raw_time=raw_time)
        self.field = field
        self.value = value


class RequiredFieldMissing(RowError):
    def __init__(self, field: str, raw_time=None):
        super().__init__(f"Missing value for '{field}'", raw_time=raw_time)
        self.field = field


class MalformedInput(TradeInsightsError, ValueError):
    """The upload cannot be read as delimited rows at all."""


class UndefinedStatistic(TradeInsightsError, LookupError):
    """A ranking or ratio was requested over an empty set."""

    def __init__(self, statistic: str, reason: str = "no eligible trades"):
        super().__init__(f"{statistic} is undefined: {reason}")
        self.statistic = statistic
        self.reason = reason


class InvalidFilterInput(TradeInsightsError, ValueError):
    def __init__(self, field: str, value, reason: str = ""):
        msg = f"Invalid {field}: {value!r}"
        if reason:
            msg = f"{msg} ({reason})"
        super().__init__(msg)
        self.field = field
        self.value = value


class SummaryUnavailable(TradeInsightsError):
    """The summary collaborator failed; carries a user-facing message."""
