"""
Custom exceptions for the trading calendar.

All custom exceptions should be defined here for easy discovery
and consistent error handling throughout the package.
"""


class TradeCalendarError(Exception):
    """Base exception for all trading calendar errors."""
    pass


class ConfigurationError(TradeCalendarError):
    """Raised when a calendar or virtual-time configuration is invalid.

    Never retried: construction and reload surface it immediately.
    """
    pass


class NamingConflictError(TradeCalendarError):
    """Raised when a calendar name is already bound to a different calendar."""

    def __init__(self, name: str):
        super().__init__(f"Calendar name '{name}' is already bound to a different calendar")
        self.name = name


class UnknownCalendarError(TradeCalendarError, KeyError):
    """Raised when a manager operation names a calendar that was never registered."""

    def __init__(self, name: str):
        super().__init__(f"Unknown calendar '{name}'")
        self.name = name

    def __str__(self) -> str:
        return self.args[0]


class ResolutionError(TradeCalendarError):
    """Raised when a trade date cannot be resolved (holiday source failure or timeout)."""
    pass


class NoTradingDayError(ResolutionError):
    """Raised when no trading day exists within the configured lookahead window."""

    def __init__(self, start_date, direction: int, max_days: int):
        super().__init__(
            f"No trading day found within {max_days} days "
            f"{'before' if direction < 0 else 'after'} {start_date}"
        )
        self.start_date = start_date
        self.direction = direction
        self.max_days = max_days
