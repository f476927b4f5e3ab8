"""
Error Taxonomy

Exceptions shared by every component of the engine. Fetch and inference
errors are recoverable and degrade a single instrument or signal; run errors
are fatal and reach the caller untouched.
"""

from typing import Optional


class HedgeFundError(Exception):
    """Base class for all engine errors."""


class FetchError(HedgeFundError):
    """Upstream market data could not be retrieved."""

    def __init__(self, message: str, ticker: Optional[str] = None):
        super().__init__(message)
        self.ticker = ticker


class InferenceError(HedgeFundError):
    """A model call failed, timed out or returned nothing usable."""

    def __init__(self, message: str, model_name: Optional[str] = None):
        super().__init__(message)
        self.model_name = model_name


class RunError(HedgeFundError):
    """Fatal error that aborts a whole run."""


class ConfigError(RunError):
    """Invalid run parameters or settings, raised before any work starts."""


class ConstraintViolation(RunError):
    """The risk manager produced a nonsensical bound."""


class RunCancelled(RunError):
    """The run was cancelled or timed out at a suspension point."""
