"""
Analyst Agent Interface

Every analyst turns one instrument's dataset into one Signal. Analysts never
raise for missing data; they answer with a zero-confidence neutral signal
that names what was missing.
"""

import logging
from abc import ABC, abstractmethod

from ...core.models import Instrument, MarketDataset, Signal


class AnalystAgent(ABC):
    """Base class for analyst variants."""

    key: str = ''
    display_name: str = ''

    def __init__(self):
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    @abstractmethod
    def analyze(self, instrument: Instrument, dataset: MarketDataset) -> Signal:
        """
        Produce a signal for one instrument.

        Args:
            instrument: Instrument under analysis
            dataset: Read-only market data for the instrument

        Returns:
            Signal with confidence in [0, 1]
        """
        pass

    def insufficient_data(self, ticker: str, deficiency: str) -> Signal:
        self.logger.warning(f"{self.display_name or self.key} has insufficient data for {ticker}: {deficiency}")
        return Signal.neutral(self.key, ticker, f"Insufficient data: {deficiency}")

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(key={self.key!r})"
