"""
Risk Manager

Computes how much exposure each instrument may carry. Limits are derived
from the portfolio's current value on every run and never cached.

Per instrument the bound is capped at max_position_fraction of the
portfolio value. In portfolio-wide mode the bounds of all instruments in a
run share one margin ceiling of max_margin_fraction of the portfolio value,
handed out in the order the instruments were requested.
"""

import logging
from decimal import Decimal
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from ...configs.settings import RiskConfig
from ...core.errors import ConstraintViolation
from ...core.models import ZERO, PortfolioState, RiskLimit, Signal


class RiskManager:
    """Deterministic position and margin limits."""

    def __init__(self, config: Optional[RiskConfig] = None):
        """
        Initialize risk manager.

        Args:
            config: Position and margin fractions
        """
        self.config = config or RiskConfig()
        self.logger = logging.getLogger(f"{__name__}.RiskManager")

    def bound(self, ticker: str, signals: Sequence[Signal], portfolio: PortfolioState,
              prices: Mapping[str, Decimal], margin_available: Optional[Decimal] = None) -> RiskLimit:
        """
        Bound one instrument.

        An instrument with at least one usable directional signal requests the
        full per-instrument cap; otherwise it only keeps what it already holds.

        Args:
            ticker: Instrument to bound
            signals: Complete set of signals for the instrument
            portfolio: Read-only portfolio state
            prices: Known current prices, keyed by ticker
            margin_available: Remaining portfolio-wide ceiling, None for standalone use

        Returns:
            Risk limit for the instrument

        Raises:
            ConstraintViolation: If the computed bound is negative or above the cap
        """
        price = prices.get(ticker)
        if price is None or price <= 0:
            return RiskLimit.zero(ticker, price if price is not None else ZERO, "No current price available")

        total_value = portfolio.total_value(prices)
        if total_value <= 0:
            return RiskLimit.zero(ticker, price, f"Portfolio value {total_value} is not positive")

        per_instrument_cap = self.config.max_position_fraction * total_value
        current_exposure = portfolio.exposure(ticker, price)

        directional = any(
            signal.action.direction != 0 and signal.confidence > 0 and not signal.degraded
            for signal in signals
        )
        requested = per_instrument_cap if directional else min(current_exposure, per_instrument_cap)

        bound_value = requested
        if margin_available is not None:
            bound_value = min(requested, max(ZERO, margin_available))

        remaining = max(ZERO, bound_value - current_exposure)
        self._check(ticker, bound_value, remaining, per_instrument_cap)

        reasoning = {
            'portfolio_value': total_value,
            'per_instrument_cap': per_instrument_cap,
            'requested': requested,
            'current_exposure': current_exposure
        }
        if margin_available is not None:
            reasoning['margin_available'] = max(ZERO, margin_available)

        return RiskLimit(
            ticker=ticker,
            current_price=price,
            max_position_value=bound_value,
            current_exposure=current_exposure,
            remaining_limit=remaining,
            reasoning=reasoning
        )

    def bound_portfolio(self, tickers: Iterable[str], signals: Mapping[str, Sequence[Signal]],
                        portfolio: PortfolioState, prices: Mapping[str, Decimal]) -> Dict[str, RiskLimit]:
        """
        Bound every instrument of a run under the shared margin ceiling.

        Exposure held in instruments outside the run (and priced) is charged
        against the ceiling first; the rest is allocated in ``tickers`` order.

        Returns:
            Risk limits keyed by ticker, in ``tickers`` order
        """
        ordered: List[str] = list(tickers)
        total_value = portfolio.total_value(prices)

        if total_value <= 0:
            self.logger.warning(f"Portfolio value {total_value} is not positive, no new exposure permitted")
            return {
                ticker: RiskLimit.zero(ticker, prices.get(ticker, ZERO),
                                       f"Portfolio value {total_value} is not positive")
                for ticker in ordered
            }

        ceiling = self.config.max_margin_fraction * total_value
        outside_exposure = sum(
            (portfolio.exposure(ticker, prices[ticker])
             for ticker in portfolio.positions if ticker not in ordered and ticker in prices),
            ZERO
        )
        margin_available = ceiling - outside_exposure

        limits = {}
        for ticker in ordered:
            limit = self.bound(ticker, signals.get(ticker, ()), portfolio, prices, margin_available=margin_available)
            limits[ticker] = limit
            margin_available -= limit.max_position_value

        allocated = sum((limit.max_position_value for limit in limits.values()), ZERO)
        if allocated > ceiling:
            raise ConstraintViolation(f"Allocated exposure {allocated} exceeds margin ceiling {ceiling}")

        self.logger.info(f"Bounded {len(limits)} instruments: {allocated} of {ceiling} margin ceiling allocated")
        return limits

    def _check(self, ticker: str, bound_value: Decimal, remaining: Decimal, cap: Decimal) -> None:
        if bound_value < 0 or remaining < 0:
            raise ConstraintViolation(f"Negative risk limit for {ticker}: bound {bound_value}, remaining {remaining}")
        if bound_value > cap:
            raise ConstraintViolation(f"Risk limit for {ticker} ({bound_value}) exceeds per-instrument cap {cap}")
