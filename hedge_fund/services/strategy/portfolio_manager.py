"""
Portfolio Manager

Reconciles every analyst signal for an instrument with its risk limit into
one sized, auditable decision, and applies a committed decision set to the
portfolio.
"""

import logging
from decimal import Decimal, ROUND_DOWN
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from ...configs.settings import PortfolioConfig
from ...core.models import (
    ZERO, Decision, PortfolioState, Position, RiskLimit, Signal, SignalAction, TradeAction
)


def _whole_shares(value: Decimal, price: Decimal) -> int:
    if price <= 0 or value <= 0:
        return 0
    return int((value / price).quantize(Decimal('1'), rounding=ROUND_DOWN))


class PortfolioManager:
    """
    Decision synthesizer.

    Each decision depends only on that instrument's signals, its risk limit,
    the read-only portfolio and the cash not yet committed to instruments
    earlier in the request.
    """

    def __init__(self, config: Optional[PortfolioConfig] = None):
        """
        Initialize portfolio manager.

        Args:
            config: Decision thresholds
        """
        self.config = config or PortfolioConfig()
        self.logger = logging.getLogger(f"{__name__}.PortfolioManager")

    def decide(self, signals: Mapping[str, Sequence[Signal]], limits: Mapping[str, RiskLimit],
               portfolio: PortfolioState, degraded: Optional[Mapping[str, str]] = None) -> Dict[str, Decision]:
        """
        Produce one decision per instrument.

        Args:
            signals: Complete signal sets keyed by ticker, in request order
            limits: Risk limits keyed by ticker
            portfolio: Read-only portfolio state
            degraded: Tickers whose market data is missing, with the reason

        Returns:
            Decisions keyed by ticker, in the order of ``signals``
        """
        degraded = degraded or {}
        decisions = {}
        cash_available = portfolio.cash

        for ticker, instrument_signals in signals.items():
            limit = limits.get(ticker) or RiskLimit.zero(ticker, ZERO, "No risk limit computed")
            decision = self.decide_instrument(ticker, instrument_signals, limit, portfolio,
                                              degraded.get(ticker), cash_available=cash_available)
            decisions[ticker] = decision

            # Buys and shorts draw on one cash balance, in request order
            if decision.action is TradeAction.BUY:
                cash_available -= decision.quantity * limit.current_price
            elif decision.action is TradeAction.SHORT:
                cash_available -= decision.quantity * limit.current_price * portfolio.margin_requirement
            self.logger.info(f"{ticker}: {decision.action.value} {decision.quantity}")

        return decisions

    def decide_instrument(self, ticker: str, signals: Sequence[Signal], limit: RiskLimit,
                          portfolio: PortfolioState, degraded_reason: Optional[str] = None,
                          cash_available: Optional[Decimal] = None) -> Decision:
        """
        Synthesize the decision for a single instrument.

        Args:
            ticker: Instrument identifier
            signals: Every signal collected for the instrument
            limit: Risk limit for the instrument
            portfolio: Read-only portfolio state
            degraded_reason: Why the market data is missing, if it is
            cash_available: Cash left for new exposure; defaults to the portfolio cash
        """
        if degraded_reason is not None:
            return Decision(
                ticker=ticker,
                action=TradeAction.HOLD,
                quantity=0,
                confidence=0.0,
                rationale=f"Hold: missing market data for {ticker} ({degraded_reason})",
                degraded=True
            )

        signal_text = self._describe_signals(signals)
        limit_text = (f"limit {limit.max_position_value} (remaining {limit.remaining_limit}, "
                      f"exposure {limit.current_exposure}, price {limit.current_price})")

        if not signals:
            return self._hold(ticker, 0.0, f"Hold: no analyst signals; {limit_text}")

        net_score = sum(signal.confidence * signal.action.direction for signal in signals) / len(signals)
        majority, tied = self._majority(signals)
        summary = f"signals {signal_text}; net score {net_score:.4f}; {limit_text}"

        if tied:
            return self._hold(ticker, abs(net_score), f"Hold: tie between {tied}; {summary}")
        if majority is SignalAction.NEUTRAL or net_score == 0:
            return self._hold(ticker, abs(net_score), f"Hold: no directional majority; {summary}")
        if abs(net_score) < self.config.min_net_score:
            return self._hold(ticker, abs(net_score),
                              f"Hold: net score below {self.config.min_net_score}; {summary}")

        cash = portfolio.cash if cash_available is None else cash_available
        action, quantity, sizing = self._size(majority, abs(net_score), limit, portfolio.position(ticker),
                                              cash, portfolio.margin_requirement)

        if quantity == 0:
            return self._hold(ticker, abs(net_score),
                              f"Hold: {action.value} clamped to zero ({sizing}); {summary}")

        return Decision(
            ticker=ticker,
            action=action,
            quantity=quantity,
            confidence=round(abs(net_score), 4),
            rationale=f"{action.value.capitalize()} {quantity} ({sizing}); {summary}"
        )

    def _size(self, majority: SignalAction, strength: float, limit: RiskLimit, position: Position,
              cash: Decimal, margin_requirement: Decimal) -> Tuple[TradeAction, int, str]:
        price = limit.current_price
        factor = Decimal(str(strength))

        if majority is SignalAction.BULLISH and position.quantity < 0:
            held = -position.quantity
            quantity = min(held, int(held * strength))
            return TradeAction.COVER, quantity, f"cover {strength:.2f} of {held} short"

        if majority is SignalAction.BEARISH and position.quantity > 0:
            held = position.quantity
            quantity = min(held, int(held * strength))
            return TradeAction.SELL, quantity, f"sell {strength:.2f} of {held} held"

        target = factor * limit.max_position_value
        increase = min(max(ZERO, target - limit.current_exposure), limit.remaining_limit)

        if majority is SignalAction.BULLISH:
            affordable = max(ZERO, cash)
            value = min(increase, affordable)
            return TradeAction.BUY, _whole_shares(value, price), f"target {target:.2f}, cash {affordable}"

        affordable = max(ZERO, cash) / margin_requirement
        value = min(increase, affordable)
        return TradeAction.SHORT, _whole_shares(value, price), f"target {target:.2f}, margin capacity {affordable:.2f}"

    def _majority(self, signals: Sequence[Signal]) -> Tuple[Optional[SignalAction], str]:
        """
        Action with the largest summed confidence.

        Returns:
            (majority action, '') or (None, description of the tied actions)
        """
        weights: Dict[SignalAction, float] = {}
        for signal in signals:
            weights[signal.action] = weights.get(signal.action, 0.0) + signal.confidence

        top = max(weights.values())
        leaders = [action for action in SignalAction if action in weights and weights[action] == top]
        if len(leaders) > 1:
            return None, ' and '.join(f"{action.value}({top:.2f})" for action in leaders)
        return leaders[0], ''

    def _describe_signals(self, signals: Sequence[Signal]) -> str:
        parts = []
        for signal in signals:
            text = f"{signal.analyst}={signal.action.value}({signal.confidence:.2f})"
            if signal.degraded:
                text += "[degraded]"
            parts.append(text)
        return ', '.join(parts) if parts else 'none'

    def _hold(self, ticker: str, confidence: float, rationale: str) -> Decision:
        return Decision(
            ticker=ticker,
            action=TradeAction.HOLD,
            quantity=0,
            confidence=round(confidence, 4),
            rationale=rationale
        )

    def apply_decisions(self, portfolio: PortfolioState, decisions: Mapping[str, Decision],
                        prices: Mapping[str, Decimal]) -> PortfolioState:
        """
        Apply a decision set to the portfolio in one step.

        Args:
            portfolio: State the decisions were made against; not modified
            decisions: Decisions keyed by ticker
            prices: Execution prices keyed by ticker

        Returns:
            New portfolio state
        """
        cash = portfolio.cash
        positions: Dict[str, Position] = dict(portfolio.positions)
        requirement = portfolio.margin_requirement
        applied: List[str] = []

        for ticker, decision in decisions.items():
            if decision.action is TradeAction.HOLD:
                continue

            price = prices.get(ticker)
            if price is None:
                self.logger.warning(f"No price for {ticker}, skipping {decision.action.value}")
                continue

            position = positions.get(ticker, Position())
            quantity = position.quantity
            margin = position.margin
            shares = decision.quantity

            if decision.action is TradeAction.BUY:
                cash -= shares * price
                quantity += shares

            elif decision.action is TradeAction.SELL:
                shares = min(shares, max(0, quantity))
                cash += shares * price
                quantity -= shares

            elif decision.action is TradeAction.SHORT:
                proceeds = shares * price
                margin_posted = proceeds * requirement
                cash += proceeds - margin_posted
                margin += margin_posted
                quantity -= shares

            elif decision.action is TradeAction.COVER:
                held = max(0, -quantity)
                shares = min(shares, held)
                released = margin * shares / held if held else ZERO
                cash += released - shares * price
                margin -= released
                quantity += shares

            if quantity == 0 and margin == 0:
                positions.pop(ticker, None)
            else:
                positions[ticker] = Position(quantity=quantity, margin=margin)
            applied.append(f"{decision.action.value} {shares} {ticker}")

        if applied:
            self.logger.info(f"Committed {len(applied)} trades: {', '.join(applied)}")

        return PortfolioState(cash=cash, positions=positions, margin_requirement=requirement)
