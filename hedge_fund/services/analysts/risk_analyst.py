"""
Risk Analyst

Price-series analysis: realized volatility, drawdown, moving-average trend
and RSI. The indicators follow the usual textbook definitions and are
computed with numpy and pandas over the dataset's daily closes.
"""

from typing import Dict, Any, List

import numpy as np
import pandas as pd

from .base import AnalystAgent
from ...core.models import Instrument, MarketDataset, Signal, SignalAction


MIN_BARS = 20
TRADING_DAYS = 252


class TechnicalIndicators:
    """Collection of price-series indicator calculations."""

    @staticmethod
    def sma(prices: np.ndarray, window: int) -> float:
        """Simple Moving Average."""
        if len(prices) < window:
            return np.nan
        return float(np.mean(prices[-window:]))

    @staticmethod
    def rsi(prices: np.ndarray, window: int = 14) -> float:
        """Relative Strength Index."""
        if len(prices) < window + 1:
            return np.nan

        deltas = np.diff(prices)
        gains = np.where(deltas > 0, deltas, 0)
        losses = np.where(deltas < 0, -deltas, 0)

        avg_gain = np.mean(gains[-window:])
        avg_loss = np.mean(losses[-window:])

        if avg_loss == 0:
            return 100.0

        rs = avg_gain / avg_loss
        return float(100 - (100 / (1 + rs)))

    @staticmethod
    def annualized_volatility(prices: pd.Series) -> float:
        """Standard deviation of daily returns scaled to a trading year."""
        returns = prices.pct_change().dropna()
        if len(returns) < 2:
            return np.nan
        return float(returns.std() * np.sqrt(TRADING_DAYS))

    @staticmethod
    def max_drawdown(prices: pd.Series) -> float:
        """Largest peak-to-trough decline as a negative fraction."""
        if prices.empty:
            return np.nan
        running_peak = prices.cummax()
        drawdowns = prices / running_peak - 1.0
        return float(drawdowns.min())


class RiskAnalyst(AnalystAgent):
    """
    Scores trend, momentum and risk of an instrument's recent price history.

    Each check adds or subtracts one point; the net score over the number of
    checks that could be evaluated gives direction and confidence. High
    volatility damps the confidence.
    """

    key = 'risk'
    display_name = 'Risk Analyst'

    def __init__(self, high_volatility: float = 0.6, deep_drawdown: float = -0.3,
                 overbought: float = 70.0, oversold: float = 30.0, threshold: float = 0.34):
        super().__init__()
        self.high_volatility = high_volatility
        self.deep_drawdown = deep_drawdown
        self.overbought = overbought
        self.oversold = oversold
        self.threshold = threshold

    def analyze(self, instrument: Instrument, dataset: MarketDataset) -> Signal:
        ticker = instrument.ticker
        closes = dataset.closes()

        if len(closes) < MIN_BARS:
            return self.insufficient_data(ticker, f"{len(closes)} price bars, at least {MIN_BARS} required")

        indicators = self.calculate_indicators(closes)
        score, checks, reasoning = self._score(indicators)

        ratio = score / checks if checks else 0.0
        damping = 0.75 if indicators['volatility'] > self.high_volatility else 1.0

        if ratio >= self.threshold:
            action = SignalAction.BULLISH
            confidence = ratio * damping
        elif ratio <= -self.threshold:
            action = SignalAction.BEARISH
            confidence = -ratio * damping
        else:
            action = SignalAction.NEUTRAL
            confidence = 0.5

        rationale = (f"Volatility {indicators['volatility'] * 100:.1f}%, "
                     f"max drawdown {indicators['max_drawdown'] * 100:.1f}%, "
                     f"RSI {indicators['rsi']:.1f}. " + '; '.join(reasoning))

        return Signal(
            analyst=self.key,
            ticker=ticker,
            action=action,
            confidence=round(min(1.0, max(0.0, confidence)), 4),
            rationale=rationale
        )

    def calculate_indicators(self, closes: List[float]) -> Dict[str, Any]:
        series = pd.Series(closes, dtype=float)
        prices = series.to_numpy()

        return {
            'last_close': float(prices[-1]),
            'sma_20': TechnicalIndicators.sma(prices, 20),
            'sma_50': TechnicalIndicators.sma(prices, 50),
            'rsi': TechnicalIndicators.rsi(prices, 14),
            'volatility': TechnicalIndicators.annualized_volatility(series),
            'max_drawdown': TechnicalIndicators.max_drawdown(series)
        }

    def _score(self, indicators: Dict[str, Any]):
        score = 0
        checks = 0
        reasoning = []

        last_close = indicators['last_close']
        sma_20 = indicators['sma_20']
        sma_50 = indicators['sma_50']
        rsi = indicators['rsi']

        checks += 1
        if last_close > sma_20:
            score += 1
            reasoning.append("Price above 20-day average")
        else:
            score -= 1
            reasoning.append("Price below 20-day average")

        if not np.isnan(sma_50):
            checks += 1
            if sma_20 > sma_50:
                score += 1
                reasoning.append("20-day average above 50-day average (uptrend)")
            else:
                score -= 1
                reasoning.append("20-day average below 50-day average (downtrend)")

        if not np.isnan(rsi):
            checks += 1
            if rsi > self.overbought:
                score -= 1
                reasoning.append("RSI overbought")
            elif rsi < self.oversold:
                score += 1
                reasoning.append("RSI oversold")
            else:
                reasoning.append("RSI in normal range")

        if not np.isnan(indicators['max_drawdown']) and indicators['max_drawdown'] < self.deep_drawdown:
            checks += 1
            score -= 1
            reasoning.append("Deep drawdown in range")

        return score, checks, reasoning
