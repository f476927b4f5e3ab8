"""
Domain Models

Immutable value types shared by the data cache, the analysts, the risk
manager and the portfolio manager. Money is carried as Decimal, share
quantities as int and confidences as float.
"""

import math
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation
from enum import Enum
from types import MappingProxyType
from typing import Dict, Any, List, Optional, Tuple, Mapping

from .errors import ConfigError


ZERO = Decimal('0')


def to_decimal(value: Any) -> Decimal:
    """
    Convert a numeric value to Decimal without binary float artefacts.

    Raises:
        ValueError: If the value is not numeric or not finite
    """
    if isinstance(value, bool):
        raise ValueError(f"Not a numeric value: {value!r}")
    if isinstance(value, Decimal):
        number = value
    else:
        try:
            number = Decimal(str(value))
        except InvalidOperation as e:
            raise ValueError(f"Not a numeric value: {value!r}") from e
    if not number.is_finite():
        raise ValueError(f"Not a finite value: {value!r}")
    return number


@dataclass(frozen=True)
class DateRange:
    """Inclusive calendar range a dataset covers."""
    start: date
    end: date

    @classmethod
    def parse(cls, start: str, end: str) -> 'DateRange':
        """Build a range from two ISO dates (YYYY-MM-DD)."""
        try:
            return cls(date.fromisoformat(start), date.fromisoformat(end))
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid date range {start!r}..{end!r}: {e}") from e

    def validate(self) -> None:
        """Raise ConfigError if the range is reversed."""
        if self.start > self.end:
            raise ConfigError(f"Invalid date range: start {self.start} is after end {self.end}")

    def __str__(self) -> str:
        return f"{self.start.isoformat()}..{self.end.isoformat()}"


class DatasetKind(str, Enum):
    """What a dataset contains."""
    PRICES = 'prices'
    FUNDAMENTALS = 'fundamentals'
    COMBINED = 'combined'

    @property
    def includes_prices(self) -> bool:
        return self in (DatasetKind.PRICES, DatasetKind.COMBINED)

    @property
    def includes_fundamentals(self) -> bool:
        return self in (DatasetKind.FUNDAMENTALS, DatasetKind.COMBINED)


@dataclass(frozen=True)
class CacheKey:
    """Exact-match lookup key for a dataset."""
    ticker: str
    kind: DatasetKind
    date_range: DateRange

    def to_storage_key(self, prefix: str = 'hedge_fund:dataset') -> str:
        """Flat string form used by external key-value stores."""
        return (f"{prefix}:{self.ticker}:{self.kind.value}:"
                f"{self.date_range.start.isoformat()}:{self.date_range.end.isoformat()}")


@dataclass(frozen=True)
class PriceBar:
    """One daily OHLCV bar."""
    time: str
    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal
    volume: int

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'PriceBar':
        return cls(
            time=str(data['time']),
            open=to_decimal(data['open']),
            high=to_decimal(data['high']),
            low=to_decimal(data['low']),
            close=to_decimal(data['close']),
            volume=int(data.get('volume') or 0)
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'time': self.time,
            'open': str(self.open),
            'high': str(self.high),
            'low': str(self.low),
            'close': str(self.close),
            'volume': self.volume
        }


@dataclass(frozen=True)
class FundamentalRecord:
    """
    Fundamental metrics and statement line items for one reporting period.

    The metrics mapping is read-only once the record is built.
    """
    report_period: str
    period: str
    metrics: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, 'metrics', MappingProxyType(dict(self.metrics)))

    def get(self, name: str) -> Optional[float]:
        """Return a metric as float, or None when missing or not numeric."""
        value = self.metrics.get(name)
        if value is None or isinstance(value, bool):
            return None
        try:
            number = float(value)
        except (TypeError, ValueError):
            return None
        return number if math.isfinite(number) else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'report_period': self.report_period,
            'period': self.period,
            'metrics': dict(self.metrics)
        }


@dataclass(frozen=True)
class MarketDataset:
    """
    Time-ordered market data for one instrument over one date range.

    Prices are oldest first, fundamentals newest first. Instances are never
    modified after the fetch that produced them.
    """
    ticker: str
    kind: DatasetKind
    date_range: DateRange
    prices: Tuple[PriceBar, ...] = ()
    fundamentals: Tuple[FundamentalRecord, ...] = ()
    market_cap: Optional[Decimal] = None

    def __post_init__(self):
        object.__setattr__(self, 'prices', tuple(self.prices))
        object.__setattr__(self, 'fundamentals', tuple(self.fundamentals))

    @property
    def latest_price(self) -> Optional[Decimal]:
        """Last close in the range, if any."""
        if not self.prices:
            return None
        return self.prices[-1].close

    def closes(self) -> List[float]:
        return [float(bar.close) for bar in self.prices]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'ticker': self.ticker,
            'kind': self.kind.value,
            'start': self.date_range.start.isoformat(),
            'end': self.date_range.end.isoformat(),
            'prices': [bar.to_dict() for bar in self.prices],
            'fundamentals': [record.to_dict() for record in self.fundamentals],
            'market_cap': str(self.market_cap) if self.market_cap is not None else None
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'MarketDataset':
        market_cap = data.get('market_cap')
        return cls(
            ticker=data['ticker'],
            kind=DatasetKind(data['kind']),
            date_range=DateRange(date.fromisoformat(data['start']), date.fromisoformat(data['end'])),
            prices=tuple(PriceBar.from_dict(bar) for bar in data.get('prices', [])),
            fundamentals=tuple(
                FundamentalRecord(
                    report_period=record['report_period'],
                    period=record.get('period', ''),
                    metrics=record.get('metrics', {})
                )
                for record in data.get('fundamentals', [])
            ),
            market_cap=to_decimal(market_cap) if market_cap is not None else None
        )


@dataclass(frozen=True)
class Instrument:
    """A tradable instrument and its current price."""
    ticker: str
    price: Decimal


class SignalAction(str, Enum):
    """Directional opinion of one analyst."""
    BULLISH = 'bullish'
    BEARISH = 'bearish'
    NEUTRAL = 'neutral'

    @property
    def direction(self) -> int:
        if self is SignalAction.BULLISH:
            return 1
        if self is SignalAction.BEARISH:
            return -1
        return 0

    @classmethod
    def parse(cls, value: str) -> 'SignalAction':
        """Case-insensitive lookup; raises ValueError for unknown actions."""
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Unknown signal action: {value!r}")


@dataclass(frozen=True)
class Signal:
    """One analyst's opinion on one instrument."""
    analyst: str
    ticker: str
    action: SignalAction
    confidence: float
    rationale: str
    degraded: bool = False

    def __post_init__(self):
        if not isinstance(self.action, SignalAction):
            raise ValueError(f"Signal action must be a SignalAction, got {self.action!r}")
        confidence = float(self.confidence)
        if math.isnan(confidence) or not 0.0 <= confidence <= 1.0:
            raise ValueError(f"Signal confidence must be within [0, 1], got {self.confidence}")
        object.__setattr__(self, 'confidence', confidence)

    @classmethod
    def neutral(cls, analyst: str, ticker: str, rationale: str, degraded: bool = True) -> 'Signal':
        """Zero-confidence neutral signal used for missing data and failures."""
        return cls(
            analyst=analyst,
            ticker=ticker,
            action=SignalAction.NEUTRAL,
            confidence=0.0,
            rationale=rationale,
            degraded=degraded
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'analyst': self.analyst,
            'signal': self.action.value,
            'confidence': round(self.confidence, 4),
            'reasoning': self.rationale,
            'degraded': self.degraded
        }


@dataclass(frozen=True)
class RiskLimit:
    """Maximum exposure the risk manager permits for one instrument."""
    ticker: str
    current_price: Decimal
    max_position_value: Decimal
    current_exposure: Decimal
    remaining_limit: Decimal
    reasoning: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, 'reasoning', MappingProxyType(dict(self.reasoning)))

    @classmethod
    def zero(cls, ticker: str, current_price: Decimal, reason: str) -> 'RiskLimit':
        return cls(
            ticker=ticker,
            current_price=current_price,
            max_position_value=ZERO,
            current_exposure=ZERO,
            remaining_limit=ZERO,
            reasoning={'note': reason}
        )

    @property
    def max_shares(self) -> int:
        """Whole shares purchasable within the remaining limit."""
        if self.current_price <= 0:
            return 0
        return int(self.remaining_limit // self.current_price)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'current_price': str(self.current_price),
            'max_position_value': str(self.max_position_value),
            'current_exposure': str(self.current_exposure),
            'remaining_position_limit': str(self.remaining_limit),
            'reasoning': {key: str(value) for key, value in self.reasoning.items()}
        }


@dataclass(frozen=True)
class Position:
    """Signed share quantity (negative = short) and the margin it holds."""
    quantity: int = 0
    margin: Decimal = ZERO

    def __post_init__(self):
        object.__setattr__(self, 'quantity', int(self.quantity))
        object.__setattr__(self, 'margin', to_decimal(self.margin))


@dataclass(frozen=True)
class PortfolioState:
    """
    Cash, positions and margin of the portfolio a run trades against.

    Read-only during a run; a new instance is produced by the single commit
    that follows decision synthesis.
    """
    cash: Decimal
    positions: Mapping[str, Position] = field(default_factory=dict)
    margin_requirement: Decimal = Decimal('0.5')

    def __post_init__(self):
        object.__setattr__(self, 'cash', to_decimal(self.cash))
        object.__setattr__(self, 'margin_requirement', to_decimal(self.margin_requirement))
        object.__setattr__(self, 'positions', MappingProxyType(dict(self.positions)))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'PortfolioState':
        """
        Build a portfolio from plain data.

        Positions may be given as a bare signed quantity or as a mapping with
        ``quantity`` and ``margin``.
        """
        positions = {}
        for ticker, raw in (data.get('positions') or {}).items():
            if isinstance(raw, Mapping):
                positions[ticker] = Position(quantity=raw.get('quantity', 0), margin=raw.get('margin', 0))
            else:
                positions[ticker] = Position(quantity=raw)
        return cls(
            cash=to_decimal(data.get('cash', 0)),
            positions=positions,
            margin_requirement=to_decimal(data.get('margin_requirement', '0.5'))
        )

    def position(self, ticker: str) -> Position:
        return self.positions.get(ticker, Position())

    @property
    def margin_used(self) -> Decimal:
        return sum((position.margin for position in self.positions.values()), ZERO)

    def exposure(self, ticker: str, price: Decimal) -> Decimal:
        """Absolute market value of the position in ``ticker``."""
        return abs(self.position(ticker).quantity) * price

    def total_value(self, prices: Mapping[str, Decimal]) -> Decimal:
        """
        Net liquidation value: cash plus held margin plus signed position values.

        Positions without a known price are left out of the valuation.
        """
        total = self.cash + self.margin_used
        for ticker, position in self.positions.items():
            price = prices.get(ticker)
            if price is not None:
                total += position.quantity * price
        return total

    def to_dict(self) -> Dict[str, Any]:
        return {
            'cash': str(self.cash),
            'margin_requirement': str(self.margin_requirement),
            'margin_used': str(self.margin_used),
            'positions': {
                ticker: {'quantity': position.quantity, 'margin': str(position.margin)}
                for ticker, position in self.positions.items()
            }
        }


class TradeAction(str, Enum):
    """Final action on one instrument."""
    BUY = 'buy'
    SELL = 'sell'
    SHORT = 'short'
    COVER = 'cover'
    HOLD = 'hold'


@dataclass(frozen=True)
class Decision:
    """Risk-bounded trading decision for one instrument."""
    ticker: str
    action: TradeAction
    quantity: int
    confidence: float
    rationale: str
    degraded: bool = False

    def __post_init__(self):
        if self.quantity < 0:
            raise ValueError(f"Decision quantity must be non-negative, got {self.quantity}")
        if self.action is TradeAction.HOLD and self.quantity != 0:
            raise ValueError("A hold decision cannot carry a quantity")
        if self.action is not TradeAction.HOLD and self.quantity == 0:
            raise ValueError(f"A {self.action.value} decision needs a positive quantity")

    def to_dict(self) -> Dict[str, Any]:
        return {
            'action': self.action.value,
            'quantity': self.quantity,
            'confidence': round(self.confidence * 100, 1),
            'reasoning': self.rationale,
            'degraded': self.degraded
        }
