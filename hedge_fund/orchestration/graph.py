"""
Orchestration Graph

State machine that threads one AnalysisState through data fetching, the
analyst fan-out, risk bounding and decision synthesis. Per-instrument
trouble degrades that instrument; only run-wide precondition violations,
constraint violations and cancellation fail the run.
"""

import json
import logging
import threading
import time
import uuid
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Dict, Any, Iterable, List, Optional, Sequence, Tuple, Union

from ..configs.settings import OrchestrationConfig
from ..core.data_cache import DataCache
from ..core.errors import ConfigError, FetchError, RunCancelled, RunError
from ..core.models import (
    CacheKey, DateRange, Decision, Instrument, MarketDataset, PortfolioState, RiskLimit, Signal
)
from ..services.analysts.base import AnalystAgent
from ..services.strategy.portfolio_manager import PortfolioManager
from ..services.strategy.risk_manager import RiskManager


class RunState(str, Enum):
    IDLE = 'idle'
    DATA_FETCHING = 'data_fetching'
    ANALYSTS_RUNNING = 'analysts_running'
    RISK_BOUNDING = 'risk_bounding'
    DECISION_SYNTHESIS = 'decision_synthesis'
    COMPLETED = 'completed'
    FAILED = 'failed'


ALLOWED_TRANSITIONS = {
    RunState.IDLE: {RunState.DATA_FETCHING, RunState.FAILED},
    RunState.DATA_FETCHING: {RunState.ANALYSTS_RUNNING, RunState.FAILED},
    RunState.ANALYSTS_RUNNING: {RunState.RISK_BOUNDING, RunState.FAILED},
    RunState.RISK_BOUNDING: {RunState.DECISION_SYNTHESIS, RunState.FAILED},
    RunState.DECISION_SYNTHESIS: {RunState.COMPLETED, RunState.FAILED},
    RunState.COMPLETED: set(),
    RunState.FAILED: set(),
}


class CancellationToken:
    """Thread-safe cancellation flag shared between a caller and a run."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass
class InstrumentRecord:
    """Everything the run has learned about one instrument."""
    ticker: str
    dataset: Optional[MarketDataset] = None
    instrument: Optional[Instrument] = None
    fetch_error: Optional[str] = None
    signals: Dict[str, Signal] = field(default_factory=dict)
    risk_limit: Optional[RiskLimit] = None

    @property
    def degraded(self) -> bool:
        return self.fetch_error is not None


@dataclass
class AnalysisState:
    """
    Per-run aggregate, owned by the graph for the duration of one run.

    Instrument records are addressed by ticker and kept in request order.
    """
    run_id: str
    date_range: DateRange
    portfolio: PortfolioState
    records: Dict[str, InstrumentRecord]
    state: RunState = RunState.IDLE
    history: List[Tuple[RunState, datetime]] = field(default_factory=list)
    decisions: Dict[str, Decision] = field(default_factory=dict)

    @property
    def tickers(self) -> List[str]:
        return list(self.records)

    def prices(self) -> Dict[str, Decimal]:
        return {
            ticker: record.instrument.price
            for ticker, record in self.records.items()
            if record.instrument is not None
        }


@dataclass(frozen=True)
class RunResult:
    """Complete outcome of a successful run."""
    run_id: str
    decisions: Dict[str, Decision]
    analyst_signals: Dict[str, Dict[str, Signal]]
    risk_limits: Dict[str, RiskLimit]
    portfolio: PortfolioState
    transitions: Tuple[Tuple[str, str], ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'run_id': self.run_id,
            'decisions': {ticker: decision.to_dict() for ticker, decision in self.decisions.items()},
            'analyst_signals': {
                analyst: {ticker: signal.to_dict() for ticker, signal in signals.items()}
                for analyst, signals in self.analyst_signals.items()
            },
            'risk_limits': {ticker: limit.to_dict() for ticker, limit in self.risk_limits.items()},
            'portfolio': self.portfolio.to_dict(),
            'transitions': [{'state': state, 'at': at} for state, at in self.transitions]
        }


def show_agent_reasoning(output: Any, agent_name: str, logger: Optional[logging.Logger] = None) -> None:
    """Log an agent's output as indented JSON inside a banner."""
    logger = logger or logging.getLogger(__name__)
    body = json.dumps(output, indent=2, default=str)
    logger.info(f"\n{'=' * 10} {agent_name:^28} {'=' * 10}\n{body}\n{'=' * 50}")


class OrchestrationGraph:
    """
    Runs the analysis pipeline for one request at a time.

    Stages:
    - DataFetching: one cache lookup per instrument, fanned out
    - AnalystsRunning: every analyst on every instrument, fanned out
    - RiskBounding: portfolio-wide limits in request order
    - DecisionSynthesis: one decision per instrument, then a single commit

    Every fan-out is a barrier. Cancellation and the run timeout are checked
    while waiting on it; in-flight work is abandoned, not awaited.
    """

    def __init__(self, cache: DataCache, analysts: Sequence[AnalystAgent], risk_manager: RiskManager,
                 portfolio_manager: PortfolioManager, config: Optional[OrchestrationConfig] = None,
                 show_reasoning: bool = False):
        """
        Initialize the graph.

        Args:
            cache: Dataset cache shared by all instruments of a run
            analysts: Analysts run against every instrument
            risk_manager: Limit calculator
            portfolio_manager: Decision synthesizer
            config: Worker, dataset and timeout settings
            show_reasoning: Log each stage's output as JSON
        """
        self.cache = cache
        self.analysts = list(analysts)
        self.risk_manager = risk_manager
        self.portfolio_manager = portfolio_manager
        self.config = config or OrchestrationConfig()
        self.show_reasoning = show_reasoning
        self.last_transitions: List[RunState] = []
        self.logger = logging.getLogger(f"{__name__}.OrchestrationGraph")

    def run(self, instruments: Iterable[Union[str, Instrument]], date_range: DateRange,
            portfolio: PortfolioState, cancel_token: Optional[CancellationToken] = None) -> RunResult:
        """
        Execute one run from Idle.

        Args:
            instruments: Tickers (or instruments) in request order
            date_range: Range of market data to analyze
            portfolio: Portfolio to trade against; never modified
            cancel_token: Optional cancellation flag

        Returns:
            Run result with exactly one decision per requested instrument

        Raises:
            ConfigError: If a run-wide precondition is violated
            ConstraintViolation: If the risk manager produced a nonsensical bound
            RunCancelled: If the run was cancelled or timed out
        """
        state = AnalysisState(
            run_id=str(uuid.uuid4()),
            date_range=date_range,
            portfolio=portfolio,
            records={}
        )
        state.history.append((RunState.IDLE, datetime.now(timezone.utc)))
        token = cancel_token or CancellationToken()

        executor = None
        try:
            state.records = self._validate(instruments, date_range, portfolio)
            deadline = None
            if self.config.run_timeout_seconds is not None:
                deadline = time.monotonic() + self.config.run_timeout_seconds

            executor = ThreadPoolExecutor(max_workers=self.config.max_workers, thread_name_prefix='hedge-fund')
            self.logger.info(f"Run {state.run_id} started for {', '.join(state.tickers)} over {date_range}")

            self._transition(state, RunState.DATA_FETCHING)
            self._fetch_data(state, executor, token, deadline)

            self._transition(state, RunState.ANALYSTS_RUNNING)
            self._run_analysts(state, executor, token, deadline)

            self._transition(state, RunState.RISK_BOUNDING)
            self._check_cancelled(token, deadline)
            self._bound_risk(state)

            self._transition(state, RunState.DECISION_SYNTHESIS)
            self._check_cancelled(token, deadline)
            new_portfolio = self._synthesize(state)

            self._transition(state, RunState.COMPLETED)
        except Exception as e:
            self._transition(state, RunState.FAILED)
            if executor is not None:
                executor.shutdown(wait=False, cancel_futures=True)
            if isinstance(e, RunError):
                self.logger.error(f"Run {state.run_id} failed: {e}")
            else:
                self.logger.error(f"Run {state.run_id} failed unexpectedly: {e}")
            raise
        finally:
            self.last_transitions = [entry[0] for entry in state.history]

        executor.shutdown(wait=True)
        self.logger.info(f"Run {state.run_id} completed with {len(state.decisions)} decisions")

        return RunResult(
            run_id=state.run_id,
            decisions=dict(state.decisions),
            analyst_signals={
                analyst.key: {
                    ticker: record.signals[analyst.key]
                    for ticker, record in state.records.items()
                    if analyst.key in record.signals
                }
                for analyst in self.analysts
            },
            risk_limits={ticker: record.risk_limit for ticker, record in state.records.items()},
            portfolio=new_portfolio,
            transitions=tuple((entry[0].value, entry[1].isoformat()) for entry in state.history)
        )

    def _validate(self, instruments: Iterable[Union[str, Instrument]], date_range: DateRange,
                  portfolio: PortfolioState) -> Dict[str, InstrumentRecord]:
        tickers = []
        for item in instruments or []:
            ticker = item.ticker if isinstance(item, Instrument) else item
            if not isinstance(ticker, str) or not ticker.strip():
                raise ConfigError(f"Invalid instrument identifier: {item!r}")
            tickers.append(ticker.strip())

        if not tickers:
            raise ConfigError("At least one instrument is required")

        duplicates = sorted({ticker for ticker in tickers if tickers.count(ticker) > 1})
        if duplicates:
            raise ConfigError(f"Duplicate instruments in request: {', '.join(duplicates)}")

        date_range.validate()

        if not self.analysts:
            raise ConfigError("At least one analyst is required")
        if portfolio.cash < 0:
            raise ConfigError(f"Portfolio cash must not be negative, got {portfolio.cash}")
        if portfolio.cash <= 0 and not portfolio.positions:
            raise ConfigError("Portfolio has no cash and no positions")
        if not Decimal('0') < portfolio.margin_requirement <= Decimal('1'):
            raise ConfigError(f"Margin requirement must be in (0, 1], got {portfolio.margin_requirement}")

        return {ticker: InstrumentRecord(ticker=ticker) for ticker in tickers}

    def _transition(self, state: AnalysisState, target: RunState) -> None:
        if target not in ALLOWED_TRANSITIONS[state.state]:
            raise RuntimeError(f"Invalid run transition {state.state.value} -> {target.value}")
        self.logger.info(f"Run {state.run_id}: {state.state.value} -> {target.value}")
        state.state = target
        state.history.append((target, datetime.now(timezone.utc)))

    def _check_cancelled(self, token: CancellationToken, deadline: Optional[float]) -> None:
        if token.cancelled:
            raise RunCancelled("Run cancelled")
        if deadline is not None and time.monotonic() > deadline:
            raise RunCancelled(f"Run exceeded its {self.config.run_timeout_seconds}s timeout")

    def _await_all(self, futures: Iterable[Future], token: CancellationToken, deadline: Optional[float]) -> None:
        pending = set(futures)
        while pending:
            self._check_cancelled(token, deadline)
            _, pending = wait(pending, timeout=self.config.poll_interval_seconds, return_when=FIRST_COMPLETED)
        self._check_cancelled(token, deadline)

    def _fetch_data(self, state: AnalysisState, executor: ThreadPoolExecutor,
                    token: CancellationToken, deadline: Optional[float]) -> None:
        self._check_cancelled(token, deadline)
        kind = self.config.dataset_kind

        futures = {
            executor.submit(self.cache.get_or_fetch, CacheKey(ticker, kind, state.date_range)): ticker
            for ticker in state.tickers
        }
        self._await_all(futures, token, deadline)

        for future, ticker in futures.items():
            record = state.records[ticker]
            try:
                dataset = future.result()
            except FetchError as e:
                record.fetch_error = str(e)
                self.logger.warning(f"Degrading {ticker}: {e}")
                continue
            except Exception as e:
                record.fetch_error = f"unexpected fetch failure: {e}"
                self.logger.error(f"Degrading {ticker} after unexpected fetch failure: {e}")
                continue

            record.dataset = dataset
            price = dataset.latest_price
            if kind.includes_prices and price is None:
                record.fetch_error = f"no price data between {state.date_range.start} and {state.date_range.end}"
                self.logger.warning(f"Degrading {ticker}: {record.fetch_error}")
                continue
            if price is not None:
                record.instrument = Instrument(ticker=ticker, price=price)

        degraded = [ticker for ticker, record in state.records.items() if record.degraded]
        self.logger.info(f"Fetched data for {len(state.records) - len(degraded)}/{len(state.records)} instruments")

    def _run_analysts(self, state: AnalysisState, executor: ThreadPoolExecutor,
                      token: CancellationToken, deadline: Optional[float]) -> None:
        self._check_cancelled(token, deadline)

        futures: Dict[Future, Tuple[str, AnalystAgent]] = {}
        for ticker, record in state.records.items():
            if record.degraded:
                continue
            instrument = record.instrument or Instrument(ticker=ticker, price=Decimal('0'))
            for analyst in self.analysts:
                futures[executor.submit(analyst.analyze, instrument, record.dataset)] = (ticker, analyst)

        self._await_all(futures, token, deadline)

        results: Dict[Tuple[str, str], Signal] = {}
        for future, (ticker, analyst) in futures.items():
            try:
                signal = future.result()
                if not isinstance(signal, Signal):
                    raise TypeError(f"expected Signal, got {type(signal).__name__}")
            except Exception as e:
                self.logger.error(f"{analyst.key} failed on {ticker}: {e}")
                signal = Signal.neutral(analyst.key, ticker, f"Analyst failed: {e}")
            results[(ticker, analyst.key)] = signal

        for ticker, record in state.records.items():
            for analyst in self.analysts:
                if record.degraded:
                    record.signals[analyst.key] = Signal.neutral(
                        analyst.key, ticker, f"Market data unavailable: {record.fetch_error}"
                    )
                else:
                    record.signals[analyst.key] = results[(ticker, analyst.key)]

        if self.show_reasoning:
            for analyst in self.analysts:
                show_agent_reasoning(
                    {ticker: record.signals[analyst.key].to_dict() for ticker, record in state.records.items()},
                    analyst.display_name or analyst.key,
                    self.logger
                )

    def _bound_risk(self, state: AnalysisState) -> None:
        signals = {ticker: list(record.signals.values()) for ticker, record in state.records.items()}
        limits = self.risk_manager.bound_portfolio(state.tickers, signals, state.portfolio, state.prices())

        for ticker, record in state.records.items():
            record.risk_limit = limits[ticker]

        if self.show_reasoning:
            show_agent_reasoning({ticker: limit.to_dict() for ticker, limit in limits.items()},
                                 'Risk Management Agent', self.logger)

    def _synthesize(self, state: AnalysisState) -> PortfolioState:
        signals = {ticker: list(record.signals.values()) for ticker, record in state.records.items()}
        limits = {ticker: record.risk_limit for ticker, record in state.records.items()}
        degraded = {ticker: record.fetch_error for ticker, record in state.records.items() if record.degraded}

        state.decisions = self.portfolio_manager.decide(signals, limits, state.portfolio, degraded=degraded)

        if self.show_reasoning:
            show_agent_reasoning({ticker: decision.to_dict() for ticker, decision in state.decisions.items()},
                                 'Portfolio Management Agent', self.logger)

        return self.portfolio_manager.apply_decisions(state.portfolio, state.decisions, state.prices())
