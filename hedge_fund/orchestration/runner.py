"""
Run Entry Point

run_analysis() is the single entry point callers use: it turns a request
into an orchestration graph built from explicit settings and runs it.
"""

import logging
from datetime import date
from typing import Any, Iterable, Mapping, Optional, Sequence, Union

from .factory import build_dataset_store, build_inference_provider, build_market_data_provider
from .graph import CancellationToken, OrchestrationGraph, RunResult
from ..configs.settings import AnalysisSettings
from ..core.data_cache import DataCache
from ..core.errors import ConfigError
from ..core.models import DateRange, Instrument, PortfolioState
from ..services.analysts import AnalystAgent, create_analysts
from ..services.data_ingestion.market_data_provider import MarketDataProvider
from ..services.inference.model_provider import ModelInferenceProvider
from ..services.strategy.portfolio_manager import PortfolioManager
from ..services.strategy.risk_manager import RiskManager

logger = logging.getLogger(__name__)


def _as_date_range(value: Union[DateRange, Sequence[Any]]) -> DateRange:
    if isinstance(value, DateRange):
        return value
    try:
        start, end = value
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid date range: {value!r}") from e
    if isinstance(start, date) and isinstance(end, date):
        return DateRange(start, end)
    return DateRange.parse(start, end)


def _as_portfolio(value: Union[PortfolioState, Mapping[str, Any]]) -> PortfolioState:
    if isinstance(value, PortfolioState):
        return value
    try:
        return PortfolioState.from_dict(value)
    except (AttributeError, TypeError, ValueError) as e:
        raise ConfigError(f"Invalid portfolio parameters: {e}") from e


def run_analysis(instruments: Iterable[Union[str, Instrument]],
                 date_range: Union[DateRange, Sequence[Any]],
                 portfolio: Union[PortfolioState, Mapping[str, Any]],
                 analyst_selection: Optional[Iterable[Union[str, AnalystAgent]]] = None,
                 *,
                 settings: Optional[AnalysisSettings] = None,
                 market_data_provider: Optional[MarketDataProvider] = None,
                 inference_provider: Optional[ModelInferenceProvider] = None,
                 cache: Optional[DataCache] = None,
                 cancel_token: Optional[CancellationToken] = None,
                 show_reasoning: Optional[bool] = None) -> RunResult:
    """
    Analyze a set of instruments and return one decision per instrument.

    Args:
        instruments: Tickers in request order; this order drives margin allocation
        date_range: DateRange or a (start, end) pair of ISO strings or dates
        portfolio: PortfolioState or its dict form (cash, positions, margin_requirement)
        analyst_selection: Registry keys and/or AnalystAgent instances;
                           None uses the configured default, empty is rejected
        settings: Run settings; loaded from analysis.yaml when omitted
        market_data_provider: Upstream data source; built from settings when omitted
        inference_provider: Model provider; built from settings when omitted
        cache: Dataset cache to reuse across runs; a fresh one otherwise
        cancel_token: Cancels the run at its next suspension point
        show_reasoning: Log every stage's output; defaults to the settings value

    Returns:
        Run result; the caller's portfolio is left untouched

    Raises:
        RunError: ConfigError, ConstraintViolation or RunCancelled
    """
    settings = settings or AnalysisSettings.load()
    date_range = _as_date_range(date_range)
    portfolio = _as_portfolio(portfolio)

    if analyst_selection is None:
        selection = list(settings.analysts.default_selection)
    else:
        selection = list(analyst_selection)
        if not selection:
            raise ConfigError("At least one analyst is required")

    if inference_provider is None:
        inference_provider = build_inference_provider(settings)
    analysts = create_analysts(selection, inference=inference_provider)

    if cache is None:
        provider = market_data_provider or build_market_data_provider(settings)
        cache = DataCache(provider, store=build_dataset_store(settings))

    if show_reasoning is None:
        show_reasoning = settings.analysts.show_reasoning

    graph = OrchestrationGraph(
        cache=cache,
        analysts=analysts,
        risk_manager=RiskManager(settings.risk),
        portfolio_manager=PortfolioManager(settings.portfolio),
        config=settings.orchestration,
        show_reasoning=show_reasoning
    )

    logger.info(f"Running {', '.join(analyst.key for analyst in analysts)} analysts")
    return graph.run(instruments, date_range, portfolio, cancel_token=cancel_token)
