"""
End-to-End Analysis Scenarios Tests

These tests drive complete runs through run_analysis() and the
orchestration graph, from data fetching through the analyst fan-out and
risk bounding to the committed decisions, with in-memory market data and
canned analysts in place of the external services.
"""

import pytest
import threading
import time
import unittest
from decimal import Decimal

from hedge_fund.configs.settings import AnalysisSettings, OrchestrationConfig, RiskConfig
from hedge_fund.core.data_cache import DataCache
from hedge_fund.core.errors import ConfigError, FetchError, RunCancelled
from hedge_fund.core.models import PortfolioState, Position, SignalAction, TradeAction
from hedge_fund.orchestration import CancellationToken, OrchestrationGraph, RunState, run_analysis
from hedge_fund.services.strategy.portfolio_manager import PortfolioManager
from hedge_fund.services.strategy.risk_manager import RiskManager
from hedge_fund.tests.fakes import DATE_RANGE, StubAnalyst, StubProvider, make_dataset

BULLISH = SignalAction.BULLISH
BEARISH = SignalAction.BEARISH
NEUTRAL = SignalAction.NEUTRAL


class AnalysisScenarioTest(unittest.TestCase):
    """Shared fixtures for complete runs."""

    def setUp(self):
        self.settings = AnalysisSettings()
        self.portfolio = PortfolioState(cash=Decimal('100000'))

    def datasets(self, *tickers, price=100.0):
        return {ticker: make_dataset(ticker, closes=[price]) for ticker in tickers}

    def run_analysis(self, tickers, analysts, provider, portfolio=None, settings=None, **kwargs):
        return run_analysis(
            tickers,
            kwargs.pop('date_range', DATE_RANGE),
            portfolio or self.portfolio,
            analysts,
            settings=settings or self.settings,
            market_data_provider=provider,
            **kwargs
        )

    def build_graph(self, provider, analysts, orchestration=None):
        return OrchestrationGraph(
            cache=DataCache(provider),
            analysts=analysts,
            risk_manager=RiskManager(),
            portfolio_manager=PortfolioManager(),
            config=orchestration or OrchestrationConfig()
        )


class TestCompleteRuns(AnalysisScenarioTest):
    """Runs that reach Completed."""

    def test_one_decision_per_instrument_in_request_order(self):
        provider = StubProvider(self.datasets('CCC', 'AAA', 'BBB'))
        analysts = [
            StubAnalyst('alpha', {}, default=(BULLISH, 0.8)),
            StubAnalyst('beta', {'AAA': (BEARISH, 0.9)})
        ]

        result = self.run_analysis(['CCC', 'AAA', 'BBB'], analysts, provider)

        self.assertEqual(list(result.decisions), ['CCC', 'AAA', 'BBB'])
        self.assertEqual(list(result.risk_limits), ['CCC', 'AAA', 'BBB'])
        self.assertEqual(set(result.analyst_signals), {'alpha', 'beta'})
        for signals in result.analyst_signals.values():
            self.assertEqual(list(signals), ['CCC', 'AAA', 'BBB'])
        self.assertEqual(
            [state for state, _ in result.transitions],
            ['idle', 'data_fetching', 'analysts_running', 'risk_bounding', 'decision_synthesis', 'completed']
        )
        self.assertEqual(provider.call_count, 3)

    def test_missing_market_data_degrades_only_that_instrument(self):
        provider = StubProvider({
            'AAA': FetchError("upstream timeout", ticker='AAA'),
            'BBB': make_dataset('BBB', closes=[100.0])
        })
        analyst = StubAnalyst('alpha', {}, default=(BULLISH, 0.8))

        result = self.run_analysis(['AAA', 'BBB'], [analyst], provider)

        degraded = result.decisions['AAA']
        self.assertEqual(degraded.action, TradeAction.HOLD)
        self.assertTrue(degraded.degraded)
        self.assertIn("missing market data for AAA", degraded.rationale)

        signal = result.analyst_signals['alpha']['AAA']
        self.assertEqual(signal.action, NEUTRAL)
        self.assertEqual(signal.confidence, 0.0)
        self.assertTrue(signal.degraded)
        self.assertEqual(analyst.calls, ['BBB'])

        self.assertEqual(result.decisions['BBB'].action, TradeAction.BUY)
        self.assertEqual(result.decisions['BBB'].quantity, 160)
        self.assertEqual(result.risk_limits['AAA'].remaining_limit, Decimal('0'))

    def test_empty_price_history_degrades(self):
        provider = StubProvider({'AAA': make_dataset('AAA', closes=[])})

        result = self.run_analysis(['AAA'], [StubAnalyst('alpha', {})], provider)

        self.assertTrue(result.decisions['AAA'].degraded)
        self.assertIn("no price data", result.decisions['AAA'].rationale)

    def test_tied_signals_hold(self):
        provider = StubProvider(self.datasets('AAA'))
        analysts = [
            StubAnalyst('alpha', {'AAA': (BULLISH, 0.6)}),
            StubAnalyst('beta', {'AAA': (BEARISH, 0.6)})
        ]

        result = self.run_analysis(['AAA'], analysts, provider)

        decision = result.decisions['AAA']
        self.assertEqual(decision.action, TradeAction.HOLD)
        self.assertEqual(decision.quantity, 0)
        self.assertIn("tie", decision.rationale)

    def test_margin_ceiling_exhausted_in_request_order(self):
        settings = AnalysisSettings(risk=RiskConfig(max_position_fraction=Decimal('0.4'),
                                                    max_margin_fraction=Decimal('0.8')))
        provider = StubProvider(self.datasets('AAA', 'BBB', 'CCC'))
        analyst = StubAnalyst('alpha', {}, default=(BULLISH, 1.0))

        result = self.run_analysis(['AAA', 'BBB', 'CCC'], [analyst], provider, settings=settings)

        self.assertEqual(result.decisions['AAA'].action, TradeAction.BUY)
        self.assertEqual(result.decisions['AAA'].quantity, 400)
        self.assertEqual(result.decisions['BBB'].action, TradeAction.BUY)
        self.assertEqual(result.decisions['BBB'].quantity, 400)
        self.assertEqual(result.decisions['CCC'].action, TradeAction.HOLD)
        self.assertEqual(result.risk_limits['CCC'].max_position_value, Decimal('0'))

    def test_analyst_failure_becomes_neutral_signal(self):
        provider = StubProvider(self.datasets('AAA', 'BBB'))
        analysts = [
            StubAnalyst('alpha', {}, default=(BULLISH, 0.8)),
            StubAnalyst('beta', {'AAA': RuntimeError("model crashed")})
        ]

        result = self.run_analysis(['AAA', 'BBB'], analysts, provider)

        failed = result.analyst_signals['beta']['AAA']
        self.assertEqual(failed.action, NEUTRAL)
        self.assertEqual(failed.confidence, 0.0)
        self.assertIn("model crashed", failed.rationale)
        self.assertEqual(len(result.decisions), 2)

    def test_repeated_run_reuses_cached_data(self):
        provider = StubProvider(self.datasets('AAA', 'BBB'))
        cache = DataCache(provider)
        analysts = [StubAnalyst('alpha', {'AAA': (BULLISH, 0.7), 'BBB': (BEARISH, 0.5)})]

        first = self.run_analysis(['AAA', 'BBB'], analysts, provider, cache=cache)
        second = self.run_analysis(['AAA', 'BBB'], analysts, provider, cache=cache)

        self.assertEqual(first.decisions, second.decisions)
        self.assertNotEqual(first.run_id, second.run_id)
        self.assertEqual(provider.call_count, 2)
        self.assertEqual(cache.stats.hits, 2)

    def test_commit_produces_new_portfolio(self):
        portfolio = PortfolioState(cash=Decimal('100000'), positions={'BBB': Position(quantity=100)})
        provider = StubProvider(self.datasets('AAA', 'BBB'))
        analysts = [StubAnalyst('alpha', {'AAA': (BULLISH, 0.5), 'BBB': (BEARISH, 0.5)})]

        result = self.run_analysis(['AAA', 'BBB'], analysts, provider, portfolio=portfolio)

        self.assertEqual(result.decisions['AAA'].action, TradeAction.BUY)
        self.assertEqual(result.decisions['BBB'].action, TradeAction.SELL)
        self.assertEqual(result.decisions['BBB'].quantity, 50)
        bought = result.decisions['AAA'].quantity * Decimal('100')
        self.assertEqual(result.portfolio.cash, Decimal('100000') - bought + Decimal('5000'))
        self.assertEqual(result.portfolio.position('BBB').quantity, 50)
        # Caller's portfolio is untouched
        self.assertEqual(portfolio.cash, Decimal('100000'))
        self.assertEqual(portfolio.position('BBB').quantity, 100)

    def test_new_exposure_stays_within_limits_and_cash(self):
        portfolio = PortfolioState(cash=Decimal('50000'), positions={'CCC': Position(quantity=-40, margin=Decimal('2000'))})
        datasets = {
            'AAA': make_dataset('AAA', closes=[37.0]),
            'BBB': make_dataset('BBB', closes=[112.5]),
            'CCC': make_dataset('CCC', closes=[100.0]),
            'DDD': make_dataset('DDD', closes=[8.25])
        }
        analysts = [
            StubAnalyst('alpha', {'AAA': (BULLISH, 0.9), 'BBB': (BEARISH, 0.7), 'CCC': (BULLISH, 0.6),
                                  'DDD': (BULLISH, 1.0)}),
            StubAnalyst('beta', {'AAA': (BULLISH, 0.4), 'DDD': (BULLISH, 0.8)})
        ]

        result = self.run_analysis(list(datasets), analysts, StubProvider(datasets), portfolio=portfolio)

        cash_used = Decimal('0')
        for ticker, decision in result.decisions.items():
            limit = result.risk_limits[ticker]
            value = decision.quantity * limit.current_price
            if decision.action is TradeAction.BUY:
                self.assertLessEqual(value, limit.remaining_limit)
                cash_used += value
            elif decision.action is TradeAction.SHORT:
                self.assertLessEqual(value, limit.remaining_limit)
                cash_used += value * portfolio.margin_requirement
            elif decision.action is TradeAction.COVER:
                self.assertLessEqual(decision.quantity, 40)
        self.assertLessEqual(cash_used, portfolio.cash)
        self.assertEqual(result.decisions['CCC'].action, TradeAction.COVER)

    def test_show_reasoning_logs_each_stage(self):
        provider = StubProvider(self.datasets('AAA'))

        with self.assertLogs('hedge_fund.orchestration.graph', level='INFO') as logs:
            self.run_analysis(['AAA'], [StubAnalyst('alpha', {})], provider, show_reasoning=True)

        output = '\n'.join(logs.output)
        self.assertIn("Stub alpha", output)
        self.assertIn("Risk Management Agent", output)
        self.assertIn("Portfolio Management Agent", output)


class TestRejectedRuns(AnalysisScenarioTest):
    """Runs that fail before or during the pipeline."""

    def test_empty_instrument_list(self):
        provider = StubProvider({})
        graph = self.build_graph(provider, [StubAnalyst('alpha', {})])

        with self.assertRaises(ConfigError):
            graph.run([], DATE_RANGE, self.portfolio)

        self.assertEqual(graph.last_transitions, [RunState.IDLE, RunState.FAILED])
        self.assertEqual(provider.call_count, 0)

    def test_reversed_date_range(self):
        provider = StubProvider(self.datasets('AAA'))

        with self.assertRaises(ConfigError):
            self.run_analysis(['AAA'], [StubAnalyst('alpha', {})], provider,
                              date_range=('2024-03-31', '2024-01-01'))

        self.assertEqual(provider.call_count, 0)

    def test_duplicate_instruments(self):
        provider = StubProvider(self.datasets('AAA'))

        with self.assertRaises(ConfigError):
            self.run_analysis(['AAA', 'AAA'], [StubAnalyst('alpha', {})], provider)

    def test_portfolio_without_cash_or_positions(self):
        provider = StubProvider(self.datasets('AAA'))

        with self.assertRaises(ConfigError):
            self.run_analysis(['AAA'], [StubAnalyst('alpha', {})], provider,
                              portfolio=PortfolioState(cash=Decimal('0')))

    def test_unknown_analyst(self):
        with self.assertRaises(ConfigError):
            self.run_analysis(['AAA'], ['astrology'], StubProvider(self.datasets('AAA')))

    def test_invalid_portfolio_mapping(self):
        with self.assertRaises(ConfigError):
            self.run_analysis(['AAA'], [StubAnalyst('alpha', {})], StubProvider(self.datasets('AAA')),
                              portfolio={'cash': 'plenty'})

    def test_non_finite_cash(self):
        provider = StubProvider(self.datasets('AAA'))

        for cash in ('NaN', 'Infinity', '-Infinity', float('inf')):
            with self.assertRaises(ConfigError):
                self.run_analysis(['AAA'], [StubAnalyst('alpha', {})], provider, portfolio={'cash': cash})

        self.assertEqual(provider.call_count, 0)

    def test_explicitly_empty_analyst_selection(self):
        provider = StubProvider(self.datasets('AAA'))

        with self.assertRaises(ConfigError):
            self.run_analysis(['AAA'], [], provider)

        self.assertEqual(provider.call_count, 0)


class TestCancellation(AnalysisScenarioTest):
    """Cancellation and timeouts at suspension points."""

    def test_cancelled_before_start(self):
        provider = StubProvider(self.datasets('AAA'))
        graph = self.build_graph(provider, [StubAnalyst('alpha', {})])
        token = CancellationToken()
        token.cancel()

        with self.assertRaises(RunCancelled):
            graph.run(['AAA'], DATE_RANGE, self.portfolio, cancel_token=token)

        self.assertEqual(graph.last_transitions, [RunState.IDLE, RunState.DATA_FETCHING, RunState.FAILED])
        self.assertEqual(provider.call_count, 0)

    def test_cancelled_during_fetch(self):
        token = CancellationToken()
        release = threading.Event()
        provider = StubProvider(self.datasets('AAA', 'BBB'), block_until=release,
                                on_fetch=lambda ticker: token.cancel())
        analyst = StubAnalyst('alpha', {})
        graph = self.build_graph(provider, [analyst])

        started = time.monotonic()
        try:
            with self.assertRaises(RunCancelled):
                graph.run(['AAA', 'BBB'], DATE_RANGE, self.portfolio, cancel_token=token)
            elapsed = time.monotonic() - started
        finally:
            release.set()

        self.assertLess(elapsed, 2.0)
        self.assertEqual(graph.last_transitions[-1], RunState.FAILED)
        self.assertEqual(analyst.calls, [])

    def test_run_timeout(self):
        settings = AnalysisSettings(orchestration=OrchestrationConfig(run_timeout_seconds=0.2))
        provider = StubProvider(self.datasets('AAA'), delay=1.0)

        started = time.monotonic()
        with self.assertRaises(RunCancelled) as context:
            self.run_analysis(['AAA'], [StubAnalyst('alpha', {})], provider, settings=settings)

        self.assertLess(time.monotonic() - started, 1.0)
        self.assertIn("timeout", str(context.exception))


if __name__ == "__main__":
    pytest.main([__file__])
