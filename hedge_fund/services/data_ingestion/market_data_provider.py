"""
Market Data Provider

Boundary to the upstream market data service. The data cache is the only
caller; it depends on MarketDataProvider and never on a concrete client.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, Any, List, Optional, Tuple
from decimal import Decimal

import requests

from ...core.errors import FetchError
from ...core.models import (
    DateRange, DatasetKind, FundamentalRecord, MarketDataset, PriceBar, to_decimal
)
from ...core.retry import RetryPolicy


# Statement line items the fundamentals analyst reads
LINE_ITEMS = [
    'capital_expenditure',
    'depreciation_and_amortization',
    'net_income',
    'outstanding_shares',
    'total_assets',
    'total_liabilities',
    'dividends_and_other_cash_distributions',
    'issuance_or_purchase_of_equity_shares',
]


class TransientFetchError(FetchError):
    """Upstream failure worth retrying (rate limit, server error, transport)."""


class MarketDataProvider(ABC):
    """Capability interface for upstream market data."""

    @abstractmethod
    def fetch(self, ticker: str, kind: DatasetKind, date_range: DateRange) -> MarketDataset:
        """
        Fetch one dataset.

        Raises:
            FetchError: If the data is unavailable
        """
        pass


class FinancialDatasetsProvider(MarketDataProvider):
    """
    Client for the financialdatasets.ai REST API.

    Features:
    - Daily price bars
    - Trailing-twelve-month financial metrics
    - Statement line item search
    - Retry with exponential backoff on rate limits and server errors
    """

    def __init__(self, base_url: str = 'https://api.financialdatasets.ai', api_key: Optional[str] = None,
                 timeout: float = 30.0, metrics_limit: int = 5,
                 retry_policy: Optional[RetryPolicy] = None, session: Optional[requests.Session] = None):
        """
        Initialize the provider.

        Args:
            base_url: API root
            api_key: Value for the X-API-KEY header
            timeout: Per-request timeout in seconds
            metrics_limit: Number of reporting periods to request
            retry_policy: Retry boundary for transient failures
            session: HTTP session, replaceable in tests
        """
        self.base_url = base_url.rstrip('/')
        self.api_key = api_key
        self.timeout = timeout
        self.metrics_limit = metrics_limit
        self.retry_policy = retry_policy or RetryPolicy(max_retries=3)
        self.session = session or requests.Session()
        self.logger = logging.getLogger(f"{__name__}.FinancialDatasetsProvider")

    def fetch(self, ticker: str, kind: DatasetKind, date_range: DateRange) -> MarketDataset:
        """
        Fetch prices and/or fundamentals for one ticker.

        Args:
            ticker: Instrument identifier
            kind: Which parts of the dataset to fetch
            date_range: Price range; fundamentals are reported up to its end

        Returns:
            Immutable dataset

        Raises:
            FetchError: If any upstream call fails
        """
        prices: Tuple[PriceBar, ...] = ()
        fundamentals: Tuple[FundamentalRecord, ...] = ()
        market_cap: Optional[Decimal] = None

        if kind.includes_prices:
            prices = self._get_prices(ticker, date_range)

        if kind.includes_fundamentals:
            fundamentals = self._get_fundamentals(ticker, date_range)
            if fundamentals:
                latest_cap = fundamentals[0].get('market_cap')
                if latest_cap is not None:
                    market_cap = to_decimal(latest_cap)

        self.logger.info(f"Fetched {kind.value} data for {ticker}: {len(prices)} price bars, "
                         f"{len(fundamentals)} reporting periods")

        return MarketDataset(
            ticker=ticker,
            kind=kind,
            date_range=date_range,
            prices=prices,
            fundamentals=fundamentals,
            market_cap=market_cap
        )

    def _get_prices(self, ticker: str, date_range: DateRange) -> Tuple[PriceBar, ...]:
        payload = self._request('GET', '/prices/', ticker, params={
            'ticker': ticker,
            'interval': 'day',
            'interval_multiplier': 1,
            'start_date': date_range.start.isoformat(),
            'end_date': date_range.end.isoformat()
        })

        bars = []
        for raw in payload.get('prices') or []:
            try:
                bars.append(PriceBar.from_dict(raw))
            except (KeyError, TypeError, ValueError) as e:
                self.logger.warning(f"Skipping malformed price bar for {ticker}: {e}")

        bars.sort(key=lambda bar: bar.time)
        return tuple(bars)

    def _get_fundamentals(self, ticker: str, date_range: DateRange) -> Tuple[FundamentalRecord, ...]:
        end_date = date_range.end.isoformat()

        metrics_payload = self._request('GET', '/financial-metrics/', ticker, params={
            'ticker': ticker,
            'report_period_lte': end_date,
            'limit': self.metrics_limit,
            'period': 'ttm'
        })

        line_items_payload = self._request('POST', '/financials/search/line-items', ticker, json={
            'tickers': [ticker],
            'line_items': LINE_ITEMS,
            'end_date': end_date,
            'period': 'ttm',
            'limit': self.metrics_limit
        })

        return self._merge_periods(
            metrics_payload.get('financial_metrics') or [],
            line_items_payload.get('search_results') or []
        )

    def _merge_periods(self, metrics: List[Dict[str, Any]],
                       line_items: List[Dict[str, Any]]) -> Tuple[FundamentalRecord, ...]:
        """Combine metrics and line items reported for the same period."""
        merged: Dict[str, Dict[str, Any]] = {}
        periods: Dict[str, str] = {}

        for item in list(metrics) + list(line_items):
            report_period = item.get('report_period')
            if not report_period:
                continue
            values = merged.setdefault(report_period, {})
            periods.setdefault(report_period, item.get('period', 'ttm'))
            for name, value in item.items():
                if name in ('ticker', 'report_period', 'period', 'currency'):
                    continue
                if value is not None or name not in values:
                    values[name] = value

        return tuple(
            FundamentalRecord(report_period=report_period, period=periods[report_period], metrics=values)
            for report_period, values in sorted(merged.items(), key=lambda item: item[0], reverse=True)
        )

    def _request(self, method: str, path: str, ticker: str, **kwargs) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        headers = {'Content-Type': 'application/json', 'Accept': 'application/json'}
        if self.api_key:
            headers['X-API-KEY'] = self.api_key

        def attempt() -> Dict[str, Any]:
            try:
                response = self.session.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
            except requests.RequestException as e:
                raise TransientFetchError(f"Request to {path} failed for {ticker}: {e}", ticker=ticker) from e

            if response.status_code == 429 or response.status_code >= 500:
                raise TransientFetchError(
                    f"{path} returned {response.status_code} for {ticker}", ticker=ticker
                )
            if not response.ok:
                raise FetchError(f"{path} returned {response.status_code} for {ticker}", ticker=ticker)

            try:
                return response.json()
            except ValueError as e:
                raise FetchError(f"{path} returned invalid JSON for {ticker}", ticker=ticker) from e

        return self.retry_policy.call(attempt, retry_on=(TransientFetchError,), description=f"{method} {path}")
