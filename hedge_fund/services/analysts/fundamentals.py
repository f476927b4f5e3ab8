"""
Fundamentals Analyst

Value-investing analysis of reported fundamentals: profitability and
liquidity, earnings consistency, durable competitive advantage, management
quality and an owner-earnings discounted cash flow valuation. When a model
provider is configured the scored analysis is handed to the model for a
final opinion.
"""

import json
from typing import Dict, Any, Optional, Sequence

from .base import AnalystAgent
from ...core.errors import InferenceError
from ...core.models import FundamentalRecord, Instrument, MarketDataset, Signal, SignalAction
from ..inference.model_provider import ChatMessage, ModelInferenceProvider


BULLISH_RATIO = 0.7
BEARISH_RATIO = 0.3
MARGIN_OF_SAFETY = 0.3

FUNDAMENTAL_MAX_SCORE = 8
CONSISTENCY_MAX_SCORE = 3
MOAT_MAX_SCORE = 3
MANAGEMENT_MAX_SCORE = 2

# Latest-period metrics the fundamentals score is built from, 2 points each
CORE_METRICS = ('return_on_equity', 'debt_to_equity', 'operating_margin', 'current_ratio')

SYSTEM_PROMPT = """You are a value investor deciding on investment signals using these principles:
- Margin of Safety (> 30%): buy at a significant discount to intrinsic value
- Economic Moat: look for durable competitive advantages
- Quality Management: seek conservative, shareholder-oriented teams
- Financial Strength: favor low debt and strong returns on equity
- Long-term Horizon: invest in businesses, not just stocks
- Sell only if fundamentals deteriorate or valuation far exceeds intrinsic value

Explain the factors that influenced the decision most, with quantitative evidence
such as margins, ROE values and debt levels."""


class FundamentalsAnalyst(AnalystAgent):
    """
    Scores a company on value-investing criteria.

    Features:
    - ROE, leverage, operating margin and liquidity checks
    - Earnings consistency over at least four periods
    - Moat and management quality scoring
    - Owner-earnings DCF intrinsic value and margin of safety
    - Optional model refinement behind the inference retry boundary
    """

    key = 'fundamentals'
    display_name = 'Fundamentals Analyst'

    def __init__(self, inference: Optional[ModelInferenceProvider] = None,
                 growth_rate: float = 0.05, discount_rate: float = 0.09,
                 terminal_multiple: float = 12.0, projection_years: int = 10):
        """
        Initialize the analyst.

        Args:
            inference: Model provider for the refinement step; None disables it
            growth_rate: Annual owner-earnings growth assumption
            discount_rate: Annual discount rate
            terminal_multiple: Multiple applied to final-year owner earnings
            projection_years: Explicit projection horizon
        """
        super().__init__()
        self.inference = inference
        self.growth_rate = growth_rate
        self.discount_rate = discount_rate
        self.terminal_multiple = terminal_multiple
        self.projection_years = projection_years

    def analyze(self, instrument: Instrument, dataset: MarketDataset) -> Signal:
        ticker = instrument.ticker
        records = list(dataset.fundamentals)

        if not records:
            return self.insufficient_data(ticker, "no fundamental metrics reported")

        if all(records[0].get(metric) is None for metric in CORE_METRICS):
            return self.insufficient_data(ticker, f"latest period lacks {', '.join(CORE_METRICS)}")

        analysis = self.score(records, dataset.market_cap)

        if self.inference is None:
            return self._rule_signal(ticker, analysis)

        return self._model_signal(ticker, analysis)

    def score(self, records: Sequence[FundamentalRecord], market_cap: Optional[Any]) -> Dict[str, Any]:
        """
        Run every scoring step over newest-first fundamentals.

        Returns:
            Analysis dictionary with component results, total score and margin of safety
        """
        fundamental = self.analyze_fundamental(records)
        consistency = self.analyze_consistency(records)
        moat = self.analyze_moat(records)
        management = self.analyze_management_quality(records)
        valuation = self.calculate_intrinsic_value(records)

        components = (fundamental, consistency, moat, management)
        total_score = sum(component['score'] for component in components)
        max_score = sum(component['max_score'] for component in components)

        margin_of_safety = None
        intrinsic_value = valuation.get('intrinsic_value')
        if intrinsic_value is not None and market_cap is not None and float(market_cap) > 0:
            market_cap_value = float(market_cap)
            margin_of_safety = (intrinsic_value - market_cap_value) / market_cap_value

        return {
            'score': total_score,
            'max_score': max_score,
            'fundamental_analysis': fundamental,
            'consistency_analysis': consistency,
            'moat_analysis': moat,
            'management_analysis': management,
            'intrinsic_value_analysis': valuation,
            'market_cap': float(market_cap) if market_cap is not None else None,
            'margin_of_safety': margin_of_safety
        }

    def analyze_fundamental(self, records: Sequence[FundamentalRecord]) -> Dict[str, Any]:
        latest = records[0]
        score = 0
        reasoning = []

        roe = latest.get('return_on_equity')
        if roe is None:
            reasoning.append("ROE data not available")
        elif roe > 0.15:
            score += 2
            reasoning.append(f"Strong ROE of {roe * 100:.1f}%")
        else:
            reasoning.append(f"Weak ROE of {roe * 100:.1f}%")

        debt_to_equity = latest.get('debt_to_equity')
        if debt_to_equity is None:
            reasoning.append("Debt-to-equity data not available")
        elif debt_to_equity < 0.5:
            score += 2
            reasoning.append(f"Conservative debt-to-equity ratio of {debt_to_equity:.1f}")
        else:
            reasoning.append(f"High debt-to-equity ratio of {debt_to_equity:.1f}")

        operating_margin = latest.get('operating_margin')
        if operating_margin is None:
            reasoning.append("Operating margin data not available")
        elif operating_margin > 0.15:
            score += 2
            reasoning.append(f"Strong operating margin of {operating_margin * 100:.1f}%")
        else:
            reasoning.append(f"Weak operating margin of {operating_margin * 100:.1f}%")

        current_ratio = latest.get('current_ratio')
        if current_ratio is None:
            reasoning.append("Current ratio data not available")
        elif current_ratio > 1.5:
            score += 2
            reasoning.append(f"Good liquidity with current ratio of {current_ratio:.1f}")
        else:
            reasoning.append(f"Weak liquidity with current ratio of {current_ratio:.1f}")

        # Only metrics that were reported count towards the maximum
        evaluated = sum(1 for metric in CORE_METRICS if latest.get(metric) is not None)
        max_score = FUNDAMENTAL_MAX_SCORE * evaluated // len(CORE_METRICS)
        return {'score': score, 'max_score': max_score, 'details': '; '.join(reasoning)}

    def analyze_consistency(self, records: Sequence[FundamentalRecord]) -> Dict[str, Any]:
        """Reward net income that grew in every period, newest first."""
        earnings = [value for value in (record.get('net_income') for record in records) if value is not None]

        if len(earnings) < 4:
            return {'score': 0, 'max_score': CONSISTENCY_MAX_SCORE,
                    'details': 'Insufficient earnings history for trend analysis'}

        score = 0
        reasoning = []
        if all(newer > older for newer, older in zip(earnings, earnings[1:])):
            score += 3
            reasoning.append("Consistent earnings growth over the past periods")
        else:
            reasoning.append("Inconsistent earnings growth pattern")

        oldest = earnings[-1]
        if abs(oldest) > 1e-6:
            growth = (earnings[0] - oldest) / abs(oldest)
            reasoning.append(f"Total earnings growth of {growth * 100:.1f}% over {len(earnings)} periods")

        return {'score': score, 'max_score': CONSISTENCY_MAX_SCORE, 'details': '; '.join(reasoning)}

    def analyze_moat(self, records: Sequence[FundamentalRecord]) -> Dict[str, Any]:
        """Stable high returns and margins across periods suggest a durable advantage."""
        if len(records) < 3:
            return {'score': 0, 'max_score': MOAT_MAX_SCORE, 'details': 'Insufficient data for moat analysis'}

        score = 0
        reasoning = []
        roes = [value for value in (record.get('return_on_equity') for record in records) if value is not None]
        margins = [value for value in (record.get('operating_margin') for record in records) if value is not None]

        if len(roes) >= 3 and all(value > 0.15 for value in roes):
            score += 1
            reasoning.append("Stable ROE above 15% across periods")
        else:
            reasoning.append("ROE not consistently above 15%")

        if len(margins) >= 3 and all(value > 0.15 for value in margins):
            score += 1
            reasoning.append("Stable operating margin above 15%")
        else:
            reasoning.append("Operating margin not consistently above 15%")

        if score == 2:
            score += 1
            reasoning.append("Both ROE and margin stability indicate a solid moat")

        return {'score': score, 'max_score': MOAT_MAX_SCORE, 'details': '; '.join(reasoning)}

    def analyze_management_quality(self, records: Sequence[FundamentalRecord]) -> Dict[str, Any]:
        latest = records[0]
        score = 0
        reasoning = []

        issuance = latest.get('issuance_or_purchase_of_equity_shares')
        if issuance is None:
            reasoning.append("Data on stock issuance or repurchase not available")
        elif issuance < 0:
            score += 1
            reasoning.append("Company has been repurchasing shares")
        elif issuance > 0:
            reasoning.append("Recent common stock issuance (potential dilution)")
        else:
            reasoning.append("No significant new stock issuance detected")

        dividends = latest.get('dividends_and_other_cash_distributions')
        if dividends is None:
            reasoning.append("Dividend data not available")
        elif dividends < 0:
            score += 1
            reasoning.append("Company has a track record of paying dividends")
        else:
            reasoning.append("No or minimal dividends paid")

        return {'score': score, 'max_score': MANAGEMENT_MAX_SCORE, 'details': '; '.join(reasoning)}

    def calculate_owner_earnings(self, records: Sequence[FundamentalRecord]) -> Optional[float]:
        """Net income plus depreciation less maintenance capex (75% of capex)."""
        latest = records[0]
        net_income = latest.get('net_income')
        depreciation = latest.get('depreciation_and_amortization')
        capex = latest.get('capital_expenditure')

        if net_income is None or depreciation is None or capex is None:
            return None

        maintenance_capex = abs(capex) * 0.75
        return net_income + depreciation - maintenance_capex

    def calculate_intrinsic_value(self, records: Sequence[FundamentalRecord]) -> Dict[str, Any]:
        owner_earnings = self.calculate_owner_earnings(records)
        if owner_earnings is None:
            return {'intrinsic_value': None, 'details': 'Missing components for owner earnings calculation'}
        if owner_earnings <= 0:
            return {'intrinsic_value': None, 'owner_earnings': owner_earnings,
                    'details': 'Non-positive owner earnings, no valuation'}

        present_value = 0.0
        for year in range(1, self.projection_years + 1):
            future_earnings = owner_earnings * (1 + self.growth_rate) ** year
            present_value += future_earnings / (1 + self.discount_rate) ** year

        terminal_earnings = owner_earnings * (1 + self.growth_rate) ** self.projection_years
        terminal_value = terminal_earnings * self.terminal_multiple / (1 + self.discount_rate) ** self.projection_years
        intrinsic_value = present_value + terminal_value

        result = {
            'intrinsic_value': intrinsic_value,
            'owner_earnings': owner_earnings,
            'assumptions': {
                'growth_rate': self.growth_rate,
                'discount_rate': self.discount_rate,
                'terminal_multiple': self.terminal_multiple,
                'projection_years': self.projection_years
            },
            'details': 'Intrinsic value from owner-earnings DCF'
        }

        shares = records[0].get('outstanding_shares')
        if shares:
            result['intrinsic_value_per_share'] = intrinsic_value / shares

        return result

    def _rule_signal(self, ticker: str, analysis: Dict[str, Any]) -> Signal:
        ratio = analysis['score'] / analysis['max_score']
        margin_of_safety = analysis['margin_of_safety']

        if ratio >= BULLISH_RATIO and margin_of_safety is not None and margin_of_safety >= MARGIN_OF_SAFETY:
            action = SignalAction.BULLISH
            confidence = ratio
        elif ratio <= BEARISH_RATIO or (margin_of_safety is not None and margin_of_safety < -MARGIN_OF_SAFETY):
            action = SignalAction.BEARISH
            confidence = 1 - ratio
            if margin_of_safety is not None and margin_of_safety < -MARGIN_OF_SAFETY:
                confidence = max(confidence, min(1.0, -margin_of_safety))
        else:
            action = SignalAction.NEUTRAL
            confidence = 0.5

        mos_text = f"{margin_of_safety * 100:.1f}%" if margin_of_safety is not None else "n/a"
        rationale = (f"Score {analysis['score']}/{analysis['max_score']}, margin of safety {mos_text}. "
                     f"{analysis['fundamental_analysis']['details']}; "
                     f"{analysis['consistency_analysis']['details']}")

        return Signal(
            analyst=self.key,
            ticker=ticker,
            action=action,
            confidence=round(min(1.0, max(0.0, confidence)), 4),
            rationale=rationale
        )

    def _model_signal(self, ticker: str, analysis: Dict[str, Any]) -> Signal:
        prompt = f"""Based on the following data, create the investment signal.
Analysis data for {ticker}:
{json.dumps(analysis, indent=2, default=str)}

Return the trading signal in the following JSON format exactly, without any explanation:
{{
  "signal": "bullish" | "bearish" | "neutral",
  "confidence": float between 0 and 100,
  "reasoning": "string"
}}"""
        messages = [
            ChatMessage(role='system', content=SYSTEM_PROMPT),
            ChatMessage(role='user', content=prompt)
        ]

        try:
            response = self.inference.infer(messages)
        except InferenceError as e:
            self.logger.error(f"Model analysis failed for {ticker}: {e}")
            return Signal.neutral(self.key, ticker, f"Model analysis unavailable: {e}")

        self.logger.debug(f"Model response for {ticker}: {response.content}")
        return self.parse_model_response(ticker, response.content)

    def parse_model_response(self, ticker: str, content: str) -> Signal:
        """
        Parse the model's JSON reply into a signal.

        Confidence may come on a 0-100 or 0-1 scale; it is normalized and
        clamped. Any unusable reply becomes a zero-confidence neutral signal.
        """
        try:
            start = content.find('{')
            end = content.rfind('}') + 1
            if start == -1 or end <= start:
                raise ValueError("no JSON object in response")

            parsed = json.loads(content[start:end])
            for required in ('signal', 'confidence', 'reasoning'):
                if required not in parsed:
                    raise ValueError(f"missing field '{required}'")

            action = SignalAction.parse(parsed['signal'])
            confidence = float(parsed['confidence'])
            if confidence > 1.0:
                confidence /= 100.0
            confidence = max(0.0, min(1.0, confidence))
        except (TypeError, ValueError) as e:
            self.logger.error(f"Unparseable model response for {ticker}: {e}")
            return Signal.neutral(self.key, ticker, f"Model response could not be parsed: {e}")

        return Signal(
            analyst=self.key,
            ticker=ticker,
            action=action,
            confidence=round(confidence, 4),
            rationale=str(parsed['reasoning'])
        )
