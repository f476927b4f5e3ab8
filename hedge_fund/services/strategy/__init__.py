"""
Strategy and Decision Services

Turns analyst signals into risk-bounded trading decisions.

Services:
- risk_manager: Per-instrument position caps and the shared margin ceiling
- portfolio_manager: Signal reconciliation, position sizing and the portfolio commit
"""
