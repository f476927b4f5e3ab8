"""
AI Hedge Fund

A multi-analyst decision engine that evaluates a set of instruments over
shared market data and emits one risk-bounded trading decision per instrument.

The engine is built from:
- A memoized, fetch-coalescing market data cache
- Pluggable analyst agents (fundamentals, price-risk, externally supplied)
- A portfolio-wide risk manager that bounds position sizes
- A portfolio manager that reconciles signals into decisions
- An orchestration graph that sequences the run and isolates failures
"""

__version__ = "1.0.0"
__author__ = "Hedge Fund Engine Team"
