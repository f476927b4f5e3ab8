"""
Hedge Fund Services

Components the orchestration graph wires together for each run.

Service Categories:
- data_ingestion: Upstream market data connectors
- inference: External language model adapters
- analysts: Analyst variants and their registry
- strategy: Risk limits and decision synthesis
"""
