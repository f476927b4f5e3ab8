"""
Data Ingestion Services

Connectors to the upstream market data source. Only the data cache calls
them.

Services:
- market_data_provider: Provider interface and the financialdatasets.ai client
"""
