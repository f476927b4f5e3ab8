"""
Core Infrastructure Components

This module contains the foundational components shared by every
service of the analysis engine.

Components:
- models: Immutable domain value types
- errors: Fatal and non-fatal error taxonomy
- data_cache: Memoized, fetch-coalescing dataset cache
- dataset_store: Optional Redis tier behind the cache
- retry: Exponential backoff around external calls
"""
