"""
Collaborator Factory

Builds the external collaborators of a run from explicit settings. Nothing
here is held as process-wide state; every run gets its own instances unless
the caller supplies them.
"""

import logging
from typing import Optional

from ..configs.settings import AnalysisSettings
from ..core.dataset_store import RedisDatasetStore
from ..core.retry import RetryPolicy
from ..services.data_ingestion.market_data_provider import FinancialDatasetsProvider, MarketDataProvider
from ..services.inference.model_provider import (
    LLMModelConfig, ModelInferenceProvider, OpenAICompatibleProvider
)

logger = logging.getLogger(__name__)


def build_market_data_provider(settings: AnalysisSettings) -> MarketDataProvider:
    market_data = settings.market_data
    return FinancialDatasetsProvider(
        base_url=market_data.base_url,
        api_key=market_data.api_key,
        timeout=market_data.timeout_seconds,
        metrics_limit=market_data.metrics_limit,
        retry_policy=RetryPolicy(max_retries=market_data.max_retries)
    )


def build_inference_provider(settings: AnalysisSettings) -> Optional[ModelInferenceProvider]:
    """Model provider for analysts that consult one, or None when disabled."""
    llm = settings.llm
    if not llm.enabled:
        return None

    logger.info(f"Using {llm.provider.value} model {llm.model_name}")
    return OpenAICompatibleProvider(
        LLMModelConfig(
            provider=llm.provider,
            model_name=llm.model_name,
            api_key=llm.api_key,
            base_url=llm.base_url,
            temperature=llm.temperature,
            max_tokens=llm.max_tokens,
            top_p=llm.top_p,
            timeout_seconds=llm.timeout_seconds
        ),
        retry_policy=RetryPolicy(max_retries=llm.max_retries)
    )


def build_dataset_store(settings: AnalysisSettings) -> Optional[RedisDatasetStore]:
    """Cross-run dataset store, or None when no Redis URL is configured."""
    if not settings.cache.redis_url:
        return None
    logger.info("Cross-run dataset store enabled")
    return RedisDatasetStore.from_url(settings.cache.redis_url, ttl_seconds=settings.cache.ttl_seconds)
