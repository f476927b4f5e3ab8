"""
Analyst Services

Registry of analyst variants. Built-in analysts are registered here; other
variants can be added with register_analyst() or passed to a run as ready
AnalystAgent instances.

Analysts:
- fundamentals: Value-investing fundamentals scoring with optional model refinement
- risk: Volatility, drawdown and trend analysis of the price series
"""

from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Union

from .base import AnalystAgent
from .fundamentals import FundamentalsAnalyst
from .risk_analyst import RiskAnalyst
from ...core.errors import ConfigError
from ..inference.model_provider import ModelInferenceProvider

AnalystFactory = Callable[[Optional[ModelInferenceProvider]], AnalystAgent]


@dataclass(frozen=True)
class AnalystConfig:
    display_name: str
    factory: AnalystFactory
    order: int


_registry: Dict[str, AnalystConfig] = {}


def register_analyst(key: str, display_name: str, factory: AnalystFactory, order: int) -> None:
    """
    Register an analyst variant.

    Args:
        key: Selection key
        display_name: Name used in logs and listings
        factory: Callable taking the optional inference provider
        order: Position in listings
    """
    if not key:
        raise ValueError("Analyst key must not be empty")
    _registry[key] = AnalystConfig(display_name=display_name, factory=factory, order=order)


def get_analyst_config() -> Dict[str, AnalystConfig]:
    return dict(_registry)


def get_analyst_order() -> List[Tuple[str, str]]:
    """Registered analysts as (display_name, key) pairs, sorted by order."""
    items = sorted(_registry.items(), key=lambda item: item[1].order)
    return [(config.display_name, key) for key, config in items]


def create_analysts(selection: Iterable[Union[str, AnalystAgent]],
                    inference: Optional[ModelInferenceProvider] = None) -> List[AnalystAgent]:
    """
    Build the analysts for a run.

    Args:
        selection: Registry keys and/or ready AnalystAgent instances
        inference: Model provider handed to each factory

    Returns:
        Analysts in selection order, each key at most once

    Raises:
        ConfigError: If a key is unknown or an entry is neither a key nor an analyst
    """
    analysts = []
    seen = set()

    for item in selection:
        if isinstance(item, AnalystAgent):
            analyst = item
        elif isinstance(item, str):
            config = _registry.get(item)
            if config is None:
                known = ', '.join(sorted(_registry))
                raise ConfigError(f"Unknown analyst '{item}' (available: {known})")
            analyst = config.factory(inference)
        else:
            raise ConfigError(f"Invalid analyst selection entry: {item!r}")

        if analyst.key in seen:
            continue
        seen.add(analyst.key)
        analysts.append(analyst)

    return analysts


register_analyst('fundamentals', FundamentalsAnalyst.display_name,
                 lambda inference: FundamentalsAnalyst(inference=inference), order=0)
register_analyst('risk', RiskAnalyst.display_name, lambda inference: RiskAnalyst(), order=1)


__all__ = [
    'AnalystAgent',
    'AnalystConfig',
    'FundamentalsAnalyst',
    'RiskAnalyst',
    'register_analyst',
    'get_analyst_config',
    'get_analyst_order',
    'create_analysts',
]
