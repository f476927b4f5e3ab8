"""
Configuration Management

Loads the analysis engine's YAML configuration with environment variable
substitution. The typed, validated view of it lives in settings.py.
"""

import logging
import os
import re
from pathlib import Path
from typing import Dict, Any, Optional, Union

import yaml

from ..core.errors import ConfigError

logger = logging.getLogger(__name__)

CONFIG_DIR_ENV = 'HEDGE_FUND_CONFIG_DIR'
ANALYSIS_CONFIG = 'analysis'

# ${NAME} or ${NAME:-default}
_ENV_PATTERN = re.compile(r'\$\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*(?::-([^}]*))?\}')


class ConfigLoader:
    """
    Loads YAML documents from a configuration directory.

    Placeholders follow shell semantics: ${NAME:-default} falls back to the
    default when NAME is unset or empty, and ${NAME} must be set.
    """

    def __init__(self, config_dir: Optional[Union[str, Path]] = None):
        """
        Initialize the configuration loader.

        Args:
            config_dir: Directory holding the YAML files. Defaults to
                       $HEDGE_FUND_CONFIG_DIR, then to this package.
        """
        if config_dir is None:
            config_dir = os.getenv(CONFIG_DIR_ENV) or Path(__file__).parent
        self.config_dir = Path(config_dir)

    def path_for(self, config_name: str) -> Path:
        return self.config_dir / f"{config_name}.yaml"

    def load_config(self, config_name: str) -> Dict[str, Any]:
        """
        Load one configuration document.

        Args:
            config_name: File name without the .yaml extension

        Returns:
            Top-level mapping of the document; empty for an empty file

        Raises:
            FileNotFoundError: If the file doesn't exist
            ValueError: If a required environment variable is not set
            ConfigError: If the YAML is invalid or its top level is not a mapping
        """
        config_path = self.path_for(config_name)

        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        content = self._substitute_env_vars(config_path.read_text(encoding='utf-8'))

        try:
            document = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e

        if document is None:
            logger.warning(f"Configuration file {config_path} is empty, using defaults")
            return {}
        if not isinstance(document, dict):
            raise ConfigError(f"Configuration {config_path} must be a mapping, "
                              f"got {type(document).__name__}")

        logger.debug(f"Loaded configuration {config_path} with sections: {', '.join(map(str, document))}")
        return document

    def _substitute_env_vars(self, content: str) -> str:
        """
        Replace ${NAME} and ${NAME:-default} placeholders.

        Raises:
            ValueError: If a placeholder without default names an unset variable
        """
        def replace_var(match):
            var_name, default_value = match.group(1), match.group(2)
            value = os.getenv(var_name)

            if default_value is not None:
                return value if value else default_value
            if value is None:
                raise ValueError(f"Environment variable {var_name} is required but not set")
            return value

        return _ENV_PATTERN.sub(replace_var, content)


config_loader = ConfigLoader()


def load_analysis_config(config_dir: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
    """Load analysis.yaml from config_dir, or from the default location."""
    loader = config_loader if config_dir is None else ConfigLoader(config_dir)
    return loader.load_config(ANALYSIS_CONFIG)
