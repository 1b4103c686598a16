"""
Configuration management and loading.

Handles application settings and environment variables.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml

from ..core.health import DEFAULT_HEALTH_TIMEOUT
from ..storage.db import DEFAULT_DB_PATH

POLYGON_API_KEY_ENV = "POLYGON_API_KEY"


@dataclass(frozen=True)
class HealthCheckTarget:
    """A provider endpoint probed by the health checks."""
    provider: str
    endpoint: str


DEFAULT_HEALTH_CHECKS: Tuple[HealthCheckTarget, ...] = (
    HealthCheckTarget("OpenAI", "https://api.openai.com/v1/models"),
    HealthCheckTarget("Anthropic", "https://api.anthropic.com/v1/messages"),
)


@dataclass(frozen=True)
class LedgerConfig:
    """Usage ledger settings."""
    db_path: str = DEFAULT_DB_PATH


@dataclass(frozen=True)
class PipelineConfig:
    """Acquisition pipeline settings."""
    output_dir: str = "public/data"
    ticker: str = "GOOGL"
    litigation_query: str = "OpenAI"
    sec_cik: str = "0001652044"
    sec_company: str = "Alphabet Inc."
    search_term: str = "artificial intelligence"
    user_agent: str = "AI-Provider-Observatory contact@example.com"
    request_timeout: float = 30.0
    health_timeout: float = DEFAULT_HEALTH_TIMEOUT
    health_checks: Tuple[HealthCheckTarget, ...] = DEFAULT_HEALTH_CHECKS
    polygon_base_url: str = "https://api.polygon.io"
    courtlistener_base_url: str = "https://www.courtlistener.com"
    sec_base_url: str = "https://www.sec.gov"
    polygon_api_key: Optional[str] = field(default=None, repr=False)

    def __post_init__(self):
        """Validate timeouts are positive."""
        if self.request_timeout <= 0:
            raise ValueError("request_timeout must be > 0")
        if self.health_timeout <= 0:
            raise ValueError("health_timeout must be > 0")


@dataclass(frozen=True)
class ObservatoryConfig:
    """Complete application configuration."""
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)


_STRING_PIPELINE_KEYS = {
    'output_dir', 'ticker', 'litigation_query', 'sec_cik', 'sec_company',
    'search_term', 'user_agent', 'polygon_base_url', 'courtlistener_base_url',
    'sec_base_url',
}
_NUMBER_PIPELINE_KEYS = {'request_timeout', 'health_timeout'}


def load_config(path: Optional[str] = None, env: Optional[Dict[str, str]] = None) -> ObservatoryConfig:
    """Load and validate configuration from a YAML file.

    Strict validation ensures no silent misconfigurations. Without a path
    the defaults are used. The Polygon credential only ever comes from the
    environment.

    Args:
        path: Optional path to YAML configuration file
        env: Environment mapping (defaults to os.environ)

    Returns:
        Validated ObservatoryConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    env = os.environ if env is None else env
    api_key = env.get(POLYGON_API_KEY_ENV) or None

    raw_config: Dict[str, Any] = {}
    if path is not None:
        config_path = Path(path)
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(config_path, 'r', encoding='utf-8') as f:
            try:
                raw_config = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a dictionary")

    allowed_top_keys = {'ledger', 'pipeline'}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    ledger = _parse_ledger_config(raw_config.get('ledger') or {})
    pipeline = _parse_pipeline_config(raw_config.get('pipeline') or {}, api_key)

    return ObservatoryConfig(ledger=ledger, pipeline=pipeline)


def _parse_ledger_config(data: Any) -> LedgerConfig:
    if not isinstance(data, dict):
        raise ValueError("'ledger' must be a dictionary")

    unknown_keys = set(data.keys()) - {'db_path'}
    if unknown_keys:
        raise ValueError(f"Unknown keys in ledger: {unknown_keys}")

    if 'db_path' not in data:
        return LedgerConfig()
    db_path = data['db_path']
    if not isinstance(db_path, str) or not db_path.strip():
        raise ValueError("'db_path' in ledger must be a non-empty string")
    return LedgerConfig(db_path=db_path)


def _parse_pipeline_config(data: Any, api_key: Optional[str]) -> PipelineConfig:
    """Parse and validate pipeline configuration.

    Args:
        data: Pipeline configuration data
        api_key: Polygon credential from the environment

    Returns:
        Validated PipelineConfig

    Raises:
        ValueError: If configuration is invalid
    """
    if not isinstance(data, dict):
        raise ValueError("'pipeline' must be a dictionary")

    allowed_keys = _STRING_PIPELINE_KEYS | _NUMBER_PIPELINE_KEYS | {'health_checks'}
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown keys in pipeline: {unknown_keys}")

    values: Dict[str, Any] = {}
    for key in _STRING_PIPELINE_KEYS & set(data.keys()):
        value = data[key]
        # An unquoted CIK such as 0001652044 loads as an octal int
        if not isinstance(value, str) or not value.strip():
            raise ValueError(f"'{key}' in pipeline must be a non-empty string")
        values[key] = value

    for key in _NUMBER_PIPELINE_KEYS & set(data.keys()):
        value = data[key]
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
            raise ValueError(f"'{key}' in pipeline must be > 0")
        values[key] = float(value)

    if 'health_checks' in data:
        values['health_checks'] = _parse_health_checks(data['health_checks'])

    return PipelineConfig(polygon_api_key=api_key, **values)


def _parse_health_checks(data: Any) -> Tuple[HealthCheckTarget, ...]:
    if not isinstance(data, list) or not data:
        raise ValueError("'health_checks' in pipeline must be a non-empty list")

    targets = []
    for index, item in enumerate(data):
        path = f"pipeline.health_checks[{index}]"
        if not isinstance(item, dict):
            raise ValueError(f"{path} must be a dictionary")
        unknown_keys = set(item.keys()) - {'provider', 'endpoint'}
        if unknown_keys:
            raise ValueError(f"Unknown keys in {path}: {unknown_keys}")
        for key in ('provider', 'endpoint'):
            if key not in item:
                raise ValueError(f"Missing required '{key}' in {path}")
            if not isinstance(item[key], str) or not item[key].strip():
                raise ValueError(f"'{key}' in {path} must be a non-empty string")
        if not item['endpoint'].startswith(('http://', 'https://')):
            raise ValueError(f"'endpoint' in {path} must be an http(s) URL")
        targets.append(HealthCheckTarget(item['provider'], item['endpoint']))
    return tuple(targets)
