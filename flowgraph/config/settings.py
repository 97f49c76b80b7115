"""
Run Configuration

Settings applied by the run coordinator: deadlines, retry policy and the
environment tag. Loaded from environment variables, YAML files or code, and
merged with later sources overriding earlier ones.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

_DISABLED = {"", "none", "off", "null"}


def _default_environment() -> str:
    return os.getenv("FLOWGRAPH_ENV") or os.getenv("ENVIRONMENT") or "development"


class RunConfig(BaseModel):
    """
    Configuration for a run.

    Attributes:
        timeout_ms: Soft deadline for a whole top-level run (None disables)
        node_timeout_ms: Soft deadline for each node attempt (None disables)
        max_retries: Extra attempts after a node failure before it is terminal
        retry_backoff_ms: Base delay before the first retry, doubled per retry
        retry_backoff_max_ms: Upper bound on the retry delay
        environment: Free-form environment tag ("development", "production", ...)
        extra: Custom settings passed through untouched

    Example usage:
        config = merge_configs(
            RunConfig.from_env(),
            RunConfig.from_yaml(Path("run.yaml")),
            RunConfig(max_retries=2),
        )
    """
    timeout_ms: Optional[int] = Field(default=60000, ge=1)
    node_timeout_ms: Optional[int] = Field(default=None, ge=1)
    max_retries: int = Field(default=0, ge=0)
    retry_backoff_ms: int = Field(default=100, ge=0)
    retry_backoff_max_ms: int = Field(default=5000, ge=0)
    environment: str = Field(default_factory=_default_environment)
    extra: Dict[str, Any] = Field(default_factory=dict)

    @property
    def timeout_seconds(self) -> Optional[float]:
        return None if self.timeout_ms is None else self.timeout_ms / 1000

    @property
    def node_timeout_seconds(self) -> Optional[float]:
        return None if self.node_timeout_ms is None else self.node_timeout_ms / 1000

    def backoff_seconds(self, attempt: int) -> float:
        """
        Delay before retrying after a failed attempt.

        Args:
            attempt: 1-based number of the attempt that just failed

        Returns:
            Exponential back-off in seconds, capped by retry_backoff_max_ms
        """
        delay_ms = self.retry_backoff_ms * (2 ** max(attempt - 1, 0))
        return min(delay_ms, self.retry_backoff_max_ms) / 1000

    @classmethod
    def from_env(cls, prefix: str = "FLOWGRAPH") -> "RunConfig":
        """
        Create config from environment variables.

        Only variables that are present are applied, so the result merges
        cleanly over other sources.

        Variables:
            {prefix}_TIMEOUT_MS, {prefix}_NODE_TIMEOUT_MS, {prefix}_MAX_RETRIES,
            {prefix}_RETRY_BACKOFF_MS, {prefix}_RETRY_BACKOFF_MAX_MS, {prefix}_ENV

        Raises:
            ValueError: If a variable holds an invalid value
        """
        values: Dict[str, Any] = {}
        for name in ("timeout_ms", "node_timeout_ms"):
            raw = os.getenv(f"{prefix}_{name.upper()}")
            if raw is not None:
                values[name] = None if raw.strip().lower() in _DISABLED else raw
        for name in ("max_retries", "retry_backoff_ms", "retry_backoff_max_ms"):
            raw = os.getenv(f"{prefix}_{name.upper()}")
            if raw is not None:
                values[name] = raw
        env_name = os.getenv(f"{prefix}_ENV")
        if env_name:
            values["environment"] = env_name

        return cls(**values)

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "RunConfig":
        """
        Load config from a YAML file.

        Accepted layouts:
            timeout_ms: 5000            # flat
            max_retries: 2

            runtime:                    # nested, as in pipeline files
              timeout_ms: 5000
            environment:
              name: production

        Raises:
            ValueError: If the file is not a mapping or holds invalid values
        """
        path = Path(path)
        with open(path) as f:
            raw = yaml.safe_load(f) or {}

        if not isinstance(raw, dict):
            raise ValueError(f"Run config {path} must contain a mapping")

        values = dict(raw.get("runtime") or raw)
        values.pop("runtime", None)
        environment = raw.get("environment", values.get("environment"))
        if isinstance(environment, dict):
            environment = environment.get("name")
        if environment:
            values["environment"] = environment
        else:
            values.pop("environment", None)

        config = cls(**values)
        logger.debug(f"Loaded run config from {path}: {config.model_dump(exclude_unset=True)}")
        return config


def merge_configs(*configs: Optional[RunConfig]) -> RunConfig:
    """
    Merge configurations; later configs override earlier ones.

    Only fields explicitly set on a config take part, so defaults never
    overwrite a value supplied by an earlier source. The extra dicts are
    merged key by key.

    Args:
        *configs: Configs in increasing priority (None entries are skipped)

    Returns:
        New merged RunConfig
    """
    merged: Dict[str, Any] = {}
    extra: Dict[str, Any] = {}

    for config in configs:
        if config is None:
            continue
        explicit = {name: getattr(config, name) for name in config.model_fields_set}
        extra.update(explicit.pop("extra", None) or {})
        merged.update(explicit)

    return RunConfig(**merged, extra=extra)
