"""Configuration loader with 3-tier parameter precedence."""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import yaml

from ..data.contracts import resolve_market_symbol
from ..strategy.models import StrategyConfig
from .defaults import (
    ConnectionParams,
    DefaultConfig,
    SessionDefaults,
    TelemetryParams,
    get_default_config,
)


@dataclass(frozen=True)
class ConfigLoader:
    """Manages configuration loading with 3-tier precedence."""

    config_dir: Path
    defaults: DefaultConfig

    @classmethod
    def create(cls, config_dir: Optional[Path] = None) -> "ConfigLoader":
        """Create a ConfigLoader instance."""
        if config_dir is None:
            config_dir = Path(__file__).parent.parent.parent / "config"

        return cls(
            config_dir=config_dir,
            defaults=get_default_config(),
        )

    def load_market_config(self, market: str) -> dict[str, Any]:
        """Load market-specific configuration overrides, keyed by venue symbol."""
        markets_file = self.config_dir / "markets.yaml"

        if not markets_file.exists():
            return {}

        with open(markets_file) as f:
            markets_config = yaml.safe_load(f) or {}

        markets = markets_config.get("markets") or {}
        return markets.get(resolve_market_symbol(market), {})  # type: ignore[no-any-return]

    def merge_config(
        self,
        market: str,
        session_overrides: Optional[dict[str, Any]] = None
    ) -> dict[str, Any]:
        """
        Merge configuration with 3-tier precedence.

        Priority order:
        1. Per-session overrides (highest priority)
        2. Market-specific overrides
        3. Global defaults (lowest priority)
        """
        config = self._dataclass_to_dict(self.defaults)

        market_config = self.load_market_config(market)
        config = self._deep_merge(config, market_config)

        if session_overrides:
            config = self._deep_merge(config, session_overrides)

        return config

    def build_config(
        self,
        market: str,
        session_overrides: Optional[dict[str, Any]] = None
    ) -> DefaultConfig:
        """Merge configuration for a market and rebuild the typed parameter groups."""
        merged = self.merge_config(market, session_overrides)
        return DefaultConfig(
            strategy=StrategyConfig.from_dict(merged.get("strategy", {})),
            session=_build(SessionDefaults, merged.get("session", {})),
            connection=_build(ConnectionParams, merged.get("connection", {})),
            telemetry=_build(TelemetryParams, merged.get("telemetry", {})),
        )

    def strategy_config_for(
        self,
        market: str,
        session_params: Any,
        overrides: Optional[dict[str, Any]] = None
    ) -> StrategyConfig:
        """
        Build the stake strategy configuration for one session.

        The session's stake, take-profit and stop-loss replace the
        initial stake, profit threshold and loss threshold.

        Args:
            market: Market name or venue symbol
            session_params: Validated session parameters
            overrides: Optional per-session strategy overrides

        Returns:
            Validated StrategyConfig

        Raises:
            SessionValidationError: If the merged parameters are invalid
        """
        session_strategy = {
            "initial_stake": session_params.stake,
            "profit_threshold": session_params.take_profit,
            "loss_threshold": session_params.stop_loss,
        }
        if overrides:
            session_strategy.update(overrides)

        merged = self.merge_config(market, {"strategy": session_strategy})
        return StrategyConfig.from_dict(merged["strategy"])

    def _dataclass_to_dict(self, obj: Any) -> dict[str, Any]:
        """Convert nested dataclasses to dictionary."""
        if hasattr(obj, '__dataclass_fields__'):
            result = {}
            for field_name in obj.__dataclass_fields__:
                value = getattr(obj, field_name)
                if hasattr(value, '__dataclass_fields__'):
                    result[field_name] = self._dataclass_to_dict(value)
                else:
                    result[field_name] = value
            return result
        return obj  # type: ignore[no-any-return]

    def _deep_merge(self, base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
        """Deep merge two dictionaries."""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result


def _build(params_cls: type, values: dict[str, Any]) -> Any:
    known = {name: value for name, value in values.items()
             if name in params_cls.__dataclass_fields__}
    return params_cls(**known)
