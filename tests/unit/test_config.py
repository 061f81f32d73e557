"""Unit tests for configuration management."""

import pytest
from pathlib import Path

from seqtrade_app.config.defaults import SessionDefaults, get_default_config
from seqtrade_app.config.loader import ConfigLoader
from seqtrade_app.config.validation import ConfigValidator, is_valid_sequence
from seqtrade_app.errors import SessionValidationError
from seqtrade_app.session.models import SessionParams
from seqtrade_app.strategy import StrategyConfig


class TestDefaultConfig:
    """Test suite for default configuration."""

    def test_default_config_creation(self) -> None:
        """Test that default configuration can be created."""
        config = get_default_config()
        assert config.strategy.initial_stake == 5.0
        assert config.strategy.sequence == (1, 3, 2, 6)
        assert config.session.max_retry_attempts == 5
        assert config.connection.max_attempts == 5
        assert config.telemetry.emit_statistics is True

    def test_default_strategy_params_are_valid(self) -> None:
        """Test the defaults pass strategy validation."""
        config = get_default_config()
        StrategyConfig.from_dict(ConfigLoader.create()._dataclass_to_dict(config.strategy))


class TestConfigLoader:
    """Test suite for configuration loader."""

    def test_config_loader_creation(self) -> None:
        """Test that ConfigLoader can be created."""
        loader = ConfigLoader.create()
        assert isinstance(loader.config_dir, Path)
        assert (loader.config_dir / "markets.yaml").exists()

    def test_merge_config_defaults_only(self) -> None:
        """Test config merging with defaults only."""
        loader = ConfigLoader.create()
        config = loader.merge_config("UNKNOWN-MARKET")

        assert config["strategy"]["max_daily_trades"] == 50
        assert config["session"]["base_delay_ms"] == 1000

    def test_market_overrides(self) -> None:
        """Test market overrides resolved from the display name."""
        loader = ConfigLoader.create()
        config = loader.merge_config("Volatility 100 📈")

        assert config["strategy"]["max_daily_trades"] == 40
        assert config["strategy"]["max_loss_rate"] == 0.55
        # Other defaults should remain
        assert config["strategy"]["initial_stake"] == 5.0

    def test_session_overrides_win(self) -> None:
        """Test per-session overrides replace market values."""
        loader = ConfigLoader.create()
        overrides = {"strategy": {"max_daily_trades": 10}}

        config = loader.merge_config("R_100", overrides)

        assert config["strategy"]["max_daily_trades"] == 10
        assert config["strategy"]["max_loss_rate"] == 0.55

    def test_build_config(self, tmp_path) -> None:
        """Test typed parameter groups rebuilt from a market file."""
        (tmp_path / "markets.yaml").write_text(
            "markets:\n"
            "  R_50:\n"
            "    strategy:\n"
            "      sequence: [1, 2, 3, 4]\n"
            "    connection:\n"
            "      max_attempts: 2\n"
        )
        loader = ConfigLoader.create(tmp_path)

        config = loader.build_config("R_50")

        assert isinstance(config.strategy, StrategyConfig)
        assert config.strategy.sequence == (1, 2, 3, 4)
        assert config.connection.max_attempts == 2
        assert config.session == SessionDefaults()

    def test_build_config_rejects_invalid_market_values(self, tmp_path) -> None:
        """Test invalid market overrides fail validation."""
        (tmp_path / "markets.yaml").write_text(
            "markets:\n  R_50:\n    strategy:\n      sequence: [2, 3, 4, 5]\n"
        )

        with pytest.raises(SessionValidationError):
            ConfigLoader.create(tmp_path).build_config("R_50")

    def test_missing_markets_file(self, tmp_path) -> None:
        """Test a missing markets file means no overrides."""
        assert ConfigLoader.create(tmp_path).load_market_config("R_100") == {}

    def test_strategy_config_for_session(self, sample_session_params) -> None:
        """Test session limits replace the strategy thresholds."""
        loader = ConfigLoader.create()
        params = SessionParams.from_dict(sample_session_params)

        strategy_config = loader.strategy_config_for(params.symbol, params)

        assert strategy_config.initial_stake == 5.0
        assert strategy_config.profit_threshold == 100.0
        assert strategy_config.loss_threshold == 50.0
        assert strategy_config.max_daily_trades == 40


class TestConfigValidator:
    """Test suite for configuration validation."""

    def test_valid_strategy_params(self) -> None:
        """Test validation of valid strategy parameters."""
        params = {
            "initial_stake": 5.0,
            "profit_threshold": 1000.0,
            "loss_threshold": 500.0,
            "sequence": (1, 3, 2, 6),
        }

        errors = ConfigValidator.validate_strategy_params(params)
        assert len(errors) == 0

    def test_invalid_initial_stake(self) -> None:
        """Test validation of invalid initial_stake."""
        errors = ConfigValidator.validate_strategy_params({"initial_stake": -0.1})

        assert len(errors) == 1
        assert errors[0].field == "initial_stake"

    def test_invalid_ratio(self) -> None:
        """Test ratios must lie in (0, 1]."""
        errors = ConfigValidator.validate_strategy_params({"max_stake_ratio": 1.5})

        assert [error.field for error in errors] == ["max_stake_ratio"]

    def test_invalid_trading_hours(self) -> None:
        """Test trading hours must be valid hours."""
        errors = ConfigValidator.validate_strategy_params(
            {"trading_hours_start": 24, "trading_hours_enabled": "yes"})

        assert {error.field for error in errors} == {"trading_hours_start", "trading_hours_enabled"}

    def test_invalid_connection_params(self) -> None:
        """Test connection parameter validation."""
        errors = ConfigValidator.validate_connection_params({
            "max_attempts": 0,
            "endpoint": "https://example.test",
            "retry_delay_seconds": 0,
        })

        assert {error.field for error in errors} == {"max_attempts", "endpoint"}

    def test_validate_config(self) -> None:
        """Test complete config validation collects issues from each group."""
        errors = ConfigValidator.validate_config({
            "strategy": {"loss_threshold": 0},
            "connection": {"ping_interval_seconds": -1},
        })

        assert {error.field for error in errors} == {"loss_threshold", "ping_interval_seconds"}

    def test_sequence_rules(self) -> None:
        """Test the shared sequence validity check."""
        assert is_valid_sequence((1, 3, 2, 6)) is True
        assert is_valid_sequence([1, 3, 2, 6.0]) is True
        assert is_valid_sequence([0, 3, 2, 6]) is False
        assert is_valid_sequence([1, 3, 2, True]) is False

    @pytest.mark.parametrize("value", [float("nan"), float("inf"), float("-inf")])
    def test_non_finite_amounts_rejected(self, value) -> None:
        """Test NaN and infinite amounts never count as valid numbers."""
        errors = ConfigValidator.validate_strategy_params({
            "initial_stake": value,
            "loss_threshold": value,
            "max_stake_ratio": value,
        })

        assert {error.field for error in errors} == {
            "initial_stake", "loss_threshold", "max_stake_ratio"}

    @pytest.mark.parametrize("field", ["stake", "take_profit", "stop_loss"])
    @pytest.mark.parametrize("value", [float("nan"), float("inf")])
    def test_non_finite_session_limits_rejected(self, sample_session_params, field, value) -> None:
        """Test a session with a NaN or infinite limit is never started."""
        sample_session_params[field] = value

        with pytest.raises(SessionValidationError) as exc_info:
            SessionParams.from_dict(sample_session_params)

        assert [issue.field for issue in exc_info.value.issues] == [field]

    @pytest.mark.parametrize("field", ["initial_stake", "profit_threshold", "loss_threshold"])
    def test_non_finite_strategy_config_rejected(self, field) -> None:
        """Test StrategyConfig refuses NaN thresholds."""
        with pytest.raises(SessionValidationError):
            StrategyConfig.from_dict({field: float("nan")})
