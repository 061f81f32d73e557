"""Default configuration parameters for the trading core."""

from dataclasses import dataclass


@dataclass(frozen=True)
class StrategyParams:
    """Stake progression and risk parameters matching StrategyConfig from strategy.models."""
    # Session money limits
    initial_stake: float = 5.0                       # Base stake, sequence multiplier 1
    profit_threshold: float = 1000.0                 # Take-profit level for the strategy
    loss_threshold: float = 500.0                    # Maximum tolerated drawdown
    max_recovery_attempts: int = 3                   # Losing recovery trades before the cycle is abandoned
    max_daily_trades: int = 50                       # Trades allowed per calendar day

    # Stake multiplier sequences
    sequence: tuple = (1, 3, 2, 6)                   # Reference 1-3-2-6 progression
    conservative_sequence: tuple = (1, 2, 3, 4)      # Used during loss streaks outside recovery
    aggressive_sequence: tuple = (1, 3, 5, 7)        # Opt-in only, never auto-selected

    # Profit lock
    profit_lock_ratio: float = 0.5                   # Share of profit_threshold that locks profit
    sequence_profit_lock_multiplier: float = 10.0    # Sequence profit lock at initial_stake x this

    # Stake bounds
    max_stake_ratio: float = 0.3                     # Stake ceiling as share of loss_threshold
    recovery_stake_cap_ratio: float = 0.25           # Recovery stake ceiling as share of loss_threshold
    recovery_multiplier: float = 2.0                 # Recovery stake growth per consecutive loss

    # Loss threshold tightening
    loss_threshold_step: float = 0.1                 # Threshold shrink per consecutive loss
    loss_threshold_floor: float = 0.5                # Never below this share of loss_threshold
    deep_recovery_ratio: float = 0.5                 # Recovery losses above this share stop trading

    # History guards
    failed_sequence_limit: int = 3                   # Losing entries that stop trading
    failed_sequence_window: int = 5                  # Recent entries inspected for failed sequences
    stake_volatility_window: int = 5                 # Recent entries used for stake reduction
    volatility_reduction_factor: float = 0.7         # Stake reduction per unit of loss rate
    max_volatility_reduction: float = 0.5            # Stake never reduced by more than this
    volatility_check_window: int = 10                # Recent entries for the volatility guard
    max_loss_rate: float = 0.6                       # Loss rate above this blocks trading

    # Scheduling
    trading_hours_enabled: bool = True               # Restrict trading to the hours window
    trading_hours_start: int = 8                     # First trading hour (UTC, inclusive)
    trading_hours_end: int = 20                      # Last trading hour (UTC, inclusive)

    # Session health
    health_check_trade_threshold: int = 30           # Trades before a losing day pauses the strategy


@dataclass(frozen=True)
class SessionDefaults:
    """Trade loop timing and stop parameters."""
    base_delay_ms: int = 1000                # Delay after a win
    loss_delay_base_ms: int = 3000           # Base delay after a loss
    loss_delay_jitter_ms: int = 2000         # Uniform jitter added after a loss
    loss_delay_growth: float = 1.5           # Delay growth per consecutive loss
    loss_delay_soft_cap_ms: int = 10000      # Scaled delays above this are rescaled
    max_delay_ms: int = 15000                # Hard ceiling for any inter-trade delay
    backoff_base_ms: int = 1000              # Error backoff base
    backoff_max_ms: int = 30000              # Error backoff ceiling
    max_retry_attempts: int = 5              # Consecutive error retries before giving up
    max_consecutive_losses: int = 5          # Recovery ceiling that stops the session
    currency: str = "USD"


@dataclass(frozen=True)
class ConnectionParams:
    """Venue connection parameters."""
    endpoint: str = "wss://ws.derivws.com/websockets/v3"
    app_id: str = "1089"
    max_attempts: int = 5
    ping_interval_seconds: float = 30.0
    pong_timeout_seconds: float = 10.0
    contract_creation_timeout_seconds: float = 5.0
    retry_delay_seconds: float = 3.0
    reconnect_pause_seconds: float = 1.0
    request_timeout_seconds: float = 30.0


@dataclass(frozen=True)
class TelemetryParams:
    """Session event emission parameters."""
    emit_statistics: bool = True             # Final telemetry and run summary on stop
    telemetry_enabled: bool = True           # Periodic telemetry during the session


@dataclass(frozen=True)
class DefaultConfig:
    """Complete default configuration."""
    strategy: StrategyParams
    session: SessionDefaults
    connection: ConnectionParams
    telemetry: TelemetryParams


def get_default_config() -> DefaultConfig:
    """Get the default configuration instance."""
    return DefaultConfig(
        strategy=StrategyParams(),
        session=SessionDefaults(),
        connection=ConnectionParams(),
        telemetry=TelemetryParams(),
    )
