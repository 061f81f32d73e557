"""Configuration and session parameter validation utilities."""

import math
from dataclasses import dataclass
from typing import Any

from ..utils.time import parse_duration_seconds

CONTRACT_DURATION_UNITS = ("t", "s", "m", "h", "d")
TRADING_MODES = ("auto", "manual")

SEQUENCE_LENGTH = 4


@dataclass(frozen=True)
class ValidationIssue:
    """Represents a single configuration or parameter validation failure."""
    field: str
    message: str
    value: Any


def _is_number(value: Any) -> bool:
    return (isinstance(value, (int, float)) and not isinstance(value, bool)
            and math.isfinite(value))


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def is_valid_sequence(sequence: Any) -> bool:
    """
    Check a stake multiplier sequence.

    A valid sequence has exactly four positive integer-valued entries and
    starts with 1.

    Args:
        sequence: Candidate sequence

    Returns:
        True if the sequence is valid
    """
    if not isinstance(sequence, (list, tuple)) or len(sequence) != SEQUENCE_LENGTH:
        return False

    for multiplier in sequence:
        if not _is_number(multiplier) or multiplier != int(multiplier) or multiplier <= 0:
            return False

    return sequence[0] == 1


class ConfigValidator:
    """Validates configuration and session parameters."""

    @staticmethod
    def validate_strategy_params(params: dict[str, Any]) -> list[ValidationIssue]:
        """Validate stake strategy parameters."""
        errors = []

        for field in ("initial_stake", "profit_threshold", "loss_threshold"):
            if field in params:
                value = params[field]
                if not _is_number(value) or value <= 0:
                    errors.append(ValidationIssue(
                        field=field,
                        message="Must be a positive number",
                        value=value
                    ))

        for field in ("max_recovery_attempts", "max_daily_trades", "health_check_trade_threshold"):
            if field in params:
                value = params[field]
                if not _is_int(value) or value < 0:
                    errors.append(ValidationIssue(
                        field=field,
                        message="Must be a non-negative integer",
                        value=value
                    ))

        for field in ("sequence", "conservative_sequence", "aggressive_sequence"):
            if field in params and not is_valid_sequence(params[field]):
                errors.append(ValidationIssue(
                    field=field,
                    message="Must be four positive integers starting with 1",
                    value=params[field]
                ))

        # Ratios of a configured threshold
        for field in ("profit_lock_ratio", "max_stake_ratio", "recovery_stake_cap_ratio",
                      "deep_recovery_ratio", "loss_threshold_floor", "max_volatility_reduction",
                      "max_loss_rate"):
            if field in params:
                value = params[field]
                if not _is_number(value) or value <= 0 or value > 1:
                    errors.append(ValidationIssue(
                        field=field,
                        message="Must be a positive number between 0 and 1",
                        value=value
                    ))

        if "loss_threshold_step" in params:
            value = params["loss_threshold_step"]
            if not _is_number(value) or value < 0 or value > 1:
                errors.append(ValidationIssue(
                    field="loss_threshold_step",
                    message="Must be a number between 0 and 1",
                    value=value
                ))

        for field in ("sequence_profit_lock_multiplier", "recovery_multiplier",
                      "volatility_reduction_factor"):
            if field in params:
                value = params[field]
                if not _is_number(value) or value <= 0:
                    errors.append(ValidationIssue(
                        field=field,
                        message="Must be a positive number",
                        value=value
                    ))

        for field in ("failed_sequence_limit", "failed_sequence_window",
                      "stake_volatility_window", "volatility_check_window"):
            if field in params:
                value = params[field]
                if not _is_int(value) or value <= 0:
                    errors.append(ValidationIssue(
                        field=field,
                        message="Must be a positive integer",
                        value=value
                    ))

        for field in ("trading_hours_start", "trading_hours_end"):
            if field in params:
                value = params[field]
                if not _is_int(value) or value < 0 or value > 23:
                    errors.append(ValidationIssue(
                        field=field,
                        message="Must be an hour between 0 and 23",
                        value=value
                    ))

        if "trading_hours_enabled" in params:
            value = params["trading_hours_enabled"]
            if not isinstance(value, bool):
                errors.append(ValidationIssue(
                    field="trading_hours_enabled",
                    message="Must be a boolean",
                    value=value
                ))

        return errors

    @staticmethod
    def validate_session_params(params: dict[str, Any]) -> list[ValidationIssue]:
        """
        Validate session parameters received from the chat front end.

        Every required field must be present; numeric amounts must be
        positive and duration strings must parse.
        """
        errors = []

        for field in ("market", "contract_type"):
            value = params.get(field)
            if not isinstance(value, str) or not value.strip():
                errors.append(ValidationIssue(
                    field=field,
                    message="Required non-empty string",
                    value=value
                ))

        for field in ("stake", "take_profit", "stop_loss"):
            value = params.get(field)
            if not _is_number(value) or value <= 0:
                errors.append(ValidationIssue(
                    field=field,
                    message="Required positive number",
                    value=value
                ))

        for field in ("trade_duration", "update_frequency"):
            value = params.get(field)
            try:
                parse_duration_seconds(value)
            except ValueError as e:
                errors.append(ValidationIssue(
                    field=field,
                    message=f"Invalid duration: {e}",
                    value=value
                ))

        unit = params.get("contract_duration_unit")
        if unit not in CONTRACT_DURATION_UNITS:
            errors.append(ValidationIssue(
                field="contract_duration_unit",
                message=f"Must be one of {', '.join(CONTRACT_DURATION_UNITS)}",
                value=unit
            ))

        duration_value = params.get("contract_duration_value")
        if not _is_int(duration_value) or duration_value <= 0:
            errors.append(ValidationIssue(
                field="contract_duration_value",
                message="Required positive integer",
                value=duration_value
            ))

        mode = params.get("trading_mode")
        if not isinstance(mode, str) or mode.lower() not in TRADING_MODES:
            errors.append(ValidationIssue(
                field="trading_mode",
                message=f"Must be one of {', '.join(TRADING_MODES)}",
                value=mode
            ))

        token = params.get("account_token")
        if token is not None and not isinstance(token, str):
            errors.append(ValidationIssue(
                field="account_token",
                message="Must be a string",
                value="<redacted>"
            ))

        return errors

    @staticmethod
    def validate_connection_params(params: dict[str, Any]) -> list[ValidationIssue]:
        """Validate venue connection parameters."""
        errors = []

        if "max_attempts" in params:
            value = params["max_attempts"]
            if not _is_int(value) or value <= 0:
                errors.append(ValidationIssue(
                    field="max_attempts",
                    message="Must be a positive integer",
                    value=value
                ))

        for field in ("ping_interval_seconds", "pong_timeout_seconds",
                      "contract_creation_timeout_seconds", "request_timeout_seconds"):
            if field in params:
                value = params[field]
                if not _is_number(value) or value <= 0:
                    errors.append(ValidationIssue(
                        field=field,
                        message="Must be a positive number",
                        value=value
                    ))

        for field in ("retry_delay_seconds", "reconnect_pause_seconds"):
            if field in params:
                value = params[field]
                if not _is_number(value) or value < 0:
                    errors.append(ValidationIssue(
                        field=field,
                        message="Must be a non-negative number",
                        value=value
                    ))

        if "endpoint" in params:
            value = params["endpoint"]
            if not isinstance(value, str) or not value.startswith(("ws://", "wss://")):
                errors.append(ValidationIssue(
                    field="endpoint",
                    message="Must be a ws:// or wss:// URL",
                    value=value
                ))

        return errors

    @staticmethod
    def validate_config(config: dict[str, Any]) -> list[ValidationIssue]:
        """Validate complete configuration."""
        errors = []

        if "strategy" in config:
            errors.extend(ConfigValidator.validate_strategy_params(config["strategy"]))

        if "connection" in config:
            errors.extend(ConfigValidator.validate_connection_params(config["connection"]))

        return errors
