"""Configuration validation utilities."""

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class ValidationError:
    """Represents a configuration validation error."""
    field: str
    message: str
    value: Any


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _check_positive_int(params: dict[str, Any], name: str, errors: list[ValidationError],
                        prefix: str) -> None:
    if name in params:
        value = params[name]
        if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
            errors.append(ValidationError(
                field=f"{prefix}.{name}",
                message="Must be a positive integer",
                value=value
            ))


def _check_positive_number(params: dict[str, Any], name: str, errors: list[ValidationError],
                           prefix: str) -> None:
    if name in params:
        value = params[name]
        if not _is_number(value) or value <= 0:
            errors.append(ValidationError(
                field=f"{prefix}.{name}",
                message="Must be a positive number",
                value=value
            ))


def _check_bool(params: dict[str, Any], name: str, errors: list[ValidationError],
                prefix: str) -> None:
    if name in params and not isinstance(params[name], bool):
        errors.append(ValidationError(
            field=f"{prefix}.{name}",
            message="Must be a boolean",
            value=params[name]
        ))


class ConfigValidator:
    """Validates configuration parameters."""

    @staticmethod
    def validate_curve_params(params: dict[str, Any]) -> list[ValidationError]:
        """Validate precision curve parameters."""
        errors: list[ValidationError] = []

        # Validate total_bins
        if "total_bins" in params:
            value = params["total_bins"]
            if not isinstance(value, int) or isinstance(value, bool) or value < 2:
                errors.append(ValidationError(
                    field="curve.total_bins",
                    message="Must be an integer of at least 2",
                    value=value
                ))

        _check_positive_number(params, "concentration_factor", errors, "curve")

        return errors

    @staticmethod
    def validate_monitor_params(params: dict[str, Any]) -> list[ValidationError]:
        """Validate position monitor parameters."""
        errors: list[ValidationError] = []

        for name in ("rebalance_priority", "take_profit_priority", "stop_loss_priority"):
            if name in params:
                value = params[name]
                if not isinstance(value, int) or isinstance(value, bool):
                    errors.append(ValidationError(
                        field=f"monitor.{name}",
                        message="Must be an integer",
                        value=value
                    ))

        _check_positive_int(params, "max_workers", errors, "monitor")
        _check_positive_number(params, "price_timeout_seconds", errors, "monitor")

        return errors

    @staticmethod
    def validate_scheduler_params(params: dict[str, Any]) -> list[ValidationError]:
        """Validate scheduler parameters."""
        errors: list[ValidationError] = []

        _check_positive_int(params, "batch_size", errors, "scheduler")
        _check_positive_int(params, "max_workers", errors, "scheduler")
        _check_positive_int(params, "candidate_window", errors, "scheduler")
        _check_positive_number(params, "job_timeout_seconds", errors, "scheduler")
        _check_positive_number(params, "stuck_after_seconds", errors, "scheduler")

        # Validate max_retries
        if "max_retries" in params:
            value = params["max_retries"]
            if not isinstance(value, int) or isinstance(value, bool) or value < 0:
                errors.append(ValidationError(
                    field="scheduler.max_retries",
                    message="Must be a non-negative integer",
                    value=value
                ))

        # Scan window must cover a full batch
        batch_size = params.get("batch_size")
        window = params.get("candidate_window")
        if isinstance(batch_size, int) and isinstance(window, int) and window < batch_size:
            errors.append(ValidationError(
                field="scheduler.candidate_window",
                message="Must be at least batch_size",
                value=window
            ))

        return errors

    @staticmethod
    def validate_signal_params(params: dict[str, Any]) -> list[ValidationError]:
        """Validate advisory signal parameters."""
        errors: list[ValidationError] = []

        _check_bool(params, "enabled", errors, "signals")
        _check_positive_int(params, "min_history", errors, "signals")
        _check_positive_int(params, "history_limit", errors, "signals")
        _check_positive_int(params, "max_workers", errors, "signals")
        _check_positive_number(params, "timeout_seconds", errors, "signals")

        # Validate confidence_floor
        if "confidence_floor" in params:
            value = params["confidence_floor"]
            if not _is_number(value) or value < 0 or value > 100:
                errors.append(ValidationError(
                    field="signals.confidence_floor",
                    message="Must be a number between 0 and 100",
                    value=value
                ))

        min_history = params.get("min_history")
        history_limit = params.get("history_limit")
        if (isinstance(min_history, int) and isinstance(history_limit, int)
                and history_limit < min_history):
            errors.append(ValidationError(
                field="signals.history_limit",
                message="Must be at least min_history",
                value=history_limit
            ))

        return errors

    @staticmethod
    def validate_price_feed_params(params: dict[str, Any]) -> list[ValidationError]:
        """Validate price feed parameters."""
        errors: list[ValidationError] = []

        _check_bool(params, "enabled", errors, "price_feed")
        _check_positive_number(params, "cache_ttl_seconds", errors, "price_feed")
        _check_positive_number(params, "timeout_seconds", errors, "price_feed")

        if "base_url" in params:
            value = params["base_url"]
            if not isinstance(value, str) or not value.startswith(("http://", "https://")):
                errors.append(ValidationError(
                    field="price_feed.base_url",
                    message="Must be an http(s) URL",
                    value=value
                ))

        return errors

    @staticmethod
    def validate_config(config: dict[str, Any]) -> list[ValidationError]:
        """Validate complete configuration."""
        errors = []

        if "curve" in config:
            errors.extend(ConfigValidator.validate_curve_params(config["curve"]))

        if "monitor" in config:
            errors.extend(ConfigValidator.validate_monitor_params(config["monitor"]))

        if "scheduler" in config:
            errors.extend(ConfigValidator.validate_scheduler_params(config["scheduler"]))

        if "signals" in config:
            errors.extend(ConfigValidator.validate_signal_params(config["signals"]))

        if "price_feed" in config:
            errors.extend(ConfigValidator.validate_price_feed_params(config["price_feed"]))

        if "keeper" in config:
            _check_positive_number(config["keeper"], "interval_seconds", errors, "keeper")

        return errors
