"""Configuration loader with 3-tier parameter precedence."""

from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Optional

import yaml

from ..errors import MalformedDataError
from .defaults import (
    CurveParams,
    KeeperConfig,
    KeeperParams,
    MonitorParams,
    PriceFeedParams,
    SchedulerParams,
    SignalParams,
    get_default_config,
)

CONFIG_FILENAME = "keeper.yaml"

_SECTION_TYPES = {
    "curve": CurveParams,
    "monitor": MonitorParams,
    "scheduler": SchedulerParams,
    "signals": SignalParams,
    "price_feed": PriceFeedParams,
    "keeper": KeeperParams,
}


@dataclass(frozen=True)
class ConfigLoader:
    """Manages configuration loading with 3-tier precedence."""

    config_dir: Path
    defaults: KeeperConfig

    @classmethod
    def create(cls, config_dir: Optional[Path] = None) -> "ConfigLoader":
        """Create a ConfigLoader instance."""
        if config_dir is None:
            config_dir = Path(__file__).parent.parent.parent / "config"

        return cls(
            config_dir=Path(config_dir),
            defaults=get_default_config(),
        )

    def load_file_config(self) -> dict[str, Any]:
        """Load overrides from keeper.yaml, or nothing if the file is absent."""
        config_file = self.config_dir / CONFIG_FILENAME

        if not config_file.exists():
            return {}

        try:
            with open(config_file) as f:
                file_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise MalformedDataError(
                f"Could not parse {config_file}: {e}",
                expected_format="yaml",
            ) from e

        if file_config is None:
            return {}
        if not isinstance(file_config, dict):
            raise MalformedDataError(
                f"{CONFIG_FILENAME} must contain a mapping",
                raw_data=str(file_config)[:100],
                expected_format="mapping",
            )
        return file_config

    def merge_config(self, overrides: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        """
        Merge configuration with 3-tier precedence.

        Priority order:
        1. Explicit overrides (highest priority, e.g. CLI flags)
        2. keeper.yaml in the config directory
        3. Global defaults (lowest priority)
        """
        config = self._dataclass_to_dict(self.defaults)

        config = self._deep_merge(config, self.load_file_config())

        if overrides:
            config = self._deep_merge(config, overrides)

        return config

    def build_config(self, overrides: Optional[dict[str, Any]] = None) -> KeeperConfig:
        """Merge all tiers and return a typed KeeperConfig."""
        merged = self.merge_config(overrides)
        sections = {}
        for name, section_type in _SECTION_TYPES.items():
            known = {f.name for f in fields(section_type)}
            values = merged.get(name, {}) or {}
            unknown = set(values) - known
            if unknown:
                raise MalformedDataError(
                    f"Unknown keys in config section '{name}': {sorted(unknown)}",
                    context={"section": name},
                )
            sections[name] = section_type(**values)
        return KeeperConfig(**sections)

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
