"""Configuration loading and validation."""

import json
import signal
from pathlib import Path
from typing import Any, Literal, Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from .errors import ConfigError


class RetryConfig(BaseModel):
    """Restart policy for processes that fail to launch."""
    restart_tries: int = Field(default=0, ge=0)
    restart_after_ms: int = Field(default=0, ge=0)
    backoff_factor: float = Field(default=1.0, ge=1.0, le=10.0)
    max_delay_ms: Optional[int] = Field(default=None, ge=0)

    def delay_ms(self, attempt: int) -> int:
        """Delay before retry number `attempt` (1-based)."""
        delay = self.restart_after_ms * (self.backoff_factor ** (attempt - 1))
        if self.max_delay_ms is not None:
            delay = min(delay, self.max_delay_ms)
        return int(delay)


class OutputConfig(BaseModel):
    """How multiplexed output is presented."""
    raw: bool = Field(default=False)
    no_color: bool = Field(default=False)
    group: bool = Field(default=False)
    timings: bool = Field(default=False)
    timestamp_format: str = Field(default="%Y-%m-%d %H:%M:%S")
    prefix: Optional[str] = Field(default=None)
    prefix_length: int = Field(default=10, ge=1)


class MltiConfig(BaseModel):
    """Main run configuration."""
    commands: list[str] = Field(default_factory=list)
    name_separator: str = Field(default=",", min_length=1)
    names: list[str] = Field(default_factory=list)
    max_processes: Optional[Union[int, str]] = Field(default=None)
    package_json: str = Field(default="package.json")

    # Cascades
    kill_others: bool = Field(default=False)
    kill_others_on_fail: bool = Field(default=False)
    exit_code_failures: bool = Field(default=False)
    kill_signal: str = Field(default="SIGTERM")
    kill_timeout_seconds: float = Field(default=5.0, ge=0)

    # Exit code of a naturally completed run: all, first or last
    success_terms: Optional[Literal["all", "first", "last"]] = Field(default=None)

    hide: list[str] = Field(default_factory=list)

    # Module configs
    retry: RetryConfig = Field(default_factory=RetryConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)

    @field_validator("names", mode="before")
    @classmethod
    def _split_names(cls, value: Any, info) -> Any:
        if isinstance(value, str):
            separator = info.data.get("name_separator", ",")
            return value.split(separator) if value else []
        return value

    @field_validator("hide", mode="before")
    @classmethod
    def _split_hide(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return value

    @field_validator("kill_signal")
    @classmethod
    def _check_signal(cls, value: str) -> str:
        name = value.upper()
        if not name.startswith("SIG"):
            name = f"SIG{name}"
        if not isinstance(getattr(signal, name, None), signal.Signals):
            raise ValueError(f"Unknown signal: {value}")
        return name

    def resolved_max_processes(self, cpu_count: Optional[int] = None) -> Optional[int]:
        """Concurrency cap as an integer, or None when unbounded."""
        from ..orchestrator.commands import resolve_max_processes
        return resolve_max_processes(self.max_processes, cpu_count=cpu_count)


# Flat keys (as used on the command line) and where they live in MltiConfig
_NESTED_KEYS = {
    "restart_tries": ("retry", "restart_tries"),
    "restart_after": ("retry", "restart_after_ms"),
    "restart_after_ms": ("retry", "restart_after_ms"),
    "backoff_factor": ("retry", "backoff_factor"),
    "max_delay_ms": ("retry", "max_delay_ms"),
    "raw": ("output", "raw"),
    "no_color": ("output", "no_color"),
    "group": ("output", "group"),
    "timings": ("output", "timings"),
    "timestamp_format": ("output", "timestamp_format"),
    "prefix": ("output", "prefix"),
    "prefix_length": ("output", "prefix_length"),
}


def normalize_keys(data: dict[str, Any]) -> dict[str, Any]:
    """
    Turn CLI-style keys into the nested MltiConfig layout.

    Accepts "kill-others" or "kill_others", and flat "restart-tries" as
    well as {"retry": {"restart_tries": ...}}.
    """
    result: dict[str, Any] = {}
    for raw_key, value in data.items():
        key = raw_key.replace("-", "_")
        if key in ("retry", "output") and isinstance(value, dict):
            section = result.setdefault(key, {})
            section.update({k.replace("-", "_"): v for k, v in value.items()})
        elif key in _NESTED_KEYS:
            section_name, field_name = _NESTED_KEYS[key]
            result.setdefault(section_name, {})[field_name] = value
        else:
            result[key] = value
    return result


class ConfigLoader:
    """Loads and validates YAML/JSON run configurations."""

    def load_file(self, path: Union[str, Path]) -> MltiConfig:
        """Load a run configuration file."""
        path = Path(path)
        data = self._load_file(path)
        return self.from_dict(data, config_path=str(path))

    def from_dict(self, data: dict[str, Any], config_path: Optional[str] = None) -> MltiConfig:
        try:
            return MltiConfig(**normalize_keys(data))
        except ValidationError as e:
            raise ConfigError(f"Invalid config: {e}", config_path=config_path)

    def merge(self, base: MltiConfig, overrides: dict[str, Any]) -> MltiConfig:
        """Apply overrides (CLI-style keys) on top of a loaded config."""
        data = base.model_dump()
        for key, value in normalize_keys(overrides).items():
            if key in ("retry", "output"):
                data[key].update(value)
            else:
                data[key] = value
        return self.from_dict(data)

    def _load_file(self, path: Path) -> dict[str, Any]:
        """Load YAML or JSON file."""
        if not path.exists():
            raise ConfigError(f"Config file not found: {path}", config_path=str(path))

        try:
            content = path.read_text()

            if path.suffix in (".yaml", ".yml"):
                data = yaml.safe_load(content) or {}
            elif path.suffix == ".json":
                data = json.loads(content)
            else:
                raise ConfigError(
                    f"Unsupported config format: {path.suffix}",
                    config_path=str(path)
                )
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML: {e}", config_path=str(path))
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON: {e}", config_path=str(path))

        if not isinstance(data, dict):
            raise ConfigError("Config root must be a mapping", config_path=str(path))
        return data
