# stl_fingerprint/config.py
from dataclasses import dataclass, fields
from typing import Any, Dict, Optional

import yaml

from .errors import ConfigError


@dataclass
class EngineConfig:
    arch: str = "x86"
    acceptance_threshold: float = 0.5
    ambiguity_margin: float = 0.05
    required_weight: float = 0.8
    optional_weight: float = 0.2
    max_partial_candidates: int = 3
    timeout: Optional[float] = None
    workers: Optional[int] = None
    log_level: str = "WARNING"

    def validate(self) -> "EngineConfig":
        if not 0.0 < self.acceptance_threshold <= 1.0:
            raise ConfigError(f"acceptance_threshold must be in (0, 1], got {self.acceptance_threshold}")
        if not 0.0 <= self.ambiguity_margin < 1.0:
            raise ConfigError(f"ambiguity_margin must be in [0, 1), got {self.ambiguity_margin}")
        if self.required_weight <= 0 or self.optional_weight < 0:
            raise ConfigError("required_weight must be positive and optional_weight non-negative")
        if self.optional_weight >= self.required_weight:
            raise ConfigError("required features must dominate: optional_weight < required_weight")
        if self.max_partial_candidates < 0:
            raise ConfigError("max_partial_candidates must be non-negative")
        if self.timeout is not None and self.timeout < 0:
            raise ConfigError("timeout must be non-negative")
        if self.workers is not None and self.workers <= 0:
            raise ConfigError("workers must be positive")
        return self


def config_from_mapping(raw: Dict[str, Any]) -> EngineConfig:
    engine_raw = raw.get("engine", {}) if raw else {}
    if not isinstance(engine_raw, dict):
        raise ConfigError("'engine' section must be a mapping")
    known = {f.name for f in fields(EngineConfig)}
    unknown = sorted(set(engine_raw) - known)
    if unknown:
        raise ConfigError(f"unknown engine options: {', '.join(unknown)}")
    try:
        return EngineConfig(**engine_raw).validate()
    except TypeError as exc:
        raise ConfigError(str(exc)) from exc


def load_config(path: str) -> EngineConfig:
    try:
        with open(path) as f:
            cfg_raw = yaml.safe_load(f)
    except OSError as exc:
        raise ConfigError(f"cannot read config {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"config {path} is not valid YAML: {exc}") from exc
    if cfg_raw is not None and not isinstance(cfg_raw, dict):
        raise ConfigError(f"config {path} must be a mapping")
    return config_from_mapping(cfg_raw or {})
