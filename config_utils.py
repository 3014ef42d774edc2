"""
Configuration utilities for the retirement simulation engine.
Named default assumptions and engine settings, constructed explicitly by callers.
"""

import json
import os
from dataclasses import asdict, dataclass, fields
from typing import Any, Dict, Optional

from guardrails import GuardrailsConfig

DEFAULT_CONFIG_PATH = 'engine_config.json'


@dataclass(frozen=True)
class MonteCarloAssumptions:
    """
    Conservative planning assumptions.

    5% real return approximates a balanced 60/40 portfolio after inflation,
    12% volatility covers diversified market swings, and planning to age 95
    covers the roughly one in four 65-year-olds who live past 90.
    """
    real_return: float = 0.05
    volatility: float = 0.12
    plan_to_age: int = 95
    retirement_age: int = 65
    target_success_rate: float = 0.90
    iterations: int = 1000

    @property
    def years_in_retirement(self) -> int:
        return self.plan_to_age - self.retirement_age


@dataclass
class EngineConfig:
    """Runtime settings for Monte Carlo runs"""
    iterations: int = 1000
    sample_count: int = 10
    parallel: bool = False
    executor: str = "process"  # "process" or "thread"
    max_workers: Optional[int] = None
    random_seed: Optional[int] = None
    debug: bool = False


def default_assumptions() -> MonteCarloAssumptions:
    """Get default Monte Carlo assumptions"""
    return MonteCarloAssumptions()


def default_guardrails() -> GuardrailsConfig:
    """20% thresholds either side of the starting balance, 10% adjustments"""
    return GuardrailsConfig(
        enabled=True,
        upper_threshold=1.2,
        lower_threshold=0.8,
        increase_percent=0.1,
        decrease_percent=0.1,
    )


def engine_config_from_dict(data: Dict[str, Any]) -> EngineConfig:
    """Build an EngineConfig from a dict, ignoring unknown keys"""
    known = {f.name for f in fields(EngineConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        print(f"DEBUG [engine_config_from_dict]: Ignoring unknown keys: {', '.join(unknown)}")
    return EngineConfig(**{k: v for k, v in data.items() if k in known})


def load_engine_config(path: str = DEFAULT_CONFIG_PATH) -> EngineConfig:
    """Load engine configuration from JSON, falling back to defaults"""
    if not os.path.exists(path):
        return EngineConfig()
    try:
        with open(path, 'r') as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        print(f"ERROR [load_engine_config]: Could not load {path}: {e}")
        return EngineConfig()
    if not isinstance(data, dict):
        print(f"ERROR [load_engine_config]: Expected a JSON object in {path}, got {type(data).__name__}")
        return EngineConfig()
    config = engine_config_from_dict(data)
    if config.debug:
        print(f"DEBUG [load_engine_config]: Loaded {path}: {asdict(config)}")
    return config


def save_engine_config(config: EngineConfig, path: str = DEFAULT_CONFIG_PATH) -> None:
    """Save engine configuration to JSON"""
    with open(path, 'w') as f:
        json.dump(asdict(config), f, indent=2)
