"""
Configuration settings for the HabitStacker planner and routine runtime
"""

import os
from dataclasses import dataclass


@dataclass
class PlannerConfig:
    """Buffer settings used when allocating the time budget (minutes)"""

    standard_buffer_minutes: int = 15
    minimum_buffer_minutes: int = 5

    @property
    def standard_buffer(self) -> float:
        return float(self.standard_buffer_minutes * 60)

    @property
    def minimum_buffer(self) -> float:
        return float(self.minimum_buffer_minutes * 60)


@dataclass
class RuntimeConfig:
    """Configuration for routine runtime behavior"""

    tick_interval: float = 1.0
    checklist_auto_complete_delay: float = 0.5
    default_delay_count: int = 3
    max_background_tasks: int = 1
    interruption_minutes: int = 3


# Runtime profiles
RUNTIME_PROFILES = {
    "standard": {
        "standard_buffer_minutes": 15,
        "minimum_buffer_minutes": 5,
        "default_delay_count": 3,
        "max_background_tasks": 1,
        "description": "Balanced buffer with a single parallel background task",
    },
    "relaxed": {
        "standard_buffer_minutes": 20,
        "minimum_buffer_minutes": 10,
        "default_delay_count": 2,
        "max_background_tasks": 2,
        "description": "Larger buffer, short delays and more background slots",
    },
    "focused": {
        "standard_buffer_minutes": 10,
        "minimum_buffer_minutes": 5,
        "default_delay_count": 3,
        "max_background_tasks": 0,
        "description": "Tight buffer, one task at a time",
    },
}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return int(value)


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return float(value)


def _profile(profile: str) -> dict:
    if profile not in RUNTIME_PROFILES:
        profile = "standard"
    return RUNTIME_PROFILES[profile]


def get_planner_config(profile: str = "standard") -> PlannerConfig:
    """Get planner configuration for a profile, with environment overrides"""
    config = _profile(profile)
    return PlannerConfig(
        standard_buffer_minutes=_env_int(
            "HABITSTACKER_STANDARD_BUFFER", config["standard_buffer_minutes"]
        ),
        minimum_buffer_minutes=_env_int(
            "HABITSTACKER_MINIMUM_BUFFER", config["minimum_buffer_minutes"]
        ),
    )


def get_runtime_config(profile: str = "standard") -> RuntimeConfig:
    """Get runtime configuration for a profile, with environment overrides"""
    config = _profile(profile)
    return RuntimeConfig(
        tick_interval=_env_float("HABITSTACKER_TICK_INTERVAL", 1.0),
        checklist_auto_complete_delay=_env_float(
            "HABITSTACKER_CHECKLIST_DELAY", 0.5
        ),
        default_delay_count=_env_int(
            "HABITSTACKER_DELAY_COUNT", config["default_delay_count"]
        ),
        max_background_tasks=_env_int(
            "HABITSTACKER_MAX_BACKGROUND", config["max_background_tasks"]
        ),
        interruption_minutes=_env_int("HABITSTACKER_INTERRUPTION_MINUTES", 3),
    )
