"""
Engine configuration persistence.

Stores settings like the save namespace and storage budget in a JSON file.
"""

import json
import logging
from pathlib import Path
from typing import TypedDict

from rich.logging import RichHandler

from .state.schema import STATE_VERSION


class EngineConfig(TypedDict, total=False):
    """Engine configuration."""
    namespace: str  # Prefix for every storage key ("rpg" -> "rpg_auto_save")
    state_version: str  # Version stamped on snapshots and saves
    storage_budget_bytes: int  # Total bytes the save system may use
    manual_slots: int  # Number of manual save slots
    history_size: int  # Valid snapshots kept for recovery
    auto_save_enabled: bool
    max_publish_depth: int  # Nested publish limit on the event bus
    default_effect_duration_ms: int  # Used when an active power's effects name no duration
    power_story_triggers: dict[str, str]  # power_id -> story event fired on first use
    saves_dir: str  # Directory for file-backed saves


DEFAULT_CONFIG: EngineConfig = {
    "namespace": "rpg",
    "state_version": STATE_VERSION,
    "storage_budget_bytes": 5 * 1024 * 1024,
    "manual_slots": 3,
    "history_size": 10,
    "auto_save_enabled": True,
    "max_publish_depth": 8,
    "default_effect_duration_ms": 1000,
    "power_story_triggers": {
        "telekinesis": "first_telekinesis_use",
        "enhanced_vision": "first_vision_use",
        "time_slow": "first_time_manipulation",
        "phase_walk": "first_phase_walk",
    },
    "saves_dir": "saves",
}


def default_config() -> EngineConfig:
    """Fresh copy of the defaults (nested dicts included)."""
    config = DEFAULT_CONFIG.copy()
    config["power_story_triggers"] = dict(DEFAULT_CONFIG["power_story_triggers"])
    return config


def get_config_path(config_dir: Path | str = ".") -> Path:
    """Get path to config file."""
    return Path(config_dir) / ".narrative_engine.json"


def load_config(config_dir: Path | str = ".") -> EngineConfig:
    """Load config from file, or return defaults if not found."""
    path = get_config_path(config_dir)

    if not path.exists():
        return default_config()

    try:
        with open(path, "r", encoding="utf-8") as f:
            saved = json.load(f)
        # Merge with defaults to handle missing keys
        config = default_config()
        if isinstance(saved, dict):
            config.update(saved)
        return config
    except (json.JSONDecodeError, IOError):
        return default_config()


def save_config(config: EngineConfig, config_dir: Path | str = ".") -> bool:
    """Save config to file. Returns True on success."""
    path = get_config_path(config_dir)

    # Ensure directory exists
    path.parent.mkdir(parents=True, exist_ok=True)

    try:
        with open(path, "w", encoding="utf-8") as f:
            json.dump(config, f, indent=2)
        return True
    except IOError:
        return False


def configure_logging(level: int = logging.INFO, use_rich: bool = True) -> None:
    """Console logging for hosts that do not configure their own."""
    if use_rich:
        logging.basicConfig(
            level=level,
            format="%(message)s",
            datefmt="[%X]",
            handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
        )
        return

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
