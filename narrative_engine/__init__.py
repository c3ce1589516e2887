"""Narrative state engine: story graph, powers, state integrity and saves."""

# state must load before config (config reads the schema version)
from .state import EventBus, EventType, GameEvent, NarrativeEngine
from .config import EngineConfig, DEFAULT_CONFIG, load_config, save_config, configure_logging

__version__ = "0.1.0"

__all__ = [
    "NarrativeEngine",
    "EventBus",
    "EventType",
    "GameEvent",
    "EngineConfig",
    "DEFAULT_CONFIG",
    "load_config",
    "save_config",
    "configure_logging",
]
