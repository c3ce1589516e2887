"""State management for the narrative engine."""

from .event_bus import (
    EventBus,
    EventType,
    GameEvent,
    topic_name,
)
from .schema import (
    STATE_VERSION,
    DEFAULT_CHECKPOINT,
    EventKind,
    PowerType,
    SaveKind,
    StoryEvent,
    StoryDefinitions,
    CheckpointDefinition,
    PowerDefinition,
    PowerEffect,
    InventoryItem,
    AggregateSnapshot,
    SaveRecord,
    SaveMetadata,
    SaveDescriptor,
    LoadResult,
    ValidationResult,
    StoryProgress,
)
from .errors import (
    NarrativeEngineError,
    DefinitionLoadError,
    StateValidationError,
    PersistenceError,
    QuotaExceededError,
    CorruptionError,
)
from .store import KeyValueStore, JsonFileKeyValueStore, MemoryKeyValueStore
from .snapshot import SnapshotComposer
from .saves import SaveManager
from .inspector import inspect, compare, inspection_table, differences_table
from .manager import NarrativeEngine

__all__ = [
    # Event bus
    "EventBus",
    "EventType",
    "GameEvent",
    "topic_name",
    # Schema
    "STATE_VERSION",
    "DEFAULT_CHECKPOINT",
    "EventKind",
    "PowerType",
    "SaveKind",
    "StoryEvent",
    "StoryDefinitions",
    "CheckpointDefinition",
    "PowerDefinition",
    "PowerEffect",
    "InventoryItem",
    "AggregateSnapshot",
    "SaveRecord",
    "SaveMetadata",
    "SaveDescriptor",
    "LoadResult",
    "ValidationResult",
    "StoryProgress",
    # Errors
    "NarrativeEngineError",
    "DefinitionLoadError",
    "StateValidationError",
    "PersistenceError",
    "QuotaExceededError",
    "CorruptionError",
    # Store
    "KeyValueStore",
    "JsonFileKeyValueStore",
    "MemoryKeyValueStore",
    # Snapshots & saves
    "SnapshotComposer",
    "SaveManager",
    "inspect",
    "compare",
    "inspection_table",
    "differences_table",
    # Manager
    "NarrativeEngine",
]
