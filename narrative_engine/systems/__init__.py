"""
Narrative systems.

Each system owns one slice of runtime state and talks to the others only
through the shared event bus.
"""

from .conditions import evaluate, apply_effects, check_condition
from .scheduler import Clock, SystemClock, ManualClock, ScheduledTask, TaskScheduler
from .story import StoryGraph, parse_definitions
from .powers import PowerRegistry, ActivePower
from .inventory import Inventory
from .validation import StateValidator
from .recovery import StateRecoveryManager, create_minimal_snapshot
from .sync import SceneSynchronizer, SceneContext, SceneActor, SyncPhase

__all__ = [
    "evaluate",
    "apply_effects",
    "check_condition",
    # Time
    "Clock",
    "SystemClock",
    "ManualClock",
    "ScheduledTask",
    "TaskScheduler",
    # Story & powers
    "StoryGraph",
    "parse_definitions",
    "PowerRegistry",
    "ActivePower",
    "Inventory",
    # State integrity
    "StateValidator",
    "StateRecoveryManager",
    "create_minimal_snapshot",
    "SceneSynchronizer",
    "SceneContext",
    "SceneActor",
    "SyncPhase",
]
