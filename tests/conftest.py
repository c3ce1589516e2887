"""
Pytest fixtures for narrative engine tests.

Provides in-memory stores, a manual clock and pre-wired components for
isolated testing.
"""

import pytest
from pathlib import Path

# Add the repo root to path for imports
import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from narrative_engine.state import (
    EventBus,
    MemoryKeyValueStore,
    NarrativeEngine,
    PowerDefinition,
    SnapshotComposer,
    SaveManager,
)
from narrative_engine.systems import (
    Inventory,
    ManualClock,
    PowerRegistry,
    StateRecoveryManager,
    StateValidator,
    StoryGraph,
    TaskScheduler,
)


# End-to-end story: "a" unlocks power "p", "b" requires it
SCENARIO_STORY = {
    "events": [
        {"id": "a", "triggers": [], "effects": [{"unlockPower": "p"}]},
        {"id": "b", "triggers": [{"type": "powerUnlocked", "powerId": "p"}], "effects": []},
    ],
    "checkpoints": {},
}

SAMPLE_STORY = {
    "events": [
        {
            "id": "game_start",
            "type": "dialogue",
            "triggers": [],
            "effects": [{"type": "setFlag", "flag": "game_started", "value": True}],
            "content": {"text": "Welcome"},
        },
        {
            "id": "meet_mentor",
            "type": "dialogue",
            "triggers": [{"type": "flag", "flag": "game_started", "value": True}],
            "effects": [
                {"type": "unlockPower", "powerId": "telekinesis"},
                {"type": "setCheckpoint", "checkpointId": "mentor_met"},
            ],
        },
        {
            "id": "first_telekinesis_use",
            "type": "systemic",
            "triggers": [{"type": "powerUnlocked", "powerId": "telekinesis"}],
            "effects": [{"type": "setFlag", "flag": "tutorial_completed", "value": True}],
        },
        {
            "id": "forest_gate",
            "type": "cutscene",
            "triggers": [{"type": "checkpointReached", "checkpointId": "mentor_met"}],
            "effects": [{"type": "setCheckpoint", "checkpointId": "forest_gate"}],
        },
    ],
    "checkpoints": {
        "game_start": {"id": "game_start", "name": "Beginning"},
        "mentor_met": {"id": "mentor_met", "name": "The Mentor"},
        "forest_gate": {"name": "Forest Gate"},
    },
}


@pytest.fixture
def bus():
    """Fresh event bus."""
    return EventBus()


@pytest.fixture
def clock():
    """Clock that only moves when advanced."""
    return ManualClock()


@pytest.fixture
def scheduler(clock):
    """Task scheduler driven by the manual clock."""
    return TaskScheduler(clock)


@pytest.fixture
def story(bus):
    """Story graph with the sample story loaded."""
    graph = StoryGraph(bus)
    graph.load_definitions(SAMPLE_STORY)
    return graph


@pytest.fixture
def scenario_powers():
    """A single active power "p" with a 500ms effect and 1s cooldown."""
    return [
        PowerDefinition(
            id="p",
            name="Test Power",
            type="active",
            cooldown_ms=1000,
            effects=[{"type": "push", "duration": 500}],
        ),
    ]


@pytest.fixture
def powers(bus, scheduler):
    """Power registry with the built-in powers."""
    return PowerRegistry(bus, scheduler)


@pytest.fixture
def inventory(bus):
    """Empty inventory."""
    return Inventory(bus)


@pytest.fixture
def validator():
    """Validator with the default section checks."""
    return StateValidator()


@pytest.fixture
def recovery(validator):
    """Recovery manager with a small history."""
    return StateRecoveryManager(validator, history_size=3)


@pytest.fixture
def memory_backend():
    """In-memory key-value store for testing."""
    return MemoryKeyValueStore()


@pytest.fixture
def composer(clock, story, powers, inventory):
    """Snapshot composer over the story, power and inventory fixtures."""
    return SnapshotComposer(clock, story=story, powers=powers, inventory=inventory)


@pytest.fixture
def saves(memory_backend, bus, composer, recovery):
    """Save manager over the in-memory backend."""
    return SaveManager(memory_backend, bus, composer, recovery)


@pytest.fixture
def engine(memory_backend, clock):
    """Engine with in-memory storage and the sample story loaded."""
    engine = NarrativeEngine(memory_backend, clock=clock)
    engine.load_story(SAMPLE_STORY)
    return engine


@pytest.fixture
def scenario_engine(memory_backend, clock, scenario_powers):
    """Engine with the a/b/p scenario loaded."""
    engine = NarrativeEngine(memory_backend, clock=clock, power_definitions=scenario_powers)
    engine.load_story(SCENARIO_STORY)
    return engine
