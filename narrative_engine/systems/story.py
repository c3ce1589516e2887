"""
Story graph engine.

Owns the catalog of story events and checkpoints, evaluates whether an
event can trigger, applies its effects and announces the results on the
event bus.

Failure policy: lookups return None/False rather than raising. Only a
structurally broken definition file produces an explicit failure result,
and even then a built-in fallback story is installed so play continues.
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from ..state.errors import DefinitionLoadError
from ..state.event_bus import EventBus, EventType
from ..state.schema import (
    DEFAULT_CHECKPOINT,
    CheckpointDefinition,
    LoadResult,
    StoryDefinitions,
    StoryEvent,
    StoryProgress,
    fallback_definitions,
)
from .conditions import apply_effects, evaluate

logger = logging.getLogger(__name__)

DEFAULT_FLAGS: dict[str, Any] = {
    "game_started": False,
    "first_dialogue_seen": False,
    "tutorial_completed": False,
}

# Event kind -> type-specific topic
KIND_TOPICS = {
    "dialogue": EventType.DIALOGUE_TRIGGERED,
    "cutscene": EventType.CUTSCENE_TRIGGERED,
    "systemic": EventType.SYSTEMIC_TRIGGERED,
}


def parse_definitions(data: Any) -> StoryDefinitions:
    """
    Validate raw story data.

    Raises:
        DefinitionLoadError: If the shape or any event is malformed
    """
    if not isinstance(data, dict):
        raise DefinitionLoadError("Story data must be a mapping")
    if not isinstance(data.get("events"), list):
        raise DefinitionLoadError("Story data 'events' must be a list")
    if not isinstance(data.get("checkpoints"), dict):
        raise DefinitionLoadError("Story data 'checkpoints' must be a mapping")

    try:
        return StoryDefinitions.model_validate(data)
    except ValidationError as e:
        raise DefinitionLoadError(f"Invalid story data: {e.error_count()} error(s)") from e


def read_definitions_file(path: Path | str) -> Any:
    """
    Read a story file (.json, .yaml or .yml).

    Raises:
        DefinitionLoadError: If the file cannot be read or parsed
    """
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise DefinitionLoadError(f"Failed to read story data: {path}") from e

    try:
        if path.suffix.lower() in (".yaml", ".yml"):
            return yaml.safe_load(text)
        return json.loads(text)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise DefinitionLoadError(f"Failed to parse story data: {path}") from e


class StoryGraph:
    """
    Narrative progression: events, flags, checkpoints and story-side
    power unlocks.

    Runtime state is owned here. The Capability Registry keeps its own
    copy of unlocked powers and follows along via story.powerUnlocked.
    """

    def __init__(self, bus: EventBus):
        self.bus = bus
        self.definitions: StoryDefinitions | None = None
        self.current_checkpoint: str = DEFAULT_CHECKPOINT
        self.completed_events: set[str] = set()
        self.flags: dict[str, Any] = {}
        self.unlocked_powers: set[str] = set()

        self._seed_default_flags()

    def _seed_default_flags(self) -> None:
        self.flags.update(DEFAULT_FLAGS)

    # -------------------------------------------------------------------------
    # Definitions
    # -------------------------------------------------------------------------

    def load_definitions(self, data: Any) -> LoadResult:
        """
        Install story definitions.

        On failure the built-in fallback story is installed and the result
        reports ok=False so the caller can surface the degradation.
        """
        try:
            self.definitions = parse_definitions(data)
        except DefinitionLoadError as e:
            logger.error(f"Error loading story data: {e}")
            self._install_fallback()
            return LoadResult(ok=False, error=str(e), fallback_used=True)

        logger.info(
            f"Story data loaded: {len(self.definitions.events)} events, "
            f"{len(self.definitions.checkpoints)} checkpoints"
        )
        return LoadResult(ok=True)

    def load_definitions_file(self, path: Path | str) -> LoadResult:
        """Load definitions from a JSON or YAML file."""
        try:
            data = read_definitions_file(path)
        except DefinitionLoadError as e:
            logger.error(f"Error loading story data: {e}")
            self._install_fallback()
            return LoadResult(ok=False, error=str(e), fallback_used=True)
        return self.load_definitions(data)

    async def load_definitions_async(self, path: Path | str) -> LoadResult:
        """Load definitions without blocking the caller's event loop."""
        try:
            data = await asyncio.to_thread(read_definitions_file, path)
        except DefinitionLoadError as e:
            logger.error(f"Error loading story data: {e}")
            self._install_fallback()
            return LoadResult(ok=False, error=str(e), fallback_used=True)
        return self.load_definitions(data)

    def _install_fallback(self) -> None:
        self.definitions = fallback_definitions()
        logger.info("Fallback story data loaded")

    def get_event(self, event_id: str) -> StoryEvent | None:
        if self.definitions is None:
            return None
        return self.definitions.get_event(event_id)

    # -------------------------------------------------------------------------
    # Events
    # -------------------------------------------------------------------------

    def can_trigger(self, event_id: str) -> bool:
        """Whether the event exists and its conditions currently hold."""
        event = self.get_event(event_id)
        return event is not None and evaluate(event.triggers, self)

    def trigger_event(self, event_id: str) -> StoryEvent | None:
        """
        Trigger a story event by ID.

        Returns:
            The event, or None if definitions are missing, the id is
            unknown, or its conditions are not met
        """
        if self.definitions is None:
            logger.warning("No story data available")
            return None

        event = self.definitions.get_event(event_id)
        if event is None:
            logger.warning(f"Story event not found: {event_id}")
            return None

        if not evaluate(event.triggers, self):
            logger.info(f"Story event conditions not met: {event_id}")
            return None

        # Re-triggering is allowed; the completed set absorbs duplicates
        self.completed_events.add(event_id)

        apply_effects(event.effects, self, source_event=event_id)

        self.bus.publish(EventType.EVENT_TRIGGERED, event_id=event_id, event=event)
        kind_topic = KIND_TOPICS.get(event.kind, f"story.{event.kind}Triggered")
        self.bus.publish(kind_topic, event_id=event_id, event=event)

        logger.info(f"Story event triggered: {event_id}")
        return event

    def is_event_completed(self, event_id: str) -> bool:
        return event_id in self.completed_events

    # -------------------------------------------------------------------------
    # Flags
    # -------------------------------------------------------------------------

    def set_flag(self, key: str, value: Any) -> None:
        """Set a story flag and announce the change."""
        old_value = self.flags.get(key)
        self.flags[key] = value
        logger.debug(f"Story flag set: {key} = {value!r} (was: {old_value!r})")
        self.bus.publish(EventType.FLAG_CHANGED, flag=key, value=value, old_value=old_value)

    def get_flag(self, key: str) -> Any:
        """Flag value, or None if the flag was never set."""
        return self.flags.get(key)

    def lookup_flag(self, key: str, default: Any = None) -> Any:
        return self.flags.get(key, default)

    def check_flag(self, key: str, value: Any) -> bool:
        return key in self.flags and self.flags[key] == value

    # -------------------------------------------------------------------------
    # Checkpoints
    # -------------------------------------------------------------------------

    def set_checkpoint(self, checkpoint_id: str) -> bool:
        """
        Move the current checkpoint pointer.

        Unknown ids are ignored with a warning. Checkpoints carry no
        ordering, so moving "backward" is allowed.
        """
        if self.definitions is None or checkpoint_id not in self.definitions.checkpoints:
            logger.warning(f"Invalid checkpoint: {checkpoint_id}")
            return False

        self.current_checkpoint = checkpoint_id
        logger.info(f"Checkpoint set: {checkpoint_id}")
        self.bus.publish(EventType.CHECKPOINT_REACHED, checkpoint_id=checkpoint_id)
        return True

    def has_reached_checkpoint(self, checkpoint_id: str) -> bool:
        if self.definitions is None or not self.definitions.checkpoints:
            return False
        return (
            self.current_checkpoint == checkpoint_id
            or f"checkpoint_{checkpoint_id}" in self.completed_events
        )

    def get_current_checkpoint(self) -> CheckpointDefinition | None:
        if self.definitions is None:
            return None
        return self.definitions.checkpoints.get(self.current_checkpoint)

    # -------------------------------------------------------------------------
    # Powers
    # -------------------------------------------------------------------------

    def unlock_power(self, power_id: str, source_event: str | None = None) -> bool:
        """
        Record a story-driven power unlock.

        The id is recorded whether or not the Capability Registry knows it.
        Returns False if it was already unlocked.
        """
        if power_id in self.unlocked_powers:
            logger.debug(f"Power already unlocked: {power_id}")
            return False

        self.unlocked_powers.add(power_id)
        logger.info(f"Story unlocked power: {power_id}")
        self.bus.publish(
            EventType.STORY_POWER_UNLOCKED,
            power_id=power_id,
            source_event=source_event,
        )
        return True

    def is_power_unlocked(self, power_id: str) -> bool:
        return power_id in self.unlocked_powers

    def get_unlocked_powers(self) -> list[str]:
        return sorted(self.unlocked_powers)

    # -------------------------------------------------------------------------
    # Progress & persistence
    # -------------------------------------------------------------------------

    def get_progress(self) -> StoryProgress:
        total = len(self.definitions.events) if self.definitions else 0
        # Restored ids outside the catalog (checkpoint markers, retired events) do not count
        completed = sum(1 for event_id in self.completed_events if self.get_event(event_id) is not None)
        return StoryProgress(
            current_checkpoint=self.current_checkpoint,
            completed_count=completed,
            total_count=total,
            percentage=(completed / total) * 100 if total > 0 else 0.0,
            unlocked_power_count=len(self.unlocked_powers),
        )

    def snapshot(self) -> dict:
        """Serializable story state (matches StorySection)."""
        return {
            "checkpoint": self.current_checkpoint,
            "completed_event_ids": sorted(self.completed_events),
            "flags": dict(self.flags),
            "unlocked_power_ids": sorted(self.unlocked_powers),
        }

    def restore(self, view: dict | None) -> None:
        """
        Load story state from a snapshot section.

        Partial or absent views fall back to defaults field by field.
        """
        view = view if isinstance(view, dict) else {}

        checkpoint = view.get("checkpoint")
        self.current_checkpoint = checkpoint if isinstance(checkpoint, str) and checkpoint else DEFAULT_CHECKPOINT

        self.completed_events = set(_string_items(view.get("completed_event_ids")))

        flags = view.get("flags")
        self.flags = dict(flags) if isinstance(flags, dict) else dict(DEFAULT_FLAGS)

        self.unlocked_powers = set(_string_items(view.get("unlocked_power_ids")))
        logger.info("Story state loaded")

    def reset(self) -> None:
        """Reset story to initial state."""
        self.current_checkpoint = DEFAULT_CHECKPOINT
        self.completed_events.clear()
        self.flags.clear()
        self.unlocked_powers.clear()
        self._seed_default_flags()
        logger.info("Story reset to initial state")


def _string_items(value: Any) -> list[str]:
    if not isinstance(value, (list, tuple, set, frozenset)):
        return []
    return [item for item in value if isinstance(item, str)]
