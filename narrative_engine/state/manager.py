"""
Narrative engine lifecycle and command surface.

Builds every component in dependency order around one shared event bus
and clock, and exposes the commands a presentation layer may issue:
trigger, set flag, set checkpoint, unlock, activate, save, load, delete,
reset.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from ..config import EngineConfig, default_config
from ..systems.inventory import Inventory
from ..systems.powers import PowerRegistry
from ..systems.recovery import StateRecoveryManager
from ..systems.scheduler import Clock, SystemClock, TaskScheduler
from ..systems.story import StoryGraph
from ..systems.sync import SceneContext, SceneSynchronizer
from ..systems.validation import StateValidator
from .event_bus import EventBus, EventType, GameEvent
from .inspector import inspect
from .saves import AUTO_SAVE_KEY, SaveManager
from .schema import DEFAULT_CHECKPOINT, LoadResult, PowerDefinition, SaveDescriptor, StoryEvent, StoryProgress
from .snapshot import SnapshotComposer
from .store import JsonFileKeyValueStore, KeyValueStore

logger = logging.getLogger(__name__)

STORY_DATA_PATH = Path(__file__).parent.parent / "data" / "story.json"


class NarrativeEngine:
    """
    Owns and wires the narrative subsystems.

    Storage is delegated to a KeyValueStore implementation:
    - JsonFileKeyValueStore for production (file-based)
    - MemoryKeyValueStore for testing (in-memory)

    Construction order is explicit; no component waits for another to
    appear:
        clock -> bus -> scheduler -> story -> powers -> inventory
        -> validator -> recovery -> composer -> synchronizer -> saves
    """

    def __init__(
        self,
        store: KeyValueStore | Path | str | None = None,
        config: EngineConfig | None = None,
        clock: Clock | None = None,
        power_definitions: list[PowerDefinition] | None = None,
    ):
        """
        Args:
            store: KeyValueStore instance, or path for JsonFileKeyValueStore
                (defaults to the configured saves_dir)
            config: Overrides merged over DEFAULT_CONFIG
            clock: Time source (SystemClock if omitted)
            power_definitions: Replaces the built-in powers
        """
        self.config = default_config()
        if config:
            self.config.update(config)

        if store is None or isinstance(store, (Path, str)):
            self.store: KeyValueStore = JsonFileKeyValueStore(store or self.config["saves_dir"])
        else:
            self.store = store

        version = self.config["state_version"]

        self.clock = clock or SystemClock()
        self.bus = EventBus(max_depth=self.config["max_publish_depth"])
        self.scheduler = TaskScheduler(self.clock)

        self.story = StoryGraph(self.bus)
        self.powers = PowerRegistry(
            self.bus,
            self.scheduler,
            definitions=power_definitions,
            default_effect_duration_ms=self.config["default_effect_duration_ms"],
        )
        self.inventory = Inventory(self.bus)

        self.validator = StateValidator(version)
        self.recovery = StateRecoveryManager(self.validator, self.config["history_size"])

        self.composer = SnapshotComposer(
            self.clock,
            story=self.story,
            powers=self.powers,
            inventory=self.inventory,
            version=version,
            actor_source=lambda: self.synchronizer.current_actor(),
            scene_source=lambda: self.synchronizer.current_scene,
        )
        self.synchronizer = SceneSynchronizer(
            self.bus,
            self.recovery,
            self.composer.compose,
            on_recovered=self.apply_snapshot,
            clock=self.clock,
        )
        self.saves = SaveManager(
            self.store,
            self.bus,
            self.composer,
            self.recovery,
            namespace=self.config["namespace"],
            manual_slots=self.config["manual_slots"],
            storage_budget_bytes=self.config["storage_budget_bytes"],
            auto_save_enabled=self.config["auto_save_enabled"],
            version=version,
        )

        self.bus.subscribe(EventType.POWER_ACTIVATED, self._on_power_activated)
        logger.info("Narrative engine initialized")

    # -------------------------------------------------------------------------
    # Startup
    # -------------------------------------------------------------------------

    def start(self, story_path: Path | str | None = None) -> LoadResult:
        """Load story definitions and open the story on success."""
        result = self.story.load_definitions_file(story_path or STORY_DATA_PATH)
        self._after_load(result)
        return result

    async def start_async(self, story_path: Path | str | None = None) -> LoadResult:
        """start() without blocking the host's event loop on file I/O."""
        result = await self.story.load_definitions_async(story_path or STORY_DATA_PATH)
        self._after_load(result)
        return result

    def load_story(self, data: Any) -> LoadResult:
        """Install already-parsed story definitions."""
        result = self.story.load_definitions(data)
        self._after_load(result)
        return result

    def _after_load(self, result: LoadResult) -> None:
        if result.ok:
            logger.info("Story data loaded successfully")
            self.story.trigger_event(DEFAULT_CHECKPOINT)
        else:
            logger.warning(f"Failed to load story data, using fallback: {result.error}")

    def update(self, now_ms: int | None = None) -> int:
        """Run due scheduled work (timed power expiry). Call once per frame."""
        return self.scheduler.run_pending(now_ms)

    # -------------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------------

    def trigger_event(self, event_id: str) -> StoryEvent | None:
        return self.story.trigger_event(event_id)

    def set_flag(self, key: str, value: Any) -> None:
        self.story.set_flag(key, value)

    def set_checkpoint(self, checkpoint_id: str) -> bool:
        return self.story.set_checkpoint(checkpoint_id)

    def unlock_power(self, power_id: str) -> bool:
        """
        Unlock a power through the story, as an effect would.

        Returns True only if this call unlocked a power the registry knows.
        """
        recorded = self.story.unlock_power(power_id, source_event="command")
        return recorded and self.powers.is_unlocked(power_id)

    def activate_power(self, power_id: str, context: dict | None = None) -> bool:
        return self.powers.activate(power_id, context)

    def deactivate_power(self, power_id: str) -> bool:
        return self.powers.deactivate(power_id)

    def manual_save(self, slot: int) -> bool:
        return self.saves.manual_save(slot)

    def load_game(self, key: str = AUTO_SAVE_KEY) -> bool:
        """
        Load a save into the live subsystems.

        An invalid stored snapshot is swapped for the recovery manager's
        best candidate before it is applied.
        """
        snapshot = self.saves.load(key)
        if snapshot is None:
            return False

        result = self.validator.validate(snapshot)
        if not result.is_valid:
            logger.error(f"Cannot load invalid game state: {result.errors}")
            snapshot = self.recovery.recover(snapshot, timestamp=self.clock.now_ms())
            if snapshot is None:
                logger.error("State recovery failed during load")
                return False
            logger.info("Using recovered state for loading")

        self.apply_snapshot(snapshot)
        logger.info(f"Game loaded: {key}")
        return True

    def delete_save(self, key: str) -> bool:
        return self.saves.delete(key)

    def list_saves(self) -> list[SaveDescriptor]:
        return self.saves.list_saves()

    def reset_all(self) -> None:
        """Return every subsystem to its initial state. Saves are kept."""
        self.scheduler.cancel_all()
        self.story.reset()
        self.powers.reset()
        self.inventory.reset()
        self.recovery.clear()
        self.synchronizer.scene_states.clear()
        logger.info("Engine reset to initial state")

    # -------------------------------------------------------------------------
    # Scenes & snapshots
    # -------------------------------------------------------------------------

    def attach_scene(self, ctx: SceneContext) -> None:
        self.synchronizer.attach(ctx)

    def transition(self, from_ctx: SceneContext, to_ctx: SceneContext) -> bool:
        logger.info(f"Scene transition: {from_ctx.key} -> {to_ctx.key}")
        return self.synchronizer.synchronize(from_ctx, to_ctx)

    def compose_snapshot(self) -> dict:
        return self.composer.compose()

    def apply_snapshot(self, snapshot: dict) -> None:
        """Push a snapshot into the subsystems and the actor's scene."""
        self.composer.apply(snapshot)
        self.synchronizer.apply_to_current(snapshot)

    def store_valid_state(self) -> bool:
        """Record the live state as last-known-good if it validates."""
        return self.recovery.validate_live(self.compose_snapshot()).is_valid

    def get_progress(self) -> StoryProgress:
        return self.story.get_progress()

    # -------------------------------------------------------------------------
    # Integration
    # -------------------------------------------------------------------------

    def _on_power_activated(self, event: GameEvent) -> None:
        power_id = event.data.get("power_id")
        story_event = self.config["power_story_triggers"].get(power_id)
        if not story_event:
            return
        if self.story.get_event(story_event) is None:
            logger.debug(f"No story event defined for power trigger: {story_event}")
            return
        self.story.trigger_event(story_event)

    def get_debug_info(self) -> dict:
        current = self.compose_snapshot()
        return {
            "state_history": len(self.recovery.history),
            "scene_states": len(self.synchronizer.scene_states),
            "validators": self.validator.sections,
            "current_state": current,
            "inspection": inspect(current, self.validator, now_ms=self.clock.now_ms()),
            "saves": self.saves.status(),
            "pending_tasks": self.scheduler.pending_count(),
        }

    def teardown(self) -> None:
        """Cancel timers and detach every component from the bus."""
        self.powers.teardown()
        self.saves.teardown()
        self.bus.unsubscribe(EventType.POWER_ACTIVATED, self._on_power_activated)
        self.scheduler.cancel_all()
        logger.info("Narrative engine shut down")
