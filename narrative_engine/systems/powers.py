"""
Capability registry.

Tracks which powers are unlocked, active or cooling down. Unlocks arrive
from the story graph over the event bus; activations arrive as commands
from the presentation layer.

Timed powers deactivate through a ScheduledTask. Deactivating early
cancels the task, and a task that fires for a power that is no longer
the one it was scheduled for does nothing.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

from pydantic import ValidationError

from ..state.errors import DefinitionLoadError
from ..state.event_bus import EventBus, EventType, GameEvent
from ..state.schema import LoadResult, PowerDefinition, PowerEffect, PowerType
from .scheduler import ScheduledTask, TaskScheduler

logger = logging.getLogger(__name__)

POWERS_DATA_PATH = Path(__file__).parent.parent / "data" / "powers.json"

DEFAULT_EFFECT_DURATION_MS = 1000
INDEFINITE = -1

# (effect, power, context) -> None
EffectHook = Callable[[PowerEffect, PowerDefinition, dict], None]


def parse_power_definitions(data: Any) -> list[PowerDefinition]:
    """
    Validate raw capability definitions.

    Raises:
        DefinitionLoadError: If data is not a list of valid definitions
    """
    if not isinstance(data, list):
        raise DefinitionLoadError("Power definitions must be a list")
    try:
        return [PowerDefinition.model_validate(item) for item in data]
    except ValidationError as e:
        raise DefinitionLoadError(f"Invalid power definition: {e.error_count()} error(s)") from e


def load_builtin_powers() -> list[PowerDefinition]:
    """The powers shipped with the engine."""
    with open(POWERS_DATA_PATH, "r", encoding="utf-8") as f:
        return parse_power_definitions(json.load(f))


@dataclass
class ActivePower:
    """A power currently in effect."""
    power: PowerDefinition
    context: dict = field(default_factory=dict)
    started_at: int = 0
    duration_ms: int = INDEFINITE
    task: ScheduledTask | None = None


class PowerRegistry:
    """
    Unlock, activation and cooldown bookkeeping for powers.

    The active set is runtime-only: restore() never brings a power back
    mid-activation.
    """

    def __init__(
        self,
        bus: EventBus,
        scheduler: TaskScheduler,
        definitions: list[PowerDefinition] | None = None,
        default_effect_duration_ms: int = DEFAULT_EFFECT_DURATION_MS,
    ):
        self.bus = bus
        self.scheduler = scheduler
        self.clock = scheduler.clock
        self.default_effect_duration_ms = default_effect_duration_ms

        self.powers: dict[str, PowerDefinition] = {}
        self.unlocked: set[str] = set()
        self.active: dict[str, ActivePower] = {}
        self.cooldowns: dict[str, int] = {}  # power_id -> expiry (epoch ms)

        self._apply_hooks: dict[str, EffectHook] = {}
        self._remove_hooks: dict[str, EffectHook] = {}

        self._install(definitions if definitions is not None else load_builtin_powers())

        self.bus.subscribe(EventType.STORY_POWER_UNLOCKED, self._on_story_unlock)

    def _install(self, definitions: list[PowerDefinition]) -> None:
        self.powers = {power.id: power for power in definitions}

    def load_definitions(self, data: Any) -> LoadResult:
        """Replace definitions. On failure the current set is kept."""
        try:
            definitions = parse_power_definitions(data)
        except DefinitionLoadError as e:
            logger.error(f"Error loading power definitions: {e}")
            return LoadResult(ok=False, error=str(e), fallback_used=True)

        self._install(definitions)
        logger.info(f"Power definitions loaded: {len(definitions)}")
        return LoadResult(ok=True)

    def _on_story_unlock(self, event: GameEvent) -> None:
        power_id = event.data.get("power_id")
        if power_id:
            self.unlock(power_id, cause=event.data.get("source_event") or "story_progression")

    # -------------------------------------------------------------------------
    # Lookup
    # -------------------------------------------------------------------------

    def get_power(self, power_id: str) -> PowerDefinition | None:
        return self.powers.get(power_id)

    def list_powers(self) -> list[PowerDefinition]:
        return list(self.powers.values())

    def list_unlocked(self) -> list[PowerDefinition]:
        return [self.powers[pid] for pid in sorted(self.unlocked) if pid in self.powers]

    def is_unlocked(self, power_id: str) -> bool:
        return power_id in self.unlocked

    def is_active(self, power_id: str) -> bool:
        """Whether the power is in effect. Unlocked passives always are."""
        if power_id in self.active:
            return True
        power = self.powers.get(power_id)
        return power is not None and power.type == PowerType.PASSIVE and power_id in self.unlocked

    def remaining_cooldown(self, power_id: str) -> int:
        """Milliseconds until the power is off cooldown (0 if ready)."""
        expiry = self.cooldowns.get(power_id)
        if expiry is None:
            return 0
        return max(0, expiry - self.clock.now_ms())

    # -------------------------------------------------------------------------
    # Unlock & activation
    # -------------------------------------------------------------------------

    def unlock(self, power_id: str, cause: str | None = None) -> bool:
        """
        Unlock a power.

        Returns False for unknown ids (ignored quietly) and for powers that
        are already unlocked.
        """
        if power_id not in self.powers:
            logger.debug(f"Ignoring unlock of unknown power: {power_id}")
            return False

        if power_id in self.unlocked:
            logger.debug(f"Power already unlocked: {power_id}")
            return False

        self.unlocked.add(power_id)
        logger.info(f"Power unlocked: {power_id} (triggered by: {cause or 'unknown'})")
        self.bus.publish(EventType.POWER_UNLOCKED, power_id=power_id, cause=cause)
        return True

    def check_available(self, power_id: str) -> bool:
        """Unlocked and off cooldown. Elapsed cooldowns are cleared here."""
        if power_id not in self.unlocked:
            return False

        expiry = self.cooldowns.get(power_id)
        if expiry is not None:
            if self.clock.now_ms() < expiry:
                return False
            del self.cooldowns[power_id]

        return True

    def activate(self, power_id: str, context: dict | None = None) -> bool:
        """
        Activate a power.

        Active powers run for the first non-zero effect duration (or the
        default). A duration of -1 keeps the power active with no timer
        until deactivate() is called. With a default of 0 and no effect
        duration, effects apply but the power is never tracked as active.
        Toggles flip on each call.

        Args:
            power_id: Power to activate
            context: Activation context (target, position...), passed to
                effect hooks and published with power.activated

        Returns:
            Whether activation happened
        """
        if not self.check_available(power_id):
            logger.info(f"Power not available: {power_id}")
            return False

        power = self.powers.get(power_id)
        if power is None:
            logger.warning(f"Power not found: {power_id}")
            return False

        context = dict(context or {})

        if power.cooldown_ms > 0:
            self.cooldowns[power_id] = self.clock.now_ms() + power.cooldown_ms

        match power.type:
            case PowerType.ACTIVE:
                self._activate_timed(power, context)
            case PowerType.TOGGLE:
                self._toggle(power, context)
            case PowerType.PASSIVE:
                logger.debug(f"Passive power {power_id} is always active")

        self.bus.publish(EventType.POWER_ACTIVATED, power_id=power_id, context=context)
        logger.info(f"Power activated: {power_id}")
        return True

    def _effect_duration(self, power: PowerDefinition) -> int:
        for effect in power.effects:
            if effect.duration:
                return effect.duration
        return self.default_effect_duration_ms

    def _activate_timed(self, power: PowerDefinition, context: dict) -> None:
        previous = self.active.pop(power.id, None)
        if previous is not None and previous.task is not None:
            previous.task.cancel()

        for effect in power.effects:
            self._apply_effect(effect, power, context)

        duration = self._effect_duration(power)
        if duration == 0:
            return

        entry = ActivePower(
            power=power,
            context=context,
            started_at=self.clock.now_ms(),
            duration_ms=duration,
        )
        if duration > 0:
            entry.task = self.scheduler.call_later(
                duration,
                lambda: self._expire(power.id, entry),
                label=f"deactivate:{power.id}",
            )
        self.active[power.id] = entry

    def _toggle(self, power: PowerDefinition, context: dict) -> None:
        if power.id in self.active:
            self.deactivate(power.id)
            return

        for effect in power.effects:
            self._apply_effect(effect, power, context)

        self.active[power.id] = ActivePower(
            power=power,
            context=context,
            started_at=self.clock.now_ms(),
            duration_ms=INDEFINITE,
        )

    def _expire(self, power_id: str, entry: ActivePower) -> None:
        # Stale timer: the power was deactivated or re-activated since
        if self.active.get(power_id) is not entry:
            return
        self.deactivate(power_id)

    def deactivate(self, power_id: str) -> bool:
        """Deactivate a power. Safe to call for inactive powers."""
        entry = self.active.pop(power_id, None)
        if entry is None:
            return False

        if entry.task is not None:
            entry.task.cancel()

        for effect in entry.power.effects:
            self._remove_effect(effect, entry.power, entry.context)

        self.bus.publish(EventType.POWER_DEACTIVATED, power_id=power_id)
        logger.info(f"Power deactivated: {power_id}")
        return True

    # -------------------------------------------------------------------------
    # Effect hooks
    # -------------------------------------------------------------------------

    def register_effect_handler(
        self,
        effect_type: str,
        apply: EffectHook,
        remove: EffectHook | None = None,
    ) -> None:
        """Register presentation callbacks for one effect type."""
        self._apply_hooks[effect_type] = apply
        if remove is not None:
            self._remove_hooks[effect_type] = remove

    def _apply_effect(self, effect: PowerEffect, power: PowerDefinition, context: dict) -> None:
        hook = self._apply_hooks.get(effect.type)
        if hook is None:
            logger.debug(f"No handler for effect type: {effect.type}")
            return
        try:
            hook(effect, power, context)
        except Exception:
            logger.exception(f"Effect handler failed: {effect.type} ({power.id})")

    def _remove_effect(self, effect: PowerEffect, power: PowerDefinition, context: dict) -> None:
        hook = self._remove_hooks.get(effect.type)
        if hook is None:
            return
        try:
            hook(effect, power, context)
        except Exception:
            logger.exception(f"Effect removal failed: {effect.type} ({power.id})")

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def snapshot(self) -> dict:
        """Serializable power state (matches PowerSection)."""
        return {
            "unlocked_power_ids": sorted(self.unlocked),
            "active_power_ids": sorted(self.active),
            "cooldowns": dict(self.cooldowns),
        }

    def restore(self, view: dict | None) -> None:
        """
        Load unlocked powers and cooldowns.

        Active powers are never restored; a loaded game starts with
        nothing mid-activation.
        """
        view = view if isinstance(view, dict) else {}

        unlocked = view.get("unlocked_power_ids")
        self.unlocked = (
            {pid for pid in unlocked if isinstance(pid, str)}
            if isinstance(unlocked, (list, tuple, set))
            else set()
        )

        cooldowns = view.get("cooldowns")
        self.cooldowns = {}
        if isinstance(cooldowns, dict):
            for pid, expiry in cooldowns.items():
                if isinstance(expiry, (int, float)) and not isinstance(expiry, bool):
                    self.cooldowns[str(pid)] = int(expiry)

        self._clear_active()
        logger.info("Power state loaded")

    def reset(self) -> None:
        """Reset to initial state."""
        self.unlocked.clear()
        self.cooldowns.clear()
        self._clear_active()
        logger.info("Power registry reset to initial state")

    def _clear_active(self) -> None:
        for entry in self.active.values():
            if entry.task is not None:
                entry.task.cancel()
        self.active.clear()

    def teardown(self) -> None:
        """Deactivate everything and detach from the bus."""
        for power_id in list(self.active):
            self.deactivate(power_id)
        self.bus.unsubscribe(EventType.STORY_POWER_UNLOCKED, self._on_story_unlock)
        self._apply_hooks.clear()
        self._remove_hooks.clear()
