"""
Scene state synchronization.

A scene is an independent presentation surface (world view, inventory
screen, dialogue box). When the host switches scenes, the synchronizer
captures what the outgoing scene holds, checks the aggregate snapshot
and pushes it into the incoming scene.

Synchronization is not re-entrant: a call made while another is in
progress is rejected rather than queued.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

from ..state.event_bus import EventBus, EventType
from .recovery import DEFAULT_FACING, DEFAULT_HEALTH, StateRecoveryManager
from .scheduler import Clock, SystemClock

logger = logging.getLogger(__name__)


class SyncPhase(str, Enum):
    IDLE = "idle"
    CAPTURING = "capturing"
    APPLYING = "applying"


@dataclass
class SceneActor:
    """The mutable surface of the player actor inside a scene."""
    x: float = 400
    y: float = 300
    health: float = DEFAULT_HEALTH
    facing: str = DEFAULT_FACING

    def set_position(self, x: float, y: float) -> None:
        self.x = x
        self.y = y


class SceneContext:
    """
    Base class for presentation contexts.

    Subclasses override capture_extra() to contribute scene-specific data
    (selected slot, current dialogue...) and on_state_applied() to react
    once the snapshot has been pushed in.
    """

    def __init__(self, key: str, actor: SceneActor | None = None):
        self.key = key
        self.actor = actor

    def capture_extra(self) -> dict:
        return {}

    def on_state_applied(self, snapshot: dict) -> None:
        pass

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.key!r})"


@dataclass
class SceneState:
    """What was captured from a scene when it was left."""
    scene_key: str
    timestamp: int
    data: dict = field(default_factory=dict)


class SceneSynchronizer:
    """
    IDLE -> CAPTURING -> APPLYING -> IDLE.

    Args:
        bus: Shared event bus
        recovery: Validates snapshots and recovers invalid ones
        snapshot_builder: Composes the current aggregate snapshot
        on_recovered: Pushes a recovered snapshot back into the subsystems
        clock: Time source for captured states and published events
    """

    def __init__(
        self,
        bus: EventBus,
        recovery: StateRecoveryManager,
        snapshot_builder: Callable[[], dict],
        on_recovered: Callable[[dict], None] | None = None,
        clock: Clock | None = None,
    ):
        self.bus = bus
        self.recovery = recovery
        self.snapshot_builder = snapshot_builder
        self.on_recovered = on_recovered
        self.clock = clock or SystemClock()

        self.phase = SyncPhase.IDLE
        self.scene_states: dict[str, SceneState] = {}
        self.current_scene: str | None = None
        self._actor_scene: SceneContext | None = None

    @property
    def in_progress(self) -> bool:
        return self.phase != SyncPhase.IDLE

    def current_actor(self) -> dict | None:
        """
        Actor section for the aggregate snapshot.

        Read from the last scene that carried an actor, so the snapshot
        always reflects where the player actually is.
        """
        scene = self._actor_scene
        if scene is None or scene.actor is None:
            return None
        actor = scene.actor
        return {
            "position": {"x": actor.x, "y": actor.y},
            "health": actor.health,
            "facing": actor.facing,
        }

    def attach(self, ctx: SceneContext) -> None:
        """Mark ctx as the active scene without synchronizing."""
        self.current_scene = ctx.key
        if ctx.actor is not None:
            self._actor_scene = ctx

    def capture(self, ctx: SceneContext) -> SceneState:
        """Record the state held by ctx."""
        data: dict[str, Any] = {}
        if ctx.actor is not None:
            data["actor_position"] = {"x": ctx.actor.x, "y": ctx.actor.y}
            data["actor_health"] = ctx.actor.health
            self._actor_scene = ctx
        data.update(ctx.capture_extra())

        state = SceneState(scene_key=ctx.key, timestamp=self.clock.now_ms(), data=data)
        self.scene_states[ctx.key] = state
        logger.debug(f"Captured state for scene: {ctx.key}")
        return state

    def synchronize(self, from_ctx: SceneContext, to_ctx: SceneContext) -> bool:
        """
        Carry state from one scene to the next.

        Returns:
            True if to_ctx received a valid snapshot
        """
        if self.phase != SyncPhase.IDLE:
            logger.warning(
                f"Scene synchronization already in progress ({self.phase.value}); "
                f"rejecting {from_ctx.key} -> {to_ctx.key}"
            )
            return False

        self.phase = SyncPhase.CAPTURING
        try:
            self.capture(from_ctx)

            snapshot = self.snapshot_builder()
            result = self.recovery.validate_live(snapshot)
            if not result.is_valid:
                logger.error(f"Cannot synchronize invalid state: {result.errors}")
                recovered = self.recovery.recover(snapshot, timestamp=self.clock.now_ms())
                if recovered is None:
                    logger.error("State recovery failed during synchronization")
                    return False
                if self.on_recovered is not None:
                    self.on_recovered(recovered)
                snapshot = recovered

            self.phase = SyncPhase.APPLYING
            self.apply_to_scene(to_ctx, snapshot)
            to_ctx.on_state_applied(snapshot)
            self.attach(to_ctx)

            self.bus.publish(
                EventType.STATE_SYNCHRONIZED,
                **{"from": from_ctx.key, "to": to_ctx.key, "timestamp": self.clock.now_ms()},
            )
            logger.info(f"State synchronized: {from_ctx.key} -> {to_ctx.key}")
            return True
        except Exception:
            logger.exception(f"Scene state synchronization failed: {from_ctx.key} -> {to_ctx.key}")
            return False
        finally:
            self.phase = SyncPhase.IDLE

    def apply_to_scene(self, ctx: SceneContext, snapshot: dict) -> None:
        actor_view = snapshot.get("actor")
        if ctx.actor is None or not isinstance(actor_view, dict):
            return

        position = actor_view.get("position")
        if isinstance(position, dict) and "x" in position and "y" in position:
            ctx.actor.set_position(position["x"], position["y"])
        if "health" in actor_view:
            ctx.actor.health = actor_view["health"]
        if "facing" in actor_view:
            ctx.actor.facing = actor_view["facing"]

    def apply_to_current(self, snapshot: dict) -> None:
        """Push a snapshot into the scene that currently holds the actor."""
        if self._actor_scene is not None:
            self.apply_to_scene(self._actor_scene, snapshot)

    def clear(self) -> None:
        self.scene_states.clear()
        self.current_scene = None
        self._actor_scene = None
