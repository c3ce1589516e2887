"""
Aggregate snapshot composition.

Each subsystem owns its live state; a snapshot is a read-only projection
rebuilt on every call. apply() is the reverse path used by loading and
recovery.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable

from .schema import STATE_VERSION

if TYPE_CHECKING:
    from ..systems.inventory import Inventory
    from ..systems.powers import PowerRegistry
    from ..systems.scheduler import Clock
    from ..systems.story import StoryGraph

logger = logging.getLogger(__name__)


class SnapshotComposer:
    """
    Builds AggregateSnapshot-shaped dicts from live subsystems.

    Any subsystem may be None; its section is then left out, which the
    validator reports as a warning rather than an error.
    """

    def __init__(
        self,
        clock: "Clock",
        story: "StoryGraph | None" = None,
        powers: "PowerRegistry | None" = None,
        inventory: "Inventory | None" = None,
        version: str = STATE_VERSION,
        actor_source: Callable[[], dict | None] | None = None,
        scene_source: Callable[[], str | None] | None = None,
    ):
        self.clock = clock
        self.story = story
        self.powers = powers
        self.inventory = inventory
        self.version = version
        self.actor_source = actor_source
        self.scene_source = scene_source

    def compose(self) -> dict:
        snapshot: dict = {
            "version": self.version,
            "timestamp": self.clock.now_ms(),
        }

        if self.story is not None:
            snapshot["story"] = self.story.snapshot()
        if self.powers is not None:
            snapshot["power"] = self.powers.snapshot()
        if self.inventory is not None:
            snapshot["inventory"] = self.inventory.snapshot()

        if self.actor_source is not None:
            actor = self.actor_source()
            if actor is not None:
                snapshot["actor"] = actor

        snapshot["scene"] = self.scene_source() if self.scene_source is not None else None
        return snapshot

    def apply(self, snapshot: dict) -> None:
        """Push a snapshot's sections back into the subsystems."""
        if not isinstance(snapshot, dict):
            logger.error("Cannot apply snapshot: not a mapping")
            return

        if self.story is not None and "story" in snapshot:
            self.story.restore(snapshot["story"])
        if self.powers is not None and "power" in snapshot:
            self.powers.restore(snapshot["power"])
        if self.inventory is not None and "inventory" in snapshot:
            self.inventory.restore(snapshot["inventory"])

        logger.info("Game state applied")
