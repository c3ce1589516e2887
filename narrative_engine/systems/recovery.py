"""
State recovery.

Keeps the last snapshot that passed validation plus a bounded history of
earlier ones. When live state turns out to be invalid, recover() walks
back through them and, as a last resort, synthesizes a minimal snapshot
from defaults.
"""

from __future__ import annotations

import copy
import logging
from collections import deque
from typing import Any

from ..state.schema import DEFAULT_CHECKPOINT, ValidationResult
from .inventory import DEFAULT_MAX_CAPACITY
from .validation import StateValidator

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_SIZE = 10

DEFAULT_POSITION = {"x": 400, "y": 300}
DEFAULT_HEALTH = 100
DEFAULT_FACING = "down"


def create_minimal_snapshot(version: str, timestamp: int = 0) -> dict:
    """The smallest snapshot that passes validation."""
    return {
        "version": version,
        "timestamp": timestamp,
        "story": {
            "checkpoint": DEFAULT_CHECKPOINT,
            "completed_event_ids": [],
            "flags": {},
            "unlocked_power_ids": [],
        },
        "power": {
            "unlocked_power_ids": [],
            "active_power_ids": [],
            "cooldowns": {},
        },
        "inventory": {
            "items": [],
            "max_capacity": DEFAULT_MAX_CAPACITY,
        },
        "actor": {
            "position": dict(DEFAULT_POSITION),
            "health": DEFAULT_HEALTH,
            "facing": DEFAULT_FACING,
        },
        "scene": None,
    }


class StateRecoveryManager:
    """
    Last-known-good tracking and recovery.

    Only snapshots that validate are ever recorded. Everything handed out
    is a deep copy, so callers can mutate what they get back.
    """

    def __init__(self, validator: StateValidator, history_size: int = DEFAULT_HISTORY_SIZE):
        self.validator = validator
        self.last_valid: dict | None = None
        self._history: deque[dict] = deque(maxlen=max(1, history_size))

    @property
    def history(self) -> list[dict]:
        """Recorded snapshots, oldest first."""
        return [copy.deepcopy(s) for s in self._history]

    def validate(self, snapshot: Any) -> ValidationResult:
        return self.validator.validate(snapshot)

    def record(self, snapshot: dict) -> None:
        """Store a snapshot already known to be valid."""
        self.last_valid = copy.deepcopy(snapshot)
        self._history.append(copy.deepcopy(snapshot))

    def validate_live(self, snapshot: Any) -> ValidationResult:
        """Validate a snapshot and record it if it passes."""
        result = self.validator.validate(snapshot)
        if result.is_valid:
            self.record(snapshot)
        return result

    def recover(self, invalid: Any = None, timestamp: int = 0) -> dict | None:
        """
        Produce a valid snapshot to replace an invalid one.

        Args:
            invalid: The snapshot that failed validation (logged only)
            timestamp: Timestamp for a synthesized snapshot

        Returns:
            A deep copy of the best available snapshot, or None if even
            the minimal snapshot could not be built
        """
        logger.warning("Attempting state recovery...")

        if self.last_valid is not None:
            logger.info("Using last valid state for recovery")
            return copy.deepcopy(self.last_valid)

        for steps_back, candidate in enumerate(reversed(self._history)):
            if self.validator.validate(candidate).is_valid:
                logger.info(f"Recovered state from history ({steps_back} steps back)")
                return copy.deepcopy(candidate)

        try:
            minimal = create_minimal_snapshot(self.validator.version, timestamp)
        except Exception:
            logger.exception("State recovery failed")
            return None

        logger.info("Creating minimal valid state")
        return minimal

    def clear(self) -> None:
        self.last_valid = None
        self._history.clear()
