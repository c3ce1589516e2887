"""
Condition evaluation and effect application for story events.

Pure function: evaluate(conditions, state) -> bool.
No state mutation, no side effects, no globals.

Conditions use AND semantics: a list is satisfied when every member is.
An empty list is vacuously satisfied. Unknown tags fail closed with a
warning so one malformed event cannot break evaluation of its siblings.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Protocol

from ..state.schema import (
    CheckpointReachedCondition,
    Condition,
    Effect,
    EventCompletedCondition,
    FlagCondition,
    PowerUnlockedCondition,
    SetCheckpointEffect,
    SetFlagEffect,
    UnknownCondition,
    UnknownEffect,
    UnlockPowerEffect,
)

logger = logging.getLogger(__name__)

_MISSING = object()


class NarrativeStateReader(Protocol):
    """Read-only view of narrative state the evaluator needs."""

    def lookup_flag(self, key: str, default: Any = None) -> Any:
        ...

    def is_event_completed(self, event_id: str) -> bool:
        ...

    def is_power_unlocked(self, power_id: str) -> bool:
        ...

    def has_reached_checkpoint(self, checkpoint_id: str) -> bool:
        ...


class EffectSink(Protocol):
    """Mutations an effect list may request."""

    def set_flag(self, key: str, value: Any) -> None:
        ...

    def unlock_power(self, power_id: str, source_event: str | None = None) -> bool:
        ...

    def set_checkpoint(self, checkpoint_id: str) -> bool:
        ...


def check_condition(condition: Condition, state: NarrativeStateReader) -> bool:
    """Evaluate a single condition."""
    match condition:
        case FlagCondition(flag=flag, value=value):
            current = state.lookup_flag(flag, _MISSING)
            return current is not _MISSING and current == value
        case EventCompletedCondition(event_id=event_id):
            return state.is_event_completed(event_id)
        case PowerUnlockedCondition(power_id=power_id):
            return state.is_power_unlocked(power_id)
        case CheckpointReachedCondition(checkpoint_id=checkpoint_id):
            return state.has_reached_checkpoint(checkpoint_id)
        case UnknownCondition(tag=tag):
            logger.warning(f"Unknown condition type: {tag!r}")
            return False
        case _:
            logger.warning(f"Unsupported condition: {condition!r}")
            return False


def evaluate(conditions: Iterable[Condition] | None, state: NarrativeStateReader) -> bool:
    """
    Check that every condition holds.

    Args:
        conditions: Conditions to test (None or empty = satisfied)
        state: Narrative state to test against

    Returns:
        True when all conditions are satisfied
    """
    if not conditions:
        return True
    return all(check_condition(condition, state) for condition in conditions)


def apply_effects(effects: Iterable[Effect], sink: EffectSink, source_event: str | None = None) -> int:
    """
    Apply effects in list order.

    Unknown effects are skipped with a warning. Returns the number of
    effects that were applied.
    """
    applied = 0
    for effect in effects:
        match effect:
            case SetFlagEffect(flag=flag, value=value):
                sink.set_flag(flag, value)
            case UnlockPowerEffect(power_id=power_id):
                sink.unlock_power(power_id, source_event=source_event)
            case SetCheckpointEffect(checkpoint_id=checkpoint_id):
                sink.set_checkpoint(checkpoint_id)
            case UnknownEffect(tag=tag):
                logger.warning(f"Unknown effect type: {tag!r}")
                continue
            case _:
                logger.warning(f"Unsupported effect: {effect!r}")
                continue
        applied += 1
    return applied
