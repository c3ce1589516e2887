"""Tests for condition evaluation and effect application."""

import logging

import pytest

from narrative_engine.state.schema import (
    CheckpointReachedCondition,
    EventCompletedCondition,
    FlagCondition,
    PowerUnlockedCondition,
    SetFlagEffect,
    StoryEvent,
    UnknownCondition,
    UnknownEffect,
    UnlockPowerEffect,
)
from narrative_engine.systems.conditions import apply_effects, check_condition, evaluate


class FakeState:
    """Minimal NarrativeStateReader / EffectSink for isolated tests."""

    def __init__(self, flags=None, completed=(), powers=(), checkpoint="game_start"):
        self.flags = dict(flags or {})
        self.completed = set(completed)
        self.powers = set(powers)
        self.checkpoint = checkpoint
        self.calls = []

    def lookup_flag(self, key, default=None):
        return self.flags.get(key, default)

    def is_event_completed(self, event_id):
        return event_id in self.completed

    def is_power_unlocked(self, power_id):
        return power_id in self.powers

    def has_reached_checkpoint(self, checkpoint_id):
        return self.checkpoint == checkpoint_id

    def set_flag(self, key, value):
        self.calls.append(("set_flag", key, value))
        self.flags[key] = value

    def unlock_power(self, power_id, source_event=None):
        self.calls.append(("unlock_power", power_id, source_event))
        self.powers.add(power_id)
        return True

    def set_checkpoint(self, checkpoint_id):
        self.calls.append(("set_checkpoint", checkpoint_id))
        self.checkpoint = checkpoint_id
        return True


class TestSingleConditions:
    """Test each condition type on its own."""

    def test_flag_matches_value(self):
        state = FakeState(flags={"door": "open"})
        assert check_condition(FlagCondition(flag="door", value="open"), state)
        assert not check_condition(FlagCondition(flag="door", value="closed"), state)

    def test_missing_flag_never_matches(self):
        """An unset flag does not equal None."""
        state = FakeState()
        assert not check_condition(FlagCondition(flag="ghost", value=None), state)

    def test_flag_set_to_none_matches_none(self):
        state = FakeState(flags={"ghost": None})
        assert check_condition(FlagCondition(flag="ghost", value=None), state)

    def test_event_completed(self):
        state = FakeState(completed={"intro"})
        assert check_condition(EventCompletedCondition(event_id="intro"), state)
        assert not check_condition(EventCompletedCondition(event_id="outro"), state)

    def test_power_unlocked(self):
        state = FakeState(powers={"telekinesis"})
        assert check_condition(PowerUnlockedCondition(power_id="telekinesis"), state)
        assert not check_condition(PowerUnlockedCondition(power_id="time_slow"), state)

    def test_checkpoint_reached(self):
        state = FakeState(checkpoint="forest_gate")
        assert check_condition(CheckpointReachedCondition(checkpoint_id="forest_gate"), state)

    def test_unknown_condition_fails_closed(self, caplog):
        """Unknown tags evaluate False and log a warning."""
        with caplog.at_level(logging.WARNING):
            result = check_condition(UnknownCondition(tag="moonPhase"), FakeState())

        assert result is False
        assert "Unknown condition type" in caplog.text


class TestAndSemantics:
    """Test composite evaluation."""

    def test_empty_list_is_satisfied(self):
        assert evaluate([], FakeState()) is True

    def test_none_is_satisfied(self):
        assert evaluate(None, FakeState()) is True

    @pytest.mark.parametrize(
        "flag_ok,event_ok,power_ok,expected",
        [
            (True, True, True, True),
            (False, True, True, False),
            (True, False, True, False),
            (True, True, False, False),
            (False, False, False, False),
        ],
    )
    def test_all_must_hold(self, flag_ok, event_ok, power_ok, expected):
        """The list holds iff every member holds."""
        state = FakeState(
            flags={"f": True} if flag_ok else {},
            completed={"e"} if event_ok else set(),
            powers={"p"} if power_ok else set(),
        )
        conditions = [
            FlagCondition(flag="f", value=True),
            EventCompletedCondition(event_id="e"),
            PowerUnlockedCondition(power_id="p"),
        ]
        assert evaluate(conditions, state) is expected

    def test_unknown_member_fails_whole_list(self):
        state = FakeState(flags={"f": True})
        conditions = [FlagCondition(flag="f", value=True), UnknownCondition(tag="weird")]
        assert evaluate(conditions, state) is False

    def test_evaluation_does_not_mutate_state(self):
        state = FakeState(flags={"f": 1})
        evaluate([FlagCondition(flag="f", value=1), FlagCondition(flag="g", value=2)], state)
        assert state.flags == {"f": 1}
        assert state.calls == []


class TestParsing:
    """Test that raw definitions become typed conditions/effects."""

    def test_camel_case_tags(self):
        event = StoryEvent.model_validate({
            "id": "b",
            "triggers": [{"type": "powerUnlocked", "powerId": "p"}],
            "effects": [{"type": "setFlag", "flag": "x", "value": 1}],
        })
        assert event.triggers == (PowerUnlockedCondition(power_id="p"),)
        assert event.effects == (SetFlagEffect(flag="x", value=1),)

    def test_shorthand_effect(self):
        """{"unlockPower": "p"} is accepted without a type key."""
        event = StoryEvent.model_validate({"id": "a", "effects": [{"unlockPower": "p"}]})
        assert event.effects == (UnlockPowerEffect(power_id="p"),)

    def test_unknown_tags_are_preserved_not_rejected(self):
        event = StoryEvent.model_validate({
            "id": "c",
            "triggers": [{"type": "moonPhase", "phase": "full"}],
            "effects": [{"type": "playSound", "sound": "bell"}],
        })
        assert isinstance(event.triggers[0], UnknownCondition)
        assert event.triggers[0].tag == "moonPhase"
        assert isinstance(event.effects[0], UnknownEffect)

    def test_kind_accepts_type_key(self):
        event = StoryEvent.model_validate({"id": "d", "type": "cutscene"})
        assert event.kind == "cutscene"


class TestApplyEffects:
    """Test the effect processor."""

    def test_effects_apply_in_order(self):
        sink = FakeState()
        effects = StoryEvent.model_validate({
            "id": "e",
            "effects": [
                {"type": "setFlag", "flag": "a", "value": 1},
                {"type": "unlockPower", "powerId": "p"},
                {"type": "setCheckpoint", "checkpointId": "cp"},
            ],
        }).effects

        applied = apply_effects(effects, sink, source_event="e")

        assert applied == 3
        assert sink.calls == [
            ("set_flag", "a", 1),
            ("unlock_power", "p", "e"),
            ("set_checkpoint", "cp"),
        ]

    def test_unknown_effect_is_skipped(self, caplog):
        sink = FakeState()
        effects = [UnknownEffect(tag="explode"), SetFlagEffect(flag="ok", value=True)]

        with caplog.at_level(logging.WARNING):
            applied = apply_effects(effects, sink)

        assert applied == 1
        assert sink.flags == {"ok": True}
        assert "Unknown effect type" in caplog.text
