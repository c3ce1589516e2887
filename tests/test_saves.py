"""Tests for the save system."""

import json
import logging

import pytest

from narrative_engine.state.event_bus import EventType
from narrative_engine.state.saves import (
    AUTO_SAVE_KEY,
    SaveManager,
    is_valid_record,
    manual_key,
)
from narrative_engine.state.schema import STATE_VERSION, SaveKind
from narrative_engine.state.snapshot import SnapshotComposer
from narrative_engine.state.store import MemoryKeyValueStore


def record(timestamp=1, **extra):
    return {"version": STATE_VERSION, "timestamp": timestamp, "snapshot": {}, **extra}


def collect(bus, topic):
    received = []
    bus.subscribe(topic, received.append)
    return received


class TestRecordShape:
    """Test the structural record check."""

    @pytest.mark.parametrize(
        "data",
        [
            None,
            [],
            {"timestamp": 1, "snapshot": {}},
            record(timestamp=0),
            record(timestamp=True),
            record(timestamp="1"),
            {"version": "", "timestamp": 1, "snapshot": {}},
            {"version": STATE_VERSION, "timestamp": 1, "snapshot": []},
        ],
    )
    def test_invalid_records(self, data):
        assert not is_valid_record(data)

    def test_valid_record(self):
        assert is_valid_record(record(timestamp=1.5))


class TestSave:
    """Test writing saves."""

    def test_save_writes_namespaced_key(self, saves, memory_backend):
        assert saves.save("custom", record())
        assert "rpg_custom" in memory_backend.items
        assert saves.get_save_count() == 1

    def test_prefixed_key_is_not_prefixed_twice(self, saves, memory_backend):
        saves.save("rpg_custom", record())
        assert "rpg_custom" in memory_backend.items

    def test_invalid_record_is_rejected(self, saves, memory_backend):
        assert saves.save("custom", record(timestamp=0)) is False
        assert memory_backend.items == {}

    def test_unserializable_record(self, saves, bus):
        errors = collect(bus, EventType.SAVE_ERROR)

        assert saves.save("custom", record(snapshot={"s": {1, 2}})) is False
        assert errors[0].data["message"].startswith("Save failed")

    def test_quota_failure_returns_false(self, bus, composer, recovery):
        """A backend that is out of space never raises through save()."""
        backend = MemoryKeyValueStore(quota=5)
        saves = SaveManager(backend, bus, composer, recovery)
        errors = collect(bus, EventType.SAVE_ERROR)

        assert saves.save(AUTO_SAVE_KEY, record()) is False
        assert errors[0].data["message"] == "Save failed"
        assert "rpg_auto_save" not in backend.items

    def test_backend_crash_returns_false(self, saves, memory_backend, monkeypatch):
        def crash(key, value):
            raise RuntimeError("disk on fire")

        monkeypatch.setattr(memory_backend, "set_item", crash)

        assert saves.save("custom", record()) is False

    def test_budget_exhausted(self, bus, composer, recovery, memory_backend):
        saves = SaveManager(memory_backend, bus, composer, recovery, storage_budget_bytes=10)
        errors = collect(bus, EventType.SAVE_ERROR)

        assert saves.save("custom", record()) is False
        assert errors[0].data["message"] == "Not enough storage space to save the game"

    def test_budget_triggers_cleanup(self, bus, composer, recovery, memory_backend):
        memory_backend.items["rpg_auto_save_old"] = json.dumps(record(timestamp=1, pad="x" * 5000))
        memory_backend.items["rpg_auto_save"] = json.dumps(record(timestamp=2))
        saves = SaveManager(memory_backend, bus, composer, recovery, storage_budget_bytes=4000)

        assert saves.manual_save(0)
        assert "rpg_auto_save_old" not in memory_backend.items
        assert "rpg_auto_save" in memory_backend.items

    def test_overwrite_does_not_count_twice(self, bus, composer, recovery, memory_backend):
        payload = json.dumps(record())
        saves = SaveManager(
            memory_backend, bus, composer, recovery,
            storage_budget_bytes=len(payload) + 40,
        )

        assert saves.save("custom", record())
        assert saves.save("custom", record())


class TestCleanup:
    """Test auto-save eviction."""

    def test_keeps_newest_auto_save(self, saves, memory_backend):
        memory_backend.items["rpg_auto_save_a"] = json.dumps(record(timestamp=5))
        memory_backend.items["rpg_auto_save_b"] = json.dumps(record(timestamp=9))
        memory_backend.items["rpg_auto_save_c"] = "{broken"
        memory_backend.items["rpg_manual_save_0"] = json.dumps(record(timestamp=1))

        assert saves.cleanup_old_saves() == 2
        assert set(memory_backend.items) == {"rpg_auto_save_b", "rpg_manual_save_0"}

    def test_quarantined_copy_never_outranks_live_save(self, saves, memory_backend):
        """A newer .corrupted backup must not cost the real auto-save."""
        saves.auto_save("t")
        memory_backend.items["rpg_auto_save.corrupted"] = json.dumps(
            {"version": STATE_VERSION, "timestamp": 9_999_999_999_999}
        )

        saves.cleanup_old_saves()

        assert "rpg_auto_save" in memory_backend.items
        assert "rpg_auto_save.corrupted" in memory_backend.items

    def test_malformed_record_ranks_below_valid(self, saves, memory_backend):
        saves.auto_save("t")
        memory_backend.items["rpg_auto_save_stale"] = json.dumps({"timestamp": 9_999_999_999_999})

        assert saves.cleanup_old_saves() == 1
        assert "rpg_auto_save" in memory_backend.items
        assert "rpg_auto_save_stale" not in memory_backend.items


class TestAutoAndManualSave:
    """Test save triggers and slots."""

    def test_auto_save_on_checkpoint(self, saves, story, bus, memory_backend):
        notes = collect(bus, EventType.SAVE_NOTIFICATION)

        story.set_checkpoint("mentor_met")

        saved = json.loads(memory_backend.items["rpg_auto_save"])
        assert saved["metadata"]["trigger"] == "mentor_met"
        assert saved["metadata"]["last_checkpoint"] == "mentor_met"
        assert saved["metadata"]["save_kind"] == "auto"
        assert notes[0].data == {"message": "Game auto-saved", "kind": "auto", "key": AUTO_SAVE_KEY}

    def test_auto_save_on_power_unlock(self, saves, powers, memory_backend):
        powers.unlock("telekinesis")

        saved = json.loads(memory_backend.items["rpg_auto_save"])
        assert saved["metadata"]["trigger"] == "power_unlock"
        assert saved["snapshot"]["power"]["unlocked_power_ids"] == ["telekinesis"]

    def test_auto_save_disabled(self, saves, story, memory_backend):
        saves.set_auto_save_enabled(False)

        story.set_checkpoint("mentor_met")

        assert saves.auto_save("manual-trigger") is False
        assert "rpg_auto_save" not in memory_backend.items

    def test_manual_save(self, saves, bus, memory_backend):
        notes = collect(bus, EventType.SAVE_NOTIFICATION)

        assert saves.manual_save(1)

        saved = json.loads(memory_backend.items["rpg_manual_save_1"])
        assert saved["metadata"]["slot"] == 1
        assert saved["metadata"]["save_kind"] == "manual"
        assert notes[0].data["message"] == "Game saved to slot 2"

    @pytest.mark.parametrize("slot", [-1, 3, True, "1", 1.0])
    def test_manual_slot_out_of_range(self, saves, memory_backend, slot):
        assert saves.manual_save(slot) is False
        assert memory_backend.items == {}

    def test_counters_and_play_time(self, saves, clock, memory_backend):
        saves.manual_save(0)
        clock.advance(5000)
        saves.manual_save(1)

        second = json.loads(memory_backend.items[f"rpg_{manual_key(1)}"])
        assert second["metadata"]["save_ordinal"] == 2
        assert second["metadata"]["play_time_ms"] == 5000
        assert saves.get_save_count() == 2

    def test_invalid_live_state_saves_recovered_snapshot(self, bus, clock, recovery, memory_backend, validator):
        composer = SnapshotComposer(clock, actor_source=lambda: {"position": "nowhere"})
        saves = SaveManager(memory_backend, bus, composer, recovery)

        assert saves.manual_save(0)

        saved = json.loads(memory_backend.items["rpg_manual_save_0"])
        assert validator.validate(saved["snapshot"]).is_valid


class TestLoad:
    """Test loading and corruption handling."""

    def test_missing_save(self, saves):
        assert saves.load(AUTO_SAVE_KEY) is None

    def test_load_returns_snapshot(self, saves, story):
        story.set_checkpoint("mentor_met")

        snapshot = saves.load(AUTO_SAVE_KEY)

        assert snapshot["story"]["checkpoint"] == "mentor_met"

    @pytest.mark.parametrize("raw", ["{not json", json.dumps({"version": STATE_VERSION}), "[]"])
    def test_corrupted_save_is_quarantined(self, saves, memory_backend, bus, raw):
        memory_backend.items["rpg_auto_save"] = raw
        errors = collect(bus, EventType.SAVE_ERROR)

        assert saves.load(AUTO_SAVE_KEY) is None

        assert "rpg_auto_save" not in memory_backend.items
        assert memory_backend.items["rpg_auto_save.corrupted"] == raw
        assert errors[0].data == {
            "message": "Save file corrupted and has been removed. Starting new game.",
            "key": "rpg_auto_save",
        }

    def test_version_mismatch_still_loads(self, saves, memory_backend, caplog):
        memory_backend.items["rpg_auto_save"] = json.dumps(
            {"version": "0.9.0", "timestamp": 5, "snapshot": {"scene": "old"}}
        )

        with caplog.at_level(logging.WARNING):
            snapshot = saves.load(AUTO_SAVE_KEY)

        assert snapshot == {"scene": "old"}
        assert "version mismatch" in caplog.text


class TestListAndDelete:
    """Test listing, deletion and status."""

    def test_list_newest_first(self, saves, clock):
        saves.manual_save(0)
        clock.advance(10)
        saves.manual_save(2)
        clock.advance(10)
        saves.auto_save("test")

        listed = saves.list_saves()

        assert [(s.kind, s.slot) for s in listed] == [
            (SaveKind.AUTO, None),
            (SaveKind.MANUAL, 2),
            (SaveKind.MANUAL, 0),
        ]
        assert listed[0].metadata["trigger"] == "test"

    def test_list_skips_unparsable(self, saves, memory_backend):
        memory_backend.items["rpg_manual_save_0"] = "{oops"
        saves.manual_save(1)

        assert [s.key for s in saves.list_saves()] == ["manual_save_1"]

    def test_delete(self, saves):
        saves.manual_save(0)

        assert saves.delete(manual_key(0)) is True
        assert saves.delete(manual_key(0)) is False

    def test_delete_all_only_touches_namespace(self, saves, memory_backend):
        memory_backend.items["other_key"] = "keep"
        saves.manual_save(0)
        saves.manual_save(1)

        # two saves plus the two counters
        assert saves.delete_all() == 4
        assert memory_backend.items == {"other_key": "keep"}

    def test_status(self, saves):
        saves.manual_save(0)

        status = saves.status()

        assert status["auto_save_enabled"] is True
        assert status["available_saves"] == 1
        assert status["save_count"] == 1
        assert 0 < status["storage_usage"] < status["storage_budget"]

    def test_teardown_stops_auto_save(self, saves, story, memory_backend):
        saves.teardown()
        story.set_checkpoint("mentor_met")
        assert "rpg_auto_save" not in memory_backend.items


class FailingReadStore(MemoryKeyValueStore):
    """Backend whose reads blow up with a non-persistence error."""

    def get_item(self, key):
        raise RuntimeError("backend read failure")


class TestBackendFailures:
    """Test that arbitrary backend errors stay inside the save manager."""

    @pytest.fixture
    def failing_saves(self, bus, composer, recovery):
        backend = FailingReadStore()
        backend.items["rpg_auto_save"] = json.dumps(record())
        return SaveManager(backend, bus, composer, recovery)

    def test_load_returns_none(self, failing_saves):
        assert failing_saves.load(AUTO_SAVE_KEY) is None

    def test_list_saves_is_empty(self, failing_saves):
        assert failing_saves.list_saves() == []

    def test_storage_usage_skips_unreadable(self, failing_saves):
        assert failing_saves.storage_usage() == 0

    def test_counters_read_as_zero(self, failing_saves):
        assert failing_saves.get_save_count() == 0
        assert failing_saves.calculate_play_time() == 0

    def test_cleanup_keeps_going(self, failing_saves):
        assert failing_saves.cleanup_old_saves() == 0

    def test_failing_key_listing(self, bus, composer, recovery, monkeypatch):
        backend = MemoryKeyValueStore()
        saves = SaveManager(backend, bus, composer, recovery)

        def broken_keys():
            raise RuntimeError("listing failed")

        monkeypatch.setattr(backend, "keys", broken_keys)

        assert saves.storage_usage() == 0
        assert saves.delete_all() == 0
