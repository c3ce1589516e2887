"""
Save system.

Durable save/load of aggregate snapshots under namespaced slot keys, on
top of a KeyValueStore backend:

    <namespace>_auto_save
    <namespace>_manual_save_<n>

Every failure is converted to False/None at this boundary. The host is
told about problems through save.notification and save.error events,
never through exceptions.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from .errors import CorruptionError, PersistenceError, QuotaExceededError
from .event_bus import EventBus, EventType, GameEvent
from .schema import STATE_VERSION, SaveDescriptor, SaveKind, SaveMetadata, SaveRecord
from .snapshot import SnapshotComposer
from .store import KeyValueStore
from ..systems.recovery import StateRecoveryManager

logger = logging.getLogger(__name__)

AUTO_SAVE_KEY = "auto_save"
MANUAL_SAVE_PREFIX = "manual_save_"
CORRUPTED_SUFFIX = ".corrupted"

DEFAULT_STORAGE_BUDGET = 5 * 1024 * 1024
DEFAULT_MANUAL_SLOTS = 3


def manual_key(slot: int) -> str:
    return f"{MANUAL_SAVE_PREFIX}{slot}"


def is_valid_record(data: Any) -> bool:
    """Structural check: a record must carry version, timestamp and snapshot."""
    if not isinstance(data, dict):
        return False
    version = data.get("version")
    timestamp = data.get("timestamp")
    return (
        isinstance(version, str)
        and bool(version)
        and isinstance(timestamp, (int, float))
        and not isinstance(timestamp, bool)
        and timestamp > 0
        and isinstance(data.get("snapshot"), dict)
    )


class SaveManager:
    """
    Auto-save, manual slots, load with corruption quarantine.

    Storage usage is recomputed from the backend on every save, so keys
    removed behind the manager's back are accounted for.
    """

    def __init__(
        self,
        backend: KeyValueStore,
        bus: EventBus,
        composer: SnapshotComposer,
        recovery: StateRecoveryManager,
        namespace: str = "rpg",
        manual_slots: int = DEFAULT_MANUAL_SLOTS,
        storage_budget_bytes: int = DEFAULT_STORAGE_BUDGET,
        auto_save_enabled: bool = True,
        version: str = STATE_VERSION,
    ):
        self.backend = backend
        self.bus = bus
        self.composer = composer
        self.recovery = recovery
        self.clock = composer.clock
        self.namespace = namespace
        self.manual_slots = manual_slots
        self.storage_budget_bytes = storage_budget_bytes
        self.auto_save_enabled = auto_save_enabled
        self.version = version

        self.bus.subscribe(EventType.CHECKPOINT_REACHED, self._on_checkpoint_reached)
        self.bus.subscribe(EventType.POWER_UNLOCKED, self._on_power_unlocked)

    # -------------------------------------------------------------------------
    # Keys & bookkeeping
    # -------------------------------------------------------------------------

    @property
    def _prefix(self) -> str:
        return f"{self.namespace}_"

    def full_key(self, key: str) -> str:
        """Namespaced storage key ("auto_save" -> "rpg_auto_save")."""
        return key if key.startswith(self._prefix) else f"{self._prefix}{key}"

    @property
    def _count_key(self) -> str:
        return f"{self._prefix}save_count"

    @property
    def _start_key(self) -> str:
        return f"{self._prefix}game_start_time"

    def _read_int(self, key: str) -> int:
        try:
            raw = self._get(key)
            return int(raw) if raw else 0
        except (ValueError, PersistenceError):
            return 0

    def get_save_count(self) -> int:
        return self._read_int(self._count_key)

    def calculate_play_time(self) -> int:
        """Milliseconds since the first successful save."""
        start = self._read_int(self._start_key)
        if not start:
            return 0
        return max(0, self.clock.now_ms() - start)

    def _update_counters(self) -> None:
        try:
            self.backend.set_item(self._count_key, str(self.get_save_count() + 1))
            if not self._read_int(self._start_key):
                self.backend.set_item(self._start_key, str(self.clock.now_ms()))
        except Exception as e:
            logger.warning(f"Could not update save counters: {e}")

    # -------------------------------------------------------------------------
    # Storage accounting
    # -------------------------------------------------------------------------

    def storage_usage(self, exclude: str | None = None) -> int:
        """Bytes used by every key in this namespace."""
        total = 0
        for key in self._keys():
            if not key.startswith(self._prefix) or key == exclude:
                continue
            try:
                value = self._get(key)
            except PersistenceError:
                continue
            if value:
                total += len(value.encode("utf-8"))
        return total

    def _has_space(self, full_key: str, serialized: str) -> bool:
        # The value being replaced does not count against the budget
        needed = len(serialized.encode("utf-8"))
        return self.storage_usage(exclude=full_key) + needed < self.storage_budget_bytes

    def cleanup_old_saves(self) -> int:
        """
        Evict every auto-save except the newest. Returns count removed.

        Quarantined copies are never candidates, and records that fail the
        structural check rank below every valid one.
        """
        auto_prefix = self.full_key(AUTO_SAVE_KEY)
        candidates = []
        for key in self._keys():
            if not key.startswith(auto_prefix) or key.endswith(CORRUPTED_SUFFIX):
                continue
            candidates.append((self._stored_timestamp(key), key))

        candidates.sort(reverse=True)
        removed = 0
        for _, key in candidates[1:]:
            try:
                if self.backend.remove_item(key):
                    removed += 1
            except Exception as e:
                logger.error(f"Error cleaning up {key}: {e}")

        logger.info(f"Old saves cleaned up ({removed} removed)")
        return removed

    def _stored_timestamp(self, key: str) -> int:
        # -1 for anything that is not a valid record
        try:
            data = json.loads(self._get(key) or "")
        except (ValueError, PersistenceError):
            return -1
        if not is_valid_record(data):
            return -1
        return int(data["timestamp"])

    def _get(self, key: str) -> str | None:
        try:
            return self.backend.get_item(key)
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"Backend failed reading {key}: {e}") from e

    def _keys(self) -> list[str]:
        try:
            return list(self.backend.keys())
        except Exception as e:
            logger.error(f"Could not list storage keys: {e}")
            return []

    # -------------------------------------------------------------------------
    # Save
    # -------------------------------------------------------------------------

    def save(self, key: str, record: SaveRecord | dict) -> bool:
        """
        Write a save record.

        Returns:
            True if written. False if the record is malformed, space could
            not be found, or the backend failed.
        """
        data = record.model_dump(mode="json") if isinstance(record, SaveRecord) else record
        if not is_valid_record(data):
            logger.error("Save data validation failed")
            return False

        full_key = self.full_key(key)

        try:
            serialized = json.dumps(data)
        except (TypeError, ValueError) as e:
            logger.error(f"Could not serialize save {full_key}: {e}")
            self._report_error("Save failed: game state could not be serialized")
            return False

        if not self._has_space(full_key, serialized):
            logger.warning("Storage space full - attempting cleanup")
            self.cleanup_old_saves()
            if not self._has_space(full_key, serialized):
                logger.error("Insufficient storage space")
                self._report_error("Not enough storage space to save the game")
                return False

        try:
            self._write(full_key, serialized)
        except PersistenceError as e:
            logger.error(f"Error saving to persistent storage: {e}")
            self._report_error("Save failed")
            return False

        self._update_counters()
        return True

    def _write(self, full_key: str, serialized: str) -> None:
        try:
            self._set(full_key, serialized)
            return
        except QuotaExceededError:
            logger.warning(f"Storage quota exceeded writing {full_key} - attempting cleanup")

        self.cleanup_old_saves()
        self._set(full_key, serialized)

    def _set(self, full_key: str, serialized: str) -> None:
        try:
            self.backend.set_item(full_key, serialized)
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"Backend failed writing {full_key}: {e}") from e

    def create_save_record(
        self,
        kind: SaveKind,
        slot: int | None = None,
        trigger: str | None = None,
    ) -> SaveRecord | None:
        """
        Compose, validate and wrap the current state.

        An invalid snapshot is replaced by the recovery manager's best
        candidate. Returns None only when recovery also fails.
        """
        snapshot = self.composer.compose()
        result = self.recovery.validate_live(snapshot)
        if not result.is_valid:
            logger.error(f"Cannot create save data from invalid state: {result.errors}")
            snapshot = self.recovery.recover(snapshot, timestamp=self.clock.now_ms())
            if snapshot is None:
                logger.error("State recovery failed during save creation")
                return None

        story = snapshot.get("story")
        last_checkpoint = story.get("checkpoint") if isinstance(story, dict) else None

        return SaveRecord(
            version=snapshot.get("version") or self.version,
            timestamp=self.clock.now_ms(),
            snapshot=snapshot,
            metadata=SaveMetadata(
                play_time_ms=self.calculate_play_time(),
                save_ordinal=self.get_save_count() + 1,
                last_checkpoint=last_checkpoint,
                save_kind=kind,
                slot=slot,
                trigger=trigger,
                scene=snapshot.get("scene"),
            ),
        )

    def auto_save(self, trigger: str | None = None) -> bool:
        """Save to the auto slot if auto-save is enabled."""
        if not self.auto_save_enabled:
            logger.debug(f"Auto-save disabled, skipping (trigger: {trigger})")
            return False

        record = self.create_save_record(SaveKind.AUTO, trigger=trigger)
        if record is None:
            logger.warning("Failed to create save data for auto-save")
            return False

        if not self.save(AUTO_SAVE_KEY, record):
            return False

        logger.info(f"Auto-save completed (trigger: {trigger})")
        self._notify("Game auto-saved", kind=SaveKind.AUTO.value, key=AUTO_SAVE_KEY)
        return True

    def manual_save(self, slot: int) -> bool:
        """Save to a numbered manual slot (0-based)."""
        if isinstance(slot, bool) or not isinstance(slot, int) or not 0 <= slot < self.manual_slots:
            logger.error(f"Invalid save slot: {slot}")
            return False

        record = self.create_save_record(SaveKind.MANUAL, slot=slot)
        if record is None:
            logger.warning("Failed to create save data for manual save")
            return False

        key = manual_key(slot)
        if not self.save(key, record):
            return False

        logger.info(f"Manual save completed (slot {slot})")
        self._notify(f"Game saved to slot {slot + 1}", kind=SaveKind.MANUAL.value, key=key)
        return True

    def _on_checkpoint_reached(self, event: GameEvent) -> None:
        self.auto_save(event.data.get("checkpoint_id"))

    def _on_power_unlocked(self, event: GameEvent) -> None:
        self.auto_save("power_unlock")

    # -------------------------------------------------------------------------
    # Load
    # -------------------------------------------------------------------------

    def load(self, key: str) -> dict | None:
        """
        Read a save and return its snapshot.

        Returns None if the key is absent. Unparsable or malformed records
        are quarantined under <key>.corrupted and also return None.
        """
        full_key = self.full_key(key)
        try:
            raw = self._get(full_key)
        except PersistenceError as e:
            logger.error(f"Error loading game: {e}")
            return None

        if raw is None:
            logger.info(f"No save data found for key: {key}")
            return None

        try:
            data = self._decode(full_key, raw)
        except CorruptionError as e:
            logger.error(str(e))
            self._quarantine(full_key, raw)
            return None

        if data["version"] != self.version:
            logger.warning(
                f"Save version mismatch for {key}: expected {self.version}, got {data['version']}"
            )

        return data["snapshot"]

    def _decode(self, full_key: str, raw: str) -> dict:
        try:
            data = json.loads(raw)
        except (TypeError, ValueError) as e:
            raise CorruptionError(full_key, f"unparsable JSON ({e})") from e
        if not is_valid_record(data):
            raise CorruptionError(full_key, "missing version, timestamp or snapshot")
        return data

    def _quarantine(self, full_key: str, raw: str) -> None:
        backup_key = f"{full_key}{CORRUPTED_SUFFIX}"
        try:
            self.backend.set_item(backup_key, raw)
        except Exception as e:
            logger.error(f"Could not create backup of corrupted save {full_key}: {e}")

        try:
            self.backend.remove_item(full_key)
        except Exception as e:
            logger.error(f"Could not remove corrupted save {full_key}: {e}")

        self._report_error(
            "Save file corrupted and has been removed. Starting new game.",
            key=full_key,
        )

    # -------------------------------------------------------------------------
    # Listing & deletion
    # -------------------------------------------------------------------------

    def list_saves(self) -> list[SaveDescriptor]:
        """Existing auto and manual saves, newest first."""
        slots: list[tuple[SaveKind, str, int | None]] = [(SaveKind.AUTO, AUTO_SAVE_KEY, None)]
        slots.extend((SaveKind.MANUAL, manual_key(i), i) for i in range(self.manual_slots))

        saves = []
        for kind, key, slot in slots:
            try:
                raw = self._get(self.full_key(key))
                if raw is None:
                    continue
                data = json.loads(raw)
            except PersistenceError as e:
                logger.error(f"Skipping save {key}: {e}")
                continue
            except ValueError:
                logger.debug(f"Skipping unreadable save: {key}")
                continue
            if not isinstance(data, dict):
                continue

            timestamp = data.get("timestamp")
            metadata = data.get("metadata")
            saves.append(SaveDescriptor(
                kind=kind,
                key=key,
                slot=slot,
                timestamp=int(timestamp) if isinstance(timestamp, (int, float)) and not isinstance(timestamp, bool) else 0,
                metadata=metadata if isinstance(metadata, dict) else {},
            ))

        saves.sort(key=lambda s: s.timestamp, reverse=True)
        return saves

    def delete(self, key: str) -> bool:
        """Delete a save. Returns True if it existed."""
        full_key = self.full_key(key)
        try:
            removed = self.backend.remove_item(full_key)
        except Exception as e:
            logger.error(f"Error deleting save {full_key}: {e}")
            return False
        if removed:
            logger.info(f"Save deleted: {key}")
        return removed

    def delete_all(self) -> int:
        """Remove every key in this namespace. Returns count removed."""
        removed = 0
        for key in self._keys():
            if key.startswith(self._prefix) and self.delete(key):
                removed += 1
        return removed

    # -------------------------------------------------------------------------
    # Notifications & status
    # -------------------------------------------------------------------------

    def _notify(self, message: str, **data) -> None:
        logger.info(f"[SAVE NOTIFICATION] {message}")
        self.bus.publish(EventType.SAVE_NOTIFICATION, message=message, **data)

    def _report_error(self, message: str, **data) -> None:
        self.bus.publish(EventType.SAVE_ERROR, message=message, **data)

    def set_auto_save_enabled(self, enabled: bool) -> None:
        self.auto_save_enabled = enabled
        logger.info(f"Auto-save {'enabled' if enabled else 'disabled'}")

    def status(self) -> dict:
        return {
            "auto_save_enabled": self.auto_save_enabled,
            "available_saves": len(self.list_saves()),
            "storage_usage": self.storage_usage(),
            "storage_budget": self.storage_budget_bytes,
            "save_count": self.get_save_count(),
        }

    def teardown(self) -> None:
        self.bus.unsubscribe(EventType.CHECKPOINT_REACHED, self._on_checkpoint_reached)
        self.bus.unsubscribe(EventType.POWER_UNLOCKED, self._on_power_unlocked)
