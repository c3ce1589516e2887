"""
Pydantic models for narrative engine state.

Definitions (story events, checkpoints, powers) are loaded once and frozen.
Snapshots and save records are projections rebuilt on demand; they are
plain JSON-shaped dicts at rest and validated through the section models
below when they need to be trusted.
"""

import re
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    PrivateAttr,
    field_validator,
    model_validator,
)

STATE_VERSION = "1.0.0"
DEFAULT_CHECKPOINT = "game_start"


# -----------------------------------------------------------------------------
# Enums
# -----------------------------------------------------------------------------

class EventKind(str, Enum):
    DIALOGUE = "dialogue"
    CUTSCENE = "cutscene"
    SYSTEMIC = "systemic"


class PowerType(str, Enum):
    ACTIVE = "active"    # Runs for a duration, then deactivates
    TOGGLE = "toggle"    # Flips on/off each activation
    PASSIVE = "passive"  # Always on once unlocked


class SaveKind(str, Enum):
    AUTO = "auto"
    MANUAL = "manual"


# -----------------------------------------------------------------------------
# Tag normalization
# -----------------------------------------------------------------------------

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def normalize_tag(tag: Any) -> str:
    """Convert a camelCase or snake_case tag to snake_case ("powerUnlocked" -> "power_unlocked")."""
    return _CAMEL_BOUNDARY.sub("_", str(tag)).lower()


def _normalize_tagged(raw: Any, known: dict[str, str]) -> Any:
    """
    Rewrite a raw tagged dict so pydantic can discriminate on "type".

    Args:
        raw: The raw condition/effect (dict or already-built model)
        known: Known tag -> name of the field a shorthand value fills

    Unknown tags become {"type": "unknown"} so evaluation can fail closed
    instead of rejecting the whole definition file.
    """
    if not isinstance(raw, dict):
        return raw

    data = dict(raw)
    tag = data.get("type")

    # Shorthand form: {"unlockPower": "lantern"}
    if tag is None:
        for key in list(data):
            candidate = normalize_tag(key)
            if candidate in known:
                tag = candidate
                data[known[candidate]] = data.pop(key)
                break

    normalized = normalize_tag(tag) if tag is not None else ""
    if normalized not in known:
        return {"type": "unknown", "tag": "" if tag is None else str(tag), "raw": raw}

    data["type"] = normalized
    return data


def _require_number(value: Any) -> Any:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"expected a number, got {type(value).__name__}")
    return value


def _require_int(value: Any) -> Any:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"expected an integer, got {type(value).__name__}")
    return value


Number = Annotated[float, BeforeValidator(_require_number)]
Count = Annotated[int, BeforeValidator(_require_int)]


# -----------------------------------------------------------------------------
# Conditions
# -----------------------------------------------------------------------------

class FlagCondition(BaseModel):
    """Satisfied when a story flag equals the expected value."""
    model_config = ConfigDict(frozen=True)

    type: Literal["flag"] = "flag"
    flag: str
    value: Any = None


class EventCompletedCondition(BaseModel):
    """Satisfied once the referenced event has been triggered."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    type: Literal["event_completed"] = "event_completed"
    event_id: str = Field(validation_alias=AliasChoices("event_id", "eventId"))


class PowerUnlockedCondition(BaseModel):
    """Satisfied once the story has unlocked the referenced power."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    type: Literal["power_unlocked"] = "power_unlocked"
    power_id: str = Field(validation_alias=AliasChoices("power_id", "powerId"))


class CheckpointReachedCondition(BaseModel):
    """Satisfied while the referenced checkpoint is current."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    type: Literal["checkpoint_reached"] = "checkpoint_reached"
    checkpoint_id: str = Field(validation_alias=AliasChoices("checkpoint_id", "checkpointId"))


class UnknownCondition(BaseModel):
    """A condition whose tag is not recognized. Never satisfied."""
    model_config = ConfigDict(frozen=True)

    type: Literal["unknown"] = "unknown"
    tag: str = ""
    raw: dict[str, Any] = Field(default_factory=dict)


Condition = Annotated[
    Union[
        FlagCondition,
        EventCompletedCondition,
        PowerUnlockedCondition,
        CheckpointReachedCondition,
        UnknownCondition,
    ],
    Field(discriminator="type"),
]

CONDITION_TAGS = {
    "flag": "flag",
    "event_completed": "event_id",
    "power_unlocked": "power_id",
    "checkpoint_reached": "checkpoint_id",
}


def normalize_condition(raw: Any) -> Any:
    return _normalize_tagged(raw, CONDITION_TAGS)


# -----------------------------------------------------------------------------
# Effects
# -----------------------------------------------------------------------------

class SetFlagEffect(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["set_flag"] = "set_flag"
    flag: str
    value: Any = None


class UnlockPowerEffect(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    type: Literal["unlock_power"] = "unlock_power"
    power_id: str = Field(validation_alias=AliasChoices("power_id", "powerId"))


class SetCheckpointEffect(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    type: Literal["set_checkpoint"] = "set_checkpoint"
    checkpoint_id: str = Field(validation_alias=AliasChoices("checkpoint_id", "checkpointId"))


class UnknownEffect(BaseModel):
    """An effect whose tag is not recognized. Skipped when applied."""
    model_config = ConfigDict(frozen=True)

    type: Literal["unknown"] = "unknown"
    tag: str = ""
    raw: dict[str, Any] = Field(default_factory=dict)


Effect = Annotated[
    Union[SetFlagEffect, UnlockPowerEffect, SetCheckpointEffect, UnknownEffect],
    Field(discriminator="type"),
]

EFFECT_TAGS = {
    "set_flag": "flag",
    "unlock_power": "power_id",
    "set_checkpoint": "checkpoint_id",
}


def normalize_effect(raw: Any) -> Any:
    return _normalize_tagged(raw, EFFECT_TAGS)


# -----------------------------------------------------------------------------
# Story definitions
# -----------------------------------------------------------------------------

class StoryEvent(BaseModel):
    """
    A narrative beat: trigger conditions, effects and an opaque payload.

    The content dict is forwarded untouched to whatever presents the event
    (dialogue text, speaker, next event hints...).
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    kind: str = Field(
        default=EventKind.DIALOGUE.value,
        validation_alias=AliasChoices("kind", "type"),
    )
    triggers: tuple[Condition, ...] = ()
    effects: tuple[Effect, ...] = ()
    content: dict[str, Any] = Field(default_factory=dict)

    @field_validator("triggers", mode="before")
    @classmethod
    def _normalize_triggers(cls, value: Any) -> Any:
        if value is None:
            return ()
        if isinstance(value, (list, tuple)):
            return [normalize_condition(c) for c in value]
        return value

    @field_validator("effects", mode="before")
    @classmethod
    def _normalize_effects(cls, value: Any) -> Any:
        if value is None:
            return ()
        if isinstance(value, (list, tuple)):
            return [normalize_effect(e) for e in value]
        return value


class CheckpointDefinition(BaseModel):
    """Named narrative waypoint."""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    description: str = ""


class StoryDefinitions(BaseModel):
    """The full story catalog: events plus checkpoints keyed by id."""
    model_config = ConfigDict(frozen=True)

    events: tuple[StoryEvent, ...] = ()
    checkpoints: dict[str, CheckpointDefinition] = Field(default_factory=dict)

    _index: dict[str, StoryEvent] = PrivateAttr(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _fill_checkpoint_ids(cls, data: Any) -> Any:
        if isinstance(data, dict) and isinstance(data.get("checkpoints"), dict):
            checkpoints = {}
            for key, value in data["checkpoints"].items():
                if isinstance(value, dict) and "id" not in value:
                    value = {**value, "id": key}
                checkpoints[key] = value
            data = {**data, "checkpoints": checkpoints}
        return data

    def model_post_init(self, __context) -> None:
        index: dict[str, StoryEvent] = {}
        for event in self.events:
            # First definition wins for duplicated ids
            index.setdefault(event.id, event)
        self._index = index

    def get_event(self, event_id: str) -> StoryEvent | None:
        return self._index.get(event_id)


def fallback_definitions() -> StoryDefinitions:
    """Built-in minimal story used when real definitions fail to load."""
    return StoryDefinitions(
        events=(
            StoryEvent(
                id=DEFAULT_CHECKPOINT,
                kind=EventKind.DIALOGUE.value,
                content={
                    "text": "Welcome to your adventure!",
                    "speaker": "Narrator",
                    "next_event": None,
                },
            ),
        ),
        checkpoints={
            DEFAULT_CHECKPOINT: CheckpointDefinition(
                id=DEFAULT_CHECKPOINT,
                name="Beginning",
                description="The start of your journey",
            ),
        },
    )


# -----------------------------------------------------------------------------
# Capability definitions
# -----------------------------------------------------------------------------

class PowerEffect(BaseModel):
    """One effect of a power. Extra keys (factor, strength...) are kept."""
    model_config = ConfigDict(frozen=True, extra="allow")

    type: str
    duration: int | None = None  # ms; -1 = indefinite, None = instantaneous


class PowerDefinition(BaseModel):
    """Static definition of an unlockable ability."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    name: str
    description: str = ""
    type: PowerType = PowerType.ACTIVE
    cooldown_ms: int = Field(
        default=0,
        validation_alias=AliasChoices("cooldown_ms", "cooldownMs", "cooldown"),
    )
    range: int | None = None
    effects: tuple[PowerEffect, ...] = ()
    unlock_condition: str = Field(
        default="",
        validation_alias=AliasChoices("unlock_condition", "unlockConditionTag", "unlockCondition"),
    )
    activation_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("activation_key", "activationKey"),
    )


# -----------------------------------------------------------------------------
# Inventory
# -----------------------------------------------------------------------------

class InventoryItem(BaseModel):
    """An item held by the player."""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    description: str = ""
    type: str = "misc"
    quantity: int = 1
    usable: bool = False
    story_relevant: bool = Field(
        default=False,
        validation_alias=AliasChoices("story_relevant", "storyRelevant"),
    )
    rarity: str = "common"
    stackable: bool = True


# -----------------------------------------------------------------------------
# Snapshot sections
# -----------------------------------------------------------------------------

class Position(BaseModel):
    x: Number
    y: Number


class StorySection(BaseModel):
    """Story runtime state as stored in a snapshot."""
    checkpoint: str
    completed_event_ids: list[str]
    flags: dict[str, Any] = Field(default_factory=dict)
    unlocked_power_ids: list[str] = Field(default_factory=list)


class PowerSection(BaseModel):
    """Capability runtime state. Active ids are informational only."""
    unlocked_power_ids: list[str]
    active_power_ids: list[str] = Field(default_factory=list)
    cooldowns: dict[str, int] = Field(default_factory=dict)  # power_id -> expiry (epoch ms)


class InventorySection(BaseModel):
    items: list[dict[str, Any]]
    max_capacity: Count


class ActorSection(BaseModel):
    position: Position
    health: Number
    facing: str = "down"


class AggregateSnapshot(BaseModel):
    """
    Composed view of every subsystem at one instant.

    Sections are optional so that a subsystem that has not initialized
    yet simply leaves its section out.
    """
    version: str = STATE_VERSION
    timestamp: int = 0
    story: StorySection | None = None
    power: PowerSection | None = None
    inventory: InventorySection | None = None
    actor: ActorSection | None = None
    scene: str | None = None


# -----------------------------------------------------------------------------
# Save records
# -----------------------------------------------------------------------------

class SaveMetadata(BaseModel):
    play_time_ms: int = 0
    save_ordinal: int = 0
    last_checkpoint: str | None = None
    save_kind: SaveKind = SaveKind.MANUAL
    slot: int | None = None
    trigger: str | None = None
    scene: str | None = None


class SaveRecord(BaseModel):
    """Durable save: a snapshot plus bookkeeping metadata."""
    version: str
    timestamp: int
    snapshot: dict[str, Any]
    metadata: SaveMetadata = Field(default_factory=SaveMetadata)


class SaveDescriptor(BaseModel):
    """Listing entry for an existing save slot."""
    kind: SaveKind
    key: str
    slot: int | None = None
    timestamp: int = 0
    metadata: dict[str, Any] = Field(default_factory=dict)


# -----------------------------------------------------------------------------
# Results
# -----------------------------------------------------------------------------

class LoadResult(BaseModel):
    """Outcome of loading definitions. A failure still leaves usable fallbacks."""
    ok: bool
    error: str | None = None
    fallback_used: bool = False


class ValidationResult(BaseModel):
    is_valid: bool = True
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class StoryProgress(BaseModel):
    current_checkpoint: str
    completed_count: int = 0
    total_count: int = 0
    percentage: float = 0.0
    unlocked_power_count: int = 0
