"""
Snapshot validator.

Pure function: validate(snapshot) -> ValidationResult.
No state mutation, no side effects, no globals.

Each section of an aggregate snapshot has a registered check. A missing
section is only a warning (the subsystem may not exist yet); a section
that is present but malformed makes the whole snapshot invalid.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

from pydantic import BaseModel, ValidationError

from ..state.schema import (
    STATE_VERSION,
    ActorSection,
    InventorySection,
    PowerSection,
    StorySection,
    ValidationResult,
)

logger = logging.getLogger(__name__)

# A check returns True when the section is well formed. Raising is also
# treated as a failure and reported with the exception message.
SectionCheck = Callable[[Any], bool]

SECTION_MODELS: dict[str, type[BaseModel]] = {
    "story": StorySection,
    "power": PowerSection,
    "inventory": InventorySection,
    "actor": ActorSection,
}


def model_check(model: type[BaseModel]) -> SectionCheck:
    """Build a section check backed by a pydantic model."""

    def check(section: Any) -> bool:
        if not isinstance(section, dict):
            return False
        try:
            model.model_validate(section)
        except ValidationError:
            return False
        return True

    check.__name__ = f"check_{model.__name__}"
    return check


class StateValidator:
    """
    Validates aggregate snapshots section by section.

    Checks run in registration order, so error lists are stable. This
    class holds only its check table; snapshots come in as parameters.
    """

    def __init__(self, version: str = STATE_VERSION, defaults: bool = True):
        self.version = version
        self._checks: dict[str, SectionCheck] = {}
        if defaults:
            for section, model in SECTION_MODELS.items():
                self.register(section, model_check(model))

    def register(self, section: str, check: SectionCheck) -> None:
        """Register (or replace) the check for a snapshot section."""
        self._checks[section] = check

    def unregister(self, section: str) -> bool:
        return self._checks.pop(section, None) is not None

    @property
    def sections(self) -> list[str]:
        return list(self._checks)

    def validate(self, snapshot: Any) -> ValidationResult:
        """
        Validate a snapshot.

        Returns:
            ValidationResult with is_valid, errors and warnings
        """
        result = ValidationResult()

        if not isinstance(snapshot, dict):
            result.is_valid = False
            result.errors.append("Snapshot is not a mapping")
            return result

        for section, check in self._checks.items():
            value = snapshot.get(section)
            if value is None:
                result.warnings.append(f"{section} state is missing")
                continue

            try:
                ok = check(value)
            except Exception as e:
                result.is_valid = False
                result.errors.append(f"{section} state validation error: {e}")
                continue

            if not ok:
                result.is_valid = False
                result.errors.append(f"{section} state validation failed")

        version = snapshot.get("version")
        if version and version != self.version:
            result.warnings.append(
                f"State version mismatch: expected {self.version}, got {version}"
            )

        if not result.is_valid:
            logger.debug(f"Snapshot invalid: {result.errors}")

        return result
