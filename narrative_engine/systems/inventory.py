"""
Inventory ledger.

Supplies the inventory section of the aggregate snapshot. Items with the
same id stack unless their type is unique (keys, scrolls).
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError

from ..state.event_bus import EventBus, EventType
from ..state.schema import InventoryItem

logger = logging.getLogger(__name__)

DEFAULT_MAX_CAPACITY = 20

UNIQUE_ITEM_TYPES = frozenset({"key", "scroll"})


class Inventory:
    """Items held by the player, capped at max_capacity distinct entries."""

    def __init__(self, bus: EventBus, max_capacity: int = DEFAULT_MAX_CAPACITY):
        self.bus = bus
        self.max_capacity = max_capacity
        self.items: list[InventoryItem] = []

    def get_item(self, item_id: str) -> InventoryItem | None:
        for item in self.items:
            if item.id == item_id:
                return item
        return None

    def _can_stack(self, existing: InventoryItem, incoming: InventoryItem) -> bool:
        return (
            existing.stackable
            and existing.type == incoming.type
            and existing.type not in UNIQUE_ITEM_TYPES
        )

    def add_item(self, item: InventoryItem | dict) -> bool:
        """
        Add an item, stacking onto an existing entry where allowed.

        Returns False if the item is invalid, the inventory is full, or a
        unique item is already held.
        """
        if isinstance(item, dict):
            try:
                item = InventoryItem.model_validate(item)
            except ValidationError:
                logger.warning("Invalid item provided to add_item")
                return False

        existing = self.get_item(item.id)
        if existing is not None:
            if not self._can_stack(existing, item):
                logger.info(f"Cannot stack {item.name} - item already held")
                return False
            existing.quantity += item.quantity
            logger.debug(f"Stacked {item.name}, new quantity: {existing.quantity}")
        else:
            if len(self.items) >= self.max_capacity:
                logger.warning("Inventory is full")
                return False
            self.items.append(item.model_copy())
            logger.debug(f"Added new item: {item.name}")

        self.bus.publish(EventType.ITEM_ADDED, item_id=item.id, quantity=item.quantity)
        return True

    def remove_item(self, item_id: str, quantity: int = 1) -> bool:
        """Remove quantity of an item; the entry goes when it reaches zero."""
        item = self.get_item(item_id)
        if item is None:
            logger.warning(f"Item {item_id} not found in inventory")
            return False

        if item.quantity <= quantity:
            self.items.remove(item)
        else:
            item.quantity -= quantity

        self.bus.publish(EventType.ITEM_REMOVED, item_id=item_id, quantity=quantity)
        return True

    def has_item(self, item_id: str, quantity: int = 1) -> bool:
        item = self.get_item(item_id)
        return item is not None and item.quantity >= quantity

    def capacity_info(self) -> dict:
        current = len(self.items)
        return {
            "current": current,
            "max": self.max_capacity,
            "available": self.max_capacity - current,
            "is_full": current >= self.max_capacity,
        }

    def snapshot(self) -> dict:
        """Serializable inventory state (matches InventorySection)."""
        return {
            "items": [item.model_dump(mode="json") for item in self.items],
            "max_capacity": self.max_capacity,
        }

    def restore(self, view: dict | None) -> None:
        """Load inventory state. Entries that fail validation are dropped."""
        view = view if isinstance(view, dict) else {}

        capacity = view.get("max_capacity")
        if isinstance(capacity, int) and not isinstance(capacity, bool) and capacity > 0:
            self.max_capacity = capacity

        self.items = []
        raw_items: Any = view.get("items")
        if isinstance(raw_items, list):
            for raw in raw_items:
                try:
                    self.items.append(InventoryItem.model_validate(raw))
                except ValidationError:
                    logger.warning(f"Dropping invalid inventory entry: {raw!r}")

    def reset(self) -> None:
        self.items.clear()
