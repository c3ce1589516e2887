"""
Debug inspection of aggregate snapshots.

Development helpers, surfaced through NarrativeEngine.get_debug_info().
"""

import json
from typing import Any

from rich.markup import escape
from rich.table import Table

from ..systems.validation import StateValidator

KNOWN_SECTIONS = ("story", "power", "inventory", "actor", "scene")


def inspect(snapshot: dict, validator: StateValidator, now_ms: int = 0) -> dict:
    """
    Summarize a snapshot.

    Returns:
        Dict with timestamp, validation result, serialized size in bytes
        and the known sections present
    """
    try:
        size = len(json.dumps(snapshot, default=str).encode("utf-8"))
    except (TypeError, ValueError):
        size = -1

    sections = (
        [key for key in snapshot if key in KNOWN_SECTIONS and snapshot[key] is not None]
        if isinstance(snapshot, dict)
        else []
    )

    return {
        "timestamp": now_ms,
        "validation": validator.validate(snapshot),
        "size": size,
        "sections": sections,
    }


def compare(old: Any, new: Any, path: str = "") -> list[dict]:
    """
    Differences between two snapshots.

    Nested mappings are walked; anything else (lists included) is compared
    as a whole value. Each difference is a dict with path, type ("added",
    "removed" or "changed") and old_value/new_value as applicable.
    """
    differences: list[dict] = []

    if not (isinstance(old, dict) and isinstance(new, dict)):
        if old != new:
            differences.append({
                "path": path,
                "type": "changed",
                "old_value": old,
                "new_value": new,
            })
        return differences

    for key in old:
        current = f"{path}.{key}" if path else str(key)
        if key not in new:
            differences.append({"path": current, "type": "removed", "old_value": old[key]})
        else:
            differences.extend(compare(old[key], new[key], current))

    for key in new:
        if key not in old:
            current = f"{path}.{key}" if path else str(key)
            differences.append({"path": current, "type": "added", "new_value": new[key]})

    return differences


def differences_table(differences: list[dict], title: str = "State Differences") -> Table:
    """Render compare() output for a terminal."""
    table = Table(title=title)
    table.add_column("Path")
    table.add_column("Change", style="dim")
    table.add_column("Old")
    table.add_column("New")

    for diff in differences:
        table.add_row(
            escape(diff["path"]),
            diff["type"],
            escape(repr(diff["old_value"])) if "old_value" in diff else "",
            escape(repr(diff["new_value"])) if "new_value" in diff else "",
        )
    return table


def inspection_table(inspection: dict) -> Table:
    """Render inspect() output for a terminal."""
    validation = inspection["validation"]

    table = Table(title="Snapshot Inspection", box=None)
    table.add_column("Field", style="dim")
    table.add_column("Value")

    status = "[green]valid[/green]" if validation.is_valid else "[red]invalid[/red]"
    table.add_row("Status", status)
    table.add_row("Size", f"{inspection['size']} bytes")
    table.add_row("Sections", ", ".join(inspection["sections"]) or "(none)")
    for error in validation.errors:
        table.add_row("Error", f"[red]{escape(error)}[/red]")
    for warning in validation.warnings:
        table.add_row("Warning", f"[yellow]{escape(warning)}[/yellow]")
    return table
