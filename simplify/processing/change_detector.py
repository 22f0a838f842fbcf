"""
Snapshot-vs-current change detection.

Decides whether a job re-translates every field (``full``) or only the
fields that changed since the snapshot taken at enqueue time (``diff``).
Above ``FULL_TRANSLATION_THRESHOLD`` percent changed, one full pass is
cheaper than a field-by-field diff.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional

from ..models.job import Strategy

FULL_TRANSLATION_THRESHOLD = 50.0


@dataclass
class ChangeSet:
    strategy: Strategy
    fields: List[str] = field(default_factory=list)
    change_percentage: float = 0.0
    total_fields: int = 0
    changed_fields: int = 0


def create_snapshot(content: Mapping[str, Any]) -> Dict[str, Any]:
    """Flat copy of all field values at enqueue time."""
    return {key: value for key, value in content.items()}


def _structurally_equal(a: Any, b: Any) -> bool:
    if not isinstance(a, str) or not isinstance(b, str):
        return False
    try:
        return json.loads(a) == json.loads(b)
    except ValueError:
        return False


def _has_changed(current: Any, previous: Any, structured: bool) -> bool:
    if current == previous and type(current) is type(previous):
        return False
    if structured and _structurally_equal(current, previous):
        return False
    return True


def detect_changes(
    current: Mapping[str, Any],
    snapshot: Mapping[str, Any],
    structured_fields: Optional[Iterable[str]] = None,
) -> ChangeSet:
    """
    Compare current field values against a snapshot.

    Args:
        current: Current source-language field values
        snapshot: Values captured when the job was enqueued
        structured_fields: Field names holding JSON documents; these compare
            by decoded value so reformatting alone is not a change

    Returns:
        ChangeSet; for ``full`` the fields are all current keys, for ``diff``
        only the changed ones
    """
    structured = set(structured_fields or ())
    all_fields: List[str] = list(current.keys())
    all_fields += [key for key in snapshot.keys() if key not in current]

    changed = [
        name
        for name in all_fields
        if _has_changed(current.get(name), snapshot.get(name), name in structured)
    ]

    percentage = (len(changed) / len(all_fields) * 100) if all_fields else 0.0
    if percentage > FULL_TRANSLATION_THRESHOLD or not snapshot:
        strategy = Strategy.FULL
        fields = list(current.keys())
    else:
        strategy = Strategy.DIFF
        fields = changed

    return ChangeSet(
        strategy=strategy,
        fields=fields,
        change_percentage=round(percentage, 2),
        total_fields=len(all_fields),
        changed_fields=len(changed),
    )


def get_change_summary(changes: ChangeSet) -> str:
    if changes.strategy == Strategy.FULL:
        return (
            f"Full translation: {changes.total_fields} fields "
            f"({changes.change_percentage:.1f}% changed)"
        )
    return (
        f"Differential translation: {changes.changed_fields} of {changes.total_fields} "
        f"fields changed ({changes.change_percentage:.1f}%)"
    )
