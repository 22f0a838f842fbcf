"""
Tests for snapshot-vs-current change detection.
"""

from simplify.models import Strategy
from simplify.processing.change_detector import (
    create_snapshot,
    detect_changes,
    get_change_summary,
)


class TestDetectChanges:
    def test_empty_snapshot_forces_full(self):
        current = {"a": "1", "b": "2"}

        changes = detect_changes(current, {})

        assert changes.strategy == Strategy.FULL
        assert changes.fields == ["a", "b"]

    def test_small_change_is_diff(self):
        snapshot = {"a": "1", "b": "2", "c": "3", "d": "4"}
        current = dict(snapshot, b="changed")

        changes = detect_changes(current, snapshot)

        assert changes.strategy == Strategy.DIFF
        assert changes.fields == ["b"]
        assert changes.change_percentage == 25.0
        assert changes.total_fields == 4
        assert changes.changed_fields == 1

    def test_exactly_half_changed_stays_diff(self):
        snapshot = {"a": "1", "b": "2"}
        current = {"a": "1", "b": "x"}

        changes = detect_changes(current, snapshot)

        assert changes.strategy == Strategy.DIFF
        assert changes.change_percentage == 50.0

    def test_more_than_half_changed_is_full_with_all_current_fields(self):
        snapshot = {"a": "1", "b": "2", "c": "3"}
        current = {"a": "x", "b": "y", "c": "3"}

        changes = detect_changes(current, snapshot)

        assert changes.strategy == Strategy.FULL
        assert changes.fields == ["a", "b", "c"]
        assert changes.change_percentage == 66.67

    def test_union_of_keys_counts_removed_and_added_fields(self):
        snapshot = {"a": "1", "b": "2", "gone": "x", "d": "4"}
        current = {"a": "1", "b": "2", "d": "4", "new": "y"}

        changes = detect_changes(current, snapshot)

        assert changes.total_fields == 5
        assert changes.changed_fields == 2
        assert changes.fields == ["new", "gone"]

    def test_comparison_is_strict_on_type(self):
        changes = detect_changes({"a": 1, "b": "x", "c": "y"}, {"a": "1", "b": "x", "c": "y"})

        assert changes.fields == ["a"]

    def test_reformatted_json_is_a_change_for_plain_fields(self):
        snapshot = {"blocks": '[{"a": 1}]', "x": "1", "y": "2"}
        current = {"blocks": '[{"a":1}]', "x": "1", "y": "2"}

        changes = detect_changes(current, snapshot)

        assert changes.fields == ["blocks"]

    def test_reformatted_json_is_unchanged_for_structured_fields(self):
        snapshot = {"blocks": '[{"a": 1}]', "x": "1", "y": "2"}
        current = {"blocks": '[\n  {"a":1}\n]', "x": "1", "y": "2"}

        changes = detect_changes(current, snapshot, structured_fields=["blocks"])

        assert changes.strategy == Strategy.DIFF
        assert changes.fields == []

    def test_structured_field_with_real_change_is_detected(self):
        snapshot = {"blocks": '[{"a": 1}]', "x": "1", "y": "2"}
        current = {"blocks": '[{"a": 2}]', "x": "1", "y": "2"}

        changes = detect_changes(current, snapshot, structured_fields=["blocks"])

        assert changes.fields == ["blocks"]


class TestSnapshotAndSummary:
    def test_snapshot_is_a_copy(self):
        content = {"a": "1"}
        snapshot = create_snapshot(content)
        content["a"] = "2"

        assert snapshot == {"a": "1"}

    def test_summary_mentions_strategy(self):
        diff = detect_changes({"a": "1", "b": "x", "c": "3"}, {"a": "1", "b": "2", "c": "3"})
        full = detect_changes({"a": "1"}, {})

        assert get_change_summary(diff).startswith("Differential translation: 1 of 3")
        assert get_change_summary(full).startswith("Full translation")
