"""
Unit Tests for Structured Audit Diffs

Tests leaf-level change detection between before/after documents.
"""

from datetime import datetime, timezone

import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../.."))

from tests.contracts.nba.data_contract import NbaStatus, NbaTestDataFactory
from microservices.nba_service.audit_trail import compute_diff, to_document


def by_path(changes):
    return {c.path: c for c in changes}


class TestComputeDiff:
    """Tests for compute_diff"""

    def test_identical_documents(self):
        assert compute_diff({"a": 1, "b": [1, 2]}, {"a": 1, "b": [1, 2]}) == []

    def test_changed_scalar(self):
        changes = compute_diff({"priority": 5}, {"priority": 1})
        assert len(changes) == 1
        assert changes[0].path == "priority"
        assert changes[0].kind == "changed"
        assert changes[0].before == 5
        assert changes[0].after == 1

    def test_added_and_removed_keys(self):
        changes = by_path(compute_diff({"a": 1}, {"b": 2}))
        assert changes["a"].kind == "removed"
        assert changes["a"].before == 1
        assert changes["b"].kind == "added"
        assert changes["b"].after == 2

    def test_nested_path(self):
        before = {"rules": {"op": "AND", "rules": [{"field": "plan", "value": "basic"}]}}
        after = {"rules": {"op": "AND", "rules": [{"field": "plan", "value": "unlimited"}]}}
        changes = compute_diff(before, after)
        assert [c.path for c in changes] == ["rules.rules[0].value"]

    def test_list_growth(self):
        changes = compute_diff({"flags": ["A"]}, {"flags": ["A", "B"]})
        assert len(changes) == 1
        assert changes[0].path == "flags[1]"
        assert changes[0].kind == "added"

    def test_create_has_only_additions(self):
        changes = compute_diff(None, {"name": "X", "priority": 3})
        assert {c.kind for c in changes} == {"added"}
        assert {c.path for c in changes} == {"name", "priority"}

    def test_delete_has_only_removals(self):
        changes = compute_diff({"name": "X"}, None)
        assert [(c.path, c.kind) for c in changes] == [("name", "removed")]

    def test_root_scalars(self):
        changes = compute_diff(1, 2)
        assert changes[0].path == "value"

    def test_paths_are_sorted(self):
        changes = compute_diff({"b": 1, "a": 1}, {"b": 2, "a": 2})
        assert [c.path for c in changes] == ["a", "b"]

    def test_models_are_compared_as_documents(self):
        before = NbaTestDataFactory.make_nba(nba_id="nba_x", priority=5)
        after = before.model_copy(update={"priority": 2, "status": NbaStatus.SUBMITTED})
        changes = by_path(compute_diff(before, after))
        assert set(changes) == {"priority", "status"}
        assert changes["status"].before == "Draft"
        assert changes["status"].after == "Submitted"


class TestToDocument:

    def test_enums_and_datetimes(self):
        when = datetime(2025, 1, 2, 3, 4, tzinfo=timezone.utc)
        doc = to_document({"status": NbaStatus.PUBLISHED, "at": when, "ids": ("a", "b")})
        assert doc == {"status": "Published", "at": when.isoformat(), "ids": ["a", "b"]}
