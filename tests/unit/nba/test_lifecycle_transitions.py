"""
Unit Tests for Campaign Lifecycle Rules

Tests the transition table, status parsing and the expiry read rule.
"""

import pytest
from datetime import timedelta

import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../.."))

from tests.contracts.nba.data_contract import NbaStatus, NbaTestDataFactory
from microservices.nba_service.lifecycle import (
    ACTIVATION_STATUSES,
    ALLOWED_TRANSITIONS,
    can_transition,
    effective_status,
    parse_status,
)
from microservices.nba_service.protocols import InvalidTransitionError, NbaValidationError


class TestTransitionTable:
    """Tests for the allowed transition table"""

    @pytest.mark.parametrize("current,target", [
        (NbaStatus.DRAFT, NbaStatus.SUBMITTED),
        (NbaStatus.SUBMITTED, NbaStatus.IN_LEGAL_REVIEW),
        (NbaStatus.IN_LEGAL_REVIEW, NbaStatus.APPROVED),
        (NbaStatus.IN_LEGAL_REVIEW, NbaStatus.REJECTED),
        (NbaStatus.REJECTED, NbaStatus.DRAFT),
        (NbaStatus.APPROVED, NbaStatus.SCHEDULED),
        (NbaStatus.IN_TESTING, NbaStatus.APPROVED),
        (NbaStatus.SCHEDULED, NbaStatus.PUBLISHING),
        (NbaStatus.PUBLISHING, NbaStatus.PUBLISHED),
        (NbaStatus.PUBLISHED, NbaStatus.EXPIRED),
        (NbaStatus.EXPIRED, NbaStatus.COMPLETED),
        (NbaStatus.CANCELLED, NbaStatus.ARCHIVED),
    ])
    def test_allowed(self, current, target):
        assert can_transition(current, target)

    @pytest.mark.parametrize("current,target", [
        (NbaStatus.DRAFT, NbaStatus.PUBLISHED),
        (NbaStatus.DRAFT, NbaStatus.APPROVED),
        (NbaStatus.SUBMITTED, NbaStatus.APPROVED),
        (NbaStatus.APPROVED, NbaStatus.PUBLISHED),
        (NbaStatus.PUBLISHED, NbaStatus.DRAFT),
        (NbaStatus.COMPLETED, NbaStatus.PUBLISHED),
    ])
    def test_rejected(self, current, target):
        assert not can_transition(current, target)

    def test_archived_is_terminal(self):
        assert ALLOWED_TRANSITIONS[NbaStatus.ARCHIVED] == frozenset()
        for status in NbaStatus:
            assert not can_transition(NbaStatus.ARCHIVED, status)

    def test_every_status_has_an_entry(self):
        assert set(ALLOWED_TRANSITIONS) == set(NbaStatus)

    def test_activation_statuses(self):
        assert ACTIVATION_STATUSES == {NbaStatus.SCHEDULED, NbaStatus.PUBLISHING, NbaStatus.PUBLISHED}


class TestParseStatus:
    """Status strings from callers"""

    @pytest.mark.parametrize("raw,expected", [
        ("In Legal Review", NbaStatus.IN_LEGAL_REVIEW),
        ("InLegalReview", NbaStatus.IN_LEGAL_REVIEW),
        ("in_legal_review", NbaStatus.IN_LEGAL_REVIEW),
        ("published", NbaStatus.PUBLISHED),
        (NbaStatus.DRAFT, NbaStatus.DRAFT),
    ])
    def test_aliases(self, raw, expected):
        assert parse_status(raw) == expected

    def test_unknown_status(self):
        with pytest.raises(NbaValidationError) as exc_info:
            parse_status("Live")
        assert exc_info.value.field == "status"


class TestEffectiveStatus:
    """Campaigns past their end date read as Expired"""

    def test_published_past_end_reads_expired(self, fixed_now):
        nba = NbaTestDataFactory.make_nba(
            status=NbaStatus.PUBLISHED,
            start_date=fixed_now - timedelta(days=30),
            end_date=fixed_now - timedelta(seconds=1),
        )
        assert effective_status(nba, fixed_now) == NbaStatus.EXPIRED

    def test_published_inside_window(self, fixed_now):
        nba = NbaTestDataFactory.make_nba(
            status=NbaStatus.PUBLISHED,
            start_date=fixed_now - timedelta(days=1),
            end_date=fixed_now + timedelta(days=1),
        )
        assert effective_status(nba, fixed_now) == NbaStatus.PUBLISHED

    def test_draft_never_expires(self, fixed_now):
        nba = NbaTestDataFactory.make_nba(
            status=NbaStatus.DRAFT,
            start_date=fixed_now - timedelta(days=30),
            end_date=fixed_now - timedelta(days=1),
        )
        assert effective_status(nba, fixed_now) == NbaStatus.DRAFT

    def test_naive_now_is_read_as_utc(self, fixed_now):
        nba = NbaTestDataFactory.make_nba(
            status=NbaStatus.PUBLISHED,
            start_date=fixed_now - timedelta(days=30),
            end_date=fixed_now - timedelta(seconds=1),
        )
        assert effective_status(nba, fixed_now.replace(tzinfo=None)) == NbaStatus.EXPIRED


class TestInvalidTransitionError:

    def test_message_names_both_statuses(self):
        error = InvalidTransitionError(NbaStatus.DRAFT, NbaStatus.PUBLISHED)
        assert "Draft" in str(error)
        assert "Published" in str(error)
