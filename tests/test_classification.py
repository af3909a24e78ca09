"""Tests for quote classification (value floor, allow-lists, closed rule)."""

from __future__ import annotations

import pytest

from src.quotesync.config import DEFAULT_ACTIVE_STATUSES
from src.quotesync.sync.classification import (
    ClassificationPolicy,
    classify,
    is_sync_eligible,
    passes_value_filter,
)
from src.quotesync.sync.schemas import Quote
from tests.fakes import make_quote_json


@pytest.fixture
def policy() -> ClassificationPolicy:
    return ClassificationPolicy.build(15000, ["Complete", "Approved"], DEFAULT_ACTIVE_STATUSES)


def _quote(**overrides) -> Quote:
    return Quote.model_validate(make_quote_json(**overrides))


class TestEligibility:
    def test_high_value_sent_quote_is_eligible(self, policy):
        """20k, Complete, 'Quote: Sent ' with a trailing space, open -> eligible."""
        quote = _quote(Total={"ExTax": 20000}, Status={"Name": "Quote: Sent "})
        assert is_sync_eligible(quote, policy) is True
        assert classify(quote, policy) == (True, None)

    def test_below_minimum_is_ineligible(self, policy):
        quote = _quote(Total={"ExTax": 12000})
        eligible, reason = classify(quote, policy)
        assert eligible is False
        assert "below minimum" in reason

    def test_closed_won_quote_is_kept(self, policy):
        """A closed quote whose status is terminal still syncs."""
        quote = _quote(IsClosed=True, Status={"Name": "Quote: Won"})
        assert is_sync_eligible(quote, policy) is True

    def test_closed_archived_not_won_is_kept(self, policy):
        quote = _quote(IsClosed=True, Status={"Name": "Quote: Archived - Not Won"})
        assert is_sync_eligible(quote, policy) is True

    def test_closed_non_terminal_is_rejected(self, policy):
        quote = _quote(IsClosed=True, Status={"Name": "Quote: Sent"})
        assert classify(quote, policy) == (False, "quote is closed")

    def test_inactive_stage_is_rejected(self, policy):
        quote = _quote(Stage="Pending")
        eligible, reason = classify(quote, policy)
        assert eligible is False
        assert "stage" in reason

    def test_stage_match_ignores_case(self, policy):
        assert is_sync_eligible(_quote(Stage=" complete "), policy) is True

    def test_status_spacing_does_not_matter(self, policy):
        assert is_sync_eligible(_quote(Status={"Name": "Quote :To Write"}), policy) is True

    def test_unknown_status_is_rejected(self, policy):
        eligible, reason = classify(_quote(Status={"Name": "Quote: Cancelled"}), policy)
        assert eligible is False
        assert "status" in reason

    def test_missing_total_is_rejected(self, policy):
        assert is_sync_eligible(_quote(Total=None), policy) is False

    def test_status_as_plain_string(self, policy):
        """Some endpoints return the status as a bare string."""
        assert is_sync_eligible(_quote(Status="Quote: Sent"), policy) is True


class TestMinimumOverride:
    def test_override_replaces_policy_floor(self, policy):
        quote = _quote(Total={"ExTax": 12000})
        assert is_sync_eligible(quote, policy, minimum_value=10000) is True
        assert is_sync_eligible(quote, policy, minimum_value=13000) is False

    @pytest.mark.parametrize("total", [0, 9999.99, 15000, 15000.01, 42000])
    def test_raising_the_floor_never_admits_more(self, policy, total):
        """For a fixed quote, eligibility is monotone non-increasing in the floor."""
        quote = _quote(Total={"ExTax": total})
        results = [is_sync_eligible(quote, policy, minimum_value=m) for m in (0, 10000, 15000, 20000, 50000)]
        assert results == sorted(results, reverse=True)

    def test_threshold_is_inclusive(self):
        assert passes_value_filter(15000, 15000) is True
        assert passes_value_filter(14999.99, 15000) is False
        assert passes_value_filter(None, 0) is False


def test_policy_from_settings_normalises_lists(sync_env, monkeypatch):
    """Allow-list entries from settings are compared case- and spacing-insensitively."""
    from src.quotesync.config import Settings

    monkeypatch.setenv("ACTIVE_QUOTE_STAGES", '["COMPLETE"]')
    monkeypatch.setenv("ACTIVE_QUOTE_STATUSES", '["quote:sent"]')
    policy = ClassificationPolicy.from_settings(Settings())
    assert policy.active_stages == frozenset({"complete"})
    assert is_sync_eligible(_quote(Status={"Name": "Quote : Sent"}), policy) is True
