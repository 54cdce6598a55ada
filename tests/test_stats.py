import pytest

from redpen.errors import StatisticsUpdateFailure
from redpen.stats import (
    InMemoryStatisticsSink,
    StatisticsDelta,
    StatusChange,
    aggregate,
    push_changes,
)
from redpen.suggestions import SuggestionStatus, SuggestionType


def test_aggregate_counts_per_status_and_type():
    delta = aggregate([
        StatusChange(SuggestionType.GRAMMAR, SuggestionStatus.ACCEPTED),
        StatusChange(SuggestionType.GRAMMAR, SuggestionStatus.ACCEPTED),
        StatusChange(SuggestionType.FACT, SuggestionStatus.REJECTED),
        StatusChange(SuggestionType.LLM, SuggestionStatus.SKIPPED),
        StatusChange(SuggestionType.LLM, SuggestionStatus.DELETED),
    ])
    assert delta.totals == {
        "acceptedSuggestions": 2,
        "rejectedSuggestions": 1,
        "skippedSuggestions": 1,
        "deletedSuggestions": 1,
    }
    # skipped/deleted are not tracked per type
    assert delta.by_type == {"grammar": {"accepted": 2}, "fact": {"rejected": 1}}


def test_aggregate_reverses_old_status():
    delta = aggregate([StatusChange(SuggestionType.BRAND, SuggestionStatus.DELETED, SuggestionStatus.ACCEPTED)])
    assert delta.totals == {"deletedSuggestions": 1, "acceptedSuggestions": -1}
    assert delta.by_type == {"brand": {"accepted": -1}}


def test_sink_applies_deltas():
    sink = InMemoryStatisticsSink()
    sink.record_created("acme", SuggestionType.SPELLING)
    assert push_changes(sink, "acme", [StatusChange(SuggestionType.SPELLING, SuggestionStatus.ACCEPTED)])
    snap = sink.snapshot("acme")
    assert snap["totalSuggestions"] == 1
    assert snap["acceptedSuggestions"] == 1
    assert snap["suggestionsByType"]["spelling"] == {"total": 1, "accepted": 1, "rejected": 0}
    assert sink.snapshot("other")["totalSuggestions"] == 0


def test_unknown_counter_fails_the_sink_but_not_the_push():
    sink = InMemoryStatisticsSink()
    with pytest.raises(StatisticsUpdateFailure):
        sink.apply("acme", StatisticsDelta(totals={"mysteryCounter": 1}))

    class _Broken(InMemoryStatisticsSink):
        def apply(self, tenant_id, delta):
            raise StatisticsUpdateFailure("throttled")

    assert push_changes(_Broken(), "acme", [StatusChange(SuggestionType.LLM, SuggestionStatus.SKIPPED)]) is False
    assert push_changes(sink, "acme", []) is True
