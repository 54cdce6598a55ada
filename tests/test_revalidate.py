from redpen.ir import Document, Version
from redpen.propose import create_suggestions
from redpen.revalidate import Revalidator, still_relevant
from redpen.rules.load_rules import EngineConfig
from redpen.stats import InMemoryStatisticsSink
from redpen.store import InMemorySuggestionStore, RetryPolicy, StoreWriteFailure
from redpen.suggestions import Suggestion, SuggestionStatus


def _config():
    config = EngineConfig()
    config.store.retry = RetryPolicy(max_attempts=2, sleep=lambda s: None)
    return config


def _seed(store, body, candidates, version="1.0"):
    doc = Document(id="doc", tenant_id="acme", body=body, version=Version.parse(version))
    results = create_suggestions(doc, candidates, store, _config(), clock=lambda: 1_000)
    return {r.suggestion.text_to_replace: r.suggestion.id for r in results if r.created}


def _status(store, sid):
    return next(Suggestion.from_dict(r) for r in store.records() if r["suggestionId"] == sid)


def _cand(text, offset=-1, stype="grammar"):
    return {"textToReplace": text, "replaceWith": "?", "reason": "r",
            "priority": "medium", "type": stype, "startOffset": offset}


BODY = "We did this in order to improve the outcome. Teams utilize tools daily."


def test_relevant_suggestion_migrates_to_new_version():
    store = InMemorySuggestionStore()
    ids = _seed(store, BODY, [_cand("in order to")])
    new_body = "Intro line. " + BODY
    report = Revalidator(store, _config()).revalidate("doc", "acme", new_body, "1.1")

    s = _status(store, ids["in order to"])
    assert s.status == SuggestionStatus.PENDING
    assert s.content_version == Version(1, 1)
    assert report.migrated == 1 and report.skipped == 0


def test_removed_anchor_text_is_skipped():
    store = InMemorySuggestionStore()
    stats = InMemoryStatisticsSink()
    ids = _seed(store, BODY, [_cand("in order to"), _cand("utilize")])
    new_body = BODY.replace("in order to", "to")

    report = Revalidator(store, _config(), stats=stats).revalidate("doc", "acme", new_body, "1.1")

    assert _status(store, ids["in order to"]).status == SuggestionStatus.SKIPPED
    assert _status(store, ids["utilize"]).status == SuggestionStatus.PENDING
    assert report.skipped_ids == [ids["in order to"]]
    assert stats.snapshot("acme")["skippedSuggestions"] == 1


def test_changed_context_is_skipped_even_if_anchor_remains():
    store = InMemorySuggestionStore()
    ids = _seed(store, BODY, [_cand("utilize")])
    new_body = BODY.replace("Teams utilize", "Engineers utilize")
    Revalidator(store, _config()).revalidate("doc", "acme", new_body, "1.1")
    assert _status(store, ids["utilize"]).status == SuggestionStatus.SKIPPED


def test_still_relevant():
    assert still_relevant("a b c", "b", "", "")
    assert still_relevant("xx a b c yy", "b", " a ", " c ")
    assert not still_relevant("a b c", "", "", "")
    assert not still_relevant("", "b", "", "")
    assert not still_relevant("a c", "b", "", "")


def test_publish_rejects_all_pending():
    store = InMemorySuggestionStore()
    stats = InMemoryStatisticsSink()
    ids = _seed(store, BODY, [_cand("in order to"), _cand("utilize", stype="spelling")])

    report = Revalidator(store, _config(), stats=stats).revalidate(
        "doc", "acme", None, None, is_terminal_publish=True)

    assert report.rejected == 2
    assert {_status(store, i).status for i in ids.values()} == {SuggestionStatus.REJECTED}
    snap = stats.snapshot("acme")
    assert snap["rejectedSuggestions"] == 2
    assert snap["suggestionsByType"]["spelling"]["rejected"] == 1
    assert snap["suggestionsByType"]["grammar"]["rejected"] == 1


def test_resolved_suggestions_are_left_alone():
    store = InMemorySuggestionStore()
    ids = _seed(store, BODY, [_cand("in order to")])
    key = (_status(store, ids["in order to"]).pk, _status(store, ids["in order to"]).sk)
    store.update(key, {"status": "accepted"})

    report = Revalidator(store, _config()).revalidate(
        "doc", "acme", "completely different", "1.1", is_terminal_publish=True)

    assert report.checked == 0 and report.rejected == 0
    assert _status(store, ids["in order to"]).status == SuggestionStatus.ACCEPTED


def test_nothing_pending_is_a_no_op():
    store = InMemorySuggestionStore()
    report = Revalidator(store, _config()).revalidate("doc", "acme", BODY, "2.0")
    assert report.checked == 0
    assert len(store) == 0


class _BrokenPutStore(InMemorySuggestionStore):
    """Reads work; every conditional write of one id fails."""

    def __init__(self, bad_id):
        super().__init__()
        self.bad_id = bad_id
        self.seeding = True

    def put(self, record, must_not_exist=False, expect=None):
        if not self.seeding and record["suggestionId"] == self.bad_id:
            raise StoreWriteFailure("throttled")
        super().put(record, must_not_exist=must_not_exist, expect=expect)


def test_single_write_failure_is_contained():
    doc = Document(id="doc", tenant_id="acme", body=BODY)
    seed = InMemorySuggestionStore()
    results = create_suggestions(doc, [_cand("in order to"), _cand("utilize")], seed, _config())
    bad = results[0].suggestion.id

    store = _BrokenPutStore(bad)
    for r in seed.records():
        store.put(r)
    store.seeding = False

    stats = InMemoryStatisticsSink()
    report = Revalidator(store, _config(), stats=stats).revalidate(
        "doc", "acme", None, None, is_terminal_publish=True)

    assert report.failed == 1 and report.rejected == 1
    assert _status(store, bad).status == SuggestionStatus.PENDING
    assert _status(store, results[1].suggestion.id).status == SuggestionStatus.REJECTED
    assert stats.snapshot("acme")["rejectedSuggestions"] == 1


class _ExplodingSink(InMemoryStatisticsSink):
    def apply(self, tenant_id, delta):
        raise RuntimeError("stats backend down")


def test_stats_failure_does_not_fail_revalidation():
    store = InMemorySuggestionStore()
    ids = _seed(store, BODY, [_cand("utilize")])
    report = Revalidator(store, _config(), stats=_ExplodingSink()).revalidate(
        "doc", "acme", "nothing left", "1.1")
    assert report.skipped == 1
    assert _status(store, ids["utilize"]).status == SuggestionStatus.SKIPPED
