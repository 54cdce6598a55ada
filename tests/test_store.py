import json

import pytest

from redpen.errors import DocumentNotEditable, DocumentNotFound, StoreWriteFailure
from redpen.ir import Document, DocumentStatus
from redpen.store import (
    ConditionalCheckFailed,
    InMemoryDocumentStore,
    InMemorySuggestionStore,
    JsonFileDocumentStore,
    JsonFileSuggestionStore,
    RetryPolicy,
    load_document,
    write_batch,
)


def _rec(i, pk="acme#doc", status="pending"):
    return {"pk": pk, "sk": f"suggestion#{i:03d}", "suggestionId": f"{i:03d}", "status": status}


class _Sleeps(list):
    def __call__(self, seconds):
        self.append(seconds)


def test_backoff_is_exponential_and_capped():
    policy = RetryPolicy(max_attempts=5, base_delay=0.1, max_delay=0.3)
    assert [policy.backoff(a) for a in range(4)] == [0.1, 0.2, 0.3, 0.3]


def test_retry_gives_up_after_max_attempts():
    sleeps = _Sleeps()
    policy = RetryPolicy(max_attempts=3, sleep=sleeps)
    calls = []

    def failing():
        calls.append(1)
        raise StoreWriteFailure("throttled")

    with pytest.raises(StoreWriteFailure):
        policy.call(failing)
    assert len(calls) == 3
    assert len(sleeps) == 2


def test_conditional_failure_is_not_retried():
    policy = RetryPolicy(max_attempts=3, sleep=_Sleeps())
    store = InMemorySuggestionStore([_rec(1)])
    calls = []

    def put():
        calls.append(1)
        store.put(_rec(1), must_not_exist=True)

    with pytest.raises(ConditionalCheckFailed):
        policy.call(put)
    assert calls == [1]


def test_conditional_put_and_update():
    store = InMemorySuggestionStore([_rec(1)])
    with pytest.raises(ConditionalCheckFailed):
        store.update(("acme#doc", "suggestion#001"), {"status": "rejected"}, expect={"status": "accepted"})
    updated = store.update(("acme#doc", "suggestion#001"), {"status": "rejected"}, expect={"status": "pending"})
    assert updated["status"] == "rejected"
    with pytest.raises(ConditionalCheckFailed):
        store.update(("acme#doc", "suggestion#999"), {"status": "rejected"})
    with pytest.raises(ConditionalCheckFailed):
        store.delete(("acme#doc", "suggestion#999"))


def test_query_pages_and_scan_prefix():
    store = InMemorySuggestionStore([_rec(i) for i in range(7)] + [_rec(1, pk="acme#other")])
    page = store.query("acme#doc", "suggestion#", limit=3)
    assert [r["suggestionId"] for r in page.items] == ["000", "001", "002"]
    assert page.last_key == ("acme#doc", "suggestion#002")
    rest = store.query("acme#doc", "suggestion#", limit=10, start_key=page.last_key)
    assert len(rest.items) == 4 and rest.last_key is None
    assert len(list(store.scan_prefix("acme#doc", "suggestion#", page_size=2))) == 7


def test_records_are_copied():
    store = InMemorySuggestionStore()
    rec = _rec(1)
    store.put(rec)
    rec["status"] = "accepted"
    assert store.get(("acme#doc", "suggestion#001"))["status"] == "pending"


class _Throttling(InMemorySuggestionStore):
    """Batch writes leave every other item unprocessed for the first `fails` calls."""

    def __init__(self, fails):
        super().__init__()
        self.fails = fails
        self.batch_calls = 0

    def put_many(self, records, must_not_exist=False, expect=None):
        self.batch_calls += 1
        errors = {}
        for i, r in enumerate(records):
            if self.batch_calls <= self.fails and i % 2 == 1:
                errors[i] = StoreWriteFailure("unprocessed")
            else:
                self.put(r, must_not_exist=must_not_exist, expect=expect)
        return errors


def test_write_batch_retries_unprocessed_items():
    sleeps = _Sleeps()
    store = _Throttling(fails=1)
    outcomes = write_batch(store, [_rec(i) for i in range(4)], RetryPolicy(max_attempts=3, sleep=sleeps))
    assert outcomes == [None] * 4
    assert store.batch_calls == 2
    assert len(store) == 4
    assert sleeps == [0.1]


def test_write_batch_falls_back_to_single_writes():
    store = _Throttling(fails=99)
    outcomes = write_batch(store, [_rec(i) for i in range(4)], RetryPolicy(max_attempts=2, sleep=_Sleeps()))
    assert outcomes == [None] * 4
    assert store.batch_calls == 2
    assert len(store) == 4


def test_write_batch_reports_failed_conditions_per_item():
    store = InMemorySuggestionStore([_rec(0), _rec(1, status="accepted")])
    outcomes = write_batch(
        store,
        [_rec(0, status="rejected"), _rec(1, status="rejected")],
        RetryPolicy(sleep=_Sleeps()),
        expect={"status": "pending"},
    )
    assert outcomes[0] is None
    assert isinstance(outcomes[1], ConditionalCheckFailed)
    assert store.get(("acme#doc", "suggestion#001"))["status"] == "accepted"


def test_json_file_store_persists(tmp_path):
    path = tmp_path / "data" / "suggestions.json"
    store = JsonFileSuggestionStore(str(path))
    store.put(_rec(1))
    store.put(_rec(2))
    store.delete(("acme#doc", "suggestion#002"))

    on_disk = json.loads(path.read_text(encoding="utf-8"))
    assert [r["sk"] for r in on_disk] == ["suggestion#001"]
    assert len(JsonFileSuggestionStore(str(path))) == 1


def test_document_store_round_trip(tmp_path):
    path = tmp_path / "documents.json"
    JsonFileDocumentStore(str(path)).put(Document(id="doc", tenant_id="acme", body="Hello"))
    doc = JsonFileDocumentStore(str(path)).get("acme", "doc")
    assert doc.body == "Hello" and str(doc.version) == "1.0"


def test_load_document_checks():
    docs = InMemoryDocumentStore([
        Document(id="live", tenant_id="acme", body="x"),
        Document(id="gone", tenant_id="acme", body="x", status=DocumentStatus.ABANDONED),
    ])
    assert load_document(docs, "acme", "live").id == "live"
    with pytest.raises(DocumentNotFound):
        load_document(docs, "acme", "missing")
    with pytest.raises(DocumentNotFound):
        load_document(docs, "other-tenant", "live")
    with pytest.raises(DocumentNotEditable):
        load_document(docs, "acme", "gone")
    assert load_document(docs, "acme", "gone", editable=False).id == "gone"
