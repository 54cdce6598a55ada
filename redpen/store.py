"""
Storage adapters.

The engine only needs keyed create/read/update/delete plus a prefix query on
the partition key. Records are the camelCase dicts produced by
Suggestion.to_dict(); the in-memory and JSON-file tables here stand in for a
real key-value store.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple
import copy
import json
import logging
import threading
import time

from redpen.errors import DocumentNotEditable, DocumentNotFound, StoreWriteFailure
from redpen.ir import Document

logger = logging.getLogger(__name__)

Key = Tuple[str, str]   # (pk, sk)
Record = Dict[str, Any]


class ConditionalCheckFailed(StoreWriteFailure):
    """A conditional write found the record in the wrong state; never retried."""


@dataclass
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 0.1
    max_delay: float = 2.0
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    def backoff(self, attempt: int) -> float:
        # exponential: base, 2*base, 4*base ... capped
        return min(self.max_delay, self.base_delay * (2 ** attempt))

    def call(self, fn: Callable[[], Any], what: str = "store call") -> Any:
        last_error: Optional[Exception] = None
        for attempt in range(self.max_attempts):
            try:
                return fn()
            except ConditionalCheckFailed:
                raise
            except StoreWriteFailure as e:
                last_error = e
                if attempt + 1 < self.max_attempts:
                    delay = self.backoff(attempt)
                    logger.warning(f"{what} failed ({e}), retry {attempt + 1}/{self.max_attempts - 1} in {delay:.2f}s")
                    self.sleep(delay)
        raise last_error


@dataclass
class Page:
    items: List[Record]
    last_key: Optional[Key] = None


class SuggestionStore:
    """Interface for the keyed suggestion table."""

    def put(self, record: Record, must_not_exist: bool = False,
            expect: Optional[Dict[str, Any]] = None) -> None:
        """Write a full record. `expect` holds field values the stored record must have."""
        raise NotImplementedError

    def put_many(self, records: List[Record], must_not_exist: bool = False,
                 expect: Optional[Dict[str, Any]] = None) -> Dict[int, Exception]:
        """Write records; returns the error for each index that was not written."""
        errors: Dict[int, Exception] = {}
        for i, r in enumerate(records):
            try:
                self.put(r, must_not_exist=must_not_exist, expect=expect)
            except StoreWriteFailure as e:
                errors[i] = e
        return errors

    def get(self, key: Key) -> Optional[Record]:
        raise NotImplementedError

    def update(self, key: Key, fields: Dict[str, Any],
               expect: Optional[Dict[str, Any]] = None) -> Record:
        raise NotImplementedError

    def delete(self, key: Key) -> None:
        raise NotImplementedError

    def query(self, pk: str, sk_prefix: str, limit: int = 100,
              start_key: Optional[Key] = None) -> Page:
        raise NotImplementedError

    def scan_prefix(self, pk: str, sk_prefix: str, page_size: int = 100) -> Iterator[Record]:
        start_key: Optional[Key] = None
        while True:
            page = self.query(pk, sk_prefix, limit=page_size, start_key=start_key)
            yield from page.items
            if page.last_key is None:
                return
            start_key = page.last_key


def _check_expected(key: Key, current: Optional[Record], expect: Optional[Dict[str, Any]]) -> None:
    if not expect:
        return
    if current is None:
        raise ConditionalCheckFailed(f"record does not exist: {key}")
    for field_name, value in expect.items():
        if current.get(field_name) != value:
            raise ConditionalCheckFailed(
                f"{key}: expected {field_name}={value!r}, found {current.get(field_name)!r}")


class InMemorySuggestionStore(SuggestionStore):

    def __init__(self, records: Optional[List[Record]] = None):
        self._lock = threading.RLock()
        self._table: Dict[Key, Record] = {}
        for r in records or []:
            self._table[(r["pk"], r["sk"])] = copy.deepcopy(r)

    def __len__(self) -> int:
        return len(self._table)

    def records(self) -> List[Record]:
        with self._lock:
            return [copy.deepcopy(r) for _, r in sorted(self._table.items())]

    def put(self, record: Record, must_not_exist: bool = False,
            expect: Optional[Dict[str, Any]] = None) -> None:
        key = (record["pk"], record["sk"])
        with self._lock:
            if must_not_exist and key in self._table:
                raise ConditionalCheckFailed(f"record already exists: {key}")
            _check_expected(key, self._table.get(key), expect)
            self._table[key] = copy.deepcopy(record)
            self._changed()

    def get(self, key: Key) -> Optional[Record]:
        with self._lock:
            r = self._table.get(key)
            return copy.deepcopy(r) if r is not None else None

    def update(self, key: Key, fields: Dict[str, Any],
               expect: Optional[Dict[str, Any]] = None) -> Record:
        with self._lock:
            if key not in self._table:
                raise ConditionalCheckFailed(f"record does not exist: {key}")
            _check_expected(key, self._table[key], expect)
            self._table[key].update(copy.deepcopy(fields))
            self._changed()
            return copy.deepcopy(self._table[key])

    def delete(self, key: Key) -> None:
        with self._lock:
            if key not in self._table:
                raise ConditionalCheckFailed(f"record does not exist: {key}")
            del self._table[key]
            self._changed()

    def query(self, pk: str, sk_prefix: str, limit: int = 100,
              start_key: Optional[Key] = None) -> Page:
        with self._lock:
            keys = sorted(k for k in self._table if k[0] == pk and k[1].startswith(sk_prefix))
            if start_key is not None:
                keys = [k for k in keys if k > start_key]
            chunk = keys[:limit]
            last = chunk[-1] if len(keys) > limit else None
            return Page(items=[copy.deepcopy(self._table[k]) for k in chunk], last_key=last)

    def _changed(self) -> None:
        pass


class JsonFileSuggestionStore(InMemorySuggestionStore):
    """In-memory table flushed to a JSON file after every mutation."""

    def __init__(self, path: str):
        self.path = Path(path)
        records = []
        if self.path.exists():
            with open(self.path, "r", encoding="utf-8") as f:
                records = json.load(f) or []
        super().__init__(records)

    def _changed(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump([r for _, r in sorted(self._table.items())], f, ensure_ascii=False, indent=2)


def write_batch(store: SuggestionStore, records: List[Record], policy: RetryPolicy,
                must_not_exist: bool = False,
                expect: Optional[Dict[str, Any]] = None) -> List[Optional[Exception]]:
    """
    Write records with per-item outcomes (None on success).

    The batch write is retried for whatever the store leaves unwritten. A
    failed condition is final for that item. Items still remaining after the
    last batch attempt fall back to individual writes, each with its own
    retries.
    """
    outcomes: Dict[int, Optional[Exception]] = {}
    remaining = list(range(len(records)))

    for attempt in range(policy.max_attempts):
        if not remaining:
            break
        try:
            errors = store.put_many([records[i] for i in remaining],
                                    must_not_exist=must_not_exist, expect=expect)
        except StoreWriteFailure as e:
            logger.warning(f"Batch write of {len(remaining)} item(s) failed: {e}")
            errors = {pos: e for pos in range(len(remaining))}
        still = []
        for pos, i in enumerate(remaining):
            err = errors.get(pos)
            if err is None:
                outcomes[i] = None
            elif isinstance(err, ConditionalCheckFailed):
                outcomes[i] = err
            else:
                still.append(i)
        remaining = still
        if remaining and attempt + 1 < policy.max_attempts:
            policy.sleep(policy.backoff(attempt))

    if remaining:
        logger.info(f"Falling back to individual writes for {len(remaining)} item(s)")
    for i in remaining:
        r = records[i]
        try:
            policy.call(lambda r=r: store.put(r, must_not_exist=must_not_exist, expect=expect),
                        what=f"put {r.get('sk')}")
            outcomes[i] = None
        except StoreWriteFailure as e:
            outcomes[i] = e

    return [outcomes.get(i) for i in range(len(records))]


class DocumentStore:
    def get(self, tenant_id: str, document_id: str) -> Optional[Document]:
        raise NotImplementedError

    def put(self, document: Document) -> None:
        raise NotImplementedError


class InMemoryDocumentStore(DocumentStore):

    def __init__(self, documents: Optional[List[Document]] = None):
        self._docs: Dict[Key, Document] = {}
        for d in documents or []:
            self.put(d)

    def get(self, tenant_id: str, document_id: str) -> Optional[Document]:
        return self._docs.get((tenant_id, document_id))

    def put(self, document: Document) -> None:
        self._docs[(document.tenant_id, document.id)] = document


class JsonFileDocumentStore(InMemoryDocumentStore):

    def __init__(self, path: str):
        self.path = Path(path)
        docs = []
        if self.path.exists():
            with open(self.path, "r", encoding="utf-8") as f:
                docs = [Document.from_dict(d) for d in json.load(f) or []]
        super().__init__(docs)

    def put(self, document: Document) -> None:
        super().put(document)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump([d.to_dict() for _, d in sorted(self._docs.items())], f, ensure_ascii=False, indent=2)


def load_document(store: DocumentStore, tenant_id: str, document_id: str,
                  editable: bool = True) -> Document:
    doc = store.get(tenant_id, document_id)
    if doc is None:
        raise DocumentNotFound(f"Content with the id '{document_id}' could not be found.")
    if editable and doc.status.is_terminal:
        raise DocumentNotEditable(
            f"The content is in a '{doc.status.value}' status and cannot be modified.")
    return doc
