from __future__ import annotations
import argparse
import json
import logging
import os
import sys
from pathlib import Path
from datetime import datetime, timezone

from redpen.adapters.docx_adapter import load_body, write_body
from redpen.anchor import Span, build_anchor, resolve, verify_span
from redpen.changelog import write_json, write_txt
from redpen.conflicts import apply_suggestion
from redpen.errors import EngineError, RangeInvalid, TextMismatch
from redpen.ir import Document, DocumentStatus
from redpen.rules.load_rules import load_config
from redpen.service import SuggestionService
from redpen.stats import InMemoryStatisticsSink
from redpen.store import JsonFileDocumentStore, JsonFileSuggestionStore, load_document
from redpen.suggestions import SuggestionStatus, partition_key, sort_key, Suggestion

DEFAULT_DATA_DIR = "./redpen_data"


def _service(args) -> SuggestionService:
    data = Path(args.data_dir)
    config = load_config(args.config)
    return SuggestionService(
        JsonFileSuggestionStore(str(data / "suggestions.json")),
        JsonFileDocumentStore(str(data / "documents.json")),
        config,
        stats=InMemoryStatisticsSink(),
    )


def _print(payload) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False))


def cmd_resolve(args) -> None:
    config = load_config(args.config)
    body = load_body(args.body)
    anchor = build_anchor(body, args.text, args.hint,
                          tolerance=config.anchor.offset_tolerance,
                          window=config.anchor.context_window)
    _print({
        "startOffset": anchor.span.start,
        "endOffset": anchor.span.end,
        "anchorText": anchor.anchor_text,
        "contextBefore": anchor.context_before,
        "contextAfter": anchor.context_after,
        "contextHash": anchor.context_hash,
    })


def cmd_add_document(args) -> None:
    svc = _service(args)
    doc = Document(id=args.document_id, tenant_id=args.tenant, body=load_body(args.body),
                   status=DocumentStatus(args.status))
    svc.documents.put(doc)
    _print(doc.to_dict() | {"body": f"<{len(doc.body)} chars>"})


def cmd_create(args) -> None:
    svc = _service(args)
    with open(args.candidates, "r", encoding="utf-8") as f:
        data = json.load(f)
    candidates = data.get("suggestions", []) if isinstance(data, dict) else data
    created = svc.create(args.document_id, args.tenant, candidates)
    _print({"created": created, "message": f"{created} suggestions added."})


def cmd_display(args) -> None:
    svc = _service(args)
    shown = svc.resolve_for_display(args.document_id, args.tenant, version=args.version)
    payload = {
        "documentId": args.document_id,
        "version": args.version,
        "suggestions": [d.to_dict() for d in shown],
    }
    if args.report:
        _write_report(args.report, args.document_id, payload)
    _print(payload)


def _change_body(svc: SuggestionService, args, new_body: str) -> dict:
    doc = load_document(svc.documents, args.tenant, args.document_id)
    if new_body == doc.body:
        return {"documentId": doc.id, "version": str(doc.version), "bodyChanged": False}
    doc.edit(new_body)
    svc.documents.put(doc)
    report = svc.revalidate_report(doc.id, args.tenant, doc.body, doc.version)
    return {"bodyChanged": True, "revalidation": report.to_dict() if report else None,
            "documentId": doc.id, "version": str(doc.version)}


def cmd_edit(args) -> None:
    svc = _service(args)
    _print(_change_body(svc, args, load_body(args.body)))


def cmd_publish(args) -> None:
    svc = _service(args)
    doc = load_document(svc.documents, args.tenant, args.document_id)
    doc.status = DocumentStatus.PUBLISHED
    svc.documents.put(doc)
    report = svc.revalidate_report(doc.id, args.tenant, None, None, is_terminal_publish=True)
    _print({"documentId": doc.id, "status": doc.status.value,
            "revalidation": report.to_dict() if report else None})


def _locate(body: str, s: Suggestion, tolerance: int) -> Suggestion:
    """Point s at its text in the current body; stored offsets may predate later edits."""
    span = Span(s.start_offset, s.end_offset)
    try:
        verify_span(body, span, s.text_to_replace)
    except (RangeInvalid, TextMismatch):
        span = resolve(body, s.text_to_replace, s.start_offset, tolerance=tolerance)
    s.start_offset, s.end_offset = span.start, span.end
    return s


def cmd_status(args) -> None:
    svc = _service(args)
    key = (partition_key(args.tenant, args.document_id), sort_key(args.suggestion_id))
    record = svc.suggestions.get(key)
    new_body = None
    if args.apply and args.new_status == SuggestionStatus.ACCEPTED.value and record is not None:
        # locate before the status changes, so a vanished anchor leaves the suggestion pending
        doc = load_document(svc.documents, args.tenant, args.document_id)
        target = _locate(doc.body, Suggestion.from_dict(record), svc.config.anchor.offset_tolerance)
        new_body = apply_suggestion(doc.body, target)
    svc.update_status(args.document_id, args.tenant, args.suggestion_id, args.new_status)
    out = {"suggestionId": args.suggestion_id, "status": args.new_status}
    if new_body is not None:
        out.update(_change_body(svc, args, new_body))
        if args.output:
            write_body(args.output, new_body)
            out["output"] = args.output
    _print(out)


def cmd_prune(args) -> None:
    svc = _service(args)
    _print({"pruned": svc.prune_expired(args.document_id, args.tenant)})


def _write_report(out_dir: str, document_id: str, payload: dict) -> None:
    ts = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%SZ")
    bundle = Path(out_dir) / f"{document_id}_{ts}"
    bundle.mkdir(parents=True, exist_ok=True)
    write_json(str(bundle / "suggestions.json"), payload)
    write_txt(str(bundle / "suggestions.txt"), payload)
    print(f"Report saved: {bundle}", file=sys.stderr)


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="redpen",
        description="Suggestion anchoring and conflict resolution engine",
    )
    ap.add_argument("--data-dir", default=os.environ.get("REDPEN_DATA_DIR", DEFAULT_DATA_DIR),
                    help="Directory holding documents.json and suggestions.json")
    ap.add_argument("--config", default=None, help="Engine rule pack (YAML); defaults to $REDPEN_CONFIG or the bundled pack")
    ap.add_argument("--tenant", default="default", help="Tenant id")
    ap.add_argument("-v", "--verbose", action="store_true", help="Verbose logging")
    sub = ap.add_subparsers(dest="command", required=True)

    p = sub.add_parser("resolve", help="Resolve a text reference to exact offsets")
    p.add_argument("body", help="Document body (.txt, .md or .docx)")
    p.add_argument("text", help="Exact, case-sensitive text to anchor")
    p.add_argument("--hint", type=int, default=-1, help="Approximate start offset (-1 if unknown)")
    p.set_defaults(func=cmd_resolve)

    p = sub.add_parser("add-document", help="Register a document body")
    p.add_argument("document_id")
    p.add_argument("body", help="Document body (.txt, .md or .docx)")
    p.add_argument("--status", default="draft", choices=[s.value for s in DocumentStatus])
    p.set_defaults(func=cmd_add_document)

    p = sub.add_parser("create", help="Anchor and store a batch of candidate edits")
    p.add_argument("document_id")
    p.add_argument("candidates", help="JSON list (or {'suggestions': [...]}) of candidate edits")
    p.set_defaults(func=cmd_create)

    p = sub.add_parser("display", help="Resolve pending suggestions for display")
    p.add_argument("document_id")
    p.add_argument("--version", default=None, help="Only suggestions at this content version")
    p.add_argument("--report", default=None, help="Write a JSON + text report bundle to this directory")
    p.set_defaults(func=cmd_display)

    p = sub.add_parser("edit", help="Replace the document body and revalidate suggestions")
    p.add_argument("document_id")
    p.add_argument("body", help="New document body (.txt, .md or .docx)")
    p.set_defaults(func=cmd_edit)

    p = sub.add_parser("publish", help="Publish the document; rejects all pending suggestions")
    p.add_argument("document_id")
    p.set_defaults(func=cmd_publish)

    p = sub.add_parser("status", help="Accept, reject or delete a suggestion")
    p.add_argument("document_id")
    p.add_argument("suggestion_id")
    p.add_argument("new_status", choices=[s.value for s in SuggestionStatus if s != SuggestionStatus.PENDING])
    p.add_argument("--apply", action="store_true", help="When accepting, apply the edit to the document body")
    p.add_argument("--output", default=None, help="With --apply, also write the new body here (.txt or .docx)")
    p.set_defaults(func=cmd_status)

    p = sub.add_parser("prune", help="Delete pending suggestions past their retention")
    p.add_argument("document_id")
    p.set_defaults(func=cmd_prune)
    return ap


def main(argv=None):
    ap = build_parser()
    args = ap.parse_args(argv)

    if args.verbose:
        logging.basicConfig(level=logging.INFO, format="%(message)s")
    else:
        logging.basicConfig(level=logging.WARNING)

    try:
        args.func(args)
    except EngineError as e:
        ap.exit(1, f"redpen: error: {type(e).__name__}: {e}\n")


if __name__ == "__main__":
    main()
