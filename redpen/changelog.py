from __future__ import annotations
from typing import Dict, Any, List
import json


def write_json(path: str, payload: Dict[str, Any]) -> None:
    with open(path, "w", encoding="utf-8") as f:
        json.dump(payload, f, ensure_ascii=False, indent=2)


def write_txt(path: str, payload: Dict[str, Any]) -> None:
    with open(path, "w", encoding="utf-8") as f:
        f.write(render_txt(payload))


def render_txt(payload: Dict[str, Any]) -> str:
    lines: List[str] = []
    lines.append(f"Suggestion Report - {payload.get('documentId')} @ {payload.get('version') or '?'}")
    lines.append("")

    reval = payload.get("revalidation")
    if reval:
        lines.append("Revalidation")
        for k in ("checked", "migrated", "skipped", "rejected", "failed"):
            lines.append(f"- {k}: {reval.get(k, 0)}")
        lines.append("")

    shown = payload.get("suggestions", []) or []
    if shown:
        visible = [s for s in shown if s.get("isVisible")]
        invalid = [s for s in shown if not s.get("isValid")]
        lines.append("Suggestions")
        lines.append(f"- total:   {len(shown)}")
        lines.append(f"- visible: {len(visible)}")
        lines.append(f"- stale:   {len(invalid)}")
        lines.append("")
        lines.append("Display order (first 50)")
        for s in shown[:50]:
            flag = "*" if s.get("isVisible") else ("x" if not s.get("isValid") else " ")
            conflicts = f" conflicts={len(s.get('conflictsWith') or [])}" if s.get("conflictsWith") else ""
            lines.append(
                f"{flag} [{s.get('type')}/{s.get('priority')}] {s.get('startOffset')}-{s.get('endOffset')} "
                f"{s.get('textToReplace')!r} -> {s.get('replaceWith')!r} "
                f"(p={s.get('displayPriority', 0):.1f}){conflicts}"
            )
        if len(shown) > 50:
            lines.append(f"... plus {len(shown) - 50} more.")
    return "\n".join(lines)
