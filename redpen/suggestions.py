from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Any, Optional
import uuid

from redpen.ir import Version


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class SuggestionType(str, Enum):
    LLM = "llm"
    BRAND = "brand"
    FACT = "fact"
    GRAMMAR = "grammar"
    SPELLING = "spelling"


class SuggestionStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    SKIPPED = "skipped"
    DELETED = "deleted"


SUGGESTION_PREFIX = "suggestion#"


def partition_key(tenant_id: str, document_id: str) -> str:
    return f"{tenant_id}#{document_id}"


def sort_key(suggestion_id: str) -> str:
    return f"{SUGGESTION_PREFIX}{suggestion_id}"


def can_transition(current: SuggestionStatus, new: SuggestionStatus) -> bool:
    # pending is the only non-terminal state
    return current == SuggestionStatus.PENDING and new != SuggestionStatus.PENDING


@dataclass
class Candidate:
    """An edit proposed by a reviewer agent, before anchoring."""
    text_to_replace: str
    replace_with: str
    reason: str
    priority: Priority
    type: SuggestionType
    start_offset: int = -1       # advisory, -1 when the agent is unsure
    end_offset: int = -1

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Candidate":
        text = d.get("textToReplace") or ""
        reason = d.get("reason") or ""
        if not text:
            raise ValueError("textToReplace must not be empty")
        if not reason:
            raise ValueError("reason must not be empty")
        return cls(
            text_to_replace=text,
            replace_with=d.get("replaceWith", "") or "",
            reason=reason,
            priority=Priority(d["priority"]),
            type=SuggestionType(d["type"]),
            start_offset=int(d.get("startOffset", -1)),
            end_offset=int(d.get("endOffset", -1)),
        )


@dataclass
class Suggestion:
    id: str
    tenant_id: str
    document_id: str
    content_version: Version     # contentVersionAtCreation, bumped while pending
    start_offset: int
    end_offset: int
    text_to_replace: str
    replace_with: str
    reason: str
    priority: Priority
    type: SuggestionType
    anchor_text: str = ""
    context_before: str = ""
    context_after: str = ""
    context_hash: str = ""
    status: SuggestionStatus = SuggestionStatus.PENDING
    created_at: int = 0          # epoch ms
    updated_at: Optional[int] = None
    expires_at: Optional[int] = None  # epoch seconds
    extra: Dict[str, Any] = field(default_factory=dict)

    @staticmethod
    def new_id() -> str:
        return str(uuid.uuid4())

    @property
    def pk(self) -> str:
        return partition_key(self.tenant_id, self.document_id)

    @property
    def sk(self) -> str:
        return sort_key(self.id)

    @property
    def is_pending(self) -> bool:
        return self.status == SuggestionStatus.PENDING

    def to_dict(self) -> Dict[str, Any]:
        d = {
            "pk": self.pk,
            "sk": self.sk,
            "suggestionId": self.id,
            "tenantId": self.tenant_id,
            "documentId": self.document_id,
            "contentId": self.document_id,
            "contentVersionAtCreation": str(self.content_version),
            "contentVersion": str(self.content_version),
            "startOffset": self.start_offset,
            "endOffset": self.end_offset,
            "textToReplace": self.text_to_replace,
            "anchorText": self.anchor_text,
            "contextBefore": self.context_before,
            "contextAfter": self.context_after,
            "contextHash": self.context_hash,
            "replaceWith": self.replace_with,
            "reason": self.reason,
            "priority": self.priority.value,
            "type": self.type.value,
            "status": self.status.value,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "expiresAt": self.expires_at,
            "ttl": self.expires_at,
        }
        d.update(self.extra)
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Suggestion":
        known = {
            "pk", "sk", "suggestionId", "tenantId", "documentId", "contentId",
            "contentVersionAtCreation", "contentVersion", "expiresAt", "ttl",
            "startOffset", "endOffset", "textToReplace", "anchorText",
            "contextBefore", "contextAfter", "contextHash", "replaceWith",
            "reason", "priority", "type", "status", "createdAt", "updatedAt",
        }
        sid = d.get("suggestionId") or str(d.get("sk", "")).replace(SUGGESTION_PREFIX, "", 1)
        tenant_id, document_id = d.get("tenantId"), d.get("documentId") or d.get("contentId")
        if (tenant_id is None or document_id is None) and "#" in str(d.get("pk", "")):
            tenant_id, document_id = str(d["pk"]).split("#", 1)
        return cls(
            id=sid,
            tenant_id=tenant_id or "",
            document_id=document_id or "",
            content_version=Version.parse(d.get("contentVersionAtCreation", d.get("contentVersion"))),
            start_offset=int(d.get("startOffset", 0)),
            end_offset=int(d.get("endOffset", 0)),
            text_to_replace=d.get("textToReplace", ""),
            replace_with=d.get("replaceWith", "") or "",
            reason=d.get("reason", ""),
            priority=Priority(d.get("priority", "medium")),
            type=SuggestionType(d.get("type") or "llm"),
            anchor_text=d.get("anchorText") or d.get("textToReplace", ""),
            context_before=d.get("contextBefore") or "",
            context_after=d.get("contextAfter") or "",
            context_hash=d.get("contextHash") or "",
            status=SuggestionStatus(d.get("status") or "pending"),
            created_at=int(d.get("createdAt") or 0),
            updated_at=d.get("updatedAt"),
            expires_at=d.get("expiresAt", d.get("ttl")),
            extra={k: v for k, v in d.items() if k not in known},
        )
