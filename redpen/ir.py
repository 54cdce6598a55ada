from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Union


class DocumentStatus(str, Enum):
    DRAFT = "draft"
    REVIEW = "review"
    FINALIZED = "finalized"
    PUBLISHED = "published"
    ABANDONED = "abandoned"

    @property
    def is_terminal(self) -> bool:
        return self in (DocumentStatus.PUBLISHED, DocumentStatus.ABANDONED)


@dataclass(frozen=True, order=True)
class Version:
    """major.minor content version; minor bumps on edit, major on review."""
    major: int = 1
    minor: int = 0

    @classmethod
    def parse(cls, value: Union["Version", str, int, None]) -> "Version":
        if isinstance(value, Version):
            return value
        if isinstance(value, bool) or value is None:
            return cls(1, 0)
        if isinstance(value, int):
            # legacy integer versions
            return cls(value, 0)
        if isinstance(value, str):
            parts = value.split(".")
            major = _int_or(parts[0], 1) or 1
            minor = _int_or(parts[1], 0) if len(parts) > 1 else 0
            return cls(major, minor)
        return cls(1, 0)

    def bump_minor(self) -> "Version":
        return Version(self.major, self.minor + 1)

    def bump_major(self) -> "Version":
        return Version(self.major + 1, 0)

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}"


def _int_or(text: str, default: int) -> int:
    try:
        return int(text.strip())
    except ValueError:
        return default


INITIAL_VERSION = Version(1, 0)


def compare_versions(a, b) -> int:
    va, vb = Version.parse(a), Version.parse(b)
    if va == vb:
        return 0
    return -1 if va < vb else 1


@dataclass
class Document:
    id: str
    tenant_id: str
    body: str
    version: Version = INITIAL_VERSION
    status: DocumentStatus = DocumentStatus.DRAFT

    def edit(self, new_body: str) -> "Document":
        """Apply a content edit; bumps the minor version."""
        self.body = new_body
        self.version = self.version.bump_minor()
        return self

    def enter_review(self) -> "Document":
        self.status = DocumentStatus.REVIEW
        self.version = self.version.bump_major()
        return self

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenantId": self.tenant_id,
            "body": self.body,
            "version": str(self.version),
            "status": self.status.value,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "Document":
        return cls(
            id=d["id"],
            tenant_id=d["tenantId"],
            body=d.get("body", ""),
            version=Version.parse(d.get("version")),
            status=DocumentStatus(d.get("status", "draft")),
        )
