from __future__ import annotations
from pathlib import Path
from typing import List
from docx import Document

TEXT_SUFFIXES = {".txt", ".md", ".markdown", ""}


def _paragraphs(docx_path: str) -> List[str]:
    doc = Document(docx_path)
    return [p.text for p in doc.paragraphs]


def load_body(path: str) -> str:
    """Document body as plain text; .docx paragraphs are joined with newlines."""
    p = Path(path)
    if p.suffix.lower() == ".docx":
        return "\n".join(_paragraphs(path))
    with open(path, "r", encoding="utf-8") as f:
        return f.read()


def write_body(path: str, body: str, template_docx: str | None = None) -> None:
    """
    Write a body back out. For .docx, paragraphs of the template are updated in
    place when the paragraph count still matches, so styles survive; otherwise
    a fresh document is built.
    """
    p = Path(path)
    if p.suffix.lower() != ".docx":
        with open(path, "w", encoding="utf-8") as f:
            f.write(body)
        return

    lines = body.split("\n")
    if template_docx:
        doc = Document(template_docx)
        if len(doc.paragraphs) == len(lines):
            for para, text in zip(doc.paragraphs, lines):
                if para.text != text:
                    para.text = text
            doc.save(path)
            return

    doc = Document()
    for text in lines:
        doc.add_paragraph(text)
    doc.save(path)
