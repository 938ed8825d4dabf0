"""
Merges single-document PDFs into one combined report with PyMuPDF.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Sequence

import fitz  # PyMuPDF

logger = logging.getLogger(__name__)


class PdfMergeError(RuntimeError):
    """An input PDF could not be read or the merged file could not be written."""


def merge_pdfs(sources: Sequence[Path], destination: Path) -> Path:
    """
    Append the pages of *sources*, in order, into *destination*.

    Raises:
        PdfMergeError: empty input, unreadable input, or write failure.
    """
    if not sources:
        raise PdfMergeError("No PDF files to merge")

    destination = Path(destination)
    merged = fitz.open()
    try:
        for source in sources:
            try:
                part = fitz.open(str(source))
            except Exception as exc:
                raise PdfMergeError(f"Cannot open PDF {Path(source).name}: {exc}") from exc
            try:
                if part.needs_pass:
                    raise PdfMergeError(f"PDF {Path(source).name} is password-protected")
                if part.page_count == 0:
                    raise PdfMergeError(f"PDF {Path(source).name} has no pages")
                merged.insert_pdf(part)
            finally:
                part.close()

        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            merged.save(str(destination), garbage=3, deflate=True)
        except Exception as exc:
            raise PdfMergeError(f"Cannot write merged PDF {destination.name}: {exc}") from exc
    finally:
        merged.close()

    logger.info("Merged %d PDFs into %s", len(sources), destination.name)
    return destination
