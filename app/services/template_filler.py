"""
Template filling for DOCX and XLSX assessment templates.

Placeholders have the form ``{{field_key}}``. Word splits the visible text of
a paragraph into styled runs at arbitrary points, so a placeholder such as
``{{NAME}}`` may be stored as ``"{{NA"`` + ``"ME}}"``. The DOCX path therefore
works on the concatenated paragraph text and re-emits runs afterwards,
keeping every original character's formatting and giving inserted text the
formatting of the run in which its placeholder started. Pictures and other
non-text content split a paragraph into independent groups of runs
and stay where they are.
"""
from __future__ import annotations

import copy
import logging
import re
from pathlib import Path
from typing import Dict, Hashable, Iterable, List, Optional, Sequence, Tuple, TypeVar

from docx import Document as DocxDocument
from docx.oxml.ns import qn
from docx.table import Table
from docx.text.paragraph import Paragraph
from docx.text.run import Run
from openpyxl import load_workbook

logger = logging.getLogger(__name__)

S = TypeVar("S", bound=Hashable)

PLACEHOLDER_OPEN = "{{"
PLACEHOLDER_CLOSE = "}}"


class UnsupportedTemplateError(ValueError):
    """Raised for template files whose extension has no filler."""


# ---------------------------------------------------------------------------
# Pure substitution helpers
# ---------------------------------------------------------------------------

def _placeholder_pattern(data: Dict[str, str]) -> Optional[re.Pattern]:
    if not data:
        return None
    # Longest keys first so "{{A_B}}" is never shadowed by a shorter alternative
    keys = sorted(data, key=lambda k: (-len(k), k))
    alternation = "|".join(re.escape(k) for k in keys)
    return re.compile(re.escape(PLACEHOLDER_OPEN) + f"({alternation})" + re.escape(PLACEHOLDER_CLOSE))


def substitute_text(text: str, data: Dict[str, str]) -> Tuple[str, int]:
    """
    Replace every known ``{{key}}`` in *text* in a single left-to-right pass.

    Unknown placeholders are left as they are and replacement values are
    not rescanned. Returns the new text and the number of substitutions.
    """
    pattern = _placeholder_pattern(data)
    if pattern is None or PLACEHOLDER_OPEN not in text:
        return text, 0
    return pattern.subn(lambda m: data[m.group(1)], text)


def substitute_runs(
    runs: Sequence[Tuple[str, S]],
    data: Dict[str, str],
) -> Optional[List[Tuple[str, S]]]:
    """
    Substitute placeholders across a paragraph's styled runs.

    *runs* is a sequence of ``(text, style)`` pairs. The texts are joined and
    a style table with one entry per character is built. Characters outside
    placeholders keep their own entry; every character of an inserted value
    takes the entry of the placeholder's first character. Adjacent pieces
    with equal style are merged, so the result is the minimal run list.

    Returns ``None`` when the paragraph contains no known placeholder, so
    callers can leave it untouched.
    """
    pattern = _placeholder_pattern(data)
    if pattern is None:
        return None

    text = "".join(run_text for run_text, _ in runs)
    if PLACEHOLDER_OPEN not in text:
        return None

    char_styles: List[S] = []
    for run_text, style in runs:
        char_styles.extend([style] * len(run_text))

    pieces: List[Tuple[str, S]] = []
    cursor = 0
    found = False
    for match in pattern.finditer(text):
        found = True
        start, end = match.span()
        for index in range(cursor, start):
            pieces.append((text[index], char_styles[index]))
        replacement = data[match.group(1)]
        if replacement:
            pieces.append((replacement, char_styles[start]))
        cursor = end

    if not found:
        return None

    for index in range(cursor, len(text)):
        pieces.append((text[index], char_styles[index]))

    return _merge_pieces(pieces)


_PLAIN_RUN_CHILDREN = {
    qn("w:rPr"), qn("w:t"), qn("w:tab"), qn("w:br"), qn("w:cr"), qn("w:lastRenderedPageBreak"),
}

# Zero-width markers Word drops between runs (spell-check, bookmarks); a
# placeholder may straddle them.
_TRANSPARENT_MARKERS = {qn("w:proofErr"), qn("w:bookmarkStart"), qn("w:bookmarkEnd")}


def _is_plain_text_run(element) -> bool:
    if element.tag != qn("w:r"):
        return False
    return all(child.tag in _PLAIN_RUN_CHILDREN for child in element)


def _text_run_blocks(paragraph: Paragraph) -> List[List[Run]]:
    """
    Split a paragraph into maximal groups of adjacent plain-text runs.

    Pictures, field characters, footnote references, hyperlinks and any
    other sibling element end a group, so rewriting one group never moves
    content that sits between groups.
    """
    blocks: List[List[Run]] = []
    current: List[Run] = []
    for child in paragraph._p.iterchildren():
        if _is_plain_text_run(child):
            run = Run(child, paragraph)
            if run.text:
                current.append(run)
            continue
        if child.tag in _TRANSPARENT_MARKERS:
            continue
        if current:
            blocks.append(current)
            current = []
    if current:
        blocks.append(current)
    return blocks


def _merge_pieces(pieces: Iterable[Tuple[str, S]]) -> List[Tuple[str, S]]:
    merged: List[Tuple[str, S]] = []
    for piece_text, style in pieces:
        if merged and merged[-1][1] == style:
            merged[-1] = (merged[-1][0] + piece_text, style)
        else:
            merged.append((piece_text, style))
    return merged


# ---------------------------------------------------------------------------
# Filler
# ---------------------------------------------------------------------------

class TemplateFiller:
    """Fills DOCX and XLSX templates from a substitution map."""

    SUPPORTED_EXTENSIONS = (".docx", ".xlsx")

    def fill(self, template_path: Path, output_path: Path, data: Dict[str, str]) -> Path:
        """
        Write a filled copy of *template_path* to *output_path*.

        Raises:
            UnsupportedTemplateError: extension is neither .docx nor .xlsx.
            FileNotFoundError:        template does not exist.
        """
        template_path = Path(template_path)
        output_path = Path(output_path)
        ext = template_path.suffix.lower()
        if ext not in self.SUPPORTED_EXTENSIONS:
            raise UnsupportedTemplateError(f"Unsupported template format: {ext or template_path.name!r}")
        if not template_path.is_file():
            raise FileNotFoundError(f"Template file not found: {template_path}")

        output_path.parent.mkdir(parents=True, exist_ok=True)
        if ext == ".docx":
            self._fill_docx(template_path, output_path, data)
        else:
            self._fill_xlsx(template_path, output_path, data)
        return output_path

    # ------------------------------------------------------------------
    # DOCX
    # ------------------------------------------------------------------

    def _fill_docx(self, template_path: Path, output_path: Path, data: Dict[str, str]) -> None:
        doc = DocxDocument(str(template_path))
        replaced = self._replace_in_blocks(doc.paragraphs, doc.tables, data)

        for section in doc.sections:
            for part in (section.header, section.footer):
                replaced += self._replace_in_blocks(part.paragraphs, part.tables, data)

        doc.save(str(output_path))
        logger.debug("Filled %s → %s (%d paragraphs rewritten)", template_path.name, output_path.name, replaced)

    def _replace_in_blocks(
        self,
        paragraphs: Iterable[Paragraph],
        tables: Iterable[Table],
        data: Dict[str, str],
    ) -> int:
        replaced = 0
        for paragraph in paragraphs:
            if self._replace_in_paragraph(paragraph, data):
                replaced += 1
        for table in tables:
            replaced += self._replace_in_table(table, data)
        return replaced

    def _replace_in_table(self, table: Table, data: Dict[str, str]) -> int:
        replaced = 0
        seen = set()
        for row in table.rows:
            for cell in row.cells:
                # Horizontally merged cells are returned once per grid column
                if cell._tc in seen:
                    continue
                seen.add(cell._tc)
                replaced += self._replace_in_blocks(cell.paragraphs, cell.tables, data)
        return replaced

    def _replace_in_paragraph(self, paragraph: Paragraph, data: Dict[str, str]) -> bool:
        replaced = False
        for block in _text_run_blocks(paragraph):
            if self._replace_in_block(paragraph, block, data):
                replaced = True
        return replaced

    def _replace_in_block(self, paragraph: Paragraph, runs: List[Run], data: Dict[str, str]) -> bool:
        # Style tokens are indexes into `runs`; formatting is copied from there.
        new_runs = substitute_runs([(run.text, index) for index, run in enumerate(runs)], data)
        if new_runs is None:
            return False

        p = paragraph._p
        anchor = p.index(runs[0]._r)
        for run in runs:
            p.remove(run._r)

        for offset, (text, source_index) in enumerate(new_runs):
            new_run = paragraph.add_run(text)
            source_rpr = runs[source_index]._r.rPr
            if source_rpr is not None:
                new_run._r.insert(0, copy.deepcopy(source_rpr))
            p.remove(new_run._r)
            p.insert(anchor + offset, new_run._r)
        return True

    # ------------------------------------------------------------------
    # XLSX
    # ------------------------------------------------------------------

    def _fill_xlsx(self, template_path: Path, output_path: Path, data: Dict[str, str]) -> None:
        workbook = load_workbook(str(template_path))
        try:
            replaced = 0
            for sheet in workbook.worksheets:
                for row in sheet.iter_rows():
                    for cell in row:
                        value = cell.value
                        if not isinstance(value, str) or PLACEHOLDER_OPEN not in value:
                            continue
                        new_value, count = substitute_text(value, data)
                        if count:
                            cell.value = new_value
                            replaced += 1
            workbook.save(str(output_path))
        finally:
            workbook.close()
        logger.debug("Filled %s → %s (%d cells rewritten)", template_path.name, output_path.name, replaced)
