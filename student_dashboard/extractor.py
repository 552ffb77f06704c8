"""Split assistant answers into paragraph and Markdown table blocks."""

from typing import List, Optional

from student_dashboard.models import ContentBlock, Paragraph, Table

TABLE_DELIMITER = "|"
SEPARATOR_MARKER = "---"


def is_table_line(line: str) -> bool:
    """A line belongs to a table if it starts and ends with a pipe."""
    stripped = line.strip()
    return stripped.startswith(TABLE_DELIMITER) and stripped.endswith(TABLE_DELIMITER)


def split_table_row(line: str) -> List[str]:
    """
    Split ``| a | b |`` into ``["a", "b"]``.

    The fragments before the first pipe and after the last pipe are dropped.
    """
    return [cell.strip() for cell in line.strip().split(TABLE_DELIMITER)[1:-1]]


def _parse_table(lines: List[str]) -> Optional[Table]:
    if len(lines) < 2 or SEPARATOR_MARKER not in lines[1]:
        return None

    headers = split_table_row(lines[0])
    rows = []
    for line in lines[2:]:
        cells = split_table_row(line)
        if not any(cells):
            continue
        if len(cells) > len(headers):
            return None
        rows.append(cells + [""] * (len(headers) - len(cells)))

    if not headers or not rows:
        return None
    return Table(headers=headers, rows=rows)


def _flush(lines: List[str], blocks: List[ContentBlock]) -> None:
    table = _parse_table(lines)
    if table is not None:
        blocks.append(table)
    else:
        blocks.extend(Paragraph(text=line) for line in lines)
    lines.clear()


def extract(text: str) -> List[ContentBlock]:
    """
    Decompose ``text`` into paragraphs and tables, in order.

    Runs of pipe-delimited lines become a Table when they have a header row,
    a ``---`` separator row and at least one non-blank data row. Anything that
    does not parse as a table is kept as one Paragraph per line, so no text is
    lost. Blank lines are dropped; if that leaves nothing, the original text is
    returned as a single Paragraph.
    """
    blocks: List[ContentBlock] = []
    table_lines: List[str] = []

    for line in text.split("\n"):
        stripped = line.strip()
        if is_table_line(stripped):
            table_lines.append(stripped)
            continue
        if table_lines:
            _flush(table_lines, blocks)
        if stripped:
            blocks.append(Paragraph(text=stripped))

    if table_lines:
        _flush(table_lines, blocks)

    if not blocks:
        return [Paragraph(text=text)]
    return blocks
