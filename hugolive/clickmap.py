"""Map a click in rendered text back to an offset in the source file.

The diff is difflib's SequenceMatcher, without a semantic cleanup pass. It
anchors on the longest common runs, so body text maps exactly. Clicks at the
very start of a page can land in front matter that happens to share
characters with the title, e.g. on `Post` in `title: Post` rather than on
the `# Post` heading below it.
"""

from __future__ import annotations

from difflib import SequenceMatcher

from hugolive.stext import StructuredText

EQUAL = 0
INSERT = 1
DELETE = -1


def diff_hunks(source_text: str, preview_text: str) -> list[tuple[int, str]]:
    """Character diff of source vs preview as (op, text) hunks.

    `replace` opcodes are split into a delete followed by an insert.
    Adjacent hunks of the same kind are merged.
    """
    matcher = SequenceMatcher(None, source_text, preview_text, autojunk=False)
    hunks: list[tuple[int, str]] = []

    def push(op: int, text: str) -> None:
        if not text:
            return
        if hunks and hunks[-1][0] == op:
            hunks[-1] = (op, hunks[-1][1] + text)
        else:
            hunks.append((op, text))

    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag == "equal":
            push(EQUAL, source_text[i1:i2])
        elif tag == "delete":
            push(DELETE, source_text[i1:i2])
        elif tag == "insert":
            push(INSERT, preview_text[j1:j2])
        else:
            push(DELETE, source_text[i1:i2])
            push(INSERT, preview_text[j1:j2])
    return hunks


def map_preview_offset(source_text: str, preview_text: str, offset: int) -> int:
    """Source offset matching `offset` in preview_text.

    A click inside text that only exists in the preview lands on the nearest
    preceding source boundary.
    """
    source_offset = 0
    preview_offset = 0
    for op, text in diff_hunks(source_text, preview_text):
        if op in (EQUAL, INSERT):
            if preview_offset + len(text) >= offset:
                if op == EQUAL:
                    source_offset += offset - preview_offset
                break
            preview_offset += len(text)
        if op in (EQUAL, DELETE):
            source_offset += len(text)
    return source_offset


def map_click_to_source(source_text: str, content: StructuredText, offset: int) -> int:
    """Source offset for a click at `offset` in the displayed structured text."""
    return map_preview_offset(source_text, content.plain_text(fold_typography=True), offset)


def offset_to_line_column(text: str, offset: int) -> tuple[int, int]:
    """1-based (line, column) for a character offset, clamped to the text."""
    offset = max(0, min(offset, len(text)))
    line = text.count("\n", 0, offset) + 1
    line_start = text.rfind("\n", 0, offset) + 1
    return line, offset - line_start + 1
