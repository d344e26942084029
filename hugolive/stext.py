"""Structured text: the nested text content a rendered page reports on checkin.

The content page walks its DOM once, numbering every kept node in preorder,
and sends the tree with those ids attached:

    {"id": 0, "children": [{"id": 1, "text": "Title"}, {"id": 2, "children": [...]}]}

The bare form (strings for text runs, lists for elements) is accepted too; ids
are then assigned here, once, in the same preorder.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field

TYPOGRAPHIC_FOLDS = {"’": "'"}


@dataclass(frozen=True)
class STextNode:
    node_id: int
    text: str | None = None
    children: tuple["STextNode", ...] = field(default_factory=tuple)

    @property
    def is_leaf(self) -> bool:
        return self.text is not None


@dataclass(frozen=True)
class StructuredText:
    root: STextNode | None = None

    def walk(self) -> Iterator[STextNode]:
        """Yield every node in preorder."""
        if self.root is None:
            return
        stack = [self.root]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))

    def leaves(self) -> Iterator[STextNode]:
        for node in self.walk():
            if node.is_leaf:
                yield node

    def plain_text(self, fold_typography: bool = False) -> str:
        """Concatenate all text runs in document order."""
        chunks = []
        for leaf in self.leaves():
            text = leaf.text or ""
            if fold_typography:
                text = fold_typographic_quotes(text)
            chunks.append(text)
        return "".join(chunks)

    def node_offsets(self) -> dict[int, int]:
        """Map every node id to the plain-text offset where its content starts.

        Exposed for the embedding UI, e.g. to scroll a source position into view
        by node; nothing in the orchestrator reads it.
        """
        offsets: dict[int, int] = {}
        offset = 0
        for node in self.walk():
            offsets[node.node_id] = offset
            if node.is_leaf:
                offset += len(node.text or "")
        return offsets


EMPTY_STEXT = StructuredText()


def fold_typographic_quotes(text: str) -> str:
    for fancy, plain in TYPOGRAPHIC_FOLDS.items():
        text = text.replace(fancy, plain)
    return text


def parse_stext(value: object) -> StructuredText | None:
    """Build StructuredText from a checkin payload; None when the value is malformed."""
    if isinstance(value, dict):
        try:
            root = _from_tagged(value, set())
        except ValueError:
            return None
        return StructuredText(root)
    if isinstance(value, (str, list)):
        counter = [0]
        try:
            root = _from_bare(value, counter)
        except ValueError:
            return None
        return StructuredText(root)
    return None


def _from_tagged(value: object, seen: set[int]) -> STextNode:
    if not isinstance(value, dict):
        raise ValueError("node must be an object")
    node_id = value.get("id")
    if not isinstance(node_id, int) or isinstance(node_id, bool) or node_id in seen:
        raise ValueError("node id missing or duplicated")
    seen.add(node_id)
    text = value.get("text")
    if text is not None:
        if not isinstance(text, str) or "children" in value:
            raise ValueError("leaf node must carry text only")
        return STextNode(node_id, text=text)
    children = value.get("children")
    if not isinstance(children, list):
        raise ValueError("container node must carry children")
    return STextNode(node_id, children=tuple(_from_tagged(child, seen) for child in children))


def _from_bare(value: object, counter: list[int]) -> STextNode:
    node_id = counter[0]
    counter[0] += 1
    if isinstance(value, str):
        return STextNode(node_id, text=value)
    if isinstance(value, list):
        return STextNode(node_id, children=tuple(_from_bare(child, counter) for child in value))
    raise ValueError(f"unexpected structured text item: {type(value).__name__}")
