"""
outline.py - Table of contents files and the outline tree built from them.

Each line of a TOC file describes one outline item:

    <indent>"Title" "Page" [0|-|1|+]

The indent (spaces or tabs, never both in one file) gives the nesting level;
the optional third field opens the item so its children are visible. Page is
matched against page labels when labels are in use, otherwise against the
1-based page number. Lines starting with '#' are comments.

Nodes live in a flat list and refer to each other by index.
"""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Iterator, List, Optional

from .errors import BadIndent, InconsistentIndent, IoFailure, TocError

logger = logging.getLogger(__name__)

_PARTS_RE = re.compile(r'".*?"|\S+')
_INDENT_RE = re.compile(r"^[ \t]+")

OPEN_FLAGS = ("+", "1")


@dataclass
class OutlineNode:
    title: str
    ref: Optional[str]
    indent: int
    open: bool = False
    children: List[int] = field(default_factory=list)
    parent: Optional[int] = None
    prev: Optional[int] = None
    next: Optional[int] = None


class Outline:
    """Arena of outline nodes; index 0 is the synthetic, always open root."""

    ROOT = 0

    def __init__(self):
        self.nodes: List[OutlineNode] = [OutlineNode(title="", ref=None, indent=-1, open=True)]

    def __len__(self):
        return len(self.nodes) - 1

    def __getitem__(self, idx: int) -> OutlineNode:
        return self.nodes[idx]

    def entries(self) -> Iterator[int]:
        """Indices of all items in file order, root excluded."""
        return iter(range(1, len(self.nodes)))

    def visible_count(self, idx: int) -> int:
        """Descendants shown when idx is expanded; closed children count as one."""
        node = self.nodes[idx]
        count = len(node.children)
        for child in node.children:
            if self.nodes[child].open and self.nodes[child].children:
                count += self.visible_count(child)
        return count

    def _sibling_at(self, idx: Optional[int], indent: int) -> Optional[int]:
        # climb towards the root until a node with the same indent shows up
        while idx is not None and self.nodes[idx].indent > indent:
            idx = self.nodes[idx].parent
        if idx is not None and self.nodes[idx].indent == indent:
            return idx
        return None

    def append(self, node: OutlineNode, prev: int) -> int:
        """Insert node after prev, as its sibling or child depending on indent."""
        idx = len(self.nodes)

        if node.indent < self.nodes[prev].indent:
            found = self._sibling_at(prev, node.indent)
            if found is None:
                raise BadIndent(f"A TOC item seems to have a wrong indent: {node.title!r}")
            prev = found

        if node.indent == self.nodes[prev].indent:
            node.parent = self.nodes[prev].parent
            node.prev = prev
            self.nodes[prev].next = idx
        else:
            node.parent = prev

        self.nodes.append(node)
        self.nodes[node.parent].children.append(idx)
        return idx


def _unquote(text: str) -> str:
    if text.startswith('"'):
        text = text[1:]
    if text.endswith('"'):
        text = text[:-1]
    return text


def parse_toc(lines: Iterable[str], source: str = "<toc>") -> Outline:
    """Build an outline from TOC lines. Raises TocError on indentation problems."""
    outline = Outline()
    prev = Outline.ROOT
    indent_char = None

    for lineno, line in enumerate(lines, 1):
        line = line.rstrip("\r\n")
        if line.startswith("#"):
            continue

        parts = _PARTS_RE.findall(line)
        if len(parts) < 2:
            continue

        indent = 0
        m = _INDENT_RE.match(line)
        if m:
            for char in m.group(0):
                if indent_char is None:
                    indent_char = char
                elif char != indent_char:
                    raise InconsistentIndent(
                        f"{source}:{lineno}: you should not mix spaces and tabs in TOC indents"
                    )
            indent = len(m.group(0))

        node = OutlineNode(
            title=_unquote(parts[0]),
            ref=_unquote(parts[1]),
            indent=indent,
            open=len(parts) > 2 and parts[2] in OPEN_FLAGS,
        )
        try:
            prev = outline.append(node, prev)
        except BadIndent as e:
            raise BadIndent(f"{source}:{lineno}: {e.message}") from e

    logger.debug(f"Parsed {len(outline)} outline items from {source}")
    return outline


def load_toc(path) -> Outline:
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise TocError(f"{path}: TOC should be specified in UTF-8") from e
    except OSError as e:
        raise IoFailure(f"Could not read TOC file {path}: {e}") from e
    return parse_toc(text.splitlines(), source=str(path))
