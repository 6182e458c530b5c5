"""Incremental HTML parser that builds a BeautifulSoup tree.

The streaming path needs a parser that can be fed text a chunk at a
time and that reports nodes as they are appended to the tree.  lxml's
``etree.HTMLParser`` is a push parser: ``feed()`` accepts partial
markup and libxml2 runs HTML tree construction (implied end tags,
``<p>`` and ``<li>`` auto-closing, void elements) as input arrives.  Its
events go to a parser *target*, here one that creates ``bs4`` nodes,
the same way BeautifulSoup's own ``"lxml"`` builder does.  Fragments
from the streaming path therefore look like the ones the whole-response
path gets from ``BeautifulSoup(text, "lxml")``.

libxml2 wraps every document in ``html`` / ``head`` / ``body``.  Those
wrappers are not materialized: their children are the top-level nodes.

The parser only ever reports that a node was *added* to the root.  It
never reports that a node is finished; that is inferred one level up
(see ``src.streaming.boundary``).
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Protocol

from bs4 import BeautifulSoup
from bs4.element import Comment, Doctype, PageElement, ProcessingInstruction, Tag
from lxml import etree

logger = logging.getLogger(__name__)

NodeObserver = Callable[[PageElement], None]

DOCUMENT_WRAPPERS = frozenset({"html", "head", "body"})


class IncrementalParser(Protocol):
    """Capability the boundary detector needs from a markup parser."""

    def observe(self, observer: NodeObserver) -> None:
        """Report every node appended directly to the parse root."""

    def disconnect(self) -> None:
        """Stop reporting additions."""

    def feed(self, chunk: str) -> None:
        """Parse another chunk of text.  May report zero or more additions."""

    def close(self) -> None:
        """Flush buffered input at end of stream.  May report additions."""


class _TreeTarget:
    """lxml parser target that builds ``bs4`` nodes under *root*.

    libxml2 delivers balanced start/end events, so the stack simply
    mirrors the parser's open elements.  ``None`` stands for a document
    wrapper.  Text is buffered until the next markup event, so a run of
    characters split across chunks becomes a single text node.
    """

    def __init__(self, root: BeautifulSoup, added: NodeObserver) -> None:
        self.root = root
        self._added = added
        self._open: list[Tag | None] = []
        self._text: list[str] = []

    def start(self, tag: str, attrib: Mapping[str, str]) -> None:
        self._flush_text()
        if tag in DOCUMENT_WRAPPERS and all(entry is None for entry in self._open):
            self._open.append(None)
            return
        element = self.root.new_tag(tag, attrs=dict(attrib))
        self._append(element)
        self._open.append(element)

    def end(self, tag: str) -> None:
        self._flush_text()
        if self._open:
            self._open.pop()

    def data(self, data: str) -> None:
        self._text.append(data)

    def comment(self, text: str) -> None:
        self._flush_text()
        self._append(self.root.new_string(text, Comment))

    def doctype(self, name: str, pubid: str | None, system: str | None) -> None:
        self._flush_text()
        self._append(Doctype.for_name_and_ids(name, pubid, system))

    def pi(self, target: str, data: str | None) -> None:
        self._flush_text()
        text = f"{target} {data}" if data else target
        self._append(self.root.new_string(text, ProcessingInstruction))

    def close(self) -> BeautifulSoup:
        self._flush_text()
        self._open.clear()
        return self.root

    def _flush_text(self) -> None:
        if not self._text:
            return
        text = "".join(self._text)
        self._text.clear()
        if text:
            self._append(self.root.new_string(text))

    def _append(self, node: PageElement) -> None:
        parent = self._open[-1] if self._open else None
        if parent is None:
            self.root.append(node)
            self._added(node)
        else:
            parent.append(node)


class HTMLStreamParser:
    """Feed HTML text incrementally into a private BeautifulSoup root."""

    def __init__(self) -> None:
        # Parse target: owned by this parser, never handed to consumers.
        self.root = BeautifulSoup("", "html.parser")
        self._observers: list[NodeObserver] = []
        self._parser = etree.HTMLParser(
            target=_TreeTarget(self.root, self._notify),
            recover=True,
            default_doctype=False,
        )
        self._fed = False

    # ── Observation ──────────────────────────────────────────────

    def observe(self, observer: NodeObserver) -> None:
        self._observers.append(observer)

    def disconnect(self) -> None:
        self._observers.clear()

    # ── Feeding ──────────────────────────────────────────────────

    def feed(self, chunk: str) -> None:
        self._parser.feed(chunk)
        self._fed = True

    def close(self) -> None:
        if not self._fed:
            # lxml's feed parser refuses close() before any feed().
            self._parser.feed("")
        self._parser.close()
        logger.debug("parser closed with %d top-level node(s)", len(self.root.contents))

    def _notify(self, node: PageElement) -> None:
        for observer in list(self._observers):
            observer(node)
