"""``Fragment``: a parsed markup fragment meant to be cloned.

Not to be confused with a document fragment.  A ``Fragment`` wraps one
parsed node (or a container of many) and stamps out independent,
attach-ready copies of it, much like a ``<template>``.

Cloning does more than copy, because the wrapped node came from an
inert parse tree:

  1. Declarative shadow trees.  A ``<template shadowrootmode="open">``
     only becomes a shadow root when the *active* document's parser
     sees it.  Here it arrives as a plain template, so each one is
     detached and its content moved into a real shadow root on its
     parent.  This has to happen after copying: shadow roots are not
     copied with their host.

  2. Scripts.  Parser-created ``<script>`` elements never execute.
     Each one is replaced by a fresh script built by the document with
     the same attributes and text, which does run once connected.

Scripts that were already rewritten are remembered (by identity,
weakly) in a process-wide table so the same node is never rewritten
twice.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from collections.abc import Iterator
from typing import Generic, TypeVar

from bs4 import BeautifulSoup
from bs4.element import NavigableString, PageElement, Tag

from src.fragments.document import (
    SHADOW_ROOT_MODES,
    HostDocument,
    ShadowRoot,
    active_document,
)
from src.fragments.errors import ContractViolation

logger = logging.getLogger(__name__)

N = TypeVar("N", bound=PageElement)

# Attribute names for declarative shadow roots: the standard one first,
# then the pre-standard spelling still emitted by older templates.
SHADOW_ROOT_ATTRIBUTES = ("shadowrootmode", "shadowroot")

# id(script) -> script.  Weak values, so entries go away with their nodes.
_fixed_scripts: weakref.WeakValueDictionary[int, Tag] = weakref.WeakValueDictionary()


class Fragment(Generic[N]):
    """Wraps a parsed node for repeated, independent cloning."""

    __slots__ = ("_node",)

    def __init__(self, node: N) -> None:
        self._node = node

    @classmethod
    def of(cls, node: N) -> Fragment[N]:
        return cls(node)

    def __repr__(self) -> str:
        name = getattr(self._node, "name", None) or type(self._node).__name__
        return f"Fragment({name})"

    def clone(self, document: HostDocument | None = None) -> N:
        """Return an attach-ready copy of the wrapped node.

        The copy belongs to *document* (the active document by default):
        declarative shadow roots are attached, custom elements that are
        already defined are upgraded, and scripts will run when the copy
        is connected.  Every call returns a new, independent tree; the
        wrapped node is never modified.
        """
        document = document or active_document()
        clone = document.import_node(self._node)
        if isinstance(clone, Tag) and clone.name == "script":
            # A top-level script: replace the root itself.
            clone = _manual_clone(clone, document)
            _fixed_scripts[id(clone)] = clone
        elif isinstance(clone, Tag):
            shadows = fixup_declarative_shadow_dom(clone, document)
            fixup_scripts(clone, document)
            for shadow in shadows:
                fixup_scripts(shadow.content, document)
            # Elements whose definition is already loaded upgrade now,
            # as they would when created by the document's own parser.
            document.upgrade(clone)
        return clone  # type: ignore[return-value]

    async def preload_behaviors(self, document: HostDocument | None = None) -> None:
        """Load the behavior module of every script in the fragment.

        Every script must be ``<script type="module" src="...">``;
        anything else raises :class:`ContractViolation` before any
        module is loaded.

        Call (and await) this before setting properties on a custom
        element from a clone that is not attached yet.  Until its
        defining module has loaded the element is not upgraded, and the
        upgrade would later reinitialize whatever was set on it::

            await fragment.preload_behaviors(document)
            tweet = fragment.clone(document)
            document.custom_elements.instance(tweet).text = "hello"
            document.append(tweet)
        """
        if not isinstance(self._node, Tag):
            return
        document = document or active_document()

        sources: list[str] = []
        for script in _scripts(self._node):
            src = script.get("src")
            if script.get("type") != "module" or not src:
                raise ContractViolation(
                    f"Found `{_describe(script)}` without `type=\"module\"` and `src`. "
                    "Only external module scripts can be preloaded."
                )
            if src not in sources:
                sources.append(src)

        if sources:
            logger.debug("preloading %d behavior module(s): %s", len(sources), sources)
            await asyncio.gather(*(document.load_module(src) for src in sources))


def fixup_declarative_shadow_dom(root: Tag, document: HostDocument) -> list[ShadowRoot]:
    """Turn declarative shadow root templates under *root* into shadow roots.

    Templates without a valid mode, or without an element to attach
    to, stay ordinary templates.  Returns the shadow roots attached.
    """
    attached: list[ShadowRoot] = []
    for template in root.find_all("template"):
        mode = _shadow_root_mode(template)
        if mode is None:
            continue  # Regular <template>.
        host = template.parent
        if host is None or isinstance(host, BeautifulSoup):
            logger.warning("declarative shadow root template has no host element; left as-is")
            continue
        try:
            shadow = document.attach_shadow(host, mode)
        except ValueError:
            logger.warning("<%s> already has a shadow root; template left as-is", host.name)
            continue

        template.extract()
        for child in list(template.contents):
            shadow.append(child.extract())
        attached.append(shadow)
    return attached


def fixup_scripts(root: Tag, document: HostDocument) -> int:
    """Replace every inert ``<script>`` under *root* with an executable copy.

    Returns the number of scripts replaced.
    """
    replaced = 0
    for old_script in list(root.find_all("script")):
        if _fixed_scripts.get(id(old_script)) is old_script:
            continue
        new_script = _manual_clone(old_script, document)
        _fixed_scripts[id(new_script)] = new_script
        old_script.replace_with(new_script)
        replaced += 1
    return replaced


def is_fixed_script(script: Tag) -> bool:
    return _fixed_scripts.get(id(script)) is script


def _manual_clone(old_script: Tag, document: HostDocument) -> Tag:
    """Rebuild *old_script* through the document, dropping parser state."""
    attrs = {
        name: list(value) if isinstance(value, list) else value
        for name, value in old_script.attrs.items()
    }
    new_script = document.create_element("script", attrs)
    text = "".join(
        str(child) for child in old_script.contents if isinstance(child, NavigableString)
    )
    if text:
        new_script.append(document.soup.new_string(text))
    return new_script


def _shadow_root_mode(template: Tag) -> str | None:
    for attribute in SHADOW_ROOT_ATTRIBUTES:
        mode = template.get(attribute)
        if mode:
            mode = str(mode).lower()
            return mode if mode in SHADOW_ROOT_MODES else None
    return None


def _scripts(node: Tag) -> Iterator[Tag]:
    if node.name == "script":
        yield node
    yield from node.find_all("script")


def _describe(script: Tag) -> str:
    src = script.get("src")
    return f'<script src="{src}">' if src else "<script>"
