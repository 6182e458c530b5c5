"""The active document fragments are stamped into.

Parsed markup lives in throwaway trees (the streaming parse target, the
whole-response soup).  Those trees are *inert*: a ``<script>`` created
by a parser there never runs, and a ``<template shadowrootmode>`` there
is just a template.  :class:`HostDocument` is the live side:

  - it owns the page tree (``head`` / ``body``);
  - only scripts it created itself are executable, and they start
    (load their behavior module) when connected;
  - it keeps the shadow roots attached to its elements;
  - it keeps a module map so every behavior module loads once;
  - it upgrades custom elements through its registry.

``Fragment.clone()`` imports nodes into a document and rewrites them so
that this live behavior applies to them.
"""

from __future__ import annotations

import asyncio
import copy
import importlib
import logging
import weakref
from collections.abc import Awaitable, Callable, Iterator
from typing import Any

from bs4 import BeautifulSoup
from bs4.element import PageElement, Tag

from config import settings
from src.fragments.custom_elements import CustomElementRegistry

logger = logging.getLogger(__name__)

ModuleLoader = Callable[[str], Awaitable[Any]]

SHADOW_ROOT_MODES = ("open", "closed")


async def import_behavior_module(src: str) -> Any:
    """Default module loader: import the Python module named by *src*.

    ``src`` may be a dotted module path (``"widgets.tweet"``) or a
    relative file path (``"widgets/tweet.py"``).  ``sys.modules`` makes
    repeated imports free.
    """
    name = src.strip().lstrip("./").removesuffix(".py").replace("/", ".")
    return await asyncio.to_thread(importlib.import_module, name)


class ShadowRoot:
    """Shadow tree attached to a host element.

    The host is held weakly; the document drops its entry for the
    shadow root when the host is collected.
    """

    def __init__(self, host: Tag, mode: str, content: BeautifulSoup) -> None:
        self._host = weakref.ref(host)
        self.mode = mode
        self.content = content

    @property
    def host(self) -> Tag | None:
        """The host element, or ``None`` once it has been collected."""
        return self._host()

    @property
    def contents(self) -> list[PageElement]:
        return self.content.contents

    def append(self, node: PageElement) -> None:
        self.content.append(node)

    def __repr__(self) -> str:
        host = self.host
        return f"<ShadowRoot mode={self.mode!r} host=<{host.name if host is not None else '?'}>>"


class HostDocument:
    def __init__(
        self,
        loader: ModuleLoader | None = None,
        *,
        features: str | None = None,
    ) -> None:
        self._features = features or settings.fragment_html_features
        self.soup = BeautifulSoup(
            "<html><head></head><body></body></html>", self._features
        )
        self.custom_elements = CustomElementRegistry(self._connected_elements)
        self._loader = loader or import_behavior_module

        # All identity-keyed: bs4 nodes compare equal by markup.
        self._executable: weakref.WeakValueDictionary[int, Tag] = weakref.WeakValueDictionary()
        self._started: weakref.WeakValueDictionary[int, Tag] = weakref.WeakValueDictionary()
        self._shadow_roots: dict[int, ShadowRoot] = {}

        self._modules: dict[str, asyncio.Future[Any]] = {}
        self._pending_loads: set[asyncio.Future[Any]] = set()
        self._deferred_scripts: list[Tag] = []
        self.inline_scripts_run: list[Tag] = []

    @property
    def head(self) -> Tag:
        return self.soup.head

    @property
    def body(self) -> Tag:
        return self.soup.body

    # ── Node creation ─────────────────────────────────────────

    def create_container(self) -> BeautifulSoup:
        """An empty, detached container for many top-level nodes."""
        return BeautifulSoup("", self._features)

    def create_element(self, name: str, attrs: dict[str, Any] | None = None) -> Tag:
        element = self.soup.new_tag(name, attrs=dict(attrs or {}))
        if element.name == "script":
            self._executable[id(element)] = element
        return element

    def is_executable(self, script: Tag) -> bool:
        """Whether *script* will run when connected.

        Parser-created scripts, and copies of them, are inert.
        """
        return self._executable.get(id(script)) is script

    def import_node(self, node: PageElement) -> PageElement:
        """Deep copy of *node*, detached from any tree.

        A container is copied into a fresh container.  Shadow roots are
        not copied, matching ``Node.cloneNode``.
        """
        if isinstance(node, BeautifulSoup):
            container = self.create_container()
            for child in node.contents:
                container.append(copy.copy(child))
            return container
        return copy.copy(node)

    # ── Shadow trees ──────────────────────────────────────────

    def attach_shadow(self, host: Tag, mode: str) -> ShadowRoot:
        if mode not in SHADOW_ROOT_MODES:
            raise ValueError(f"invalid shadow root mode {mode!r}")
        if id(host) in self._shadow_roots:
            raise ValueError(f"<{host.name}> already hosts a shadow root")
        shadow = ShadowRoot(host, mode, self.create_container())
        self._shadow_roots[id(host)] = shadow
        weakref.finalize(host, self._shadow_roots.pop, id(host), None)
        return shadow

    def shadow_root(self, host: Tag) -> ShadowRoot | None:
        """The host's shadow root, hidden when its mode is ``closed``."""
        shadow = self._shadow_roots.get(id(host))
        if shadow is None or shadow.host is not host or shadow.mode != "open":
            return None
        return shadow

    def _shadow_root_of(self, host: Tag) -> ShadowRoot | None:
        shadow = self._shadow_roots.get(id(host))
        return shadow if shadow is not None and shadow.host is host else None

    # ── Connecting ────────────────────────────────────────────

    def append(self, node: PageElement, parent: Tag | None = None) -> None:
        """Attach *node* (or a container's children) and connect it.

        Connecting starts executable scripts and upgrades defined
        custom elements, including inside attached shadow trees.
        """
        target = parent if parent is not None else self.body
        if isinstance(node, BeautifulSoup):
            children = list(node.contents)
            for child in children:
                target.append(child.extract())
        else:
            children = [node]
            target.append(node)

        for child in children:
            for element in self.walk(child):
                self._connect(element)

    def upgrade(self, root: PageElement) -> int:
        """Upgrade every defined custom element under *root*, connected or not.

        Returns the number of elements upgraded.
        """
        return sum(self.custom_elements.upgrade(element) for element in self.walk(root))

    def walk(self, root: PageElement) -> Iterator[Tag]:
        """Elements under *root* in tree order, descending into shadow roots."""
        stack: list[PageElement] = [root]
        while stack:
            node = stack.pop()
            if not isinstance(node, Tag):
                continue
            if not isinstance(node, BeautifulSoup):
                yield node
            children = list(node.contents)
            shadow = self._shadow_root_of(node)
            if shadow is not None:
                children = list(shadow.contents) + children
            stack.extend(reversed(children))

    def _connected_elements(self) -> Iterator[Tag]:
        return self.walk(self.soup)

    def _connect(self, element: Tag) -> None:
        if element.name == "script":
            self._start_script(element)
        else:
            self.custom_elements.upgrade(element)

    def _start_script(self, script: Tag) -> None:
        """Run an inline script or begin loading a ``src`` one.

        Outside a running event loop the load is queued and begins on
        the next :meth:`settle`.
        """
        if not self.is_executable(script) or self._started.get(id(script)) is script:
            return
        self._started[id(script)] = script

        if not script.get("src"):
            logger.debug("running inline script")
            self.inline_scripts_run.append(script)
            return
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("no running event loop; deferring load of %s", script["src"])
            self._deferred_scripts.append(script)
            return
        self._begin_load(script)

    def _begin_load(self, script: Tag) -> None:
        src = script["src"]
        if script.get("type") == "module":
            load = asyncio.ensure_future(self.load_module(src))
        else:
            # Classic scripts bypass the module map and load every time.
            load = asyncio.ensure_future(self._loader(src))
        self._pending_loads.add(load)
        load.add_done_callback(self._pending_loads.discard)

    # ── Behavior modules ──────────────────────────────────────

    async def load_module(self, src: str) -> Any:
        """Load the behavior module *src* once; concurrent callers share the load.

        A module exposing ``define(registry)`` gets to register its
        custom elements with this document.
        """
        future = self._modules.get(src)
        if future is None:
            future = asyncio.ensure_future(self._load(src))
            self._modules[src] = future
        return await future

    async def _load(self, src: str) -> Any:
        module = await self._loader(src)
        define = getattr(module, "define", None)
        if callable(define):
            define(self.custom_elements)
        logger.info("loaded behavior module %s", src)
        return module

    def is_loaded(self, src: str) -> bool:
        future = self._modules.get(src)
        return (
            future is not None
            and future.done()
            and not future.cancelled()
            and future.exception() is None
        )

    async def settle(self) -> None:
        """Wait for every script load started by connecting nodes."""
        deferred, self._deferred_scripts = self._deferred_scripts, []
        for script in deferred:
            self._begin_load(script)
        while self._pending_loads:
            await asyncio.gather(*list(self._pending_loads))


_active: HostDocument | None = None


def active_document() -> HostDocument:
    """The process-wide default document, created on first use."""
    global _active
    if _active is None:
        _active = HostDocument()
    return _active


def set_active_document(document: HostDocument | None) -> None:
    global _active
    _active = document
