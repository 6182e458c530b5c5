"""Custom element registry for a :class:`~src.fragments.document.HostDocument`.

A behavior module defines elements by name; connecting an element with
a defined name to the document *upgrades* it by running the behavior
once against that element.  Elements connected before their definition
arrives are upgraded when ``define()`` is called.

Upgrading is where the preload ordering matters: a behavior typically
initializes the element's state, so anything a caller stored on the
element beforehand is overwritten unless the definition was already
loaded (see ``Fragment.preload_behaviors``).
"""

from __future__ import annotations

import logging
import weakref
from collections.abc import Callable, Iterable
from typing import Any

from bs4.element import Tag

logger = logging.getLogger(__name__)

Behavior = Callable[[Tag], Any]

# Per-element table of registry -> behavior instance, stored on the tag
# itself so an instance lives exactly as long as its element.
_INSTANCES_ATTR = "_custom_element_instances"


def _instances_of(element: Tag) -> weakref.WeakKeyDictionary[CustomElementRegistry, Any]:
    # vars(): Tag.__getattr__ turns unknown attribute names into find().
    table = vars(element).get(_INSTANCES_ATTR)
    if table is None:
        table = vars(element)[_INSTANCES_ATTR] = weakref.WeakKeyDictionary()
    return table


class CustomElementRegistry:
    def __init__(self, connected: Callable[[], Iterable[Tag]] | None = None) -> None:
        self._definitions: dict[str, Behavior] = {}
        self._connected = connected

    def define(self, name: str, behavior: Behavior) -> None:
        """Register *behavior* for elements called *name*.

        Already-connected elements with that name are upgraded now.
        """
        name = name.lower()
        if "-" not in name:
            raise ValueError(f"'{name}' is not a valid custom element name")
        if name in self._definitions:
            raise ValueError(f"'{name}' has already been defined")
        self._definitions[name] = behavior
        logger.debug("defined custom element <%s>", name)

        if self._connected is not None:
            for element in self._connected():
                if element.name == name:
                    self.upgrade(element)

    def get(self, name: str) -> Behavior | None:
        return self._definitions.get(name.lower())

    def upgrade(self, element: Tag) -> bool:
        """Run the element's behavior once.  Returns ``True`` if upgraded."""
        behavior = self._definitions.get(element.name or "")
        if behavior is None or self.is_upgraded(element):
            return False
        _instances_of(element)[self] = behavior(element)
        return True

    def is_upgraded(self, element: Tag) -> bool:
        return self in vars(element).get(_INSTANCES_ATTR, ())

    def instance(self, element: Tag) -> Any:
        """The object the behavior returned for *element*, or ``None``."""
        table = vars(element).get(_INSTANCES_ATTR)
        return table.get(self) if table is not None else None
