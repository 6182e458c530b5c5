"""Node sequence filters."""

from __future__ import annotations

from collections.abc import AsyncGenerator, AsyncIterator

from bs4.element import NavigableString, PageElement, PreformattedString


def is_whitespace_node(node: PageElement) -> bool:
    """True for a text node whose content is empty after ``strip()``.

    Comments, doctypes and CDATA sections are ``NavigableString``
    subclasses too, but they are not text nodes.
    """
    return (
        isinstance(node, NavigableString)
        and not isinstance(node, PreformattedString)
        and node.strip() == ""
    )


async def drop_whitespace_nodes(
    nodes: AsyncIterator[PageElement],
) -> AsyncGenerator[PageElement, None]:
    """Drop insignificant whitespace text nodes from *nodes*, keeping order."""
    try:
        async for node in nodes:
            if not is_whitespace_node(node):
                yield node
    finally:
        aclose = getattr(nodes, "aclose", None)
        if aclose is not None:
            await aclose()
