"""Turn HTTP responses into :class:`Fragment` objects.

Two entry points:

  - :func:`stream_fragments` yields one ``Fragment`` per top-level
    node, each as soon as that node is completely parsed, while the
    body is still downloading.
  - :func:`parse_fragment` waits for the whole body and returns one
    ``Fragment`` wrapping a container of every top-level node.

Neither applies shadow-root or script fixups; ``Fragment.clone()`` does
that for both paths.
"""

from __future__ import annotations

import logging
import re
from collections.abc import AsyncGenerator, AsyncIterable

import httpx
from bs4 import BeautifulSoup
from bs4.element import PageElement, Tag

from config import settings
from src.fragments.errors import MissingContentType, TransportFailure
from src.fragments.fragment import Fragment
from src.streaming.boundary import stream_top_level_nodes
from src.streaming.decoder import decode_text, iterate_body
from src.streaming.filters import drop_whitespace_nodes

logger = logging.getLogger(__name__)

_EXPLICIT_BODY = re.compile(r"<body[\s>/]", re.IGNORECASE)

XML_MIME_TYPES = frozenset({
    "text/xml",
    "application/xml",
    "application/xhtml+xml",
    "image/svg+xml",
})


def simple_content_type(content_type: str) -> str:
    """The MIME type before any ``;`` parameters, normalized."""
    return content_type.split(";", 1)[0].strip().lower()


def features_for(content_type: str) -> str:
    """BeautifulSoup feature string for a ``Content-Type`` header value."""
    mime = simple_content_type(content_type)
    if mime in XML_MIME_TYPES or mime.endswith("+xml"):
        return settings.fragment_xml_features
    return settings.fragment_html_features


def ensure_success(response: httpx.Response) -> None:
    """Raise :class:`TransportFailure` for a 4xx/5xx response."""
    if response.is_error:
        raise TransportFailure(response.status_code, _response_url(response))


async def parse_fragment(response: httpx.Response) -> Fragment[BeautifulSoup]:
    """Parse a complete response body into a single container ``Fragment``."""
    ensure_success(response)
    content_type = response.headers.get("content-type")
    if not content_type:
        raise MissingContentType("Response has no Content-Type.")

    await response.aread()
    features = features_for(content_type)
    text = response.text
    soup = BeautifulSoup(text, features)

    if features == settings.fragment_xml_features:
        container = soup
    else:
        container = BeautifulSoup("", features)
        for child in _top_level_nodes(soup, explicit_body=_EXPLICIT_BODY.search(text) is not None):
            container.append(child.extract())

    logger.debug(
        "parsed %d top-level node(s) as %s (%s)",
        len(container.contents), simple_content_type(content_type), features,
    )
    return Fragment.of(container)


async def streaming_parse(
    text_chunks: AsyncIterable[str],
) -> AsyncGenerator[Fragment[PageElement], None]:
    """Yield a ``Fragment`` per non-whitespace top-level node of the markup."""
    nodes = drop_whitespace_nodes(stream_top_level_nodes(text_chunks))
    try:
        async for node in nodes:
            yield Fragment.of(node)
    finally:
        await nodes.aclose()


async def stream_fragments(
    response: httpx.Response,
) -> AsyncGenerator[Fragment[PageElement], None]:
    """Stream the top-level nodes of *response* as they finish parsing.

    The sequence is single-pass.  Closing it stops parsing but does not
    close *response*; whoever opened the response closes it.
    """
    ensure_success(response)
    encoding = response.charset_encoding or settings.stream_default_encoding
    logger.info("streaming fragments from %s (%s)", _response_url(response) or "response", encoding)

    fragments = streaming_parse(decode_text(iterate_body(response), encoding))
    count = 0
    try:
        async for fragment in fragments:
            count += 1
            yield fragment
    finally:
        await fragments.aclose()
        logger.info("streamed %d fragment(s)", count)


def _top_level_nodes(soup: BeautifulSoup, *, explicit_body: bool) -> list[PageElement]:
    """The fragment's own nodes, without the parser's html/head/body wrappers.

    A full document (one with a literal ``<body>``) contributes only
    its body's children.
    """
    if explicit_body and soup.body is not None:
        return list(soup.body.contents)
    nodes: list[PageElement] = []
    for node in soup.contents:
        if isinstance(node, Tag) and node.name == "html":
            for child in node.contents:
                if isinstance(child, Tag) and child.name in ("head", "body"):
                    nodes.extend(child.contents)
                else:
                    nodes.append(child)
        else:
            nodes.append(node)
    return nodes


def _response_url(response: httpx.Response) -> str | None:
    try:
        return str(response.request.url)
    except RuntimeError:
        # Response built without a request (tests, replays).
        return None
