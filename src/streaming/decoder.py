"""Byte stream → text stream.

A network body arrives as arbitrarily sized byte chunks.  Chunk
boundaries can land in the middle of a multi-byte character, so each
chunk is fed through one stateful incremental decoder which carries
the partial sequence over to the next chunk.
"""

from __future__ import annotations

import codecs
import logging
from collections.abc import AsyncGenerator, AsyncIterable
from typing import TYPE_CHECKING

from config import settings

if TYPE_CHECKING:
    import httpx

logger = logging.getLogger(__name__)


async def iterate_body(response: httpx.Response) -> AsyncGenerator[bytes, None]:
    """Yield each non-empty byte chunk of *response*'s body.

    Content-encoding (gzip, br, ...) is undone by httpx; chunk sizes are
    whatever the transport delivered.
    """
    async for chunk in response.aiter_bytes():
        if not chunk:
            continue
        yield chunk


async def decode_text(
    chunks: AsyncIterable[bytes],
    encoding: str | None = None,
    errors: str | None = None,
) -> AsyncGenerator[str, None]:
    """Decode *chunks* into text chunks.

    Concatenating the output equals decoding the concatenated input.
    Malformed sequences are substituted according to *errors*
    (``"replace"`` by default) and never raise.
    """
    decoder = _incremental_decoder(
        encoding or settings.stream_default_encoding,
        errors or settings.stream_decode_errors,
    )
    try:
        async for chunk in chunks:
            text = decoder.decode(chunk)
            if text:
                yield text
    finally:
        aclose = getattr(chunks, "aclose", None)
        if aclose is not None:
            await aclose()

    # Flush: a truncated trailing sequence becomes a replacement character.
    tail = decoder.decode(b"", final=True)
    if tail:
        logger.debug("decoder flushed %d trailing character(s)", len(tail))
        yield tail


def _incremental_decoder(encoding: str, errors: str) -> codecs.IncrementalDecoder:
    """Decoder for *encoding*; an unknown label falls back to the default."""
    try:
        factory = codecs.getincrementaldecoder(encoding)
    except LookupError:
        fallback = settings.stream_default_encoding
        logger.warning("unknown charset %r; decoding as %s", encoding, fallback)
        factory = codecs.getincrementaldecoder(fallback)
    return factory(errors=errors)
