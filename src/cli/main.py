"""Fragment client: fetch a URL and print its top-level nodes.

Streams by default, printing each top-level node as soon as it has
been completely parsed, so slow server-rendered pages show up piece by
piece.  ``--whole`` waits for the full body instead.

Output goes to stdout, one node per line; logging goes to stderr so the
two can be piped separately.

Usage::

    python -m src.cli http://localhost:8000/tweets
    python -m src.cli http://localhost:8000/tweets --whole
    LOG_LEVEL=DEBUG python -m src.cli http://localhost:8000/tweets
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from collections.abc import Sequence
from typing import TextIO

import httpx

from config import settings
from src.fragments.document import HostDocument
from src.fragments.errors import FragmentError
from src.fragments.responses import parse_fragment, stream_fragments

logger = logging.getLogger(__name__)


def _configure_logging(level: str) -> None:
    """Route all logging to stderr.

    The guard prevents duplicate handlers when ``main()`` is called
    more than once (e.g. in tests).
    """
    root = logging.getLogger()
    root.setLevel(level.upper())
    if root.handlers:
        return
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        logging.Formatter(
            "%(asctime)s %(levelname)-8s [%(name)s] %(message)s",
            datefmt="%H:%M:%S",
        )
    )
    root.addHandler(handler)


async def run(
    url: str,
    *,
    whole: bool = False,
    out: TextIO | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> int:
    """Fetch *url* and write one line of markup per top-level node.

    Returns the number of nodes written.
    """
    out = out or sys.stdout
    document = HostDocument()
    written = 0
    async with httpx.AsyncClient(timeout=settings.http_timeout, transport=transport) as client:
        if whole:
            response = await client.get(url)
            fragment = await parse_fragment(response)
            container = fragment.clone(document)
            for node in container.contents:
                text = str(node).strip()
                if text:
                    out.write(text + "\n")
                    written += 1
            return written

        async with client.stream("GET", url) as response:
            async for fragment in stream_fragments(response):
                out.write(str(fragment.clone(document)).strip() + "\n")
                out.flush()
                written += 1
    return written


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Print the top-level nodes of an HTML response")
    parser.add_argument("url", help="URL to fetch")
    parser.add_argument(
        "--whole",
        action="store_true",
        help="parse the complete response instead of streaming it",
    )
    parser.add_argument(
        "--log-level",
        default=settings.log_level,
        help="logging level (default: %(default)s)",
    )
    args = parser.parse_args(argv)

    _configure_logging(args.log_level)

    try:
        written = asyncio.run(run(args.url, whole=args.whole))
    except FragmentError as exc:
        logger.error("%s: %s", type(exc).__name__, exc)
        return 1
    except httpx.HTTPError as exc:
        logger.error("request failed: %r", exc)
        return 1

    logger.info("printed %d node(s) from %s", written, args.url)
    return 0


if __name__ == "__main__":
    sys.exit(main())
