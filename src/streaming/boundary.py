"""Top-level node boundary detection.

The host parser reports a node the moment it is *appended* to the
parse root, long before its children have been parsed.  There is no
"node finished" signal.  But once the parser appends the next top-level
node (or the input ends), the previous one can no longer grow, so it is
complete.  :func:`stream_top_level_nodes` holds back exactly one node
and releases it when that proof arrives.

Pipeline::

    text chunks ──feed──▶ HTMLStreamParser ──observe──▶ Subscribable
        ──SubscribableIterator──▶ lookahead-1 ──▶ complete nodes
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncGenerator, AsyncIterable, Callable

from bs4.element import PageElement

from src.streaming.html_stream_parser import HTMLStreamParser, IncrementalParser
from src.streaming.subscribable import (
    Cancel,
    Emit,
    IterationResult,
    Subscribable,
    SubscribableIterator,
)

logger = logging.getLogger(__name__)

ParserFactory = Callable[[], IncrementalParser]

# Strong references to running feed tasks; the event loop only keeps
# weak ones.
_feed_tasks: set[asyncio.Task[None]] = set()


def observe_top_level_additions(
    text_chunks: AsyncIterable[str],
    parser_factory: ParserFactory = HTMLStreamParser,
) -> Subscribable[PageElement]:
    """Parse *text_chunks* and emit each top-level node as it is added.

    Emitted nodes are **not** complete yet: their children are still
    being parsed.  Feeding runs in a background task that starts when
    the subscription is made.
    """

    def subscribe(emit: Emit[PageElement]) -> Cancel:
        parser = parser_factory()
        parser.observe(lambda node: emit(IterationResult.of(node)))
        canceled = False

        async def feed() -> None:
            iterator = aiter(text_chunks)
            fed = 0
            interrupted = False
            result: IterationResult[PageElement] = IterationResult.finished()
            try:
                async for chunk in iterator:
                    if canceled:
                        break
                    parser.feed(chunk)
                    fed += 1
                else:
                    # Exhausted: flush whatever the parser still buffers.
                    # The flush may append the last top-level node.
                    parser.close()
            except Exception as exc:
                logger.debug("stream parse failed after %d chunk(s)", fed, exc_info=True)
                result = IterationResult.failed(exc)
            except asyncio.CancelledError:
                # The consumer still gets a terminal result.
                logger.debug("stream parse task cancelled after %d chunk(s)", fed)
                interrupted = True
                raise
            finally:
                parser.disconnect()
                emit(result)
                if canceled or interrupted:
                    # Stop the upstream generator chain; the transport itself
                    # stays open and belongs to whoever opened it.
                    await _aclose(iterator)
            if result.error is None:
                logger.debug("stream parse finished after %d chunk(s) (canceled=%s)", fed, canceled)

        task = asyncio.get_running_loop().create_task(feed())
        _feed_tasks.add(task)
        task.add_done_callback(_feed_tasks.discard)

        def cancel() -> None:
            nonlocal canceled
            canceled = True
            parser.disconnect()

        return cancel

    return subscribe


async def stream_top_level_nodes(
    text_chunks: AsyncIterable[str],
    parser_factory: ParserFactory = HTMLStreamParser,
) -> AsyncGenerator[PageElement, None]:
    """Yield each top-level node of the markup once it is fully parsed.

    A node is yielded only after the next top-level node has been
    observed or the stream has ended.  Closing this generator cancels
    parsing; the node still held back is discarded.
    """
    nodes = SubscribableIterator(observe_top_level_additions(text_chunks, parser_factory))
    pending: PageElement | None = None
    try:
        async for node in nodes:
            if pending is not None:
                yield pending
            pending = node
        if pending is not None:
            yield pending
    finally:
        await nodes.aclose()


async def _aclose(iterator: object) -> None:
    aclose = getattr(iterator, "aclose", None)
    if aclose is not None:
        await aclose()
