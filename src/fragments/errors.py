"""Fragment parsing errors.

Every error is raised at the call that detects it and is never retried
here.  Cancelling a stream is not an error: it just ends the sequence.
"""

from __future__ import annotations


class FragmentError(Exception):
    """Base class for fragment parsing / materialization errors."""


class MissingContentType(FragmentError):
    """Whole-response parse attempted on a response without ``Content-Type``."""


class TransportFailure(FragmentError):
    """The originating request came back with an HTTP error status."""

    def __init__(self, status_code: int, url: str | None = None) -> None:
        self.status_code = status_code
        self.url = url
        target = f" for {url}" if url else ""
        super().__init__(f"HTTP {status_code}{target}")


class ContractViolation(FragmentError):
    """``preload_behaviors()`` found a script it cannot preload.

    Only external module scripts (``<script type="module" src="...">``)
    can be preloaded; inline or classic scripts are rejected.
    """
