"""Exception types for pipeline errors.

The hierarchy separates three failure families:

- Transient failures (navigation timeouts, network errors) that the
  pipeline retries with backoff before giving up on a unit of work.
- Extraction anomalies, raised when a selector does not match what the
  extractor expected. The extractor reports these as "no results"; an empty
  page is a valid terminal signal for pagination.
- Checkpoint I/O failures, which are fatal to a run because state integrity
  cannot be guaranteed past that point.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any


class GleanerException(Exception):
    """Base class for all pipeline errors."""


class TransientException(GleanerException):
    """Base class for transient errors that might resolve on retry.

    Transient exceptions represent temporary failures like network issues,
    server errors or timeouts. Retrying the same operation may succeed.
    """


class NavigationError(TransientException):
    """Raised when the page renderer cannot load a URL.

    Attributes:
        url: The URL that failed to load.
        timeout_ms: The navigation timeout in milliseconds, if the failure
            was a timeout.
        message: Human-readable error message.
    """

    def __init__(
        self,
        url: str,
        reason: str,
        timeout_ms: int | None = None,
    ) -> None:
        """Initialize the exception.

        Args:
            url: The URL that failed to load.
            reason: Short description of the underlying failure.
            timeout_ms: Navigation timeout in milliseconds, if relevant.
        """
        self.url = url
        self.reason = reason
        self.timeout_ms = timeout_ms
        if timeout_ms is not None:
            self.message = (
                f"Navigation to {url} failed after {timeout_ms}ms: {reason}"
            )
        else:
            self.message = f"Navigation to {url} failed: {reason}"
        super().__init__(self.message)


class ExtractionAnomaly(GleanerException):
    """Raised when a selector returns an unexpected number of results.

    This usually means the remote site's markup changed. The extractor
    catches these and reports an empty result, so pagination treats the
    page as terminal instead of crashing the run.

    Attributes:
        selector: The XPath or CSS selector that was used.
        selector_type: Type of selector ("xpath", "css" or "json").
        description: What was being selected.
        expected_min: Minimum number of matches expected.
        expected_max: Maximum number of matches expected (None = unlimited).
        actual_count: Number of matches found.
        request_url: URL of the page the selector ran against.
    """

    def __init__(
        self,
        selector: str,
        selector_type: str,
        description: str,
        expected_min: int,
        expected_max: int | None,
        actual_count: int,
        request_url: str,
    ) -> None:
        self.selector = selector
        self.selector_type = selector_type
        self.description = description
        self.expected_min = expected_min
        self.expected_max = expected_max
        self.actual_count = actual_count
        self.request_url = request_url

        if expected_max is None:
            expected_str = f"at least {expected_min}"
        elif expected_min == expected_max:
            expected_str = f"exactly {expected_min}"
        else:
            expected_str = f"between {expected_min} and {expected_max}"

        self.message = (
            f"Expected {expected_str} matches for '{description}', "
            f"but found {actual_count}"
        )
        self.context: dict[str, Any] = {
            "selector": selector,
            "selector_type": selector_type,
            "expected_min": expected_min,
            "expected_max": expected_max
            if expected_max is not None
            else "unlimited",
            "actual_count": actual_count,
        }
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        parts = [self.message, f"URL: {self.request_url}", "Context:"]
        for key, value in self.context.items():
            parts.append(f"  {key}: {value}")
        return "\n".join(parts)


class CheckpointIOError(GleanerException):
    """Raised when a checkpoint cannot be written or decoded.

    Attributes:
        path: The checkpoint file involved.
    """

    def __init__(self, path: Path | str, reason: str) -> None:
        self.path = Path(path)
        self.reason = reason
        super().__init__(f"Checkpoint {self.path}: {reason}")


class NoEntitiesError(GleanerException):
    """Raised when a phase has no entities to work with.

    Covers both "discovery found nothing" and "collection was started
    without a discovery checkpoint". The CLI exits non-zero on it.
    """
