"""Checked HTML element wrapper for safe XPath/CSS querying.

CheckedHtmlElement wraps an lxml.html.HtmlElement and validates selector
results against expected counts, so a markup change shows up as an
ExtractionAnomaly with the selector and counts attached instead of an
IndexError three calls later.
"""

from __future__ import annotations

from lxml.html import HtmlElement

from gleaner.common.exceptions import ExtractionAnomaly


class CheckedHtmlElement:
    """Wrapper around HtmlElement with validated selectors."""

    def __init__(self, element: HtmlElement, request_url: str = "") -> None:
        """Initialize the checked element wrapper.

        Args:
            element: The lxml HtmlElement to wrap.
            request_url: Optional URL for error context.
        """
        self._element = element
        self._request_url = request_url

    def _check_count(
        self,
        selector: str,
        selector_type: str,
        description: str,
        min_count: int,
        max_count: int | None,
        actual_count: int,
    ) -> None:
        if actual_count < min_count or (
            max_count is not None and actual_count > max_count
        ):
            raise ExtractionAnomaly(
                selector=selector,
                selector_type=selector_type,
                description=description,
                expected_min=min_count,
                expected_max=max_count,
                actual_count=actual_count,
                request_url=self._request_url,
            )

    def checked_xpath(
        self,
        xpath: str,
        description: str,
        min_count: int = 1,
        max_count: int | None = None,
    ) -> list[CheckedHtmlElement]:
        """Execute XPath query with count validation.

        Only element results are kept; text and attribute results are dropped.

        Args:
            xpath: XPath expression to execute.
            description: Human-readable description of what's being selected.
            min_count: Minimum number of results expected (default: 1).
            max_count: Maximum number of results expected (None = unlimited).

        Returns:
            List of matching elements.

        Raises:
            ExtractionAnomaly: If count doesn't match expectations.
        """
        results = self._element.xpath(xpath)

        wrapped = [
            CheckedHtmlElement(r, self._request_url)
            for r in results
            if isinstance(r, HtmlElement)
        ]
        self._check_count(
            xpath, "xpath", description, min_count, max_count, len(wrapped)
        )
        return wrapped

    def checked_css(
        self,
        selector: str,
        description: str,
        min_count: int = 1,
        max_count: int | None = None,
    ) -> list[CheckedHtmlElement]:
        """Execute CSS selector query with count validation.

        Example::

            tree = CheckedHtmlElement(lxml.html.fromstring(html))
            cards = tree.checked_css("[data-app-card-handle-value]", "app cards", min_count=0)
            for card in cards:
                name = card.get("data-app-card-name-value")

        Raises:
            ExtractionAnomaly: If count doesn't match expectations, or the
                selector cannot be compiled.
        """
        try:
            results = self._element.cssselect(selector)
        except Exception as e:
            raise ExtractionAnomaly(
                selector=selector,
                selector_type="css",
                description=description,
                expected_min=min_count,
                expected_max=max_count,
                actual_count=0,
                request_url=self._request_url,
            ) from e

        self._check_count(
            selector, "css", description, min_count, max_count, len(results)
        )
        return [CheckedHtmlElement(r, self._request_url) for r in results]

    def __getattr__(self, name: str):
        """Delegate all other attributes to the wrapped element."""
        return getattr(self._element, name)
