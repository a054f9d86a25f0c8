"""LxmlPageElement: the read-only view extractors query.

A PageElement is always backed by static parsed HTML. The renderer is
responsible for obtaining the HTML by serializing a rendered Playwright DOM;
extractors never see a live browser object.
"""

from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import urljoin

from lxml import html

from gleaner.common.checked_html import CheckedHtmlElement


@dataclass(frozen=True)
class Link:
    """A hyperlink found on a page.

    Attributes:
        url: Absolute URL, resolved against the page URL.
        text: Stripped text content of the <a> element.
        href: The raw href attribute value.
    """

    url: str
    text: str
    href: str


class LxmlPageElement:
    """Query interface over a CheckedHtmlElement.

    Attributes:
        _element: The underlying CheckedHtmlElement.
        _url: The base URL for resolving relative URLs.
    """

    def __init__(self, element: CheckedHtmlElement, url: str = ""):
        self._element = element
        self._url = url

    @classmethod
    def from_html(cls, content: str, url: str = "") -> LxmlPageElement:
        """Parse an HTML document into a page element.

        Args:
            content: Serialized HTML.
            url: URL the HTML was rendered from.

        Returns:
            Page element wrapping the document root.
        """
        if not content.strip():
            content = "<html></html>"
        doc = html.fromstring(content)
        return cls(CheckedHtmlElement(doc, url), url)

    @property
    def url(self) -> str:
        return self._url

    def query_xpath(
        self,
        selector: str,
        description: str,
        min_count: int = 1,
        max_count: int | None = None,
    ) -> list[LxmlPageElement]:
        """Query elements by XPath selector.

        Raises:
            ExtractionAnomaly: If count doesn't match expectations.
        """
        checked_elements = self._element.checked_xpath(
            selector, description, min_count, max_count
        )
        return [LxmlPageElement(elem, self._url) for elem in checked_elements]

    def query_css(
        self,
        selector: str,
        description: str,
        min_count: int = 1,
        max_count: int | None = None,
    ) -> list[LxmlPageElement]:
        """Query elements by CSS selector.

        Raises:
            ExtractionAnomaly: If count doesn't match expectations.
        """
        checked_elements = self._element.checked_css(
            selector, description, min_count, max_count
        )
        return [LxmlPageElement(elem, self._url) for elem in checked_elements]

    def first_css(self, selector: str, description: str) -> LxmlPageElement | None:
        """Return the first element matching a CSS selector, if any."""
        matches = self.query_css(selector, description, min_count=0)
        return matches[0] if matches else None

    def text_content(self) -> str:
        """Text content of the element and its descendants."""
        return self._element.text_content()

    def normalized_text(self) -> str:
        """Text content with runs of whitespace collapsed to single spaces."""
        return " ".join(self.text_content().split())

    def get_attribute(self, name: str) -> str | None:
        """Attribute value, or None if it doesn't exist."""
        return self._element.get(name)

    def tag_name(self) -> str:
        """Lowercase tag name (e.g., "div", "a")."""
        return self._element.tag.lower()

    def children(self) -> list[LxmlPageElement]:
        """Direct element children."""
        return self.query_xpath("./*", "child elements", min_count=0)

    def find_links(
        self,
        selector: str,
        description: str,
        min_count: int = 1,
        max_count: int | None = None,
    ) -> list[Link]:
        """Find links matching a selector.

        XPath is assumed when the selector starts with "/" or ".", CSS
        otherwise. Elements without an href are skipped.

        Raises:
            ExtractionAnomaly: If count doesn't match expectations.
        """
        if selector.startswith("/") or selector.startswith("."):
            link_elements = self.query_xpath(
                selector, description, min_count, max_count
            )
        else:
            link_elements = self.query_css(
                selector, description, min_count, max_count
            )

        links: list[Link] = []
        for elem in link_elements:
            href = elem.get_attribute("href")
            if not href:
                continue
            links.append(
                Link(
                    url=urljoin(self._url, href),
                    text=elem.text_content().strip(),
                    href=href,
                )
            )
        return links
