"""Query capability over a parsed HTML page."""
from typing import List, Optional, Sequence, Tuple

from bs4 import BeautifulSoup
from bs4.element import Tag


class ParsedDocument:
    """Thin wrapper around a BeautifulSoup tree (or one element of it).

    Extraction code asks for "the first non-empty value among these
    selectors" instead of walking the tree itself, so selector lists can
    live as plain data.
    """

    def __init__(self, root):
        self.root = root

    @classmethod
    def from_html(cls, html: str) -> "ParsedDocument":
        return cls(BeautifulSoup(html or "", "html.parser"))

    def find_first(self, selectors: Sequence[str], attr: Optional[str] = None) -> Optional[str]:
        """
        Return the first non-empty text (or attribute) across selectors.

        Args:
            selectors: Candidate CSS selectors, in priority order
            attr: Attribute to read instead of the element text

        Returns:
            Stripped value or None
        """
        for selector in selectors:
            element = self.root.select_one(selector)
            if element is None:
                continue
            if attr:
                value = element.get(attr)
            else:
                value = element.get_text(" ", strip=True)
            if value and value.strip():
                return value.strip()
        return None

    def find_all_text(self, selector: str) -> List[str]:
        return [
            text
            for text in (el.get_text(" ", strip=True) for el in self.root.select(selector))
            if text
        ]

    def script_text(self, selector: str) -> Optional[str]:
        """Raw contents of a script block, e.g. an embedded JSON blob."""
        element = self.root.select_one(selector)
        if element is None:
            return None
        text = element.string if element.string is not None else element.get_text()
        return text.strip() or None

    def first_scope(self, selectors: Sequence[str]) -> Optional[Tuple["ParsedDocument", str]]:
        """Narrow the document to the first element matching any selector."""
        for selector in selectors:
            element = self.root.select_one(selector)
            if isinstance(element, Tag):
                return ParsedDocument(element), selector
        return None

    def scopes(self, selector: str) -> List["ParsedDocument"]:
        return [ParsedDocument(el) for el in self.root.select(selector)]

    def title(self) -> str:
        element = self.root.select_one("title")
        return element.get_text(strip=True) if element is not None else ""
