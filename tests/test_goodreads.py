"""Tests for Goodreads page extraction."""
import asyncio
import json

import pytest

from bookresolver.errors import UpstreamNotFound
from bookresolver.goodreads import GoodreadsClient, parse_book_page, parse_search_results
from bookresolver.request_log import RequestLog

NEXT_DATA = {
    "props": {
        "pageProps": {
            "apolloState": {
                "Contributor:kca://author/1": {"name": "Frank Herbert"},
                "Book:kca://book/1": {
                    "legacyId": 12345,
                    "title": "Dune (Dune #1)",
                    "imageUrl": "https://images.gr-assets.com/dune.jpg",
                    "description": "Spice &amp; sand",
                    "primaryContributorEdge": {"node": {"__ref": "Contributor:kca://author/1"}},
                    "genres": ["Science Fiction", "Fiction", "...more"],
                    "details": {
                        "numPages": 412,
                        "publisher": "Ace",
                        "language": {"name": "English"},
                        "isbn13": "9780441013593",
                        "publicationTime": 1000000000000,
                        "format": "Paperback",
                    },
                },
            }
        }
    }
}

JSON_LD = {
    "@type": "Book",
    "name": "Wrong Title",
    "numberOfPages": 999,
    "aggregateRating": {"ratingValue": 4.27, "ratingCount": 1000, "reviewCount": 50},
    "awards": "Hugo Award (1966)",
}


def page(next_data=None, json_ld=None, body=""):
    scripts = ""
    if next_data is not None:
        blob = next_data if isinstance(next_data, str) else json.dumps(next_data)
        scripts += f'<script id="__NEXT_DATA__" type="application/json">{blob}</script>'
    if json_ld is not None:
        scripts += f'<script type="application/ld+json">{json.dumps(json_ld)}</script>'
    return f"<html><head><title>Goodreads</title>{scripts}</head><body>{body}</body></html>"


HTML_BODY = """
<h1 class="Text__title1">HTML Title</h1>
<div class="BookPageMetadataSection__genres">
  <a class="Button--tag">Classics</a><a class="Button--tag">Romance</a><a class="Button--tag">...more</a>
</div>
<span class="ContributorLink__name">Jane Austen</span>
<div class="FeaturedDetails">
  <p data-testid="pagesFormat">474 pages, Paperback</p>
  <p data-testid="publicationInfo">First published December 23, 1815</p>
</div>
<div data-testid="bookDetails">ISBN-10: 0141439580</div>
"""


def test_next_data_wins_over_lower_priority_sources():
    """Embedded JSON fields are kept; later sources only fill the gaps."""
    book = parse_book_page(page(NEXT_DATA, JSON_LD, HTML_BODY), "12345.Dune")

    assert book.title == "Dune"
    assert book.authors == ["Frank Herbert"]
    assert book.description == "Spice & sand"
    assert book.total_pages == 412
    assert book.publisher == "Ace"
    assert book.language == "English"
    assert book.isbn13 == "9780441013593"
    assert book.publication_date == "2001-09-09"
    assert book.format == "physical"
    assert book.genres == ["Science Fiction", "Fiction"]
    # Gaps filled from the linked-data block and the page markup
    assert book.rating == 4.27
    assert book.rating_count == 1000
    assert book.awards == "Hugo Award (1966)"
    assert book.isbn10 == "0141439580"
    assert book.extraction_method == "next_data"
    assert book.api_source == "goodreads"


def test_json_ld_and_html_without_next_data():
    """Without the JSON blob the linked data claims the method."""
    ld = {"@type": "Book", "name": "Emma", "author": [{"name": "Jane Austen"}],
          "isbn": "978-0141439587", "bookFormat": "Paperback"}

    book = parse_book_page(page(json_ld=ld, body=HTML_BODY), "6969")

    assert book.title == "Emma"
    assert book.authors == ["Jane Austen"]
    assert book.isbn13 == "9780141439587"
    assert book.format == "physical"
    assert book.total_pages == 474
    assert book.publication_date == "1815-12-23"
    assert book.genres == ["Classics", "Romance"]
    assert book.extraction_method == "schema"


def test_malformed_next_data_is_logged_and_skipped():
    """A broken blob does not stop the other extractors."""
    log = RequestLog()

    book = parse_book_page(page("{not json", JSON_LD), "1", log)

    assert book.title == "Wrong Title"
    assert any(entry["type"] == "error" for entry in log.get_logs())


def test_html_only_page():
    """Markup alone still yields a record."""
    book = parse_book_page(page(body=HTML_BODY), "1")

    assert book.title == "HTML Title"
    assert book.authors == ["Jane Austen"]
    assert book.extraction_method == "html"


SEARCH_HTML = """
<table>
<tr itemscope itemtype="http://schema.org/Book">
  <td><img class="bookCover" src="https://i.gr-assets.com/dune.jpg"></td>
  <td>
    <a class="bookTitle" href="/book/show/44767458-dune?from_search=true"><span itemprop="name">Dune (Dune, #1)</span></a>
    <span itemprop="author"><a class="authorName" href="/author/1"><span itemprop="name">Frank Herbert</span></a></span>
    <div><span class="greyText smallText uitext">
      <span class="minirating">4.27 avg rating — 1,416,473 ratings</span> — published 1965 —
      <a class="greyText" rel="nofollow" href="/work/editions/1">302 editions</a>
    </span></div>
  </td>
</tr>
<tr itemscope itemtype="http://schema.org/Book">
  <td><img class="bookCover" src="https://s.gr-assets.com/nophoto/book.png"></td>
  <td>
    <a class="bookTitle" href="/book/show/7"><span itemprop="name">Standalone &amp; Other</span></a>
    <span itemprop="author"><a class="authorName" href="/author/2"><span itemprop="name">A. Writer</span></a></span>
  </td>
</tr>
</table>
"""


def test_parse_search_results():
    """Rows map to list records with series split out of the title."""
    books = parse_search_results(SEARCH_HTML)

    assert len(books) == 2
    dune = books[0]
    assert dune.api_id == "44767458-dune"
    assert dune.title == "Dune"
    assert dune.series == "Dune"
    assert dune.series_number == 1.0
    assert dune.authors == ["Frank Herbert"]
    assert dune.rating == 4.27
    assert dune.rating_count == 1416473
    assert dune.publication_date == "1965-01-01"
    assert dune.edition_count == 302
    assert dune.cover_image_url == "https://i.gr-assets.com/dune.jpg"

    other = books[1]
    assert other.title == "Standalone & Other"
    assert other.series is None
    assert other.cover_image_url is None
    assert other.rating is None


def test_client_fetch_book(router, http):
    """The page is requested with a browser user agent."""
    router.text("GET", "www.goodreads.com/book/show/12345", page(NEXT_DATA))

    book = asyncio.run(GoodreadsClient(client=http).fetch_book("12345"))

    assert book.title == "Dune"
    assert "Mozilla" in router.requests[0].headers["User-Agent"]


def test_client_fetch_book_without_data(router, http):
    """A page with nothing extractable is a miss."""
    router.text("GET", "www.goodreads.com/book/show/1", "<html><body>Not here</body></html>")

    with pytest.raises(UpstreamNotFound):
        asyncio.run(GoodreadsClient(client=http).fetch_book("1"))


def test_client_search(router, http):
    """Search scrapes the results page for the query."""
    router.text("GET", "www.goodreads.com/search", SEARCH_HTML)

    books = asyncio.run(GoodreadsClient(client=http).search("dune herbert"))

    assert [b.title for b in books] == ["Dune", "Standalone & Other"]
    assert router.requests[0].url.params["q"] == "dune herbert"
