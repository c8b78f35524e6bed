#!/usr/bin/env python3
"""Book Resolver CLI - query the resolver API and manage its database."""
import argparse
import sys
import json
from tabulate import tabulate
from bookresolver.client import ResolverClient
from bookresolver.database import Database
from bookresolver.config import Config
import logging

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def _truncate(value, width: int) -> str:
    text = "" if value is None else str(value)
    return text[:width] + "..." if len(text) > width else text


def _hours(duration_ms) -> str:
    if not duration_ms:
        return "N/A"
    return f"{duration_ms / 3_600_000:.1f}h"


def make_client(args, config: Config) -> ResolverClient:
    """Build the API client from CLI flags and configuration."""
    return ResolverClient(
        args.url or config.RESOLVER_URL,
        token=args.token or config.RESOLVER_TOKEN,
        max_retries=config.DEFAULT_MAX_RETRIES
    )


def _failed(response) -> bool:
    if response is None:
        logger.error("❌ Request failed after retries")
        return True
    if "error" in response:
        logger.error(f"❌ {response['error']}")
        return True
    return False


def display_books(books, format_type: str):
    """Display book records in specified format."""
    if format_type == "table":
        headers = ["Title", "Authors", "Published", "Pages", "Rating", "Source"]
        rows = [
            [
                _truncate(book.get("title"), 50),
                _truncate(", ".join(book.get("metadata", {}).get("authors") or []) or "Unknown", 30),
                book.get("publication_date") or "Unknown",
                book.get("total_pages") or "N/A",
                book.get("rating") or "N/A",
                book.get("api_source") or book.get("source") or ""
            ]
            for book in books
        ]
        print("\n" + tabulate(rows, headers=headers, tablefmt="grid"))

    elif format_type == "json":
        print(json.dumps(books, indent=2))

    elif format_type == "compact":
        for i, book in enumerate(books, 1):
            authors = ", ".join(book.get("metadata", {}).get("authors") or []) or "Unknown"
            print(f"{i}. {book.get('title')} - {authors}")


def display_audiobooks(audiobooks, format_type: str):
    """Display audiobook records in specified format."""
    if format_type == "table":
        headers = ["Title", "Author", "Narrator", "Length", "Chapters", "ID"]
        rows = [
            [
                _truncate(item.get("title"), 50),
                _truncate(item.get("author"), 30),
                _truncate(item.get("narrator"), 30),
                _hours(item.get("duration_ms")),
                item.get("total_chapters") or "N/A",
                item.get("spotify_id") or item.get("asin") or ""
            ]
            for item in audiobooks
        ]
        print("\n" + tabulate(rows, headers=headers, tablefmt="grid"))

    elif format_type == "json":
        print(json.dumps(audiobooks, indent=2))

    elif format_type == "compact":
        for i, item in enumerate(audiobooks, 1):
            print(f"{i}. {item.get('title')} - {item.get('author')} ({_hours(item.get('duration_ms'))})")


def get_book(args, config: Config):
    """Resolve one book."""
    if not (args.isbn or args.api_id or args.volume_id):
        logger.error("❌ One of --isbn, --api-id or --volume-id is required")
        return
    with make_client(args, config) as client:
        response = client.get_book(isbn=args.isbn, api_id=args.api_id, google_volume_id=args.volume_id)
    if not _failed(response):
        display_books([response], args.format)


def search_books(args, config: Config):
    """Search books across providers."""
    with make_client(args, config) as client:
        response = client.search_books(args.query)
    if _failed(response):
        return
    books = response.get("bookList", [])[:args.limit]
    logger.info(f"Found {len(books)} books")
    display_books(books, args.format)


def get_audiobook(args, config: Config):
    """Resolve one audiobook."""
    with make_client(args, config) as client:
        response = client.get_audiobook(
            audiobook_id=args.id,
            book_id=args.book_id,
            title=args.title,
            author=args.author
        )
    if _failed(response):
        return
    logger.info(f"Resolved from {response.get('source')}")
    display_audiobooks([response["data"]], args.format)


def search_audiobooks(args, config: Config):
    """Search the audiobook catalog."""
    with make_client(args, config) as client:
        response = client.search_audiobooks(args.query, limit=args.limit)
    if not _failed(response):
        display_audiobooks(response.get("data", []), args.format)


def get_audible(args, config: Config):
    """Look up an audiobook length on Audible."""
    with make_client(args, config) as client:
        response = client.get_audible(args.title, author=args.author)
    if not _failed(response):
        display_audiobooks([response["data"]], args.format)


def serve(args, config: Config):
    """Run the API server."""
    import uvicorn

    uvicorn.run("bookresolver.api:app", host=args.host, port=args.port, reload=args.reload)


def show_stats(args, config: Config):
    """Show database statistics."""
    db = Database(config.DATABASE_URL)
    db.init_schema()

    try:
        stats = db.get_stats()

        print("\n" + "=" * 50)
        print("DATABASE STATISTICS")
        print("=" * 50)
        print(f"Total books stored: {stats['total_books']}")
        print(f"Cached audiobooks: {stats['cached_audiobooks']}")
        print(f"Expired cache entries: {stats['expired_cache_entries']}")
        print("=" * 50 + "\n")

        # Cleanup if requested
        if args.cleanup:
            deleted = db.cleanup_expired_cache()
            print(f"✅ Cleaned up {deleted} expired cache entries\n")

    finally:
        db.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Book Resolver - book and audiobook metadata CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Resolve a book by ISBN
  %(prog)s book --isbn 9780593135204

  # Search books
  %(prog)s search "project hail mary" --limit 5

  # Audiobook length by title
  %(prog)s audiobook --title "Project Hail Mary" --author "Andy Weir"

  # Run the API
  %(prog)s serve --port 8000

  # Show statistics
  %(prog)s stats --cleanup
        """
    )
    parser.add_argument("--url", help="Resolver API URL (default: RESOLVER_URL)")
    parser.add_argument("--token", help="Bearer token (default: RESOLVER_TOKEN)")

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")
    formats = ["table", "json", "compact"]

    book_parser = subparsers.add_parser("book", help="Resolve one book")
    book_parser.add_argument("--isbn", help="ISBN-10 or ISBN-13")
    book_parser.add_argument("--api-id", help="Goodreads book id")
    book_parser.add_argument("--volume-id", help="Google Books volume id")
    book_parser.add_argument("--format", choices=formats, default="table", help="Output format")

    search_parser = subparsers.add_parser("search", help="Search for books")
    search_parser.add_argument("query", help="Search query")
    search_parser.add_argument("--limit", type=int, default=10, help="Max results shown (default: 10)")
    search_parser.add_argument("--format", choices=formats, default="table", help="Output format")

    audiobook_parser = subparsers.add_parser("audiobook", help="Resolve one audiobook")
    audiobook_parser.add_argument("--id", help="Spotify audiobook id")
    audiobook_parser.add_argument("--book-id", help="Book id for the community lookup")
    audiobook_parser.add_argument("--title", help="Title to search for")
    audiobook_parser.add_argument("--author", help="Author to match")
    audiobook_parser.add_argument("--format", choices=formats, default="table", help="Output format")

    audiobooks_parser = subparsers.add_parser("audiobooks", help="Search audiobooks")
    audiobooks_parser.add_argument("query", help="Search query")
    audiobooks_parser.add_argument("--limit", type=int, default=10, help="Max results (1-50, default: 10)")
    audiobooks_parser.add_argument("--format", choices=formats, default="table", help="Output format")

    audible_parser = subparsers.add_parser("audible", help="Audiobook length from Audible")
    audible_parser.add_argument("title", help="Book title")
    audible_parser.add_argument("--author", help="Author name")
    audible_parser.add_argument("--format", choices=formats, default="table", help="Output format")

    serve_parser = subparsers.add_parser("serve", help="Run the API server")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Bind address")
    serve_parser.add_argument("--port", type=int, default=8000, help="Port (default: 8000)")
    serve_parser.add_argument("--reload", action="store_true", help="Reload on code changes")

    stats_parser = subparsers.add_parser("stats", help="Show database statistics")
    stats_parser.add_argument("--cleanup", action="store_true", help="Clean up expired cache")

    return parser


COMMANDS = {
    "book": get_book,
    "search": search_books,
    "audiobook": get_audiobook,
    "audiobooks": search_audiobooks,
    "audible": get_audible,
    "serve": serve,
    "stats": show_stats,
}


def main():
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    config = Config()

    try:
        COMMANDS[args.command](args, config)

    except KeyboardInterrupt:
        logger.info("\n⚠️  Interrupted by user")
        sys.exit(0)
    except Exception as e:
        logger.error(f"❌ Error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
