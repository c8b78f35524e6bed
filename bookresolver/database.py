"""Database layer for book rows, audiobook cache and credentials."""
import asyncio
import psycopg2
from psycopg2 import pool
from psycopg2.extras import Json, RealDictCursor
from typing import Optional, List, Dict, Any
from datetime import datetime, timedelta, timezone
import logging

from bookresolver.errors import CacheWriteFailure
from bookresolver.models import AudiobookRecord, BookRecord, Credential

logger = logging.getLogger(__name__)

BOOK_LOOKUP_COLUMNS = {"api_id", "google_volume_id"}


def book_key(book: BookRecord) -> Optional[str]:
    """Stable row key: the source id when there is one, else an ISBN."""
    if book.api_id:
        return f"{book.api_source or 'api'}:{book.api_id}"
    if book.google_volume_id:
        return f"google_books:{book.google_volume_id}"
    if book.isbn13 or book.isbn10:
        return f"isbn:{book.isbn13 or book.isbn10}"
    return None


class Database:
    """PostgreSQL database with a thread-safe connection pool.

    The pool is shared by the worker threads AsyncStore runs calls in.
    """

    def __init__(self, connection_string: str, min_conn: int = 1, max_conn: int = 10):
        """
        Initialize database connection pool.

        Args:
            connection_string: PostgreSQL connection string
            min_conn: Minimum connections in pool
            max_conn: Maximum connections in pool
        """
        self.connection_pool = psycopg2.pool.ThreadedConnectionPool(
            min_conn,
            max_conn,
            connection_string
        )

        if self.connection_pool:
            logger.info("Database connection pool created successfully")
        else:
            raise Exception("Failed to create connection pool")

    def init_schema(self):
        """Create database tables if they don't exist."""
        conn = self.connection_pool.getconn()
        try:
            with conn.cursor() as cur:
                cur.execute("""
                    CREATE TABLE IF NOT EXISTS books (
                        book_key VARCHAR(255) PRIMARY KEY,
                        api_id VARCHAR(255),
                        api_source VARCHAR(50),
                        google_volume_id VARCHAR(255),
                        source VARCHAR(50),
                        title TEXT NOT NULL DEFAULT '',
                        cover_image_url TEXT,
                        description TEXT,
                        edition TEXT,
                        format VARCHAR(20),
                        genres TEXT[],
                        has_user_edits BOOLEAN DEFAULT FALSE,
                        isbn10 VARCHAR(10),
                        isbn13 VARCHAR(13),
                        language VARCHAR(50),
                        metadata JSONB,
                        publication_date DATE,
                        publisher TEXT,
                        rating REAL,
                        total_duration INTEGER,
                        total_pages INTEGER,
                        created_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP,
                        updated_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP
                    )
                """)

                cur.execute("""
                    CREATE TABLE IF NOT EXISTS audiobook_cache (
                        spotify_id VARCHAR(64) PRIMARY KEY,
                        title TEXT,
                        author TEXT,
                        narrator TEXT,
                        description TEXT,
                        duration_ms BIGINT,
                        total_chapters INTEGER,
                        publisher TEXT,
                        release_date VARCHAR(20),
                        isbn VARCHAR(20),
                        cover_url TEXT,
                        created_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP,
                        expires_at TIMESTAMPTZ NOT NULL
                    )
                """)

                cur.execute("""
                    CREATE TABLE IF NOT EXISTS spotify_tokens (
                        id INTEGER PRIMARY KEY,
                        access_token TEXT NOT NULL,
                        expires_at TIMESTAMPTZ NOT NULL
                    )
                """)

                cur.execute("""
                    CREATE TABLE IF NOT EXISTS deadlines (
                        id SERIAL PRIMARY KEY,
                        user_id VARCHAR(255),
                        book_id VARCHAR(255),
                        format VARCHAR(20),
                        total_quantity INTEGER DEFAULT 0,
                        created_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP
                    )
                """)

                cur.execute("""
                    CREATE TABLE IF NOT EXISTS user_searches (
                        id SERIAL PRIMARY KEY,
                        user_id VARCHAR(255),
                        query TEXT NOT NULL,
                        result_count INTEGER,
                        created_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP
                    )
                """)

                # Indexes for the identifier lookups
                cur.execute("CREATE INDEX IF NOT EXISTS idx_books_api_id ON books (api_id)")
                cur.execute("CREATE INDEX IF NOT EXISTS idx_books_google_volume_id ON books (google_volume_id)")
                cur.execute("CREATE INDEX IF NOT EXISTS idx_books_isbn13 ON books (isbn13)")
                cur.execute("CREATE INDEX IF NOT EXISTS idx_books_isbn10 ON books (isbn10)")
                cur.execute("CREATE INDEX IF NOT EXISTS idx_cache_expires ON audiobook_cache (expires_at)")
                cur.execute("CREATE INDEX IF NOT EXISTS idx_deadlines_book ON deadlines (book_id, format)")

                conn.commit()
                logger.info("Database schema initialized successfully")

        finally:
            self.connection_pool.putconn(conn)

    # ─── books ───────────────────────────────────────────────────────────

    def find_book(self, column: str, value: str) -> Optional[BookRecord]:
        """
        Get a book by one of its external ids.

        Args:
            column: ``api_id`` or ``google_volume_id``
            value: Identifier value

        Returns:
            BookRecord or None
        """
        if column not in BOOK_LOOKUP_COLUMNS:
            raise ValueError(f"Unsupported lookup column: {column}")

        conn = self.connection_pool.getconn()
        try:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(f"SELECT * FROM books WHERE {column} = %s LIMIT 1", (value,))
                row = cur.fetchone()
                return BookRecord.from_row(dict(row)) if row else None
        finally:
            self.connection_pool.putconn(conn)

    def find_book_by_isbn(self, isbn: str) -> Optional[BookRecord]:
        """Get a book whose ISBN-10 or ISBN-13 matches."""
        conn = self.connection_pool.getconn()
        try:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(
                    "SELECT * FROM books WHERE isbn10 = %s OR isbn13 = %s LIMIT 1",
                    (isbn, isbn),
                )
                row = cur.fetchone()
                return BookRecord.from_row(dict(row)) if row else None
        finally:
            self.connection_pool.putconn(conn)

    def upsert_book(self, book: BookRecord) -> bool:
        """
        Insert or update a book row.

        Args:
            book: Book record

        Returns:
            True if successful, False otherwise
        """
        key = book_key(book)
        if key is None:
            logger.error("Refusing to store a book without any identifier")
            return False

        row = book.to_dict()
        conn = self.connection_pool.getconn()
        try:
            with conn.cursor() as cur:
                cur.execute("""
                    INSERT INTO books (
                        book_key, api_id, api_source, google_volume_id, source, title,
                        cover_image_url, description, edition, format, genres,
                        has_user_edits, isbn10, isbn13, language, metadata,
                        publication_date, publisher, rating, total_duration,
                        total_pages, updated_at
                    ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s,
                              %s, %s, %s, %s, %s, CURRENT_TIMESTAMP)
                    ON CONFLICT (book_key) DO UPDATE SET
                        title = EXCLUDED.title,
                        cover_image_url = EXCLUDED.cover_image_url,
                        description = EXCLUDED.description,
                        edition = EXCLUDED.edition,
                        format = EXCLUDED.format,
                        genres = EXCLUDED.genres,
                        isbn10 = EXCLUDED.isbn10,
                        isbn13 = EXCLUDED.isbn13,
                        language = EXCLUDED.language,
                        metadata = EXCLUDED.metadata,
                        publication_date = EXCLUDED.publication_date,
                        publisher = EXCLUDED.publisher,
                        rating = EXCLUDED.rating,
                        total_duration = EXCLUDED.total_duration,
                        total_pages = EXCLUDED.total_pages,
                        updated_at = CURRENT_TIMESTAMP
                """, (
                    key, row["api_id"], row["api_source"], row["google_volume_id"],
                    row["source"], row["title"], row["cover_image_url"],
                    row["description"], row["edition"], row["format"], row["genres"],
                    row["has_user_edits"], row["isbn10"], row["isbn13"], row["language"],
                    Json(row["metadata"]), row["publication_date"], row["publisher"],
                    row["rating"], row["total_duration"], row["total_pages"]
                ))
                conn.commit()
                return True
        except Exception as e:
            conn.rollback()
            logger.error(f"Failed to store book {key}: {e}")
            return False
        finally:
            self.connection_pool.putconn(conn)

    # ─── audiobook cache ─────────────────────────────────────────────────

    def get_cached_audiobook(self, spotify_id: str) -> Optional[AudiobookRecord]:
        """
        Get a cached audiobook if not expired.

        Args:
            spotify_id: Catalog id

        Returns:
            AudiobookRecord or None
        """
        conn = self.connection_pool.getconn()
        try:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute("""
                    SELECT * FROM audiobook_cache
                    WHERE spotify_id = %s AND expires_at > CURRENT_TIMESTAMP
                """, (spotify_id,))

                row = cur.fetchone()
                if row:
                    logger.info(f"Cache hit: {spotify_id}")
                    return AudiobookRecord.from_row(dict(row))

                logger.info(f"Cache miss: {spotify_id}")
                return None
        finally:
            self.connection_pool.putconn(conn)

    def upsert_cached_audiobook(self, audiobook: AudiobookRecord, ttl_seconds: int = 30 * 24 * 3600) -> bool:
        """
        Cache an audiobook with TTL.

        Args:
            audiobook: Record to cache
            ttl_seconds: Time to live in seconds

        Returns:
            True if successful
        """
        conn = self.connection_pool.getconn()
        try:
            expires_at = datetime.now(timezone.utc) + timedelta(seconds=ttl_seconds)
            data = audiobook.to_dict()

            with conn.cursor() as cur:
                cur.execute("""
                    INSERT INTO audiobook_cache (
                        spotify_id, title, author, narrator, description, duration_ms,
                        total_chapters, publisher, release_date, isbn, cover_url, expires_at
                    ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    ON CONFLICT (spotify_id) DO UPDATE SET
                        title = EXCLUDED.title,
                        author = EXCLUDED.author,
                        narrator = EXCLUDED.narrator,
                        description = EXCLUDED.description,
                        duration_ms = EXCLUDED.duration_ms,
                        total_chapters = EXCLUDED.total_chapters,
                        publisher = EXCLUDED.publisher,
                        release_date = EXCLUDED.release_date,
                        isbn = EXCLUDED.isbn,
                        cover_url = EXCLUDED.cover_url,
                        expires_at = EXCLUDED.expires_at,
                        created_at = CURRENT_TIMESTAMP
                """, (
                    data["spotify_id"], data["title"], data["author"], data["narrator"],
                    data["description"], data["duration_ms"], data["total_chapters"],
                    data["publisher"], data["release_date"], data["isbn"],
                    data["cover_url"], expires_at
                ))

                conn.commit()
                logger.info(f"Cached audiobook: {audiobook.spotify_id} (TTL: {ttl_seconds}s)")
                return True
        except Exception as e:
            conn.rollback()
            logger.error(f"Failed to cache audiobook: {e}")
            return False
        finally:
            self.connection_pool.putconn(conn)

    # ─── credentials ─────────────────────────────────────────────────────

    def get_credential(self, slot_id: int) -> Optional[Credential]:
        """Read the stored token for a slot, expired or not."""
        conn = self.connection_pool.getconn()
        try:
            with conn.cursor() as cur:
                cur.execute(
                    "SELECT access_token, expires_at FROM spotify_tokens WHERE id = %s",
                    (slot_id,),
                )
                row = cur.fetchone()
                if not row:
                    return None
                return Credential(slot_id=slot_id, access_token=row[0], expires_at=row[1])
        finally:
            self.connection_pool.putconn(conn)

    def upsert_credential(self, credential: Credential) -> bool:
        """Replace the token stored in a slot."""
        conn = self.connection_pool.getconn()
        try:
            with conn.cursor() as cur:
                cur.execute("""
                    INSERT INTO spotify_tokens (id, access_token, expires_at)
                    VALUES (%s, %s, %s)
                    ON CONFLICT (id) DO UPDATE SET
                        access_token = EXCLUDED.access_token,
                        expires_at = EXCLUDED.expires_at
                """, (credential.slot_id, credential.access_token, credential.expires_at))
                conn.commit()
                return True
        except Exception as e:
            conn.rollback()
            logger.error(f"Failed to store credential: {e}")
            return False
        finally:
            self.connection_pool.putconn(conn)

    # ─── community data ──────────────────────────────────────────────────

    def list_audio_durations(self, book_id: str) -> List[int]:
        """Durations (hours) other users entered for this book as an audiobook."""
        conn = self.connection_pool.getconn()
        try:
            with conn.cursor() as cur:
                cur.execute("""
                    SELECT total_quantity FROM deadlines
                    WHERE book_id = %s AND format = 'audio' AND total_quantity > 0
                """, (book_id,))
                return [row[0] for row in cur.fetchall()]
        finally:
            self.connection_pool.putconn(conn)

    def record_search(self, user_id: str, query: str, result_count: int) -> bool:
        """Append to the user's search history."""
        conn = self.connection_pool.getconn()
        try:
            with conn.cursor() as cur:
                cur.execute(
                    "INSERT INTO user_searches (user_id, query, result_count) VALUES (%s, %s, %s)",
                    (user_id, query, result_count),
                )
                conn.commit()
                return True
        except Exception as e:
            conn.rollback()
            logger.error(f"Failed to save search history: {e}")
            return False
        finally:
            self.connection_pool.putconn(conn)

    # ─── maintenance ─────────────────────────────────────────────────────

    def get_stats(self) -> Dict[str, Any]:
        """Get database statistics."""
        conn = self.connection_pool.getconn()
        try:
            with conn.cursor() as cur:
                cur.execute("SELECT COUNT(*) FROM books")
                book_count = cur.fetchone()[0]

                cur.execute("SELECT COUNT(*) FROM audiobook_cache WHERE expires_at > CURRENT_TIMESTAMP")
                cache_count = cur.fetchone()[0]

                cur.execute("SELECT COUNT(*) FROM audiobook_cache WHERE expires_at <= CURRENT_TIMESTAMP")
                expired_count = cur.fetchone()[0]

                return {
                    "total_books": book_count,
                    "cached_audiobooks": cache_count,
                    "expired_cache_entries": expired_count
                }
        finally:
            self.connection_pool.putconn(conn)

    def cleanup_expired_cache(self) -> int:
        """Remove expired audiobook cache entries."""
        conn = self.connection_pool.getconn()
        try:
            with conn.cursor() as cur:
                cur.execute("""
                    DELETE FROM audiobook_cache
                    WHERE expires_at <= CURRENT_TIMESTAMP
                """)
                deleted = cur.rowcount
                conn.commit()
                logger.info(f"Cleaned up {deleted} expired cache entries")
                return deleted
        finally:
            self.connection_pool.putconn(conn)

    def close(self):
        """Close all connections in the pool."""
        if self.connection_pool:
            self.connection_pool.closeall()
            logger.info("Database connection pool closed")

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()


class AsyncStore:
    """Coroutine facade over Database for use inside request handlers.

    Each call runs in a worker thread. Writes that report failure are
    raised as CacheWriteFailure so fire-and-forget callers can log them.
    """

    def __init__(self, db: Database, audiobook_ttl: int = 30 * 24 * 3600):
        self.db = db
        self.audiobook_ttl = audiobook_ttl

    async def find_book(self, column: str, value: str) -> Optional[BookRecord]:
        return await asyncio.to_thread(self.db.find_book, column, value)

    async def find_book_by_isbn(self, isbn: str) -> Optional[BookRecord]:
        return await asyncio.to_thread(self.db.find_book_by_isbn, isbn)

    async def upsert_book(self, book: BookRecord):
        if not await asyncio.to_thread(self.db.upsert_book, book):
            raise CacheWriteFailure(f"could not store book {book_key(book)}")

    async def get_cached_audiobook(self, spotify_id: str) -> Optional[AudiobookRecord]:
        return await asyncio.to_thread(self.db.get_cached_audiobook, spotify_id)

    async def upsert_cached_audiobook(self, audiobook: AudiobookRecord):
        if not await asyncio.to_thread(self.db.upsert_cached_audiobook, audiobook, self.audiobook_ttl):
            raise CacheWriteFailure(f"could not cache audiobook {audiobook.spotify_id}")

    async def get_credential(self, slot_id: int) -> Optional[Credential]:
        return await asyncio.to_thread(self.db.get_credential, slot_id)

    async def upsert_credential(self, credential: Credential):
        if not await asyncio.to_thread(self.db.upsert_credential, credential):
            raise CacheWriteFailure("could not store credential")

    async def list_audio_durations(self, book_id: str) -> List[int]:
        return await asyncio.to_thread(self.db.list_audio_durations, book_id)

    async def record_search(self, user_id: str, query: str, result_count: int):
        if not await asyncio.to_thread(self.db.record_search, user_id, query, result_count):
            raise CacheWriteFailure("could not save search history")
