"""Configuration management."""
import os
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


class Config:
    """Application configuration."""

    # Database
    DB_HOST = os.getenv("DB_HOST", "localhost")
    DB_PORT = os.getenv("DB_PORT", "5432")
    DB_NAME = os.getenv("DB_NAME", "booksdb")
    DB_USER = os.getenv("DB_USER", "postgres")
    DB_PASSWORD = os.getenv("DB_PASSWORD", "")

    @property
    def DATABASE_URL(self):
        """Build PostgreSQL connection string."""
        return f"postgresql://{self.DB_USER}:{self.DB_PASSWORD}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"

    # External catalogs
    GOOGLE_BOOKS_API_KEY = os.getenv("GOOGLE_BOOKS_API_KEY")
    SPOTIFY_CLIENT_ID = os.getenv("SPOTIFY_CLIENT_ID")
    SPOTIFY_CLIENT_SECRET = os.getenv("SPOTIFY_CLIENT_SECRET")

    # Identity service that turns a bearer token into a user id
    AUTH_USER_URL = os.getenv("AUTH_USER_URL")
    AUTH_API_KEY = os.getenv("AUTH_API_KEY")

    # Timeouts (seconds)
    DEFAULT_TIMEOUT = int(os.getenv("DEFAULT_TIMEOUT", "10"))
    SCRAPE_TIMEOUT = int(os.getenv("SCRAPE_TIMEOUT", "15"))

    # Caching
    AUDIOBOOK_CACHE_TTL = int(os.getenv("AUDIOBOOK_CACHE_TTL", str(30 * 24 * 3600)))
    TOKEN_REFRESH_BUFFER = int(os.getenv("TOKEN_REFRESH_BUFFER", "60"))
    TOKEN_SLOT_ID = int(os.getenv("TOKEN_SLOT_ID", "1"))

    # Matching
    AUDIOBOOK_MATCH_CANDIDATES = int(os.getenv("AUDIOBOOK_MATCH_CANDIDATES", "5"))
    TITLE_THRESHOLD = float(os.getenv("TITLE_THRESHOLD", "0.6"))
    AUTHOR_THRESHOLD = float(os.getenv("AUTHOR_THRESHOLD", "0.5"))
    CONSENSUS_QUORUM = int(os.getenv("CONSENSUS_QUORUM", "2"))

    # Caller-side client
    RESOLVER_URL = os.getenv("RESOLVER_URL", "http://localhost:8000")
    RESOLVER_TOKEN = os.getenv("RESOLVER_TOKEN")
    DEFAULT_MAX_RETRIES = int(os.getenv("DEFAULT_MAX_RETRIES", "3"))
